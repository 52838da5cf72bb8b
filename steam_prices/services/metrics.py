from __future__ import annotations

import statistics
from collections.abc import Sequence

from ..models.market import PricePoint


def weighted_average_price(points: Sequence[PricePoint]) -> float:
    """Volume-weighted mean of `value`; plain mean when no volume was traded.

    Callers only pass non-empty sequences.
    """
    total_volume = sum(p.volume for p in points)
    if total_volume == 0:
        return float(statistics.mean(p.value for p in points))
    return sum(p.value * p.volume for p in points) / total_volume
