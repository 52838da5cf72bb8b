from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class PricePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: int  # epoch millis
    value: float
    volume: int = Field(..., ge=0)


class PriceSummary(BaseModel):
    """Stored per item. New sources get their own field next to `steam`."""

    steam: float


class RunCursor(BaseModel):
    last_index: int = Field(default=0, alias="lastIndex", ge=0)

    model_config = ConfigDict(populate_by_name=True)
