from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any

import structlog

from .config import settings

run_id_ctx_var: ContextVar[str | None] = ContextVar("run_id", default=None)


def get_run_id() -> str | None:
    return run_id_ctx_var.get()


def set_run_id(run_id: str | None) -> None:
    run_id_ctx_var.set(run_id)


def new_run_id() -> str:
    rid = uuid.uuid4().hex[:12]
    set_run_id(rid)
    return rid


def configure_logging(level: str | None = None) -> None:
    numeric = _level_to_numeric(level or settings.LOG_LEVEL)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric)

    processors: list[Callable[..., Any]] = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_run_id,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _level_to_numeric(level: str) -> int:
    mapping = {
        "CRITICAL": 50,
        "ERROR": 40,
        "WARNING": 30,
        "INFO": 20,
        "DEBUG": 10,
        "NOTSET": 0,
    }
    return mapping.get(level.upper(), 20)


def _add_run_id(_logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    rid = get_run_id()
    if rid:
        event_dict["run_id"] = rid
    return event_dict


def get_logger() -> Any:
    return structlog.get_logger()
