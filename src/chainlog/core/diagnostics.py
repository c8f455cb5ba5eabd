"""
Component-scoped structured logging for chainlog.

All runtime logging is routed through fapilog loggers, one per component
("signer", "ingestor", "verifier", ...). Helpers mirror the
``warn(component, message, **fields)`` shape so call sites stay terse.
Logging failures are contained: diagnostics never raise into the caller.
"""

from __future__ import annotations

import threading
from typing import Any

from fapilog import get_logger

_LOGGER_PREFIX = "chainlog"
_loggers: dict[str, Any] = {}
_loggers_lock = threading.Lock()


def component_logger(component: str) -> Any:
    """Return the cached fapilog logger for ``component``."""
    with _loggers_lock:
        logger = _loggers.get(component)
        if logger is None:
            logger = get_logger(name=f"{_LOGGER_PREFIX}.{component}")
            _loggers[component] = logger
        return logger


def _emit(level: str, component: str, message: str, fields: dict[str, Any]) -> None:
    try:
        logger = component_logger(component)
        getattr(logger, level)(message, component=component, **fields)
    except Exception:
        pass


def debug(component: str, message: str, **fields: Any) -> None:
    _emit("debug", component, message, fields)


def info(component: str, message: str, **fields: Any) -> None:
    _emit("info", component, message, fields)


def warn(component: str, message: str, **fields: Any) -> None:
    _emit("warning", component, message, fields)


def error(component: str, message: str, **fields: Any) -> None:
    _emit("error", component, message, fields)
