"""
SocialNet Logging Configuration

Every logger lives under the ``socialnet`` namespace and shares one handler.
Calls take keyword context (``push_logger.info("Sent", user_id=3)``) which is
merged with the current request's id and user, so a push delivery or a feed
build can be traced back to the request that caused it.
"""
import asyncio
import json
import logging
import os
import sys
import time
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Optional

LOG_LEVEL = os.environ.get("SOCIALNET_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.environ.get("SOCIALNET_LOG_FORMAT", "json")  # json or text

ROOT_LOGGER = "socialnet"

# Mutable per-request dict; sync dependencies run in copied contexts, so
# values are added to the shared dict rather than set on the variable.
request_state: ContextVar[Optional[dict]] = ContextVar("request_state", default=None)


def bind_user(user_id: Optional[int]) -> None:
    """Attach the authenticated user to log records for the rest of the request."""
    state = request_state.get()
    if state is not None:
        state["user_id"] = user_id


def request_context() -> dict:
    state = request_state.get()
    if not state:
        return {}
    return {k: v for k, v in state.items() if v is not None}


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "context", {}))
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """``12:01:02 INFO socialnet.push Notification delivered (user_id=3)``"""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        line = f"{stamp} {record.levelname:<7} {record.name} {record.getMessage()}"
        context = {k: v for k, v in getattr(record, "context", {}).items() if k != "traceback"}
        if context:
            line += " (" + " ".join(f"{k}={v}" for k, v in context.items()) + ")"
        if "traceback" in getattr(record, "context", {}):
            line += "\n" + record.context["traceback"]
        return line


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter() if LOG_FORMAT == "json" else TextFormatter())
        root.addHandler(handler)
        root.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
        root.propagate = False
    return root


class StructuredLogger:
    """Thin wrapper adding keyword context to stdlib logging calls."""

    def __init__(self, name: str):
        _configure_root()
        self.name = name
        self.logger = logging.getLogger(name)

    def _log(self, level: int, message: str, context: dict):
        if self.logger.isEnabledFor(level):
            merged = request_context()
            merged.update(context)
            self.logger.log(level, message, extra={"context": merged})

    def debug(self, message: str, **context):
        self._log(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._log(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._log(logging.WARNING, message, context)

    def error(self, message: str, error: Optional[Exception] = None, **context):
        if error is not None:
            context["error_type"] = type(error).__name__
            context["error_message"] = str(error)
            context["traceback"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
        self._log(logging.ERROR, message, context)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def timed(logger: StructuredLogger):
    """Log how long the wrapped function took; failures are logged and re-raised."""
    def decorator(func):
        name = func.__qualname__

        if asyncio.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    logger.error(f"{name} failed", error=e, duration_ms=_elapsed_ms(start))
                    raise
                logger.debug(f"{name} completed", duration_ms=_elapsed_ms(start))
                return result
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{name} failed", error=e, duration_ms=_elapsed_ms(start))
                raise
            logger.debug(f"{name} completed", duration_ms=_elapsed_ms(start))
            return result
        return sync_wrapper

    return decorator


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(f"{ROOT_LOGGER}.{name}")


api_logger = get_logger("api")
request_logger = get_logger("requests")
push_logger = get_logger("push")
scheduler_logger = get_logger("scheduler")
feed_logger = get_logger("feed")
tracking_logger = get_logger("tracking")
