"""Structured logging setup for the hazard lifecycle engine."""

import functools
import logging
from contextvars import ContextVar
from typing import Optional, Dict, Any
from pathlib import Path

# Each asyncio task runs in a copy of the current context, so concurrent
# submissions never see each other's fields.
_log_context: ContextVar[Dict[str, Any]] = ContextVar("hazardwatch_log_context", default={})


class ContextFilter(logging.Filter):
    """Add submission context (device_id, report_id, kind) to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            setattr(record, key, value)
        return True


_context_filter = ContextFilter()


def setup_logging(
    level: str = "INFO",
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up structured logging with optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Format string for log messages
        log_file: Optional path to log file

    Returns:
        Configured root logger
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    formatter = logging.Formatter(log_format)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    return root_logger


def set_context(**kwargs):
    """
    Set context fields for subsequent log messages in the current task.

    Example:
        set_context(device_id="dev_abc", kind="repair")
        logger.info("Submission admitted")  # carries device_id and kind

    Args:
        **kwargs: Context key-value pairs
    """
    _log_context.set({**_log_context.get(), **kwargs})


def with_context(**context_kwargs):
    """
    Decorator scoping log context to one coroutine call.

    Fields set inside the call, by the decorator or by ``set_context``, are
    dropped again when it returns.

    Example:
        @with_context(component="gate")
        async def submit(request):
            set_context(device_id=request.identity.device_id)
            logger.info("Evaluating")  # Includes component and device_id

    Args:
        **context_kwargs: Context key-value pairs
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            token = _log_context.set({**_log_context.get(), **context_kwargs})
            try:
                return await func(*args, **kwargs)
            finally:
                _log_context.reset(token)

        return wrapper
    return decorator
