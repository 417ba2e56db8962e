"""
Shared error handling and argument validation for the admin tools.

``with_error_handling`` is used where an operation should degrade to a
fallback value (an empty list, False) instead of aborting a whole report.
Pass no default to log and re-raise.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, TypeVar

T = TypeVar("T")

RAISE = object()

_default_logger = logging.getLogger(__name__)


def format_error_message(operation: str, exc: BaseException) -> str:
    message = f"Error during {operation}: {exc}"
    cause = exc.__cause__ or exc.__context__
    if cause is not None and cause is not exc:
        message += f" (Caused by: {type(cause).__name__}: {cause})"
    return message


def handle_error(
    operation: str,
    exc: BaseException,
    logger: logging.Logger | None = None,
    level: int = logging.ERROR,
) -> None:
    (logger or _default_logger).log(level, format_error_message(operation, exc), exc_info=exc)


def handle_error_with_default(
    operation: str,
    exc: BaseException,
    default: T,
    logger: logging.Logger | None = None,
    level: int = logging.WARNING,
) -> T:
    handle_error(operation, exc, logger, level)
    return default


def with_error_handling(
    operation: str,
    action: Callable[[], T],
    logger: logging.Logger | None = None,
    default=RAISE,
):
    """Run *action*; on failure log and either re-raise or return *default*."""
    try:
        return action()
    except Exception as exc:
        if default is RAISE:
            handle_error(operation, exc, logger)
            raise
        return handle_error_with_default(operation, exc, default, logger)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def require_non_null(value: T | None, name: str) -> T:
    if value is None:
        raise ValueError(f"{name} must not be null")
    return value


def require_non_empty(text: str | None, name: str) -> str:
    if text is None or not str(text).strip():
        raise ValueError(f"{name} must not be null or empty")
    return str(text).strip()


def require_positive(value: int, name: str, default: int) -> int:
    if value is None or value <= 0:
        _default_logger.warning("%s must be positive. Using default value %d", name, default)
        return default
    return value


def require_directory_exists(path: str | None, name: str) -> str:
    if not path or not os.path.isdir(path):
        raise ValueError(f"{name} directory does not exist: {path}")
    return path
