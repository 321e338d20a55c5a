"""
Timing instrumentation for device round trips.

Can be disabled via the MEROSS_PERF_TRACKING environment variable.
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

__all__ = [
    "measure_time",
    "timed_async",
]

P = ParamSpec("P")
T = TypeVar("T")


def measure_time(start_time: float) -> float:
    """Return milliseconds elapsed since start_time (a time.perf_counter() value)."""
    return (time.perf_counter() - start_time) * 1000


def timed_async(
    operation_name: str | None = None,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """
    Decorator for timing async functions with a threshold warning.

    Example:
        @timed_async("http_send")
        async def send(...):
            ...
    """

    def decorator(func: Callable[P, Coroutine[Any, Any, T]]) -> Callable[P, Coroutine[Any, Any, T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            from meross_sync.const import (  # noqa: PLC0415
                MEROSS_PERF_THRESHOLD_MS,
                MEROSS_PERF_TRACKING,
            )
            from meross_sync.logging_abstraction import get_logger  # noqa: PLC0415

            if not MEROSS_PERF_TRACKING:
                return await func(*args, **kwargs)

            logger = get_logger(__name__)
            op_name = operation_name or func.__name__

            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_timing(logger, op_name, measure_time(start_time), MEROSS_PERF_THRESHOLD_MS)

        return wrapper

    return decorator


def _log_timing(logger: Any, operation_name: str, elapsed_ms: float, threshold_ms: int):
    """Log at warning level above the threshold, debug otherwise."""
    extra = {
        "operation": operation_name,
        "duration_ms": round(elapsed_ms, 2),
        "threshold_ms": threshold_ms,
        "exceeded_threshold": elapsed_ms > threshold_ms,
    }
    if elapsed_ms > threshold_ms:
        logger.warning(
            "⏱️ [%s] completed in %.1fms (threshold: %dms)",
            operation_name,
            elapsed_ms,
            threshold_ms,
            extra=extra,
        )
    else:
        logger.debug("⏱️ [%s] completed in %.1fms", operation_name, elapsed_ms, extra=extra)
