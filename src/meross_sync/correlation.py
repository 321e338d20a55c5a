"""
Correlation ID tracking across async operations.

Every task that runs through a device's command queue gets its own correlation
ID so the log lines of one poll or one command can be grouped together.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_context",
    "ensure_correlation_id",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)


def generate_correlation_id() -> str:
    """Return a new UUID4 hex correlation ID."""
    return uuid.uuid4().hex


def get_correlation_id() -> str | None:
    """Return the correlation ID of the current context, if any."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set (or clear) the correlation ID of the current context."""
    _correlation_id.set(correlation_id)


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    auto_generate: bool = True,
) -> Generator[str | None]:
    """
    Context manager for a correlation ID scope.

    Generates an ID when none is given and auto_generate is set. The previous
    ID is restored on exit.

    Example:
        with correlation_context() as corr_id:
            logger.info("Polling device")  # tagged with corr_id
    """
    previous_id = get_correlation_id()

    if correlation_id is None and auto_generate:
        correlation_id = generate_correlation_id()

    set_correlation_id(correlation_id)
    try:
        yield correlation_id
    finally:
        set_correlation_id(previous_id)


def ensure_correlation_id() -> str:
    """Return the current correlation ID, creating one if the context has none."""
    current_id = get_correlation_id()
    if current_id is None:
        current_id = generate_correlation_id()
        set_correlation_id(current_id)
    return current_id
