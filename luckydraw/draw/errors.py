"""Exceptions raised by the draw pipeline."""

from __future__ import annotations


class DrawError(Exception):
    """Base class for draw failures surfaced to the caller."""


class IneligibleError(DrawError):
    """The user may not draw right now (rate-limited, blocked, daily cap)."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class EmptyPoolError(DrawError):
    """No prize with stock is configured for the pool.

    This is a configuration error and is never replaced by a default prize.
    """


class PersistenceError(DrawError):
    """The backing store failed while decrementing stock or writing history."""


__all__ = ["DrawError", "EmptyPoolError", "IneligibleError", "PersistenceError"]
