"""Exceptions raised by the core pipeline and its adapters."""

from __future__ import annotations

from typing import Optional


class SeekwatchError(Exception):
    """Base class for all seekwatch errors."""


class FetchError(SeekwatchError):
    """Transport failure while retrieving the feed.

    ``kind`` is one of ``timeout``, ``network`` or ``http-status``.
    """

    def __init__(self, kind: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status


class ParseError(SeekwatchError):
    """The payload could not be split into entries at all."""


class PersistenceError(SeekwatchError):
    """A store-level failure on insert or update."""


class InvalidTransition(SeekwatchError):
    """A push status change outside the allowed transition table."""


class SubscriptionError(SeekwatchError):
    """A subscription rule was rejected at creation time."""
