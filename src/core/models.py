"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from core.errors import InvalidTransition


class PushStatus(IntEnum):
    """Delivery state of a post. Values are persisted as integers."""

    PENDING = 0
    MATCHED_UNDELIVERED = 1
    NO_MATCH = 2
    DELIVERED = 3


ALLOWED_TRANSITIONS: frozenset[tuple[PushStatus, PushStatus]] = frozenset(
    {
        (PushStatus.PENDING, PushStatus.MATCHED_UNDELIVERED),
        (PushStatus.PENDING, PushStatus.NO_MATCH),
        (PushStatus.MATCHED_UNDELIVERED, PushStatus.DELIVERED),
    }
)


def check_transition(current: PushStatus, target: PushStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is allowed."""

    if (PushStatus(current), PushStatus(target)) not in ALLOWED_TRANSITIONS:
        raise InvalidTransition(
            f"Push status cannot move from {PushStatus(current).name} to {PushStatus(target).name}"
        )


@dataclass(frozen=True)
class FeedEntry:
    """One raw item extracted from the feed payload before normalization."""

    title: str
    link: str
    pub_date: str
    creator: str
    category: str
    description: str
    content: str
    guid: str
    summary: str


@dataclass(frozen=True)
class Post:
    """Normalized, persisted representation of a feed entry."""

    post_id: int
    title: str
    summary: str
    category: str
    creator: str
    pub_date: str
    push_status: PushStatus = PushStatus.PENDING
    matched_subscription_id: Optional[int] = None
    delivered_at: Optional[str] = None


@dataclass(frozen=True)
class Subscription:
    """A stored filter rule: up to three keywords plus creator/category filters."""

    id: int
    keyword1: Optional[str] = None
    keyword2: Optional[str] = None
    keyword3: Optional[str] = None
    creator: Optional[str] = None
    category: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def keywords(self) -> list[str]:
        """Non-empty keyword slots in slot order."""

        slots = (self.keyword1, self.keyword2, self.keyword3)
        return [k.strip() for k in slots if k and k.strip()]


@dataclass(frozen=True)
class SettingsSnapshot:
    """Global settings read once per sweep and threaded through the pipeline."""

    only_title: bool = False
    stop_push: bool = False
    bound_destination: Optional[str] = None
    bound_user_name: Optional[str] = None


@dataclass(frozen=True)
class StatusUpdate:
    """One pending push status change, applied as part of a batch."""

    post_id: int
    expected: PushStatus
    status: PushStatus
    subscription_id: Optional[int] = None
    delivered_at: Optional[str] = None


@dataclass
class CycleReport:
    """Counters for one pipeline cycle."""

    fetched: int = 0
    new: int = 0
    skipped: int = 0
    errors: int = 0
    matched: int = 0
    unmatched: int = 0
    delivered: int = 0
    delivery_failed: int = 0
    delivery_skipped: int = 0

    def summary(self) -> str:
        error_word = "error" if self.errors == 1 else "errors"
        post_word = "post" if self.new == 1 else "posts"
        return (
            f"{self.new} new {post_word}, {self.errors} {error_word}; "
            f"matched {self.matched}, unmatched {self.unmatched}; "
            f"delivered {self.delivered}, failed {self.delivery_failed}, "
            f"held {self.delivery_skipped}"
        )


@dataclass(frozen=True)
class ManualResult:
    """Outcome of an administrative operation, shown to a human."""

    success: bool
    message: str
    report: Optional[CycleReport] = None


@dataclass(frozen=True)
class MatchStats:
    """Post counts per push status plus the subscription count."""

    total_posts: int
    pending: int
    matched_undelivered: int
    no_match: int
    delivered: int
    subscriptions: int
