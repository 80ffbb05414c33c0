"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage, feed and delivery adapters so
that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol

from core.models import Post, PushStatus, SettingsSnapshot, StatusUpdate, Subscription


class PostStorePort(Protocol):
    """Post persistence required by the core pipeline."""

    def existing_ids(self, post_ids: Iterable[int]) -> set[int]:
        ...

    def batch_insert(self, posts: Iterable[Post]) -> int:
        ...

    def batch_update_status(self, updates: Iterable[StatusUpdate]) -> set[int]:
        ...

    def posts_by_status(self, status: PushStatus) -> List[Post]:
        ...

    def get_post(self, post_id: int) -> Optional[Post]:
        ...

    def count_by_status(self) -> dict[int, int]:
        ...


class SubscriptionStorePort(Protocol):
    """Subscription reads; the core never writes subscriptions."""

    def list_subscriptions(self, cached: bool = False) -> List[Subscription]:
        ...

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        ...


class SettingsPort(Protocol):
    """Global settings provider."""

    def get_settings(self, cached: bool = False) -> SettingsSnapshot:
        ...


class FeedSourcePort(Protocol):
    """Retrieves the raw feed payload."""

    async def fetch(self) -> str:
        ...


class NotifierPort(Protocol):
    """Delivery sink for matched posts.

    ``deliver`` returns False for ordinary failures instead of raising.
    """

    async def deliver(self, destination: str, post: Post, subscription: Subscription) -> bool:
        ...

    async def send_text(self, destination: str, text: str) -> bool:
        ...

    async def identity(self) -> Optional[str]:
        ...
