"""Core feed processing pipeline.

This module is integration-agnostic. It only relies on ports for storage,
feed retrieval and delivery, enabling other frontends or adapters without
changes here.

One cycle runs strictly in order:
1) Fetch and parse the feed (retried with backoff as a whole)
2) Dedup against the post store and insert unseen posts as pending
3) Match every pending post against the subscriptions read once for the sweep
4) Commit all status decisions as one batch
5) Deliver the posts that just became matched, pacing the sends
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from core.config import FeedConfig, SchedulerConfig
from core.errors import FetchError, InvalidTransition, ParseError, PersistenceError
from core.feed_parser import normalize_entry, parse_feed
from core.models import (
    CycleReport,
    ManualResult,
    MatchStats,
    Post,
    PushStatus,
    SettingsSnapshot,
    StatusUpdate,
    Subscription,
    check_transition,
)
from core.ports import (
    FeedSourcePort,
    NotifierPort,
    PostStorePort,
    SettingsPort,
    SubscriptionStorePort,
)
from core.retry import linear_backoff, retry_async
from core.rules_engine import build_rules, match_rules

LOGGER = logging.getLogger(__name__)

Delivery = Tuple[Post, Subscription]

TEST_MESSAGE = "Test message: delivery from seekwatch is working."


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class FeedProcessor:
    """Orchestrates fetch, dedup, matching, status updates, and delivery."""

    def __init__(
        self,
        feed: FeedSourcePort,
        posts: PostStorePort,
        subscriptions: SubscriptionStorePort,
        settings: SettingsPort,
        notifier: Optional[NotifierPort],
        feed_config: FeedConfig,
        scheduler_config: SchedulerConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], str] = _utc_now,
    ) -> None:
        self._feed = feed
        self._posts = posts
        self._subscriptions = subscriptions
        self._settings = settings
        self._notifier = notifier
        self._feed_config = feed_config
        self._scheduler_config = scheduler_config
        self._sleep = sleep
        self._clock = clock
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_guarded(self) -> Optional[CycleReport]:
        """Run one cycle unless another is in progress; returns None when skipped."""

        if self._running:
            LOGGER.info("A cycle is already running, skipping")
            return None
        self._running = True
        try:
            return await self.run_cycle()
        finally:
            self._running = False

    async def run_cycle(self) -> CycleReport:
        """Run fetch, ingest, match and delivery once.

        Raises FetchError/ParseError when the feed cannot be read after all
        attempts; nothing has been written at that point.
        """

        report = CycleReport()
        posts = await self.fetch_posts(report)
        self.ingest(posts, report)
        deliveries, settings = self.match_sweep(report)
        await self.delivery_sweep(deliveries, settings, report)

        if self._scheduler_config.retry_undelivered:
            attempted = {post.post_id for post, _ in deliveries}
            await self.redeliver_undelivered(report, exclude=attempted)

        LOGGER.info("Cycle complete: %s", report.summary())
        return report

    async def fetch_posts(self, report: CycleReport) -> List[Post]:
        """Fetch, parse and normalize the feed into pending posts."""

        config = self._feed_config

        async def _attempt():
            payload = await self._feed.fetch()
            return parse_feed(payload, config.summary_chars)

        entries = await retry_async(
            _attempt,
            max_attempts=config.max_attempts,
            backoff=linear_backoff(config.backoff_seconds),
            retry_on=(FetchError, ParseError),
            sleep=self._sleep,
        )
        report.fetched = len(entries)

        posts: List[Post] = []
        seen: set[int] = set()
        for entry in entries:
            post = normalize_entry(entry, config.memo_chars)
            if post is None:
                report.errors += 1
                continue
            # A feed can repeat an item; only the first copy is considered.
            if post.post_id in seen:
                continue
            seen.add(post.post_id)
            posts.append(post)
        LOGGER.info("Fetched %s entries, %s with a usable post id", len(entries), len(posts))
        return posts

    def ingest(self, posts: Iterable[Post], report: CycleReport) -> int:
        """Insert posts whose id is not stored yet; returns the number inserted."""

        posts = list(posts)
        if not posts:
            return 0

        existing = self._posts.existing_ids(post.post_id for post in posts)
        fresh = [post for post in posts if post.post_id not in existing]
        report.skipped += len(posts) - len(fresh)
        if not fresh:
            LOGGER.info("No new posts to store")
            return 0

        inserted = self._posts.batch_insert(fresh)
        report.new += inserted
        report.errors += len(fresh) - inserted
        for post in fresh:
            LOGGER.debug("New post %s: %s", post.post_id, post.title)
        LOGGER.info("Stored %s new posts (%s already known)", inserted, len(existing))
        return inserted

    def _apply_updates(self, updates: List[StatusUpdate]) -> set[int]:
        valid: List[StatusUpdate] = []
        for update in updates:
            try:
                check_transition(update.expected, update.status)
            except InvalidTransition:
                LOGGER.error("Rejected status change for post %s", update.post_id, exc_info=True)
                continue
            valid.append(update)
        if not valid:
            return set()
        applied = self._posts.batch_update_status(valid)
        if len(applied) < len(valid):
            LOGGER.warning("%s status updates did not apply (post changed concurrently)", len(valid) - len(applied))
        return applied

    def match_sweep(self, report: CycleReport) -> Tuple[List[Delivery], SettingsSnapshot]:
        """Classify every pending post and commit the decisions as one batch.

        Returns the (post, subscription) pairs that became matched together
        with the settings snapshot used for the sweep.
        """

        settings = self._settings.get_settings()
        subscriptions = self._subscriptions.list_subscriptions()
        pending = self._posts.posts_by_status(PushStatus.PENDING)
        if not pending:
            return [], settings

        if not subscriptions:
            updates = [
                StatusUpdate(post.post_id, PushStatus.PENDING, PushStatus.NO_MATCH)
                for post in pending
            ]
            try:
                applied = self._apply_updates(updates)
            except PersistenceError:
                LOGGER.exception("Failed to mark %s posts as unmatched", len(updates))
                report.errors += len(updates)
                return [], settings
            report.unmatched += len(applied)
            return [], settings

        rules = build_rules(subscriptions)
        updates: List[StatusUpdate] = []
        candidates: List[Delivery] = []
        for post in pending:
            try:
                matches = match_rules(post, rules, settings)
            except Exception:
                LOGGER.exception("Matching failed for post %s", post.post_id)
                report.errors += 1
                continue

            if not matches:
                updates.append(StatusUpdate(post.post_id, PushStatus.PENDING, PushStatus.NO_MATCH))
                continue

            # First match wins; subscription order is the store's order.
            first = matches[0]
            updates.append(
                StatusUpdate(
                    post.post_id,
                    PushStatus.PENDING,
                    PushStatus.MATCHED_UNDELIVERED,
                    subscription_id=first.subscription.id,
                )
            )
            candidates.append((post, first.subscription))
            LOGGER.info(
                "Post %s matched subscription %s (%s: %s)",
                post.post_id,
                first.subscription.id,
                first.match_type,
                ", ".join(first.matched_keywords) or "filters",
            )

        try:
            applied = self._apply_updates(updates)
        except PersistenceError:
            LOGGER.exception("Failed to commit match decisions for %s posts", len(updates))
            report.errors += len(updates)
            return [], settings

        deliveries = [(post, sub) for post, sub in candidates if post.post_id in applied]
        report.matched += len(deliveries)
        report.unmatched += len(applied) - len(deliveries)
        return deliveries, settings

    def _delivery_ready(self, settings: SettingsSnapshot) -> bool:
        if settings.stop_push:
            LOGGER.info("Push is stopped; matched posts stay undelivered")
            return False
        if self._notifier is None:
            LOGGER.info("No delivery sink configured; matched posts stay undelivered")
            return False
        if not settings.bound_destination:
            LOGGER.info("No chat is bound; matched posts stay undelivered")
            return False
        return True

    def _mark_delivered(self, post: Post, subscription: Subscription) -> bool:
        update = StatusUpdate(
            post.post_id,
            PushStatus.MATCHED_UNDELIVERED,
            PushStatus.DELIVERED,
            subscription_id=subscription.id,
            delivered_at=self._clock(),
        )
        try:
            return post.post_id in self._apply_updates([update])
        except PersistenceError:
            LOGGER.exception("Post %s was delivered but its status could not be saved", post.post_id)
            return False

    async def _deliver_one(self, destination: str, post: Post, subscription: Subscription) -> bool:
        if self._notifier is None:
            return False
        try:
            return bool(await self._notifier.deliver(destination, post, subscription))
        except Exception:
            LOGGER.exception("Delivery sink raised for post %s", post.post_id)
            return False

    async def delivery_sweep(
        self,
        deliveries: List[Delivery],
        settings: SettingsSnapshot,
        report: CycleReport,
    ) -> None:
        """Send each matched post once, pausing after every batch of successes."""

        if not deliveries:
            return
        if not self._delivery_ready(settings):
            report.delivery_skipped += len(deliveries)
            return

        destination = str(settings.bound_destination)
        batch_size = max(1, self._scheduler_config.delivery_batch_size)
        for post, subscription in deliveries:
            if not await self._deliver_one(destination, post, subscription):
                report.delivery_failed += 1
                LOGGER.warning("Delivery failed for post %s; it stays undelivered", post.post_id)
                continue

            report.delivered += 1
            self._mark_delivered(post, subscription)
            if report.delivered % batch_size == 0:
                await self._sleep(self._scheduler_config.delivery_pause_seconds)

        LOGGER.info("Delivery: %s sent, %s failed", report.delivered, report.delivery_failed)

    async def redeliver_undelivered(
        self,
        report: Optional[CycleReport] = None,
        exclude: Iterable[int] = (),
    ) -> CycleReport:
        """Retry delivery for every post left matched but undelivered."""

        report = report if report is not None else CycleReport()
        excluded = set(exclude)
        settings = self._settings.get_settings()
        stuck = [
            post
            for post in self._posts.posts_by_status(PushStatus.MATCHED_UNDELIVERED)
            if post.post_id not in excluded
        ]
        if not stuck:
            return report

        deliveries: List[Delivery] = []
        for post in stuck:
            subscription = None
            if post.matched_subscription_id is not None:
                subscription = self._subscriptions.get_subscription(post.matched_subscription_id)
            if subscription is None:
                LOGGER.warning("Post %s lost its subscription; skipping redelivery", post.post_id)
                report.delivery_skipped += 1
                continue
            deliveries.append((post, subscription))

        LOGGER.info("Retrying delivery for %s undelivered posts", len(deliveries))
        await self.delivery_sweep(deliveries, settings, report)
        return report

    async def manual_fetch(self) -> ManualResult:
        """Run one cycle on demand and describe the outcome."""

        try:
            report = await self.run_guarded()
        except (FetchError, ParseError) as exc:
            return ManualResult(False, f"Feed update failed: {exc}")
        except PersistenceError as exc:
            return ManualResult(False, f"Storage failure: {exc}")
        if report is None:
            return ManualResult(False, "A cycle is already running, try again later")
        return ManualResult(True, f"Feed updated: {report.summary()}", report)

    async def manual_retry(self) -> ManualResult:
        if self._running:
            return ManualResult(False, "A cycle is already running, try again later")
        self._running = True
        try:
            report = await self.redeliver_undelivered()
        except PersistenceError as exc:
            return ManualResult(False, f"Storage failure: {exc}")
        finally:
            self._running = False
        return ManualResult(
            report.delivery_failed == 0,
            f"Redelivery: {report.delivered} sent, {report.delivery_failed} failed, "
            f"{report.delivery_skipped} held",
            report,
        )

    async def manual_push(self, post_id: int, subscription_id: int) -> ManualResult:
        """Deliver one (post, subscription) pair outside the periodic sweep.

        Push gating still applies: a stopped push or an unbound chat refuses
        the request instead of sending.
        """

        try:
            return await self._push_one(post_id, subscription_id)
        except PersistenceError as exc:
            return ManualResult(False, f"Storage failure: {exc}")

    async def _push_one(self, post_id: int, subscription_id: int) -> ManualResult:
        if self._notifier is None:
            return ManualResult(False, "Delivery is not configured")
        post = self._posts.get_post(post_id)
        if post is None:
            return ManualResult(False, f"Post {post_id} does not exist")
        subscription = self._subscriptions.get_subscription(subscription_id)
        if subscription is None:
            return ManualResult(False, f"Subscription {subscription_id} does not exist")

        settings = self._settings.get_settings()
        if settings.stop_push:
            return ManualResult(False, "Push is stopped")
        if not settings.bound_destination:
            return ManualResult(False, "No chat is bound")

        if not await self._deliver_one(str(settings.bound_destination), post, subscription):
            return ManualResult(False, "Delivery failed")

        if post.push_status == PushStatus.MATCHED_UNDELIVERED:
            self._mark_delivered(post, subscription)
        else:
            LOGGER.info(
                "Post %s sent manually; status %s left unchanged",
                post_id,
                PushStatus(post.push_status).name,
            )
        return ManualResult(True, "Delivered")

    async def check_delivery(self) -> ManualResult:
        """Report whether the delivery sink can authenticate."""

        if self._notifier is None:
            return ManualResult(False, "Delivery is not configured")
        identity = await self._notifier.identity()
        if not identity:
            return ManualResult(False, "Delivery sink is unreachable or the credential was rejected")
        return ManualResult(True, f"Connected as {identity}")

    async def send_test_message(self, text: Optional[str] = None) -> ManualResult:
        if self._notifier is None:
            return ManualResult(False, "Delivery is not configured")
        try:
            settings = self._settings.get_settings()
        except PersistenceError as exc:
            return ManualResult(False, f"Storage failure: {exc}")
        if not settings.bound_destination:
            return ManualResult(False, "No chat is bound")
        ok = await self._notifier.send_text(str(settings.bound_destination), text or TEST_MESSAGE)
        return ManualResult(ok, "Test message sent" if ok else "Test message failed")

    def match_stats(self) -> MatchStats:
        counts = self._posts.count_by_status()
        return MatchStats(
            total_posts=sum(counts.values()),
            pending=counts.get(int(PushStatus.PENDING), 0),
            matched_undelivered=counts.get(int(PushStatus.MATCHED_UNDELIVERED), 0),
            no_match=counts.get(int(PushStatus.NO_MATCH), 0),
            delivered=counts.get(int(PushStatus.DELIVERED), 0),
            subscriptions=len(self._subscriptions.list_subscriptions(cached=True)),
        )
