"""SQLite storage adapter.

Implements the core post, subscription and settings ports using a simple
SQLite database.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional

from core.errors import PersistenceError
from core.models import Post, PushStatus, SettingsSnapshot, StatusUpdate, Subscription
from core.validators import SubscriptionDraft, normalize_subscription

LOGGER = logging.getLogger(__name__)

# SQLite caps bound parameters per statement; IN lookups are chunked below it.
_IN_CHUNK = 500

SUBSCRIPTIONS_TTL = 60.0
SETTINGS_TTL = 120.0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core storage ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        # Read-through cache for display paths only; the processor always
        # reads fresh.
        self._cache: dict[str, tuple[float, Any]] = {}

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _cached(self, key: str) -> Optional[Any]:
        hit = self._cache.get(key)
        if hit and hit[0] > time.monotonic():
            return hit[1]
        return None

    def _remember(self, key: str, value: Any, ttl: float) -> None:
        self._cache[key] = (time.monotonic() + ttl, value)

    def _invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    def _select(self, query: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        """Run a read query; store failures surface as PersistenceError."""

        try:
            with self._connect() as conn:
                return conn.execute(query, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Read failed: {exc}") from exc

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - posts: one row per feed entry, keyed by the external post_id
        - keyword_subs: subscription rules
        - global_settings: a single row of push switches and the bound chat
        """

        with self._connect() as conn:
            # push_status: 0 pending, 1 matched but undelivered, 2 no match,
            # 3 delivered. sub_id is the subscription that won the match.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    post_id INTEGER NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    memo TEXT NOT NULL DEFAULT '',
                    category TEXT NOT NULL DEFAULT '',
                    creator TEXT NOT NULL DEFAULT '',
                    push_status INTEGER NOT NULL DEFAULT 0,
                    sub_id INTEGER,
                    pub_date TEXT NOT NULL,
                    push_date TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS ix_posts_push_status ON posts(push_status)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS keyword_subs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    keyword1 TEXT,
                    keyword2 TEXT,
                    keyword3 TEXT,
                    creator TEXT,
                    category TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS global_settings (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    only_title INTEGER NOT NULL DEFAULT 0,
                    stop_push INTEGER NOT NULL DEFAULT 0,
                    chat_id TEXT,
                    bound_user_name TEXT,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "INSERT OR IGNORE INTO global_settings (id, updated_at) VALUES (1, ?)",
                (_now(),),
            )

    # Posts

    @staticmethod
    def _row_to_post(row: sqlite3.Row) -> Post:
        return Post(
            post_id=int(row["post_id"]),
            title=row["title"],
            summary=row["memo"],
            category=row["category"],
            creator=row["creator"],
            pub_date=row["pub_date"],
            push_status=PushStatus(row["push_status"]),
            matched_subscription_id=row["sub_id"],
            delivered_at=row["push_date"],
        )

    def existing_ids(self, post_ids: Iterable[int]) -> set[int]:
        """Return the subset of ``post_ids`` already stored."""

        ids = list(dict.fromkeys(int(post_id) for post_id in post_ids))
        found: set[int] = set()
        try:
            with self._connect() as conn:
                for start in range(0, len(ids), _IN_CHUNK):
                    chunk = ids[start:start + _IN_CHUNK]
                    placeholders = ",".join("?" for _ in chunk)
                    rows = conn.execute(
                        f"SELECT post_id FROM posts WHERE post_id IN ({placeholders})",
                        chunk,
                    ).fetchall()
                    found.update(int(row["post_id"]) for row in rows)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Existence check failed: {exc}") from exc
        return found

    def batch_insert(self, posts: Iterable[Post]) -> int:
        """Insert posts in one transaction and return how many were stored.

        A post_id that already exists is skipped silently; any other per-row
        failure is logged and counted as not inserted.
        """

        inserted = 0
        created_at = _now()
        try:
            with self._connect() as conn:
                for post in posts:
                    try:
                        cur = conn.execute(
                            """
                            INSERT OR IGNORE INTO posts (
                                post_id, title, memo, category, creator,
                                push_status, sub_id, pub_date, push_date, created_at
                            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                            """,
                            (
                                post.post_id,
                                post.title,
                                post.summary,
                                post.category,
                                post.creator,
                                int(post.push_status),
                                post.matched_subscription_id,
                                post.pub_date,
                                post.delivered_at,
                                created_at,
                            ),
                        )
                    except sqlite3.Error:
                        LOGGER.exception("Failed to insert post %s", post.post_id)
                        continue
                    inserted += cur.rowcount
        except sqlite3.Error as exc:
            raise PersistenceError(f"Batch insert failed: {exc}") from exc
        return inserted

    def batch_update_status(self, updates: Iterable[StatusUpdate]) -> set[int]:
        """Apply status changes atomically; returns the post_ids that changed.

        Each row only changes if it is still in the expected status, so a
        concurrent writer cannot be overwritten.
        """

        applied: set[int] = set()
        try:
            with self._connect() as conn:
                for update in updates:
                    cur = conn.execute(
                        """
                        UPDATE posts
                        SET push_status = ?, sub_id = COALESCE(?, sub_id), push_date = COALESCE(?, push_date)
                        WHERE post_id = ? AND push_status = ?
                        """,
                        (
                            int(update.status),
                            update.subscription_id,
                            update.delivered_at,
                            update.post_id,
                            int(update.expected),
                        ),
                    )
                    if cur.rowcount:
                        applied.add(update.post_id)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Batch status update failed: {exc}") from exc
        return applied

    def posts_by_status(self, status: PushStatus) -> List[Post]:
        rows = self._select(
            "SELECT * FROM posts WHERE push_status = ? ORDER BY pub_date ASC, post_id ASC",
            (int(status),),
        )
        return [self._row_to_post(row) for row in rows]

    def get_post(self, post_id: int) -> Optional[Post]:
        rows = self._select("SELECT * FROM posts WHERE post_id = ?", (post_id,))
        return self._row_to_post(rows[0]) if rows else None

    def recent_posts(self, limit: int = 10) -> List[Post]:
        rows = self._select("SELECT * FROM posts ORDER BY pub_date DESC LIMIT ?", (limit,))
        return [self._row_to_post(row) for row in rows]

    def count_by_status(self) -> dict[int, int]:
        rows = self._select("SELECT push_status, COUNT(*) AS total FROM posts GROUP BY push_status")
        return {int(row["push_status"]): int(row["total"]) for row in rows}

    def cleanup_posts(self, retention_days: int) -> int:
        """Delete posts stored more than ``retention_days`` ago; returns the count."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM posts WHERE created_at < ?",
                (cutoff.isoformat(),),
            )
            return cur.rowcount

    # Subscriptions

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> Subscription:
        return Subscription(
            id=int(row["id"]),
            keyword1=row["keyword1"],
            keyword2=row["keyword2"],
            keyword3=row["keyword3"],
            creator=row["creator"],
            category=row["category"],
            created_at=row["created_at"],
        )

    def list_subscriptions(self, cached: bool = False) -> List[Subscription]:
        """Return subscriptions, most recently created first.

        This order decides which subscription wins when several match a post.
        Ties on created_at fall back to the higher id.
        """

        if cached:
            hit = self._cached("subscriptions")
            if hit is not None:
                return list(hit)

        rows = self._select("SELECT * FROM keyword_subs ORDER BY created_at DESC, id DESC")
        subscriptions = [self._row_to_subscription(row) for row in rows]
        self._remember("subscriptions", subscriptions, SUBSCRIPTIONS_TTL)
        return subscriptions

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        rows = self._select("SELECT * FROM keyword_subs WHERE id = ?", (subscription_id,))
        return self._row_to_subscription(rows[0]) if rows else None

    def create_subscription(self, draft: SubscriptionDraft) -> Subscription:
        """Validate and store a subscription. Raises SubscriptionError when empty."""

        clean = normalize_subscription(draft)
        now = _now()
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO keyword_subs (keyword1, keyword2, keyword3, creator, category, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (clean.keyword1, clean.keyword2, clean.keyword3, clean.creator, clean.category, now, now),
            )
            subscription_id = int(cur.lastrowid)
        self._invalidate("subscriptions")
        LOGGER.info("Created subscription %s", subscription_id)
        return Subscription(
            id=subscription_id,
            keyword1=clean.keyword1,
            keyword2=clean.keyword2,
            keyword3=clean.keyword3,
            creator=clean.creator,
            category=clean.category,
            created_at=now,
        )

    def update_subscription(self, subscription_id: int, draft: SubscriptionDraft) -> Optional[Subscription]:
        clean = normalize_subscription(draft)
        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE keyword_subs
                SET keyword1 = ?, keyword2 = ?, keyword3 = ?, creator = ?, category = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    clean.keyword1,
                    clean.keyword2,
                    clean.keyword3,
                    clean.creator,
                    clean.category,
                    _now(),
                    subscription_id,
                ),
            )
        self._invalidate("subscriptions")
        if not cur.rowcount:
            return None
        return self.get_subscription(subscription_id)

    def delete_subscription(self, subscription_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM keyword_subs WHERE id = ?", (subscription_id,))
        self._invalidate("subscriptions")
        return cur.rowcount > 0

    # Global settings

    def get_settings(self, cached: bool = False) -> SettingsSnapshot:
        if cached:
            hit = self._cached("settings")
            if hit is not None:
                return hit

        rows = self._select("SELECT * FROM global_settings WHERE id = 1")
        if not rows:
            snapshot = SettingsSnapshot()
        else:
            row = rows[0]
            snapshot = SettingsSnapshot(
                only_title=bool(row["only_title"]),
                stop_push=bool(row["stop_push"]),
                bound_destination=row["chat_id"] or None,
                bound_user_name=row["bound_user_name"],
            )
        self._remember("settings", snapshot, SETTINGS_TTL)
        return snapshot

    def update_settings(
        self,
        only_title: Optional[bool] = None,
        stop_push: Optional[bool] = None,
    ) -> SettingsSnapshot:
        fields: list[str] = []
        values: list[Any] = []
        if only_title is not None:
            fields.append("only_title = ?")
            values.append(int(only_title))
        if stop_push is not None:
            fields.append("stop_push = ?")
            values.append(int(stop_push))
        if fields:
            fields.append("updated_at = ?")
            values.append(_now())
            with self._connect() as conn:
                conn.execute(f"UPDATE global_settings SET {', '.join(fields)} WHERE id = 1", values)
            self._invalidate("settings")
        return self.get_settings()

    def bind_destination(self, chat_id: Optional[str], user_name: Optional[str] = None) -> SettingsSnapshot:
        """Bind (or with ``None``, unbind) the delivery chat."""

        with self._connect() as conn:
            conn.execute(
                "UPDATE global_settings SET chat_id = ?, bound_user_name = ?, updated_at = ? WHERE id = 1",
                (chat_id, user_name if chat_id else None, _now()),
            )
        self._invalidate("settings")
        return self.get_settings()
