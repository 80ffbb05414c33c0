from __future__ import annotations

import sqlite3

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.errors import PersistenceError, SubscriptionError
from core.models import Post, PushStatus, StatusUpdate
from core.validators import SubscriptionDraft


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "seekwatch.db"))
    storage.init_db()
    return storage


def _post(post_id: int, pub_date: str = "2025-01-06T08:30:00+00:00") -> Post:
    return Post(
        post_id=post_id,
        title=f"post {post_id}",
        summary="short summary",
        category="trade",
        creator="alice",
        pub_date=pub_date,
    )


def test_insert_skips_existing_post_ids(tmp_path) -> None:
    storage = _storage(tmp_path)

    assert storage.batch_insert([_post(1), _post(2)]) == 2
    assert storage.batch_insert([_post(2), _post(3)]) == 1
    assert storage.existing_ids([1, 3, 4]) == {1, 3}

    stored = storage.get_post(1)
    assert stored is not None
    assert stored.summary == "short summary"
    assert stored.push_status == PushStatus.PENDING


def test_existing_ids_handles_large_batches(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.batch_insert(_post(i) for i in range(1, 1201))

    assert len(storage.existing_ids(range(1, 1501))) == 1200


def test_status_update_is_compare_and_set(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.batch_insert([_post(1), _post(2)])

    applied = storage.batch_update_status(
        [
            StatusUpdate(1, PushStatus.PENDING, PushStatus.MATCHED_UNDELIVERED, subscription_id=9),
            StatusUpdate(2, PushStatus.MATCHED_UNDELIVERED, PushStatus.DELIVERED),
        ]
    )

    assert applied == {1}
    assert storage.get_post(1).matched_subscription_id == 9
    assert storage.get_post(2).push_status == PushStatus.PENDING

    storage.batch_update_status(
        [StatusUpdate(1, PushStatus.MATCHED_UNDELIVERED, PushStatus.DELIVERED, delivered_at="2025-01-01T00:00:00+00:00")]
    )
    delivered = storage.get_post(1)
    assert delivered.push_status == PushStatus.DELIVERED
    assert delivered.matched_subscription_id == 9
    assert delivered.delivered_at == "2025-01-01T00:00:00+00:00"


def test_posts_by_status_orders_by_publication(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.batch_insert(
        [
            _post(3, "2025-01-03T00:00:00+00:00"),
            _post(1, "2025-01-05T00:00:00+00:00"),
            _post(2, "2025-01-03T00:00:00+00:00"),
        ]
    )

    assert [post.post_id for post in storage.posts_by_status(PushStatus.PENDING)] == [2, 3, 1]
    assert storage.count_by_status() == {int(PushStatus.PENDING): 3}


def test_cleanup_removes_old_posts(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.batch_insert([_post(1), _post(2)])
    with sqlite3.connect(str(tmp_path / "seekwatch.db")) as conn:
        conn.execute("UPDATE posts SET created_at = '2000-01-01T00:00:00+00:00' WHERE post_id = 1")

    assert storage.cleanup_posts(30) == 1
    assert storage.existing_ids([1, 2]) == {2}


def test_subscriptions_are_listed_newest_first(tmp_path) -> None:
    storage = _storage(tmp_path)
    first = storage.create_subscription(SubscriptionDraft(keyword1="gpu"))
    second = storage.create_subscription(SubscriptionDraft(keyword1="vps"))

    assert [sub.id for sub in storage.list_subscriptions()] == [second.id, first.id]


def test_subscription_keywords_are_compacted(tmp_path) -> None:
    storage = _storage(tmp_path)
    sub = storage.create_subscription(
        SubscriptionDraft(keyword1="  ", keyword2=" gpu ", keyword3="deal", creator=" alice ")
    )

    stored = storage.get_subscription(sub.id)
    assert stored.keyword1 == "gpu"
    assert stored.keyword2 == "deal"
    assert stored.keyword3 is None
    assert stored.creator == "alice"


def test_empty_subscription_is_rejected(tmp_path) -> None:
    storage = _storage(tmp_path)

    with pytest.raises(SubscriptionError):
        storage.create_subscription(SubscriptionDraft(keyword1=" ", creator=""))
    assert storage.list_subscriptions() == []


def test_update_and_delete_subscription(tmp_path) -> None:
    storage = _storage(tmp_path)
    sub = storage.create_subscription(SubscriptionDraft(keyword1="gpu"))

    updated = storage.update_subscription(sub.id, SubscriptionDraft(category="trade"))
    assert updated.keyword1 is None
    assert updated.category == "trade"
    assert storage.update_subscription(999, SubscriptionDraft(keyword1="x")) is None

    assert storage.delete_subscription(sub.id)
    assert not storage.delete_subscription(sub.id)
    assert storage.get_subscription(sub.id) is None


def test_cached_listing_is_refreshed_after_changes(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.create_subscription(SubscriptionDraft(keyword1="gpu"))
    assert len(storage.list_subscriptions(cached=True)) == 1

    storage.create_subscription(SubscriptionDraft(keyword1="vps"))
    assert len(storage.list_subscriptions(cached=True)) == 2


def test_settings_defaults_and_updates(tmp_path) -> None:
    storage = _storage(tmp_path)

    defaults = storage.get_settings()
    assert not defaults.only_title
    assert not defaults.stop_push
    assert defaults.bound_destination is None

    snapshot = storage.update_settings(stop_push=True)
    assert snapshot.stop_push
    assert not snapshot.only_title

    bound = storage.bind_destination("123456", "alice")
    assert bound.bound_destination == "123456"
    assert bound.bound_user_name == "alice"

    unbound = storage.bind_destination(None, "ignored")
    assert unbound.bound_destination is None
    assert unbound.bound_user_name is None
    assert unbound.stop_push


def test_init_db_is_idempotent(tmp_path) -> None:
    storage = _storage(tmp_path)
    storage.update_settings(only_title=True)
    storage.init_db()

    assert storage.get_settings().only_title


def test_read_failures_raise_persistence_error(tmp_path) -> None:
    storage = _storage(tmp_path)
    with sqlite3.connect(str(tmp_path / "seekwatch.db")) as conn:
        conn.execute("DROP TABLE posts")
        conn.execute("DROP TABLE global_settings")

    with pytest.raises(PersistenceError):
        storage.posts_by_status(PushStatus.PENDING)
    with pytest.raises(PersistenceError):
        storage.get_post(1)
    with pytest.raises(PersistenceError):
        storage.get_settings()
