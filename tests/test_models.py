from __future__ import annotations

import pytest

from core.errors import InvalidTransition, SubscriptionError
from core.models import CycleReport, PushStatus, Subscription, check_transition
from core.validators import SubscriptionDraft, normalize_subscription


@pytest.mark.parametrize(
    "current,target",
    [
        (PushStatus.PENDING, PushStatus.MATCHED_UNDELIVERED),
        (PushStatus.PENDING, PushStatus.NO_MATCH),
        (PushStatus.MATCHED_UNDELIVERED, PushStatus.DELIVERED),
    ],
)
def test_allowed_transitions(current, target) -> None:
    check_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (PushStatus.DELIVERED, PushStatus.PENDING),
        (PushStatus.NO_MATCH, PushStatus.MATCHED_UNDELIVERED),
        (PushStatus.PENDING, PushStatus.DELIVERED),
        (PushStatus.MATCHED_UNDELIVERED, PushStatus.NO_MATCH),
        (PushStatus.DELIVERED, PushStatus.DELIVERED),
    ],
)
def test_rejected_transitions(current, target) -> None:
    with pytest.raises(InvalidTransition):
        check_transition(current, target)


def test_status_values_are_stable() -> None:
    assert [int(status) for status in PushStatus] == [0, 1, 2, 3]


def test_subscription_keywords_skip_blank_slots() -> None:
    sub = Subscription(id=1, keyword1="gpu", keyword2="  ", keyword3=" deal ")
    assert sub.keywords == ["gpu", "deal"]


def test_report_summary() -> None:
    report = CycleReport(new=2, errors=1, matched=1)
    assert report.summary().startswith("2 new posts, 1 error; matched 1")


def test_overlong_subscription_value_is_rejected() -> None:
    with pytest.raises(SubscriptionError):
        normalize_subscription(SubscriptionDraft(keyword1="x" * 101))
