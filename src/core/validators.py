"""Validation helpers for subscription editing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.errors import SubscriptionError

MAX_FIELD_CHARS = 100


@dataclass
class SubscriptionDraft:
    keyword1: Optional[str] = None
    keyword2: Optional[str] = None
    keyword3: Optional[str] = None
    creator: Optional[str] = None
    category: Optional[str] = None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def normalize_subscription(draft: SubscriptionDraft) -> SubscriptionDraft:
    """Trim fields, compact keywords into leading slots, and reject empty rules.

    A rule with no keyword and no creator/category can never be meaningful, so
    it is refused here rather than at match time.
    """

    keywords = [k for k in (_clean(draft.keyword1), _clean(draft.keyword2), _clean(draft.keyword3)) if k]
    creator = _clean(draft.creator)
    category = _clean(draft.category)

    if not keywords and not creator and not category:
        raise SubscriptionError("At least one keyword, creator or category is required")

    for value in (*keywords, creator, category):
        if value and len(value) > MAX_FIELD_CHARS:
            raise SubscriptionError(f"Value is too long (max {MAX_FIELD_CHARS} chars): {value[:20]}...")

    keywords += [None] * (3 - len(keywords))
    return SubscriptionDraft(
        keyword1=keywords[0],
        keyword2=keywords[1],
        keyword3=keywords[2],
        creator=creator,
        category=category,
    )
