"""Text normalization helpers (core domain)."""

from __future__ import annotations

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")

ELLIPSIS = "..."


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text).strip()


def strip_markup(text: str) -> str:
    """Remove HTML tags and decode entities, leaving plain text."""

    return html.unescape(_TAG_RE.sub("", text))


def truncate(text: str, limit: int, marker: str = ELLIPSIS) -> str:
    """Clip ``text`` to ``limit`` characters, appending ``marker`` when clipped."""

    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + marker


def plain_summary(markup: str, limit: int) -> str:
    """Build a bounded plain-text summary from an HTML fragment."""

    return truncate(collapse_whitespace(strip_markup(markup)), limit)
