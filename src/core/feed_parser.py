"""Tag-level feed parsing (core domain).

This is deliberately not a full RSS/Atom parser. The payload is treated as
text: ``<item>`` regions are cut out with regular expressions and a handful
of child tags are read from each region. Malformed markup around one item
does not prevent the others from being read.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional

from core.errors import ParseError
from core.models import FeedEntry, Post, PushStatus
from core.post_ids import extract_post_id
from core.text import collapse_whitespace, plain_summary, strip_markup, truncate

LOGGER = logging.getLogger(__name__)

_ITEM_RE = re.compile(r"<item(?:\s[^>]*)?>([\s\S]*?)</item>", re.IGNORECASE)
_ITEM_OPEN_RE = re.compile(r"<item(?:\s[^>]*)?>", re.IGNORECASE)
_CDATA_RE = re.compile(r"<!\[CDATA\[([\s\S]*?)\]\]>")
_LINK_HREF_RE = re.compile(r"<link\b[^>]*\bhref=[\"']([^\"']+)[\"']", re.IGNORECASE)


def _tag_content(region: str, tag: str) -> str:
    pattern = re.compile(
        rf"<{re.escape(tag)}(?:\s[^>]*)?>([\s\S]*?)</{re.escape(tag)}>",
        re.IGNORECASE,
    )
    match = pattern.search(region)
    return match.group(1).strip() if match else ""


def _unwrap(text: str) -> str:
    """Return CDATA contents when wrapped, otherwise entity-decoded text."""

    match = _CDATA_RE.search(text)
    if match:
        return match.group(1)
    return html.unescape(text)


def _first_tag(region: str, tags: Iterable[str]) -> str:
    for tag in tags:
        value = _tag_content(region, tag)
        if value:
            return value
    return ""


def _parse_item(region: str, summary_chars: int) -> FeedEntry:
    title = _unwrap(_tag_content(region, "title"))
    link = _unwrap(_tag_content(region, "link"))
    if not link:
        href = _LINK_HREF_RE.search(region)
        link = href.group(1) if href else ""
    pub_date = _unwrap(_first_tag(region, ("pubDate", "dc:date", "published", "updated")))
    creator = _unwrap(_first_tag(region, ("dc:creator", "author")))
    category = _unwrap(_tag_content(region, "category"))
    description = _unwrap(_tag_content(region, "description"))
    content = _unwrap(_tag_content(region, "content:encoded")) or description
    guid = _unwrap(_tag_content(region, "guid")) or link

    return FeedEntry(
        title=title,
        link=link.strip(),
        pub_date=pub_date.strip(),
        creator=creator,
        category=category,
        description=description,
        content=content,
        guid=guid.strip(),
        summary=plain_summary(description, summary_chars),
    )


def parse_feed(payload: str, summary_chars: int = 200) -> List[FeedEntry]:
    """Split a feed payload into raw entries.

    Zero entries is a valid result. ParseError is raised only when the payload
    is not markup at all, or when item openings exist but no complete item
    region can be cut out.
    """

    if not payload or "<" not in payload:
        raise ParseError("Feed payload contains no markup")

    entries = [_parse_item(match.group(1), summary_chars) for match in _ITEM_RE.finditer(payload)]
    if not entries and _ITEM_OPEN_RE.search(payload):
        raise ParseError("Feed payload has unterminated <item> regions")
    return entries


def parse_pub_date(raw: str, now: Optional[datetime] = None) -> str:
    """Normalize a feed date to a UTC ISO-8601 string.

    Falls back to ``now`` (ingestion time) when the value is unparseable.
    """

    parsed: Optional[datetime] = None
    raw = (raw or "").strip()
    if raw:
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError, IndexError):
            try:
                parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            except ValueError:
                parsed = None

    if parsed is None:
        parsed = now or datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def normalize_entry(
    entry: FeedEntry,
    memo_chars: int = 500,
    now: Optional[datetime] = None,
) -> Optional[Post]:
    """Turn a raw entry into a pending Post, or None when no id can be derived."""

    post_id = extract_post_id(entry.link) or extract_post_id(entry.guid)
    if post_id is None:
        LOGGER.warning("Dropping entry without a post id: %r", entry.link or entry.title)
        return None

    body = entry.summary or strip_markup(entry.content)
    return Post(
        post_id=post_id,
        title=collapse_whitespace(entry.title),
        summary=truncate(collapse_whitespace(strip_markup(body)), memo_chars, marker=""),
        category=entry.category.strip(),
        creator=entry.creator.strip(),
        pub_date=parse_pub_date(entry.pub_date, now),
        push_status=PushStatus.PENDING,
    )
