from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.errors import ParseError
from core.feed_parser import normalize_entry, parse_feed, parse_pub_date
from core.models import PushStatus

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
<channel>
  <title>NodeSeek</title>
  <item>
    <title><![CDATA[Cheap   GPU
      deal]]></title>
    <link>https://www.nodeseek.com/post-101-1</link>
    <pubDate>Mon, 06 Jan 2025 08:30:00 GMT</pubDate>
    <dc:creator><![CDATA[alice2024]]></dc:creator>
    <category><![CDATA[trade]]></category>
    <description><![CDATA[<p>RTX 4090 for <b>cheap</b></p>]]></description>
    <guid>https://www.nodeseek.com/post-101-1</guid>
  </item>
  <item>
    <title>Tom &amp; Jerry VPS</title>
    <link>https://www.nodeseek.com/thread?id=202</link>
    <pubDate>not a date</pubDate>
    <dc:creator>bob</dc:creator>
    <category>info</category>
    <description>plain text</description>
  </item>
</channel>
</rss>
"""


def test_parse_feed_extracts_items_and_unwraps_cdata() -> None:
    entries = parse_feed(FEED)

    assert len(entries) == 2
    first = entries[0]
    assert first.link == "https://www.nodeseek.com/post-101-1"
    assert first.creator == "alice2024"
    assert first.category == "trade"
    assert first.summary == "RTX 4090 for cheap"
    # The channel title must not leak into an item.
    assert "NodeSeek" not in first.title
    assert entries[1].title == "Tom & Jerry VPS"


def test_summary_is_truncated_with_ellipsis() -> None:
    payload = f"<rss><item><title>t</title><description>{'a' * 250}</description></item></rss>"

    entry = parse_feed(payload, summary_chars=200)[0]

    assert entry.summary == "a" * 200 + "..."


def test_empty_channel_is_not_an_error() -> None:
    assert parse_feed("<rss><channel><title>x</title></channel></rss>") == []


def test_payload_without_markup_is_a_parse_error() -> None:
    with pytest.raises(ParseError):
        parse_feed("Service Unavailable")


def test_unterminated_items_are_a_parse_error() -> None:
    with pytest.raises(ParseError):
        parse_feed("<rss><item><title>cut off")


def test_normalize_entry_builds_pending_post() -> None:
    entry = parse_feed(FEED)[0]

    post = normalize_entry(entry)

    assert post is not None
    assert post.post_id == 101
    assert post.title == "Cheap GPU deal"
    assert post.pub_date == "2025-01-06T08:30:00+00:00"
    assert post.push_status == PushStatus.PENDING
    assert post.matched_subscription_id is None


def test_normalize_entry_uses_query_id_and_ingestion_time_fallback() -> None:
    entry = parse_feed(FEED)[1]
    now = datetime(2025, 2, 1, 12, 0, tzinfo=timezone.utc)

    post = normalize_entry(entry, now=now)

    assert post is not None
    assert post.post_id == 202
    assert post.pub_date == now.isoformat()


def test_normalize_entry_drops_entries_without_id() -> None:
    payload = "<rss><item><title>x</title><link>https://example.com/about</link></item></rss>"

    assert normalize_entry(parse_feed(payload)[0]) is None


def test_parse_pub_date_converts_offsets_to_utc() -> None:
    assert parse_pub_date("Mon, 06 Jan 2025 16:30:00 +0800") == "2025-01-06T08:30:00+00:00"
    assert parse_pub_date("2025-01-06T08:30:00Z") == "2025-01-06T08:30:00+00:00"
