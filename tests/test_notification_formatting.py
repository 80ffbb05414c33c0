from __future__ import annotations

import asyncio

import pytest

from adapters.notification_formatting import (
    category_label,
    format_notification,
    safe_markdown_text,
    telegram_parse_mode,
)
from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.models import Post, Subscription


def _post(title: str, post_id: int = 101) -> Post:
    return Post(
        post_id=post_id,
        title=title,
        summary="",
        category="trade",
        creator="alice2024",
        pub_date="2025-01-06T08:30:00+00:00",
    )


def test_markdown_title_is_neutralized() -> None:
    text = format_notification(_post("Free (RTX) [deal]"), Subscription(id=1, keyword1="RTX"))

    assert "Free （RTX） 「deal」" in text
    assert text.splitlines()[-1] == "[Free （RTX） 「deal」](https://www.nodeseek.com/post-101-1)"
    assert text.splitlines()[0] == "*🎯 RTX*"


def test_markdown_header_lists_all_rule_parts() -> None:
    sub = Subscription(id=1, keyword1="gpu", keyword2="deal", creator="alice", category="trade")

    header = format_notification(_post("x"), sub).splitlines()[0]

    assert header == "*🎯 gpu deal 👤 alice 🗂️ Trade*"


def test_html_escapes_title_and_uses_link() -> None:
    text = format_notification(
        _post("Tom & <Jerry>"),
        Subscription(id=1, category="trade"),
        mode="html",
        category_names={"trade": "Marketplace"},
    )

    assert "<b>🗂️ Marketplace</b>" in text
    assert 'href="https://www.nodeseek.com/post-101-1"' in text
    assert "Tom &amp; &lt;Jerry&gt;" in text


def test_custom_post_url_template() -> None:
    text = format_notification(
        _post("x", post_id=7),
        Subscription(id=1, keyword1="x"),
        post_url_template="https://forum.example/t/{post_id}",
    )

    assert "(https://forum.example/t/7)" in text


def test_helpers() -> None:
    assert safe_markdown_text("a_b*c`d") == "a＿b＊c｀d"
    assert category_label("unknown") == "unknown"
    assert telegram_parse_mode("html") == "HTML"
    with pytest.raises(ValueError):
        format_notification(_post("x"), Subscription(id=1, keyword1="x"), mode="plain")


class RecordingBotNotifier(TelegramBotNotifier):
    def __init__(self, result=True, **kwargs) -> None:
        super().__init__("123:token", **kwargs)
        self.calls: list[tuple[str, dict]] = []
        self._result = result

    def _call(self, method, payload=None):
        self.calls.append((method, payload or {}))
        return self._result


def test_bot_notifier_sends_markdown_message() -> None:
    notifier = RecordingBotNotifier()

    ok = asyncio.run(notifier.deliver("42", _post("GPU"), Subscription(id=1, keyword1="gpu")))

    assert ok
    method, payload = notifier.calls[0]
    assert method == "sendMessage"
    assert payload["chat_id"] == "42"
    assert payload["parse_mode"] == "Markdown"
    assert payload["disable_web_page_preview"] is True


def test_bot_notifier_reports_failures() -> None:
    notifier = RecordingBotNotifier(result=None)

    assert not asyncio.run(notifier.deliver("42", _post("GPU"), Subscription(id=1, keyword1="gpu")))
    assert asyncio.run(notifier.identity()) is None


def test_bot_notifier_identity() -> None:
    notifier = RecordingBotNotifier(result={"id": 5, "username": "seekwatch_bot"})

    assert asyncio.run(notifier.identity()) == "@seekwatch_bot (5)"
    assert notifier._endpoint("getMe") == "https://api.telegram.org/bot123:token/getMe"
