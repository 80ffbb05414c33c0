"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps messages
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from typing import Mapping, Optional

from core.models import Post, Subscription
from core.post_ids import DEFAULT_POST_URL_TEMPLATE, build_post_url

DEFAULT_CATEGORY_NAMES: dict[str, str] = {
    "daily": "Daily",
    "tech": "Tech",
    "info": "Info",
    "review": "Review",
    "trade": "Trade",
    "carpool": "Carpool",
    "promotion": "Promotion",
    "life": "Life",
    "dev": "Dev",
    "photo": "Photo",
    "expose": "Expose",
    "sandbox": "Sandbox",
}

# Markdown link and emphasis syntax swapped for full-width look-alikes.
_MARKDOWN_SAFE = str.maketrans(
    {
        "[": "「",
        "]": "」",
        "(": "（",
        ")": "）",
        "*": "＊",
        "_": "＿",
        "`": "｀",
    }
)


def safe_markdown_text(value: str) -> str:
    """Replace characters that would break a Markdown link or emphasis."""

    return value.translate(_MARKDOWN_SAFE)


def category_label(category: str, category_names: Optional[Mapping[str, str]] = None) -> str:
    names = DEFAULT_CATEGORY_NAMES if category_names is None else category_names
    return names.get(category, category)


def _header_parts(subscription: Subscription, category_names: Optional[Mapping[str, str]]) -> list[str]:
    parts: list[str] = []
    keywords = " ".join(subscription.keywords)
    if keywords:
        parts.append(f"🎯 {keywords}")
    if subscription.creator:
        parts.append(f"👤 {subscription.creator}")
    if subscription.category:
        parts.append(f"🗂️ {category_label(subscription.category, category_names)}")
    return parts


def _format_markdown(
    post: Post,
    subscription: Subscription,
    post_url: str,
    category_names: Optional[Mapping[str, str]],
) -> str:
    """Create the Markdown body; Telegram parses it with parse_mode="Markdown"."""

    header = safe_markdown_text(" ".join(_header_parts(subscription, category_names)))
    title = safe_markdown_text(post.title)
    lines = []
    if header:
        lines.extend([f"*{header}*", ""])
    # Legacy Markdown does not nest entities; the link stays outside bold.
    lines.append(f"[{title}]({post_url})")
    return "\n".join(lines)


def _format_html(
    post: Post,
    subscription: Subscription,
    post_url: str,
    category_names: Optional[Mapping[str, str]],
) -> str:
    """Create the HTML body; Telegram parses it with parse_mode="HTML"."""

    header = html.escape(" ".join(_header_parts(subscription, category_names)))
    title = html.escape(post.title)
    safe_link = html.escape(post_url)
    parts = []
    if header:
        parts.extend([f"<b>{header}</b>", ""])
    parts.append(f"<b><a href=\"{safe_link}\">{title}</a></b>")
    return "\n".join(parts)


def format_notification(
    post: Post,
    subscription: Subscription,
    mode: str = "markdown",
    post_url_template: str = DEFAULT_POST_URL_TEMPLATE,
    category_names: Optional[Mapping[str, str]] = None,
) -> str:
    """Return the notification formatted for the requested mode."""

    post_url = build_post_url(post.post_id, post_url_template)
    if mode == "markdown":
        return _format_markdown(post, subscription, post_url, category_names)
    if mode == "html":
        return _format_html(post, subscription, post_url, category_names)
    raise ValueError(f"Unsupported notification format: {mode}")


def telegram_parse_mode(mode: str) -> str:
    """Map a formatting mode onto the Bot API parse_mode value."""

    if mode == "markdown":
        return "Markdown"
    if mode == "html":
        return "HTML"
    raise ValueError(f"Unsupported notification format: {mode}")
