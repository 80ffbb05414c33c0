"""Telegram client notification adapter.

Sends through a Telethon client (signed in with the bot token) instead of the
plain HTTP Bot API. Messages always use the HTML format because Telethon's
Markdown dialect differs from the Bot API one.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from adapters.notification_formatting import format_notification
from core.models import Post, Subscription
from core.post_ids import DEFAULT_POST_URL_TEMPLATE

LOGGER = logging.getLogger(__name__)


def _peer(destination: str):
    # Numeric chat ids must be passed as int for Telethon to resolve them.
    text = str(destination).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return text


class TelegramClientNotifier:
    """Notifier adapter that sends messages with a connected Telethon client."""

    def __init__(
        self,
        client,
        post_url_template: str = DEFAULT_POST_URL_TEMPLATE,
        category_names: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._client = client
        self._post_url_template = post_url_template
        self._category_names = category_names

    async def deliver(self, destination: str, post: Post, subscription: Subscription) -> bool:
        message = format_notification(
            post,
            subscription,
            mode="html",
            post_url_template=self._post_url_template,
            category_names=self._category_names,
        )
        try:
            await self._client.send_message(
                _peer(destination), message, parse_mode="html", link_preview=False
            )
        except Exception as exc:
            LOGGER.error("Telegram client failed to deliver post %s: %s", post.post_id, exc)
            return False
        LOGGER.info("Delivered post %s to %s", post.post_id, destination)
        return True

    async def send_text(self, destination: str, text: str) -> bool:
        try:
            await self._client.send_message(_peer(destination), text, parse_mode=None)
        except Exception as exc:
            LOGGER.error("Telegram client failed to send text: %s", exc)
            return False
        return True

    async def identity(self) -> Optional[str]:
        try:
            me = await self._client.get_me()
        except Exception as exc:
            LOGGER.error("Telegram client get_me failed: %s", exc)
            return None
        if me is None:
            return None
        username = getattr(me, "username", None) or getattr(me, "first_name", None) or "account"
        return f"@{username} ({getattr(me, 'id', '?')})"
