"""Telegram Bot API notification adapter.

Uses the Bot API for delivery so notifications are routed to the bound chat.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Mapping, Optional

from adapters.notification_formatting import format_notification, telegram_parse_mode
from core.models import Post, Subscription
from core.post_ids import DEFAULT_POST_URL_TEMPLATE

LOGGER = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


class TelegramBotNotifier:
    """Notifier adapter that sends messages via the Telegram Bot API."""

    def __init__(
        self,
        bot_token: str,
        mode: str = "markdown",
        post_url_template: str = DEFAULT_POST_URL_TEMPLATE,
        category_names: Optional[Mapping[str, str]] = None,
        timeout: float = 10.0,
        api_base: str = API_BASE,
    ) -> None:
        self._bot_token = bot_token
        self._mode = mode
        self._post_url_template = post_url_template
        self._category_names = category_names
        self._timeout = timeout
        self._api_base = api_base.rstrip("/")

    def _endpoint(self, method: str) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"{self._api_base}/bot{self._bot_token}/{method}"

    def _call(self, method: str, payload: Optional[dict] = None) -> Optional[Any]:
        """POST one Bot API call; returns ``result`` or None on any failure."""

        data = json.dumps(payload or {}).encode("utf-8")
        request = urllib.request.Request(self._endpoint(method), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            LOGGER.error("Bot API %s failed with HTTP %s: %s", method, exc.code, detail)
            return None
        except (urllib.error.URLError, OSError, ValueError) as exc:
            LOGGER.error("Bot API %s failed: %s", method, exc)
            return None

        if not body.get("ok"):
            LOGGER.error("Bot API %s rejected: %s", method, body.get("description"))
            return None
        return body.get("result")

    def _send(self, destination: str, text: str, parse_mode: Optional[str]) -> bool:
        payload: dict[str, Any] = {
            "chat_id": destination,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        return self._call("sendMessage", payload) is not None

    def format(self, post: Post, subscription: Subscription) -> str:
        return format_notification(
            post,
            subscription,
            mode=self._mode,
            post_url_template=self._post_url_template,
            category_names=self._category_names,
        )

    async def deliver(self, destination: str, post: Post, subscription: Subscription) -> bool:
        """Send the formatted notification for a matched post."""

        message = self.format(post, subscription)
        parse_mode = telegram_parse_mode(self._mode)
        ok = await asyncio.to_thread(self._send, destination, message, parse_mode)
        if ok:
            LOGGER.info("Delivered post %s to %s", post.post_id, destination)
        return ok

    async def send_text(self, destination: str, text: str) -> bool:
        return await asyncio.to_thread(self._send, destination, text, None)

    async def identity(self) -> Optional[str]:
        """Return ``@username (id)`` for the bot, or None when getMe fails."""

        result = await asyncio.to_thread(self._call, "getMe")
        if not result:
            return None
        username = result.get("username") or result.get("first_name") or "bot"
        return f"@{username} ({result.get('id')})"
