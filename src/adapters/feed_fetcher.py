"""HTTP feed retrieval adapter.

Fetches the raw feed text with urllib, optionally through a proxy, and maps
transport problems onto FetchError kinds.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import socket
import urllib.error
import urllib.request
from typing import Optional

from core.config import FeedConfig
from core.errors import FetchError

LOGGER = logging.getLogger(__name__)

ACCEPT = "application/rss+xml,application/xml;q=0.9,text/xml;q=0.8,*/*;q=0.5"


def _is_timeout(reason: object) -> bool:
    return isinstance(reason, (socket.timeout, TimeoutError))


def _usable_charset(charset: Optional[str]) -> str:
    if not charset:
        return "utf-8"
    try:
        codecs.lookup(charset)
    except LookupError:
        LOGGER.warning("Unknown feed charset %r, decoding as utf-8", charset)
        return "utf-8"
    return charset


class HttpFeedFetcher:
    """Feed source that downloads ``FeedConfig.url``."""

    def __init__(self, config: FeedConfig) -> None:
        self._config = config
        handlers = []
        if config.proxy:
            handlers.append(urllib.request.ProxyHandler({"http": config.proxy, "https": config.proxy}))
        self._opener = urllib.request.build_opener(*handlers)

    def _request(self, method: str = "GET") -> urllib.request.Request:
        request = urllib.request.Request(self._config.url, method=method)
        request.add_header("User-Agent", self._config.user_agent)
        request.add_header("Accept", ACCEPT)
        request.add_header("Cache-Control", "no-cache")
        return request

    def fetch_sync(self) -> str:
        """Blocking download; raises FetchError on any transport failure."""

        url = self._config.url
        if self._config.proxy:
            LOGGER.info("Fetching %s via proxy %s", url, self._config.proxy)
        else:
            LOGGER.info("Fetching %s", url)
        try:
            with self._opener.open(self._request(), timeout=self._config.timeout_seconds) as response:
                charset = _usable_charset(response.headers.get_content_charset())
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise FetchError("http-status", f"HTTP {exc.code}: {exc.reason}", status=exc.code) from exc
        except urllib.error.URLError as exc:
            if _is_timeout(exc.reason):
                raise FetchError(
                    "timeout", f"Feed request timed out after {self._config.timeout_seconds}s"
                ) from exc
            raise FetchError("network", f"Feed request failed: {exc.reason}") from exc
        except (socket.timeout, TimeoutError) as exc:
            raise FetchError(
                "timeout", f"Feed request timed out after {self._config.timeout_seconds}s"
            ) from exc
        except OSError as exc:
            raise FetchError("network", f"Feed request failed: {exc}") from exc

        text = body.decode(charset, errors="replace")
        LOGGER.debug("Received %s characters of feed data", len(text))
        return text

    async def fetch(self) -> str:
        # The blocking call runs in a worker thread; cancelling the awaiting
        # task abandons it, and the socket timeout bounds the thread.
        return await asyncio.to_thread(self.fetch_sync)

    def probe(self, timeout: float = 5.0) -> tuple[bool, str]:
        """HEAD the feed URL and describe whether it is reachable."""

        try:
            with self._opener.open(self._request("HEAD"), timeout=timeout) as response:
                status: Optional[int] = getattr(response, "status", None)
        except urllib.error.HTTPError as exc:
            return False, f"Feed is not reachable: HTTP {exc.code}"
        except (urllib.error.URLError, OSError) as exc:
            return False, f"Feed is not reachable: {exc}"
        return True, f"Feed is reachable (HTTP {status or 200})"
