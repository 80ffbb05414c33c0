from __future__ import annotations

import asyncio
import contextlib
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator

import pytest

from adapters.feed_fetcher import HttpFeedFetcher
from core.config import FeedConfig
from core.errors import FetchError

RSS = "<rss><channel><item><title>Café</title></item></channel></rss>"


class FeedHandler(BaseHTTPRequestHandler):
    def _reply(self, with_body: bool) -> None:
        if self.path.startswith("http://"):
            # Absolute-form request line: the client is talking to us as a proxy.
            self._send(200, "text/plain; charset=utf-8", f"proxied {self.path}", with_body)
        elif self.path == "/rss":
            self._send(200, "application/rss+xml; charset=utf-8", RSS, with_body)
        elif self.path == "/bogus":
            self._send(200, "application/rss+xml; charset=bogus-enc", RSS, with_body)
        elif self.path == "/slow":
            time.sleep(1.0)
            self._send(200, "application/rss+xml", RSS, with_body)
        else:
            self._send(503, "text/plain", "maintenance", with_body)

    def _send(self, status: int, content_type: str, text: str, with_body: bool) -> None:
        body = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if with_body:
            self.wfile.write(body)

    def do_GET(self) -> None:
        self._reply(True)

    def do_HEAD(self) -> None:
        self._reply(False)

    def log_message(self, format, *args) -> None:
        pass


@pytest.fixture(autouse=True)
def _no_env_proxies(monkeypatch) -> None:
    for name in ("http_proxy", "https_proxy", "all_proxy", "no_proxy"):
        monkeypatch.delenv(name, raising=False)
        monkeypatch.delenv(name.upper(), raising=False)


@contextlib.contextmanager
def _serve() -> Iterator[str]:
    server = ThreadingHTTPServer(("127.0.0.1", 0), FeedHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()


def _fetcher(url: str, **overrides) -> HttpFeedFetcher:
    return HttpFeedFetcher(FeedConfig(url=url, **overrides))


def _closed_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_fetch_returns_decoded_payload() -> None:
    with _serve() as base:
        text = asyncio.run(_fetcher(f"{base}/rss").fetch())

    assert text == RSS


def test_unknown_charset_falls_back_to_utf8() -> None:
    with _serve() as base:
        text = _fetcher(f"{base}/bogus").fetch_sync()

    assert "Café" in text


def test_http_error_status_is_reported() -> None:
    with _serve() as base:
        with pytest.raises(FetchError) as excinfo:
            _fetcher(f"{base}/down").fetch_sync()

    assert excinfo.value.kind == "http-status"
    assert excinfo.value.status == 503


def test_slow_server_times_out() -> None:
    with _serve() as base:
        with pytest.raises(FetchError) as excinfo:
            _fetcher(f"{base}/slow", timeout_seconds=0.2).fetch_sync()

    assert excinfo.value.kind == "timeout"


def test_refused_connection_is_a_network_error() -> None:
    with pytest.raises(FetchError) as excinfo:
        _fetcher(f"http://127.0.0.1:{_closed_port()}/rss").fetch_sync()

    assert excinfo.value.kind == "network"


def test_requests_go_through_the_configured_proxy() -> None:
    with _serve() as proxy:
        text = _fetcher("http://feed.example/rss", proxy=proxy).fetch_sync()

    assert text == "proxied http://feed.example/rss"


def test_probe_reports_reachability() -> None:
    with _serve() as base:
        ok, message = _fetcher(f"{base}/rss").probe()
        down, down_message = _fetcher(f"{base}/down").probe()

    assert ok
    assert message == "Feed is reachable (HTTP 200)"
    assert not down
    assert "HTTP 503" in down_message
