from __future__ import annotations

from core.post_ids import build_post_url, extract_post_id


def test_extract_post_id_from_path() -> None:
    assert extract_post_id("https://www.nodeseek.com/post-123456-1") == 123456
    assert extract_post_id("https://www.nodeseek.com/post-42-3#comment") == 42


def test_extract_post_id_from_query_parameter() -> None:
    assert extract_post_id("https://www.nodeseek.com/thread?id=77&page=2") == 77


def test_extract_post_id_rejects_unusable_links() -> None:
    assert extract_post_id("") is None
    assert extract_post_id("https://www.nodeseek.com/post-0-1") is None
    assert extract_post_id("https://www.nodeseek.com/thread?id=abc") is None
    assert extract_post_id("https://www.nodeseek.com/categories/tech") is None


def test_build_post_url_uses_template() -> None:
    assert build_post_url(101) == "https://www.nodeseek.com/post-101-1"
    assert build_post_url(5, "https://mirror.example/p/{post_id}") == "https://mirror.example/p/5"
