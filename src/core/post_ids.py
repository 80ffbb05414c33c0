"""Helpers for deriving post identifiers from entry links and back."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import parse_qs, urlsplit

DEFAULT_POST_URL_TEMPLATE = "https://www.nodeseek.com/post-{post_id}-1"

_POST_PATH_RE = re.compile(r"post-(\d+)-")


def extract_post_id(link: str) -> Optional[int]:
    """Return the numeric post id for an entry link, or None.

    The path form ``.../post-{id}-{page}`` wins; otherwise an ``id`` query
    parameter is used.
    """

    if not link:
        return None

    match = _POST_PATH_RE.search(link)
    if match and int(match.group(1)) > 0:
        return int(match.group(1))

    try:
        query = parse_qs(urlsplit(link.strip()).query)
    except ValueError:
        return None
    for raw in query.get("id", []):
        raw = raw.strip()
        if raw.isdigit() and int(raw) > 0:
            return int(raw)
    return None


def build_post_url(post_id: int, template: str = DEFAULT_POST_URL_TEMPLATE) -> str:
    """Return the canonical URL for ``post_id``."""

    return template.format(post_id=post_id)
