"""Telethon client for the "client" notification method.

The client signs in with the bot token only; seekwatch never performs an
interactive user login. The session file lives next to the database so a
single data directory holds all local state.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv
from telethon import TelegramClient

LOGGER = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "seekwatch"


@dataclass(frozen=True)
class ClientCredentials:
    api_id: int
    api_hash: str
    session_name: str = DEFAULT_SESSION_NAME


def read_credentials(environ: Optional[Mapping[str, str]] = None) -> ClientCredentials:
    """Read API_ID/API_HASH/SESSION_NAME, raising RuntimeError when unusable."""

    if environ is None:
        load_dotenv()
        environ = os.environ

    raw_id = (environ.get("API_ID") or "").strip()
    api_hash = (environ.get("API_HASH") or "").strip()
    if not raw_id or not api_hash:
        raise RuntimeError("The client notification method needs API_ID and API_HASH")
    if not raw_id.isdigit():
        raise RuntimeError(f"API_ID must be numeric, got {raw_id!r}")

    session_name = (environ.get("SESSION_NAME") or "").strip() or DEFAULT_SESSION_NAME
    return ClientCredentials(int(raw_id), api_hash, session_name)


def session_path(credentials: ClientCredentials, data_dir: str) -> str:
    # Telethon appends ".session" itself.
    if os.path.isabs(credentials.session_name):
        return credentials.session_name
    return os.path.join(data_dir, credentials.session_name)


async def connect_bot_client(bot_token: str, data_dir: str) -> TelegramClient:
    """Build a Telethon client and authorize it as the bot behind ``bot_token``."""

    credentials = read_credentials()
    os.makedirs(data_dir, exist_ok=True)
    path = session_path(credentials, data_dir)
    LOGGER.info("Connecting Telegram client (session %s)", path)
    client = TelegramClient(path, credentials.api_id, credentials.api_hash)
    await client.start(bot_token=bot_token)
    return client
