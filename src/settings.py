"""Static configuration for seekwatch.

Feed, scheduler, notification and logging settings live in a single JSON
file for quick edits without touching Python. Secrets come from the
environment (.env). Switches that change at runtime (only_title, stop_push,
the bound chat) live in the database instead.
"""

import json
import os

from dotenv import load_dotenv

from core.config import FeedConfig, SchedulerConfig
from core.post_ids import DEFAULT_POST_URL_TEMPLATE

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Where to store the SQLite database.
DB_PATH = os.getenv("SEEKWATCH_DB", os.path.join(PROJECT_ROOT, "data", "seekwatch.db"))

CONFIG_PATH = os.getenv("SEEKWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))

DEFAULT_FEED_URL = "https://rss.nodeseek.com/"


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

_feed = _CONFIG.get("feed", {})
FEED = FeedConfig(
    url=_feed.get("url", DEFAULT_FEED_URL),
    timeout_seconds=float(_feed.get("timeout_seconds", 30)),
    user_agent=_feed.get("user_agent", "seekwatch/1.0"),
    proxy=_feed.get("proxy") or None,
    summary_chars=int(_feed.get("summary_chars", 200)),
    memo_chars=int(_feed.get("memo_chars", 500)),
    max_attempts=int(_feed.get("max_attempts", 3)),
    backoff_seconds=float(_feed.get("backoff_seconds", 2)),
)

# The interval floor is applied by SchedulerConfig.effective_interval.
_scheduler = _CONFIG.get("scheduler", {})
SCHEDULER = SchedulerConfig(
    interval_seconds=float(_scheduler.get("interval_seconds", 60)),
    retry_undelivered=bool(_scheduler.get("retry_undelivered", False)),
    delivery_batch_size=int(_scheduler.get("delivery_batch_size", 5)),
    delivery_pause_seconds=float(_scheduler.get("delivery_pause_seconds", 1.0)),
)

# Notification method switches adapters without changing core logic.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "bot")
PARSE_MODE = _notifications.get("parse_mode", "markdown")
POST_URL_TEMPLATE = _notifications.get("post_url_template", DEFAULT_POST_URL_TEMPLATE)
# None means the built-in category labels are used.
CATEGORY_NAMES = _notifications.get("category_names")

# Bot token for both notification methods.
BOT_TOKEN = os.getenv("BOT_API")

# Old posts are pruned at startup; 0 keeps everything.
RETENTION_DAYS = int(_CONFIG.get("retention", {}).get("days", 30))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
