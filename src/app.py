"""Application entry point for the seekwatch feed watcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Awaitable, Callable, Optional, TypeVar

from art import tprint

import settings
from adapters.feed_fetcher import HttpFeedFetcher
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotNotifier
from adapters.telegram_notifier import TelegramClientNotifier
from client import connect_bot_client
from core.errors import PersistenceError, SubscriptionError
from core.models import ManualResult, Subscription
from core.processor import FeedProcessor
from core.scheduler import CycleScheduler
from core.validators import SubscriptionDraft

NAME = "SEEKWATCH"
FONT = "tarty-1"

T = TypeVar("T")


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    # The bot token appears in Bot API URLs, so it is always masked.
    values = [settings.BOT_TOKEN] if settings.BOT_TOKEN else []
    redact_cfg = config.get("redact", {}) if config else {}
    if redact_cfg.get("enabled", False):
        for name in redact_cfg.get("patterns", []):
            value = os.getenv(name)
            if value:
                values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    formatter = _RedactingFormatter(_collect_redaction_values(config), fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/seekwatch.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    directory = os.path.dirname(settings.DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


async def _build_notifier():
    """Return (notifier, telethon_client) for the configured method.

    Without a bot token there is no delivery capability; matched posts then
    stay undelivered.
    """

    logger = logging.getLogger(__name__)
    if not settings.BOT_TOKEN:
        logger.warning("BOT_API is not set; delivery is disabled")
        return None, None

    if settings.NOTIFICATION_METHOD == "bot":
        notifier = TelegramBotNotifier(
            bot_token=settings.BOT_TOKEN,
            mode=settings.PARSE_MODE,
            post_url_template=settings.POST_URL_TEMPLATE,
            category_names=settings.CATEGORY_NAMES,
        )
        return notifier, None
    if settings.NOTIFICATION_METHOD == "client":
        client = await connect_bot_client(settings.BOT_TOKEN, os.path.dirname(settings.DB_PATH) or ".")
        notifier = TelegramClientNotifier(
            client,
            post_url_template=settings.POST_URL_TEMPLATE,
            category_names=settings.CATEGORY_NAMES,
        )
        return notifier, client
    raise RuntimeError("notification_method must be 'bot' or 'client'")


async def _with_processor(action: Callable[[FeedProcessor], Awaitable[T]]) -> T:
    storage = _open_storage()
    notifier, client = await _build_notifier()
    try:
        processor = FeedProcessor(
            feed=HttpFeedFetcher(settings.FEED),
            posts=storage,
            subscriptions=storage,
            settings=storage,
            notifier=notifier,
            feed_config=settings.FEED,
            scheduler_config=settings.SCHEDULER,
        )
        return await action(processor)
    finally:
        if client is not None:
            await client.disconnect()


def _report(result: ManualResult) -> int:
    print(result.message)
    return 0 if result.success else 1


def _run() -> int:
    _print_banner()
    logger = logging.getLogger(__name__)
    logger.info("Starting seekwatch")

    if settings.RETENTION_DAYS > 0:
        removed = _open_storage().cleanup_posts(settings.RETENTION_DAYS)
        logger.info("Retention cleanup removed %s posts", removed)

    async def _serve(processor: FeedProcessor) -> None:
        scheduler = CycleScheduler(processor, settings.SCHEDULER.effective_interval)
        try:
            await scheduler.run_forever()
        finally:
            await scheduler.stop()

    try:
        asyncio.run(_with_processor(_serve))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


def _format_subscription(sub: Subscription) -> str:
    parts = [f"#{sub.id}"]
    if sub.keywords:
        parts.append("keywords=" + " & ".join(sub.keywords))
    if sub.creator:
        parts.append(f"creator={sub.creator}")
    if sub.category:
        parts.append(f"category={sub.category}")
    return "  ".join(parts)


def _subs(args: argparse.Namespace) -> int:
    storage = _open_storage()
    if args.subs_command == "add":
        keywords = list(args.keyword or [])
        if len(keywords) > 3:
            print("At most three keywords are allowed")
            return 1
        keywords += [None] * (3 - len(keywords))
        draft = SubscriptionDraft(
            keyword1=keywords[0],
            keyword2=keywords[1],
            keyword3=keywords[2],
            creator=args.creator,
            category=args.category,
        )
        try:
            sub = storage.create_subscription(draft)
        except SubscriptionError as exc:
            print(f"Rejected: {exc}")
            return 1
        print(f"Added {_format_subscription(sub)}")
        return 0
    if args.subs_command == "del":
        if storage.delete_subscription(args.id):
            print(f"Deleted subscription {args.id}")
            return 0
        print(f"Subscription {args.id} does not exist")
        return 1

    subscriptions = storage.list_subscriptions(cached=True)
    if not subscriptions:
        print("No subscriptions.")
    for sub in subscriptions:
        print(_format_subscription(sub))
    return 0


def _on_off(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    return value == "on"


def _settings(args: argparse.Namespace) -> int:
    storage = _open_storage()
    if args.settings_command == "set":
        snapshot = storage.update_settings(
            only_title=_on_off(args.only_title),
            stop_push=_on_off(args.stop_push),
        )
    else:
        snapshot = storage.get_settings(cached=True)
    print(f"only_title: {'on' if snapshot.only_title else 'off'}")
    print(f"stop_push:  {'on' if snapshot.stop_push else 'off'}")
    bound = snapshot.bound_destination or "-"
    if snapshot.bound_destination and snapshot.bound_user_name:
        bound = f"{snapshot.bound_user_name} ({snapshot.bound_destination})"
    print(f"bound chat: {bound}")
    return 0


async def _stats(processor: FeedProcessor) -> int:
    try:
        stats = processor.match_stats()
    except PersistenceError as exc:
        print(f"Storage failure: {exc}")
        return 1
    print(f"posts: {stats.total_posts}")
    print(f"  pending:             {stats.pending}")
    print(f"  matched undelivered: {stats.matched_undelivered}")
    print(f"  no match:            {stats.no_match}")
    print(f"  delivered:           {stats.delivered}")
    print(f"subscriptions: {stats.subscriptions}")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="seekwatch")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the periodic watcher")
    subparsers.add_parser("fetch", help="Run one fetch/match/push cycle now")
    subparsers.add_parser("retry", help="Retry delivery of matched but undelivered posts")
    push = subparsers.add_parser("push", help="Deliver one post for one subscription")
    push.add_argument("post_id", type=int)
    push.add_argument("subscription_id", type=int)
    subparsers.add_parser("check", help="Check the bot credential and the feed URL")
    test_send = subparsers.add_parser("test-send", help="Send a test message to the bound chat")
    test_send.add_argument("text", nargs="?")
    subparsers.add_parser("stats", help="Show post counts by push status")

    subs = subparsers.add_parser("subs", help="Manage subscriptions")
    subs_commands = subs.add_subparsers(dest="subs_command")
    subs_commands.add_parser("list")
    add = subs_commands.add_parser("add")
    add.add_argument("-k", "--keyword", action="append", help="Keyword, /regex/flags or regex:pattern")
    add.add_argument("--creator")
    add.add_argument("--category")
    delete = subs_commands.add_parser("del")
    delete.add_argument("id", type=int)

    settings_parser = subparsers.add_parser("settings", help="Show or change push switches")
    settings_commands = settings_parser.add_subparsers(dest="settings_command")
    settings_commands.add_parser("show")
    set_parser = settings_commands.add_parser("set")
    set_parser.add_argument("--only-title", choices=("on", "off"))
    set_parser.add_argument("--stop-push", choices=("on", "off"))

    bind = subparsers.add_parser("bind", help="Bind the delivery chat")
    bind.add_argument("chat_id")
    bind.add_argument("--name")
    subparsers.add_parser("unbind", help="Unbind the delivery chat")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging()

    if args.command == "subs":
        return _subs(args)
    if args.command == "settings":
        return _settings(args)
    if args.command == "bind":
        _open_storage().bind_destination(args.chat_id, args.name)
        print(f"Bound chat {args.chat_id}")
        return 0
    if args.command == "unbind":
        _open_storage().bind_destination(None)
        print("Chat unbound")
        return 0
    if args.command == "fetch":
        return _report(asyncio.run(_with_processor(lambda p: p.manual_fetch())))
    if args.command == "retry":
        return _report(asyncio.run(_with_processor(lambda p: p.manual_retry())))
    if args.command == "push":
        return _report(
            asyncio.run(_with_processor(lambda p: p.manual_push(args.post_id, args.subscription_id)))
        )
    if args.command == "test-send":
        return _report(asyncio.run(_with_processor(lambda p: p.send_test_message(args.text))))
    if args.command == "stats":
        return asyncio.run(_with_processor(_stats))
    if args.command == "check":
        accessible, message = HttpFeedFetcher(settings.FEED).probe()
        print(message)
        result = asyncio.run(_with_processor(lambda p: p.check_delivery()))
        return _report(result) or (0 if accessible else 1)
    return _run()


if __name__ == "__main__":
    sys.exit(main())
