"""Application entry point for newsrelay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint

from newsrelay import settings
from newsrelay.adapters.classifier_openai import ChatCompletionsClassifier
from newsrelay.adapters.feed_reader import FeedReader
from newsrelay.adapters.sqlite_storage import SQLiteStorage
from newsrelay.client import build_client, build_delivery_channel
from newsrelay.core.dedup import Deduplicator
from newsrelay.core.dispatcher import Dispatcher
from newsrelay.core.filter_queue import FilterQueue
from newsrelay.core.filtering import FilterManager
from newsrelay.core.models import MAX_POLL_INTERVAL_HOURS, MIN_POLL_INTERVAL_HOURS
from newsrelay.core.poller import Poller
from newsrelay.core.scheduler import Scheduler
from newsrelay.core.stats import FilterStats
from newsrelay.session import LOGIN_METHODS, authorize, default_login_method

NAME = "NEWSRELAY"
FONT = "tarty-1"

LOGGER = logging.getLogger(__name__)


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
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    names = redact_cfg.get("patterns", ["API_HASH", "BOT_API", "CLASSIFIER_API_KEY"])
    values = [os.getenv(name) for name in names]
    return sorted({value for value in values if value}, key=len, reverse=True)


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
        path = file_cfg.get("path", "logs/newsrelay.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        file_handler = RotatingFileHandler(
            path,
            maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
            backupCount=int(file_cfg.get("backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


def _build_classifier() -> ChatCompletionsClassifier:
    api_key = os.getenv("CLASSIFIER_API_KEY")
    if not api_key:
        raise RuntimeError("Missing CLASSIFIER_API_KEY in environment")
    return ChatCompletionsClassifier(
        api_key=api_key,
        model=settings.CLASSIFIER_MODEL,
        base_url=settings.CLASSIFIER_BASE_URL,
        timeout_seconds=settings.CLASSIFIER_TIMEOUT_SECONDS,
    )


async def _serve(run_forever: bool) -> None:
    storage = _open_storage()
    removed = storage.retention_cleanup(settings.DEDUP.retention_days)
    LOGGER.info("Startup retention cleanup removed %s seen items", removed)

    reader = FeedReader(timeout_seconds=settings.FEED_TIMEOUT_SECONDS)
    classifier = _build_classifier()
    if not await classifier.healthcheck():
        LOGGER.warning("Classifier unreachable, Stage B will fail open until it recovers")
    delivery = build_delivery_channel(settings.DELIVERY_METHOD, settings.SNIPPET_CHARS)
    await delivery.connect()
    LOGGER.info("Selected delivery method - %s", settings.DELIVERY_METHOD)

    deduplicator = Deduplicator(storage, settings.DEDUP)
    stats = FilterStats()
    scheduler = Scheduler(
        storage=storage,
        poller=Poller(reader, storage, deduplicator, settings.POLLER),
        filter_queue=FilterQueue(FilterManager(storage, classifier), settings.FILTER.max_concurrent),
        dispatcher=Dispatcher(delivery, settings.DISPATCH),
        deduplicator=deduplicator,
        config=settings.SCHEDULER,
        filter_config=settings.FILTER,
        stats=stats,
    )

    try:
        await scheduler.trigger_manual_run()
        if run_forever:
            scheduler.start()
            # The timer task runs until the process is interrupted.
            await asyncio.Event().wait()
    finally:
        await scheduler.stop()
        stats.log_summary()
        await reader.close()
        await classifier.close()
        if hasattr(delivery, "close"):
            await delivery.close()


async def _add_source(url: str, name: Optional[str]) -> None:
    storage = _open_storage()
    reader = FeedReader(timeout_seconds=settings.FEED_TIMEOUT_SECONDS)
    try:
        info = await reader.validate(url)
    finally:
        await reader.close()
    source = storage.add_source(url, name or info["title"])
    print(f"Added {source.id} | {source.name} | {info['item_count']} items | {source.url}")


def _sources(args: argparse.Namespace) -> None:
    if args.action == "add":
        asyncio.run(_add_source(args.url, args.name))
        return
    storage = _open_storage()
    if args.action == "remove":
        print("Removed" if storage.remove_source(args.id) else f"No source with id {args.id}")
        return
    for source in storage.list_sources(active_only=False):
        state = "active" if source.is_active else "inactive"
        print(f"{source.id} | {source.name} | {state} | {source.url}")


def _rules(args: argparse.Namespace) -> None:
    storage = _open_storage()
    manager = FilterManager(storage)
    if args.action == "add":
        rule = manager.add_rule(args.keyword)
        print(f"Added {rule.id} | {rule.keyword}")
    elif args.action == "remove":
        print("Removed" if manager.remove_rule(args.id) else f"No rule with id {args.id}")
    else:
        for rule in manager.list_rules():
            print(f"{rule.id} | {rule.keyword}")


def _destinations(args: argparse.Namespace) -> None:
    storage = _open_storage()
    if args.action == "set":
        storage.update_destination(
            args.id,
            address=args.address,
            poll_interval_hours=args.interval,
        )
        print(f"Updated {args.id}")
        return
    for destination in storage.get_destinations():
        last = destination.last_updated.isoformat() if destination.last_updated else "never"
        print(
            f"{destination.id} | {destination.address or '-'} | "
            f"every {destination.poll_interval_hours}h | last {last}"
        )


def _session(method: str) -> None:
    async def _login() -> None:
        # Telethon binds to the running loop, so the client is built inside it.
        client = build_client()
        await client.connect()
        try:
            await authorize(client, method)
        finally:
            await client.disconnect()

    asyncio.run(_login())


def _interval(value: str) -> int:
    hours = int(value)
    if not MIN_POLL_INTERVAL_HOURS <= hours <= MAX_POLL_INTERVAL_HOURS:
        raise argparse.ArgumentTypeError(
            f"interval must be between {MIN_POLL_INTERVAL_HOURS} and {MAX_POLL_INTERVAL_HOURS} hours"
        )
    return hours


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="newsrelay")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the scheduler")
    subparsers.add_parser("once", help="Run a single cycle and exit")
    session = subparsers.add_parser("session", help="Log in the Telegram user session")
    session.add_argument("--method", choices=LOGIN_METHODS, default=default_login_method())

    sources = subparsers.add_parser("sources", help="Manage polled feeds")
    sources_actions = sources.add_subparsers(dest="action", required=True)
    add_source = sources_actions.add_parser("add")
    add_source.add_argument("url")
    add_source.add_argument("--name")
    sources_actions.add_parser("remove").add_argument("id")
    sources_actions.add_parser("list")

    rules = subparsers.add_parser("rules", help="Manage exclusion keywords")
    rules_actions = rules.add_subparsers(dest="action", required=True)
    rules_actions.add_parser("add").add_argument("keyword")
    rules_actions.add_parser("remove").add_argument("id")
    rules_actions.add_parser("list")

    destinations = subparsers.add_parser("destinations", help="Manage delivery targets")
    destinations_actions = destinations.add_subparsers(dest="action", required=True)
    set_destination = destinations_actions.add_parser("set")
    set_destination.add_argument("id")
    set_destination.add_argument("--address")
    set_destination.add_argument("--interval", type=_interval)
    destinations_actions.add_parser("list")

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    args = _build_parser().parse_args(argv)
    _configure_logging()

    if args.command == "sources":
        _sources(args)
        return
    if args.command == "rules":
        _rules(args)
        return
    if args.command == "destinations":
        _destinations(args)
        return
    if args.command == "session":
        _print_banner()
        _session(args.method)
        return

    _print_banner()
    LOGGER.info("Starting newsrelay")
    try:
        asyncio.run(_serve(run_forever=args.command != "once"))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
