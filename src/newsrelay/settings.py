"""Static configuration for newsrelay.

All user-editable settings (scheduler cadence, polling, filtering, delivery,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (.env via python-dotenv).
"""

import json
import os

from dotenv import load_dotenv

from newsrelay.core.config import (
    DedupConfig,
    DispatchConfig,
    FilterConfig,
    PollerConfig,
    SchedulerConfig,
)

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.getcwd())

# config.json sits in the working directory unless NEWSRELAY_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("NEWSRELAY_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json; a missing file means built-in defaults."""

    if not os.path.exists(CONFIG_PATH):
        return {}

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Where to store the SQLite database.
_database = _CONFIG.get("database", {})
DB_PATH = _database.get("path", os.path.join(PROJECT_ROOT, "data", "newsrelay.db"))
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Timer cadence and per-item filter timeout.
_scheduler = _CONFIG.get("scheduler", {})
SCHEDULER = SchedulerConfig(interval_minutes=int(_scheduler.get("interval_minutes", 30)))

_poller = _CONFIG.get("poller", {})
POLLER = PollerConfig(
    batch_width=int(_poller.get("batch_width", 5)),
    items_per_source=int(_poller.get("items_per_source", 5)),
    max_attempts=int(_poller.get("max_attempts", 3)),
)
FEED_TIMEOUT_SECONDS = float(_poller.get("timeout_seconds", 15))

# In-memory dedup cache size and the persistent retention horizon.
_dedup = _CONFIG.get("dedup", {})
DEDUP = DedupConfig(
    memory_capacity=int(_dedup.get("memory_capacity", 10_000)),
    reset_hours=int(_dedup.get("reset_hours", 24)),
    retention_days=int(_dedup.get("retention_days", 30)),
)

_filter = _CONFIG.get("filter", {})
FILTER = FilterConfig(
    max_concurrent=int(_filter.get("max_concurrent", 3)),
    timeout_seconds=float(_scheduler.get("filter_timeout_seconds", 30)),
)

# Classifier endpoint; the API key comes from CLASSIFIER_API_KEY.
_classifier = _CONFIG.get("classifier", {})
CLASSIFIER_BASE_URL = _classifier.get("base_url", "https://api.openai.com/v1")
CLASSIFIER_MODEL = _classifier.get("model", "gpt-4o-mini")
CLASSIFIER_TIMEOUT_SECONDS = float(_classifier.get("timeout_seconds", 25))

_dispatch = _CONFIG.get("dispatch", {})
DISPATCH = DispatchConfig(
    batch_size=int(_dispatch.get("batch_size", 5)),
    item_delay_seconds=float(_dispatch.get("item_delay_seconds", 1)),
    batch_delay_seconds=float(_dispatch.get("batch_delay_seconds", 2)),
    max_attempts=int(_dispatch.get("max_attempts", 3)),
)
SNIPPET_CHARS = int(_dispatch.get("snippet_chars", 400))

# Delivery method switches adapters without changing core logic.
# - "telethon": post as the logged-in user session
# - "bot": post through the Bot API (BOT_API token)
_delivery = _CONFIG.get("delivery", {})
DELIVERY_METHOD = _delivery.get("method", "telethon")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {"enabled": True, "level": "INFO", "console": True})
