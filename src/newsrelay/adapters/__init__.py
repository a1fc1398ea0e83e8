"""Adapters that connect the core to SQLite, feeds, the classifier and Telegram."""
