"""Poll news feeds, filter them, and relay what is left to Telegram chats."""

__version__ = "0.1.0"
