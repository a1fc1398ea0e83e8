"""Core domain package for newsrelay.

Core contains polling, deduplication, filtering, dispatch and scheduling
logic without any Telegram, HTTP or storage-specific code, keeping the
business logic portable.
"""
