"""Error taxonomy shared by the core and its adapters.

Adapters translate library exceptions into these types at the port boundary
so the core never has to know about aiohttp, sqlite3 or Telethon errors.
"""

from __future__ import annotations


class NewsRelayError(Exception):
    """Base class for all newsrelay errors."""


class SourceFetchError(NewsRelayError):
    """A source could not be fetched or parsed."""


class StoreUnavailable(NewsRelayError):
    """The persistent store is not initialized or cannot be reached."""


class FilterTimeout(NewsRelayError):
    """Filtering an item took longer than the configured timeout."""


class FilterParseError(NewsRelayError):
    """The classifier response could not be parsed into a decision."""


class DeliveryError(NewsRelayError):
    """A delivery channel failed to send an item."""


class DeliveryNotReady(NewsRelayError):
    """Dispatch was invoked before the delivery channel was connected."""


class CycleAbortError(NewsRelayError):
    """A cycle failed before any per-destination work could start."""
