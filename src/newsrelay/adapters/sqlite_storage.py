"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database.
"""

from __future__ import annotations

import os
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from newsrelay.core.errors import StoreUnavailable
from newsrelay.core.models import (
    MAX_POLL_INTERVAL_HOURS,
    MIN_POLL_INTERVAL_HOURS,
    CandidateItem,
    Destination,
    ExclusionRule,
    Source,
)

DEFAULT_POLL_INTERVAL_HOURS = 2


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        if not self._initialized:
            raise StoreUnavailable("Database not initialized, call init_db() first")
        return self._open()

    def _open(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open database {self._db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - sources: polled feeds and their last-seen marker
        - seen_items: fingerprints of accepted items (dedup source of truth)
        - exclusion_rules: Stage A keywords
        - destinations: delivery targets and their cadence
        """

        directory = os.path.dirname(self._db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._open() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            # last_seen_marker is the identity of the newest item already
            # yielded by the source; polling stops when it is reached.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sources (
                    id TEXT PRIMARY KEY,
                    url TEXT UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    last_seen_marker TEXT,
                    added_at TIMESTAMP NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            # seen_items keeps one row per accepted fingerprint. Rows older
            # than the retention horizon are removed by retention_cleanup().
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS seen_items (
                    fingerprint TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    link TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT 'Unknown',
                    source_id TEXT,
                    published_at TIMESTAMP,
                    first_seen TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS exclusion_rules (
                    id TEXT PRIMARY KEY,
                    keyword TEXT NOT NULL,
                    added_at TIMESTAMP NOT NULL,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS destinations (
                    id TEXT PRIMARY KEY,
                    address TEXT,
                    poll_interval_hours INTEGER NOT NULL DEFAULT {DEFAULT_POLL_INTERVAL_HOURS},
                    last_updated TIMESTAMP
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_seen_first_seen ON seen_items(first_seen)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_rules_active ON exclusion_rules(is_active)")
        self._initialized = True

    # Seen items

    def is_seen(self, fingerprint: str) -> bool:
        """Check if a fingerprint has already been recorded."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM seen_items WHERE fingerprint = ?",
                (fingerprint,),
            ).fetchone()
        return row is not None

    def mark_seen(self, item: CandidateItem) -> None:
        """Insert an item's fingerprint if it does not exist."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO seen_items (
                    fingerprint, title, link, category, source_id, published_at, first_seen
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.fingerprint,
                    item.title,
                    item.link,
                    item.category or "Unknown",
                    item.source_id,
                    item.published_at.isoformat(),
                    now.isoformat(),
                ),
            )

    def retention_cleanup(self, days: int = 30) -> int:
        """Delete old fingerprints and return the number removed."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM seen_items WHERE first_seen < ?",
                (cutoff.isoformat(),),
            )
            return cur.rowcount

    # Destinations

    def get_destinations(self) -> list[Destination]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, address, poll_interval_hours, last_updated
                FROM destinations
                ORDER BY id
                """
            ).fetchall()
        return [
            Destination(
                id=row["id"],
                address=row["address"],
                poll_interval_hours=int(row["poll_interval_hours"]),
                last_updated=_parse_timestamp(row["last_updated"]),
            )
            for row in rows
        ]

    def update_destination(
        self,
        destination_id: str,
        *,
        address: Optional[str] = None,
        poll_interval_hours: Optional[int] = None,
        last_updated: Optional[datetime] = None,
    ) -> None:
        """Upsert the given fields; fields left as None keep their value."""

        if poll_interval_hours is not None and not (
            MIN_POLL_INTERVAL_HOURS <= poll_interval_hours <= MAX_POLL_INTERVAL_HOURS
        ):
            raise ValueError(
                f"poll_interval_hours must be between {MIN_POLL_INTERVAL_HOURS} and {MAX_POLL_INTERVAL_HOURS}"
            )

        fields = {}
        if address is not None:
            fields["address"] = address
        if poll_interval_hours is not None:
            fields["poll_interval_hours"] = poll_interval_hours
        if last_updated is not None:
            fields["last_updated"] = last_updated.astimezone(timezone.utc).isoformat()

        columns = ["id", *fields]
        placeholders = ", ".join("?" for _ in columns)
        if fields:
            conflict = "DO UPDATE SET " + ", ".join(f"{name} = excluded.{name}" for name in fields)
        else:
            conflict = "DO NOTHING"
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO destinations ({", ".join(columns)})
                VALUES ({placeholders})
                ON CONFLICT(id) {conflict}
                """,
                (destination_id, *fields.values()),
            )

    # Sources

    def add_source(self, url: str, name: str) -> Source:
        source = Source(id=_new_id(), url=url, name=name, added_at=datetime.now(timezone.utc))
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO sources (id, url, name, last_seen_marker, added_at, is_active)
                    VALUES (?, ?, ?, NULL, ?, 1)
                    """,
                    (source.id, source.url, source.name, source.added_at.isoformat()),
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Source already exists: {url}") from exc
        return source

    def remove_source(self, source_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sources WHERE id = ?", (source_id,))
            return cur.rowcount > 0

    def list_sources(self, active_only: bool = True) -> list[Source]:
        query = "SELECT id, url, name, last_seen_marker, added_at, is_active FROM sources"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY added_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            Source(
                id=row["id"],
                url=row["url"],
                name=row["name"],
                last_seen_marker=row["last_seen_marker"],
                is_active=bool(row["is_active"]),
                added_at=_parse_timestamp(row["added_at"]),
            )
            for row in rows
        ]

    def update_source_marker(self, source_id: str, marker: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE sources SET last_seen_marker = ? WHERE id = ?",
                (marker, source_id),
            )

    # Exclusion rules

    def add_exclusion_rule(self, keyword: str) -> ExclusionRule:
        rule = ExclusionRule(id=_new_id(), keyword=keyword, added_at=datetime.now(timezone.utc))
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO exclusion_rules (id, keyword, added_at, is_active) VALUES (?, ?, ?, 1)",
                (rule.id, rule.keyword, rule.added_at.isoformat()),
            )
        return rule

    def remove_exclusion_rule(self, rule_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM exclusion_rules WHERE id = ?", (rule_id,))
            return cur.rowcount > 0

    def list_exclusion_rules(self, active_only: bool = True) -> list[ExclusionRule]:
        query = "SELECT id, keyword, added_at, is_active FROM exclusion_rules"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY added_at DESC"
        with self._connect() as conn:
            rows = conn.execute(query).fetchall()
        return [
            ExclusionRule(
                id=row["id"],
                keyword=row["keyword"],
                is_active=bool(row["is_active"]),
                added_at=_parse_timestamp(row["added_at"]),
            )
            for row in rows
        ]
