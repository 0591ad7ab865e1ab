"""
SQLite-based persistence for SwineStake events.

Stores every emitted :class:`StakingEvent` so that ledger history can be
audited or rebuilt (see :func:`swinestake_core.events.rebuild_positions`)
after a restart.

Usage:
    store = EventStore("data/swinestake.db")
    engine.events.resume(store.last_sequence())
    engine.events.subscribe(store.save_event)
    ...
    history = rebuild_positions(store.load_events())
"""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path

from swinestake_core.events import StakingEvent

logger = logging.getLogger("swinestake_storage")


class EventStore:
    """Thin SQLite wrapper for persisting staking events."""

    CURRENT_SCHEMA_VERSION = 1

    def __init__(self, db_path: str = "data/swinestake.db"):
        self.db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA busy_timeout = 5000")
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._create_tables()
        self._ensure_schema_version()
        logger.info(f"Event store opened: {db_path}")

    # ── schema ───────────────────────────────────────────────────

    def _create_tables(self) -> None:
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS events (
                sequence     INTEGER PRIMARY KEY,
                kind         TEXT NOT NULL,
                participant  TEXT NOT NULL,
                timestamp    INTEGER NOT NULL,
                stake_id     INTEGER,
                amounts_json TEXT NOT NULL,
                detail_json  TEXT NOT NULL DEFAULT '{}'
            )
        """)
        c.execute("""
            CREATE INDEX IF NOT EXISTS idx_events_participant
            ON events (participant)
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                id      INTEGER PRIMARY KEY CHECK (id = 1),
                version INTEGER NOT NULL
            )
        """)
        c.commit()

    def _ensure_schema_version(self) -> None:
        row = self._conn.execute(
            "SELECT version FROM schema_version WHERE id = 1"
        ).fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_version (id, version) VALUES (1, ?)",
                (self.CURRENT_SCHEMA_VERSION,),
            )
            self._conn.commit()
        elif row["version"] > self.CURRENT_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema v{row['version']} is newer than this software "
                f"(v{self.CURRENT_SCHEMA_VERSION}).  Upgrade SwineStake."
            )

    # ── events ───────────────────────────────────────────────────

    def save_event(self, event: StakingEvent) -> None:
        # amounts may exceed SQLite's 64-bit integers, so they travel as JSON strings
        amounts = {k: str(v) for k, v in event.amounts.items()}
        self._conn.execute(
            """INSERT INTO events
               (sequence, kind, participant, timestamp, stake_id,
                amounts_json, detail_json)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                event.sequence,
                event.kind.value,
                event.participant,
                event.timestamp,
                event.stake_id,
                json.dumps(amounts, sort_keys=True),
                json.dumps(event.detail, sort_keys=True),
            ),
        )
        self._conn.commit()

    def load_events(self, since: int = 0) -> list[StakingEvent]:
        rows = self._conn.execute(
            "SELECT * FROM events WHERE sequence > ? ORDER BY sequence", (since,)
        ).fetchall()
        return [
            StakingEvent.from_dict({
                "sequence": r["sequence"],
                "kind": r["kind"],
                "participant": r["participant"],
                "timestamp": r["timestamp"],
                "stake_id": r["stake_id"],
                "amounts": json.loads(r["amounts_json"]),
                "detail": json.loads(r["detail_json"]),
            })
            for r in rows
        ]

    def last_sequence(self) -> int:
        """Highest stored sequence number, or 0 for an empty store."""
        row = self._conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) AS n FROM events"
        ).fetchone()
        return row["n"]

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS n FROM events").fetchone()
        return row["n"]

    def close(self) -> None:
        self._conn.close()
