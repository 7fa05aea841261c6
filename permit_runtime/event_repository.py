"""
Event Repository: sqlite3-backed event store.

One stream per work permit, keyed by the store-allocated permit id.
Stores events as JSON. Reconstructs proper event class instances
on load (strict type dispatch, never generic BaseEvent).

Optimistic concurrency: `append_events` checks the stream's last
sequence against the caller's expected version inside the same
transaction; UNIQUE(permit_id, sequence) backs the check up.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from permit_kernel.errors import ConcurrencyConflictError, StorageError
from permit_kernel.events import BaseEvent, reconstruct_event

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"


class EventRepository:
    """
    Append-only event store backed by sqlite3.

    Thread-safety: one connection guarded by a lock, so handlers on
    parallel worker threads can share a repository instance.
    All writes are transaction-wrapped for atomicity.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._ensure_schema()
        except sqlite3.Error as exc:
            logger.error("Cannot open event store %s", self._db_path, exc_info=True)
            raise StorageError(f"Cannot open event store: {exc}") from exc

    def _ensure_schema(self) -> None:
        schema_sql = _SCHEMA_PATH.read_text(encoding="utf-8")
        self._conn.executescript(schema_sql)

    # ------------------------------------------------------------------
    # Identity allocation
    # ------------------------------------------------------------------

    def allocate_permit_id(self) -> int:
        """Reserve the next permit id (monotonic, never reused)."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                with self._conn:
                    cursor = self._conn.execute(
                        "INSERT INTO permits (allocated_at) VALUES (?)", (now,),
                    )
                return int(cursor.lastrowid)
            except sqlite3.Error as exc:
                logger.error("Permit id allocation failed", exc_info=True)
                raise StorageError(f"Permit id allocation failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append_events(
        self,
        permit_id: int,
        events: Sequence[BaseEvent],
        expected_version: int,
    ) -> int:
        """
        Append events atomically inside a single transaction.
        Returns the stream's new version (last sequence).

        Raises ConcurrencyConflictError when the stream is no longer at
        `expected_version`; nothing is written in that case.
        """
        if not events:
            return expected_version

        with self._lock:
            try:
                with self._conn:
                    actual = self._last_sequence(permit_id)
                    if actual != expected_version:
                        raise ConcurrencyConflictError(permit_id, expected_version, actual)

                    for offset, event in enumerate(events, start=1):
                        if event.sequence != expected_version + offset:
                            raise ValueError(
                                f"Event sequence {event.sequence} does not follow "
                                f"version {expected_version + offset - 1}"
                            )
                        event_dict = event.to_dict()
                        self._conn.execute(
                            """
                            INSERT INTO events
                                (permit_id, sequence, event_type, timestamp, payload_json)
                            VALUES (?, ?, ?, ?, ?)
                            """,
                            (
                                permit_id,
                                event_dict["sequence"],
                                event_dict["event_type"],
                                event_dict["timestamp"],
                                json.dumps(event_dict["payload"], ensure_ascii=False),
                            ),
                        )
                        if event.event_type == "permit_created":
                            self._conn.execute(
                                "UPDATE permits SET permit_number = ? WHERE permit_id = ?",
                                (event.payload["permit_number"], permit_id),
                            )
            except sqlite3.IntegrityError as exc:
                # A concurrent writer took the sequence first.
                raise ConcurrencyConflictError(
                    permit_id, expected_version, self._last_sequence(permit_id),
                ) from exc
            except sqlite3.Error as exc:
                logger.error("Append to work permit %s failed", permit_id, exc_info=True)
                raise StorageError(f"Append to work permit {permit_id} failed: {exc}") from exc

        return expected_version + len(events)

    def delete_stream(self, permit_id: int, expected_version: int) -> None:
        """Hard-delete a permit's stream and metadata (version-checked)."""
        with self._lock:
            try:
                with self._conn:
                    actual = self._last_sequence(permit_id)
                    if actual != expected_version:
                        raise ConcurrencyConflictError(permit_id, expected_version, actual)
                    self._conn.execute("DELETE FROM events WHERE permit_id = ?", (permit_id,))
                    self._conn.execute(
                        "DELETE FROM stream_metadata WHERE permit_id = ?", (permit_id,),
                    )
                    self._conn.execute("DELETE FROM permits WHERE permit_id = ?", (permit_id,))
            except sqlite3.Error as exc:
                logger.error("Delete of work permit %s failed", permit_id, exc_info=True)
                raise StorageError(f"Delete of work permit {permit_id} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load_events(self, permit_id: int, after_sequence: int = 0) -> List[BaseEvent]:
        """
        Load events ordered by sequence.

        Returns fully-typed event instances, never raw dicts.
        """
        with self._lock:
            try:
                rows = self._conn.execute(
                    """
                    SELECT event_type, timestamp, sequence, payload_json
                    FROM events
                    WHERE permit_id = ? AND sequence > ?
                    ORDER BY sequence
                    """,
                    (permit_id, after_sequence),
                ).fetchall()
            except sqlite3.Error as exc:
                logger.error("Load of work permit %s failed", permit_id, exc_info=True)
                raise StorageError(f"Load of work permit {permit_id} failed: {exc}") from exc
        return [
            reconstruct_event(row[0], row[1], row[2], json.loads(row[3]))
            for row in rows
        ]

    def get_last_sequence(self, permit_id: int) -> int:
        """Return the highest sequence number for a permit, or 0 if none."""
        with self._lock:
            return self._last_sequence(permit_id)

    def list_permit_ids(self) -> List[int]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT DISTINCT permit_id FROM events ORDER BY permit_id",
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Stream metadata
    # ------------------------------------------------------------------

    def update_metadata(self, permit_id: int, sequence: int, state_hash: str) -> None:
        """Upsert stream metadata. An older sequence never replaces a newer one."""
        now = datetime.now(timezone.utc).isoformat()
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT INTO stream_metadata
                            (permit_id, last_sequence, last_state_hash, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(permit_id) DO UPDATE SET
                            last_sequence = excluded.last_sequence,
                            last_state_hash = excluded.last_state_hash,
                            updated_at = excluded.updated_at
                        WHERE stream_metadata.last_sequence <= excluded.last_sequence
                        """,
                        (permit_id, sequence, state_hash, now),
                    )
            except sqlite3.Error as exc:
                logger.error("Metadata update for work permit %s failed", permit_id, exc_info=True)
                raise StorageError(f"Metadata update failed: {exc}") from exc

    def load_metadata(self, permit_id: int) -> Optional[Tuple[int, str]]:
        """
        Load stream metadata.
        Returns (last_sequence, last_state_hash) or None.
        """
        with self._lock:
            row = self._conn.execute(
                "SELECT last_sequence, last_state_hash FROM stream_metadata WHERE permit_id = ?",
                (permit_id,),
            ).fetchone()
        if row is None:
            return None
        return (row[0], row[1])

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _last_sequence(self, permit_id: int) -> int:
        cursor = self._conn.execute(
            "SELECT COALESCE(MAX(sequence), 0) FROM events WHERE permit_id = ?",
            (permit_id,),
        )
        return cursor.fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
