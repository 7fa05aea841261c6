"""
PostgreSQL Event and Read Model Repositories.

Drop-in replacements for the sqlite3 EventRepository and
ReadModelRepository. Same interface, PostgreSQL storage via pg8000.

Stateless: no in-memory caching. Every call opens its own connection.
"""

from __future__ import annotations

import json
import logging
from typing import Dict, List, Optional, Sequence, Tuple

import pg8000.exceptions
import pg8000.native

from permit_kernel.domain_types import PermitStatus
from permit_kernel.errors import ConcurrencyConflictError, StorageError
from permit_kernel.events import BaseEvent, reconstruct_event
from permit_runtime.read_model_repository import (
    UPSERT_SQL,
    PermitQuery,
    build_filter,
    build_order,
    row_values,
)

logger = logging.getLogger(__name__)

_INIT_SQL = """
CREATE TABLE IF NOT EXISTS permits (
    permit_id      BIGSERIAL PRIMARY KEY,
    permit_number  TEXT UNIQUE,
    allocated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS events (
    id          BIGSERIAL PRIMARY KEY,
    permit_id   BIGINT NOT NULL,
    sequence    INTEGER NOT NULL,
    event_type  TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    payload     JSONB NOT NULL,
    UNIQUE (permit_id, sequence)
);

CREATE INDEX IF NOT EXISTS idx_events_permit_seq
    ON events (permit_id, sequence);

CREATE TABLE IF NOT EXISTS stream_metadata (
    permit_id        BIGINT PRIMARY KEY,
    last_sequence    INTEGER NOT NULL,
    last_state_hash  TEXT NOT NULL,
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS permit_read_models (
    permit_id       BIGINT PRIMARY KEY,
    permit_number   TEXT NOT NULL,
    title           TEXT NOT NULL,
    description     TEXT NOT NULL,
    work_location   TEXT NOT NULL,
    permit_type     TEXT NOT NULL,
    status          TEXT NOT NULL,
    priority        TEXT NOT NULL,
    risk_level      TEXT NOT NULL,
    requestor_id    BIGINT,
    planned_start   TEXT,
    planned_end     TEXT,
    created_at      TEXT,
    version         INTEGER NOT NULL,
    state_json      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_read_models_status
    ON permit_read_models (status);
CREATE INDEX IF NOT EXISTS idx_read_models_requestor
    ON permit_read_models (requestor_id);
CREATE INDEX IF NOT EXISTS idx_read_models_created
    ON permit_read_models (created_at);
"""

_UNIQUE_VIOLATION = "23505"


def parse_database_url(database_url: str) -> Dict[str, object]:
    """
    Split a postgres:// URL into pg8000 connection arguments.

    Manual parser: urlparse chokes on special chars ([], @) in passwords.
    """
    url = database_url.split("://", 1)[1]
    # Split at LAST @ to separate credentials from host (password may contain @)
    at_idx = url.rfind("@")
    credentials = url[:at_idx]
    host_part = url[at_idx + 1:]
    # Split credentials at FIRST : to get user and password
    colon_idx = credentials.find(":")
    user = credentials[:colon_idx]
    password = credentials[colon_idx + 1:]
    host_port, database = host_part.split("/", 1) if "/" in host_part else (host_part, "")
    database = database.split("?", 1)[0]
    if ":" in host_port:
        host, port_str = host_port.rsplit(":", 1)
    else:
        host, port_str = host_port, "5432"
    return {
        "user": user,
        "password": password,
        "host": host,
        "port": int(port_str),
        "database": database or "postgres",
    }


def _sqlstate(exc: Exception) -> str:
    detail = exc.args[0] if exc.args else None
    return detail.get("C", "") if isinstance(detail, dict) else ""


class _PgStore:
    """Connection-per-operation base shared by both repositories."""

    def __init__(self, database_url: str) -> None:
        self._connect_args = parse_database_url(database_url)
        self._ensure_schema()

    def _get_conn(self) -> pg8000.native.Connection:
        try:
            return pg8000.native.Connection(ssl_context=True, **self._connect_args)
        except (pg8000.exceptions.InterfaceError, OSError) as exc:
            logger.error("Cannot connect to %s", self._connect_args["host"], exc_info=True)
            raise StorageError(f"Cannot connect to database: {exc}") from exc

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            # pg8000 native runs one statement per call
            for stmt in _INIT_SQL.split(";"):
                if stmt.strip():
                    conn.run(stmt)
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Schema setup failed", exc_info=True)
            raise StorageError(f"Schema setup failed: {exc}") from exc
        finally:
            conn.close()

    def close(self) -> None:
        """Nothing to release: connections live for one operation."""


class PgEventRepository(_PgStore):
    """
    PostgreSQL-backed event store.

    Thread-safe via connection-per-operation pattern. The version check
    and the inserts share one transaction; UNIQUE(permit_id, sequence)
    turns a lost race into ConcurrencyConflictError.
    """

    def allocate_permit_id(self) -> int:
        conn = self._get_conn()
        try:
            rows = conn.run("INSERT INTO permits (allocated_at) VALUES (NOW()) RETURNING permit_id")
            return int(rows[0][0])
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Permit id allocation failed", exc_info=True)
            raise StorageError(f"Permit id allocation failed: {exc}") from exc
        finally:
            conn.close()

    def append_events(
        self,
        permit_id: int,
        events: Sequence[BaseEvent],
        expected_version: int,
    ) -> int:
        if not events:
            return expected_version

        conn = self._get_conn()
        try:
            conn.run("START TRANSACTION")
            try:
                actual = self._last_sequence(conn, permit_id)
                if actual != expected_version:
                    raise ConcurrencyConflictError(permit_id, expected_version, actual)
                for offset, event in enumerate(events, start=1):
                    if event.sequence != expected_version + offset:
                        raise ValueError(
                            f"Event sequence {event.sequence} does not follow "
                            f"version {expected_version + offset - 1}"
                        )
                    event_dict = event.to_dict()
                    conn.run(
                        """
                        INSERT INTO events
                            (permit_id, sequence, event_type, timestamp, payload)
                        VALUES (:pid, :seq, :etype, :ts, :payload)
                        """,
                        pid=permit_id,
                        seq=event_dict["sequence"],
                        etype=event_dict["event_type"],
                        ts=event_dict["timestamp"],
                        payload=json.dumps(event_dict["payload"]),
                    )
                    if event.event_type == "permit_created":
                        conn.run(
                            "UPDATE permits SET permit_number = :num WHERE permit_id = :pid",
                            num=event.payload["permit_number"],
                            pid=permit_id,
                        )
                conn.run("COMMIT")
            except Exception:
                conn.run("ROLLBACK")
                raise
        except pg8000.exceptions.DatabaseError as exc:
            if _sqlstate(exc) == _UNIQUE_VIOLATION:
                raise ConcurrencyConflictError(
                    permit_id, expected_version, self.get_last_sequence(permit_id),
                ) from exc
            logger.error("Append to work permit %s failed", permit_id, exc_info=True)
            raise StorageError(f"Append to work permit {permit_id} failed: {exc}") from exc
        finally:
            conn.close()
        return expected_version + len(events)

    def delete_stream(self, permit_id: int, expected_version: int) -> None:
        conn = self._get_conn()
        try:
            conn.run("START TRANSACTION")
            try:
                actual = self._last_sequence(conn, permit_id)
                if actual != expected_version:
                    raise ConcurrencyConflictError(permit_id, expected_version, actual)
                conn.run("DELETE FROM events WHERE permit_id = :pid", pid=permit_id)
                conn.run("DELETE FROM stream_metadata WHERE permit_id = :pid", pid=permit_id)
                conn.run("DELETE FROM permits WHERE permit_id = :pid", pid=permit_id)
                conn.run("COMMIT")
            except Exception:
                conn.run("ROLLBACK")
                raise
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Delete of work permit %s failed", permit_id, exc_info=True)
            raise StorageError(f"Delete of work permit {permit_id} failed: {exc}") from exc
        finally:
            conn.close()

    def load_events(self, permit_id: int, after_sequence: int = 0) -> List[BaseEvent]:
        """Load events ordered by sequence."""
        conn = self._get_conn()
        try:
            rows = conn.run(
                """
                SELECT event_type, timestamp, sequence, payload
                FROM events
                WHERE permit_id = :pid AND sequence > :seq
                ORDER BY sequence
                """,
                pid=permit_id,
                seq=after_sequence,
            )
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Load of work permit %s failed", permit_id, exc_info=True)
            raise StorageError(f"Load of work permit {permit_id} failed: {exc}") from exc
        finally:
            conn.close()

        result: List[BaseEvent] = []
        for row in rows:
            payload = row[3] if isinstance(row[3], dict) else json.loads(row[3])
            result.append(reconstruct_event(row[0], row[1], row[2], payload))
        return result

    def get_last_sequence(self, permit_id: int) -> int:
        conn = self._get_conn()
        try:
            return self._last_sequence(conn, permit_id)
        finally:
            conn.close()

    def list_permit_ids(self) -> List[int]:
        conn = self._get_conn()
        try:
            rows = conn.run("SELECT DISTINCT permit_id FROM events ORDER BY permit_id")
        finally:
            conn.close()
        return [row[0] for row in rows]

    def update_metadata(self, permit_id: int, sequence: int, state_hash: str) -> None:
        conn = self._get_conn()
        try:
            conn.run(
                """
                INSERT INTO stream_metadata
                    (permit_id, last_sequence, last_state_hash, updated_at)
                VALUES (:pid, :seq, :sh, NOW())
                ON CONFLICT (permit_id) DO UPDATE SET
                    last_sequence = EXCLUDED.last_sequence,
                    last_state_hash = EXCLUDED.last_state_hash,
                    updated_at = NOW()
                WHERE stream_metadata.last_sequence <= EXCLUDED.last_sequence
                """,
                pid=permit_id,
                seq=sequence,
                sh=state_hash,
            )
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Metadata update for work permit %s failed", permit_id, exc_info=True)
            raise StorageError(f"Metadata update failed: {exc}") from exc
        finally:
            conn.close()

    def load_metadata(self, permit_id: int) -> Optional[Tuple[int, str]]:
        conn = self._get_conn()
        try:
            rows = conn.run(
                "SELECT last_sequence, last_state_hash FROM stream_metadata WHERE permit_id = :pid",
                pid=permit_id,
            )
        finally:
            conn.close()
        if not rows:
            return None
        return (rows[0][0], rows[0][1])

    @staticmethod
    def _last_sequence(conn: pg8000.native.Connection, permit_id: int) -> int:
        rows = conn.run(
            "SELECT COALESCE(MAX(sequence), 0) FROM events WHERE permit_id = :pid",
            pid=permit_id,
        )
        return rows[0][0]


class PgReadModelRepository(_PgStore):
    """Permit projection store backed by PostgreSQL."""

    def save(self, state_dict: dict) -> None:
        conn = self._get_conn()
        try:
            conn.run(UPSERT_SQL, **row_values(state_dict))
        except pg8000.exceptions.DatabaseError as exc:
            logger.error(
                "Read model save for work permit %s failed",
                state_dict.get("permit_id"), exc_info=True,
            )
            raise StorageError(f"Read model save failed: {exc}") from exc
        finally:
            conn.close()

    def delete(self, permit_id: int) -> None:
        conn = self._get_conn()
        try:
            conn.run("DELETE FROM permit_read_models WHERE permit_id = :pid", pid=permit_id)
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Read model delete for work permit %s failed", permit_id, exc_info=True)
            raise StorageError(f"Read model delete failed: {exc}") from exc
        finally:
            conn.close()

    def load(self, permit_id: int) -> Optional[dict]:
        conn = self._get_conn()
        try:
            rows = conn.run(
                "SELECT state_json FROM permit_read_models WHERE permit_id = :pid",
                pid=permit_id,
            )
        finally:
            conn.close()
        return json.loads(rows[0][0]) if rows else None

    def all(self) -> List[dict]:
        conn = self._get_conn()
        try:
            rows = conn.run("SELECT state_json FROM permit_read_models ORDER BY permit_id")
        finally:
            conn.close()
        return [json.loads(row[0]) for row in rows]

    def query(self, query: PermitQuery) -> Tuple[List[dict], int]:
        query.validate()
        where, params = build_filter(query)
        order = build_order(query)
        conn = self._get_conn()
        try:
            total = conn.run(f"SELECT COUNT(*) FROM permit_read_models {where}", **params)[0][0]
            rows = conn.run(
                f"SELECT state_json FROM permit_read_models {where} {order}"
                " LIMIT :limit OFFSET :offset",
                limit=query.page_size,
                offset=(query.page - 1) * query.page_size,
                **params,
            )
        except pg8000.exceptions.DatabaseError as exc:
            logger.error("Work permit query failed", exc_info=True)
            raise StorageError(f"Work permit query failed: {exc}") from exc
        finally:
            conn.close()
        return [json.loads(row[0]) for row in rows], total

    def count_by_status(self, query: Optional[PermitQuery] = None) -> Dict[str, int]:
        where, params = build_filter(query or PermitQuery())
        conn = self._get_conn()
        try:
            rows = conn.run(
                f"SELECT status, COUNT(*) FROM permit_read_models {where} GROUP BY status",
                **params,
            )
        finally:
            conn.close()
        counts = {status.value: 0 for status in PermitStatus}
        counts.update({row[0]: row[1] for row in rows})
        return counts
