"""
Read Model Repository: sqlite3-backed permit projections.

Each row holds PermitState.to_dict() for the latest version of a permit
plus a few denormalised columns for filtering and sorting. Rows are
rebuilt from the event stream after every command and are never used
to reconstruct state; that always goes through engine.replay().

The filter SQL uses named `:param` placeholders, which both sqlite3 and
pg8000.native accept, so the PostgreSQL variant shares `build_filter`.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from permit_kernel.domain_types import PermitStatus, format_timestamp
from permit_kernel.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

MAX_PAGE_SIZE = 100

SORT_COLUMNS = {
    "created_at": "created_at",
    "planned_start": "planned_start",
    "planned_end": "planned_end",
    "title": "title",
    "status": "status",
    "priority": "priority",
    "risk_level": "risk_level",
    "permit_number": "permit_number",
}


@dataclass(frozen=True)
class PermitQuery:
    """Filters, sort and paging for permit listings."""

    search: str = ""
    permit_type: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    risk_level: Optional[str] = None
    requestor_id: Optional[int] = None
    statuses: Tuple[str, ...] = ()
    planned_end_before: Optional[datetime] = None
    sort_by: str = "created_at"
    sort_descending: bool = True
    page: int = 1
    page_size: int = 20

    def validate(self) -> None:
        errors: Dict[str, List[str]] = {}
        if self.sort_by not in SORT_COLUMNS:
            errors.setdefault("sort_by", []).append(
                f"Unknown sort field {self.sort_by!r}"
            )
        if self.page < 1:
            errors.setdefault("page", []).append("Page must be at least 1")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            errors.setdefault("page_size", []).append(
                f"Page size must be between 1 and {MAX_PAGE_SIZE}"
            )
        if errors:
            raise ValidationError(errors)


def build_filter(query: PermitQuery) -> Tuple[str, dict]:
    """Return (WHERE clause, params) for a query. Empty clause when unfiltered."""
    clauses: List[str] = []
    params: dict = {}
    if query.search.strip():
        clauses.append(
            "(LOWER(title) LIKE :search OR LOWER(description) LIKE :search"
            " OR LOWER(work_location) LIKE :search OR LOWER(permit_number) LIKE :search)"
        )
        params["search"] = f"%{query.search.strip().lower()}%"
    for column in ("permit_type", "status", "priority", "risk_level", "requestor_id"):
        value = getattr(query, column)
        if value is not None:
            clauses.append(f"{column} = :{column}")
            params[column] = value.value if isinstance(value, Enum) else value
    if query.statuses:
        names = []
        for i, status in enumerate(query.statuses):
            names.append(f":status_{i}")
            params[f"status_{i}"] = status
        clauses.append(f"status IN ({', '.join(names)})")
    if query.planned_end_before is not None:
        clauses.append("planned_end IS NOT NULL AND planned_end < :planned_end_before")
        params["planned_end_before"] = format_timestamp(query.planned_end_before)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def build_order(query: PermitQuery) -> str:
    direction = "DESC" if query.sort_descending else "ASC"
    return f"ORDER BY {SORT_COLUMNS[query.sort_by]} {direction}, permit_id {direction}"


def row_values(state_dict: dict) -> dict:
    """Denormalised columns for one state dict."""
    requestor = state_dict.get("requestor") or {}
    return {
        "permit_id": state_dict["permit_id"],
        "permit_number": state_dict["permit_number"],
        "title": state_dict["title"],
        "description": state_dict["description"],
        "work_location": state_dict["work_location"],
        "permit_type": state_dict["permit_type"],
        "status": state_dict["status"],
        "priority": state_dict["priority"],
        "risk_level": state_dict["risk_level"],
        "requestor_id": requestor.get("id"),
        "planned_start": state_dict["planned_start"],
        "planned_end": state_dict["planned_end"],
        "created_at": state_dict["created_at"],
        "version": state_dict["version"],
        "state_json": json.dumps(state_dict, ensure_ascii=False),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }


UPSERT_SQL = """
    INSERT INTO permit_read_models
        (permit_id, permit_number, title, description, work_location,
         permit_type, status, priority, risk_level, requestor_id,
         planned_start, planned_end, created_at, version, state_json, updated_at)
    VALUES
        (:permit_id, :permit_number, :title, :description, :work_location,
         :permit_type, :status, :priority, :risk_level, :requestor_id,
         :planned_start, :planned_end, :created_at, :version, :state_json, :updated_at)
    ON CONFLICT (permit_id) DO UPDATE SET
        permit_number = excluded.permit_number,
        title = excluded.title,
        description = excluded.description,
        work_location = excluded.work_location,
        permit_type = excluded.permit_type,
        status = excluded.status,
        priority = excluded.priority,
        risk_level = excluded.risk_level,
        requestor_id = excluded.requestor_id,
        planned_start = excluded.planned_start,
        planned_end = excluded.planned_end,
        created_at = excluded.created_at,
        version = excluded.version,
        state_json = excluded.state_json,
        updated_at = excluded.updated_at
    WHERE permit_read_models.version <= excluded.version
"""


class ReadModelRepository:
    """
    Permit projection store backed by sqlite3.
    Shares the same DB file as EventRepository.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._ensure_schema()
        except sqlite3.Error as exc:
            logger.error("Cannot open read model store %s", self._db_path, exc_info=True)
            raise StorageError(f"Cannot open read model store: {exc}") from exc

    def _ensure_schema(self) -> None:
        schema_sql = _SCHEMA_PATH.read_text(encoding="utf-8")
        self._conn.executescript(schema_sql)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def save(self, state_dict: dict) -> None:
        """Insert or replace the projection for one permit, unless a newer version is stored."""
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(UPSERT_SQL, row_values(state_dict))
            except sqlite3.Error as exc:
                logger.error(
                    "Read model save for work permit %s failed",
                    state_dict.get("permit_id"), exc_info=True,
                )
                raise StorageError(f"Read model save failed: {exc}") from exc

    def delete(self, permit_id: int) -> None:
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "DELETE FROM permit_read_models WHERE permit_id = ?", (permit_id,),
                    )
            except sqlite3.Error as exc:
                logger.error("Read model delete for work permit %s failed", permit_id, exc_info=True)
                raise StorageError(f"Read model delete failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def load(self, permit_id: int) -> Optional[dict]:
        """Return the stored state dict, or None."""
        with self._lock:
            row = self._conn.execute(
                "SELECT state_json FROM permit_read_models WHERE permit_id = ?",
                (permit_id,),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def all(self) -> List[dict]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT state_json FROM permit_read_models ORDER BY permit_id",
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def query(self, query: PermitQuery) -> Tuple[List[dict], int]:
        """
        Run a filtered, sorted, paged listing.
        Returns (state dicts of the page, total matching count).
        """
        query.validate()
        where, params = build_filter(query)
        order = build_order(query)
        page_params = dict(params)
        page_params["limit"] = query.page_size
        page_params["offset"] = (query.page - 1) * query.page_size
        with self._lock:
            try:
                total = self._conn.execute(
                    f"SELECT COUNT(*) FROM permit_read_models {where}", params,
                ).fetchone()[0]
                rows = self._conn.execute(
                    f"SELECT state_json FROM permit_read_models {where} {order}"
                    " LIMIT :limit OFFSET :offset",
                    page_params,
                ).fetchall()
            except sqlite3.Error as exc:
                logger.error("Work permit query failed", exc_info=True)
                raise StorageError(f"Work permit query failed: {exc}") from exc
        return [json.loads(row[0]) for row in rows], total

    def count_by_status(self, query: Optional[PermitQuery] = None) -> Dict[str, int]:
        """Status totals for the rows matching `query` (all rows when None)."""
        where, params = build_filter(query or PermitQuery())
        with self._lock:
            rows = self._conn.execute(
                f"SELECT status, COUNT(*) FROM permit_read_models {where} GROUP BY status",
                params,
            ).fetchall()
        counts = {status.value: 0 for status in PermitStatus}
        counts.update({row[0]: row[1] for row in rows})
        return counts

    def close(self) -> None:
        with self._lock:
            self._conn.close()
