"""
Work Permit Runtime: Repository Tests

Covers:
  - Event store: append, typed reload, stale expected_version rejected
    with the stream unchanged, sequence gaps rejected, delete
  - Stream metadata upsert
  - Read-model store: upsert, filters, search, sort, paging, summary
  - Query validation
  - DTO mapping and dashboard aggregation (pure functions)

Run:  python -m permit_runtime.test_repositories
"""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from datetime import timedelta

from permit_kernel.domain_types import PermitStatus, PermitType
from permit_kernel.errors import ConcurrencyConflictError, ValidationError
from permit_kernel.events import HazardAddedEvent, PermitCreatedEvent
from permit_kernel.hashing import canonical_hash, hash_state_dict
from permit_kernel.test_harness import (
    EPOCH,
    REQUESTOR,
    approved_permit,
    make_hazard,
    new_permit,
    submitted_permit,
)
from permit_runtime.dashboard import compute_dashboard
from permit_runtime.event_repository import EventRepository
from permit_runtime.read_model_repository import PermitQuery, ReadModelRepository
from permit_runtime.read_models import to_dto


_pass = 0
_fail = 0


def _test(name, fn):
    global _pass, _fail
    try:
        fn()
        print(f"  [PASS] {name}")
        _pass += 1
    except Exception as exc:
        print(f"  [FAIL] {name}: {exc}")
        _fail += 1


def _expect(exc_type, fn, *args, **kwargs):
    try:
        fn(*args, **kwargs)
    except exc_type as exc:
        return exc
    raise AssertionError(f"{fn.__name__} should raise {exc_type.__name__}")


class _Store:
    """Temporary database shared by an event store and a read-model store."""

    def __enter__(self):
        self.dir = tempfile.mkdtemp(prefix="permit_repo_")
        db_path = os.path.join(self.dir, "permits.db")
        self.events = EventRepository(db_path)
        self.read_models = ReadModelRepository(db_path)
        return self

    def __exit__(self, *exc_info):
        self.events.close()
        self.read_models.close()
        shutil.rmtree(self.dir, ignore_errors=True)
        return False


# ---------------------------------------------------------------------------
# Event store
# ---------------------------------------------------------------------------

def test_append_and_typed_reload():
    with _Store() as store:
        permit_id = store.events.allocate_permit_id()
        permit = new_permit(permit_id=permit_id)
        permit.add_hazard(make_hazard(), actor=REQUESTOR.name)
        events = permit.collect_pending()

        version = store.events.append_events(permit_id, events, expected_version=0)
        assert version == 2
        loaded = store.events.load_events(permit_id)
        assert [type(e) for e in loaded] == [PermitCreatedEvent, HazardAddedEvent]
        assert [e.to_dict() for e in loaded] == [e.to_dict() for e in events]
        assert store.events.get_last_sequence(permit_id) == 2
        assert store.events.list_permit_ids() == [permit_id]


def test_stale_expected_version_rejected():
    with _Store() as store:
        permit_id = store.events.allocate_permit_id()
        permit = new_permit(permit_id=permit_id)
        store.events.append_events(permit_id, permit.collect_pending(), 0)

        # Two writers based on version 1; the second must lose.
        permit.add_hazard(make_hazard(), actor=REQUESTOR.name)
        first = permit.collect_pending()
        store.events.append_events(permit_id, first, 1)

        exc = _expect(
            ConcurrencyConflictError,
            store.events.append_events, permit_id, first, 1,
        )
        assert exc.expected == 1 and exc.actual == 2
        assert exc.retryable
        assert store.events.get_last_sequence(permit_id) == 2


def test_sequence_gap_rejected_atomically():
    with _Store() as store:
        permit_id = store.events.allocate_permit_id()
        permit = new_permit(permit_id=permit_id)
        created = permit.collect_pending()
        gap = HazardAddedEvent(timestamp=created[0].timestamp, sequence=5, payload={})
        _expect(ValueError, store.events.append_events, permit_id, created + [gap], 0)
        assert store.events.load_events(permit_id) == []


def test_permit_ids_never_reused():
    with _Store() as store:
        first = store.events.allocate_permit_id()
        permit = new_permit(permit_id=first)
        store.events.append_events(first, permit.collect_pending(), 0)
        store.events.delete_stream(first, expected_version=1)
        assert store.events.load_events(first) == []
        assert store.events.allocate_permit_id() > first


def test_metadata_upsert():
    with _Store() as store:
        assert store.events.load_metadata(3) is None
        store.events.update_metadata(3, 1, "aaa")
        store.events.update_metadata(3, 4, "bbb")
        assert store.events.load_metadata(3) == (4, "bbb")
        store.events.update_metadata(3, 2, "stale")
        assert store.events.load_metadata(3) == (4, "bbb")


# ---------------------------------------------------------------------------
# Read-model store
# ---------------------------------------------------------------------------

def _seed_read_models(store) -> None:
    draft = new_permit(PermitType.GENERAL, permit_id=1)
    hot = submitted_permit(PermitType.HOT_WORK, permit_id=2)
    elec = approved_permit(PermitType.ELECTRICAL_WORK, permit_id=3, title="Panel MCC-4 rewiring")
    for permit in (draft, hot, elec):
        store.read_models.save(permit.state.to_dict())


def test_read_model_upsert_and_load():
    with _Store() as store:
        permit = new_permit(permit_id=9)
        first = permit.state.to_dict()
        store.read_models.save(first)
        permit.add_hazard(make_hazard(), actor=REQUESTOR.name)
        store.read_models.save(permit.state.to_dict())
        loaded = store.read_models.load(9)
        assert loaded == permit.state.to_dict()
        store.read_models.save(first)
        assert store.read_models.load(9) == permit.state.to_dict()
        assert len(store.read_models.all()) == 1
        store.read_models.delete(9)
        assert store.read_models.load(9) is None


def test_query_filters_and_summary():
    with _Store() as store:
        _seed_read_models(store)

        items, total = store.read_models.query(PermitQuery(permit_type="HotWork"))
        assert total == 1 and items[0]["permit_id"] == 2

        items, total = store.read_models.query(PermitQuery(search="mcc-4"))
        assert total == 1 and items[0]["permit_id"] == 3

        items, total = store.read_models.query(PermitQuery(requestor_id=REQUESTOR.id))
        assert total == 3

        summary = store.read_models.count_by_status()
        assert summary[PermitStatus.DRAFT.value] == 1
        assert summary[PermitStatus.SUBMITTED.value] == 1
        assert summary[PermitStatus.APPROVED.value] == 1
        assert summary[PermitStatus.CANCELLED.value] == 0


def test_query_sort_and_paging():
    with _Store() as store:
        _seed_read_models(store)
        items, total = store.read_models.query(PermitQuery(
            sort_by="permit_number", sort_descending=False, page=2, page_size=2,
        ))
        assert total == 3
        assert [i["permit_id"] for i in items] == [2]  # EW, GP, HW


def test_query_validation():
    with _Store() as store:
        exc = _expect(ValidationError, store.read_models.query, PermitQuery(page_size=500))
        assert "page_size" in exc.errors
        exc = _expect(ValidationError, store.read_models.query, PermitQuery(sort_by="payload"))
        assert "sort_by" in exc.errors


# ---------------------------------------------------------------------------
# DTO mapping and dashboard
# ---------------------------------------------------------------------------

def test_dto_derived_fields():
    permit = submitted_permit(PermitType.GENERAL)
    permit.approve(100, "Agus", "SafetyOfficer")
    dto = to_dto(permit.state.to_dict(), now=EPOCH)
    assert dto["required_levels"] == ["SafetyOfficer", "DepartmentHead"]
    assert dto["received_levels"] == ["SafetyOfficer"]
    assert dto["missing_levels"] == ["DepartmentHead"]
    assert dto["approval_progress"] == 50
    assert dto["can_approve"] and not dto["can_edit"] and not dto["can_delete"]
    assert dto["lifecycle_progress"] == 20
    assert dto["days_until_start"] == 1
    assert dto["precaution_completion_percent"] == 100
    assert dto["is_overdue"] is False


def test_dto_draft_uses_live_policy():
    permit = new_permit(PermitType.HOT_WORK)
    dto = to_dto(permit.state.to_dict(), now=EPOCH)
    assert "HotWorkSpecialist" in dto["required_levels"]
    assert dto["can_edit"] and dto["can_delete"] and dto["can_cancel"]
    assert dto["can_submit"] is False  # no hazards yet


def test_dto_overdue_in_progress():
    permit = approved_permit()
    permit.start_work("Budi Santoso")
    state = permit.state.to_dict()
    assert to_dto(state, now=EPOCH)["is_overdue"] is False
    late = to_dto(state, now=EPOCH + timedelta(days=3))
    assert late["is_overdue"] is True
    assert late["days_until_end"] == -1


def test_dashboard_aggregates():
    draft = new_permit(PermitType.GENERAL, permit_id=1)
    hot = submitted_permit(PermitType.HOT_WORK, permit_id=2)
    done = approved_permit(PermitType.GENERAL, permit_id=3)
    done.start_work("Budi Santoso")
    done.complete_work("Budi Santoso", "All clear", True)

    now = EPOCH + timedelta(hours=1)
    dtos = [to_dto(p.state.to_dict(), now=now) for p in (draft, hot, done)]
    stats = compute_dashboard(dtos, now)

    assert stats["total_permits"] == 3
    assert stats["draft_permits"] == 1
    assert stats["pending_approval"] == 1
    assert stats["completed_permits"] == 1
    assert stats["due_this_week"] == 1 and stats["due_today"] == 0
    by_type = {row["permit_type"]: row for row in stats["by_type"]}
    assert by_type["General"]["count"] == 2 and by_type["General"]["percentage"] == 67
    assert by_type["HotWork"]["percentage"] == 33
    assert len(stats["monthly_trend"]) == 12
    assert stats["monthly_trend"][-1] == {
        "month": "2026-01", "total": 3, "completed": 1, "completed_safely": 1,
    }
    assert len(stats["recent_permits"]) == 3


def test_empty_dashboard():
    stats = compute_dashboard([], EPOCH)
    assert stats["total_permits"] == 0
    assert all(row["percentage"] == 0 for row in stats["by_type"])


def test_read_model_hash_matches_state():
    with _Store() as store:
        permit = approved_permit(permit_id=4)
        store.read_models.save(permit.state.to_dict())
        assert hash_state_dict(store.read_models.load(4)) == canonical_hash(permit.state)


def main():
    tests = [
        ("Events: append + typed reload", test_append_and_typed_reload),
        ("Events: stale version rejected", test_stale_expected_version_rejected),
        ("Events: sequence gap atomic", test_sequence_gap_rejected_atomically),
        ("Events: ids never reused", test_permit_ids_never_reused),
        ("Events: metadata upsert", test_metadata_upsert),
        ("Read models: upsert + load", test_read_model_upsert_and_load),
        ("Read models: filters + summary", test_query_filters_and_summary),
        ("Read models: sort + paging", test_query_sort_and_paging),
        ("Read models: query validation", test_query_validation),
        ("DTO: derived fields", test_dto_derived_fields),
        ("DTO: draft uses live policy", test_dto_draft_uses_live_policy),
        ("DTO: overdue", test_dto_overdue_in_progress),
        ("Dashboard: aggregates", test_dashboard_aggregates),
        ("Dashboard: empty", test_empty_dashboard),
        ("Read models: hash matches state", test_read_model_hash_matches_state),
    ]

    print(f"\nRunning {len(tests)} tests...\n")
    for name, fn in tests:
        _test(name, fn)

    print(f"\n{'='*60}")
    print(f"  {_pass} passed, {_fail} failed out of {_pass + _fail}")
    print(f"{'='*60}")

    if _fail > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
