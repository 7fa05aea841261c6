"""
Work Permit Runtime: Workflow Service Integration Test

Covers:
  - Create → hazards → submit → approvals by another user → start → complete
  - Two approvers racing on the same version: the loser reloads and retries
  - A refresh that lands after a newer commit leaves the newer read model
  - Conflicts beyond the retry limit surface, stream unchanged
  - Cancellation signal: nothing appended, no id allocated
  - Delete only from Draft; files and read model removed
  - Attachments: upload / download / remove, orphan file cleanup
  - Listing, my permits, pending approval, overdue, dashboard
  - Replay verification, including a tampered read model

Run:  python -m permit_runtime.test_workflow
"""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
import threading
from datetime import timedelta

from permit_kernel.domain_types import AttachmentType, PermitStatus, PermitType
from permit_kernel.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
)
from permit_kernel.events import PermitCreatedEvent
from permit_kernel.test_harness import (
    EPOCH,
    SteppingClock,
    make_details,
    make_hazard,
    make_precaution,
)
from permit_runtime.attachments import AttachmentStore
from permit_runtime.event_repository import EventRepository
from permit_runtime.identity import Identity, StaticIdentityProvider
from permit_runtime.read_model_repository import PermitQuery, ReadModelRepository
from permit_runtime.workflow import DeterminismError, PermitWorkflowService


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


REQUESTER = Identity(7, "Siti Rahayu", "Maintenance", "Planner")
APPROVER = Identity(21, "Agus Wijaya", "HSE", "Safety Officer")
MANAGER = Identity(22, "Rina Kusuma", "Operations", "Department Head")


class _Runtime:
    """Temporary database + attachment root, and services bound to it."""

    def __enter__(self):
        self.dir = tempfile.mkdtemp(prefix="permit_wf_")
        db_path = os.path.join(self.dir, "permits.db")
        self.events = EventRepository(db_path)
        self.read_models = ReadModelRepository(db_path)
        self.attachments = AttachmentStore(os.path.join(self.dir, "files"))
        self.clock = SteppingClock()
        return self

    def __exit__(self, *exc_info):
        self.events.close()
        self.read_models.close()
        shutil.rmtree(self.dir, ignore_errors=True)
        return False

    def service(self, identity=REQUESTER, event_repo=None, clock=None, cancellation=None):
        return PermitWorkflowService(
            event_repo or self.events,
            self.read_models,
            StaticIdentityProvider(identity),
            self.attachments,
            clock=clock or self.clock,
            cancellation=cancellation,
        )

    def submitted(self, permit_type=PermitType.GENERAL) -> dict:
        svc = self.service()
        dto = svc.create_permit(make_details(permit_type))
        svc.add_hazard(dto["permit_id"], make_hazard())
        return svc.submit(dto["permit_id"])


class _ConflictingEventRepo:
    """Delegates to a real store, running `before_append` ahead of each append."""

    def __init__(self, inner, before_append):
        self._inner = inner
        self._before_append = before_append
        self.appends = 0

    def append_events(self, permit_id, events, expected_version):
        self.appends += 1
        self._before_append(self.appends, permit_id, expected_version)
        return self._inner.append_events(permit_id, events, expected_version)

    def __getattr__(self, name):
        return getattr(self._inner, name)


class _LateRefreshEventRepo:
    """Delegates to a real store, running `before_refresh` once ahead of the first metadata update."""

    def __init__(self, inner, before_refresh):
        self._inner = inner
        self._before_refresh = before_refresh

    def update_metadata(self, permit_id, sequence, state_hash):
        hook, self._before_refresh = self._before_refresh, None
        if hook is not None:
            hook(permit_id)
        return self._inner.update_metadata(permit_id, sequence, state_hash)

    def __getattr__(self, name):
        return getattr(self._inner, name)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def test_full_lifecycle():
    with _Runtime() as rt:
        requester = rt.service()
        dto = requester.create_permit(make_details(PermitType.GENERAL))
        permit_id = dto["permit_id"]
        assert dto["permit_number"] == f"GP-202601-{permit_id:06d}"
        assert dto["status"] == "Draft" and dto["can_delete"]

        requester.add_hazard(permit_id, make_hazard())
        precaution = requester.add_precaution(permit_id, make_precaution())
        precaution_id = precaution["precautions"][0]["id"]
        dto = requester.submit(permit_id)
        assert dto["status"] == "Submitted"
        assert dto["missing_levels"] == ["SafetyOfficer", "DepartmentHead"]

        dto = rt.service(APPROVER).approve(permit_id, "SafetyOfficer", comments="OK")
        assert dto["status"] == "Submitted" and dto["approval_progress"] == 50
        dto = rt.service(MANAGER).approve(permit_id, "DepartmentHead")
        assert dto["status"] == "Approved" and dto["approval_progress"] == 100
        assert [a["approver_id"] for a in dto["approvals"]] == [APPROVER.user_id, MANAGER.user_id]

        requester.start_work(permit_id)
        requester.complete_precaution(permit_id, precaution_id, notes="Toolbox talk held")
        rt.service(APPROVER).verify_precaution(permit_id, precaution_id)
        dto = requester.complete_work(permit_id, "Gasket replaced, no leaks", True)
        assert dto["status"] == "Completed"
        assert dto["lifecycle_progress"] == 100
        assert dto["precautions"][0]["verified_by"] == APPROVER.name

        report = requester.verify_permit(permit_id)
        assert report["verified"] is True
        assert report["metrics"]["event_count"] == dto["version"]


def test_invalid_create_allocates_nothing():
    with _Runtime() as rt:
        exc = _expect(
            ValidationError, rt.service().create_permit, make_details(number_of_workers=0),
        )
        assert "number_of_workers" in exc.errors
        assert rt.events.list_permit_ids() == []
        assert rt.events.allocate_permit_id() == 1


def test_unknown_permit_not_found():
    with _Runtime() as rt:
        svc = rt.service()
        _expect(NotFoundError, svc.get_permit, 99)
        _expect(NotFoundError, svc.submit, 99)
        _expect(NotFoundError, svc.verify_permit, 99)


def test_failed_guard_appends_nothing():
    with _Runtime() as rt:
        svc = rt.service()
        permit_id = svc.create_permit(make_details())["permit_id"]
        exc = _expect(ValidationError, svc.submit, permit_id)
        assert "hazards" in exc.errors
        _expect(InvalidTransitionError, svc.start_work, permit_id)
        assert rt.events.get_last_sequence(permit_id) == 1


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------

def test_racing_approvals_retry():
    with _Runtime() as rt:
        permit_id = rt.submitted()["permit_id"]
        rival = rt.service(MANAGER)

        def approve_first(attempt, pid, expected_version):
            if attempt == 1:
                rival.approve(pid, "DepartmentHead")

        racing = _ConflictingEventRepo(rt.events, approve_first)
        dto = rt.service(APPROVER, event_repo=racing).approve(permit_id, "SafetyOfficer")

        assert racing.appends == 2
        assert dto["status"] == "Approved"
        assert [a["level"] for a in dto["approvals"]] == ["DepartmentHead", "SafetyOfficer"]


def test_late_refresh_keeps_newer_state():
    with _Runtime() as rt:
        permit_id = rt.submitted()["permit_id"]
        rival = rt.service(MANAGER)

        late = _LateRefreshEventRepo(
            rt.events, lambda pid: rival.approve(pid, "DepartmentHead"),
        )
        rt.service(APPROVER, event_repo=late).approve(permit_id, "SafetyOfficer")

        last = rt.events.get_last_sequence(permit_id)
        assert rt.events.load_metadata(permit_id)[0] == last
        stored = rt.read_models.load(permit_id)
        assert stored["version"] == last
        assert stored["status"] == "Approved"
        assert rt.service().get_permit(permit_id)["status"] == "Approved"
        assert rt.service().verify_permit(permit_id)["verified"] is True


def test_conflicts_exhaust_retries():
    with _Runtime() as rt:
        permit_id = rt.submitted()["permit_id"]
        version = rt.events.get_last_sequence(permit_id)

        def always_conflict(attempt, pid, expected_version):
            raise ConcurrencyConflictError(pid, expected_version, expected_version + 1)

        racing = _ConflictingEventRepo(rt.events, always_conflict)
        _expect(
            ConcurrencyConflictError,
            rt.service(APPROVER, event_repo=racing).approve, permit_id, "SafetyOfficer",
        )
        assert racing.appends == 3
        assert rt.events.get_last_sequence(permit_id) == version


def test_cancellation_signal():
    with _Runtime() as rt:
        permit_id = rt.service().create_permit(make_details())["permit_id"]
        cancelled = threading.Event()
        cancelled.set()
        svc = rt.service(cancellation=cancelled)
        _expect(OperationCancelledError, svc.add_hazard, permit_id, make_hazard())
        _expect(OperationCancelledError, svc.create_permit, make_details())
        assert rt.events.get_last_sequence(permit_id) == 1
        assert rt.events.list_permit_ids() == [permit_id]


# ---------------------------------------------------------------------------
# Delete and attachments
# ---------------------------------------------------------------------------

def test_delete_only_draft():
    with _Runtime() as rt:
        svc = rt.service()
        submitted_id = rt.submitted()["permit_id"]
        exc = _expect(InvalidTransitionError, svc.delete_permit, submitted_id)
        assert exc.operation == "delete"

        draft_id = svc.create_permit(make_details())["permit_id"]
        svc.add_attachment(draft_id, "plan.pdf", "application/pdf", b"%PDF-1.7")
        svc.delete_permit(draft_id)
        _expect(NotFoundError, svc.get_permit, draft_id)
        assert rt.events.load_events(draft_id) == []
        assert not os.path.exists(os.path.join(rt.dir, "files", str(draft_id)))


def test_attachment_roundtrip():
    with _Runtime() as rt:
        svc = rt.service()
        permit_id = rt.submitted()["permit_id"]
        dto = svc.add_attachment(
            permit_id, "Method Statement.PDF", "application/pdf", b"steps",
            AttachmentType.METHOD_STATEMENT, description="Signed copy",
        )
        attachment = dto["attachments"][0]
        assert attachment["original_file_name"] == "Method Statement.PDF"
        assert attachment["file_name"].endswith(".pdf")
        assert attachment["size"] == 5

        meta, data = svc.download_attachment(permit_id, attachment["id"])
        assert data == b"steps" and meta["id"] == attachment["id"]

        dto = svc.remove_attachment(permit_id, attachment["id"])
        assert dto["attachments"] == []
        assert os.listdir(os.path.join(rt.dir, "files", str(permit_id))) == []
        _expect(NotFoundError, svc.remove_attachment, permit_id, attachment["id"])


def test_attachment_file_removed_when_append_fails():
    with _Runtime() as rt:
        permit_id = rt.submitted()["permit_id"]

        def always_conflict(attempt, pid, expected_version):
            raise ConcurrencyConflictError(pid, expected_version, expected_version + 1)

        svc = rt.service(event_repo=_ConflictingEventRepo(rt.events, always_conflict))
        _expect(
            ConcurrencyConflictError,
            svc.add_attachment, permit_id, "photo.jpg", "image/jpeg", b"\xff\xd8",
        )
        assert os.listdir(os.path.join(rt.dir, "files", str(permit_id))) == []


def test_attachment_rejected_on_closed_permit():
    with _Runtime() as rt:
        svc = rt.service()
        permit_id = svc.create_permit(make_details())["permit_id"]
        svc.cancel(permit_id, "Scope moved to next shutdown")
        _expect(
            InvalidTransitionError,
            svc.add_attachment, permit_id, "a.pdf", "application/pdf", b"x",
        )
        assert not os.path.exists(os.path.join(rt.dir, "files", str(permit_id)))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def test_list_and_my_permits():
    with _Runtime() as rt:
        svc = rt.service()
        svc.create_permit(make_details(PermitType.GENERAL))
        rt.submitted(PermitType.HOT_WORK)
        rt.submitted(PermitType.ELECTRICAL_WORK)

        page = svc.list_permits(PermitQuery(page_size=2))
        assert page["total"] == 3 and page["total_pages"] == 2
        assert len(page["items"]) == 2
        assert page["summary"]["Submitted"] == 2

        hot = svc.list_permits(PermitQuery(permit_type="HotWork"))
        assert hot["total"] == 1 and hot["items"][0]["permit_number"].startswith("HW-")

        assert svc.my_permits()["total"] == 3
        assert rt.service(APPROVER).my_permits()["total"] == 0
        assert svc.pending_approval()["total"] == 2


def test_overdue_view():
    with _Runtime() as rt:
        permit_id = rt.submitted()["permit_id"]
        rt.service(APPROVER).approve(permit_id, "SafetyOfficer")
        rt.service(MANAGER).approve(permit_id, "DepartmentHead")
        rt.service().start_work(permit_id)

        assert rt.service().overdue_permits()["total"] == 0
        late = rt.service(clock=SteppingClock(EPOCH + timedelta(days=3)))
        overdue = late.overdue_permits()
        assert overdue["total"] == 1
        assert overdue["items"][0]["is_overdue"] is True
        assert late.dashboard()["overdue_permits"] == 1


def test_dashboard_counts():
    with _Runtime() as rt:
        svc = rt.service()
        svc.create_permit(make_details())
        rt.submitted(PermitType.HOT_WORK)
        stats = svc.dashboard()
        assert stats["total_permits"] == 2
        assert stats["draft_permits"] == 1
        assert stats["pending_approval"] == 1
        assert stats["recent_permits"][0]["permit_type"] == "HotWork"


def test_verify_detects_tampered_read_model():
    with _Runtime() as rt:
        svc = rt.service()
        permit_id = rt.submitted()["permit_id"]
        assert svc.verify_permit(permit_id)["verified"] is True

        stored = rt.read_models.load(permit_id)
        stored["title"] = "Edited behind the event log"
        rt.read_models.save(stored)
        _expect(DeterminismError, svc.verify_permit, permit_id)


def test_seed_stream_gets_fresh_id():
    with _Runtime() as rt:
        svc = rt.service()
        svc.create_permit(make_details())
        source = rt.service().create_permit(make_details(PermitType.EXCAVATION))
        events = rt.events.load_events(source["permit_id"])
        assert isinstance(events[0], PermitCreatedEvent)

        dto = svc.create_from_stream(events)
        assert dto["permit_id"] == 3
        assert dto["permit_number"].endswith("-000003")
        assert dto["status"] == PermitStatus.DRAFT.value
        assert svc.verify_permit(3)["verified"] is True


def main():
    tests = [
        ("Lifecycle: full run", test_full_lifecycle),
        ("Lifecycle: invalid create", test_invalid_create_allocates_nothing),
        ("Lifecycle: unknown permit", test_unknown_permit_not_found),
        ("Lifecycle: failed guard appends nothing", test_failed_guard_appends_nothing),
        ("Concurrency: racing approvals retry", test_racing_approvals_retry),
        ("Concurrency: late refresh keeps newer state", test_late_refresh_keeps_newer_state),
        ("Concurrency: retries exhausted", test_conflicts_exhaust_retries),
        ("Concurrency: cancellation signal", test_cancellation_signal),
        ("Delete: draft only", test_delete_only_draft),
        ("Attachments: roundtrip", test_attachment_roundtrip),
        ("Attachments: orphan cleanup", test_attachment_file_removed_when_append_fails),
        ("Attachments: closed permit", test_attachment_rejected_on_closed_permit),
        ("Queries: list + my permits", test_list_and_my_permits),
        ("Queries: overdue", test_overdue_view),
        ("Queries: dashboard", test_dashboard_counts),
        ("Verify: tampered read model", test_verify_detects_tampered_read_model),
        ("Seed: stream gets fresh id", test_seed_stream_gets_fresh_id),
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
