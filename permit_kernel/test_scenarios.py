"""
Work Permit Kernel: Lifecycle Scenarios

Executable scenarios over the WorkPermit state machine:
  - Round trip: create, 2 hazards, submit, approve all → Approved @ 100%
  - Reject → resubmit keeps the append-only approval history
  - CompleteWork on Approved → InvalidTransition
  - Add hazard/precaution outside Draft/Rejected → InvalidTransition
  - Submit without hazards → ValidationFailure
  - Cancel from every non-terminal status; not from terminal ones
  - Zero-required-levels permit needs one nominal approval
  - Failed operations leave the aggregate untouched
  - Engine sequence / creation-first enforcement, replay hash stability

Run:  python -m permit_kernel.test_scenarios
"""

from __future__ import annotations

import sys
from dataclasses import replace

from permit_kernel.approvals import policy_from_dict
from permit_kernel.domain_types import (
    SAFETY_FLAGS,
    PermitPriority,
    PermitStatus,
    PermitType,
    RiskLevel,
)
from permit_kernel.engine import PermitEngine
from permit_kernel.errors import InvalidTransitionError, ValidationError
from permit_kernel.events import PermitCreatedEvent, WorkStartedEvent
from permit_kernel.hashing import canonical_hash
from permit_kernel.invariants import InvariantViolationError
from permit_kernel.permit import WorkPermit
from permit_kernel.test_harness import (
    REQUESTOR,
    SteppingClock,
    approve_all,
    approved_permit,
    make_details,
    make_hazard,
    make_precaution,
    new_permit,
    submitted_permit,
)


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


ACTOR = REQUESTOR.name


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

def test_create_draft():
    permit = new_permit(PermitType.HOT_WORK, permit_id=42)
    state = permit.state
    assert state.status == PermitStatus.DRAFT
    assert state.permit_number == "HW-202601-000042"
    assert state.priority == PermitPriority.HIGH
    assert state.estimated_duration_hours == 8
    assert state.requestor == REQUESTOR
    assert permit.version == 1
    assert [e.event_type for e in permit.pending_events] == ["permit_created"]


def test_create_priority_by_type():
    assert new_permit(PermitType.CONFINED_SPACE).state.priority == PermitPriority.CRITICAL
    assert new_permit(PermitType.GENERAL).state.priority == PermitPriority.MEDIUM
    explicit = new_permit(PermitType.GENERAL, priority=PermitPriority.LOW)
    assert explicit.state.priority == PermitPriority.LOW


def test_create_validation_collects_fields():
    details = make_details(
        PermitType.HOT_WORK,
        title="",
        number_of_workers=0,
        work_supervisor="",
    )
    details = replace(details, planned_end=details.planned_start)
    exc = _expect(ValidationError, WorkPermit.create, 1, details, ACTOR)
    for field in ("title", "number_of_workers", "work_supervisor", "planned_end"):
        assert field in exc.errors, field


def test_create_rejects_long_span_and_bad_phone():
    from datetime import timedelta
    from permit_kernel.domain_types import RequestorSnapshot

    details = make_details(
        planned_end=make_details().planned_start + timedelta(days=366),
        requestor=RequestorSnapshot(id=7, name="Siti", contact_phone="call me"),
    )
    exc = _expect(ValidationError, WorkPermit.create, 1, details, ACTOR)
    assert "planned_end" in exc.errors
    assert "requestor.contact_phone" in exc.errors


def test_create_mixed_naive_and_aware_schedule():
    from datetime import datetime, timezone

    details = make_details(
        planned_start=datetime(2026, 1, 6, 8, 0),
        planned_end=datetime(2026, 1, 6, 16, 0, tzinfo=timezone.utc),
    )
    assert details.planned_start.tzinfo == timezone.utc
    state = WorkPermit.create(1, details, ACTOR).state
    assert state.estimated_duration_hours == 8
    assert state.to_dict()["planned_start"] == "2026-01-06T08:00:00+00:00"

    backwards = make_details(
        planned_start=datetime(2026, 1, 6, 8, 0, tzinfo=timezone.utc),
        planned_end=datetime(2026, 1, 6, 7, 0),
    )
    exc = _expect(ValidationError, WorkPermit.create, 1, backwards, ACTOR)
    assert "planned_end" in exc.errors


def test_hot_work_requires_fire_watch():
    from permit_kernel.domain_types import SafetyRequirements

    details = make_details(PermitType.GENERAL)
    details = replace(details, safety=SafetyRequirements(hot_work=True))
    exc = _expect(ValidationError, WorkPermit.create, 1, details, ACTOR)
    assert "safety.fire_watch" in exc.errors


# ---------------------------------------------------------------------------
# Lifecycle scenarios
# ---------------------------------------------------------------------------

def test_round_trip_approved_at_100():
    permit = new_permit(PermitType.GENERAL)
    permit.add_hazard(make_hazard(3, 4), actor=ACTOR)
    permit.add_hazard(make_hazard(1, 1, description="Trip over hose"), actor=ACTOR)
    permit.submit(actor=ACTOR)
    assert permit.status == PermitStatus.SUBMITTED
    assert permit.approval_progress == 0

    required = permit.required_levels
    for i, level in enumerate(required[:-1], start=1):
        result = permit.approve(i, f"Approver {i}", level)
        assert permit.status == PermitStatus.SUBMITTED
        assert not result.approval_complete
    result = permit.approve(99, "Final Approver", required[-1])

    assert result.approval_complete
    assert result.status_changed
    assert permit.status == PermitStatus.APPROVED
    assert permit.approval_progress == 100
    assert permit.missing_levels == ()
    assert permit.state.approved_at is not None


def test_approved_iff_all_required_levels():
    permit = submitted_permit(PermitType.HOT_WORK)
    required = permit.required_levels
    # approving a non-required level any number of times changes nothing
    permit.approve(1, "Extra", "Supervisor")
    permit.approve(2, "Extra", "Supervisor")
    assert permit.status == PermitStatus.SUBMITTED
    for i, level in enumerate(required, start=10):
        assert permit.status == PermitStatus.SUBMITTED
        permit.approve(i, "A", level)
    assert permit.status == PermitStatus.APPROVED


def test_reject_then_resubmit_keeps_history():
    permit = submitted_permit()
    permit.approve(1, "Dewi", "SafetyOfficer")
    permit.reject(2, "Agus", "Missing isolation certificate")
    assert permit.status == PermitStatus.REJECTED
    assert permit.state.rejection_reason == "Missing isolation certificate"

    permit.add_precaution(make_precaution(), actor=ACTOR)
    permit.submit(actor=ACTOR)
    assert permit.status == PermitStatus.SUBMITTED
    approvals = permit.state.approvals
    assert len(approvals) == 2
    assert [a.order for a in approvals] == [1, 2]
    assert approvals[1].is_approved is False
    assert approvals[1].comments == "Missing isolation certificate"
    assert permit.state.submission_count == 2


def test_complete_work_on_approved_fails():
    permit = approved_permit()
    _expect(InvalidTransitionError, permit.complete_work, ACTOR, "done", True)
    assert permit.status == PermitStatus.APPROVED


def test_start_and_complete():
    permit = approved_permit()
    permit.start_work(actor="Budi")
    assert permit.status == PermitStatus.IN_PROGRESS
    assert permit.state.actual_start is not None
    _expect(ValidationError, permit.complete_work, "Budi", "   ", True)
    permit.complete_work("Budi", "All done", True, lessons_learned="Pre-stage spares")
    state = permit.state
    assert state.status == PermitStatus.COMPLETED
    assert state.actual_end is not None
    assert state.is_completed_safely is True
    assert state.lessons_learned == "Pre-stage spares"


def test_ledgers_frozen_after_submit():
    permit = submitted_permit()
    _expect(InvalidTransitionError, permit.add_hazard, make_hazard(), ACTOR)
    _expect(InvalidTransitionError, permit.add_precaution, make_precaution(), ACTOR)
    approve_all(permit)
    _expect(InvalidTransitionError, permit.add_hazard, make_hazard(), ACTOR)
    permit.start_work(ACTOR)
    _expect(InvalidTransitionError, permit.add_precaution, make_precaution(), ACTOR)


def test_submit_without_hazards_fails():
    permit = new_permit()
    exc = _expect(ValidationError, permit.submit, ACTOR)
    assert "hazards" in exc.errors
    assert permit.status == PermitStatus.DRAFT


def test_submit_requires_risk_summary_for_high_risk():
    permit = new_permit(PermitType.CONFINED_SPACE, risk_assessment_summary="", emergency_procedures="")
    permit.add_hazard(make_hazard(), actor=ACTOR)
    exc = _expect(ValidationError, permit.submit, ACTOR)
    assert "risk_assessment_summary" in exc.errors
    assert "emergency_procedures" in exc.errors


def test_cancel_from_every_non_terminal_status():
    builders = {
        PermitStatus.DRAFT: new_permit,
        PermitStatus.SUBMITTED: submitted_permit,
        PermitStatus.APPROVED: approved_permit,
    }
    for status, build in builders.items():
        permit = build()
        assert permit.status == status
        permit.cancel(ACTOR, "Plant shutdown rescheduled")
        assert permit.status == PermitStatus.CANCELLED

    in_progress = approved_permit()
    in_progress.start_work(ACTOR)
    in_progress.cancel(ACTOR, "Weather")
    assert in_progress.status == PermitStatus.CANCELLED
    assert in_progress.state.actual_start is not None

    rejected = submitted_permit()
    rejected.reject(1, "Agus", "Incomplete JSA")
    rejected.cancel(ACTOR, "Scope withdrawn")
    assert rejected.status == PermitStatus.CANCELLED


def test_cancel_from_terminal_fails():
    cancelled = new_permit()
    cancelled.cancel(ACTOR, "Not needed")
    _expect(InvalidTransitionError, cancelled.cancel, ACTOR, "again")

    completed = approved_permit()
    completed.start_work(ACTOR)
    completed.complete_work(ACTOR, "done", True)
    _expect(InvalidTransitionError, completed.cancel, ACTOR, "too late")


def test_cancel_requires_reason():
    permit = new_permit()
    _expect(ValidationError, permit.cancel, ACTOR, "  ")
    assert permit.status == PermitStatus.DRAFT


def test_approve_guards():
    draft = new_permit()
    _expect(InvalidTransitionError, draft.approve, 1, "A", "SafetyOfficer")
    submitted = submitted_permit()
    _expect(ValidationError, submitted.approve, 1, "A", "  ")
    _expect(ValidationError, submitted.reject, 1, "A", "")
    assert submitted.state.approvals == []


def test_zero_required_levels_need_one_approval():
    empty = policy_from_dict({})
    permit = submitted_permit(PermitType.GENERAL, policy=empty)
    assert permit.required_levels == ()
    assert permit.status == PermitStatus.SUBMITTED
    assert permit.approval_progress == 0
    permit.approve(1, "Dewi", "SafetyOfficer")
    assert permit.status == PermitStatus.APPROVED


def test_required_levels_locked_at_submission():
    permit = submitted_permit(PermitType.HOT_WORK)
    locked = permit.required_levels
    events = list(permit.pending_events)

    strict = policy_from_dict({"baseline": ["CEO"]})
    replayed = WorkPermit.load(events, policy=strict)
    assert replayed.required_levels == locked


def test_failed_operation_leaves_state_unchanged():
    permit = submitted_permit()
    before = canonical_hash(permit.state)
    version = permit.version
    pending = len(permit.pending_events)
    _expect(InvalidTransitionError, permit.start_work, ACTOR)
    _expect(InvalidTransitionError, permit.add_hazard, make_hazard(), ACTOR)
    assert canonical_hash(permit.state) == before
    assert permit.version == version
    assert len(permit.pending_events) == pending


def test_overall_risk_tracks_hazards():
    permit = new_permit()
    assert permit.state.risk_level == RiskLevel.LOW
    h1 = permit.add_hazard(make_hazard(4, 5), actor=ACTOR)
    assert permit.state.risk_level == RiskLevel.MEDIUM
    permit.add_hazard(make_hazard(5, 5), actor=ACTOR)
    assert permit.state.risk_level == RiskLevel.HIGH
    permit.remove_hazard(h1.id, actor=ACTOR)
    assert permit.state.risk_level == RiskLevel.MEDIUM


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def test_engine_sequence_enforced():
    permit = new_permit()
    created = permit.pending_events[0]
    engine = PermitEngine()
    engine.initialize_state()
    engine.apply_event(created)
    gap = WorkStartedEvent(timestamp=created.timestamp, sequence=3, payload={})
    _expect(ValueError, engine.apply_event, gap)
    dup = PermitCreatedEvent(timestamp=created.timestamp, sequence=2, payload=created.payload)
    _expect(ValueError, engine.apply_event, dup)


def test_engine_creation_first():
    engine = PermitEngine()
    engine.initialize_state()
    _expect(ValueError, engine.apply_event,
            WorkStartedEvent(timestamp="2026-01-05T08:00:00+00:00", sequence=1, payload={}))


def test_replay_hash_stable():
    permit = approved_permit(PermitType.SPECIAL, clock=SteppingClock())
    permit.start_work(ACTOR)
    events = list(permit.pending_events)
    a = WorkPermit.load(events)
    b = WorkPermit.load(events)
    assert canonical_hash(a.state) == canonical_hash(b.state) == canonical_hash(permit.state)
    assert a.pending_events == ()


def test_invariant_catches_corruption():
    permit = approved_permit()
    engine = permit._engine
    engine.state.approvals.clear()
    event = WorkStartedEvent(
        timestamp="2026-02-01T00:00:00+00:00",
        sequence=engine.last_sequence + 1,
        payload={"actor": ACTOR},
    )
    _expect(InvariantViolationError, engine.apply_event, event)


def test_every_type_can_reach_completed():
    for permit_type in PermitType:
        permit = approved_permit(permit_type)
        permit.start_work(ACTOR)
        permit.complete_work(ACTOR, "done", True)
        assert permit.status == PermitStatus.COMPLETED, permit_type


def test_all_flags_permit_lifecycle():
    from permit_kernel.domain_types import SafetyRequirements

    everything = SafetyRequirements(**{f: True for f in SAFETY_FLAGS})
    permit = approved_permit(PermitType.SPECIAL, safety=everything)
    assert "RadiationSafetyOfficer" in permit.received_levels
    assert permit.state.risk_level == RiskLevel.CRITICAL


def main():
    tests = [
        ("Create: draft + number", test_create_draft),
        ("Create: priority by type", test_create_priority_by_type),
        ("Create: validation collects fields", test_create_validation_collects_fields),
        ("Create: span + phone", test_create_rejects_long_span_and_bad_phone),
        ("Create: mixed naive and aware schedule", test_create_mixed_naive_and_aware_schedule),
        ("Create: hot work needs fire watch", test_hot_work_requires_fire_watch),
        ("Round trip: approved at 100%", test_round_trip_approved_at_100),
        ("Approved iff all required levels", test_approved_iff_all_required_levels),
        ("Reject → resubmit keeps history", test_reject_then_resubmit_keeps_history),
        ("CompleteWork on Approved fails", test_complete_work_on_approved_fails),
        ("Start + complete", test_start_and_complete),
        ("Ledgers frozen after submit", test_ledgers_frozen_after_submit),
        ("Submit without hazards fails", test_submit_without_hazards_fails),
        ("Submit: high-risk text required", test_submit_requires_risk_summary_for_high_risk),
        ("Cancel from non-terminal", test_cancel_from_every_non_terminal_status),
        ("Cancel from terminal fails", test_cancel_from_terminal_fails),
        ("Cancel requires reason", test_cancel_requires_reason),
        ("Approve/reject guards", test_approve_guards),
        ("Zero required levels", test_zero_required_levels_need_one_approval),
        ("Required levels locked", test_required_levels_locked_at_submission),
        ("Failed op leaves state", test_failed_operation_leaves_state_unchanged),
        ("Overall risk tracks hazards", test_overall_risk_tracks_hazards),
        ("Engine: sequence", test_engine_sequence_enforced),
        ("Engine: creation first", test_engine_creation_first),
        ("Replay hash stable", test_replay_hash_stable),
        ("Invariant catches corruption", test_invariant_catches_corruption),
        ("Every type completes", test_every_type_can_reach_completed),
        ("All flags lifecycle", test_all_flags_permit_lifecycle),
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
