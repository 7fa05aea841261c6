"""
Demo Permit Compiler: Deterministic generator producing valid event streams.

compile_demo_permit(spec, seed) → List[BaseEvent]

Uses PermitBlueprint data to drive a WorkPermit aggregate through its
lifecycle up to the requested status, with realistic titles, hazards,
precautions and approvers. Every event is produced by a real aggregate
operation, so every kernel rule applies to demo data too.

No global randomness; event times come from a local clock.
Output is validated via WorkPermit.load (full replay) before returning.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from permit_kernel.approvals import DEFAULT_APPROVAL_POLICY, ApprovalPolicy
from permit_kernel.domain_types import (
    HazardInput,
    IndonesianCompliance,
    PermitDetails,
    PermitStatus,
    PrecautionInput,
    RequestorSnapshot,
    SafetyRequirements,
)
from permit_kernel.errors import PermitError
from permit_kernel.events import BaseEvent
from permit_kernel.hashing import canonical_hash
from permit_kernel.invariants import InvariantViolationError
from permit_kernel.permit import WorkPermit

from .blueprints import (
    APPROVERS,
    CONTRACTORS,
    SAFETY_OFFICERS,
    SUPERVISORS,
    PermitBlueprint,
    get_blueprint,
)
from .demo_spec import DemoSpec
from .deterministic_rng import DeterministicRNG

DEMO_EPOCH = datetime(2026, 1, 5, 7, 0, tzinfo=timezone.utc)

DEMO_REQUESTOR = RequestorSnapshot(
    id=7,
    name="Siti Rahayu",
    department="Maintenance",
    position="Maintenance Planner",
    contact_phone="+62 21 555 0100",
)

# Statuses reached on the way to each target, in lifecycle order.
_PATH = {
    PermitStatus.DRAFT: (),
    PermitStatus.SUBMITTED: (PermitStatus.SUBMITTED,),
    PermitStatus.REJECTED: (PermitStatus.SUBMITTED, PermitStatus.REJECTED),
    PermitStatus.APPROVED: (PermitStatus.SUBMITTED, PermitStatus.APPROVED),
    PermitStatus.IN_PROGRESS: (
        PermitStatus.SUBMITTED, PermitStatus.APPROVED, PermitStatus.IN_PROGRESS,
    ),
    PermitStatus.COMPLETED: (
        PermitStatus.SUBMITTED, PermitStatus.APPROVED,
        PermitStatus.IN_PROGRESS, PermitStatus.COMPLETED,
    ),
    PermitStatus.CANCELLED: (PermitStatus.CANCELLED,),
}


class GeneratorInvariantError(Exception):
    """Raised when a generated event stream breaks a kernel rule or fails replay."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Generated stream failed replay: {cause}")


class _DemoClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now += timedelta(minutes=minutes)

    def jump_to(self, moment: datetime) -> None:
        if moment > self.now:
            self.now = moment


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compile_demo_permit(
    spec: DemoSpec,
    seed: int,
    permit_id: int = 1,
    start: Optional[datetime] = None,
    requestor: RequestorSnapshot = DEMO_REQUESTOR,
    policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
) -> List[BaseEvent]:
    """
    Compile a DemoSpec + seed into a replayable event stream.

    Raises GeneratorInvariantError if any step is refused by the kernel
    or the stream does not replay to the same state.
    """
    rng = DeterministicRNG(seed)
    blueprint = get_blueprint(spec.permit_type)
    clock = _DemoClock(start or DEMO_EPOCH)

    try:
        permit = WorkPermit.create(
            permit_id,
            _build_details(blueprint, rng, clock.now, requestor),
            actor=requestor.name,
            policy=policy,
            clock=clock,
        )
        _emit_hazards(permit, blueprint, spec, rng, clock)
        _emit_precautions(permit, blueprint, spec, rng, clock)

        for status in _PATH[spec.target_status]:
            clock.advance(rng.rand_int(10, 90))
            _advance_to(permit, status, blueprint, spec, rng, clock, requestor)

        events = permit.collect_pending()

        # ── Replay validation ─────────────────────────────────────────
        replayed = WorkPermit.load(events, policy=policy)
        if canonical_hash(replayed.state) != canonical_hash(permit.state):
            raise ValueError("replayed state differs from generated state")
    except (PermitError, InvariantViolationError, ValueError) as exc:
        raise GeneratorInvariantError(exc) from exc

    if permit.status != spec.target_status:
        raise GeneratorInvariantError(
            ValueError(f"ended in {permit.status.value}, wanted {spec.target_status.value}")
        )
    return events


# ---------------------------------------------------------------------------
# Step 1: Details
# ---------------------------------------------------------------------------

def _build_details(
    blueprint: PermitBlueprint,
    rng: DeterministicRNG,
    now: datetime,
    requestor: RequestorSnapshot,
) -> PermitDetails:
    planned_start = (now + timedelta(days=rng.rand_int(1, 7))).replace(
        hour=rng.rand_int(7, 9), minute=0, second=0, microsecond=0,
    )
    low, high = blueprint.duration_hours
    planned_end = planned_start + timedelta(hours=rng.rand_int(low, high))

    contractor = rng.rand_choice(CONTRACTORS)
    flags = {name: True for name in blueprint.safety_flags}
    title = rng.rand_choice(blueprint.titles)

    return PermitDetails(
        title=title,
        description=f"{title}. Planned maintenance under the site permit-to-work system.",
        permit_type=blueprint.permit_type,
        work_location=rng.rand_choice(blueprint.locations),
        work_scope=rng.rand_choice(blueprint.scopes),
        planned_start=planned_start,
        planned_end=planned_end,
        number_of_workers=rng.rand_int(2, 8),
        requestor=requestor,
        work_supervisor=rng.rand_choice(SUPERVISORS),
        safety_officer=rng.rand_choice(SAFETY_OFFICERS),
        equipment_to_be_used=rng.rand_choice(blueprint.equipment),
        materials_involved=rng.rand_choice(blueprint.materials) if blueprint.materials else "",
        contractor_company=contractor,
        safety=SafetyRequirements(**flags),
        compliance=IndonesianCompliance(
            k3_license_number=f"K3-{now:%Y}-{rng.rand_int(1, 9999):04d}",
            company_permit_number=f"SIUJK-{rng.rand_int(10000, 99999)}" if contractor else "",
            is_jamsostek_compliant=True,
            has_smk3_compliance=rng.rand_bool(80),
        ),
        risk_assessment_summary="JSA completed with the crew; controls listed per hazard.",
        emergency_procedures="Stop work, raise alarm, muster at assembly point, call ext. 112.",
    )


# ---------------------------------------------------------------------------
# Step 2: Hazards and precautions
# ---------------------------------------------------------------------------

def _emit_hazards(permit, blueprint, spec, rng, clock) -> None:
    for hb in rng.sample(blueprint.hazards, spec.hazard_count):
        clock.advance(rng.rand_int(1, 5))
        permit.add_hazard(HazardInput(
            description=hb.description,
            category=hb.category,
            likelihood=hb.likelihood,
            severity=hb.severity,
            control_measures=hb.control_measures,
            responsible_person=permit.state.work_supervisor,
        ), actor=permit.state.created_by)


def _emit_precautions(permit, blueprint, spec, rng, clock) -> None:
    for pb in rng.sample(blueprint.precautions, spec.precaution_count):
        clock.advance(rng.rand_int(1, 5))
        permit.add_precaution(PrecautionInput(
            description=pb.description,
            category=pb.category,
            priority=pb.priority,
            responsible_person=permit.state.safety_officer,
            verification_method=pb.verification_method,
            is_k3_requirement=bool(pb.k3_reference),
            k3_standard_reference=pb.k3_reference,
            is_mandatory_by_law=bool(pb.k3_reference),
        ), actor=permit.state.created_by)


# ---------------------------------------------------------------------------
# Step 3: Lifecycle
# ---------------------------------------------------------------------------

def _advance_to(permit, status, blueprint, spec, rng, clock, requestor) -> None:
    if status == PermitStatus.SUBMITTED:
        permit.submit(requestor.name)

    elif status == PermitStatus.REJECTED:
        name, approver_id = APPROVERS["SafetyOfficer"]
        permit.reject(approver_id, name, "Method statement missing isolation points; resubmit.")

    elif status == PermitStatus.APPROVED:
        for level in permit.missing_levels:
            clock.advance(rng.rand_int(5, 240))
            name, approver_id = APPROVERS.get(level, (f"{level} Approver", 99))
            permit.approve(
                approver_id, name, level,
                comments=rng.rand_choice(["Approved.", "OK to proceed.", "Approved with JSA."]),
                k3_certificate_number=f"AK3-{approver_id:03d}" if level == "K3Officer" else "",
            )

    elif status == PermitStatus.IN_PROGRESS:
        clock.jump_to(permit.state.planned_start)
        permit.start_work(permit.state.work_supervisor or requestor.name)
        for precaution_id in sorted(permit.state.precautions):
            clock.advance(rng.rand_int(2, 15))
            permit.complete_precaution(precaution_id, permit.state.work_supervisor)
            if rng.rand_bool(70):
                permit.verify_precaution(precaution_id, permit.state.safety_officer)

    elif status == PermitStatus.COMPLETED:
        for hazard_id in sorted(permit.state.hazards):
            residual = next(
                hb.residual for hb in blueprint.hazards
                if hb.description == permit.state.hazards[hazard_id].description
            )
            clock.advance(rng.rand_int(5, 30))
            permit.implement_hazard_control(
                hazard_id, residual[0], residual[1],
                permit.state.work_supervisor, notes="Controls in place as planned.",
            )
        clock.jump_to(permit.state.planned_end)
        permit.complete_work(
            permit.state.work_supervisor or requestor.name,
            "Work finished, area cleaned and handed back to operations.",
            spec.completed_safely,
            lessons_learned="" if spec.completed_safely else "Near miss reported; review barricading.",
        )

    elif status == PermitStatus.CANCELLED:
        if rng.rand_bool(50):
            permit.submit(requestor.name)
            clock.advance(rng.rand_int(10, 60))
        permit.cancel(requestor.name, "Work deferred to the next planned shutdown.")
