"""
Work Permit Kernel: Invariant Checks

Hard-fail validation. Every check raises InvariantViolationError on failure.
A violation means a bug in the transition layer or a corrupt stream,
never a user mistake.
"""

from __future__ import annotations

from .approvals import missing_levels
from .constants import SCORE_MAX, SCORE_MIN
from .domain_types import PermitState, PermitStatus
from .risk_matrix import risk_level


class InvariantViolationError(Exception):
    """Raised when a work-permit invariant is violated."""

    def __init__(self, rule: str, detail: str) -> None:
        self.rule = rule
        self.detail = detail
        super().__init__(f"[INVARIANT:{rule}] {detail}")


_APPROVED_STATUSES = frozenset({
    PermitStatus.APPROVED,
    PermitStatus.IN_PROGRESS,
    PermitStatus.COMPLETED,
})

_STARTED_STATUSES = frozenset({
    PermitStatus.IN_PROGRESS,
    PermitStatus.COMPLETED,
})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_invariants(state: PermitState) -> None:
    """
    Run all 7 invariant checks. Raises InvariantViolationError on the
    first failure.
    """
    _check_hazard_risk_levels(state)
    _check_precaution_flags(state)
    _check_approval_order(state)
    _check_approval_gate(state)
    _check_actual_dates(state)
    _check_planned_dates(state)
    _check_child_ids(state)


# ---------------------------------------------------------------------------
# Individual checks (private)
# ---------------------------------------------------------------------------

def _check_hazard_risk_levels(state: PermitState) -> None:
    """INV-1: hazard scores in range; levels always equal the matrix lookup."""
    for h in state.hazards.values():
        for name in ("likelihood", "severity", "residual_likelihood", "residual_severity"):
            value = getattr(h, name)
            if not SCORE_MIN <= value <= SCORE_MAX:
                raise InvariantViolationError(
                    "hazard_scores",
                    f"Hazard {h.id} {name}={value} outside {SCORE_MIN}..{SCORE_MAX}",
                )
        if h.risk_level != risk_level(h.likelihood, h.severity):
            raise InvariantViolationError(
                "hazard_risk_level",
                f"Hazard {h.id} risk level {h.risk_level.value} does not match "
                f"matrix({h.likelihood},{h.severity})",
            )
        if h.residual_risk_level != risk_level(h.residual_likelihood, h.residual_severity):
            raise InvariantViolationError(
                "hazard_residual_risk_level",
                f"Hazard {h.id} residual risk level does not match the matrix",
            )


def _check_precaution_flags(state: PermitState) -> None:
    """INV-2: K3 precautions carry a reference; verified implies completed."""
    for p in state.precautions.values():
        if p.is_k3_requirement and not p.k3_standard_reference.strip():
            raise InvariantViolationError(
                "k3_reference",
                f"Precaution {p.id} is a K3 requirement without a standard reference",
            )
        if p.is_verified and not p.is_completed:
            raise InvariantViolationError(
                "verified_uncompleted",
                f"Precaution {p.id} is verified but not completed",
            )


def _check_approval_order(state: PermitState) -> None:
    """INV-3: approval order indices are 1..N in log order."""
    for index, approval in enumerate(state.approvals, start=1):
        if approval.order != index:
            raise InvariantViolationError(
                "approval_order",
                f"Approval {approval.id} has order {approval.order}, expected {index}",
            )


def _check_approval_gate(state: PermitState) -> None:
    """INV-4: an approved permit has every locked level signed off."""
    if state.status not in _APPROVED_STATUSES:
        return
    if not any(a.is_approved for a in state.approvals):
        raise InvariantViolationError(
            "approval_gate",
            f"Permit in {state.status.value} with no approval records",
        )
    missing = missing_levels(state.required_levels, state.approvals)
    if missing:
        raise InvariantViolationError(
            "approval_gate",
            f"Permit in {state.status.value} still missing levels: {', '.join(missing)}",
        )


def _check_actual_dates(state: PermitState) -> None:
    """INV-5: actual start/end only exist once work has started/finished."""
    if state.status in _STARTED_STATUSES and state.actual_start is None:
        raise InvariantViolationError(
            "actual_start",
            f"Permit in {state.status.value} has no actual start",
        )
    if state.status not in _STARTED_STATUSES and state.status != PermitStatus.CANCELLED \
            and state.actual_start is not None:
        raise InvariantViolationError(
            "actual_start",
            f"Permit in {state.status.value} has an actual start",
        )
    if (state.status == PermitStatus.COMPLETED) != (state.actual_end is not None):
        raise InvariantViolationError(
            "actual_end",
            f"Permit in {state.status.value}: actual end must be set iff Completed",
        )


def _check_planned_dates(state: PermitState) -> None:
    """INV-6: planned end strictly after planned start."""
    if state.planned_start is None or state.planned_end is None:
        return
    if state.planned_end <= state.planned_start:
        raise InvariantViolationError(
            "planned_dates",
            "Planned end must be after planned start",
        )


def _check_child_ids(state: PermitState) -> None:
    """INV-7: child ids below their counters (ids are never reused)."""
    checks = (
        ("hazard", state.hazards.keys(), state.next_hazard_id),
        ("precaution", state.precautions.keys(), state.next_precaution_id),
        ("attachment", state.attachments.keys(), state.next_attachment_id),
        ("approval", [a.id for a in state.approvals], state.next_approval_id),
    )
    for kind, ids, next_id in checks:
        ids = list(ids)
        if len(ids) != len(set(ids)):
            raise InvariantViolationError("child_ids", f"Duplicate {kind} ids")
        for cid in ids:
            if not 1 <= cid < next_id:
                raise InvariantViolationError(
                    "child_ids",
                    f"{kind.capitalize()} id {cid} not below next id {next_id}",
                )
