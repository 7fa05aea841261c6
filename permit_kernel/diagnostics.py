"""
Work Permit Kernel: Diagnostics

Compute a diagnostic snapshot of one permit's safety readiness.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .constants import K3_LICENSE_TYPES
from .domain_types import PermitState, PermitStatus, RiskLevel


def precaution_completion_percent(state: PermitState) -> int:
    """Share of precautions completed; 100 when there are none."""
    total = len(state.precautions)
    if total == 0:
        return 100
    done = sum(1 for p in state.precautions.values() if p.is_completed)
    return (200 * done + total) // (2 * total)


def compute_diagnostics(state: PermitState, now: Optional[datetime] = None) -> dict:
    """Return a diagnostic dict summarising the permit's safety readiness."""
    now = now or datetime.now(timezone.utc)

    high_risk = [
        h for h in state.hazards.values()
        if h.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
    ]
    uncontrolled = sorted(h.id for h in high_risk if not h.is_control_implemented)
    required_open = sorted(
        p.id for p in state.precautions.values() if p.is_required and not p.is_completed
    )
    unverified = sorted(
        p.id for p in state.precautions.values()
        if p.requires_verification and p.is_completed and not p.is_verified
    )

    warnings: list[str] = []

    active = state.status in (PermitStatus.APPROVED, PermitStatus.IN_PROGRESS)
    if uncontrolled and active:
        warnings.append(
            f"{len(uncontrolled)} high-risk hazard(s) without implemented controls: "
            f"{', '.join(str(i) for i in uncontrolled)}"
        )
    if required_open and state.status == PermitStatus.IN_PROGRESS:
        warnings.append(
            f"Work in progress with {len(required_open)} required precaution(s) open"
        )
    if unverified:
        warnings.append(f"{len(unverified)} completed precaution(s) awaiting verification")
    if (
        state.status == PermitStatus.IN_PROGRESS
        and state.planned_end is not None
        and state.planned_end < now
    ):
        warnings.append("Work is running past its planned end")
    if state.permit_type in K3_LICENSE_TYPES and not state.compliance.has_smk3_compliance:
        warnings.append(
            f"{state.permit_type.value} permit without SMK3 compliance confirmation"
        )

    return {
        "hazard_count": len(state.hazards),
        "high_risk_hazard_count": len(high_risk),
        "uncontrolled_high_risk_hazards": uncontrolled,
        "precaution_count": len(state.precautions),
        "required_precautions_open": required_open,
        "unverified_precautions": unverified,
        "k3_requirement_count": sum(
            1 for p in state.precautions.values() if p.is_k3_requirement
        ),
        "precaution_completion_percent": precaution_completion_percent(state),
        "approval_record_count": len(state.approvals),
        "warnings": warnings,
    }
