"""
Read Models: permit DTO mapping.

Turns a stored state dict into the shape the HTTP layer returns: the
plain state plus everything derived from it (approval progress, the
actions the current status allows, schedule figures).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from permit_kernel.approvals import (
    DEFAULT_APPROVAL_POLICY,
    ApprovalPolicy,
    approval_progress_percent,
    missing_levels,
    received_levels,
    required_levels,
)
from permit_kernel.constants import EDITABLE_STATUSES, LIFECYCLE_PROGRESS, TERMINAL_STATUSES
from permit_kernel.domain_types import (
    Approval,
    PermitStatus,
    PermitType,
    RiskLevel,
    SafetyRequirements,
    parse_timestamp,
)

_SECONDS_PER_DAY = 86400


def _days_until(value: Optional[str], now: datetime) -> Optional[int]:
    """Whole days from now to `value`, truncated toward zero."""
    if not value:
        return None
    seconds = (parse_timestamp(value) - now).total_seconds()
    return int(seconds / _SECONDS_PER_DAY)


def required_levels_for(state_dict: dict, policy: ApprovalPolicy) -> tuple:
    """Locked set once submitted; the live policy result before that."""
    if state_dict.get("submission_count"):
        return tuple(state_dict.get("required_levels", ()))
    return required_levels(
        PermitType(state_dict["permit_type"]),
        SafetyRequirements.from_dict(state_dict.get("safety")),
        policy,
    )


def is_overdue(state_dict: dict, now: datetime) -> bool:
    planned_end = state_dict.get("planned_end")
    return (
        state_dict["status"] == PermitStatus.IN_PROGRESS.value
        and planned_end is not None
        and parse_timestamp(planned_end) < now
    )


def to_dto(
    state_dict: dict,
    policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
    now: Optional[datetime] = None,
) -> dict:
    """Permit read model: state dict plus derived fields."""
    now = now or datetime.now(timezone.utc)
    status = PermitStatus(state_dict["status"])
    approvals: List[Approval] = [Approval.from_dict(a) for a in state_dict.get("approvals", [])]
    required = required_levels_for(state_dict, policy)

    precautions = state_dict.get("precautions", [])
    if precautions:
        done = sum(1 for p in precautions if p["is_completed"])
        precaution_percent = (200 * done + len(precautions)) // (2 * len(precautions))
    else:
        precaution_percent = 100

    dto = dict(state_dict)
    dto.update({
        "required_levels": list(required),
        "received_levels": list(received_levels(approvals)),
        "missing_levels": list(missing_levels(required, approvals)),
        "approval_progress": approval_progress_percent(required, approvals),
        "can_edit": status in EDITABLE_STATUSES,
        "can_submit": status in EDITABLE_STATUSES and bool(state_dict.get("hazards")),
        "can_approve": status == PermitStatus.SUBMITTED,
        "can_start": status == PermitStatus.APPROVED,
        "can_complete": status == PermitStatus.IN_PROGRESS,
        "can_cancel": status not in TERMINAL_STATUSES,
        "can_delete": status == PermitStatus.DRAFT,
        "is_overdue": is_overdue(state_dict, now),
        "is_high_risk": state_dict["risk_level"] in (RiskLevel.HIGH.value, RiskLevel.CRITICAL.value),
        "days_until_start": _days_until(state_dict.get("planned_start"), now),
        "days_until_end": _days_until(state_dict.get("planned_end"), now),
        "lifecycle_progress": LIFECYCLE_PROGRESS[status],
        "precaution_completion_percent": precaution_percent,
    })
    return dto
