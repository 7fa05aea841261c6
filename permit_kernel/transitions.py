"""
Work Permit Kernel: Centralized Transition Logic

ALL state-mutation logic lives here (delegating child-entity writes to
the hazard and precaution ledgers). This is the state machine:

  Draft ──submit──▶ Submitted ──approve (all levels)──▶ Approved
    ▲                   │                                   │
    │                 reject                              start
    │                   ▼                                   ▼
    └──(edit)──── Rejected ──submit──▶ Submitted        InProgress ──complete──▶ Completed

  cancel: any non-terminal status ──▶ Cancelled
"""

from __future__ import annotations

from typing import Any, Dict, List, Tuple

from .approvals import missing_levels
from .constants import (
    DEFAULT_PRIORITY_BY_TYPE,
    EDITABLE_STATUSES,
    EMERGENCY_FLAGS,
    HIGH_RISK_TYPES,
    REJECTION_LEVEL,
)
from .domain_types import (
    Approval,
    Attachment,
    AttachmentType,
    PermitDetails,
    PermitState,
    PermitStatus,
    TransitionResult,
    parse_timestamp,
)
from .errors import NotFoundError, ValidationError
from .events import BaseEvent
from .guards import (
    require_editable,
    require_not_terminal,
    require_status,
    require_text,
)
from . import hazards, precautions


# ---------------------------------------------------------------------------
# Public dispatcher
# ---------------------------------------------------------------------------

def apply_event(
    state: PermitState, event: BaseEvent,
) -> Tuple[PermitState, TransitionResult]:
    """
    Apply *event* to *state* and return ``(new_state, result)``.
    The original state is never mutated; a deep copy is made first.
    """
    new_state = state.copy()
    status_before = new_state.status

    handler = _HANDLERS.get(event.event_type)
    if handler is None:
        raise ValueError(f"Unknown event type: {event.event_type}")
    entity_id, reason = handler(new_state, event)

    new_state.version = event.sequence
    new_state.last_modified_at = parse_timestamp(event.timestamp)
    new_state.last_modified_by = event.payload.get("actor", "")

    missing = ()
    if new_state.status != PermitStatus.DRAFT and new_state.submission_count:
        missing = missing_levels(new_state.required_levels, new_state.approvals)

    return new_state, TransitionResult(
        event_type=event.event_type,
        success=True,
        status_before=status_before.value,
        status_after=new_state.status.value,
        approval_complete=(
            new_state.status == PermitStatus.APPROVED
            and status_before == PermitStatus.SUBMITTED
        ),
        missing_levels=tuple(missing),
        entity_id=entity_id,
        reason=reason,
    )


# ---------------------------------------------------------------------------
# Individual transition handlers (private)
#
# Each returns (entity_id, reason) for the TransitionResult.
# ---------------------------------------------------------------------------

def _apply_details(state: PermitState, details: PermitDetails) -> None:
    state.title = details.title
    state.description = details.description
    state.work_location = details.work_location
    state.work_scope = details.work_scope
    state.latitude = details.latitude
    state.longitude = details.longitude
    state.planned_start = details.planned_start
    state.planned_end = details.planned_end
    state.estimated_duration_hours = int(
        (details.planned_end - details.planned_start).total_seconds() // 3600
    )
    state.number_of_workers = details.number_of_workers
    state.work_supervisor = details.work_supervisor
    state.safety_officer = details.safety_officer
    state.equipment_to_be_used = details.equipment_to_be_used
    state.materials_involved = details.materials_involved
    state.contractor_company = details.contractor_company
    state.safety = details.safety
    state.compliance = details.compliance
    state.risk_assessment_summary = details.risk_assessment_summary
    state.emergency_procedures = details.emergency_procedures
    state.priority = details.priority or DEFAULT_PRIORITY_BY_TYPE[state.permit_type]
    hazards.refresh_overall_risk(state)


def _apply_permit_created(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    if state.permit_number:
        raise ValueError(
            f"Permit {state.permit_number!r} already created; "
            f"permit_created may only appear once"
        )
    p = event.payload
    details = PermitDetails.from_payload(p["details"])
    at = parse_timestamp(event.timestamp)

    state.permit_id = int(p["permit_id"])
    state.permit_number = p["permit_number"]
    state.permit_type = details.permit_type
    state.requestor = details.requestor
    state.status = PermitStatus.DRAFT
    _apply_details(state, details)
    state.created_at = at
    state.created_by = p.get("actor", "")
    return state.permit_id, ""


def _apply_details_updated(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_editable(state, "update the details of")
    details = PermitDetails.from_payload(event.payload["details"])
    if details.permit_type != state.permit_type:
        raise ValidationError.single(
            "permit_type", "Permit type cannot be changed after creation.",
        )
    _apply_details(state, details)
    return state.permit_id, ""


def _apply_hazard_added(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    hazard = hazards.add_hazard(state, event.payload["hazard"])
    return hazard.id, ""


def _apply_hazard_updated(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    p = event.payload
    hazard = hazards.update_hazard(state, p["hazard_id"], p["hazard"])
    return hazard.id, ""


def _apply_hazard_removed(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    hazard = hazards.remove_hazard(state, event.payload["hazard_id"])
    return hazard.id, ""


def _apply_hazard_control(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    p = event.payload
    hazard = hazards.implement_control(
        state,
        p["hazard_id"],
        p["residual_likelihood"],
        p["residual_severity"],
        parse_timestamp(event.timestamp),
        p.get("notes", ""),
    )
    return hazard.id, ""


def _apply_precaution_added(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    precaution = precautions.add_precaution(state, event.payload["precaution"])
    return precaution.id, ""


def _apply_precaution_updated(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    p = event.payload
    precaution = precautions.update_precaution(
        state, p["precaution_id"], p["precaution"],
    )
    return precaution.id, ""


def _apply_precaution_removed(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    precaution = precautions.remove_precaution(state, event.payload["precaution_id"])
    return precaution.id, ""


def _apply_precaution_completed(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    p = event.payload
    precaution = precautions.complete_precaution(
        state,
        p["precaution_id"],
        p.get("actor", ""),
        parse_timestamp(event.timestamp),
        p.get("notes", ""),
    )
    return precaution.id, ""


def _apply_precaution_verified(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    p = event.payload
    precaution = precautions.verify_precaution(
        state, p["precaution_id"], p.get("actor", ""), parse_timestamp(event.timestamp),
    )
    return precaution.id, ""


def submission_errors(state: PermitState) -> Dict[str, List[str]]:
    """Business-rule problems that block submission (empty when none)."""
    errors: Dict[str, List[str]] = {}
    if not state.hazards:
        errors["hazards"] = ["At least one hazard must be identified before submission."]

    if (state.safety.any() or state.permit_type in HIGH_RISK_TYPES) and \
            not state.risk_assessment_summary.strip():
        errors["risk_assessment_summary"] = [
            "Risk assessment summary is required for high-risk work."
        ]

    needs_emergency = state.permit_type in HIGH_RISK_TYPES or any(
        getattr(state.safety, flag) for flag in EMERGENCY_FLAGS
    )
    if needs_emergency and not state.emergency_procedures.strip():
        errors["emergency_procedures"] = [
            "Emergency procedures are required for high-risk work."
        ]
    return errors


def _apply_submitted(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_status(state, EDITABLE_STATUSES, "submit")
    errors = submission_errors(state)
    if errors:
        raise ValidationError(errors)

    state.required_levels = tuple(event.payload.get("required_levels", ()))
    state.status = PermitStatus.SUBMITTED
    state.submitted_at = parse_timestamp(event.timestamp)
    state.submitted_by = event.payload.get("actor", "")
    state.submission_count += 1
    state.rejection_reason = ""
    return state.permit_id, ""


def _apply_approval_recorded(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_status(state, (PermitStatus.SUBMITTED,), "approve")
    p = event.payload
    level = require_text(p.get("level"), "level", "Approval level is required.")

    approval = Approval(
        id=state.next_approval_id,
        approver_id=int(p["approver_id"]),
        approver_name=p.get("approver_name", ""),
        level=level,
        is_approved=True,
        comments=p.get("comments", ""),
        order=len(state.approvals) + 1,
        recorded_at=parse_timestamp(event.timestamp),
        k3_certificate_number=p.get("k3_certificate_number", ""),
        authority_level=p.get("authority_level", ""),
    )
    state.approvals.append(approval)
    state.next_approval_id += 1

    # The record just appended guarantees at least one approval exists.
    if not missing_levels(state.required_levels, state.approvals):
        state.status = PermitStatus.APPROVED
        state.approved_at = approval.recorded_at
    return approval.id, ""


def _apply_rejected(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_status(state, (PermitStatus.SUBMITTED,), "reject")
    p = event.payload
    reason = require_text(p.get("reason"), "reason", "Rejection reason is required.")

    approval = Approval(
        id=state.next_approval_id,
        approver_id=int(p["approver_id"]),
        approver_name=p.get("approver_name", ""),
        level=REJECTION_LEVEL,
        is_approved=False,
        comments=reason,
        order=len(state.approvals) + 1,
        recorded_at=parse_timestamp(event.timestamp),
    )
    state.approvals.append(approval)
    state.next_approval_id += 1
    state.status = PermitStatus.REJECTED
    state.rejection_reason = reason
    return approval.id, reason


def _apply_work_started(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_status(state, (PermitStatus.APPROVED,), "start work on")
    state.status = PermitStatus.IN_PROGRESS
    state.actual_start = parse_timestamp(event.timestamp)
    state.started_by = event.payload.get("actor", "")
    return state.permit_id, ""


def _apply_work_completed(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_status(state, (PermitStatus.IN_PROGRESS,), "complete")
    p = event.payload
    notes = require_text(
        p.get("completion_notes"), "completion_notes", "Completion notes are required.",
    )
    state.status = PermitStatus.COMPLETED
    state.actual_end = parse_timestamp(event.timestamp)
    state.completion_notes = notes
    state.is_completed_safely = bool(p.get("is_completed_safely", False))
    state.lessons_learned = p.get("lessons_learned", "")
    state.completed_by = p.get("actor", "")
    return state.permit_id, ""


def _apply_cancelled(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_not_terminal(state, "cancel")
    p = event.payload
    reason = require_text(p.get("reason"), "reason", "Cancellation reason is required.")
    state.status = PermitStatus.CANCELLED
    state.cancellation_reason = reason
    state.cancelled_by = p.get("actor", "")
    state.cancelled_at = parse_timestamp(event.timestamp)
    return state.permit_id, reason


def _apply_attachment_added(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_not_terminal(state, "attach files to")
    p = event.payload
    attachment = Attachment(
        id=state.next_attachment_id,
        file_name=p["file_name"],
        original_file_name=p.get("original_file_name", p["file_name"]),
        content_type=p.get("content_type", "application/octet-stream"),
        size=int(p.get("size", 0)),
        attachment_type=AttachmentType(p.get("attachment_type", AttachmentType.OTHER.value)),
        description=p.get("description", ""),
        uploaded_by=p.get("actor", ""),
        uploaded_at=parse_timestamp(event.timestamp),
    )
    state.attachments[attachment.id] = attachment
    state.next_attachment_id += 1
    return attachment.id, ""


def _apply_attachment_removed(state: PermitState, event: BaseEvent) -> Tuple[int, str]:
    require_not_terminal(state, "remove files from")
    attachment_id = event.payload["attachment_id"]
    try:
        attachment = state.attachments.pop(int(attachment_id))
    except (KeyError, TypeError, ValueError):
        raise NotFoundError("Attachment", attachment_id) from None
    return attachment.id, ""


_HANDLERS: Dict[str, Any] = {
    "permit_created": _apply_permit_created,
    "permit_details_updated": _apply_details_updated,
    "hazard_added": _apply_hazard_added,
    "hazard_updated": _apply_hazard_updated,
    "hazard_removed": _apply_hazard_removed,
    "hazard_control_implemented": _apply_hazard_control,
    "precaution_added": _apply_precaution_added,
    "precaution_updated": _apply_precaution_updated,
    "precaution_removed": _apply_precaution_removed,
    "precaution_completed": _apply_precaution_completed,
    "precaution_verified": _apply_precaution_verified,
    "permit_submitted": _apply_submitted,
    "approval_recorded": _apply_approval_recorded,
    "permit_rejected": _apply_rejected,
    "work_started": _apply_work_started,
    "work_completed": _apply_work_completed,
    "permit_cancelled": _apply_cancelled,
    "attachment_added": _apply_attachment_added,
    "attachment_removed": _apply_attachment_removed,
}
