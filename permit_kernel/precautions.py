"""
Work Permit Kernel: Precaution Ledger

Add/update/remove: Draft or Rejected only.
Completion and verification stay editable in any non-terminal status.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from .domain_types import PermitState, Precaution, PrecautionCategory
from .errors import NotFoundError, ValidationError
from .guards import require_editable, require_not_terminal


def get_precaution(state: PermitState, precaution_id: int) -> Precaution:
    try:
        return state.precautions[int(precaution_id)]
    except (KeyError, TypeError, ValueError):
        raise NotFoundError("Precaution", precaution_id) from None


def _check_k3_reference(payload: Dict[str, Any]) -> None:
    if payload.get("is_k3_requirement") and not str(
        payload.get("k3_standard_reference") or ""
    ).strip():
        raise ValidationError.single(
            "k3_standard_reference",
            "K3 standard reference is required for K3 requirements.",
        )


def _apply_fields(precaution: Precaution, payload: Dict[str, Any]) -> None:
    precaution.description = payload["description"]
    precaution.category = PrecautionCategory(payload["category"])
    precaution.is_required = bool(payload.get("is_required", True))
    precaution.priority = int(payload.get("priority", 1))
    precaution.responsible_person = payload.get("responsible_person", "")
    precaution.verification_method = payload.get("verification_method", "")
    precaution.requires_verification = bool(payload.get("requires_verification", True))
    precaution.is_k3_requirement = bool(payload.get("is_k3_requirement", False))
    precaution.k3_standard_reference = payload.get("k3_standard_reference", "")
    precaution.is_mandatory_by_law = bool(payload.get("is_mandatory_by_law", False))


def add_precaution(state: PermitState, payload: Dict[str, Any]) -> Precaution:
    require_editable(state, "add a precaution to")
    _check_k3_reference(payload)

    precaution = Precaution(
        id=state.next_precaution_id,
        description=payload["description"],
        category=PrecautionCategory(payload["category"]),
    )
    _apply_fields(precaution, payload)
    state.precautions[precaution.id] = precaution
    state.next_precaution_id += 1
    return precaution


def update_precaution(
    state: PermitState, precaution_id: int, payload: Dict[str, Any],
) -> Precaution:
    require_editable(state, "update a precaution of")
    precaution = get_precaution(state, precaution_id)
    _check_k3_reference(payload)
    _apply_fields(precaution, payload)
    return precaution


def remove_precaution(state: PermitState, precaution_id: int) -> Precaution:
    require_editable(state, "remove a precaution from")
    precaution = get_precaution(state, precaution_id)
    del state.precautions[precaution.id]
    return precaution


def complete_precaution(
    state: PermitState,
    precaution_id: int,
    completed_by: str,
    completed_at: datetime,
    notes: str = "",
) -> Precaution:
    require_not_terminal(state, "complete a precaution of")
    precaution = get_precaution(state, precaution_id)
    precaution.is_completed = True
    precaution.completed_at = completed_at
    precaution.completed_by = completed_by
    precaution.completion_notes = notes
    return precaution


def verify_precaution(
    state: PermitState,
    precaution_id: int,
    verified_by: str,
    verified_at: datetime,
) -> Precaution:
    require_not_terminal(state, "verify a precaution of")
    precaution = get_precaution(state, precaution_id)
    if not precaution.is_completed:
        raise ValidationError.single(
            "precaution", "Precaution must be completed before verification.",
        )
    precaution.is_verified = True
    precaution.verified_at = verified_at
    precaution.verified_by = verified_by
    return precaution
