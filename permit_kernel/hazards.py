"""
Work Permit Kernel: Hazard Ledger

Owns the hazards of one permit. Risk levels are derived through the
risk matrix on every write and are never taken from input.

Add/update/remove: Draft or Rejected only.
Control implementation: any non-terminal status.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict

from .domain_types import Hazard, HazardCategory, PermitState
from .errors import NotFoundError
from .guards import require_editable, require_not_terminal
from .risk_matrix import clamp_score, overall_risk_level, risk_level


def get_hazard(state: PermitState, hazard_id: int) -> Hazard:
    try:
        return state.hazards[int(hazard_id)]
    except (KeyError, TypeError, ValueError):
        raise NotFoundError("Hazard", hazard_id) from None


def refresh_overall_risk(state: PermitState) -> None:
    state.risk_level = overall_risk_level(
        state.safety, (h.risk_level for h in state.hazards.values()),
    )


def add_hazard(state: PermitState, payload: Dict[str, Any]) -> Hazard:
    require_editable(state, "add a hazard to")

    likelihood = clamp_score(payload["likelihood"])
    severity = clamp_score(payload["severity"])
    level = risk_level(likelihood, severity)
    hazard = Hazard(
        id=state.next_hazard_id,
        description=payload["description"],
        category=HazardCategory(payload["category"]),
        likelihood=likelihood,
        severity=severity,
        risk_level=level,
        control_measures=payload["control_measures"],
        responsible_person=payload.get("responsible_person", ""),
        residual_likelihood=likelihood,
        residual_severity=severity,
        residual_risk_level=level,
    )
    state.hazards[hazard.id] = hazard
    state.next_hazard_id += 1
    refresh_overall_risk(state)
    return hazard


def update_hazard(
    state: PermitState, hazard_id: int, payload: Dict[str, Any],
) -> Hazard:
    require_editable(state, "update a hazard of")
    hazard = get_hazard(state, hazard_id)

    hazard.description = payload["description"]
    hazard.category = HazardCategory(payload["category"])
    hazard.likelihood = clamp_score(payload["likelihood"])
    hazard.severity = clamp_score(payload["severity"])
    hazard.risk_level = risk_level(hazard.likelihood, hazard.severity)
    hazard.control_measures = payload["control_measures"]
    hazard.responsible_person = payload.get("responsible_person", "")

    # Residual tracks the initial assessment until controls are in place.
    if not hazard.is_control_implemented:
        hazard.residual_likelihood = hazard.likelihood
        hazard.residual_severity = hazard.severity
        hazard.residual_risk_level = hazard.risk_level

    refresh_overall_risk(state)
    return hazard


def remove_hazard(state: PermitState, hazard_id: int) -> Hazard:
    require_editable(state, "remove a hazard from")
    hazard = get_hazard(state, hazard_id)
    del state.hazards[hazard.id]
    refresh_overall_risk(state)
    return hazard


def implement_control(
    state: PermitState,
    hazard_id: int,
    residual_likelihood: int,
    residual_severity: int,
    implemented_at: datetime,
    notes: str = "",
) -> Hazard:
    require_not_terminal(state, "implement hazard controls on")
    hazard = get_hazard(state, hazard_id)

    hazard.residual_likelihood = clamp_score(residual_likelihood)
    hazard.residual_severity = clamp_score(residual_severity)
    hazard.residual_risk_level = risk_level(
        hazard.residual_likelihood, hazard.residual_severity,
    )
    hazard.is_control_implemented = True
    hazard.control_implemented_at = implemented_at
    hazard.implementation_notes = notes
    return hazard
