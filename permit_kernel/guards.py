"""
Work Permit Kernel: Status Guards

Shared precondition checks for the transition layer and the ledgers.
"""

from __future__ import annotations

from typing import Iterable

from .constants import EDITABLE_STATUSES, TERMINAL_STATUSES
from .domain_types import PermitState, PermitStatus
from .errors import InvalidTransitionError, ValidationError


def require_status(
    state: PermitState, allowed: Iterable[PermitStatus], operation: str,
) -> None:
    if state.status not in set(allowed):
        raise InvalidTransitionError(operation, state.status.value)


def require_editable(state: PermitState, operation: str) -> None:
    """Hazards, precautions and details may only change in Draft or Rejected."""
    require_status(state, EDITABLE_STATUSES, operation)


def require_not_terminal(state: PermitState, operation: str) -> None:
    if state.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(operation, state.status.value)


def require_text(value: object, field: str, message: str) -> str:
    """Return the stripped text, or raise a single-field ValidationError."""
    text = str(value or "").strip()
    if not text:
        raise ValidationError.single(field, message)
    return text
