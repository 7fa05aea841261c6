"""
Work Permit Kernel
Deterministic, in-memory, event-driven HSE work-permit lifecycle kernel.
"""

from .domain_types import (
    PermitType, PermitStatus, PermitPriority, RiskLevel,
    HazardCategory, PrecautionCategory, AttachmentType,
    SafetyRequirements, IndonesianCompliance, RequestorSnapshot,
    PermitDetails, HazardInput, PrecautionInput,
    Hazard, Precaution, Approval, Attachment,
    PermitState, TransitionResult,
    hazard_category_id, hazard_category_for_id,
)
from .errors import (
    PermitError,
    NotFoundError,
    InvalidTransitionError,
    ValidationError,
    ConcurrencyConflictError,
    StorageError,
    OperationCancelledError,
)
from .events import BaseEvent, EVENT_CLASS_MAP, reconstruct_event
from .engine import PermitEngine
from .permit import WorkPermit, permit_number_for
from .approvals import (
    ApprovalPolicy,
    DEFAULT_APPROVAL_POLICY,
    load_policy,
    policy_from_dict,
    required_levels,
    received_levels,
    missing_levels,
    approval_progress_percent,
)
from .risk_matrix import risk_level, overall_risk_level, RISK_MATRIX
from .hashing import canonical_serialize, canonical_hash, hash_state_dict
from .invariants import InvariantViolationError, validate_invariants
from .diagnostics import compute_diagnostics

__all__ = [
    "PermitType", "PermitStatus", "PermitPriority", "RiskLevel",
    "HazardCategory", "PrecautionCategory", "AttachmentType",
    "SafetyRequirements", "IndonesianCompliance", "RequestorSnapshot",
    "PermitDetails", "HazardInput", "PrecautionInput",
    "Hazard", "Precaution", "Approval", "Attachment",
    "PermitState", "TransitionResult",
    "hazard_category_id", "hazard_category_for_id",
    "PermitError", "NotFoundError", "InvalidTransitionError", "ValidationError",
    "ConcurrencyConflictError", "StorageError", "OperationCancelledError",
    "BaseEvent", "EVENT_CLASS_MAP", "reconstruct_event",
    "PermitEngine", "WorkPermit", "permit_number_for",
    "ApprovalPolicy", "DEFAULT_APPROVAL_POLICY", "load_policy", "policy_from_dict",
    "required_levels", "received_levels", "missing_levels", "approval_progress_percent",
    "risk_level", "overall_risk_level", "RISK_MATRIX",
    "canonical_serialize", "canonical_hash", "hash_state_dict",
    "InvariantViolationError", "validate_invariants",
    "compute_diagnostics",
]
