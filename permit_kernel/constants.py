"""
Work Permit Kernel: Domain Constants

Field limits, risk thresholds and the per-type lookup tables.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet

from .domain_types import PermitPriority, PermitStatus, PermitType

# ── Field limits ──────────────────────────────────────────────
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
LOCATION_MAX_LENGTH = 300
WORK_SCOPE_MAX_LENGTH = 2000
TEXT_MAX_LENGTH = 1000  # equipment, materials, notes
NAME_MAX_LENGTH = 100
HAZARD_DESCRIPTION_MAX_LENGTH = 1000
CONTROL_MEASURES_MAX_LENGTH = 2000
PRECAUTION_DESCRIPTION_MAX_LENGTH = 1000
VERIFICATION_METHOD_MAX_LENGTH = 500
K3_REFERENCE_MAX_LENGTH = 200
REASON_MAX_LENGTH = 1000

MIN_NUMBER_OF_WORKERS = 1
MAX_NUMBER_OF_WORKERS = 1000
MAX_PERMIT_DURATION_DAYS = 365

PHONE_PATTERN = re.compile(r"^[+]?[0-9\-()\s]{7,20}$")

# ── Risk matrix ───────────────────────────────────────────────
SCORE_MIN = 1
SCORE_MAX = 5

RISK_SCORE_CRITICAL = 20
RISK_SCORE_HIGH = 15
RISK_SCORE_MEDIUM = 10

# Overall permit risk: number of high-risk factors present.
OVERALL_FACTORS_CRITICAL = 3
OVERALL_FACTORS_HIGH = 2
OVERALL_FACTORS_MEDIUM = 1

HIGH_RISK_FLAGS = (
    "hot_work",
    "confined_space_entry",
    "electrical_isolation",
    "height_work",
    "radiation_work",
    "excavation",
)

# ── Status groups ─────────────────────────────────────────────
EDITABLE_STATUSES: FrozenSet[PermitStatus] = frozenset({
    PermitStatus.DRAFT,
    PermitStatus.REJECTED,
})

TERMINAL_STATUSES: FrozenSet[PermitStatus] = frozenset({
    PermitStatus.COMPLETED,
    PermitStatus.CANCELLED,
})

# ── Per-type rules ────────────────────────────────────────────
HIGH_RISK_TYPES: FrozenSet[PermitType] = frozenset({
    PermitType.HOT_WORK,
    PermitType.CONFINED_SPACE,
    PermitType.SPECIAL,
})

SUPERVISED_TYPES: FrozenSet[PermitType] = frozenset({
    PermitType.HOT_WORK,
    PermitType.CONFINED_SPACE,
    PermitType.ELECTRICAL_WORK,
    PermitType.SPECIAL,
})

SAFETY_OFFICER_TYPES: FrozenSet[PermitType] = HIGH_RISK_TYPES

K3_LICENSE_TYPES: FrozenSet[PermitType] = SUPERVISED_TYPES

# Flags that demand written emergency procedures before submission.
EMERGENCY_FLAGS = ("hot_work", "confined_space_entry", "radiation_work")

PERMIT_NUMBER_PREFIX: Dict[PermitType, str] = {
    PermitType.HOT_WORK: "HW",
    PermitType.COLD_WORK: "CW",
    PermitType.CONFINED_SPACE: "CS",
    PermitType.ELECTRICAL_WORK: "EW",
    PermitType.WORKING_AT_HEIGHT: "WH",
    PermitType.EXCAVATION: "EX",
    PermitType.SPECIAL: "SP",
    PermitType.GENERAL: "GP",
}

DEFAULT_PRIORITY_BY_TYPE: Dict[PermitType, PermitPriority] = {
    PermitType.GENERAL: PermitPriority.MEDIUM,
    PermitType.COLD_WORK: PermitPriority.MEDIUM,
    PermitType.HOT_WORK: PermitPriority.HIGH,
    PermitType.ELECTRICAL_WORK: PermitPriority.HIGH,
    PermitType.WORKING_AT_HEIGHT: PermitPriority.HIGH,
    PermitType.EXCAVATION: PermitPriority.HIGH,
    PermitType.CONFINED_SPACE: PermitPriority.CRITICAL,
    PermitType.SPECIAL: PermitPriority.CRITICAL,
}

LIFECYCLE_PROGRESS: Dict[PermitStatus, int] = {
    PermitStatus.DRAFT: 0,
    PermitStatus.SUBMITTED: 20,
    PermitStatus.APPROVED: 40,
    PermitStatus.IN_PROGRESS: 70,
    PermitStatus.COMPLETED: 100,
    PermitStatus.REJECTED: 0,
    PermitStatus.CANCELLED: 0,
}

REJECTION_LEVEL = "Rejection"
