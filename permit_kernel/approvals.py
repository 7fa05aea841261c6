"""
Work Permit Kernel: Approval Requirement Calculator

Derives the approval levels a permit must obtain from its type and
safety flags, and measures recorded approvals against them.

The label set is configuration (ApprovalPolicy); the contract is fixed:
required levels are the union of baseline, per-type and per-flag
additions, so setting a flag can only ever add levels.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple

from .domain_types import SAFETY_FLAGS, Approval, PermitType, SafetyRequirements


@dataclass(frozen=True)
class ApprovalPolicy:
    """Which approval levels each permit attribute demands."""

    baseline: Tuple[str, ...]
    by_type: Mapping[PermitType, Tuple[str, ...]]
    by_flag: Mapping[str, Tuple[str, ...]]
    level_order: Tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        missing_types = [t.value for t in PermitType if t not in self.by_type]
        if missing_types:
            raise ValueError(f"Approval policy has no entry for types: {missing_types}")
        unknown_flags = sorted(set(self.by_flag) - set(SAFETY_FLAGS))
        if unknown_flags:
            raise ValueError(f"Approval policy names unknown flags: {unknown_flags}")
        missing_flags = [f for f in SAFETY_FLAGS if f not in self.by_flag]
        if missing_flags:
            raise ValueError(f"Approval policy has no entry for flags: {missing_flags}")

        labels = list(self.baseline)
        for levels in self.by_type.values():
            labels.extend(levels)
        for levels in self.by_flag.values():
            labels.extend(levels)
        blank = [label for label in labels if not str(label).strip()]
        if blank:
            raise ValueError("Approval policy contains a blank level label")

    def all_levels(self) -> Tuple[str, ...]:
        labels = set(self.baseline)
        for levels in self.by_type.values():
            labels.update(levels)
        for levels in self.by_flag.values():
            labels.update(levels)
        return order_levels(labels, self.level_order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseline": list(self.baseline),
            "by_type": {t.value: list(v) for t, v in self.by_type.items()},
            "by_flag": {f: list(v) for f, v in self.by_flag.items()},
            "level_order": list(self.level_order),
        }


def policy_from_dict(data: Mapping[str, Any]) -> ApprovalPolicy:
    """Build a policy from its JSON form. Absent type/flag keys mean 'nothing extra'."""
    by_type_raw = dict(data.get("by_type", {}))
    by_flag_raw = dict(data.get("by_flag", {}))

    unknown_types = sorted(set(by_type_raw) - {t.value for t in PermitType})
    if unknown_types:
        raise ValueError(f"Approval policy names unknown permit types: {unknown_types}")

    by_flag = {f: tuple(by_flag_raw.pop(f, ())) for f in SAFETY_FLAGS}
    # Leftover keys are unknown flags; __post_init__ reports them.
    by_flag.update({f: tuple(v) for f, v in by_flag_raw.items()})

    return ApprovalPolicy(
        baseline=tuple(data.get("baseline", ())),
        by_type={t: tuple(by_type_raw.get(t.value, ())) for t in PermitType},
        by_flag=by_flag,
        level_order=tuple(data.get("level_order", ())),
    )


def load_policy(path: str | Path) -> ApprovalPolicy:
    with open(path, "r", encoding="utf-8") as f:
        return policy_from_dict(json.load(f))


DEFAULT_APPROVAL_POLICY = ApprovalPolicy(
    baseline=("SafetyOfficer", "DepartmentHead"),
    by_type={
        PermitType.GENERAL: (),
        PermitType.COLD_WORK: (),
        PermitType.HOT_WORK: ("HotWorkSpecialist", "K3Officer"),
        PermitType.CONFINED_SPACE: ("ConfinedSpaceSpecialist", "K3Officer"),
        PermitType.ELECTRICAL_WORK: ("ElectricalSupervisor", "K3Officer"),
        PermitType.WORKING_AT_HEIGHT: ("HeightWorkSpecialist",),
        PermitType.EXCAVATION: ("CivilEngineer",),
        PermitType.SPECIAL: ("SpecialWorkSpecialist", "HSEManager", "K3Officer"),
    },
    by_flag={
        "hot_work": ("HotWorkSpecialist",),
        "confined_space_entry": ("ConfinedSpaceSpecialist",),
        "electrical_isolation": ("ElectricalSupervisor",),
        "height_work": ("HeightWorkSpecialist",),
        "radiation_work": ("RadiationSafetyOfficer",),
        "excavation": ("CivilEngineer",),
        "fire_watch": ("FireWatchOfficer",),
        "gas_monitoring": ("GasTester",),
    },
    level_order=(
        "SafetyOfficer",
        "DepartmentHead",
        "HotWorkSpecialist",
        "ConfinedSpaceSpecialist",
        "ElectricalSupervisor",
        "HeightWorkSpecialist",
        "CivilEngineer",
        "RadiationSafetyOfficer",
        "FireWatchOfficer",
        "GasTester",
        "SpecialWorkSpecialist",
        "K3Officer",
        "HSEManager",
    ),
)


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

def order_levels(levels: Iterable[str], level_order: Sequence[str] = ()) -> Tuple[str, ...]:
    """Distinct labels, canonical order first, unknown labels after (alphabetical)."""
    rank = {label: i for i, label in enumerate(level_order)}
    return tuple(sorted(set(levels), key=lambda l: (rank.get(l, len(rank)), l)))


def required_levels(
    permit_type: PermitType,
    safety: SafetyRequirements,
    policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
) -> Tuple[str, ...]:
    levels = set(policy.baseline)
    levels.update(policy.by_type[PermitType(permit_type)])
    for flag in safety.active_flags():
        levels.update(policy.by_flag[flag])
    return order_levels(levels, policy.level_order)


def received_levels(approvals: Iterable[Approval]) -> Tuple[str, ...]:
    """Distinct levels with at least one approved record, in first-approval order."""
    seen: Dict[str, None] = {}
    for approval in approvals:
        if approval.is_approved and approval.level not in seen:
            seen[approval.level] = None
    return tuple(seen)


def missing_levels(
    required: Sequence[str], approvals: Iterable[Approval],
) -> Tuple[str, ...]:
    received = set(received_levels(approvals))
    return tuple(level for level in required if level not in received)


def approval_progress_percent(
    required: Sequence[str], approvals: Iterable[Approval],
) -> int:
    """
    round(100 * |received ∩ required| / |required|), 0 when nothing is
    required. Integer half-up rounding; never reports 100 while a level
    is still missing.
    """
    required_set = set(required)
    if not required_set:
        return 0
    got = len(required_set & set(received_levels(approvals)))
    total = len(required_set)
    percent = (200 * got + total) // (2 * total)
    if got < total and percent >= 100:
        percent = 99
    return percent


def is_fully_approved(
    required: Sequence[str], approvals: Sequence[Approval],
) -> bool:
    """Every required level approved, and at least one approval on record."""
    has_any = any(a.is_approved for a in approvals)
    return has_any and not missing_levels(required, approvals)
