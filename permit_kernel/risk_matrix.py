"""
Work Permit Kernel: Risk Matrix Evaluator

5×5 likelihood × severity table, materialised once at import.
Integer math only.

  score = likelihood * severity
  score >= 20 → Critical
  score >= 15 → High
  score >= 10 → Medium
  otherwise   → Low
"""

from __future__ import annotations

from typing import Dict, Iterable, Tuple

from .constants import (
    HIGH_RISK_FLAGS,
    OVERALL_FACTORS_CRITICAL,
    OVERALL_FACTORS_HIGH,
    OVERALL_FACTORS_MEDIUM,
    RISK_SCORE_CRITICAL,
    RISK_SCORE_HIGH,
    RISK_SCORE_MEDIUM,
    SCORE_MAX,
    SCORE_MIN,
)
from .domain_types import RiskLevel, SafetyRequirements


def _level_for_score(score: int) -> RiskLevel:
    if score >= RISK_SCORE_CRITICAL:
        return RiskLevel.CRITICAL
    if score >= RISK_SCORE_HIGH:
        return RiskLevel.HIGH
    if score >= RISK_SCORE_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


RISK_MATRIX: Dict[Tuple[int, int], RiskLevel] = {
    (likelihood, severity): _level_for_score(likelihood * severity)
    for likelihood in range(SCORE_MIN, SCORE_MAX + 1)
    for severity in range(SCORE_MIN, SCORE_MAX + 1)
}


def clamp_score(value: int) -> int:
    """Clamp a likelihood/severity score into [1, 5]."""
    return max(SCORE_MIN, min(SCORE_MAX, int(value)))


def risk_score(likelihood: int, severity: int) -> int:
    return likelihood * severity


def risk_level(likelihood: int, severity: int) -> RiskLevel:
    """
    Look up the risk level for a (likelihood, severity) pair.

    Both scores must already be within [1, 5]; the ledgers clamp before
    calling. Anything else raises ValueError.
    """
    try:
        return RISK_MATRIX[(likelihood, severity)]
    except KeyError:
        raise ValueError(
            f"Risk scores out of range: likelihood={likelihood!r}, "
            f"severity={severity!r} (expected {SCORE_MIN}..{SCORE_MAX})"
        ) from None


def overall_risk_level(
    safety: SafetyRequirements, hazard_levels: Iterable[RiskLevel],
) -> RiskLevel:
    """
    Overall permit risk from the count of high-risk factors:
    each high-risk safety flag set, plus each High/Critical hazard.
    """
    factors = sum(1 for flag in HIGH_RISK_FLAGS if getattr(safety, flag))
    factors += sum(
        1 for level in hazard_levels
        if level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
    )

    if factors >= OVERALL_FACTORS_CRITICAL:
        return RiskLevel.CRITICAL
    if factors >= OVERALL_FACTORS_HIGH:
        return RiskLevel.HIGH
    if factors >= OVERALL_FACTORS_MEDIUM:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW
