"""
Observability: In-process metrics collection.

No external dependencies. Uses compute_diagnostics + timing.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from permit_kernel.approvals import DEFAULT_APPROVAL_POLICY, ApprovalPolicy
from permit_kernel.hashing import canonical_hash
from permit_kernel.permit import WorkPermit

if TYPE_CHECKING:
    from .event_repository import EventRepository


@dataclass(frozen=True)
class PermitStreamMetrics:
    """Snapshot of one permit stream's observable metrics."""

    permit_id: int
    replay_latency_ms: float
    event_count: int
    status: str
    hazard_count: int
    high_risk_hazard_count: int
    precaution_completion_percent: int
    approval_record_count: int
    last_state_hash: str
    warnings: list

    def to_dict(self) -> dict:
        return {
            "permit_id": self.permit_id,
            "replay_latency_ms": self.replay_latency_ms,
            "event_count": self.event_count,
            "status": self.status,
            "hazard_count": self.hazard_count,
            "high_risk_hazard_count": self.high_risk_hazard_count,
            "precaution_completion_percent": self.precaution_completion_percent,
            "approval_record_count": self.approval_record_count,
            "last_state_hash": self.last_state_hash,
            "warnings": list(self.warnings),
        }


def collect_metrics(
    event_repo: "EventRepository",
    permit_id: int,
    policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
) -> PermitStreamMetrics:
    """
    Collect metrics for one permit.

    Performs a full replay to measure latency.
    """
    events = event_repo.load_events(permit_id)

    start = time.perf_counter()
    permit = WorkPermit.load(events, policy=policy)
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    diagnostics = permit.diagnostics()
    return PermitStreamMetrics(
        permit_id=permit_id,
        replay_latency_ms=round(elapsed_ms, 2),
        event_count=permit.version,
        status=permit.status.value,
        hazard_count=diagnostics["hazard_count"],
        high_risk_hazard_count=diagnostics["high_risk_hazard_count"],
        precaution_completion_percent=diagnostics["precaution_completion_percent"],
        approval_record_count=diagnostics["approval_record_count"],
        last_state_hash=canonical_hash(permit.state),
        warnings=diagnostics["warnings"],
    )
