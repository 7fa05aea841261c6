"""
Dashboard: aggregate statistics over permit read models.

Input is a list of DTOs (see read_models.to_dto); output is a plain dict.
Due-date figures look at planned_end of permits still awaiting or doing
work (Submitted, Approved, InProgress).
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from permit_kernel.domain_types import PermitStatus, PermitType, RiskLevel, parse_timestamp

_ACTIVE = (
    PermitStatus.SUBMITTED.value,
    PermitStatus.APPROVED.value,
    PermitStatus.IN_PROGRESS.value,
)

TREND_MONTHS = 12
RECENT_COUNT = 5


def _month_starts(now: datetime, months: int) -> List[datetime]:
    """First instant of each of the last `months` months, oldest first."""
    year, month = now.year, now.month
    starts = []
    for _ in range(months):
        starts.append(datetime(year, month, 1, tzinfo=timezone.utc))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


def compute_dashboard(dtos: Iterable[dict], now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    permits = list(dtos)
    total = len(permits)

    by_status = Counter(p["status"] for p in permits)
    by_risk = Counter(p["risk_level"] for p in permits)

    today = now.date()
    week_end = today + timedelta(days=7)
    due_today = 0
    due_this_week = 0
    for p in permits:
        if p["status"] not in _ACTIVE or not p.get("planned_end"):
            continue
        end_date = parse_timestamp(p["planned_end"]).date()
        if end_date == today:
            due_today += 1
        if today <= end_date < week_end:
            due_this_week += 1

    type_counts = Counter(p["permit_type"] for p in permits)
    by_type = [
        {
            "permit_type": permit_type.value,
            "count": type_counts.get(permit_type.value, 0),
            "percentage": (
                (200 * type_counts.get(permit_type.value, 0) + total) // (2 * total)
                if total else 0
            ),
        }
        for permit_type in PermitType
    ]

    by_month: dict = {}
    for p in permits:
        if p.get("created_at"):
            created = parse_timestamp(p["created_at"])
            by_month.setdefault((created.year, created.month), []).append(p)

    trend = []
    for start in _month_starts(now, TREND_MONTHS):
        in_month = by_month.get((start.year, start.month), [])
        completed = [p for p in in_month if p["status"] == PermitStatus.COMPLETED.value]
        trend.append({
            "month": f"{start:%Y-%m}",
            "total": len(in_month),
            "completed": len(completed),
            "completed_safely": sum(1 for p in completed if p.get("is_completed_safely")),
        })

    recent = sorted(
        permits, key=lambda p: (p.get("created_at") or "", p["permit_id"]), reverse=True,
    )[:RECENT_COUNT]

    return {
        "total_permits": total,
        "draft_permits": by_status.get(PermitStatus.DRAFT.value, 0),
        "pending_approval": by_status.get(PermitStatus.SUBMITTED.value, 0),
        "approved_permits": by_status.get(PermitStatus.APPROVED.value, 0),
        "in_progress_permits": by_status.get(PermitStatus.IN_PROGRESS.value, 0),
        "completed_permits": by_status.get(PermitStatus.COMPLETED.value, 0),
        "rejected_permits": by_status.get(PermitStatus.REJECTED.value, 0),
        "cancelled_permits": by_status.get(PermitStatus.CANCELLED.value, 0),
        "high_risk_permits": by_risk.get(RiskLevel.HIGH.value, 0),
        "critical_risk_permits": by_risk.get(RiskLevel.CRITICAL.value, 0),
        "overdue_permits": sum(1 for p in permits if p.get("is_overdue")),
        "due_today": due_today,
        "due_this_week": due_this_week,
        "by_type": by_type,
        "monthly_trend": trend,
        "recent_permits": [
            {
                "permit_id": p["permit_id"],
                "permit_number": p["permit_number"],
                "title": p["title"],
                "permit_type": p["permit_type"],
                "status": p["status"],
                "risk_level": p["risk_level"],
                "created_at": p.get("created_at"),
            }
            for p in recent
        ],
    }
