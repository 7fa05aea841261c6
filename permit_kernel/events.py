"""
Work Permit Kernel: Event Definitions

Events are **pure data**. They carry intent and payload only.
They contain ZERO transition logic.

Every payload carries `actor` (display name of whoever caused it).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Type


@dataclass
class BaseEvent:
    """Base for all work-permit events: pure data container."""

    event_type: str = ""
    timestamp: str = ""
    sequence: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "timestamp": self.timestamp,
            "sequence": self.sequence,
            "payload": dict(self.payload),
        }


@dataclass
class PermitCreatedEvent(BaseEvent):
    """Create the permit. MUST be the first event in any stream."""

    event_type: str = "permit_created"
    # payload keys: permit_id, permit_number, details (PermitDetails payload), actor


@dataclass
class PermitDetailsUpdatedEvent(BaseEvent):
    event_type: str = "permit_details_updated"
    # payload keys: details (PermitDetails payload), actor


@dataclass
class HazardAddedEvent(BaseEvent):
    event_type: str = "hazard_added"
    # payload keys: hazard (HazardInput payload), actor


@dataclass
class HazardUpdatedEvent(BaseEvent):
    event_type: str = "hazard_updated"
    # payload keys: hazard_id, hazard, actor


@dataclass
class HazardRemovedEvent(BaseEvent):
    event_type: str = "hazard_removed"
    # payload keys: hazard_id, actor


@dataclass
class HazardControlImplementedEvent(BaseEvent):
    event_type: str = "hazard_control_implemented"
    # payload keys: hazard_id, residual_likelihood, residual_severity, notes, actor


@dataclass
class PrecautionAddedEvent(BaseEvent):
    event_type: str = "precaution_added"
    # payload keys: precaution (PrecautionInput payload), actor


@dataclass
class PrecautionUpdatedEvent(BaseEvent):
    event_type: str = "precaution_updated"
    # payload keys: precaution_id, precaution, actor


@dataclass
class PrecautionRemovedEvent(BaseEvent):
    event_type: str = "precaution_removed"
    # payload keys: precaution_id, actor


@dataclass
class PrecautionCompletedEvent(BaseEvent):
    event_type: str = "precaution_completed"
    # payload keys: precaution_id, notes, actor


@dataclass
class PrecautionVerifiedEvent(BaseEvent):
    event_type: str = "precaution_verified"
    # payload keys: precaution_id, actor


@dataclass
class PermitSubmittedEvent(BaseEvent):
    """Submit for approval. Locks the required approval levels."""

    event_type: str = "permit_submitted"
    # payload keys: required_levels (list of labels), actor


@dataclass
class ApprovalRecordedEvent(BaseEvent):
    """One approving sign-off. The permit flips to Approved when none are missing."""

    event_type: str = "approval_recorded"
    # payload keys: approver_id, approver_name, level, comments,
    #               k3_certificate_number, authority_level, actor


@dataclass
class PermitRejectedEvent(BaseEvent):
    event_type: str = "permit_rejected"
    # payload keys: approver_id, approver_name, reason, actor


@dataclass
class WorkStartedEvent(BaseEvent):
    event_type: str = "work_started"
    # payload keys: actor


@dataclass
class WorkCompletedEvent(BaseEvent):
    event_type: str = "work_completed"
    # payload keys: completion_notes, is_completed_safely, lessons_learned, actor


@dataclass
class PermitCancelledEvent(BaseEvent):
    event_type: str = "permit_cancelled"
    # payload keys: reason, actor


@dataclass
class AttachmentAddedEvent(BaseEvent):
    event_type: str = "attachment_added"
    # payload keys: file_name, original_file_name, content_type, size,
    #               attachment_type, description, actor


@dataclass
class AttachmentRemovedEvent(BaseEvent):
    event_type: str = "attachment_removed"
    # payload keys: attachment_id, actor


EVENT_CLASS_MAP: Dict[str, Type[BaseEvent]] = {
    cls.event_type: cls  # type: ignore[misc]
    for cls in (
        PermitCreatedEvent,
        PermitDetailsUpdatedEvent,
        HazardAddedEvent,
        HazardUpdatedEvent,
        HazardRemovedEvent,
        HazardControlImplementedEvent,
        PrecautionAddedEvent,
        PrecautionUpdatedEvent,
        PrecautionRemovedEvent,
        PrecautionCompletedEvent,
        PrecautionVerifiedEvent,
        PermitSubmittedEvent,
        ApprovalRecordedEvent,
        PermitRejectedEvent,
        WorkStartedEvent,
        WorkCompletedEvent,
        PermitCancelledEvent,
        AttachmentAddedEvent,
        AttachmentRemovedEvent,
    )
}


def reconstruct_event(
    event_type: str, timestamp: str, sequence: int, payload: Dict[str, Any],
) -> BaseEvent:
    """Rebuild a typed event from its stored columns."""
    cls = EVENT_CLASS_MAP.get(event_type)
    if cls is None:
        raise ValueError(f"Unknown event type in store: {event_type!r}")
    return cls(
        event_type=event_type,
        timestamp=timestamp,
        sequence=sequence,
        payload=payload,
    )
