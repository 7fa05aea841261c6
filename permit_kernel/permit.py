"""
Work Permit Kernel: WorkPermit Aggregate

The public face of the kernel. Every operation validates its input,
emits exactly one typed event, and applies it through PermitEngine.
A failed guard or validation raises before anything is recorded, so
the aggregate is never partially changed.

New events accumulate in `pending_events` until the caller persists
them and calls `collect_pending()`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from .approvals import (
    DEFAULT_APPROVAL_POLICY,
    ApprovalPolicy,
    approval_progress_percent,
    missing_levels,
    received_levels,
    required_levels,
)
from .constants import PERMIT_NUMBER_PREFIX
from .diagnostics import compute_diagnostics
from .domain_types import (
    Attachment,
    AttachmentType,
    Hazard,
    HazardInput,
    PermitDetails,
    PermitState,
    PermitStatus,
    PermitType,
    Precaution,
    PrecautionInput,
    TransitionResult,
    format_timestamp,
)
from .engine import PermitEngine
from .events import (
    ApprovalRecordedEvent,
    AttachmentAddedEvent,
    AttachmentRemovedEvent,
    BaseEvent,
    HazardAddedEvent,
    HazardControlImplementedEvent,
    HazardRemovedEvent,
    HazardUpdatedEvent,
    PermitCancelledEvent,
    PermitCreatedEvent,
    PermitDetailsUpdatedEvent,
    PermitRejectedEvent,
    PermitSubmittedEvent,
    PrecautionAddedEvent,
    PrecautionCompletedEvent,
    PrecautionRemovedEvent,
    PrecautionUpdatedEvent,
    PrecautionVerifiedEvent,
    WorkCompletedEvent,
    WorkStartedEvent,
)
from .guards import require_editable, require_not_terminal
from .validation import (
    validate_hazard_input,
    validate_permit_details,
    validate_precaution_input,
    validate_residual_scores,
)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def permit_number_for(permit_type: PermitType, permit_id: int, created_at: datetime) -> str:
    """`<PREFIX>-<YYYYMM>-<NNNNNN>`; the store-allocated id keeps it unique."""
    prefix = PERMIT_NUMBER_PREFIX[PermitType(permit_type)]
    return f"{prefix}-{created_at:%Y%m}-{permit_id:06d}"


class WorkPermit:
    """Aggregate root for one work permit."""

    def __init__(
        self,
        policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
        clock: Optional[Clock] = None,
    ) -> None:
        self._engine = PermitEngine()
        self._engine.initialize_state()
        self._policy = policy
        self._clock = clock or _utc_now
        self._pending: List[BaseEvent] = []

    # -- Construction -------------------------------------------------------

    @classmethod
    def create(
        cls,
        permit_id: int,
        details: PermitDetails,
        actor: str,
        policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
        clock: Optional[Clock] = None,
    ) -> "WorkPermit":
        validate_permit_details(details)
        permit = cls(policy=policy, clock=clock)
        created_at = permit._clock()
        permit._record(PermitCreatedEvent(payload={
            "permit_id": permit_id,
            "permit_number": permit_number_for(details.permit_type, permit_id, created_at),
            "details": details.to_payload(),
            "actor": actor,
        }), at=created_at)
        return permit

    @classmethod
    def load(
        cls,
        events: Iterable[BaseEvent],
        policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
        clock: Optional[Clock] = None,
    ) -> "WorkPermit":
        """Rebuild from a stored stream. Nothing is pending afterwards."""
        permit = cls(policy=policy, clock=clock)
        permit._engine.replay(list(events))
        return permit

    # -- State access -------------------------------------------------------

    @property
    def state(self) -> PermitState:
        return self._engine.state

    @property
    def permit_id(self) -> int:
        return self.state.permit_id

    @property
    def status(self) -> PermitStatus:
        return self.state.status

    @property
    def version(self) -> int:
        return self._engine.last_sequence

    @property
    def pending_events(self) -> Tuple[BaseEvent, ...]:
        return tuple(self._pending)

    def collect_pending(self) -> List[BaseEvent]:
        events, self._pending = self._pending, []
        return events

    @property
    def required_levels(self) -> Tuple[str, ...]:
        """Locked set once submitted; the live policy result before that."""
        if self.state.submission_count:
            return self.state.required_levels
        return required_levels(self.state.permit_type, self.state.safety, self._policy)

    @property
    def received_levels(self) -> Tuple[str, ...]:
        return received_levels(self.state.approvals)

    @property
    def missing_levels(self) -> Tuple[str, ...]:
        return missing_levels(self.required_levels, self.state.approvals)

    @property
    def approval_progress(self) -> int:
        return approval_progress_percent(self.required_levels, self.state.approvals)

    def diagnostics(self) -> dict:
        return compute_diagnostics(self.state, now=self._clock())

    # -- Details ------------------------------------------------------------

    def update_details(self, details: PermitDetails, actor: str) -> TransitionResult:
        require_editable(self.state, "update the details of")
        validate_permit_details(details)
        return self._record(PermitDetailsUpdatedEvent(payload={
            "details": details.to_payload(),
            "actor": actor,
        }))

    # -- Hazard ledger ------------------------------------------------------

    def add_hazard(self, hazard: HazardInput, actor: str) -> Hazard:
        require_editable(self.state, "add a hazard to")
        validate_hazard_input(hazard)
        result = self._record(HazardAddedEvent(payload={
            "hazard": hazard.to_payload(),
            "actor": actor,
        }))
        return self.state.hazards[result.entity_id]

    def update_hazard(self, hazard_id: int, hazard: HazardInput, actor: str) -> Hazard:
        require_editable(self.state, "update a hazard of")
        validate_hazard_input(hazard)
        result = self._record(HazardUpdatedEvent(payload={
            "hazard_id": hazard_id,
            "hazard": hazard.to_payload(),
            "actor": actor,
        }))
        return self.state.hazards[result.entity_id]

    def remove_hazard(self, hazard_id: int, actor: str) -> TransitionResult:
        return self._record(HazardRemovedEvent(payload={
            "hazard_id": hazard_id,
            "actor": actor,
        }))

    def implement_hazard_control(
        self,
        hazard_id: int,
        residual_likelihood: int,
        residual_severity: int,
        actor: str,
        notes: str = "",
    ) -> Hazard:
        require_not_terminal(self.state, "implement hazard controls on")
        validate_residual_scores(residual_likelihood, residual_severity)
        result = self._record(HazardControlImplementedEvent(payload={
            "hazard_id": hazard_id,
            "residual_likelihood": residual_likelihood,
            "residual_severity": residual_severity,
            "notes": notes,
            "actor": actor,
        }))
        return self.state.hazards[result.entity_id]

    # -- Precaution ledger --------------------------------------------------

    def add_precaution(self, precaution: PrecautionInput, actor: str) -> Precaution:
        require_editable(self.state, "add a precaution to")
        validate_precaution_input(precaution)
        result = self._record(PrecautionAddedEvent(payload={
            "precaution": precaution.to_payload(),
            "actor": actor,
        }))
        return self.state.precautions[result.entity_id]

    def update_precaution(
        self, precaution_id: int, precaution: PrecautionInput, actor: str,
    ) -> Precaution:
        require_editable(self.state, "update a precaution of")
        validate_precaution_input(precaution)
        result = self._record(PrecautionUpdatedEvent(payload={
            "precaution_id": precaution_id,
            "precaution": precaution.to_payload(),
            "actor": actor,
        }))
        return self.state.precautions[result.entity_id]

    def remove_precaution(self, precaution_id: int, actor: str) -> TransitionResult:
        return self._record(PrecautionRemovedEvent(payload={
            "precaution_id": precaution_id,
            "actor": actor,
        }))

    def complete_precaution(self, precaution_id: int, actor: str, notes: str = "") -> Precaution:
        result = self._record(PrecautionCompletedEvent(payload={
            "precaution_id": precaution_id,
            "notes": notes,
            "actor": actor,
        }))
        return self.state.precautions[result.entity_id]

    def verify_precaution(self, precaution_id: int, actor: str) -> Precaution:
        result = self._record(PrecautionVerifiedEvent(payload={
            "precaution_id": precaution_id,
            "actor": actor,
        }))
        return self.state.precautions[result.entity_id]

    # -- Lifecycle ----------------------------------------------------------

    def submit(self, actor: str) -> TransitionResult:
        levels = required_levels(self.state.permit_type, self.state.safety, self._policy)
        return self._record(PermitSubmittedEvent(payload={
            "required_levels": list(levels),
            "actor": actor,
        }))

    def approve(
        self,
        approver_id: int,
        approver_name: str,
        level: str,
        comments: str = "",
        k3_certificate_number: str = "",
        authority_level: str = "",
    ) -> TransitionResult:
        return self._record(ApprovalRecordedEvent(payload={
            "approver_id": approver_id,
            "approver_name": approver_name,
            "level": (level or "").strip(),
            "comments": comments,
            "k3_certificate_number": k3_certificate_number,
            "authority_level": authority_level,
            "actor": approver_name,
        }))

    def reject(self, approver_id: int, approver_name: str, reason: str) -> TransitionResult:
        return self._record(PermitRejectedEvent(payload={
            "approver_id": approver_id,
            "approver_name": approver_name,
            "reason": (reason or "").strip(),
            "actor": approver_name,
        }))

    def start_work(self, actor: str) -> TransitionResult:
        return self._record(WorkStartedEvent(payload={"actor": actor}))

    def complete_work(
        self,
        actor: str,
        completion_notes: str,
        is_completed_safely: bool,
        lessons_learned: str = "",
    ) -> TransitionResult:
        return self._record(WorkCompletedEvent(payload={
            "completion_notes": (completion_notes or "").strip(),
            "is_completed_safely": bool(is_completed_safely),
            "lessons_learned": lessons_learned,
            "actor": actor,
        }))

    def cancel(self, actor: str, reason: str) -> TransitionResult:
        return self._record(PermitCancelledEvent(payload={
            "reason": (reason or "").strip(),
            "actor": actor,
        }))

    # -- Attachments --------------------------------------------------------

    def add_attachment(
        self,
        file_name: str,
        original_file_name: str,
        content_type: str,
        size: int,
        attachment_type: AttachmentType,
        actor: str,
        description: str = "",
    ) -> Attachment:
        result = self._record(AttachmentAddedEvent(payload={
            "file_name": file_name,
            "original_file_name": original_file_name,
            "content_type": content_type,
            "size": size,
            "attachment_type": AttachmentType(attachment_type).value,
            "description": description,
            "actor": actor,
        }))
        return self.state.attachments[result.entity_id]

    def remove_attachment(self, attachment_id: int, actor: str) -> TransitionResult:
        return self._record(AttachmentRemovedEvent(payload={
            "attachment_id": attachment_id,
            "actor": actor,
        }))

    # -- Internals ----------------------------------------------------------

    def _record(self, event: BaseEvent, at: Optional[datetime] = None) -> TransitionResult:
        event.sequence = self._engine.last_sequence + 1
        event.timestamp = format_timestamp(at or self._clock())
        _, result = self._engine.apply_event(event)
        self._pending.append(event)
        return result
