"""
Permit Workflow Service: command handlers over the event store.

Every command follows the same order:
  1. check the caller's cancellation signal  : before any mutation
  2. load the stream and replay it            : WorkPermit.load
  3. apply exactly one aggregate operation    : may raise, nothing stored
  4. append with the pre-command version      : ConcurrencyConflictError
  5. update the metadata hash + read model    : only if step 4 succeeded

A conflict in step 4 reloads and reapplies the command, up to
_MAX_RETRIES attempts in total, then surfaces the conflict.

The service is request-scoped: build one per caller with that caller's
identity provider and cancellation signal.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from permit_kernel.approvals import DEFAULT_APPROVAL_POLICY, ApprovalPolicy
from permit_kernel.constants import TERMINAL_STATUSES
from permit_kernel.domain_types import (
    AttachmentType,
    HazardInput,
    PermitDetails,
    PermitStatus,
    PrecautionInput,
)
from permit_kernel.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    OperationCancelledError,
    StorageError,
    ValidationError,
)
from permit_kernel.events import BaseEvent
from permit_kernel.hashing import canonical_hash, hash_state_dict
from permit_kernel.permit import WorkPermit
from permit_kernel.validation import validate_permit_details

from .attachments import AttachmentStore
from .dashboard import compute_dashboard
from .identity import Identity
from .observability import collect_metrics
from .read_model_repository import PermitQuery
from .read_models import to_dto

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3

Clock = Callable[[], datetime]
Operation = Callable[[WorkPermit, Identity], Any]


class DeterminismError(Exception):
    """Raised when replay produces a different hash than the stored one."""

    def __init__(self, permit_id: int, expected: str, actual: str):
        self.permit_id = permit_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Determinism failure for work permit {permit_id}: "
            f"stored hash={expected!r}, replayed hash={actual!r}"
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PermitWorkflowService:
    """Command and query handlers for work permits."""

    def __init__(
        self,
        event_repo,
        read_models,
        identity,
        attachments: Optional[AttachmentStore] = None,
        policy: ApprovalPolicy = DEFAULT_APPROVAL_POLICY,
        clock: Optional[Clock] = None,
        cancellation: Optional[threading.Event] = None,
    ) -> None:
        self._event_repo = event_repo
        self._read_models = read_models
        self._identity = identity
        self._attachments = attachments
        self._policy = policy
        self._clock = clock or _utc_now
        self._cancellation = cancellation

    # ------------------------------------------------------------------
    # Commands: creation and details
    # ------------------------------------------------------------------

    def create_permit(self, details: PermitDetails) -> dict:
        """Validate, allocate an id, and store the permit_created event."""
        self._check_cancelled()
        actor = self._identity.current()
        validate_permit_details(details)

        permit_id = self._event_repo.allocate_permit_id()
        permit = WorkPermit.create(
            permit_id, details, actor.name, policy=self._policy, clock=self._clock,
        )
        self._event_repo.append_events(permit_id, permit.collect_pending(), 0)
        dto = self._refresh(permit)
        logger.info(
            "Work permit %s (%s) created by %s",
            dto["permit_number"], permit_id, actor.name,
        )
        return dto

    def create_from_stream(self, events: List[BaseEvent]) -> dict:
        """
        Store a pre-built stream (demo seeding). The stream's permit id is
        replaced by a freshly allocated one before anything is written.
        """
        self._check_cancelled()
        if not events or events[0].event_type != "permit_created":
            raise ValueError("A stored stream must start with permit_created")

        permit_id = self._event_repo.allocate_permit_id()
        created = events[0]
        payload = dict(created.payload)
        payload["permit_id"] = permit_id
        number = payload["permit_number"]
        payload["permit_number"] = f"{number.rsplit('-', 1)[0]}-{permit_id:06d}"
        head = type(created)(
            timestamp=created.timestamp, sequence=created.sequence, payload=payload,
        )
        stream = [head] + list(events[1:])

        permit = WorkPermit.load(stream, policy=self._policy, clock=self._clock)
        self._event_repo.append_events(permit_id, stream, 0)
        dto = self._refresh(permit)
        logger.info("Demo work permit %s seeded with %d events", permit_id, len(stream))
        return dto

    def update_details(self, permit_id: int, details: PermitDetails) -> dict:
        return self._execute(
            permit_id, "updated",
            lambda permit, actor: permit.update_details(details, actor.name),
        )

    def delete_permit(self, permit_id: int) -> None:
        """Hard delete. Only Draft permits can be deleted."""
        for attempt in range(1, _MAX_RETRIES + 1):
            self._check_cancelled()
            actor = self._identity.current()
            permit = self._load(permit_id)
            if permit.status != PermitStatus.DRAFT:
                raise InvalidTransitionError("delete", permit.status.value)
            try:
                self._event_repo.delete_stream(permit_id, permit.version)
            except ConcurrencyConflictError:
                if attempt == _MAX_RETRIES:
                    raise
                logger.warning(
                    "Concurrency conflict deleting work permit %s (attempt %d/%d), retrying",
                    permit_id, attempt, _MAX_RETRIES,
                )
                continue
            self._read_models.delete(permit_id)
            if self._attachments is not None:
                try:
                    self._attachments.delete_all(permit_id)
                except StorageError:
                    logger.warning(
                        "Could not remove attachment files of work permit %s",
                        permit_id, exc_info=True,
                    )
            logger.info("Work permit %s deleted by %s", permit_id, actor.name)
            return

    # ------------------------------------------------------------------
    # Commands: hazards
    # ------------------------------------------------------------------

    def add_hazard(self, permit_id: int, hazard: HazardInput) -> dict:
        return self._execute(
            permit_id, "hazard added",
            lambda permit, actor: permit.add_hazard(hazard, actor.name),
        )

    def update_hazard(self, permit_id: int, hazard_id: int, hazard: HazardInput) -> dict:
        return self._execute(
            permit_id, "hazard updated",
            lambda permit, actor: permit.update_hazard(hazard_id, hazard, actor.name),
        )

    def remove_hazard(self, permit_id: int, hazard_id: int) -> dict:
        return self._execute(
            permit_id, "hazard removed",
            lambda permit, actor: permit.remove_hazard(hazard_id, actor.name),
        )

    def implement_hazard_control(
        self,
        permit_id: int,
        hazard_id: int,
        residual_likelihood: int,
        residual_severity: int,
        notes: str = "",
    ) -> dict:
        return self._execute(
            permit_id, "hazard control implemented",
            lambda permit, actor: permit.implement_hazard_control(
                hazard_id, residual_likelihood, residual_severity, actor.name, notes,
            ),
        )

    # ------------------------------------------------------------------
    # Commands: precautions
    # ------------------------------------------------------------------

    def add_precaution(self, permit_id: int, precaution: PrecautionInput) -> dict:
        return self._execute(
            permit_id, "precaution added",
            lambda permit, actor: permit.add_precaution(precaution, actor.name),
        )

    def update_precaution(
        self, permit_id: int, precaution_id: int, precaution: PrecautionInput,
    ) -> dict:
        return self._execute(
            permit_id, "precaution updated",
            lambda permit, actor: permit.update_precaution(precaution_id, precaution, actor.name),
        )

    def remove_precaution(self, permit_id: int, precaution_id: int) -> dict:
        return self._execute(
            permit_id, "precaution removed",
            lambda permit, actor: permit.remove_precaution(precaution_id, actor.name),
        )

    def complete_precaution(self, permit_id: int, precaution_id: int, notes: str = "") -> dict:
        return self._execute(
            permit_id, "precaution completed",
            lambda permit, actor: permit.complete_precaution(precaution_id, actor.name, notes),
        )

    def verify_precaution(self, permit_id: int, precaution_id: int) -> dict:
        return self._execute(
            permit_id, "precaution verified",
            lambda permit, actor: permit.verify_precaution(precaution_id, actor.name),
        )

    # ------------------------------------------------------------------
    # Commands: lifecycle
    # ------------------------------------------------------------------

    def submit(self, permit_id: int) -> dict:
        return self._execute(
            permit_id, "submitted",
            lambda permit, actor: permit.submit(actor.name),
        )

    def approve(
        self,
        permit_id: int,
        level: str,
        comments: str = "",
        k3_certificate_number: str = "",
        authority_level: str = "",
    ) -> dict:
        return self._execute(
            permit_id, f"approved at level {level!r}",
            lambda permit, actor: permit.approve(
                actor.user_id, actor.name, level, comments,
                k3_certificate_number=k3_certificate_number,
                authority_level=authority_level,
            ),
        )

    def reject(self, permit_id: int, reason: str) -> dict:
        return self._execute(
            permit_id, "rejected",
            lambda permit, actor: permit.reject(actor.user_id, actor.name, reason),
        )

    def start_work(self, permit_id: int) -> dict:
        return self._execute(
            permit_id, "started",
            lambda permit, actor: permit.start_work(actor.name),
        )

    def complete_work(
        self,
        permit_id: int,
        completion_notes: str,
        is_completed_safely: bool,
        lessons_learned: str = "",
    ) -> dict:
        return self._execute(
            permit_id, "completed",
            lambda permit, actor: permit.complete_work(
                actor.name, completion_notes, is_completed_safely, lessons_learned,
            ),
        )

    def cancel(self, permit_id: int, reason: str) -> dict:
        return self._execute(
            permit_id, "cancelled",
            lambda permit, actor: permit.cancel(actor.name, reason),
        )

    # ------------------------------------------------------------------
    # Commands: attachments
    # ------------------------------------------------------------------

    def add_attachment(
        self,
        permit_id: int,
        original_file_name: str,
        content_type: str,
        data: bytes,
        attachment_type: AttachmentType = AttachmentType.OTHER,
        description: str = "",
    ) -> dict:
        """Write the file, then record it. The file is removed if recording fails."""
        store = self._require_attachments()
        self._check_cancelled()
        # Fail fast on a missing or closed permit before touching the disk.
        permit = self._load(permit_id)
        if permit.status in TERMINAL_STATUSES:
            raise InvalidTransitionError("attach files to", permit.status.value)
        if not original_file_name:
            raise ValidationError.single("file", "A file name is required.")

        file_name = store.save(permit_id, original_file_name, data)
        try:
            return self._execute(
                permit_id, f"attachment {original_file_name!r} added",
                lambda permit, actor: permit.add_attachment(
                    file_name, original_file_name, content_type, len(data),
                    attachment_type, actor.name, description,
                ),
            )
        except Exception:
            try:
                store.delete(permit_id, file_name)
            except StorageError:
                logger.warning(
                    "Could not remove orphaned attachment file %s of work permit %s",
                    file_name, permit_id, exc_info=True,
                )
            raise

    def remove_attachment(self, permit_id: int, attachment_id: int) -> dict:
        """Record the removal, then delete the file (failure is only logged)."""
        store = self._require_attachments()
        removed: Dict[str, str] = {}

        def operation(permit: WorkPermit, actor: Identity):
            attachment = permit.state.attachments.get(attachment_id)
            result = permit.remove_attachment(attachment_id, actor.name)
            removed["file_name"] = attachment.file_name
            return result

        dto = self._execute(permit_id, "attachment removed", operation)
        try:
            store.delete(permit_id, removed["file_name"])
        except StorageError:
            logger.warning(
                "Could not delete attachment file %s of work permit %s",
                removed["file_name"], permit_id, exc_info=True,
            )
        return dto

    def download_attachment(self, permit_id: int, attachment_id: int) -> Tuple[dict, bytes]:
        """Return (attachment metadata, file bytes)."""
        store = self._require_attachments()
        state_dict = self._load_read_model(permit_id)
        for attachment in state_dict.get("attachments", []):
            if attachment["id"] == attachment_id:
                return attachment, store.read(permit_id, attachment["file_name"])
        raise NotFoundError("attachment", attachment_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_permit(self, permit_id: int) -> dict:
        return to_dto(self._load_read_model(permit_id), self._policy, self._clock())

    def list_permits(self, query: PermitQuery = PermitQuery()) -> dict:
        items, total = self._read_models.query(query)
        now = self._clock()
        return {
            "items": [to_dto(item, self._policy, now) for item in items],
            "total": total,
            "page": query.page,
            "page_size": query.page_size,
            "total_pages": (total + query.page_size - 1) // query.page_size,
            "summary": self._read_models.count_by_status(query),
        }

    def my_permits(self, query: PermitQuery = PermitQuery()) -> dict:
        actor = self._identity.current()
        return self.list_permits(_with(query, requestor_id=actor.user_id))

    def pending_approval(self, query: PermitQuery = PermitQuery()) -> dict:
        return self.list_permits(_with(query, status=PermitStatus.SUBMITTED.value))

    def overdue_permits(self, query: PermitQuery = PermitQuery()) -> dict:
        return self.list_permits(_with(
            query,
            status=PermitStatus.IN_PROGRESS.value,
            planned_end_before=self._clock(),
        ))

    def dashboard(self) -> dict:
        now = self._clock()
        dtos = [to_dto(item, self._policy, now) for item in self._read_models.all()]
        return compute_dashboard(dtos, now)

    def verify_permit(self, permit_id: int) -> dict:
        """
        Replay the stored stream and compare its hash with the stored
        metadata hash and the read model's hash.

        Raises DeterminismError on mismatch.
        """
        permit = self._load(permit_id)
        replayed = canonical_hash(permit.state)

        metadata = self._event_repo.load_metadata(permit_id)
        if metadata is not None and metadata[1] != replayed:
            raise DeterminismError(permit_id, metadata[1], replayed)

        stored = self._read_models.load(permit_id)
        if stored is not None:
            stored_hash = hash_state_dict(stored)
            if stored_hash != replayed:
                raise DeterminismError(permit_id, stored_hash, replayed)

        metrics = collect_metrics(self._event_repo, permit_id, self._policy)
        return {
            "permit_id": permit_id,
            "verified": True,
            "state_hash": replayed,
            "metrics": metrics.to_dict(),
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _execute(self, permit_id: int, action: str, operation: Operation) -> dict:
        for attempt in range(1, _MAX_RETRIES + 1):
            self._check_cancelled()
            actor = self._identity.current()
            permit = self._load(permit_id)
            expected_version = permit.version

            operation(permit, actor)
            events = permit.collect_pending()
            try:
                self._event_repo.append_events(permit_id, events, expected_version)
            except ConcurrencyConflictError:
                if attempt == _MAX_RETRIES:
                    logger.warning(
                        "Giving up on work permit %s after %d concurrency conflicts",
                        permit_id, attempt,
                    )
                    raise
                logger.warning(
                    "Concurrency conflict on work permit %s (attempt %d/%d), retrying",
                    permit_id, attempt, _MAX_RETRIES,
                )
                continue

            dto = self._refresh(permit)
            logger.info("Work permit %s %s by %s", permit_id, action, actor.name)
            return dto
        raise AssertionError("unreachable")

    def _load(self, permit_id: int) -> WorkPermit:
        events = self._event_repo.load_events(permit_id)
        if not events:
            raise NotFoundError("work permit", permit_id)
        return WorkPermit.load(events, policy=self._policy, clock=self._clock)

    def _load_read_model(self, permit_id: int) -> dict:
        state_dict = self._read_models.load(permit_id)
        if state_dict is None:
            raise NotFoundError("work permit", permit_id)
        return state_dict

    def _refresh(self, permit: WorkPermit) -> dict:
        state_dict = permit.state.to_dict()
        self._event_repo.update_metadata(
            permit.permit_id, permit.version, hash_state_dict(state_dict),
        )
        self._read_models.save(state_dict)
        return to_dto(state_dict, self._policy, self._clock())

    def _require_attachments(self) -> AttachmentStore:
        if self._attachments is None:
            raise StorageError("No attachment store configured")
        return self._attachments

    def _check_cancelled(self) -> None:
        if self._cancellation is not None and self._cancellation.is_set():
            raise OperationCancelledError("Operation cancelled before any change was made")


def _with(query: PermitQuery, **changes) -> PermitQuery:
    return replace(query, **changes)
