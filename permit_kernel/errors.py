"""
Work Permit Kernel: Error Taxonomy

Every failure a caller can act on has its own type. Kernel invariant
breaches live in invariants.py (InvariantViolationError); those are
programming errors or corrupt streams, not user mistakes.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping


class PermitError(Exception):
    """Base for all work-permit errors."""

    retryable: bool = False


class NotFoundError(PermitError):
    """The permit, or a child entity of it, does not exist."""

    def __init__(self, entity: str, key: object) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key!r} not found")


class InvalidTransitionError(PermitError):
    """The operation is not allowed from the permit's current status."""

    def __init__(self, operation: str, status: str) -> None:
        self.operation = operation
        self.status = status
        super().__init__(
            f"Cannot {operation} a work permit in status {status!r}"
        )


class ValidationError(PermitError):
    """
    Field-level validation failure.

    `errors` maps field name → list of messages, so a caller can render
    every problem at once.
    """

    def __init__(self, errors: Mapping[str, Iterable[str]]) -> None:
        self.errors: Dict[str, List[str]] = {
            k: list(v) for k, v in errors.items()
        }
        summary = "; ".join(
            f"{field}: {', '.join(msgs)}" for field, msgs in self.errors.items()
        )
        super().__init__(f"Validation failed: {summary}")

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls({field: [message]})


class ConcurrencyConflictError(PermitError):
    """The stream advanced past the version the command was based on."""

    retryable = True

    def __init__(self, permit_id: int, expected: int, actual: int) -> None:
        self.permit_id = permit_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Concurrency conflict on work permit {permit_id}: "
            f"expected version {expected}, found {actual}"
        )


class StorageError(PermitError):
    """Transient infrastructure failure (database, filesystem)."""

    retryable = True


class OperationCancelledError(PermitError):
    """The caller cancelled the command before any mutation happened."""
