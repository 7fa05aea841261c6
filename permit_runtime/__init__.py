"""
Work Permit Runtime: Persistence and Orchestration Layer

Event store with optimistic concurrency, read-model projections,
workflow command handlers, attachments, dashboard, observability.
"""

from .event_repository import EventRepository
from .read_model_repository import PermitQuery, ReadModelRepository
from .read_models import to_dto
from .dashboard import compute_dashboard
from .identity import Identity, StaticIdentityProvider
from .attachments import AttachmentStore
from .workflow import PermitWorkflowService, DeterminismError
from .observability import PermitStreamMetrics, collect_metrics

__all__ = [
    "EventRepository",
    "ReadModelRepository",
    "PermitQuery",
    "to_dto",
    "compute_dashboard",
    "Identity",
    "StaticIdentityProvider",
    "AttachmentStore",
    "PermitWorkflowService",
    "DeterminismError",
    "PermitStreamMetrics",
    "collect_metrics",
]
