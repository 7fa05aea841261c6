"""
Work Permit Kernel: State Construction
"""

from .domain_types import PermitState


def create_initial_state() -> PermitState:
    """Create a fresh, empty PermitState, populated by permit_created."""
    return PermitState(
        hazards={},
        precautions={},
        approvals=[],
        attachments={},
    )
