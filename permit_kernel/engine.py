"""
Work Permit Kernel: Engine

Applies events to one permit. Mutation lives in transitions.py,
checks in invariants.py.

Strict sequence enforcement, creation-first validation.
"""

from __future__ import annotations

from typing import List, Tuple

from .domain_types import PermitState, TransitionResult
from .events import BaseEvent
from .state import create_initial_state
from .transitions import apply_event as _transition_apply
from .invariants import validate_invariants


class PermitEngine:
    """
    Stateful engine that wraps the pure functional transition layer.

    Constraints:
      - First event MUST be permit_created (sequence=1)
      - Sequence numbers strictly increasing, no gaps, no duplicates
      - Hard fail on any violation; the stored state is left untouched
    """

    def __init__(self) -> None:
        self._state: PermitState | None = None
        self._last_sequence: int = 0
        self._created: bool = False

    # -- State access -------------------------------------------------------

    @property
    def state(self) -> PermitState:
        if self._state is None:
            raise RuntimeError("Engine not initialised; call initialize_state() first")
        return self._state

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    # -- Public API ---------------------------------------------------------

    def initialize_state(self) -> PermitState:
        """Create a fresh initial state and store it."""
        self._state = create_initial_state()
        self._last_sequence = 0
        self._created = False
        return self._state

    def apply_event(
        self, event: BaseEvent,
    ) -> Tuple[PermitState, TransitionResult]:
        """
        Apply a single event:
          1. Validate sequence (strictly increasing, no gaps)
          2. Validate creation-first rule
          3. Delegate to transitions.apply_event
          4. Validate invariants on new state
          5. Store and return
        """
        # -- Sequence enforcement --
        expected = self._last_sequence + 1
        if event.sequence != expected:
            raise ValueError(
                f"Sequence violation: expected {expected}, "
                f"got {event.sequence}"
            )

        # -- Creation-first enforcement --
        if not self._created:
            if event.event_type != "permit_created":
                raise ValueError(
                    "First event MUST be permit_created, "
                    f"got {event.event_type!r}"
                )
        elif event.event_type == "permit_created":
            raise ValueError("permit_created can only be the first event")

        new_state, result = _transition_apply(self.state, event)
        validate_invariants(new_state)
        self._state = new_state
        self._last_sequence = event.sequence
        self._created = True
        return new_state, result

    def replay(self, events: List[BaseEvent]) -> PermitState:
        """
        Event-sourced reconstruction: reset to a fresh initial state,
        then replay every event from scratch.
        """
        self.initialize_state()
        for event in events:
            self.apply_event(event)
        return self.state
