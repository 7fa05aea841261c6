"""
Deterministic Demo Permit Generator.

Produces valid, replayable work permit event streams.
"""

from .compiler import compile_demo_permit, GeneratorInvariantError, DEMO_REQUESTOR
from .deterministic_rng import DeterministicRNG
from .exporter import export_event_stream
from .demo_spec import DemoSpec
from .verification import verify_demo_permit

__all__ = [
    "compile_demo_permit",
    "GeneratorInvariantError",
    "DEMO_REQUESTOR",
    "DeterministicRNG",
    "export_event_stream",
    "DemoSpec",
    "verify_demo_permit",
]
