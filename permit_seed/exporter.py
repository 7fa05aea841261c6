"""
JSON Event Stream Exporter.

Exports a demo permit's event stream + metadata to a JSON file.
Never exports PermitState.
"""

from __future__ import annotations

import json
from typing import List

from permit_kernel.events import BaseEvent

from .demo_spec import DemoSpec


def export_event_stream(
    events: List[BaseEvent],
    path: str,
    spec: DemoSpec,
    seed: int,
) -> None:
    """
    Write event stream + metadata to a JSON file.

    Output format:
    {
        "metadata": {"seed": int, "demo": {...}},
        "events": [event.to_dict(), ...]
    }
    """
    doc = {
        "metadata": {
            "seed": seed,
            "demo": spec.to_dict(),
        },
        "events": [e.to_dict() for e in events],
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(doc, f, ensure_ascii=True, indent=2)
