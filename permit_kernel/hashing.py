"""
Work Permit Kernel: Canonical Hashing

Deterministic canonical serialization + SHA-256 hashing.

Rules:
  - Child collections sorted by id (approvals kept in log order)
  - Enums as their string values, timestamps as ISO-8601
  - UTF-8 JSON, sorted keys, no whitespace
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

from .domain_types import PermitState


def canonical_serialize(state: PermitState) -> bytes:
    """Canonical serialization of PermitState to UTF-8 JSON bytes."""
    return serialize_dict(state.to_dict())


def serialize_dict(data: Dict[str, Any]) -> bytes:
    return json.dumps(
        data, ensure_ascii=True, separators=(",", ":"), sort_keys=True,
    ).encode("utf-8")


def canonical_hash(state: PermitState) -> str:
    """SHA-256 of canonical serialization. Lowercase hex string."""
    return hashlib.sha256(canonical_serialize(state)).hexdigest()


def hash_state_dict(data: Dict[str, Any]) -> str:
    """Hash of an already-serialised state (e.g. a stored read model)."""
    return hashlib.sha256(serialize_dict(data)).hexdigest()
