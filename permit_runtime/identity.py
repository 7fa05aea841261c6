"""
Identity: who is acting.

The kernel never resolves users itself; the workflow layer asks an
identity provider for the current caller and passes plain values down.
"""

from __future__ import annotations

from dataclasses import dataclass

from permit_kernel.domain_types import RequestorSnapshot


@dataclass(frozen=True)
class Identity:
    user_id: int
    name: str
    department: str = ""
    position: str = ""

    def requestor(self, contact_phone: str = "") -> RequestorSnapshot:
        """Snapshot of this user as a permit requestor."""
        return RequestorSnapshot(
            id=self.user_id,
            name=self.name,
            department=self.department,
            position=self.position,
            contact_phone=contact_phone,
        )


class StaticIdentityProvider:
    """Always returns the identity it was built with (one per request)."""

    def __init__(self, identity: Identity) -> None:
        self._identity = identity

    def current(self) -> Identity:
        return self._identity
