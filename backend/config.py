"""
Backend configuration.

Values come from the process environment after `backend/.env` (if present)
has been loaded with python-dotenv. An empty DATABASE_URL selects the
sqlite store at PERMIT_DB_PATH.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from permit_kernel.approvals import DEFAULT_APPROVAL_POLICY, ApprovalPolicy, load_policy

ENV_PATH = os.path.join(os.path.dirname(__file__), ".env")

DEFAULT_MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class Settings:
    database_url: str = ""
    db_path: str = "permits.db"
    attachment_root: str = "attachments"
    frontend_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    approval_policy_path: str = ""
    max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES

    def approval_policy(self) -> ApprovalPolicy:
        if not self.approval_policy_path:
            return DEFAULT_APPROVAL_POLICY
        return load_policy(self.approval_policy_path)


def load_settings() -> Settings:
    if os.path.exists(ENV_PATH):
        load_dotenv(ENV_PATH)

    max_bytes = os.environ.get("PERMIT_MAX_ATTACHMENT_BYTES", "")
    return Settings(
        database_url=os.environ.get("DATABASE_URL", ""),
        db_path=os.environ.get("PERMIT_DB_PATH", "permits.db"),
        attachment_root=os.environ.get("PERMIT_ATTACHMENT_ROOT", "attachments"),
        frontend_url=os.environ.get("FRONTEND_URL", "http://localhost:3000"),
        log_level=os.environ.get("PERMIT_LOG_LEVEL", "INFO").upper(),
        approval_policy_path=os.environ.get("PERMIT_APPROVAL_POLICY", ""),
        max_attachment_bytes=int(max_bytes) if max_bytes else DEFAULT_MAX_ATTACHMENT_BYTES,
    )
