from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ActionType(str, Enum):
    SITE_CREATE = "site_create"
    SITE_INSTALL = "site_install"
    SITE_UNINSTALL = "site_uninstall"
    SITE_DELETE = "site_delete"
    UNINSTALL_FAILED = "compose-uninstall-failed"


class ActionStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class AuditLogEntry(BaseModel):
    id: int
    timestamp: datetime
    action_type: str
    site_id: int | None = None
    target_name: str
    status: str
    output: str | None = None
    error_message: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    duration_ms: float | None = None


class AuditLogResponse(BaseModel):
    logs: list[AuditLogEntry]
    total: int
