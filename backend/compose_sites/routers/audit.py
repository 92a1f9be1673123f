from __future__ import annotations

from fastapi import APIRouter, Query

from compose_sites.dependencies import get_audit_service
from compose_sites.schemas.audit import AuditLogResponse


router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/logs", response_model=AuditLogResponse)
async def get_audit_logs(
    site_id: int | None = Query(None, description="Only entries for this site"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of entries"),
):
    """Most recent site actions, newest first."""
    service = get_audit_service()
    return service.get_logs(site_id=site_id, limit=limit)
