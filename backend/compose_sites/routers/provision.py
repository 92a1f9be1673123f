from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Path

from compose_sites.database import Site
from compose_sites.dependencies import get_provision_service
from compose_sites.schemas.compose import (
    CreateSiteRequest,
    DeleteSiteResponse,
    DeploymentScriptResponse,
    FieldListResponse,
    SiteResponse,
)
from compose_sites.validators import ValidationError

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/api/provision", tags=["provision"])


def _site_response(site: Site) -> SiteResponse:
    return SiteResponse(**site.to_dict())


@router.get("/fields", response_model=FieldListResponse)
async def list_fields():
    """Form fields accepted under `config` when creating a docker site."""
    service = get_provision_service()
    return FieldListResponse(fields=service.get_fields())


@router.post("/", response_model=SiteResponse)
async def create_site(request: CreateSiteRequest):
    """Create a docker compose site and install it on its server."""
    service = get_provision_service()
    try:
        site = await asyncio.to_thread(service.create_site, request)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _site_response(site)


@router.get("/{site_id}", response_model=SiteResponse)
async def get_site(site_id: int = Path(..., ge=1)):
    service = get_provision_service()
    site = await asyncio.to_thread(service.get_site, site_id)
    return _site_response(site)


@router.post("/{site_id}/install", response_model=SiteResponse)
async def reinstall_site(site_id: int = Path(..., ge=1)):
    """Run the install again, e.g. after a failed attempt."""
    service = get_provision_service()
    site = await asyncio.to_thread(service.install_site, site_id)
    return _site_response(site)


@router.get("/{site_id}/vhost")
async def get_vhost(site_id: int = Path(..., ge=1)):
    service = get_provision_service()
    content = await asyncio.to_thread(service.render_vhost, site_id)
    return {"site_id": site_id, "content": content}


@router.get("/{site_id}/deployment-script", response_model=DeploymentScriptResponse)
async def get_deployment_script(site_id: int = Path(..., ge=1)):
    service = get_provision_service()
    script = await asyncio.to_thread(service.get_deployment_script, site_id)
    if script is None:
        raise HTTPException(status_code=404, detail=f"No deployment script for site {site_id}")
    return DeploymentScriptResponse(site_id=site_id, content=script.content)


@router.delete("/{site_id}", response_model=DeleteSiteResponse)
async def delete_site(site_id: int = Path(..., ge=1)):
    """Delete a site; container teardown failures do not block the deletion."""
    service = get_provision_service()
    return await asyncio.to_thread(service.delete_site, site_id)
