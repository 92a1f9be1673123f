from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from compose_sites.config import get_settings, validate_config_on_startup, ConfigurationError
from compose_sites.database import init_database
from compose_sites.exceptions import (
    ComposeSiteError,
    DockerUnavailableError,
    PortConflictError,
    PortRangeExhaustedError,
    PortVerificationError,
    SiteNotFoundError,
    UnsupportedWebserverError,
)
from compose_sites.routers import audit, provision
from compose_sites.services.ssh_client import SSHCommandError


logger = logging.getLogger(__name__)


settings = get_settings()

ERROR_STATUS: dict[type[ComposeSiteError], tuple[int, str]] = {
    SiteNotFoundError: (404, "site_not_found"),
    PortConflictError: (409, "port_conflict"),
    PortRangeExhaustedError: (409, "port_range_exhausted"),
    PortVerificationError: (422, "port_unverified"),
    UnsupportedWebserverError: (400, "unsupported_webserver"),
    DockerUnavailableError: (422, "docker_unavailable"),
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    try:
        validate_config_on_startup(settings)
    except ConfigurationError:
        # Re-raise to prevent server from starting with invalid config
        raise

    init_database(settings.sqlite_db_path)

    yield


app = FastAPI(
    title="Compose Sites API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(provision.router)
app.include_router(audit.router)


@app.exception_handler(ComposeSiteError)
async def compose_site_error_handler(request: Request, exc: ComposeSiteError):
    status_code, error_type = 500, "compose_site_error"
    for error_class, mapped in ERROR_STATUS.items():
        if isinstance(exc, error_class):
            status_code, error_type = mapped
            break

    if status_code >= 500:
        logger.error(f"Compose site operation failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": error_type},
    )


@app.exception_handler(SSHCommandError)
async def ssh_command_error_handler(request: Request, exc: SSHCommandError):
    """Handle SSH command failures with 500 error."""
    logger.error(f"SSH command failed: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "SSH command execution failed",
            "error": str(exc),
            "error_type": "ssh_command_error",
        },
    )


@app.get("/api/ping")
async def ping():
    """Simple health check for load balancers."""
    return {"status": "ok", "version": "0.1.0"}
