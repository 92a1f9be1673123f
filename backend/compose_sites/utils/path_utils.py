from __future__ import annotations

import os
import posixpath


DEFAULT_PROJECT_DIR = "app"
DEFAULT_COMPOSE_FILE = "docker-compose.yml"


def resolve_local_path(raw_path: str | None) -> str:
    """Expand ~ in a locally configured path (SSH key, known_hosts)."""
    if not raw_path:
        return ""

    return os.path.expanduser(raw_path.strip())


def normalize_project_dir(value: str | None) -> str:
    """Project directory relative to the site root.

    "", "." and "/" all mean the site root itself and normalize to "".
    Anything else loses its leading and trailing slashes.
    """
    value = (value or "").strip()
    if value in ("", ".", "/"):
        return ""
    return value.strip("/")


def normalize_compose_file(value: str | None) -> str:
    value = (value or "").strip()
    if not value:
        return DEFAULT_COMPOSE_FILE
    return value.lstrip("/")


def normalize_public_url_path(value: str | None) -> str:
    """Either "" (proxy the whole host) or "/prefix" without a trailing slash."""
    value = (value or "").strip()
    if value in ("", "/"):
        return ""
    return "/" + value.strip("/")


def normalize_healthcheck_url(value: str | None) -> str | None:
    value = (value or "").strip()
    if value in ("", "/"):
        return None
    return "/" + value.lstrip("/")


def site_workdir(site_path: str, project_dir: str) -> str:
    """Remote directory holding the compose project for a site."""
    base = site_path.rstrip("/")
    if not project_dir:
        return base
    return f"{base}/{project_dir}"


def env_file_path(site_path: str, project_dir: str) -> str:
    return f"{site_workdir(site_path, project_dir)}/.env"


def remote_dirname(path: str) -> str:
    return posixpath.dirname(path.rstrip("/")) or "/"
