from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator

from compose_sites.utils.path_utils import (
    DEFAULT_COMPOSE_FILE,
    DEFAULT_PROJECT_DIR,
    env_file_path,
    normalize_compose_file,
    normalize_healthcheck_url,
    normalize_project_dir,
    normalize_public_url_path,
    site_workdir,
)
from compose_sites.validators import (
    validate_branch,
    validate_domain,
    validate_port,
    validate_relative_path,
    validate_repo_url,
    validate_url_path,
)


DEFAULT_REPO_BRANCH = "main"
DEFAULT_CONTAINER_HTTP_PORT = 3080
HOST_PORT_MIN = 30000
HOST_PORT_MAX = 39999


class ComposeSource(str, Enum):
    REPO = "repo"
    INLINE = "inline"


class FieldKind(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"


class FieldSpec(BaseModel):
    """One entry of the site-type form, rendered by whatever UI consumes the API."""

    name: str
    kind: FieldKind
    label: str
    default: Any = None
    placeholder: str | None = None
    description: str = ""
    options: list[str] = Field(default_factory=list)


COMPOSE_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(
        name="compose_source",
        kind=FieldKind.SELECT,
        label="Compose Source",
        default=ComposeSource.REPO.value,
        options=[source.value for source in ComposeSource],
        description="Use a git repository or provide an inline Compose template.",
    ),
    FieldSpec(
        name="repo_url",
        kind=FieldKind.TEXT,
        label="Repository URL",
        placeholder="https://github.com/owner/repo.git",
        description="Required when Compose Source is set to repo.",
    ),
    FieldSpec(
        name="repo_branch",
        kind=FieldKind.TEXT,
        label="Repository Branch",
        default=DEFAULT_REPO_BRANCH,
        description="Used only for repo source.",
    ),
    FieldSpec(
        name="project_dir",
        kind=FieldKind.TEXT,
        label="Project Directory",
        default=DEFAULT_PROJECT_DIR,
        placeholder=DEFAULT_PROJECT_DIR,
        description="Relative to the site root where the repository/template lives.",
    ),
    FieldSpec(
        name="compose_file",
        kind=FieldKind.TEXT,
        label="Compose File",
        default=DEFAULT_COMPOSE_FILE,
        description="Relative to the project directory.",
    ),
    FieldSpec(
        name="compose_inline",
        kind=FieldKind.TEXTAREA,
        label="Inline Compose Template",
        description="Required when Compose Source is set to inline.",
    ),
    FieldSpec(
        name="container_http_port",
        kind=FieldKind.TEXT,
        label="Container HTTP Port",
        default=DEFAULT_CONTAINER_HTTP_PORT,
        description="Internal container port the app listens on.",
    ),
    FieldSpec(
        name="host_http_port",
        kind=FieldKind.TEXT,
        label="Host HTTP Port",
        placeholder="Auto-allocate if empty",
        description="Bound on 127.0.0.1; leave empty to auto-allocate.",
    ),
    FieldSpec(
        name="public_url_path",
        kind=FieldKind.TEXT,
        label="Public URL Path",
        placeholder="/ (leave empty for root)",
        description="Optional path prefix for proxying.",
    ),
    FieldSpec(
        name="env_content",
        kind=FieldKind.TEXTAREA,
        label=".env Content",
        description="Optional environment overrides merged into .env.",
    ),
    FieldSpec(
        name="healthcheck_url",
        kind=FieldKind.TEXT,
        label="Healthcheck URL",
        placeholder="/health",
        description="Optional path to expose for health checks.",
    ),
)


class ComposeSiteInput(BaseModel):
    """Raw form input for a compose site, checked before anything touches the server."""

    compose_source: ComposeSource = ComposeSource.REPO
    repo_url: str | None = None
    repo_branch: str | None = DEFAULT_REPO_BRANCH
    project_dir: str | None = DEFAULT_PROJECT_DIR
    compose_file: str | None = DEFAULT_COMPOSE_FILE
    compose_inline: str | None = None
    container_http_port: int = DEFAULT_CONTAINER_HTTP_PORT
    host_http_port: int | None = None
    public_url_path: str | None = None
    env_content: str | None = None
    healthcheck_url: str | None = None

    @field_validator("host_http_port", mode="before")
    @classmethod
    def _blank_port_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("container_http_port")
    @classmethod
    def _check_container_port(cls, value: int) -> int:
        return validate_port(value, "container_http_port")

    @field_validator("host_http_port")
    @classmethod
    def _check_host_port(cls, value: int | None) -> int | None:
        if value is None:
            return None
        return validate_port(value, "host_http_port", HOST_PORT_MIN, HOST_PORT_MAX)

    @field_validator("repo_branch")
    @classmethod
    def _check_branch(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return validate_branch(value)

    @field_validator("project_dir", "compose_file")
    @classmethod
    def _check_relative_path(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None or value == "":
            return value
        return validate_relative_path(value, info.field_name)

    @field_validator("public_url_path", "healthcheck_url")
    @classmethod
    def _check_url_path(cls, value: str | None, info: ValidationInfo) -> str | None:
        if value is None or value == "":
            return value
        return validate_url_path(value, info.field_name)

    @model_validator(mode="after")
    def _check_source_fields(self) -> "ComposeSiteInput":
        if self.compose_source == ComposeSource.REPO:
            self.repo_url = validate_repo_url(self.repo_url or "")
        elif not (self.compose_inline or "").strip():
            raise ValueError("compose_inline is required when Compose Source is set to inline")
        return self


class ComposeConfiguration(BaseModel):
    """Normalized view of a site's type_data, rebuilt on every operation."""

    compose_source: ComposeSource = ComposeSource.REPO
    repo_url: str | None = None
    repo_branch: str | None = None
    project_dir: str = DEFAULT_PROJECT_DIR
    compose_file: str = DEFAULT_COMPOSE_FILE
    container_http_port: int = DEFAULT_CONTAINER_HTTP_PORT
    host_http_port: int | None = None
    public_url_path: str = ""
    healthcheck_url: str | None = None
    compose_inline: str | None = None
    env_content: str | None = None
    compose_service: str | None = None

    @classmethod
    def from_type_data(cls, type_data: dict[str, Any] | None) -> "ComposeConfiguration":
        data = type_data or {}
        source = ComposeSource(data.get("compose_source") or ComposeSource.REPO.value)
        project_dir = data.get("project_dir")
        return cls(
            compose_source=source,
            repo_url=data.get("repo_url"),
            repo_branch=data.get("repo_branch") or DEFAULT_REPO_BRANCH,
            project_dir=normalize_project_dir(DEFAULT_PROJECT_DIR if project_dir is None else project_dir),
            compose_file=normalize_compose_file(data.get("compose_file")),
            container_http_port=int(data.get("container_http_port") or DEFAULT_CONTAINER_HTTP_PORT),
            host_http_port=int(data["host_http_port"]) if data.get("host_http_port") else None,
            public_url_path=normalize_public_url_path(data.get("public_url_path")),
            healthcheck_url=normalize_healthcheck_url(data.get("healthcheck_url")),
            compose_inline=data.get("compose_inline"),
            env_content=data.get("env_content"),
            compose_service=data.get("compose_service"),
        )

    def workdir(self, site_path: str) -> str:
        return site_workdir(site_path, self.project_dir)

    def env_path(self, site_path: str) -> str:
        return env_file_path(site_path, self.project_dir)


def build_type_data(request: ComposeSiteInput, host_port: int, site_path: str) -> dict[str, Any]:
    """Type data persisted on the site for a validated request."""
    project_dir = normalize_project_dir(
        DEFAULT_PROJECT_DIR if request.project_dir is None else request.project_dir
    )
    is_repo = request.compose_source == ComposeSource.REPO

    return {
        "compose_source": request.compose_source.value,
        "repo_url": (request.repo_url or "").strip() if is_repo else None,
        "repo_branch": (request.repo_branch or DEFAULT_REPO_BRANCH).strip() if is_repo else None,
        "project_dir": project_dir,
        "compose_file": normalize_compose_file(request.compose_file),
        "container_http_port": request.container_http_port,
        "host_http_port": host_port,
        "public_url_path": normalize_public_url_path(request.public_url_path),
        "healthcheck_url": normalize_healthcheck_url(request.healthcheck_url),
        "compose_inline": request.compose_inline if not is_repo else None,
        "env_content": request.env_content,
        "env_path": env_file_path(site_path, project_dir),
    }


class CreateSiteRequest(BaseModel):
    server_id: int = Field(..., ge=1)
    domain: str
    path: str = Field(..., min_length=1)
    user: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-z_][a-z0-9_-]*$")
    webserver: str = "nginx"
    config: ComposeSiteInput

    @field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        return validate_domain(value)


class SiteResponse(BaseModel):
    id: int
    server_id: int
    domain: str
    path: str
    user: str
    port: int | None = None
    webserver: str
    status: str
    progress: int
    type_data: dict[str, Any] = Field(default_factory=dict)


class DeleteSiteResponse(BaseModel):
    id: int
    status: str
    message: str
    uninstalled: bool


class DeploymentScriptResponse(BaseModel):
    site_id: int
    content: str


class FieldListResponse(BaseModel):
    fields: list[FieldSpec]
