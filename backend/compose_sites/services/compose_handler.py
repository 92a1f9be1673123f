from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

from compose_sites.database import Site
from compose_sites.exceptions import ComposeSiteError, DockerUnavailableError, PortInUseError
from compose_sites.schemas.compose import (
    DEFAULT_REPO_BRANCH,
    ComposeConfiguration,
    ComposeSiteInput,
    ComposeSource,
    build_type_data,
)
from compose_sites.services.compose_resolver import parse_service_names, resolve_compose_service
from compose_sites.services.deploy_script import (
    COMPOSE_OVERRIDE_FILE,
    build_compose_command,
    build_deployment_script,
    build_override_content,
    compose_project_name,
)
from compose_sites.services.env_merger import merge_env_contents
from compose_sites.services.ports import PortAllocator
from compose_sites.services.site_store import SiteStore
from compose_sites.services.ssh_client import CommandChannel, SSHCommandError
from compose_sites.services.webserver import WebserverService, get_backend, proxy_params
from compose_sites.utils.path_utils import remote_dirname
from compose_sites.validators import quote_shell_arg


logger = logging.getLogger(__name__)

SENSITIVE_TYPE_DATA_KEYS = ("env_content", "compose_inline")


class InstallStage(str, Enum):
    START = "start"
    DOCKER_CHECKED = "docker_checked"
    VHOST_CREATED = "vhost_created"
    WORKDIR_READY = "workdir_ready"
    SOURCE_MATERIALIZED = "source_materialized"
    ENV_MERGED = "env_merged"
    PORT_VALIDATED = "port_validated"
    SERVICE_RESOLVED = "service_resolved"
    OVERRIDE_WRITTEN = "override_written"
    SCRIPT_WRITTEN = "script_written"
    IMAGES_PULLED = "images_pulled"
    CONTAINERS_UP = "containers_up"
    SENSITIVE_DATA_CLEARED = "sensitive_data_cleared"
    DONE = "done"


# Percentage reported once a stage has completed
STAGE_PROGRESS: dict[InstallStage, int] = {
    InstallStage.START: 5,
    InstallStage.DOCKER_CHECKED: 10,
    InstallStage.VHOST_CREATED: 20,
    InstallStage.SOURCE_MATERIALIZED: 45,
    InstallStage.ENV_MERGED: 55,
    InstallStage.SCRIPT_WRITTEN: 70,
    InstallStage.CONTAINERS_UP: 90,
    InstallStage.DONE: 100,
}


class ComposeSiteHandler:
    """Installs and removes a Docker Compose site on its server.

    install() walks the InstallStage sequence in order. Any failure aborts
    the remaining stages and nothing already done on the server is rolled
    back; running install again is the recovery path.
    """

    def __init__(
        self,
        site: Site,
        ssh: CommandChannel,
        store: SiteStore,
        webserver: WebserverService,
        allocator: PortAllocator | None = None,
        on_progress: Callable[[int], None] | None = None,
    ):
        self.site = site
        self.ssh = ssh
        self.store = store
        self.webserver = webserver
        self.allocator = allocator or PortAllocator(ssh, store)
        self.on_progress = on_progress
        self.stage = InstallStage.START

    @property
    def config(self) -> ComposeConfiguration:
        return ComposeConfiguration.from_type_data(self.site.type_data)

    @property
    def project_name(self) -> str:
        return compose_project_name(self.site.id)

    # -- create-time ---------------------------------------------------------

    def validation_errors(self, request: ComposeSiteInput) -> dict[str, str]:
        """Host port problems for an explicitly requested port, keyed by field."""
        if request.host_http_port is None:
            return {}
        message = self.allocator.validate_requested_port(request.host_http_port, self.site)
        return {"host_http_port": message} if message else {}

    def create_fields(self, request: ComposeSiteInput) -> dict[str, Any]:
        fields: dict[str, Any] = {"port": self.allocator.resolve(self.site, request.host_http_port)}
        if request.compose_source == ComposeSource.REPO:
            fields["repository"] = request.repo_url or ""
            fields["branch"] = request.repo_branch or DEFAULT_REPO_BRANCH
        return fields

    def data(self, request: ComposeSiteInput) -> dict[str, Any]:
        host_port = self.allocator.resolve(self.site, request.host_http_port)
        return build_type_data(request, host_port, self.site.path)

    def vhost(self, webserver: str) -> str:
        return get_backend(webserver).render_vhost(proxy_params(self.site, self.config))

    # -- install / uninstall -------------------------------------------------

    def install(self) -> None:
        self._progress(InstallStage.START)

        self._ensure_docker_available()
        self._advance(InstallStage.DOCKER_CHECKED)

        self.webserver.create_vhost(self.site, self.config)
        self._advance(InstallStage.VHOST_CREATED)

        config = self.config
        workdir = config.workdir(self.site.path)
        self._prepare_workdir(workdir)
        self._advance(InstallStage.WORKDIR_READY)

        if config.compose_source == ComposeSource.REPO:
            self._clone_repository(workdir, config)
        else:
            self._write_inline_compose(workdir, config)
        self._advance(InstallStage.SOURCE_MATERIALIZED)

        self._merge_env_file(workdir, config.env_content)
        self._advance(InstallStage.ENV_MERGED)

        host_port = self._host_port()
        container_port = config.container_http_port
        if not self.allocator.is_available(host_port):
            raise PortInUseError("The allocated host port is already in use on the server.")
        self._advance(InstallStage.PORT_VALIDATED)

        service = self._resolve_compose_service(workdir, config, container_port)
        self.store.json_update(self.site, "compose_service", service)
        self._advance(InstallStage.SERVICE_RESOLVED)

        self._write_compose_override(workdir, service, host_port, container_port)
        self._advance(InstallStage.OVERRIDE_WRITTEN)

        self._write_deployment_script(config, service, host_port, container_port)
        self._advance(InstallStage.SCRIPT_WRITTEN)

        self._run_compose(workdir, config, "pull")
        self._advance(InstallStage.IMAGES_PULLED)

        self._run_compose(workdir, config, "up -d --remove-orphans")
        self._advance(InstallStage.CONTAINERS_UP)

        self._clear_sensitive_type_data()
        self._advance(InstallStage.SENSITIVE_DATA_CLEARED)

        self._advance(InstallStage.DONE)

    def uninstall(self) -> None:
        self._ensure_docker_available()

        config = self.config
        workdir = config.workdir(self.site.path)
        if not self._compose_file_exists(workdir, config):
            logger.info("No compose file for site %s in %s, nothing to tear down", self.site.id, workdir)
            return

        self._run_compose(workdir, config, "down")

    # -- steps ---------------------------------------------------------------

    def _advance(self, stage: InstallStage) -> None:
        self.stage = stage
        logger.debug("Site %s install reached %s", self.site.id, stage.value)
        if stage in STAGE_PROGRESS:
            self._progress(stage)

    def _progress(self, stage: InstallStage) -> None:
        if self.on_progress:
            self.on_progress(STAGE_PROGRESS[stage])

    def _ensure_docker_available(self) -> None:
        try:
            self.ssh.exec("docker --version")
            self.ssh.exec("docker compose version")
        except SSHCommandError as exc:
            logger.warning("Docker check failed on server %s: %s", self.site.server_id, exc)
            raise DockerUnavailableError(
                "Docker and Docker Compose must be installed and available to the SSH user."
            ) from exc

    def _prepare_workdir(self, workdir: str) -> None:
        self.ssh.exec(f"mkdir -p {quote_shell_arg(workdir)}", user=self.site.user)

    def _clone_repository(self, workdir: str, config: ComposeConfiguration) -> None:
        # full re-clone every install, local changes in the workdir are lost
        branch = config.repo_branch or DEFAULT_REPO_BRANCH
        self.ssh.exec(f"rm -rf {quote_shell_arg(workdir)}", user=self.site.user)
        self.ssh.exec(f"mkdir -p {quote_shell_arg(remote_dirname(workdir))}", user=self.site.user)
        self.ssh.exec(
            f"git clone -b {quote_shell_arg(branch)} {quote_shell_arg(config.repo_url or '')} "
            f"{quote_shell_arg(workdir)}",
            user=self.site.user,
        )

    def _write_inline_compose(self, workdir: str, config: ComposeConfiguration) -> None:
        path = f"{workdir}/{config.compose_file}"
        self._prepare_workdir(remote_dirname(path))
        self.ssh.write(path, (config.compose_inline or "").strip() + "\n", self.site.user)

    def _merge_env_file(self, workdir: str, env_content: str | None) -> None:
        if not env_content:
            return

        env_path = quote_shell_arg(f"{workdir}/.env")
        existing = self.ssh.exec(f"if [ -f {env_path} ]; then cat {env_path}; fi", user=self.site.user)
        merged = merge_env_contents(existing, env_content)
        self.ssh.write(f"{workdir}/.env", merged, self.site.user)

    def _host_port(self) -> int:
        port = int(self.site.port or 0)
        if port > 0:
            return port

        port = int(self.site.get_type_data("host_http_port", 0))
        if port > 0:
            self.site.port = port
            self.store.save(self.site)
            return port

        raise ComposeSiteError("Host port is missing for this Docker site.")

    def _resolve_compose_service(self, workdir: str, config: ComposeConfiguration, container_port: int) -> str:
        output = self.ssh.exec(
            build_compose_command(workdir, config.compose_file, self.project_name, "config --services", False)
        )
        services = parse_service_names(output)

        config_text = ""
        if len(services) > 1:
            config_text = self.ssh.exec(
                build_compose_command(workdir, config.compose_file, self.project_name, "config", False)
            )
        return resolve_compose_service(config_text, services, container_port)

    def _write_compose_override(self, workdir: str, service: str, host_port: int, container_port: int) -> None:
        content = build_override_content(service, host_port, container_port)
        self.ssh.write(f"{workdir}/{COMPOSE_OVERRIDE_FILE}", content, self.site.user)

    def _write_deployment_script(
        self, config: ComposeConfiguration, service: str, host_port: int, container_port: int
    ) -> None:
        script = self.store.ensure_deployment_script(self.site)
        if script is None:
            return

        script.content = build_deployment_script(config, service, host_port, container_port, self.project_name)
        self.store.save_deployment_script(script)

    def _run_compose(self, workdir: str, config: ComposeConfiguration, subcommand: str) -> None:
        command = build_compose_command(workdir, config.compose_file, self.project_name, subcommand)
        self.ssh.exec(command, label="docker-compose", site_id=self.site.id)

    def _compose_file_exists(self, workdir: str, config: ComposeConfiguration) -> bool:
        compose_path = quote_shell_arg(f"{workdir}/{config.compose_file}")
        output = self.ssh.exec(f'if [ -f {compose_path} ]; then echo "yes"; fi', user=self.site.user)
        return output.strip() == "yes"

    def _clear_sensitive_type_data(self) -> None:
        type_data = dict(self.site.type_data or {})
        for key in SENSITIVE_TYPE_DATA_KEYS:
            type_data.pop(key, None)
        self.site.type_data = type_data
        self.store.save(self.site)
