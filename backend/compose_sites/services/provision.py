from __future__ import annotations

import logging

from compose_sites.config import Settings
from compose_sites.database import DeploymentScript, Site, SiteStatus
from compose_sites.schemas.audit import ActionStatus, ActionType
from compose_sites.schemas.compose import COMPOSE_FIELDS, CreateSiteRequest, DeleteSiteResponse, FieldSpec
from compose_sites.services.audit import AuditService
from compose_sites.services.compose_handler import ComposeSiteHandler
from compose_sites.services.ports import PortAllocator
from compose_sites.services.site_store import SiteStore
from compose_sites.services.ssh_client import CommandChannel, SSHClientManager
from compose_sites.services.webserver import WebserverService, get_backend
from compose_sites.validators import ValidationError


logger = logging.getLogger(__name__)

SITE_TYPE = "docker"


class ProvisionService:
    """Creates, installs and deletes compose sites."""

    def __init__(
        self,
        settings: Settings,
        store: SiteStore,
        audit_service: AuditService,
        ssh: CommandChannel | None = None,
    ):
        self.settings = settings
        self.store = store
        self.audit = audit_service
        self.ssh = ssh or SSHClientManager(settings)
        self.webserver = WebserverService(settings, self.ssh)

    def get_fields(self) -> list[FieldSpec]:
        return list(COMPOSE_FIELDS)

    def _handler(self, site: Site, track_progress: bool = False) -> ComposeSiteHandler:
        allocator = PortAllocator(
            self.ssh,
            self.store,
            range_start=self.settings.auto_port_range_start,
            range_end=self.settings.auto_port_range_end,
        )

        on_progress = None
        if track_progress:
            def on_progress(percent: int) -> None:
                site.progress = percent
                self.store.save(site)

        return ComposeSiteHandler(site, self.ssh, self.store, self.webserver, allocator, on_progress)

    def create_site(self, request: CreateSiteRequest) -> Site:
        """Validate, persist and install a new compose site."""
        get_backend(request.webserver)

        site = Site(
            server_id=request.server_id,
            domain=request.domain,
            path=request.path.rstrip("/") or "/",
            user=request.user,
            type=SITE_TYPE,
            webserver=request.webserver,
            status=SiteStatus.INSTALLING,
            progress=0,
            type_data={},
        )
        handler = self._handler(site)

        errors = handler.validation_errors(request.config)
        if errors:
            raise ValidationError("; ".join(f"{field}: {message}" for field, message in errors.items()))

        fields = handler.create_fields(request.config)
        site.port = fields["port"]
        site.repository = fields.get("repository")
        site.branch = fields.get("branch")
        site.type_data = handler.data(request.config)

        self.store.create(site)
        self.store.ensure_deployment_script(site)
        self.audit.log_action(
            action_type=ActionType.SITE_CREATE,
            target_name=site.domain,
            site_id=site.id,
            metadata={"port": site.port, "compose_source": site.type_data["compose_source"]},
        )
        logger.info("Created docker site %s (%s) on port %s", site.id, site.domain, site.port)

        return self.install(site)

    def install(self, site: Site) -> Site:
        handler = self._handler(site, track_progress=True)
        site.status = SiteStatus.INSTALLING
        self.store.save(site)

        try:
            with self.audit.track_action(ActionType.SITE_INSTALL, site.domain, site_id=site.id) as context:
                handler.install()
                context["output"] = f"Installed compose site on port {site.port}"
        except Exception:
            logger.exception("Install of site %s stopped at stage %s", site.id, handler.stage.value)
            site.status = SiteStatus.INSTALLATION_FAILED
            self.store.save(site)
            raise

        site.status = SiteStatus.READY
        self.store.save(site)
        return site

    def install_site(self, site_id: int) -> Site:
        return self.install(self.store.get(site_id))

    def get_site(self, site_id: int) -> Site:
        return self.store.get(site_id)

    def render_vhost(self, site_id: int) -> str:
        site = self.store.get(site_id)
        return self._handler(site).vhost(site.webserver)

    def get_deployment_script(self, site_id: int) -> DeploymentScript | None:
        self.store.get(site_id)
        return self.store.get_deployment_script(site_id)

    def uninstall(self, site: Site) -> None:
        with self.audit.track_action(ActionType.SITE_UNINSTALL, site.domain, site_id=site.id):
            self._handler(site).uninstall()

    def delete_site(self, site_id: int) -> DeleteSiteResponse:
        """Delete a site record, tearing its containers down first when possible.

        Teardown is best effort: a failed uninstall is logged and the record
        is deleted anyway.
        """
        site = self.store.get(site_id)

        uninstalled = False
        if site.type == SITE_TYPE:
            try:
                self.uninstall(site)
                uninstalled = True
            except Exception as exc:  # noqa: BLE001
                logger.warning("Uninstall of site %s failed, deleting record anyway: %s", site.id, exc)
                self.audit.log_action(
                    action_type=ActionType.UNINSTALL_FAILED,
                    target_name=site.domain,
                    site_id=site.id,
                    status=ActionStatus.FAILURE,
                    error_message=str(exc),
                )

        self.store.delete(site)
        self.audit.log_action(
            action_type=ActionType.SITE_DELETE,
            target_name=site.domain,
            site_id=site.id,
            metadata={"uninstalled": uninstalled},
        )

        message = f"Site {site.id} deleted"
        if not uninstalled:
            message += " (containers were not torn down)"
        return DeleteSiteResponse(id=site.id, status="deleted", message=message, uninstalled=uninstalled)
