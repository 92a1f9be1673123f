from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from compose_sites.config import Settings
from compose_sites.database import Site
from compose_sites.exceptions import UnsupportedWebserverError
from compose_sites.schemas.compose import ComposeConfiguration
from compose_sites.services.ssh_client import CommandChannel
from compose_sites.validators import quote_shell_arg


logger = logging.getLogger(__name__)


class WebserverKind(str, Enum):
    NGINX = "nginx"
    CADDY = "caddy"


@dataclass(frozen=True)
class ProxyParams:
    domain: str
    port: int
    public_url_path: str = ""
    healthcheck_url: str | None = None


NGINX_PROXY_HEADERS = """        proxy_http_version 1.1;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";"""

NGINX_VHOST_TEMPLATE = """server {{
    listen 80;
    listen [::]:80;
    server_name {domain};

{proxy_block}
}}
"""

CADDY_VHOST_TEMPLATE = """{domain} {{
{proxy_block}
}}
"""


class NginxBackend:
    kind = WebserverKind.NGINX

    def render_proxy_block(self, params: ProxyParams) -> str:
        upstream = f"http://127.0.0.1:{params.port}"
        lines = ["    #[docker-proxy]"]

        if params.healthcheck_url:
            lines += [
                f"    location = {params.healthcheck_url} {{",
                f"        proxy_pass {upstream}{params.healthcheck_url};",
                "        access_log off;",
                "    }",
            ]

        if params.public_url_path:
            lines += [
                f"    location = {params.public_url_path} {{",
                f"        return 301 {params.public_url_path}/;",
                "    }",
                f"    location {params.public_url_path}/ {{",
                f"        proxy_pass {upstream}/;",
            ]
        else:
            lines += [
                "    location / {",
                f"        proxy_pass {upstream};",
            ]
        lines += [NGINX_PROXY_HEADERS, "    }", "    #[/docker-proxy]"]
        return "\n".join(lines)

    def render_vhost(self, params: ProxyParams) -> str:
        return NGINX_VHOST_TEMPLATE.format(
            domain=params.domain,
            proxy_block=self.render_proxy_block(params),
        )

    def install_commands(self, settings: Settings, domain: str) -> tuple[str, list[str]]:
        available = f"{settings.nginx_vhost_dir}/{domain}"
        enabled = f"{settings.nginx_enabled_dir}/{domain}"
        return available, [
            f"ln -sf {quote_shell_arg(available)} {quote_shell_arg(enabled)}",
            "nginx -t && (systemctl reload nginx || nginx -s reload)",
        ]


class CaddyBackend:
    kind = WebserverKind.CADDY

    def render_proxy_block(self, params: ProxyParams) -> str:
        upstream = f"127.0.0.1:{params.port}"
        if not params.public_url_path:
            return f"    reverse_proxy {upstream}"

        lines = []
        if params.healthcheck_url:
            lines += [
                f"    handle {params.healthcheck_url} {{",
                f"        reverse_proxy {upstream}",
                "    }",
            ]
        lines += [
            f"    redir {params.public_url_path} {params.public_url_path}/",
            f"    handle_path {params.public_url_path}/* {{",
            f"        reverse_proxy {upstream}",
            "    }",
        ]
        return "\n".join(lines)

    def render_vhost(self, params: ProxyParams) -> str:
        return CADDY_VHOST_TEMPLATE.format(
            domain=params.domain,
            proxy_block=self.render_proxy_block(params),
        )

    def install_commands(self, settings: Settings, domain: str) -> tuple[str, list[str]]:
        path = f"{settings.caddy_vhost_dir}/{domain}"
        return path, ["caddy validate --config /etc/caddy/Caddyfile && systemctl reload caddy"]


BACKENDS: dict[WebserverKind, NginxBackend | CaddyBackend] = {
    WebserverKind.NGINX: NginxBackend(),
    WebserverKind.CADDY: CaddyBackend(),
}


def get_backend(kind: str) -> NginxBackend | CaddyBackend:
    try:
        return BACKENDS[WebserverKind(kind)]
    except ValueError as exc:
        raise UnsupportedWebserverError(
            f"Webserver '{kind}' is not supported for Docker sites. "
            f"Supported: {', '.join(k.value for k in WebserverKind)}"
        ) from exc


def proxy_params(site: Site, config: ComposeConfiguration) -> ProxyParams:
    return ProxyParams(
        domain=site.domain,
        port=int(site.port or config.host_http_port or 0),
        public_url_path=config.public_url_path,
        healthcheck_url=config.healthcheck_url,
    )


class WebserverService:
    """Writes the reverse-proxy vhost for a site and reloads the webserver."""

    def __init__(self, settings: Settings, ssh: CommandChannel):
        self.settings = settings
        self.ssh = ssh

    def render_vhost(self, site: Site, config: ComposeConfiguration) -> str:
        return get_backend(site.webserver).render_vhost(proxy_params(site, config))

    def create_vhost(self, site: Site, config: ComposeConfiguration) -> None:
        backend = get_backend(site.webserver)
        path, commands = backend.install_commands(self.settings, site.domain)

        self.ssh.write(path, backend.render_vhost(proxy_params(site, config)))
        for command in commands:
            self.ssh.exec(command, label="webserver", site_id=site.id)
        logger.info("Wrote %s vhost for %s to %s", backend.kind.value, site.domain, path)
