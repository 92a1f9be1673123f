from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from compose_sites.exceptions import (
    PortInUseError,
    PortRangeExhaustedError,
    PortReservedError,
    PortVerificationError,
)
from compose_sites.services.ssh_client import CommandChannel

if TYPE_CHECKING:
    from compose_sites.database import Site
    from compose_sites.services.site_store import SiteStore


logger = logging.getLogger(__name__)

AUTO_PORT_RANGE_START = 30000
AUTO_PORT_RANGE_END = 39999

PORT_RESERVED_MESSAGE = "The selected host port is already assigned to another site."
PORT_IN_USE_MESSAGE = "The selected host port is already in use on the server."
PORT_UNVERIFIED_MESSAGE = "Unable to verify port availability. Install ss or lsof on the server."


def build_port_check_command(port: int) -> str:
    """Shell snippet printing FREE, USED or UNKNOWN for a TCP port.

    ss output lists the local address as host:port followed by padding, so
    matching ':<port> ' with the trailing space avoids prefix hits such as
    31234 against 312345.
    """
    port = int(port)
    return (
        "if command -v ss >/dev/null 2>&1; then\n"
        f"    ss -ltn '( sport = :{port} )' | grep -q ':{port} ' && echo 'USED' || echo 'FREE'\n"
        "elif command -v lsof >/dev/null 2>&1; then\n"
        f"    lsof -iTCP:{port} -sTCP:LISTEN >/dev/null 2>&1 && echo 'USED' || echo 'FREE'\n"
        "else\n"
        "    echo 'UNKNOWN'\n"
        "fi"
    )


class PortAllocator:
    """Chooses and validates the loopback host port a site's container binds to.

    There is no lock between checking a port and the eventual `docker compose
    up`; two installs on one server can pick the same port, in which case the
    later `up` fails on the bind.
    """

    def __init__(
        self,
        ssh: CommandChannel,
        store: SiteStore,
        range_start: int = AUTO_PORT_RANGE_START,
        range_end: int = AUTO_PORT_RANGE_END,
    ):
        self.ssh = ssh
        self.store = store
        self.range_start = range_start
        self.range_end = range_end
        self._resolved: int | None = None

    def is_reserved(self, port: int, site: Site) -> bool:
        return self.store.port_is_reserved(site.server_id, port, exclude_site_id=site.id)

    def is_available(self, port: int) -> bool:
        output = self.ssh.exec(build_port_check_command(port)).strip()

        if output == "FREE":
            return True
        if output == "USED":
            return False

        logger.warning("Port check for %d returned unexpected output: %r", port, output)
        raise PortVerificationError(PORT_UNVERIFIED_MESSAGE)

    def validate_requested_port(self, port: int, site: Site) -> str | None:
        """Return the user-facing error for an explicitly requested port, if any."""
        if self.is_reserved(port, site):
            return PORT_RESERVED_MESSAGE
        try:
            if not self.is_available(port):
                return PORT_IN_USE_MESSAGE
        except PortVerificationError as exc:
            return str(exc)
        self._resolved = port
        return None

    def allocate(self, site: Site) -> int:
        for port in range(self.range_start, self.range_end + 1):
            if self.is_reserved(port, site):
                continue
            if self.is_available(port):
                logger.info("Allocated host port %d for site %s", port, site.id or "<new>")
                return port

        raise PortRangeExhaustedError("No available host ports found in the configured range.")

    def resolve(self, site: Site, requested: Any = None) -> int:
        """Host port for site.

        A port already stored on the site wins. An explicitly requested port
        must be neither reserved nor busy. Otherwise the first free port in
        the auto range is taken.
        """
        if self._resolved is not None:
            return self._resolved

        if site.port:
            self._resolved = int(site.port)
            return self._resolved

        if requested is not None and requested != "":
            port = int(requested)
            if self.is_reserved(port, site):
                raise PortReservedError(PORT_RESERVED_MESSAGE)
            if not self.is_available(port):
                raise PortInUseError(PORT_IN_USE_MESSAGE)
            self._resolved = port
            return port

        self._resolved = self.allocate(site)
        return self._resolved
