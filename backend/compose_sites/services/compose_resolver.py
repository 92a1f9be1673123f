from __future__ import annotations

import logging
import re
from typing import Sequence

from compose_sites.exceptions import ComposeResolutionError


logger = logging.getLogger(__name__)

# `docker compose config` renders with two spaces per indent level:
#   services:
#     web:
#       ports:
#         - ...
SERVICE_LINE = re.compile(r"^ {2}([a-zA-Z0-9._-]+):\s*$")
PORTS_LINE = re.compile(r"^ {4}(ports|expose):\s*$")
LIST_ITEM_LINE = re.compile(r"^ {6}-\s+(.+)$")
INTEGER = re.compile(r"\d+")


def parse_service_names(output: str) -> list[str]:
    """Parse `docker compose config --services` output."""
    return [line.strip() for line in output.splitlines() if line.strip()]


def line_contains_port(value: str, port: int) -> bool:
    return any(int(match) == port for match in INTEGER.findall(value))


def find_service_by_port(config_text: str, container_port: int) -> str | None:
    """Return the first service whose ports/expose list mentions container_port."""
    current_service: str | None = None
    in_ports = False

    for line in re.split(r"\r?\n", config_text or ""):
        match = SERVICE_LINE.match(line)
        if match:
            current_service = match.group(1)
            in_ports = False
            continue

        if current_service is None:
            continue

        if PORTS_LINE.match(line):
            in_ports = True
            continue

        if in_ports:
            item = LIST_ITEM_LINE.match(line)
            if item:
                if line_contains_port(item.group(1), container_port):
                    return current_service
                continue
            # port bindings are contiguous, anything else ends the block
            in_ports = False

    return None


def resolve_compose_service(config_text: str, services: Sequence[str], container_port: int) -> str:
    """Pick the compose service that should receive proxied traffic.

    A single service is returned as is. Otherwise the rendered config is
    scanned for a service publishing or exposing container_port, falling
    back to the first declared service.
    """
    if not services:
        raise ComposeResolutionError("No services found in the docker compose configuration.")

    if len(services) == 1:
        return services[0]

    service = find_service_by_port(config_text, container_port)
    if service:
        return service

    logger.info(
        "No service exposes port %d, falling back to first service %s",
        container_port,
        services[0],
    )
    return services[0]
