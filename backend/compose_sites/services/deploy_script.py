"""Compose command lines, the port override file and the redeploy script.

Everything here is a pure function of its arguments so the artifacts come
out byte-identical for the same site configuration.
"""

from __future__ import annotations

from compose_sites.schemas.compose import ComposeConfiguration, ComposeSource
from compose_sites.validators import quote_shell_arg, quote_shell_arg_always


COMPOSE_OVERRIDE_FILE = "docker-compose.vito.yml"
PROJECT_NAME_PREFIX = "vito-site-"


def compose_project_name(site_id: int) -> str:
    return f"{PROJECT_NAME_PREFIX}{site_id}"


def build_compose_command(
    workdir: str,
    compose_file: str,
    project_name: str,
    subcommand: str,
    include_override: bool = True,
) -> str:
    command = f"cd {quote_shell_arg(workdir)} && docker compose -f {quote_shell_arg(compose_file)}"
    if include_override:
        command += f" -f {quote_shell_arg(COMPOSE_OVERRIDE_FILE)}"
    command += f" --project-name {quote_shell_arg(project_name)} {subcommand}"
    return command


def override_lines(service: str, host_port: int, container_port: int) -> list[str]:
    # loopback only, the webserver is the public entry point
    return [
        "services:",
        f"  {service}:",
        "    ports:",
        f'      - "127.0.0.1:{host_port}:{container_port}"',
    ]


def build_override_content(service: str, host_port: int, container_port: int) -> str:
    return "\n".join(override_lines(service, host_port, container_port)) + "\n"


def build_deployment_script(
    config: ComposeConfiguration,
    service: str,
    host_port: int,
    container_port: int,
    project_name: str,
) -> str:
    """Bash script that redeploys the site outside of an install.

    Expects SITE_PATH in the environment. Unlike install it pulls an existing
    checkout instead of re-cloning.
    """
    compose_file_arg = quote_shell_arg_always(config.compose_file)
    override_file_arg = quote_shell_arg_always(COMPOSE_OVERRIDE_FILE)
    project_name_arg = quote_shell_arg_always(project_name)
    repo_url = config.repo_url or ""
    branch_arg = quote_shell_arg_always(config.repo_branch or "main")

    if config.project_dir:
        workdir_line = f'WORKDIR="$SITE_PATH/{config.project_dir.strip("/")}"'
    else:
        workdir_line = 'WORKDIR="$SITE_PATH"'

    script = [
        "#!/usr/bin/env bash",
        "set -e",
        workdir_line,
        'mkdir -p "$WORKDIR"',
    ]

    if config.compose_source == ComposeSource.REPO and repo_url:
        script += [
            'if [ -d "$WORKDIR/.git" ]; then',
            f'  cd "$WORKDIR" && git pull origin {branch_arg}',
            "else",
            f'  git clone -b {branch_arg} {quote_shell_arg_always(repo_url)} "$WORKDIR"',
            "fi",
        ]

    compose = (
        f'cd "$WORKDIR" && docker compose -f {compose_file_arg} -f {override_file_arg}'
        f" --project-name {project_name_arg}"
    )
    script += [
        f'cat > "$WORKDIR/{COMPOSE_OVERRIDE_FILE}" <<EOF',
        *override_lines(service, host_port, container_port),
        "EOF",
        f"{compose} pull",
        f"{compose} up -d --remove-orphans",
    ]

    return "\n".join(script) + "\n"
