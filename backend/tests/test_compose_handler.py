"""Tests for the compose site install and uninstall sequence."""

import pytest

from compose_sites.database import Site
from compose_sites.exceptions import (
    ComposeResolutionError,
    ComposeSiteError,
    DockerUnavailableError,
    PortInUseError,
)
from compose_sites.schemas.compose import ComposeSiteInput
from compose_sites.services.compose_handler import ComposeSiteHandler, InstallStage
from compose_sites.services.webserver import WebserverService


SITE_PATH = "/home/vito/app.example.com"
WORKDIR = f"{SITE_PATH}/app"

REPO_TYPE_DATA = {
    "compose_source": "repo",
    "repo_url": "https://github.com/acme/app.git",
    "repo_branch": "main",
    "project_dir": "app",
    "compose_file": "docker-compose.yml",
    "container_http_port": 8080,
    "host_http_port": 30000,
    "public_url_path": "",
    "healthcheck_url": None,
    "compose_inline": None,
    "env_content": None,
    "env_path": f"{WORKDIR}/.env",
}


@pytest.fixture
def handler_for(settings, channel, store):
    def _handler_for(site, progress=None):
        return ComposeSiteHandler(
            site,
            channel,
            store,
            WebserverService(settings, channel),
            on_progress=progress.append if progress is not None else None,
        )

    return _handler_for


def index_of(commands, needle):
    for position, command in enumerate(commands):
        if needle in command:
            return position
    raise AssertionError(f"{needle!r} was never run")


class TestInstall:
    def test_repo_install_sequence(self, channel, store, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("config --services", "web\n")
        progress = []

        handler = handler_for(site, progress)
        handler.install()

        assert [call["command"] for call in channel.calls if call["user"] == "vito"] == [
            f"mkdir -p {WORKDIR}",
            f"rm -rf {WORKDIR}",
            f"mkdir -p {SITE_PATH}",
            f"git clone -b main https://github.com/acme/app.git {WORKDIR}",
        ]

        commands = channel.commands
        order = [
            "docker --version",
            "docker compose version",
            "ln -sf",
            "git clone",
            "sport = :30000",
            "config --services",
            " pull",
            "up -d --remove-orphans",
        ]
        positions = [index_of(commands, needle) for needle in order]
        assert positions == sorted(positions)

        assert progress == [5, 10, 20, 45, 55, 70, 90, 100]
        assert handler.stage == InstallStage.DONE

    def test_workdir_commands_run_as_site_user(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        for call in channel.calls:
            if call["command"].startswith(("mkdir", "rm -rf", "git clone")):
                assert call["user"] == "vito"

    def test_compose_commands_are_labelled(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        up = next(call for call in channel.calls if "up -d" in call["command"])
        assert up["label"] == "docker-compose"
        assert up["site_id"] == site.id
        assert up["command"] == (
            f"cd {WORKDIR} && docker compose -f docker-compose.yml -f docker-compose.vito.yml "
            f"--project-name vito-site-{site.id} up -d --remove-orphans"
        )

    def test_writes_override_and_deployment_script(self, channel, store, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        assert channel.files[f"{WORKDIR}/docker-compose.vito.yml"] == (
            'services:\n  web:\n    ports:\n      - "127.0.0.1:30000:8080"\n'
        )
        assert channel.write_owners[f"{WORKDIR}/docker-compose.vito.yml"] == "vito"

        script = store.get_deployment_script(site.id)
        assert script is not None
        assert script.content.startswith("#!/usr/bin/env bash\nset -e\n")
        assert f"--project-name 'vito-site-{site.id}' up -d --remove-orphans" in script.content

    def test_resolves_service_by_container_port(self, channel, store, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("config --services", "db\nweb\n")
        channel.respond(
            " config",
            "services:\n"
            "  db:\n"
            "    image: postgres\n"
            "  web:\n"
            "    image: acme/web\n"
            "    ports:\n"
            "      - 8080:8080\n",
        )

        handler_for(site).install()

        assert store.get(site.id).type_data["compose_service"] == "web"
        assert "  web:\n" in channel.files[f"{WORKDIR}/docker-compose.vito.yml"]

    def test_no_services_aborts_before_up(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))

        handler = handler_for(site)
        with pytest.raises(ComposeResolutionError):
            handler.install()

        assert handler.stage == InstallStage.PORT_VALIDATED
        assert not any("up -d" in command for command in channel.commands)

    def test_inline_source_writes_template(self, channel, make_site, handler_for):
        type_data = dict(
            REPO_TYPE_DATA,
            compose_source="inline",
            repo_url=None,
            repo_branch=None,
            compose_inline="\nservices:\n  web:\n    image: nginx\n\n",
        )
        site = make_site(port=30000, type_data=type_data)
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        assert channel.files[f"{WORKDIR}/docker-compose.yml"] == "services:\n  web:\n    image: nginx\n"
        assert not any("git clone" in command for command in channel.commands)

    def test_env_content_is_merged_into_existing_file(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA, env_content="DB_PORT=6543\nNEW=1"))
        channel.respond("cat ", "APP_KEY=old\nDB_PORT=5432\n")
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        assert channel.files[f"{WORKDIR}/.env"] == "APP_KEY=old\nDB_PORT=6543\nNEW=1\n"
        assert channel.write_owners[f"{WORKDIR}/.env"] == "vito"

    def test_env_file_untouched_without_content(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        assert f"{WORKDIR}/.env" not in channel.files

    def test_sensitive_data_cleared_after_install(self, channel, store, make_site, handler_for):
        type_data = dict(
            REPO_TYPE_DATA,
            compose_source="inline",
            compose_inline="services:\n  web:\n    image: nginx\n",
            env_content="SECRET=1",
        )
        site = make_site(port=30000, type_data=type_data)
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        stored = store.get(site.id).type_data
        assert "env_content" not in stored
        assert "compose_inline" not in stored
        assert stored["compose_service"] == "web"
        assert stored["host_http_port"] == 30000

    def test_host_port_falls_back_to_type_data(self, channel, store, make_site, handler_for):
        site = make_site(port=None, type_data=dict(REPO_TYPE_DATA, host_http_port=31000))
        channel.respond("config --services", "web\n")

        handler_for(site).install()

        assert store.get(site.id).port == 31000
        assert 31000 in channel.port_checks()

    def test_missing_host_port(self, channel, make_site, handler_for):
        site = make_site(port=None, type_data=dict(REPO_TYPE_DATA, host_http_port=None))

        with pytest.raises(ComposeSiteError, match="Host port is missing"):
            handler_for(site).install()

    def test_port_taken_since_create_aborts(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.port_status = {30000: "USED"}

        handler = handler_for(site)
        with pytest.raises(PortInUseError, match="allocated host port"):
            handler.install()

        assert handler.stage == InstallStage.ENV_MERGED
        assert not any("config --services" in command for command in channel.commands)

    def test_docker_missing(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.fail("docker compose version")
        progress = []

        with pytest.raises(DockerUnavailableError, match="Docker and Docker Compose must be installed"):
            handler_for(site, progress).install()

        assert progress == [5]
        assert channel.files == {}


class TestUninstall:
    def test_runs_down_when_compose_file_exists(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.respond("if [ -f", "yes\n")

        handler_for(site).uninstall()

        assert channel.commands[-1] == (
            f"cd {WORKDIR} && docker compose -f docker-compose.yml -f docker-compose.vito.yml "
            f"--project-name vito-site-{site.id} down"
        )

    def test_noop_without_compose_file(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))

        handler_for(site).uninstall()

        assert not any(command.endswith(" down") for command in channel.commands)

    def test_requires_docker(self, channel, make_site, handler_for):
        site = make_site(port=30000, type_data=dict(REPO_TYPE_DATA))
        channel.fail("docker --version")

        with pytest.raises(DockerUnavailableError):
            handler_for(site).uninstall()


class TestCreateTime:
    def test_validation_errors_for_reserved_port(self, channel, store, make_site, handler_for):
        make_site(port=31000)
        new_site = Site(server_id=1, domain="b.example.com", path="/srv/b", user="vito", type_data={})
        request = ComposeSiteInput(repo_url="https://github.com/acme/app.git", host_http_port=31000)

        errors = handler_for(new_site).validation_errors(request)

        assert errors == {"host_http_port": "The selected host port is already assigned to another site."}

    def test_create_fields_and_data_share_one_port(self, channel, make_site, handler_for):
        make_site(port=30000)
        new_site = Site(server_id=1, domain="b.example.com", path="/srv/b", user="vito", type_data={})
        request = ComposeSiteInput(repo_url="https://github.com/acme/app.git", repo_branch="develop")
        handler = handler_for(new_site)

        fields = handler.create_fields(request)
        data = handler.data(request)

        assert fields == {"port": 30001, "repository": "https://github.com/acme/app.git", "branch": "develop"}
        assert data["host_http_port"] == 30001
        assert channel.port_checks() == [30001]
