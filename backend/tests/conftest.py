"""Shared fixtures: an in-memory stand-in for the SSH channel and a temp database."""

from __future__ import annotations

import re

import pytest

from compose_sites.config import Settings
from compose_sites.database import Database, Site, SiteStatus
from compose_sites.services.audit import AuditService
from compose_sites.services.site_store import SiteStore
from compose_sites.services.ssh_client import SSHCommandError


PORT_CHECK = re.compile(r"sport = :(\d+)")


class FakeChannel:
    """Records commands and answers them from canned responses."""

    def __init__(self):
        self.commands: list[str] = []
        self.calls: list[dict] = []
        self.files: dict[str, str] = {}
        self.write_owners: dict[str, str | None] = {}
        self.responses: list[tuple[str, str]] = []
        self.failures: list[str] = []
        self.port_status: dict[int, str] = {}
        self.default_port_status = "FREE"

    def respond(self, needle: str, output: str) -> None:
        self.responses.append((needle, output))

    def fail(self, needle: str) -> None:
        self.failures.append(needle)

    def exec(self, command, *, user=None, label=None, site_id=None):
        self.commands.append(command)
        self.calls.append({"command": command, "user": user, "label": label, "site_id": site_id})

        for needle in self.failures:
            if needle in command:
                raise SSHCommandError(f"Command failed (1): {command}")

        checked = PORT_CHECK.search(command)
        if checked:
            return self.port_status.get(int(checked.group(1)), self.default_port_status) + "\n"

        for needle, output in self.responses:
            if needle in command:
                return output
        return ""

    def write(self, path, content, owner=None):
        self.files[path] = content
        self.write_owners[path] = owner

    def port_checks(self) -> list[int]:
        return [int(m.group(1)) for c in self.commands if (m := PORT_CHECK.search(c))]


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ssh_host="10.0.0.5",
        ssh_user="root",
        ssh_key_path="/tmp/key",
        sqlite_db_path=str(tmp_path / "sites.db"),
    )


@pytest.fixture
def db(tmp_path) -> Database:
    database = Database(str(tmp_path / "sites.db"))
    database.init_db()
    return database


@pytest.fixture
def store(db) -> SiteStore:
    return SiteStore(db)


@pytest.fixture
def audit(settings, db) -> AuditService:
    return AuditService(settings, db)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def make_site(store):
    def _make_site(**overrides) -> Site:
        values = {
            "server_id": 1,
            "domain": "app.example.com",
            "path": "/home/vito/app.example.com",
            "user": "vito",
            "type": "docker",
            "webserver": "nginx",
            "status": SiteStatus.INSTALLING,
            "progress": 0,
            "type_data": {},
        }
        values.update(overrides)
        return store.create(Site(**values))

    return _make_site
