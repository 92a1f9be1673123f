from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import paramiko

from compose_sites.config import Settings
from compose_sites.utils.path_utils import resolve_local_path


logger = logging.getLogger(__name__)


class SSHCommandError(RuntimeError):
    pass


@dataclass
class SSHResult:
    stdout: str
    stderr: str
    exit_code: int


class CommandChannel(Protocol):
    """What the provisioning code needs from a remote server."""

    def exec(
        self,
        command: str,
        *,
        user: str | None = None,
        label: str | None = None,
        site_id: int | None = None,
    ) -> str: ...

    def write(self, path: str, content: str, owner: str | None = None) -> None: ...


class SSHClientManager:
    """Thread-safe SSH utility that keeps one reusable Paramiko client per login user."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._clients: dict[str, paramiko.SSHClient] = {}
        self._lock = threading.RLock()

    def _login(self, user: str | None) -> str:
        return user or self.settings.ssh_user

    def _reset_client(self, user: str) -> None:
        with self._lock:
            client = self._clients.pop(user, None)
            if client:
                try:
                    client.close()
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Ignoring error while closing SSH client for %s: %s", user, exc)

    def _ensure_client(self, user: str) -> paramiko.SSHClient:
        with self._lock:
            if user in self._clients:
                cached = self._clients[user]
                transport = cached.get_transport()
                if transport and transport.is_active():
                    return cached
                self._reset_client(user)

            client = paramiko.SSHClient()

            known_hosts_paths = [
                Path.home() / ".ssh" / "known_hosts",
                Path("/etc/ssh/ssh_known_hosts"),
            ]
            custom_known_hosts = resolve_local_path(self.settings.ssh_known_hosts)
            if custom_known_hosts:
                known_hosts_paths.insert(0, Path(custom_known_hosts))

            loaded_known_hosts = False
            for kh_path in known_hosts_paths:
                if kh_path.exists():
                    try:
                        client.load_host_keys(str(kh_path))
                        logger.info(f"Loaded SSH known_hosts from {kh_path}")
                        loaded_known_hosts = True
                        break
                    except Exception as e:
                        logger.warning(f"Failed to load known_hosts from {kh_path}: {e}")

            if not loaded_known_hosts:
                logger.warning(
                    "No known_hosts file found. SSH connections will fail for unknown hosts. "
                    "Add the server's host key to ~/.ssh/known_hosts or set SSH_KNOWN_HOSTS env var."
                )
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

            key_path = resolve_local_path(self.settings.ssh_key_path)
            if not os.path.exists(key_path):
                raise FileNotFoundError(f"SSH key not found: {key_path}")

            try:
                client.connect(
                    hostname=self.settings.ssh_host,
                    port=self.settings.ssh_port,
                    username=user,
                    key_filename=key_path,
                    timeout=self.settings.ssh_timeout,
                )
            except paramiko.SSHException as e:
                if "not found in known_hosts" in str(e).lower() or "host key" in str(e).lower():
                    raise SSHCommandError(
                        f"SSH host key verification failed for {self.settings.ssh_host}. "
                        f"Add the host key to known_hosts: ssh-keyscan -H {self.settings.ssh_host} >> ~/.ssh/known_hosts"
                    ) from e
                raise

            transport = client.get_transport()
            if transport:
                transport.set_keepalive(30)

            self._clients[user] = client
            return client

    def _run_with_retry(self, user: str, operation):
        last_exc: Exception | None = None
        for attempt in range(2):
            try:
                return operation(self._ensure_client(user))
            except (paramiko.SSHException, OSError) as exc:
                last_exc = exc
                logger.warning(
                    "SSH operation %s as %s failed (attempt %d/2): %s",
                    getattr(operation, "__name__", operation.__class__.__name__),
                    user,
                    attempt + 1,
                    exc,
                )
                self._reset_client(user)
        if last_exc:
            raise last_exc
        raise RuntimeError("SSH operation failed without raising exception")

    def execute(
        self,
        command: str,
        *,
        check: bool = False,
        timeout: int | None = None,
        user: str | None = None,
    ) -> SSHResult:
        """Run command once.

        Only connecting is retried. Once the command has been sent a transport
        error drops the client and propagates, since pull, up or clone must not
        run twice. timeout bounds channel reads and defaults to none.
        """
        login = self._login(user)
        client = self._run_with_retry(login, lambda connected: connected)

        if self.settings.log_ssh_commands:
            logger.debug("SSH exec: %s", command)
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            out = stdout.read().decode()
            err = stderr.read().decode().strip()
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError):
            self._reset_client(login)
            raise

        if check and exit_code != 0:
            raise SSHCommandError(f"Command failed ({exit_code}): {command}\n{err}")
        return SSHResult(stdout=out, stderr=err, exit_code=exit_code)

    def exec(
        self,
        command: str,
        *,
        user: str | None = None,
        label: str | None = None,
        site_id: int | None = None,
    ) -> str:
        """Run a command and return its stdout, raising SSHCommandError on failure."""
        if label:
            logger.info("SSH [%s] site=%s: %s", label, site_id, command.splitlines()[0] if command else "")
        try:
            result = self.execute(command, check=True, user=user)
        except (paramiko.SSHException, OSError) as exc:
            raise SSHCommandError(f"SSH transport failed while running: {command}\n{exc}") from exc
        return result.stdout

    def write(self, path: str, content: str, owner: str | None = None) -> None:
        """Upload content to path over SFTP, logged in as owner so it owns the file."""
        def _operation(client: paramiko.SSHClient) -> None:
            if self.settings.log_ssh_commands:
                logger.debug("SFTP write: %s (%d bytes)", path, len(content))
            sftp = client.open_sftp()
            try:
                with sftp.open(path, "w") as remote_file:
                    remote_file.write(content.encode())
            finally:
                sftp.close()

        try:
            self._run_with_retry(self._login(owner), _operation)
        except (paramiko.SSHException, OSError) as exc:
            raise SSHCommandError(f"Failed to write {path}: {exc}") from exc

    def close(self):
        with self._lock:
            users = list(self._clients)
        for user in users:
            self._reset_client(user)
