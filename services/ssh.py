"""SSH transport built on top of Paramiko."""

from __future__ import annotations

import logging
import socket
import subprocess
from contextlib import suppress

import paramiko

from services.base import SSHService


logger = logging.getLogger(__name__)


class ParamikoSSHService(SSHService):
    """Default SSH implementation using Paramiko transport."""

    def __init__(self, *, username: str, key_path: str | None = None, password: str | None = None) -> None:
        self._username = username
        self._key_path = key_path
        self._password = password

    def _build_client(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        return client

    def _connect(self, client: paramiko.SSHClient, host: str, user: str | None, timeout: int) -> None:
        client.connect(
            hostname=host,
            username=user or self._username,
            key_filename=self._key_path,
            password=self._password,
            timeout=timeout,
        )

    def run(self, host: str, command: str, *, user: str | None = None, timeout: int = 60) -> str:
        logger.debug("Executing remote command", extra={"host": host, "command": command})
        client = self._build_client()
        self._connect(client, host, user, timeout)
        try:
            stdin, stdout, stderr = client.exec_command(command, timeout=timeout)
            exit_code = stdout.channel.recv_exit_status()
            output = stdout.read().decode("utf-8", "replace")
            error_output = stderr.read().decode("utf-8", "replace")
        finally:
            with suppress(Exception):
                stdin.close()
            with suppress(Exception):
                stdout.close()
            with suppress(Exception):
                stderr.close()
            with suppress(Exception):
                client.close()

        if exit_code != 0:
            logger.error("Remote command failed", extra={"exit_code": exit_code, "stderr": error_output})
            raise RemoteCommandError(host, exit_code, output + error_output)

        return output

    def upload(self, host: str, local_path: str, remote_path: str, *, user: str | None = None) -> None:
        logger.debug(
            "Uploading file via SSH",
            extra={"host": host, "local_path": local_path, "remote_path": remote_path},
        )
        client = self._build_client()
        self._connect(client, host, user, 30)
        try:
            sftp = client.open_sftp()
            try:
                sftp.put(local_path, remote_path)
            finally:
                with suppress(Exception):
                    sftp.close()
        finally:
            with suppress(Exception):
                client.close()

    def reachable(self, host: str, *, user: str | None = None, timeout: int = 10) -> bool:
        client = self._build_client()
        try:
            self._connect(client, host, user, timeout)
        except (paramiko.SSHException, socket.error) as exc:
            logger.debug("Host not reachable yet", extra={"host": host, "error": str(exc)})
            return False
        finally:
            with suppress(Exception):
                client.close()
        return True


class RemoteCommandError(RuntimeError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(self, host: str, exit_code: int, output: str) -> None:
        super().__init__(f"command on {host} failed (exit {exit_code})")
        self.host = host
        self.exit_code = exit_code
        self.output = output


def clear_known_host(host: str) -> bool:
    """Drop ``host`` from ``~/.ssh/known_hosts``; failures are only logged."""

    try:
        completed = subprocess.run(
            ["ssh-keygen", "-R", host],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as exc:
        logger.warning("Could not clear ssh key", extra={"host": host}, exc_info=exc)
        return False
    if completed.returncode != 0:
        logger.warning(
            "Could not clear ssh key",
            extra={"host": host, "output": completed.stdout + completed.stderr},
        )
        return False
    return True
