"""
Remote execution over SSH.

RemoteExecutor is the seam the dispatcher talks to; ParamikoExecutor is the
SSH/SFTP implementation. Each session gets its own throwaway RSA key that is
injected into the instance through ``ssh-keys`` metadata.
"""

import io
import logging
import os
import socket
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import paramiko

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_STATUS = 124  # coreutils timeout(1)
OUTPUT_TAIL_LINES = 50


class RemoteConnectError(Exception):
    """A single connection attempt failed (the host may still be booting)."""


@dataclass
class ExecResult:
    exit_status: int
    timed_out: bool = False
    output: str = ""


class RemoteExecutor(ABC):
    """Abstract interface for running the payload on the worker instance."""

    @abstractmethod
    def connect(self, host: str) -> None:
        """
        Open a connection to ``host``.

        Raises:
            RemoteConnectError: If the host is not reachable yet
        """
        pass

    @abstractmethod
    def upload(self, data: bytes, remote_path: str, mode: int = 0o755) -> None:
        """Write ``data`` to ``remote_path`` on the connected host."""
        pass

    @abstractmethod
    def execute(self, command: str, timeout: float) -> ExecResult:
        """
        Run ``command`` and wait for it, at most ``timeout`` seconds.

        Returns:
            ExecResult; ``timed_out`` is set when the limit was hit
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close the connection (safe to call when not connected)."""
        pass


def generate_session_key(path: Path, bits: int = 3072) -> str:
    """
    Create a private key at ``path`` (mode 0600).

    Returns:
        OpenSSH public key line (``ssh-rsa AAAA...``)
    """
    key = paramiko.RSAKey.generate(bits)
    path.parent.mkdir(parents=True, exist_ok=True)
    key.write_private_key_file(str(path))
    os.chmod(path, 0o600)
    return f"{key.get_name()} {key.get_base64()}"


class ParamikoExecutor(RemoteExecutor):
    """
    RemoteExecutor over paramiko SSH + SFTP.

    Args:
        username: Login user
        key_path: Private key file
        connect_timeout: Timeout for one connection attempt (seconds)
        poll_interval: Seconds between checks of a running command
    """

    def __init__(self, username: str, key_path: Path, connect_timeout: float = 30.0, poll_interval: float = 0.5):
        self._username = username
        self._key_path = str(key_path)
        self._connect_timeout = connect_timeout
        self._poll_interval = poll_interval
        self._ssh: Optional[paramiko.SSHClient] = None

    def connect(self, host: str) -> None:
        ssh = paramiko.SSHClient()
        # Fresh instance with a fresh host key every session
        ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            ssh.connect(
                hostname=host,
                username=self._username,
                key_filename=self._key_path,
                timeout=self._connect_timeout,
                banner_timeout=self._connect_timeout,
                auth_timeout=self._connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except (paramiko.SSHException, socket.timeout, OSError) as e:
            ssh.close()
            raise RemoteConnectError(f"{host}: {e}") from e
        self._ssh = ssh

    def _client(self) -> paramiko.SSHClient:
        if self._ssh is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._ssh

    def upload(self, data: bytes, remote_path: str, mode: int = 0o755) -> None:
        sftp = self._client().open_sftp()
        try:
            sftp.putfo(io.BytesIO(data), remote_path)
            sftp.chmod(remote_path, mode)
        finally:
            sftp.close()

    def execute(self, command: str, timeout: float) -> ExecResult:
        transport = self._client().get_transport()
        if transport is None or not transport.is_active():
            raise RemoteConnectError("SSH transport is not active")

        channel = transport.open_session()
        channel.set_combine_stderr(True)
        channel.exec_command(command)

        tail: deque = deque(maxlen=OUTPUT_TAIL_LINES)
        pending = ""
        deadline = time.monotonic() + timeout

        def drain() -> None:
            nonlocal pending
            while channel.recv_ready():
                pending += channel.recv(65536).decode("utf-8", errors="replace")
            *lines, pending = pending.split("\n")
            for line in lines:
                logger.info("[remote] %s", line.rstrip())
                tail.append(line)

        while not channel.exit_status_ready():
            drain()
            if time.monotonic() > deadline:
                logger.warning("Remote command exceeded %ss; closing channel", timeout)
                channel.close()
                return ExecResult(exit_status=-1, timed_out=True, output="\n".join(tail))
            time.sleep(self._poll_interval)

        drain()
        if pending:
            tail.append(pending)
        status = channel.recv_exit_status()
        channel.close()
        return ExecResult(
            exit_status=status,
            timed_out=status == TIMEOUT_EXIT_STATUS,
            output="\n".join(tail),
        )

    def close(self) -> None:
        if self._ssh is not None:
            self._ssh.close()
            self._ssh = None
