"""
Shell Service — run commands on the web server host.

Commands run through ``subprocess`` when the host is local and over
Paramiko SSH otherwise.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time

import paramiko

logger = logging.getLogger(__name__)

_CONNECT_ATTEMPTS = 3


class CommandResult:
    """Outcome of a single command."""

    def __init__(self, exit_code: int, stdout: str, stderr: str):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.ok = exit_code == 0

    def __repr__(self) -> str:
        return f"CommandResult(exit_code={self.exit_code}, ok={self.ok})"


class ShellService:
    def __init__(
        self,
        hostname: str = "localhost",
        port: int = 22,
        username: str = "Administrator",
        key_path: str | None = None,
        is_local: bool = True,
    ):
        self.hostname = hostname
        self.port = port
        self.username = username
        self.key_path = key_path
        self.is_local = is_local
        self._client: paramiko.SSHClient | None = None

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport and transport.is_active():
                return self._client
            self.close()

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.WarningPolicy())
        connect_kwargs: dict = {
            "hostname": self.hostname,
            "port": self.port,
            "username": self.username,
            "timeout": 10,
        }
        if self.key_path and os.path.isfile(self.key_path):
            connect_kwargs["key_filename"] = self.key_path
        else:
            connect_kwargs["allow_agent"] = True
            connect_kwargs["look_for_keys"] = True

        for attempt in range(1, _CONNECT_ATTEMPTS + 1):
            try:
                client.connect(**connect_kwargs)
                break
            except (paramiko.SSHException, OSError) as e:
                if attempt == _CONNECT_ATTEMPTS:
                    raise
                wait = attempt * 2
                logger.warning(
                    "SSH connect attempt %d/%d to %s failed: %s (retry in %ds)",
                    attempt,
                    _CONNECT_ATTEMPTS,
                    self.hostname,
                    e,
                    wait,
                )
                time.sleep(wait)

        self._client = client
        return client

    def exec_command(self, command: str, timeout: int = 120) -> CommandResult:
        if self.is_local:
            return self._exec_local(command, timeout)

        logger.info("SSH exec [%s]: %s", self.hostname, command[:200])
        client = self._connect()
        _, stdout_ch, stderr_ch = client.exec_command(command, timeout=timeout)
        stdout = stdout_ch.read().decode("utf-8", errors="replace")
        stderr = stderr_ch.read().decode("utf-8", errors="replace")
        exit_code = stdout_ch.channel.recv_exit_status()
        return CommandResult(exit_code, stdout, stderr)

    def _exec_local(self, command: str, timeout: int) -> CommandResult:
        logger.info("Local exec: %s", command[:200])
        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
            return CommandResult(result.returncode, result.stdout, result.stderr)
        except subprocess.TimeoutExpired:
            return CommandResult(1, "", f"Command timed out after {timeout}s")
        except OSError as e:
            return CommandResult(1, "", str(e))

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception:
                logger.debug("Error closing SSH client for %s", self.hostname, exc_info=True)
            self._client = None
