"""
Lifecycle Service — start, stop and query web server sites and app pools.

The pipelines only depend on :class:`LifecycleController`; the IIS
implementation drives ``appcmd.exe`` through :class:`ShellService`.
"""

from __future__ import annotations

import abc
import enum
import logging
import re

from webdeploy.config import settings
from webdeploy.services.shell_service import ShellService

logger = logging.getLogger(__name__)

_UNIT_NAME_RE = re.compile(r"^[\w .\-]{1,200}$")


class UnitState(str, enum.Enum):
    started = "started"
    stopped = "stopped"
    starting = "starting"
    stopping = "stopping"
    unknown = "unknown"

    @property
    def is_running(self) -> bool:
        return self in (UnitState.started, UnitState.starting)


class LifecycleController(abc.ABC):
    """A named hosting unit that can be started, stopped and queried.

    ``start`` and ``stop`` are idempotent and report success as a bool.
    """

    @abc.abstractmethod
    def stop(self, name: str) -> bool: ...

    @abc.abstractmethod
    def start(self, name: str) -> bool: ...

    @abc.abstractmethod
    def get_state(self, name: str) -> UnitState: ...


def _safe_unit_name(value: str) -> str:
    if not value or not _UNIT_NAME_RE.match(value):
        raise ValueError(f"Invalid unit name: {value!r}")
    return value


class AppcmdController(LifecycleController):
    """IIS site or application pool controlled with ``appcmd``."""

    KINDS = ("site", "apppool")

    def __init__(self, shell: ShellService, kind: str, appcmd_path: str | None = None):
        if kind not in self.KINDS:
            raise ValueError(f"Unsupported unit kind: {kind!r}")
        self.shell = shell
        self.kind = kind
        self.appcmd_path = appcmd_path or settings.appcmd_path

    def _command(self, verb: str, name: str) -> str:
        name = _safe_unit_name(name)
        if verb == "list":
            return f'"{self.appcmd_path}" list {self.kind} /name:"{name}" /text:state'
        return f'"{self.appcmd_path}" {verb} {self.kind} /{self.kind}.name:"{name}"'

    def get_state(self, name: str) -> UnitState:
        result = self.shell.exec_command(self._command("list", name), timeout=30)
        if not result.ok:
            logger.warning("Could not query %s %s: %s", self.kind, name, result.stderr.strip()[:500])
            return UnitState.unknown
        try:
            return UnitState(result.stdout.strip().lower())
        except ValueError:
            return UnitState.unknown

    def stop(self, name: str) -> bool:
        state = self.get_state(name)
        if state == UnitState.stopped:
            logger.info("%s %s is already stopped", self.kind, name)
            return True
        result = self.shell.exec_command(self._command("stop", name))
        if not result.ok:
            logger.error("Failed to stop %s %s: %s", self.kind, name, result.stderr.strip()[:500])
            return False
        logger.info("Stopped %s %s", self.kind, name)
        return True

    def start(self, name: str) -> bool:
        state = self.get_state(name)
        if state.is_running:
            logger.info("%s %s is already started or starting", self.kind, name)
            return True
        result = self.shell.exec_command(self._command("start", name))
        if not result.ok:
            logger.error("Failed to start %s %s: %s", self.kind, name, result.stderr.strip()[:500])
            return False
        logger.info("Started %s %s", self.kind, name)
        return True


def get_lifecycle_controllers() -> tuple[LifecycleController, LifecycleController]:
    """Build the (site, app pool) controllers for the configured web server host."""
    shell = ShellService(
        hostname=settings.lifecycle_host,
        port=settings.lifecycle_port,
        username=settings.lifecycle_user,
        key_path=settings.lifecycle_key_path,
        is_local=settings.lifecycle_is_local,
    )
    return AppcmdController(shell, "site"), AppcmdController(shell, "apppool")
