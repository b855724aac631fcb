"""Process controller wrapping each instance's ``pg_ctl`` binary."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from ..errors import ExternalProcessError, NotFoundError, NotInitializedError
from ..registry import InstancePaths
from .process import run_command


class ServerState(str, Enum):
    """Server states as observed through ``pg_ctl status``."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNINITIALIZED = "uninitialized"


@dataclass(frozen=True, slots=True)
class ServerStatus:
    """Snapshot of an instance's server process."""

    name: str
    state: ServerState
    port: int | None = None
    pid: int | None = None
    version: str | None = None

    @property
    def running(self) -> bool:
        """Return ``True`` when the server process is alive."""
        return self.state is ServerState.RUNNING


@dataclass(frozen=True, slots=True)
class ControlResult:
    """Outcome of a start/stop/restart request."""

    action: str
    changed: bool
    message: str
    status: ServerStatus


@dataclass(slots=True)
class PgCtlProvider:
    """Start, stop and query servers through ``install/bin/pg_ctl``.

    The controller keeps no state of its own. Every call asks ``pg_ctl`` for
    liveness, which in turn relies on the PID file the server writes into its
    data directory.
    """

    pg_ctl_name: str = "pg_ctl"

    def binary(self, paths: InstancePaths) -> str:
        """Return the ``pg_ctl`` path for *paths*."""
        return str(paths.bin_dir / self.pg_ctl_name)

    def is_running(self, paths: InstancePaths) -> bool:
        """Return ``True`` when ``pg_ctl status`` reports a live server."""
        try:
            result = self._pg_ctl(paths, ["status"], check=False)
        except ExternalProcessError:
            return False
        return result.returncode == 0

    def status(self, paths: InstancePaths) -> ServerStatus:
        """Return the current state; a missing Config Record means uninitialized."""
        store = paths.config_store
        if not store.exists():
            return ServerStatus(name=paths.name, state=ServerState.UNINITIALIZED)
        port = _read_port(paths)
        version = _read_version(paths)
        if not self.is_running(paths):
            return ServerStatus(
                name=paths.name,
                state=ServerState.STOPPED,
                port=port,
                version=version,
            )
        return ServerStatus(
            name=paths.name,
            state=ServerState.RUNNING,
            port=port,
            pid=read_pid(paths),
            version=version,
        )

    def start(self, paths: InstancePaths) -> ControlResult:
        """Start the server unless it is already running."""
        current = self.status(paths)
        if current.state is ServerState.UNINITIALIZED:
            raise NotInitializedError(
                f"Instance '{paths.name}' is not initialized; run 'pgdev init {paths.name}'."
            )
        if current.running:
            return ControlResult(
                action="start",
                changed=False,
                message=f"Instance '{paths.name}' is already running.",
                status=current,
            )
        self._pg_ctl(paths, ["-l", str(paths.log_file), "start"], capture_output=False)
        return ControlResult(
            action="start",
            changed=True,
            message=f"Instance '{paths.name}' started on port {current.port}.",
            status=self.status(paths),
        )

    def stop(self, paths: InstancePaths) -> ControlResult:
        """Stop the server unless it is already stopped."""
        current = self.status(paths)
        if not current.running:
            return ControlResult(
                action="stop",
                changed=False,
                message=f"Instance '{paths.name}' is not running.",
                status=current,
            )
        self._pg_ctl(paths, ["stop"], capture_output=False)
        return ControlResult(
            action="stop",
            changed=True,
            message=f"Instance '{paths.name}' stopped.",
            status=self.status(paths),
        )

    def restart(self, paths: InstancePaths) -> ControlResult:
        """Request a restart regardless of the current state."""
        if not paths.config_store.exists():
            raise NotInitializedError(
                f"Instance '{paths.name}' is not initialized; run 'pgdev init {paths.name}'."
            )
        port = _read_port(paths)
        self._pg_ctl(paths, ["-l", str(paths.log_file), "restart"], capture_output=False)
        return ControlResult(
            action="restart",
            changed=True,
            message=f"Instance '{paths.name}' restarted on port {port}.",
            status=self.status(paths),
        )

    # ------------------------------------------------------------------
    def _pg_ctl(
        self,
        paths: InstancePaths,
        args: Sequence[str],
        *,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.binary(paths), "-D", str(paths.data), *args]
        return run_command(command, check=check, capture_output=capture_output)


def read_pid(paths: InstancePaths) -> int | None:
    """Return the PID from the first line of ``postmaster.pid``."""
    try:
        first_line = paths.pid_file.read_text(encoding="utf-8").splitlines()[0]
    except (OSError, IndexError):
        return None
    try:
        return int(first_line.strip())
    except ValueError:
        return None


def _read_port(paths: InstancePaths) -> int | None:
    try:
        return int(paths.config_store.read("port"))
    except (NotFoundError, ValueError):
        return None


def _read_version(paths: InstancePaths) -> str | None:
    try:
        return paths.config_store.read("version")
    except NotFoundError:
        return None


__all__ = ["ControlResult", "PgCtlProvider", "ServerState", "ServerStatus", "read_pid"]
