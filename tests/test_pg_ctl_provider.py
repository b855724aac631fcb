"""Tests for the pg_ctl process controller using stub binaries."""
from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from pgdev.errors import ExternalProcessError, NotInitializedError
from pgdev.providers import PgCtlProvider, ServerState
from pgdev.providers.pg_ctl import read_pid
from pgdev.registry import InstancePaths


def _calls(paths: InstancePaths) -> list[str]:
    trace = paths.root / "pg_ctl.calls"
    if not trace.exists():
        return []
    return trace.read_text(encoding="utf-8").split()


@pytest.fixture
def initialised(
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> InstancePaths:
    """An instance with stub binaries, a data directory and a Config Record."""
    paths = make_instance("alpha")
    install_stubs(paths)
    paths.data.mkdir()
    paths.config_store.write(5440, "PostgreSQL 18.0")
    return paths


def test_status_of_uninitialised_instance(
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """A missing Config Record is reported, not raised, and pg_ctl is not consulted."""
    paths = make_instance("fresh")
    install_stubs(paths)

    status = PgCtlProvider().status(paths)

    assert status.state is ServerState.UNINITIALIZED
    assert status.port is None
    assert _calls(paths) == []


def test_status_stopped_reports_port_and_version(initialised: InstancePaths) -> None:
    """A stopped server still reports its recorded port and version."""
    status = PgCtlProvider().status(initialised)

    assert status.state is ServerState.STOPPED
    assert status.running is False
    assert status.port == 5440
    assert status.version == "PostgreSQL 18.0"
    assert status.pid is None


def test_start_then_start_again_is_a_no_op(initialised: InstancePaths) -> None:
    """Starting a running server succeeds without calling ``pg_ctl start`` again."""
    controller = PgCtlProvider()

    first = controller.start(initialised)
    second = controller.start(initialised)

    assert first.changed is True
    assert first.status.running is True
    assert first.status.pid == 4242
    assert second.changed is False
    assert "already running" in second.message
    assert _calls(initialised).count("start") == 1


def test_stop_when_stopped_is_a_no_op(initialised: InstancePaths) -> None:
    """Stopping a stopped server succeeds without calling ``pg_ctl stop``."""
    result = PgCtlProvider().stop(initialised)

    assert result.changed is False
    assert "not running" in result.message
    assert "stop" not in _calls(initialised)


def test_stop_running_server(initialised: InstancePaths) -> None:
    """A running server is stopped and reported as stopped."""
    controller = PgCtlProvider()
    controller.start(initialised)

    result = controller.stop(initialised)

    assert result.changed is True
    assert result.status.state is ServerState.STOPPED
    assert not initialised.pid_file.exists()


def test_restart_runs_regardless_of_state(initialised: InstancePaths) -> None:
    """Restart always reaches pg_ctl."""
    result = PgCtlProvider().restart(initialised)

    assert result.changed is True
    assert "restart" in _calls(initialised)
    assert result.status.running is True


@pytest.mark.parametrize("action", ["start", "restart"])
def test_uninitialised_instance_cannot_start(
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
    action: str,
) -> None:
    """Starting requires ``init`` first."""
    paths = make_instance("fresh")
    install_stubs(paths)

    with pytest.raises(NotInitializedError, match="pgdev init fresh"):
        getattr(PgCtlProvider(), action)(paths)


def test_missing_binary_counts_as_stopped(make_instance: Callable[..., InstancePaths]) -> None:
    """Without pg_ctl the server cannot be running."""
    paths = make_instance("alpha")
    paths.config_store.write(5432, "18.0")

    assert PgCtlProvider().status(paths).state is ServerState.STOPPED
    with pytest.raises(ExternalProcessError) as excinfo:
        PgCtlProvider().start(paths)
    assert excinfo.value.returncode == 127


def test_failing_pg_ctl_raises_with_exit_code(
    initialised: InstancePaths,
    write_executable: Callable[[Path, str], Path],
) -> None:
    """A pg_ctl failure carries its exit status."""
    write_executable(
        initialised.bin_dir / "pg_ctl",
        '#!/bin/sh\n[ "$3" = status ] && exit 3\nexit 1\n',
    )

    with pytest.raises(ExternalProcessError) as excinfo:
        PgCtlProvider().start(initialised)

    assert excinfo.value.returncode == 1


def test_read_pid_uses_first_line(initialised: InstancePaths) -> None:
    """The PID is the first line of ``postmaster.pid``."""
    initialised.pid_file.write_text("1234\n/data\n5440\n", encoding="utf-8")
    assert read_pid(initialised) == 1234

    initialised.pid_file.write_text("garbage\n", encoding="utf-8")
    assert read_pid(initialised) is None

    initialised.pid_file.unlink()
    assert read_pid(initialised) is None
