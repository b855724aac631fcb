"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path

import pytest

from pgdev.config import AppConfig, load_config
from pgdev.operations import InstanceOperations
from pgdev.registry import InstancePaths, InstanceRegistry

# ``initdb`` stub: creates the data directory and an empty postgresql.conf.
STUB_INITDB = """#!/bin/sh
data=""
while [ $# -gt 0 ]; do
  if [ "$1" = "-D" ]; then
    shift
    data="$1"
  fi
  shift
done
mkdir -p "$data"
printf '# stub postgresql.conf\\n' > "$data/postgresql.conf"
"""

# ``pg_ctl`` stub: the PID file is the only state, every call is traced.
STUB_PG_CTL = """#!/bin/sh
data=""
action=""
while [ $# -gt 0 ]; do
  case "$1" in
    -D) shift; data="$1" ;;
    -l) shift ;;
    *) action="$1" ;;
  esac
  shift
done
echo "$action" >> "$data/../pg_ctl.calls"
case "$action" in
  status)
    [ -f "$data/postmaster.pid" ] && exit 0
    exit 3 ;;
  start|restart)
    mkdir -p "$data"
    printf '4242\\n%s\\n' "$data" > "$data/postmaster.pid"
    exit 0 ;;
  stop)
    rm -f "$data/postmaster.pid"
    exit 0 ;;
esac
exit 1
"""

STUB_PG_CONFIG = """#!/bin/sh
echo "PostgreSQL 18.0"
"""

STUBS = {
    "initdb": STUB_INITDB,
    "pg_ctl": STUB_PG_CTL,
    "pg_config": STUB_PG_CONFIG,
}


def _write_executable(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    path.chmod(0o755)
    return path


@pytest.fixture
def write_executable() -> Callable[[Path, str], Path]:
    """Return a helper writing an executable script."""
    return _write_executable


@pytest.fixture
def stub_bin(tmp_path: Path) -> Path:
    """Directory holding stub PostgreSQL binaries."""
    bin_dir = tmp_path / "stub-bin"
    for name, content in STUBS.items():
        _write_executable(bin_dir / name, content)
    return bin_dir


@pytest.fixture
def install_stubs() -> Callable[[InstancePaths], None]:
    """Return a helper installing stub binaries into an instance's ``install/bin``."""

    def _install(paths: InstancePaths) -> None:
        for name, content in STUBS.items():
            _write_executable(paths.bin_dir / name, content)

    return _install


@pytest.fixture
def pgdev_root(tmp_path: Path) -> Path:
    """Root directory standing in for ``~/pgdev``."""
    return tmp_path / "pgdev"


@pytest.fixture
def app_config(tmp_path: Path, pgdev_root: Path) -> AppConfig:
    """Configuration rooted in the temporary directory."""
    return load_config(
        config_file=tmp_path / "missing-config.yml",
        env={"PGDEV_ROOT": str(pgdev_root), "PGDEV_LOCK_TIMEOUT": "2"},
    )


@pytest.fixture
def registry(app_config: AppConfig) -> InstanceRegistry:
    """Registry over the temporary instances root."""
    return InstanceRegistry(app_config.instances_dir, default_link=app_config.default_link)


@pytest.fixture
def messages() -> list[str]:
    """Collected progress messages."""
    return []


@pytest.fixture
def operations(app_config: AppConfig, messages: list[str]) -> InstanceOperations:
    """Operations wired against the temporary configuration."""
    return InstanceOperations.from_config(
        app_config,
        env=dict(os.environ),
        notify=messages.append,
    )


@pytest.fixture
def make_instance(registry: InstanceRegistry) -> Callable[..., InstancePaths]:
    """Return a helper creating a bare instance directory."""

    def _make(name: str) -> InstancePaths:
        paths = registry.paths(name)
        paths.root.mkdir(parents=True)
        paths.manifest.ensure()
        return paths

    return _make
