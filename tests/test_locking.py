"""Tests for the locking primitives."""
from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from pgdev.exit_codes import ExitCode
from pgdev.locking import LockManager, LockTimeoutError


def test_instance_lock_creates_metadata(tmp_path: Path) -> None:
    """Acquiring a lock writes metadata and releases cleanly."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    lock_path = tmp_path / "run" / "instances" / "alpha.lock"
    with manager.instance_lock("alpha") as handle:
        assert handle.wait_ms >= 0
        assert handle.path == lock_path
        data = json.loads(lock_path.read_text(encoding="utf-8"))
        assert data["pid"] == os.getpid()
        assert data["path"] == str(lock_path)
        assert "acquired_at" in data

    # Lockfile persists for diagnostics but no longer holds the lock.
    with manager.instance_lock("alpha", timeout=0.2):
        pass


def test_instance_lock_timeout(tmp_path: Path) -> None:
    """Second acquisition times out while the first lock is held."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.instance_lock("alpha"):
        with pytest.raises(LockTimeoutError) as excinfo:
            with manager.instance_lock("alpha", timeout=0.1):
                pass

    assert excinfo.value.exit_code is ExitCode.ENVIRONMENT


def test_distinct_instances_do_not_contend(tmp_path: Path) -> None:
    """Locks on different instances are independent."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.instance_lock("alpha"):
        with manager.instance_lock("beta", timeout=0.1) as handle:
            assert handle.path.name == "beta.lock"


def test_global_lock_uses_dedicated_file(tmp_path: Path) -> None:
    """The global lock lives in ``pgdev.lock``."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.global_lock() as handle:
        assert handle.path == tmp_path / "run" / "pgdev.lock"
        with pytest.raises(LockTimeoutError):
            with manager.global_lock(timeout=0.1):
                pass


def test_mutate_instances_acquires_global_then_instance(tmp_path: Path) -> None:
    """Lock bundles acquire global first followed by per-instance locks."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.mutate_instances(["beta", "alpha", "beta"]) as bundle:
        assert bundle.wait_ms >= 0
        assert [handle.path.name for handle in bundle.handles] == [
            "pgdev.lock",
            "alpha.lock",
            "beta.lock",
        ]


def test_instance_named_like_global_lock_does_not_contend(tmp_path: Path) -> None:
    """An instance called ``pgdev`` gets its own lock file beside the global one."""
    manager = LockManager(tmp_path / "run", default_timeout=1.0)

    with manager.mutate_instances(["pgdev"], timeout=0.2) as bundle:
        global_handle, instance_handle = bundle.handles
        assert global_handle.path == tmp_path / "run" / "pgdev.lock"
        assert instance_handle.path == tmp_path / "run" / "instances" / "pgdev.lock"
