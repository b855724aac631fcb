"""Advisory file locks coordinating concurrent pgdev processes.

Separate ``pgdev`` invocations share the instances root and the set of
allocated ports. The global lock serialises port allocation; per-instance
locks keep two processes from building or initialising the same instance.
Instance locks live in their own subdirectory so no instance name can
collide with the global lock file. Lock files are left in place after
release and carry JSON metadata about the last holder for diagnostics.
"""
from __future__ import annotations

import fcntl
import json
import os
import time
from collections.abc import Iterable, Iterator
from contextlib import AbstractContextManager, ExitStack, contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .errors import PgdevError
from .exit_codes import ExitCode

GLOBAL_LOCK_NAME = "pgdev.lock"
INSTANCE_LOCKS_DIR = "instances"
_POLL_INTERVAL = 0.05


class LockTimeoutError(PgdevError):
    """Raised when a lock cannot be acquired before the timeout."""

    exit_code = ExitCode.ENVIRONMENT


@dataclass(slots=True)
class LockHandle:
    """Information about an acquired lock."""

    path: Path
    wait_ms: int


@dataclass(slots=True)
class LockBundle:
    """Locks acquired together by :meth:`LockManager.mutate_instances`."""

    handles: list[LockHandle]

    @property
    def wait_ms(self) -> int:
        """Total time spent waiting for every lock in the bundle."""
        return sum(handle.wait_ms for handle in self.handles)


class LockManager:
    """Acquire ``flock``-based locks under the runtime directory."""

    def __init__(self, runtime_dir: Path, default_timeout: float) -> None:
        """Store the lock directory and default acquisition timeout."""
        self.runtime_dir = runtime_dir.expanduser()
        self.default_timeout = default_timeout

    def global_lock(
        self,
        *,
        timeout: float | None = None,
    ) -> AbstractContextManager[LockHandle]:
        """Lock guarding state shared by all instances (port allocation)."""
        return self._acquire(self.runtime_dir / GLOBAL_LOCK_NAME, timeout)

    def instance_lock(
        self,
        name: str,
        *,
        timeout: float | None = None,
    ) -> AbstractContextManager[LockHandle]:
        """Lock guarding a single instance directory."""
        safe = name.replace("/", "-")
        return self._acquire(self.runtime_dir / INSTANCE_LOCKS_DIR / f"{safe}.lock", timeout)

    @contextmanager
    def mutate_instances(
        self,
        names: Iterable[str],
        *,
        timeout: float | None = None,
    ) -> Iterator[LockBundle]:
        """Acquire the global lock followed by each instance lock in sorted order."""
        with ExitStack() as stack:
            handles = [stack.enter_context(self.global_lock(timeout=timeout))]
            for name in sorted(set(names)):
                handles.append(stack.enter_context(self.instance_lock(name, timeout=timeout)))
            yield LockBundle(handles=handles)

    @contextmanager
    def _acquire(self, path: Path, timeout: float | None) -> Iterator[LockHandle]:
        limit = self.default_timeout if timeout is None else timeout
        path.parent.mkdir(parents=True, exist_ok=True)
        started = time.monotonic()
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() - started >= limit:
                        raise LockTimeoutError(
                            f"Timed out after {limit:.1f}s waiting for lock {path}."
                        ) from None
                    time.sleep(_POLL_INTERVAL)
            wait_ms = int((time.monotonic() - started) * 1000)
            metadata = {
                "pid": os.getpid(),
                "path": str(path),
                "acquired_at": datetime.now(UTC).isoformat(),
            }
            os.ftruncate(fd, 0)
            os.pwrite(fd, json.dumps(metadata).encode("utf-8"), 0)
            try:
                yield LockHandle(path=path, wait_ms=wait_ms)
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)


__all__ = ["LockBundle", "LockHandle", "LockManager", "LockTimeoutError"]
