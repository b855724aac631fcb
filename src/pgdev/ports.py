"""Port allocation helpers for pgdev."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .config import MAX_TCP_PORT
from .errors import NotFoundError, PortAllocationError
from .registry import InstanceRegistry

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PortAllocator:
    """Pick TCP ports from the Config Records of existing instances.

    Nothing is reserved between :meth:`allocate` and the caller persisting the
    port; callers that write the port must hold the global lock from
    :class:`pgdev.locking.LockManager` across both steps.
    """

    registry: InstanceRegistry
    base_port: int = 5432
    max_port: int = MAX_TCP_PORT

    def __post_init__(self) -> None:
        """Validate initialiser parameters."""
        if self.base_port < 1:
            raise PortAllocationError("Base port must be a positive integer.")
        if self.max_port < self.base_port:
            raise PortAllocationError(
                f"Maximum port {self.max_port} is below the base port {self.base_port}."
            )

    # ------------------------------------------------------------------
    def list_entries(self) -> list[dict[str, Any]]:
        """Return ``{"name", "port"}`` for every initialised instance, sorted by port."""
        entries: list[dict[str, Any]] = []
        for name in self.registry.names():
            store = self.registry.paths(name).config_store
            if not store.exists():
                continue
            try:
                port = int(store.read("port"))
            except (NotFoundError, ValueError) as exc:
                LOGGER.debug("Ignoring port of instance %s: %s", name, exc)
                continue
            entries.append({"name": name, "port": port})
        entries.sort(key=lambda entry: (entry["port"], entry["name"]))
        return entries

    def used_ports(self) -> set[int]:
        """Return the set of ports recorded by existing instances."""
        return {int(entry["port"]) for entry in self.list_entries()}

    def allocate(self) -> int:
        """Return the lowest free port at or above the base port."""
        return self._next_available_port(self.used_ports())

    # Internal helpers -------------------------------------------------
    def _next_available_port(self, used: set[int]) -> int:
        return next_free_port(used, base_port=self.base_port, max_port=self.max_port)


def next_free_port(used: set[int], *, base_port: int = 5432, max_port: int = MAX_TCP_PORT) -> int:
    """Return ``min({base_port, base_port + 1, ...} - used)`` within *max_port*."""
    candidate = base_port
    while candidate in used:
        candidate += 1
    if candidate > max_port:
        raise PortAllocationError(f"No free port between {base_port} and {max_port}.")
    return candidate


__all__ = ["PortAllocator", "next_free_port"]
