"""Instance registry: naming, resolution, and scaffolding of instances.

Instances are plain directories under the instances root. The directory name
is the instance name, so the registry never keeps an index of its own; every
query looks at the filesystem. :meth:`InstanceRegistry.validate` is the single
gate other components pass through before touching instance state.
"""
from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .config import ACTIVE_INSTANCE_ENV_VAR
from .errors import AlreadyExistsError, InstanceNotFound, NoInstanceSpecified, UsageError
from .state import CONFIG_RECORD_NAME, MANIFEST_NAME, ConfigStore, Manifest

LOGGER = logging.getLogger(__name__)

SERVER_LOG_NAME = "postgresql.log"


@dataclass(frozen=True, slots=True)
class InstancePaths:
    """Filesystem paths associated with an instance."""

    name: str
    root: Path

    @property
    def src(self) -> Path:
        return self.root / "src"

    @property
    def install(self) -> Path:
        return self.root / "install"

    @property
    def data(self) -> Path:
        return self.root / "data"

    @property
    def bin_dir(self) -> Path:
        return self.install / "bin"

    @property
    def config_file(self) -> Path:
        return self.root / CONFIG_RECORD_NAME

    @property
    def manifest_file(self) -> Path:
        return self.root / MANIFEST_NAME

    @property
    def log_file(self) -> Path:
        return self.root / SERVER_LOG_NAME

    @property
    def pid_file(self) -> Path:
        return self.data / "postmaster.pid"

    @property
    def server_conf(self) -> Path:
        return self.data / "postgresql.conf"

    @property
    def config_store(self) -> ConfigStore:
        """Return the Config Record accessor for this instance."""
        return ConfigStore(self.root)

    @property
    def manifest(self) -> Manifest:
        """Return the manifest accessor for this instance."""
        return Manifest(self.root)


@dataclass(frozen=True, slots=True)
class ActiveInstance:
    """The instance the operator's shell has activated, read once at startup."""

    name: str | None = None

    @classmethod
    def from_environment(cls, env: Mapping[str, str] | None = None) -> ActiveInstance:
        """Read the active instance from ``PGDEV_INSTANCE``."""
        source = os.environ if env is None else env
        value = (source.get(ACTIVE_INSTANCE_ENV_VAR) or "").strip()
        return cls(name=value or None)


def validate_instance_name(name: str) -> str:
    """Return *name* when it is usable as a single directory name."""
    normalized = name.strip()
    if not normalized:
        raise UsageError("Instance name must be a non-empty string.")
    if normalized in {".", ".."} or "/" in normalized or "\\" in normalized:
        raise UsageError(f"Invalid instance name '{name}'.")
    if normalized.startswith("."):
        raise UsageError(f"Instance name '{name}' must not start with a dot.")
    return normalized


@dataclass(frozen=True, slots=True)
class InstanceRegistry:
    """Enumerate and validate instances stored under *root*."""

    root: Path
    default_link: Path | None = None

    def path_for(self, name: str) -> Path:
        """Return the directory for instance *name*."""
        return self.root / validate_instance_name(name)

    def paths(self, name: str) -> InstancePaths:
        """Return the :class:`InstancePaths` for *name* without validating it."""
        normalized = validate_instance_name(name)
        return InstancePaths(name=normalized, root=self.root / normalized)

    def exists(self, name: str) -> bool:
        """Return ``True`` when the instance directory is present."""
        try:
            return self.path_for(name).is_dir()
        except UsageError:
            return False

    def validate(self, name: str) -> InstancePaths:
        """Return paths for *name*, raising :class:`InstanceNotFound` when absent."""
        if not self.exists(name):
            raise InstanceNotFound(name.strip() or name)
        return self.paths(name)

    def resolve(self, explicit: str | None, active: ActiveInstance) -> InstancePaths:
        """Resolve the target instance: explicit argument first, then the active one."""
        candidate = (explicit or "").strip() or active.name
        if not candidate:
            raise NoInstanceSpecified()
        return self.validate(candidate)

    def names(self) -> list[str]:
        """Return the sorted names of all instance directories."""
        if not self.root.is_dir():
            return []
        return sorted(
            child.name
            for child in self.root.iterdir()
            if child.is_dir() and not child.name.startswith(".")
        )

    def scaffold(self, name: str, template_dir: Path) -> InstancePaths:
        """Copy *template_dir* into a new instance directory and create its manifest."""
        paths = self.paths(name)
        if paths.root.exists():
            raise AlreadyExistsError(f"Instance '{paths.name}' already exists.")
        self.root.mkdir(parents=True, exist_ok=True)
        LOGGER.debug("Copying template %s to %s", template_dir, paths.root)
        shutil.copytree(template_dir, paths.root)
        paths.manifest.ensure()
        return paths

    # Default instance -------------------------------------------------
    def default_instance(self) -> str | None:
        """Return the instance the default symlink points at, if any."""
        if self.default_link is None or not self.default_link.is_symlink():
            return None
        target = Path(os.readlink(self.default_link))
        return target.name or None

    def set_default(self, name: str) -> InstancePaths:
        """Point the default symlink at instance *name*."""
        if self.default_link is None:
            raise UsageError("No default link location is configured.")
        paths = self.validate(name)
        link = self.default_link
        if link.exists() and not link.is_symlink():
            raise AlreadyExistsError(f"{link} exists and is not a symlink; refusing to replace it.")
        link.parent.mkdir(parents=True, exist_ok=True)
        staging = link.with_name(f".{link.name}.tmp")
        staging.unlink(missing_ok=True)
        staging.symlink_to(paths.root, target_is_directory=True)
        os.replace(staging, link)
        return paths


__all__ = [
    "ActiveInstance",
    "InstancePaths",
    "InstanceRegistry",
    "SERVER_LOG_NAME",
    "validate_instance_name",
]
