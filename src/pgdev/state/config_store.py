"""Per-instance Config Record (``pgdev.conf``).

The record holds exactly two ``key=value`` lines, ``port`` and ``version``.
It is written once by ``init`` and read by every command that needs to know
the instance's port. A missing record means the instance exists but has not
been initialised yet, which callers must treat differently from a missing
instance.
"""
from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from ..errors import ConfigKeyNotFound, NotInitializedError

CONFIG_RECORD_NAME = "pgdev.conf"
REQUIRED_KEYS = ("port", "version")


@dataclass(frozen=True, slots=True)
class ConfigRecord:
    """Parsed contents of ``pgdev.conf``."""

    port: int
    version: str


def parse_key_values(text: str) -> list[tuple[str, str]]:
    """Split ``key=value`` lines, keeping everything after the first ``=``."""
    pairs: list[tuple[str, str]] = []
    for line in text.splitlines():
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        pairs.append((key, value.strip()))
    return pairs


@dataclass(frozen=True, slots=True)
class ConfigStore:
    """Read and write the Config Record stored in an instance directory."""

    instance_dir: Path

    @property
    def path(self) -> Path:
        """Return the record path."""
        return self.instance_dir / CONFIG_RECORD_NAME

    def exists(self) -> bool:
        """Return ``True`` when the instance has been initialised."""
        return self.path.is_file()

    def write(self, port: int, version: str) -> None:
        """Atomically replace the record with *port* and *version*."""
        version_line = " ".join(line.strip() for line in version.splitlines()).strip()
        payload = f"port={int(port)}\nversion={version_line}\n"
        self.instance_dir.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_name = tempfile.mkstemp(
            dir=str(self.instance_dir),
            prefix=f".{CONFIG_RECORD_NAME}.",
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_path, self.path)
            os.chmod(self.path, 0o644)
        finally:
            tmp_path.unlink(missing_ok=True)

    def read(self, key: str) -> str:
        """Return the value stored for *key*."""
        if not self.exists():
            raise NotInitializedError(
                f"Configuration file for '{self.instance_dir.name}' not found; "
                "run 'pgdev init' first."
            )
        for found_key, value in parse_key_values(self.path.read_text(encoding="utf-8")):
            if found_key == key:
                return value
        raise ConfigKeyNotFound(f"Key '{key}' not found in {self.path}.")

    def read_record(self) -> ConfigRecord:
        """Return the full record, validating the port."""
        port_text = self.read("port")
        try:
            port = int(port_text)
        except ValueError as exc:
            raise ConfigKeyNotFound(
                f"Port value '{port_text}' in {self.path} is not numeric."
            ) from exc
        return ConfigRecord(port=port, version=self.read("version"))


__all__ = ["CONFIG_RECORD_NAME", "ConfigRecord", "ConfigStore", "parse_key_values"]
