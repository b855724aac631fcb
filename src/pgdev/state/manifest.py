"""Per-instance manifest of cross-component runtime requirements.

Blueprint scripts append ``key=value`` declarations to ``pgdev.manifest``
while they build; ``init`` consumes them once. The only key pgdev interprets
is ``requires_preload``, which names a library the server must load at
startup. Anything else in the file, such as section markers written by a
script, is ignored.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .config_store import parse_key_values

MANIFEST_NAME = "pgdev.manifest"
PRELOAD_KEY = "requires_preload"


@dataclass(frozen=True, slots=True)
class Manifest:
    """Access the manifest stored in an instance directory."""

    instance_dir: Path

    @property
    def path(self) -> Path:
        """Return the manifest path."""
        return self.instance_dir / MANIFEST_NAME

    def ensure(self) -> None:
        """Create the manifest if it does not exist yet."""
        self.path.touch(exist_ok=True)

    def append(self, key: str, value: str) -> None:
        """Append a single declaration."""
        if not key or "=" in key or "\n" in key or "\n" in value:
            raise ValueError(f"Invalid manifest entry {key!r}={value!r}.")
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(f"{key}={value}\n")

    def entries(self) -> list[tuple[str, str]]:
        """Return declarations in file order (empty when the file is absent)."""
        if not self.path.is_file():
            return []
        return parse_key_values(self.path.read_text(encoding="utf-8"))

    def collect_preload_libraries(self) -> list[str]:
        """Return distinct ``requires_preload`` values in first-seen order."""
        return unique_in_order(
            value for key, value in self.entries() if key == PRELOAD_KEY and value
        )


def unique_in_order(values: Iterable[str]) -> list[str]:
    """Drop repeated values while keeping the first occurrence of each."""
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def preload_setting(libraries: Iterable[str]) -> str:
    """Serialise *libraries* for ``shared_preload_libraries``."""
    return ",".join(libraries)


__all__ = ["MANIFEST_NAME", "Manifest", "PRELOAD_KEY", "preload_setting", "unique_in_order"]
