"""Per-instance state files: the Config Record and the build manifest."""
from __future__ import annotations

from .config_store import CONFIG_RECORD_NAME, ConfigRecord, ConfigStore
from .manifest import MANIFEST_NAME, Manifest, preload_setting

__all__ = [
    "CONFIG_RECORD_NAME",
    "ConfigRecord",
    "ConfigStore",
    "MANIFEST_NAME",
    "Manifest",
    "preload_setting",
]
