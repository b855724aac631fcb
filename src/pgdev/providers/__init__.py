"""Provider interfaces for the external PostgreSQL binaries."""
from __future__ import annotations

from .pg_ctl import ControlResult, PgCtlProvider, ServerState, ServerStatus
from .toolchain import PostgresToolchain

__all__ = [
    "ControlResult",
    "PgCtlProvider",
    "PostgresToolchain",
    "ServerState",
    "ServerStatus",
]
