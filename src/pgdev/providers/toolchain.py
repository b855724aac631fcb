"""Wrappers around the PostgreSQL client tools installed into an instance."""
from __future__ import annotations

import os
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from ..registry import InstancePaths
from ..state import preload_setting
from ..templates import TemplateEngine
from .process import run_command

RUNTIME_TEMPLATE = "postgresql/runtime.conf.j2"


@dataclass(slots=True)
class PostgresToolchain:
    """Run ``initdb``, ``pg_config`` and friends from ``install/bin``."""

    templates: TemplateEngine
    initdb_args: Sequence[str] = ("--no-locale", "-E", "UTF8")
    editor: str | None = None
    env: Mapping[str, str] | None = field(default=None, repr=False)

    def tool(self, paths: InstancePaths, name: str) -> str:
        """Return the path to tool *name* inside the instance installation."""
        return str(paths.bin_dir / name)

    def initdb(self, paths: InstancePaths) -> None:
        """Create the database cluster in the instance's data directory."""
        command = [self.tool(paths, "initdb"), "-D", str(paths.data), *self.initdb_args]
        run_command(command, capture_output=False)

    def version(self, paths: InstancePaths) -> str:
        """Return the server version reported by ``pg_config --version``."""
        result = run_command([self.tool(paths, "pg_config"), "--version"])
        return (result.stdout or "").strip()

    def render_runtime_settings(
        self,
        paths: InstancePaths,
        *,
        port: int,
        preload_libraries: Sequence[str],
    ) -> str:
        """Render the ``postgresql.conf`` block pgdev appends during ``init``."""
        return self.templates.render_to_string(
            RUNTIME_TEMPLATE,
            {
                "instance_name": paths.name,
                "port": port,
                "preload_libraries": preload_setting(preload_libraries),
            },
        )

    def apply_runtime_settings(
        self,
        paths: InstancePaths,
        *,
        port: int,
        preload_libraries: Sequence[str],
    ) -> str:
        """Append the runtime block to ``postgresql.conf`` and return it."""
        block = self.render_runtime_settings(
            paths,
            port=port,
            preload_libraries=preload_libraries,
        )
        with paths.server_conf.open("a", encoding="utf-8") as handle:
            handle.write(block)
        return block

    # Interactive helpers ----------------------------------------------
    def psql_command(
        self,
        paths: InstancePaths,
        port: int,
        extra: Sequence[str] = (),
    ) -> list[str]:
        """Return the argv connecting ``psql`` to the instance."""
        return [self.tool(paths, "psql"), "-p", str(port), "-d", "postgres", *extra]

    def logs_command(
        self,
        paths: InstancePaths,
        *,
        lines: int,
        follow: bool = True,
    ) -> list[str]:
        """Return the argv tailing the server log."""
        command = ["tail", "-n", str(lines)]
        if follow:
            command.append("-f")
        command.append(str(paths.log_file))
        return command

    def editor_command(self, paths: InstancePaths) -> list[str]:
        """Return the argv opening ``postgresql.conf`` in the operator's editor."""
        source = os.environ if self.env is None else self.env
        editor = self.editor or source.get("EDITOR") or "vi"
        return [*shlex.split(editor), str(paths.server_conf)]

    def exec_interactive(self, command: Sequence[str]) -> int:
        """Run *command* attached to the terminal and return its exit status."""
        return run_command(command, check=False, capture_output=False).returncode


__all__ = ["PostgresToolchain"]
