"""Subprocess helpers shared by the PostgreSQL providers."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence

from ..errors import ExternalProcessError


def run_command(
    args: Sequence[str],
    *,
    check: bool = True,
    capture_output: bool = True,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args*, raising :class:`ExternalProcessError` on failure when *check* is set."""
    command = [str(arg) for arg in args]
    try:
        if capture_output:
            result = subprocess.run(  # noqa: S603
                command,
                capture_output=True,
                text=True,
                check=False,
                env=dict(env) if env is not None else None,
            )
        else:
            result = subprocess.run(  # noqa: S603
                command,
                text=True,
                check=False,
                env=dict(env) if env is not None else None,
            )
    except FileNotFoundError as exc:
        raise ExternalProcessError(command, 127, f"{command[0]} not found") from exc
    if check and result.returncode != 0:
        stdout = getattr(result, "stdout", "") or ""
        stderr = getattr(result, "stderr", "") or ""
        message = stderr.strip() or stdout.strip() or "no output"
        raise ExternalProcessError(command, result.returncode, message)
    return result


__all__ = ["run_command"]
