"""Typer-powered command line interface for ``pgdev``.

Every subcommand is a thin shell over :class:`pgdev.dispatcher.CommandDispatcher`:
the command parses its arguments, hands them to the dispatcher inside a
structured-log operation, and renders the result with Rich. Domain errors are
reported in red on stderr and mapped to their exit codes.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .blueprints import StepResult
from .config import AppConfig, ConfigError, load_config
from .dispatcher import Command, CommandDispatcher
from .errors import FilesystemError, PgdevError, UnsupportedCommand
from .logging import OperationScope, StructuredLogger
from .operations import CreateResult, InitResult, InstanceOperations, InstanceSummary
from .providers import ControlResult, ServerState, ServerStatus
from .registry import ActiveInstance, InstancePaths

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to pgdev's YAML config file.",
)

INSTANCE_ARGUMENT = typer.Argument(..., help="Name of the instance.")
OPTIONAL_INSTANCE_ARGUMENT = typer.Argument(
    None,
    help="Instance name (defaults to the active instance from PGDEV_INSTANCE).",
    show_default=False,
)
TEMPLATE_ARGUMENT = typer.Argument(..., help="Template to scaffold the instance from.")
SCRIPT_ARGUMENT = typer.Argument(
    ...,
    help="Component script path, or a component name such as '01-postgres'.",
)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    help=textwrap.dedent(
        """
        Manage isolated PostgreSQL development instances.

        Each instance lives in its own directory with its own sources, install
        tree, data directory and TCP port. Instances are scaffolded from
        templates of numbered component scripts, built, initialised and then
        controlled through pg_ctl.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    operations: InstanceOperations
    dispatcher: CommandDispatcher
    logger: StructuredLogger
    active: ActiveInstance


def _info(message: str) -> None:
    console.print(f"[green]{escape(message)}[/green]")


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        err_console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc

    active = ActiveInstance.from_environment()
    operations = InstanceOperations.from_config(config, notify=_info)
    runtime = RuntimeContext(
        config=config,
        operations=operations,
        dispatcher=CommandDispatcher(operations, active),
        logger=StructuredLogger(config.logs_dir),
        active=active,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the pgdev version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"pgdev {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(op: OperationScope, exc: PgdevError) -> NoReturn:
    """Emit a structured error and terminate the command."""
    message = str(exc)
    rc = int(exc.exit_code)
    err_console.print(f"[red]{escape(message)}[/red]")
    if isinstance(exc, UnsupportedCommand):
        for line in exc.guidance:
            err_console.print(escape(line))
    op.error(message, errors=[message], rc=rc)
    raise typer.Exit(code=rc) from exc


def _target(runtime: RuntimeContext, args: Sequence[str]) -> dict[str, object]:
    name = args[0] if args else runtime.active.name
    if name is None:
        return {"kind": "system", "scope": "instances"}
    return {"kind": "instance", "name": name}


def _dispatch(ctx: typer.Context, command: Command, *args: str | None) -> object:
    """Run *command* through the dispatcher inside a logged operation."""
    runtime = _get_runtime(ctx)
    arguments = [arg for arg in args if arg is not None]
    with runtime.logger.operation(
        command.value,
        args={"args": list(arguments)},
        target=_target(runtime, arguments),
    ) as op:
        try:
            result = runtime.dispatcher.dispatch(command, arguments)
        except PgdevError as exc:
            _command_error(op, exc)
        except OSError as exc:
            _command_error(op, FilesystemError.from_os_error(exc))
        _record_success(op, command, result)
        return result


def _record_success(op: OperationScope, command: Command, result: object) -> None:
    if isinstance(result, ControlResult):
        op.add_step(f"pg_ctl.{result.action}", detail=result.status.state.value)
        op.success(result.message, changed=int(result.changed))
    elif isinstance(result, InitResult):
        op.add_step("initdb")
        op.add_step("port.allocate", detail=str(result.port))
        op.success(
            f"Initialized instance '{result.paths.name}' on port {result.port}.",
            changed=1,
            context={"port": result.port, "version": result.version},
        )
    elif isinstance(result, CreateResult):
        for step in result.steps:
            op.add_step(f"{step.component}.{step.step}", detail=str(step.script))
        op.add_step("initdb")
        op.add_step(f"pg_ctl.{result.start.action}", detail=result.start.status.state.value)
        op.success(
            f"Created instance '{result.paths.name}'.",
            changed=1,
            context={"port": result.init.port, "version": result.init.version},
        )
    elif isinstance(result, StepResult):
        op.add_step(f"{result.component}.{result.step}", detail=str(result.script))
        op.success(f"{command.value} completed.", changed=1)
    elif isinstance(result, list) and result and isinstance(result[0], StepResult):
        for step in result:
            op.add_step(f"{step.component}.{step.step}", detail=str(step.script))
        op.success(f"{command.value} completed.", changed=len(result))
    elif isinstance(result, InstancePaths):
        op.success(f"{command.value} completed for '{result.name}'.", changed=1)
    else:
        op.success(f"{command.value} completed.", changed=0)


def _exit_with(result: object) -> None:
    """Propagate a non-zero return code from an interactive child."""
    if isinstance(result, int) and result != 0:
        raise typer.Exit(code=result)


def _render_status(status: ServerStatus) -> str:
    if status.state is ServerState.RUNNING:
        return "[green]running[/green]"
    if status.state is ServerState.STOPPED:
        return "[yellow]stopped[/yellow]"
    return "[dim]uninitialized[/dim]"


def _print_status(status: ServerStatus) -> None:
    if status.state is ServerState.UNINITIALIZED:
        console.print(
            f"Instance '{escape(status.name)}' is {_render_status(status)}; "
            f"run 'pgdev init {escape(status.name)}' first."
        )
        return
    details = [f"port {status.port}"]
    if status.pid is not None:
        details.append(f"pid {status.pid}")
    console.print(
        f"Instance '{escape(status.name)}' is {_render_status(status)} ({', '.join(details)})."
    )
    if status.version:
        console.print(f"  version: {escape(status.version)}")


def _print_instances(summaries: Sequence[InstanceSummary], instances_dir: Path) -> None:
    if not summaries:
        console.print(f"[yellow]No instances found in {escape(str(instances_dir))}.[/yellow]")
        return
    table = Table(title="pgdev instances")
    table.add_column("INSTANCE", style="cyan")
    table.add_column("STATUS")
    table.add_column("PORT", justify="right")
    table.add_column("PID", justify="right")
    table.add_column("VERSION")
    for summary in summaries:
        status = summary.status
        marker = " *" if summary.is_default else ""
        table.add_row(
            f"{escape(summary.name)}{marker}",
            _render_status(status),
            str(status.port) if status.port is not None else "-",
            str(status.pid) if status.pid is not None else "-",
            escape(status.version) if status.version else "-",
        )
    console.print(table)
    if any(summary.is_default for summary in summaries):
        console.print("[dim]* default instance[/dim]")


# Creation & setup ----------------------------------------------------------
@app.command()
def new(
    ctx: typer.Context,
    name: str = INSTANCE_ARGUMENT,
    template: str = TEMPLATE_ARGUMENT,
) -> None:
    """Scaffold a new instance directory from a template."""
    _dispatch(ctx, Command.NEW, name, template)


@app.command()
def setup(ctx: typer.Context, name: str = INSTANCE_ARGUMENT) -> None:
    """Configure and build every component of an instance."""
    _dispatch(ctx, Command.SETUP, name)


@app.command()
def init(ctx: typer.Context, name: str = INSTANCE_ARGUMENT) -> None:
    """Initialise the database cluster and assign a port."""
    result = _dispatch(ctx, Command.INIT, name)
    if isinstance(result, InitResult):
        _info(f"Instance '{result.paths.name}' initialized on port {result.port}.")


@app.command()
def create(
    ctx: typer.Context,
    name: str = INSTANCE_ARGUMENT,
    template: str = TEMPLATE_ARGUMENT,
) -> None:
    """Scaffold, build, initialise and start an instance in one go."""
    _dispatch(ctx, Command.CREATE, name, template)


@app.command()
def delete(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Explain how to remove an instance."""
    _dispatch(ctx, Command.DELETE, name)


# Daily management ----------------------------------------------------------
@app.command()
def start(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Start the instance's server."""
    result = _dispatch(ctx, Command.START, name)
    if isinstance(result, ControlResult):
        _info(result.message)


@app.command()
def stop(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Stop the instance's server."""
    result = _dispatch(ctx, Command.STOP, name)
    if isinstance(result, ControlResult):
        _info(result.message)


@app.command()
def restart(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Restart the instance's server."""
    result = _dispatch(ctx, Command.RESTART, name)
    if isinstance(result, ControlResult):
        _info(result.message)


@app.command()
def status(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Show whether the instance's server is running."""
    result = _dispatch(ctx, Command.STATUS, name)
    if isinstance(result, ServerStatus):
        _print_status(result)


@app.command("list")
def list_instances(ctx: typer.Context) -> None:
    """List all instances with their status."""
    runtime = _get_runtime(ctx)
    result = _dispatch(ctx, Command.LIST)
    if isinstance(result, list):
        _print_instances(result, runtime.config.instances_dir)


@app.command("ls", hidden=True)
def ls(ctx: typer.Context) -> None:
    """Alias for ``list``."""
    list_instances(ctx)


# Shell environment ---------------------------------------------------------
@app.command()
def switch(
    ctx: typer.Context,
    name: str | None = typer.Argument(
        None,
        help="Instance to activate, 'default', or 'off'.",
        show_default=False,
    ),
) -> None:
    """Activate an instance in the current shell (shell wrapper only)."""
    _dispatch(ctx, Command.SWITCH, name)


@app.command("default")
def default_instance(ctx: typer.Context, name: str = INSTANCE_ARGUMENT) -> None:
    """Make an instance the default for new shells."""
    _dispatch(ctx, Command.DEFAULT, name)


# Development & interaction -------------------------------------------------
@app.command("configure")
def configure_component(
    ctx: typer.Context,
    name: str = INSTANCE_ARGUMENT,
    script: str = SCRIPT_ARGUMENT,
) -> None:
    """Run one component's configure script."""
    _dispatch(ctx, Command.CONFIGURE, name, script)


@app.command("build")
def build_component(
    ctx: typer.Context,
    name: str = INSTANCE_ARGUMENT,
    script: str = SCRIPT_ARGUMENT,
) -> None:
    """Run one component's build script."""
    _dispatch(ctx, Command.BUILD, name, script)


@app.command("test")
def run_component_tests(
    ctx: typer.Context,
    name: str = INSTANCE_ARGUMENT,
    script: str = SCRIPT_ARGUMENT,
) -> None:
    """Run one component's test script."""
    _dispatch(ctx, Command.TEST, name, script)


@app.command()
def psql(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Open psql against the instance."""
    _exit_with(_dispatch(ctx, Command.PSQL, name))


@app.command()
def logs(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Follow the instance's server log."""
    _exit_with(_dispatch(ctx, Command.LOGS, name))


@app.command()
def conf(ctx: typer.Context, name: str | None = OPTIONAL_INSTANCE_ARGUMENT) -> None:
    """Edit the instance's postgresql.conf."""
    _exit_with(_dispatch(ctx, Command.CONF, name))


@app.command("help")
def show_help(ctx: typer.Context) -> None:
    """Show the usage of every command."""
    result = _dispatch(ctx, Command.HELP)
    console.print("Usage:")
    if isinstance(result, list):
        for line in result:
            console.print(f"  {escape(str(line))}")


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
