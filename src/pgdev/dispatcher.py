"""Command dispatch: a closed set of commands mapped to lifecycle operations.

Command names are parsed into :class:`Command` up front, so an unknown name
is a usage error before anything runs. Each command declares how many
positional arguments it takes; a mismatch is reported with the command's
usage line and leaves all state untouched.
"""
from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from .blueprints import STEP_BUILD, STEP_CONFIGURE, STEP_TEST
from .errors import UsageError
from .operations import InstanceOperations
from .registry import ActiveInstance


class Command(str, Enum):
    """Every command pgdev understands."""

    NEW = "new"
    SETUP = "setup"
    INIT = "init"
    CREATE = "create"
    DELETE = "delete"
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    STATUS = "status"
    LIST = "list"
    SWITCH = "switch"
    DEFAULT = "default"
    CONFIGURE = "configure"
    BUILD = "build"
    TEST = "test"
    PSQL = "psql"
    LOGS = "logs"
    CONF = "conf"
    HELP = "help"


ALIASES: dict[str, Command] = {
    "ls": Command.LIST,
    "-h": Command.HELP,
    "--help": Command.HELP,
}


def parse_command(text: str) -> Command:
    """Return the :class:`Command` for *text*, raising :class:`UsageError` if unknown."""
    normalized = text.strip().lower()
    if normalized in ALIASES:
        return ALIASES[normalized]
    try:
        return Command(normalized)
    except ValueError:
        raise UsageError(f"Unknown command '{text}'.") from None


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Arity and usage text for a command."""

    usage: str
    min_args: int
    max_args: int

    def check(self, command: Command, args: Sequence[str]) -> None:
        """Raise :class:`UsageError` when *args* has the wrong length."""
        if not self.min_args <= len(args) <= self.max_args:
            raise UsageError(f"Usage: pgdev {self.usage}")


COMMAND_SPECS: dict[Command, CommandSpec] = {
    Command.NEW: CommandSpec("new <instance_name> <template_name>", 2, 2),
    Command.SETUP: CommandSpec("setup <instance_name>", 1, 1),
    Command.INIT: CommandSpec("init <instance_name>", 1, 1),
    Command.CREATE: CommandSpec("create <instance_name> <template_name>", 2, 2),
    Command.DELETE: CommandSpec("delete <instance_name>", 0, 1),
    Command.START: CommandSpec("start [instance_name]", 0, 1),
    Command.STOP: CommandSpec("stop [instance_name]", 0, 1),
    Command.RESTART: CommandSpec("restart [instance_name]", 0, 1),
    Command.STATUS: CommandSpec("status [instance_name]", 0, 1),
    Command.LIST: CommandSpec("list", 0, 0),
    Command.SWITCH: CommandSpec("switch <instance_name|default|off>", 0, 1),
    Command.DEFAULT: CommandSpec("default <instance_name>", 1, 1),
    Command.CONFIGURE: CommandSpec("configure <instance_name> <component_script>", 2, 2),
    Command.BUILD: CommandSpec("build <instance_name> <component_script>", 2, 2),
    Command.TEST: CommandSpec("test <instance_name> <component_script>", 2, 2),
    Command.PSQL: CommandSpec("psql [instance_name]", 0, 1),
    Command.LOGS: CommandSpec("logs [instance_name]", 0, 1),
    Command.CONF: CommandSpec("conf [instance_name]", 0, 1),
    Command.HELP: CommandSpec("help", 0, 0),
}

_SCRIPT_STEPS = {
    Command.CONFIGURE: STEP_CONFIGURE,
    Command.BUILD: STEP_BUILD,
    Command.TEST: STEP_TEST,
}


def usage_lines() -> list[str]:
    """Return the usage line of every command in declaration order."""
    return [f"pgdev {COMMAND_SPECS[command].usage}" for command in Command]


Handler = Callable[[Sequence[str]], object]


class CommandDispatcher:
    """Route parsed commands to :class:`InstanceOperations`."""

    def __init__(self, operations: InstanceOperations, active: ActiveInstance) -> None:
        """Bind the operations and the active instance read at startup."""
        self.operations = operations
        self.active = active
        self._handlers: dict[Command, Handler] = {
            Command.NEW: lambda args: operations.new(args[0], args[1]),
            Command.SETUP: lambda args: operations.setup(args[0]),
            Command.INIT: lambda args: operations.init(args[0]),
            Command.CREATE: lambda args: operations.create(args[0], args[1]),
            Command.DELETE: lambda args: operations.delete(_optional(args) or ""),
            Command.START: lambda args: operations.start(_optional(args), self.active),
            Command.STOP: lambda args: operations.stop(_optional(args), self.active),
            Command.RESTART: lambda args: operations.restart(_optional(args), self.active),
            Command.STATUS: lambda args: operations.status(_optional(args), self.active),
            Command.LIST: lambda args: operations.list_instances(),
            Command.SWITCH: lambda args: operations.switch(_optional(args)),
            Command.DEFAULT: lambda args: operations.set_default(args[0]),
            Command.CONFIGURE: self._script_handler(Command.CONFIGURE),
            Command.BUILD: self._script_handler(Command.BUILD),
            Command.TEST: self._script_handler(Command.TEST),
            Command.PSQL: lambda args: operations.psql(_optional(args), self.active),
            Command.LOGS: lambda args: operations.logs(_optional(args), self.active),
            Command.CONF: lambda args: operations.conf(_optional(args), self.active),
            Command.HELP: lambda args: usage_lines(),
        }
        missing = set(Command) - set(self._handlers)
        if missing:  # pragma: no cover - guards edits to the table above
            names = ", ".join(sorted(command.value for command in missing))
            raise RuntimeError(f"Commands without handlers: {names}")

    def dispatch(self, command: Command | str, args: Sequence[str] = ()) -> object:
        """Validate *args* for *command* and run its handler."""
        parsed = command if isinstance(command, Command) else parse_command(command)
        arguments = [str(arg) for arg in args]
        COMMAND_SPECS[parsed].check(parsed, arguments)
        return self._handlers[parsed](arguments)

    def _script_handler(self, command: Command) -> Handler:
        step = _SCRIPT_STEPS[command]
        return lambda args: self.operations.run_script(args[0], args[1], step=step)


def _optional(args: Sequence[str]) -> str | None:
    return args[0] if args else None


__all__ = [
    "COMMAND_SPECS",
    "Command",
    "CommandDispatcher",
    "CommandSpec",
    "parse_command",
    "usage_lines",
]
