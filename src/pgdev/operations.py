"""Instance lifecycle operations composed from the pgdev components.

:class:`InstanceOperations` is the single object the dispatcher talks to. It
owns the registry, the blueprint orchestrator, the port allocator, the
process controller and the toolchain wrapper, and sequences them for each
command. Progress messages go through ``notify`` so the CLI can colour them
while tests can collect them.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .blueprints import BlueprintOrchestrator, StepResult
from .config import AppConfig
from .errors import AlreadyExistsError, UnsupportedCommand
from .locking import LockManager
from .ports import PortAllocator
from .providers import ControlResult, PgCtlProvider, PostgresToolchain, ServerStatus
from .registry import ActiveInstance, InstancePaths, InstanceRegistry
from .templates import TemplateCatalog, TemplateEngine

LOGGER = logging.getLogger(__name__)

Notifier = Callable[[str], None]


def _log_notify(message: str) -> None:
    LOGGER.info("%s", message)


@dataclass(frozen=True, slots=True)
class InitResult:
    """Outcome of ``init``."""

    paths: InstancePaths
    port: int
    version: str
    preload_libraries: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CreateResult:
    """Outcome of ``create`` (scaffold, build, init and start)."""

    paths: InstancePaths
    steps: tuple[StepResult, ...]
    init: InitResult
    start: ControlResult


@dataclass(frozen=True, slots=True)
class InstanceSummary:
    """One row of ``list`` output."""

    name: str
    is_default: bool
    status: ServerStatus


@dataclass(slots=True)
class InstanceOperations:
    """Lifecycle operations over the instances root."""

    config: AppConfig
    registry: InstanceRegistry
    catalog: TemplateCatalog
    orchestrator: BlueprintOrchestrator
    ports: PortAllocator
    controller: PgCtlProvider
    toolchain: PostgresToolchain
    locks: LockManager
    notify: Notifier = field(default=_log_notify)

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        env: Mapping[str, str] | None = None,
        notify: Notifier | None = None,
    ) -> InstanceOperations:
        """Wire every component from *config*."""
        registry = InstanceRegistry(config.instances_dir, default_link=config.default_link)
        return cls(
            config=config,
            registry=registry,
            catalog=TemplateCatalog.with_overrides(config.templates_dir),
            orchestrator=BlueprintOrchestrator(shell=config.shell, base_env=env),
            ports=PortAllocator(
                registry=registry,
                base_port=config.ports.base,
                max_port=config.ports.max,
            ),
            controller=PgCtlProvider(),
            toolchain=PostgresToolchain(
                templates=TemplateEngine.with_overrides(config.templates_dir),
                initdb_args=config.server.initdb_args,
                editor=config.editor,
                env=env,
            ),
            locks=LockManager(config.runtime_dir, config.lock_timeout),
            notify=notify or _log_notify,
        )

    # Creation & setup -------------------------------------------------
    def new(self, name: str, template: str) -> InstancePaths:
        """Scaffold instance *name* from *template*."""
        if self.registry.exists(name):
            raise AlreadyExistsError(f"Instance '{name}' already exists.")
        template_dir = self.catalog.resolve(template)
        self.notify(f"Scaffolding new instance '{name}' from template '{template}'...")
        paths = self.registry.scaffold(name, template_dir)
        self.notify(f"Instance scaffolding complete at: {paths.root}")
        return paths

    def setup(self, name: str) -> list[StepResult]:
        """Run the full blueprint pipeline for *name*."""
        paths = self.registry.validate(name)
        self.notify(f"Beginning setup for instance '{paths.name}'...")
        with self.locks.instance_lock(paths.name):
            results = self.orchestrator.setup(paths, on_step=self._announce_step)
        self.notify(f"Setup for instance '{paths.name}' is complete.")
        return results

    def init(self, name: str) -> InitResult:
        """Create the cluster, allocate a port, and persist the Config Record."""
        paths = self.registry.validate(name)
        if paths.config_store.exists():
            raise AlreadyExistsError(f"Instance '{paths.name}' is already initialized.")
        with self.locks.instance_lock(paths.name):
            self.notify("Initializing database cluster...")
            self.toolchain.initdb(paths)

        self.notify("Performing runtime configuration...")
        libraries = paths.manifest.collect_preload_libraries()
        # Port choice and the Config Record write happen under one global lock.
        with self.locks.mutate_instances([paths.name]) as bundle:
            LOGGER.debug("Waited %d ms for port allocation locks", bundle.wait_ms)
            port = self.ports.allocate()
            # Query the version first so a failing pg_config leaves postgresql.conf untouched.
            version = self.toolchain.version(paths)
            if libraries:
                self.notify(f"Configuring shared_preload_libraries: {','.join(libraries)}")
            self.toolchain.apply_runtime_settings(
                paths,
                port=port,
                preload_libraries=libraries,
            )
            self.notify("Writing final instance configuration...")
            paths.config_store.write(port, version)
        return InitResult(
            paths=paths,
            port=port,
            version=version,
            preload_libraries=tuple(libraries),
        )

    def create(self, name: str, template: str) -> CreateResult:
        """Scaffold, build, initialise and start a new instance."""
        paths = self.new(name, template)
        steps = self.setup(paths.name)
        init_result = self.init(paths.name)
        start_result = self.controller.start(paths)
        self.notify(
            f"Instance '{paths.name}' created and running on port {init_result.port}."
        )
        return CreateResult(
            paths=paths,
            steps=tuple(steps),
            init=init_result,
            start=start_result,
        )

    def delete(self, name: str) -> None:
        """Deleting instances is not supported; explain the manual procedure."""
        target = self.config.instances_dir / (name.strip() or "<name>")
        raise UnsupportedCommand(
            "Command not available yet.",
            guidance=[
                f"To fully delete the instance, stop it and remove {target} manually.",
                "Do not forget to update the default instance if you just deleted it.",
            ],
        )

    # Daily management -------------------------------------------------
    def start(self, name: str | None, active: ActiveInstance) -> ControlResult:
        """Start the resolved instance."""
        paths = self.registry.resolve(name, active)
        self.notify(f"Starting instance '{paths.name}'...")
        return self.controller.start(paths)

    def stop(self, name: str | None, active: ActiveInstance) -> ControlResult:
        """Stop the resolved instance."""
        paths = self.registry.resolve(name, active)
        self.notify(f"Stopping instance '{paths.name}'...")
        return self.controller.stop(paths)

    def restart(self, name: str | None, active: ActiveInstance) -> ControlResult:
        """Restart the resolved instance unconditionally."""
        paths = self.registry.resolve(name, active)
        self.notify(f"Restarting instance '{paths.name}'...")
        return self.controller.restart(paths)

    def status(self, name: str | None, active: ActiveInstance) -> ServerStatus:
        """Return the server status of the resolved instance."""
        paths = self.registry.resolve(name, active)
        return self.controller.status(paths)

    def list_instances(self) -> list[InstanceSummary]:
        """Return a summary for every instance directory."""
        default_name = self.registry.default_instance()
        summaries: list[InstanceSummary] = []
        for name in self.registry.names():
            paths = self.registry.paths(name)
            summaries.append(
                InstanceSummary(
                    name=name,
                    is_default=name == default_name,
                    status=self.controller.status(paths),
                )
            )
        return summaries

    # Shell environment -------------------------------------------------
    def switch(self, name: str | None) -> None:
        """Switching mutates the calling shell and is left to the shell wrapper."""
        raise UnsupportedCommand(
            "'switch' must be handled by the pgdev shell wrapper because it modifies "
            "environment variables.",
            guidance=["Source the shell integration and run 'pgdev switch <name>' from it."],
        )

    def set_default(self, name: str) -> InstancePaths:
        """Make *name* the default instance for new shells."""
        paths = self.registry.set_default(name)
        self.notify(f"Default instance set to '{paths.name}'.")
        return paths

    # Development & interaction ----------------------------------------
    def run_script(self, name: str, script: str | Path, *, step: str | None = None) -> StepResult:
        """Run a single blueprint script for instance *name*."""
        paths = self.registry.validate(name)
        with self.locks.instance_lock(paths.name):
            return self.orchestrator.run_single(
                paths,
                script,
                step=step,
                on_step=self._announce_step,
            )

    def psql(
        self,
        name: str | None,
        active: ActiveInstance,
        extra: Sequence[str] = (),
    ) -> int:
        """Open ``psql`` against the resolved instance."""
        paths = self.registry.resolve(name, active)
        port = int(paths.config_store.read("port"))
        return self.toolchain.exec_interactive(self.toolchain.psql_command(paths, port, extra))

    def logs(self, name: str | None, active: ActiveInstance, *, follow: bool = True) -> int:
        """Tail the server log of the resolved instance."""
        paths = self.registry.resolve(name, active)
        command = self.toolchain.logs_command(
            paths,
            lines=self.config.server.log_tail_lines,
            follow=follow,
        )
        return self.toolchain.exec_interactive(command)

    def conf(self, name: str | None, active: ActiveInstance) -> int:
        """Open the resolved instance's ``postgresql.conf`` in an editor."""
        paths = self.registry.resolve(name, active)
        return self.toolchain.exec_interactive(self.toolchain.editor_command(paths))

    # ------------------------------------------------------------------
    def _announce_step(self, component: str, step: str, script: Path) -> None:
        if step == "configure":
            self.notify(f"--- Running component: {component} ---")
        self.notify(f"Executing {step} script: {script}")


__all__ = ["CreateResult", "InitResult", "InstanceOperations", "InstanceSummary"]
