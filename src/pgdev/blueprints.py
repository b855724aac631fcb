"""Blueprint discovery and execution.

An instance directory holds blueprint scripts named
``<order-prefix>-<component>.<step>.sh`` where ``step`` is ``configure``,
``build`` or ``test``. ``setup`` runs every component's configure and build
steps in the order given by :func:`component_sort_key`, stopping at the first
failure. Each script runs in its own child process with the instance paths
exported only to that child.
"""
from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import (
    ExternalProcessError,
    IncompleteComponentError,
    NoComponentsError,
    ScriptNotFound,
)
from .registry import InstancePaths

LOGGER = logging.getLogger(__name__)

STEP_CONFIGURE = "configure"
STEP_BUILD = "build"
STEP_TEST = "test"
STEPS = (STEP_CONFIGURE, STEP_BUILD, STEP_TEST)


def step_suffix(step: str) -> str:
    """Return the filename suffix for *step* (``.build.sh`` etc.)."""
    return f".{step}.sh"


@dataclass(frozen=True, slots=True)
class BuildContext:
    """Paths handed to blueprint scripts through their environment."""

    instance_dir: Path
    install_dir: Path
    src_dir: Path

    @classmethod
    def for_instance(cls, paths: InstancePaths) -> BuildContext:
        """Build the context for an instance."""
        return cls(instance_dir=paths.root, install_dir=paths.install, src_dir=paths.src)

    def environment(self) -> dict[str, str]:
        """Return the variables exported to each script."""
        return {
            "PGDEV_INSTANCE_DIR": str(self.instance_dir),
            "PGDEV_INSTALL_DIR": str(self.install_dir),
            "PGDEV_SRC_DIR": str(self.src_dir),
        }


@dataclass(frozen=True, slots=True)
class BlueprintComponent:
    """One buildable component and its step scripts."""

    name: str
    configure: Path
    build: Path | None = None
    test: Path | None = None

    def pipeline_steps(self) -> list[tuple[str, Path]]:
        """Return the steps ``setup`` runs, failing when the build step is missing."""
        if self.build is None:
            expected = self.configure.with_name(f"{self.name}{step_suffix(STEP_BUILD)}")
            raise IncompleteComponentError(
                f"Build script '{expected}' not found for component '{self.name}'."
            )
        return [(STEP_CONFIGURE, self.configure), (STEP_BUILD, self.build)]


def component_sort_key(component: BlueprintComponent) -> str:
    """Order components by base name; numeric prefixes therefore set build order."""
    return component.name


def discover_components(instance_dir: Path) -> list[BlueprintComponent]:
    """Return the components found directly inside *instance_dir*, in build order.

    Only configure scripts define a component. A missing build step is recorded
    as ``None`` so the error surfaces when that component is reached.
    """
    configure_suffix = step_suffix(STEP_CONFIGURE)
    components: list[BlueprintComponent] = []
    if not instance_dir.is_dir():
        return components
    for candidate in instance_dir.iterdir():
        if not candidate.is_file() or not candidate.name.endswith(configure_suffix):
            continue
        name = candidate.name[: -len(configure_suffix)]
        if not name:
            continue
        build = instance_dir / f"{name}{step_suffix(STEP_BUILD)}"
        test = instance_dir / f"{name}{step_suffix(STEP_TEST)}"
        components.append(
            BlueprintComponent(
                name=name,
                configure=candidate,
                build=build if build.is_file() else None,
                test=test if test.is_file() else None,
            )
        )
    components.sort(key=component_sort_key)
    return components


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one blueprint script run."""

    component: str
    step: str
    script: Path
    returncode: int


StepCallback = Callable[[str, str, Path], None]


@dataclass(slots=True)
class BlueprintOrchestrator:
    """Run blueprint scripts as child processes."""

    shell: str = "bash"
    base_env: Mapping[str, str] | None = None

    def setup(
        self,
        paths: InstancePaths,
        *,
        on_step: StepCallback | None = None,
    ) -> list[StepResult]:
        """Run configure then build for every component, in order, failing fast."""
        context = self._prepare(paths)
        components = discover_components(paths.root)
        if not components:
            raise NoComponentsError(
                f"No '{step_suffix(STEP_CONFIGURE)}' blueprint scripts found in {paths.root}."
            )

        results: list[StepResult] = []
        for component in components:
            steps = component.pipeline_steps()
            LOGGER.info("Running component %s", component.name)
            for step, script in steps:
                if on_step is not None:
                    on_step(component.name, step, script)
                results.append(self._run(component.name, step, script, context))
        return results

    def run_single(
        self,
        paths: InstancePaths,
        script: str | Path,
        *,
        step: str | None = None,
        on_step: StepCallback | None = None,
    ) -> StepResult:
        """Run one script outside the pipeline (targeted configure/build/test)."""
        context = self._prepare(paths)
        resolved = resolve_script(paths, script, step=step)
        component, detected_step = _split_script_name(resolved.name)
        effective_step = step or detected_step
        if on_step is not None:
            on_step(component, effective_step, resolved)
        return self._run(component, effective_step, resolved, context)

    def _prepare(self, paths: InstancePaths) -> BuildContext:
        context = BuildContext.for_instance(paths)
        context.src_dir.mkdir(parents=True, exist_ok=True)
        return context

    def _run(self, component: str, step: str, script: Path, context: BuildContext) -> StepResult:
        env = dict(os.environ if self.base_env is None else self.base_env)
        env.update(context.environment())
        args = [self.shell, str(script)]
        LOGGER.debug("Executing %s step for %s: %s", step, component, script)
        try:
            completed = subprocess.run(  # noqa: S603
                args,
                cwd=str(context.instance_dir),
                env=env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ExternalProcessError(args, 127, f"{self.shell} not found: {exc}") from exc
        if completed.returncode != 0:
            raise ExternalProcessError(args, completed.returncode, f"{step} step of {component}")
        return StepResult(
            component=component,
            step=step,
            script=script,
            returncode=completed.returncode,
        )


def resolve_script(paths: InstancePaths, script: str | Path, *, step: str | None = None) -> Path:
    """Locate *script* for an instance.

    Absolute paths are used as given. Relative paths are looked up in the
    instance directory first and then in the current working directory. When
    *step* is given, a bare component name such as ``01-postgres`` expands to
    ``01-postgres.<step>.sh``.
    """
    raw = Path(script).expanduser()
    candidates: list[Path] = []
    names = [raw]
    if step is not None and not raw.name.endswith(".sh"):
        names.append(raw.with_name(f"{raw.name}{step_suffix(step)}"))
    for name in names:
        if name.is_absolute():
            candidates.append(name)
        else:
            candidates.append(paths.root / name)
            candidates.append(Path.cwd() / name)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    raise ScriptNotFound(f"Script '{script}' not found for instance '{paths.name}'.")


def _split_script_name(filename: str) -> tuple[str, str]:
    for step in STEPS:
        suffix = step_suffix(step)
        if filename.endswith(suffix):
            return filename[: -len(suffix)], step
    return filename, "script"


__all__ = [
    "BlueprintComponent",
    "BlueprintOrchestrator",
    "BuildContext",
    "STEPS",
    "STEP_BUILD",
    "STEP_CONFIGURE",
    "STEP_TEST",
    "StepResult",
    "component_sort_key",
    "discover_components",
    "resolve_script",
]
