"""Tests for instance lifecycle operations with stub PostgreSQL binaries."""
from __future__ import annotations

import os
import threading
from collections.abc import Callable
from pathlib import Path

import pytest

from pgdev.config import AppConfig
from pgdev.errors import (
    AlreadyExistsError,
    ExternalProcessError,
    InstanceNotFound,
    NoInstanceSpecified,
    NotInitializedError,
    TemplateNotFound,
    UnsupportedCommand,
)
from pgdev.locking import LockTimeoutError
from pgdev.operations import InstanceOperations
from pgdev.providers import ServerState
from pgdev.registry import ActiveInstance, InstancePaths


@pytest.fixture
def stub_template(app_config: AppConfig, stub_bin: Path, write_executable: Callable) -> str:
    """An operator template whose build step installs the stub binaries."""
    template = app_config.templates_dir / "stubbed"
    write_executable(
        template / "01-core.configure.sh",
        '#!/bin/bash\necho "configure" >> "$PGDEV_INSTANCE_DIR/trace.log"\n',
    )
    write_executable(
        template / "01-core.build.sh",
        "#!/bin/bash\n"
        'mkdir -p "$PGDEV_INSTALL_DIR/bin"\n'
        f'cp -p "{stub_bin}"/* "$PGDEV_INSTALL_DIR/bin/"\n'
        'echo "requires_preload=pg_stat_statements" >> "$PGDEV_INSTANCE_DIR/pgdev.manifest"\n',
    )
    return "stubbed"


def test_new_scaffolds_from_builtin_template(
    operations: InstanceOperations,
    messages: list[str],
) -> None:
    """``new`` copies the bundled template into the instances root."""
    paths = operations.new("alpha", "postgres")

    assert (paths.root / "01-postgres.configure.sh").is_file()
    assert (paths.root / "01-postgres.build.sh").is_file()
    assert paths.manifest_file.is_file()
    assert any("Scaffolding new instance 'alpha'" in message for message in messages)


def test_new_rejects_existing_instance(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
) -> None:
    """Scaffolding onto an existing instance fails before resolving the template."""
    make_instance("alpha")

    with pytest.raises(AlreadyExistsError):
        operations.new("alpha", "does-not-exist")


def test_new_with_unknown_template_creates_nothing(operations: InstanceOperations) -> None:
    """An unknown template leaves no instance behind."""
    with pytest.raises(TemplateNotFound):
        operations.new("alpha", "nope")

    assert operations.registry.exists("alpha") is False


def test_setup_requires_existing_instance(operations: InstanceOperations) -> None:
    """Only existing instances can be built."""
    with pytest.raises(InstanceNotFound):
        operations.setup("ghost")


def test_init_writes_record_and_runtime_settings(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """``init`` runs initdb, appends runtime settings and persists the record."""
    paths = make_instance("alpha")
    install_stubs(paths)
    for library in ("postgis-3", "postgis-3", "pgrouting"):
        paths.manifest.append("requires_preload", library)

    result = operations.init("alpha")

    assert result.port == 5432
    assert result.version == "PostgreSQL 18.0"
    assert result.preload_libraries == ("postgis-3", "pgrouting")
    assert paths.config_store.read("port") == "5432"
    assert paths.config_store.read("version") == "PostgreSQL 18.0"
    server_conf = paths.server_conf.read_text(encoding="utf-8")
    assert server_conf.startswith("# stub postgresql.conf\n")
    assert "port = 5432" in server_conf
    assert "shared_preload_libraries = 'postgis-3,pgrouting'" in server_conf


def test_init_without_preload_omits_setting(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """No preload requirement means no preload line."""
    paths = make_instance("alpha")
    install_stubs(paths)

    operations.init("alpha")

    assert "shared_preload_libraries" not in paths.server_conf.read_text(encoding="utf-8")


def test_init_assigns_distinct_ports(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """Each initialised instance gets the next free port."""
    for name in ("alpha", "beta"):
        install_stubs(make_instance(name))

    assert operations.init("alpha").port == 5432
    assert operations.init("beta").port == 5433


def test_init_twice_is_rejected(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """An initialised instance keeps its record."""
    install_stubs(make_instance("alpha"))
    operations.init("alpha")

    with pytest.raises(AlreadyExistsError, match="already initialized"):
        operations.init("alpha")


def test_init_instance_named_like_global_lock(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """An instance called ``pgdev`` initialises without waiting on itself."""
    install_stubs(make_instance("pgdev"))
    operations.locks.default_timeout = 0.5

    assert operations.init("pgdev").port == 5432


def test_init_failing_pg_config_leaves_server_conf_untouched(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
    write_executable: Callable[[Path, str], Path],
) -> None:
    """The version is read before postgresql.conf is modified."""
    paths = make_instance("alpha")
    install_stubs(paths)
    write_executable(paths.bin_dir / "pg_config", "#!/bin/sh\nexit 1\n")

    with pytest.raises(ExternalProcessError):
        operations.init("alpha")

    assert paths.server_conf.read_text(encoding="utf-8") == "# stub postgresql.conf\n"
    assert not paths.config_store.exists()


def test_init_waits_for_global_lock(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """Port allocation cannot proceed while another process holds the global lock."""
    install_stubs(make_instance("alpha"))

    worker = InstanceOperations.from_config(
        operations.config,
        env=dict(os.environ),
        notify=lambda message: None,
    )
    worker.locks.default_timeout = 0.2

    with operations.locks.global_lock():
        with pytest.raises(LockTimeoutError):
            worker.init("alpha")

    assert not operations.registry.paths("alpha").config_store.exists()


def test_concurrent_inits_get_distinct_ports(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """Serialised allocation never hands the same port to two instances."""
    names = ["alpha", "beta", "gamma"]
    for name in names:
        install_stubs(make_instance(name))
    ports: dict[str, int] = {}
    errors: list[BaseException] = []

    def _init(name: str) -> None:
        worker = InstanceOperations.from_config(
            operations.config,
            env=dict(os.environ),
            notify=lambda message: None,
        )
        try:
            ports[name] = worker.init(name).port
        except BaseException as exc:  # pragma: no cover - surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=_init, args=(name,)) for name in names]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert sorted(ports.values()) == [5432, 5433, 5434]


def test_create_runs_full_lifecycle(
    operations: InstanceOperations,
    stub_template: str,
    messages: list[str],
) -> None:
    """``create`` scaffolds, builds, initialises and starts the instance."""
    result = operations.create("alpha", stub_template)

    assert [f"{step.component}:{step.step}" for step in result.steps] == [
        "01-core:configure",
        "01-core:build",
    ]
    assert result.init.port == 5432
    assert result.init.preload_libraries == ("pg_stat_statements",)
    assert result.start.status.state is ServerState.RUNNING
    assert "--- Running component: 01-core ---" in messages
    assert messages[-1] == "Instance 'alpha' created and running on port 5432."


def test_start_stop_status_use_active_instance(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """Instance-optional commands resolve through the active instance."""
    install_stubs(make_instance("alpha"))
    operations.init("alpha")
    active = ActiveInstance("alpha")

    assert operations.status(None, active).state is ServerState.STOPPED
    assert operations.start(None, active).changed is True
    assert operations.start(None, active).changed is False
    assert operations.status(None, active).pid == 4242
    assert operations.restart(None, active).changed is True
    assert operations.stop(None, active).changed is True
    assert operations.stop(None, active).changed is False


def test_commands_without_target_raise(operations: InstanceOperations) -> None:
    """No argument and no active instance is a usage error."""
    with pytest.raises(NoInstanceSpecified):
        operations.start(None, ActiveInstance())


def test_list_instances_marks_default(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    install_stubs: Callable[[InstancePaths], None],
) -> None:
    """Listing reports every instance with its status and the default marker."""
    install_stubs(make_instance("beta"))
    make_instance("alpha")
    operations.init("beta")
    operations.set_default("beta")

    summaries = operations.list_instances()

    assert [summary.name for summary in summaries] == ["alpha", "beta"]
    assert [summary.is_default for summary in summaries] == [False, True]
    assert summaries[0].status.state is ServerState.UNINITIALIZED
    assert summaries[1].status.port == 5432


def test_delete_and_switch_explain_alternatives(operations: InstanceOperations) -> None:
    """Unsupported commands carry guidance for the operator."""
    with pytest.raises(UnsupportedCommand) as deleted:
        operations.delete("alpha")
    assert any("alpha" in line for line in deleted.value.guidance)

    with pytest.raises(UnsupportedCommand, match="shell wrapper"):
        operations.switch("alpha")


def test_run_script_executes_single_step(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    write_executable: Callable[[Path, str], Path],
    messages: list[str],
) -> None:
    """Targeted steps run one script with the build environment."""
    paths = make_instance("alpha")
    write_executable(
        paths.root / "01-core.test.sh",
        '#!/bin/bash\necho "$PGDEV_SRC_DIR" > tested\n',
    )

    result = operations.run_script("alpha", "01-core", step="test")

    assert result.step == "test"
    assert (paths.root / "tested").read_text(encoding="utf-8").strip() == str(paths.src)
    assert any(message.startswith("Executing test script:") for message in messages)


def test_psql_requires_initialised_instance(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
) -> None:
    """psql needs the recorded port."""
    make_instance("alpha")

    with pytest.raises(NotInitializedError):
        operations.psql("alpha", ActiveInstance())


def test_psql_uses_recorded_port(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    write_executable: Callable[[Path, str], Path],
) -> None:
    """psql connects to the instance's port and the postgres database."""
    paths = make_instance("alpha")
    paths.config_store.write(5433, "18.0")
    write_executable(paths.bin_dir / "psql", f'#!/bin/sh\necho "$@" > "{paths.root}/psql.args"\n')

    assert operations.psql(None, ActiveInstance("alpha")) == 0

    assert (paths.root / "psql.args").read_text(encoding="utf-8").split() == [
        "-p",
        "5433",
        "-d",
        "postgres",
    ]


def test_conf_uses_configured_editor(
    app_config: AppConfig,
    make_instance: Callable[..., InstancePaths],
    write_executable: Callable[[Path, str], Path],
    tmp_path: Path,
) -> None:
    """The editor command receives postgresql.conf."""
    paths = make_instance("alpha")
    editor = write_executable(tmp_path / "editor", f'#!/bin/sh\necho "$1" > "{tmp_path}/edited"\n')
    operations = InstanceOperations.from_config(app_config, env={"EDITOR": str(editor)})

    operations.conf("alpha", ActiveInstance())

    assert (tmp_path / "edited").read_text(encoding="utf-8").strip() == str(paths.server_conf)


def test_interactive_exit_status_is_returned(
    operations: InstanceOperations,
    make_instance: Callable[..., InstancePaths],
    write_executable: Callable[[Path, str], Path],
) -> None:
    """A failing psql session reports its status instead of raising."""
    paths = make_instance("alpha")
    paths.config_store.write(5432, "18.0")
    write_executable(paths.bin_dir / "psql", "#!/bin/sh\nexit 3\n")

    assert operations.psql("alpha", ActiveInstance()) == 3
