from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from agent_waves.orchestrator.errors import (
    ProcessLaunchError,
    SpawnConfigError,
    UnknownProviderError,
    WriteScopeConflictError,
)
from agent_waves.orchestrator.isolation import READ_SCOPE_ENV, WRITE_SCOPE_ENV
from agent_waves.orchestrator.models import (
    TIMEOUT_EXIT_CODE,
    SpawnConfig,
    TerminalHandle,
    TerminalStatus,
)
from agent_waves.orchestrator.monitor import MonitorStatus, TerminalMonitor
from agent_waves.orchestrator.providers import apply_command_overrides
from agent_waves.orchestrator.spawner import (
    TerminalSpawner,
    build_spawn_command,
    get_terminal_status,
    kill_terminal,
)
from agent_waves.orchestrator.workdir import TerminalWorkdir, TerminalWorkdirManager

pytestmark = [
    allure.epic("Supervision"),
    allure.feature("Process spawning"),
]


def _config(project_dir: Path, role: str, task_id: str, **kwargs) -> SpawnConfig:
    kwargs.setdefault("prompt", f"Do {task_id}")
    kwargs.setdefault("timeout_seconds", 30.0)
    return SpawnConfig(role=role, task_id=task_id, working_dir=project_dir, **kwargs)


def _wait(*handles, timeout_seconds: float = 30.0) -> MonitorStatus:
    monitor = TerminalMonitor(poll_interval_seconds=0.05, timeout_seconds=timeout_seconds)
    for handle in handles:
        monitor.add_terminal(handle)
    return monitor.wait()


def test_spawn_command_carries_isolation_env() -> None:
    command = build_spawn_command(
        SpawnConfig(
            role="architect",
            task_id="arch-1",
            model="opus",
            prompt="Design it",
            context_payload={"mode": "plan"},
        ),
    )

    assert command.command == "claude"
    assert command.args == [
        "--print",
        "--dangerously-skip-permissions",
        "--model",
        "claude-opus-4-6",
    ]
    assert command.prompt == "Design it"
    assert command.terminal_id.startswith("architect-")
    assert command.env[WRITE_SCOPE_ENV] == "artifacts/3-Architecture/"
    assert command.env[READ_SCOPE_ENV] == "*"
    assert command.env["AGENT_WAVES_ROLE"] == "architect"
    assert command.env["AGENT_WAVES_TASK_ID"] == "arch-1"
    assert command.env["AGENT_WAVES_TERMINAL_ID"] == command.terminal_id
    assert command.env["AGENT_WAVES_SPAWNED"] == "true"
    assert json.loads(command.env["AGENT_WAVES_CONTEXT"]) == {"mode": "plan"}


def test_spawn_command_ids_are_unique_and_payload_is_optional() -> None:
    first = build_spawn_command(SpawnConfig(role="qa/impl", task_id="t1"))
    second = build_spawn_command(SpawnConfig(role="qa/impl", task_id="t1"))
    unserializable = build_spawn_command(
        SpawnConfig(role="dev", task_id="t2", context_payload=object()),
    )

    assert first.terminal_id != second.terminal_id
    assert first.terminal_id.startswith("qa_impl-")
    assert "AGENT_WAVES_CONTEXT" not in first.env
    assert unserializable.env["AGENT_WAVES_CONTEXT"] == "{}"


@pytest.mark.parametrize(
    ("config", "message"),
    [
        (SpawnConfig(role=" ", task_id="t1"), "config.role"),
        (SpawnConfig(role="dev", task_id=""), "config.task_id"),
        (SpawnConfig(role="dev", task_id="t1", timeout_seconds=0), "timeout_seconds"),
    ],
)
def test_invalid_spawn_config_is_rejected(config: SpawnConfig, message: str) -> None:
    with pytest.raises(SpawnConfigError, match=message):
        build_spawn_command(config)


def test_unknown_provider_is_rejected() -> None:
    with pytest.raises(UnknownProviderError):
        build_spawn_command(SpawnConfig(role="dev", task_id="t1", provider="cursor"))


def test_spawned_worker_receives_prompt_on_stdin(
    spawner: TerminalSpawner,
    project_dir: Path,
) -> None:
    handle = spawner.spawn(_config(project_dir, "dev", "t1", model="opus"))

    assert handle.status is TerminalStatus.RUNNING
    _wait(handle)

    assert handle.exit_code == 0
    assert handle.elapsed_seconds() >= 0
    assert "echo agent: role=dev task_id=t1 model=claude-opus-4-6" in handle.stdout
    assert "summary: Echoed t1 for dev (5 prompt chars)." in handle.stdout
    assert handle.stdout_path.read_text("utf-8") == handle.stdout
    assert (handle.stdout_path.parent / "prompt.txt").read_text("utf-8") == "Do t1"

    snapshot = get_terminal_status(handle)
    assert snapshot.id == handle.id
    assert snapshot.role == "dev"
    assert snapshot.status == "exited"
    assert snapshot.exit_code == 0


def test_group_runs_concurrently_with_disjoint_scopes(
    spawner: TerminalSpawner,
    project_dir: Path,
) -> None:
    group = spawner.spawn_group(
        [
            _config(project_dir, "detail", "prd"),
            _config(project_dir, "architect", "arch"),
            _config(project_dir, "ux", "ux"),
        ],
    )

    status = _wait(*group.terminals)

    assert group.group_id.startswith("group-")
    assert len({terminal.id for terminal in group.terminals}) == 3
    assert len(status.completed) == 3
    assert all("<agent-handoff>" in terminal.stdout for terminal in group.terminals)


def test_conflicting_group_is_rejected_before_launch(
    spawner: TerminalSpawner,
    project_dir: Path,
) -> None:
    with pytest.raises(WriteScopeConflictError, match="dev:api vs dev:ui") as error:
        spawner.spawn_group(
            [
                _config(project_dir, "dev", "api", write_scope=("src/",)),
                _config(project_dir, "dev", "ui", write_scope=("src/app/",)),
            ],
        )

    assert len(error.value.conflicts) == 1
    assert not spawner.workdir_manager.root_dir.exists()


def test_empty_group_is_rejected(spawner: TerminalSpawner) -> None:
    with pytest.raises(SpawnConfigError, match="non-empty"):
        spawner.spawn_group([])


def test_missing_working_dir_is_rejected(spawner: TerminalSpawner, tmp_path: Path) -> None:
    with pytest.raises(SpawnConfigError, match="Working directory does not exist"):
        spawner.spawn(_config(tmp_path / "missing", "dev", "t1"))


class _RecordingSpawner(TerminalSpawner):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.launched: list[TerminalHandle] = []

    def spawn(self, config: SpawnConfig) -> TerminalHandle:
        handle = super().spawn(config)
        self.launched.append(handle)
        return handle


class _FailingWorkdirManager(TerminalWorkdirManager):
    def __init__(self, root_dir: Path, *, fail_on_call: int) -> None:
        super().__init__(root_dir)
        self.fail_on_call = fail_on_call
        self.calls = 0

    def materialize(self, *, terminal_id: str, prompt: str | None) -> TerminalWorkdir:
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise OSError("disk full")
        return super().materialize(terminal_id=terminal_id, prompt=prompt)


def _sleeping_config(project_dir: Path, role: str, task_id: str, **kwargs) -> SpawnConfig:
    return _config(
        project_dir,
        role,
        task_id,
        env={"AGENT_WAVES_ECHO_SLEEP_SECONDS": "30"},
        **kwargs,
    )


def test_group_with_missing_working_dir_launches_nothing(
    tmp_path: Path,
    echo_providers,
    project_dir: Path,
) -> None:
    spawner = _RecordingSpawner(
        workdir_manager=TerminalWorkdirManager(tmp_path / "runs"),
        providers=echo_providers,
    )

    with pytest.raises(SpawnConfigError, match="Working directory does not exist"):
        spawner.spawn_group(
            [
                _sleeping_config(project_dir, "detail", "a"),
                _config(tmp_path / "missing", "ux", "b"),
            ],
        )

    assert spawner.launched == []
    assert not spawner.workdir_manager.root_dir.exists()


def test_group_launch_failure_kills_started_terminals(
    tmp_path: Path,
    echo_providers,
    project_dir: Path,
) -> None:
    providers = apply_command_overrides(
        {"gemini": str(tmp_path / "no-such-agent")},
        echo_providers,
    )
    spawner = _RecordingSpawner(
        workdir_manager=TerminalWorkdirManager(tmp_path / "runs"),
        providers=providers,
    )

    with pytest.raises(ProcessLaunchError, match="CLI command not found"):
        spawner.spawn_group(
            [
                _sleeping_config(project_dir, "detail", "a"),
                _config(project_dir, "ux", "b", provider="gemini"),
            ],
        )

    assert [handle.task_id for handle in spawner.launched] == ["a"]
    started = spawner.launched[0]
    assert started.status is TerminalStatus.EXITED
    assert started.process.poll() is not None


def test_group_workdir_failure_kills_started_terminals(
    tmp_path: Path,
    echo_providers,
    project_dir: Path,
) -> None:
    spawner = _RecordingSpawner(
        workdir_manager=_FailingWorkdirManager(tmp_path / "runs", fail_on_call=2),
        providers=echo_providers,
    )

    with pytest.raises(OSError, match="disk full"):
        spawner.spawn_group(
            [
                _sleeping_config(project_dir, "detail", "a"),
                _sleeping_config(project_dir, "ux", "b"),
            ],
        )

    assert len(spawner.launched) == 1
    assert spawner.launched[0].status is TerminalStatus.EXITED
    assert spawner.launched[0].process.poll() is not None


def test_missing_executable_raises_launch_error(tmp_path: Path, project_dir: Path) -> None:
    spawner = TerminalSpawner(
        workdir_manager=TerminalWorkdirManager(tmp_path / "runs"),
        providers=apply_command_overrides({"claude": str(tmp_path / "no-such-agent")}),
    )

    with pytest.raises(ProcessLaunchError, match="CLI command not found") as error:
        spawner.spawn(_config(project_dir, "dev", "t1"))

    assert error.value.command == str(tmp_path / "no-such-agent")


def test_timeout_kills_only_the_slow_terminal(
    spawner: TerminalSpawner,
    project_dir: Path,
) -> None:
    group = spawner.spawn_group(
        [
            _config(project_dir, "detail", "fast"),
            _config(
                project_dir,
                "ux",
                "slow",
                timeout_seconds=1.0,
                env={"AGENT_WAVES_ECHO_SLEEP_SECONDS": "30"},
            ),
        ],
    )
    fast, slow = group.terminals
    monitor = TerminalMonitor(poll_interval_seconds=0.05, timeout_seconds=30.0)
    completions: list[MonitorStatus] = []
    failures = []
    for terminal in group.terminals:
        monitor.add_terminal(terminal)
    monitor.on_complete(completions.append)
    monitor.on_failure(failures.append)

    monitor.wait()

    assert fast.exit_code == 0
    assert slow.exit_code == TIMEOUT_EXIT_CODE
    assert slow.timed_out
    assert "timeout: terminal exceeded its limit" in slow.stderr
    assert slow.elapsed_seconds() < 15
    assert failures == [slow]
    assert len(completions) == 1


def test_kill_terminal_is_safe_on_exited_and_missing_handles(
    spawner: TerminalSpawner,
    project_dir: Path,
) -> None:
    handle = spawner.spawn(_config(project_dir, "dev", "t1"))
    _wait(handle)

    result = kill_terminal(handle)

    assert result.killed is False
    assert result.exit_code == 0
    assert handle.exit_code == 0
    assert kill_terminal(None).killed is False


def test_kill_terminal_stops_running_process(
    spawner: TerminalSpawner,
    project_dir: Path,
) -> None:
    handle = spawner.spawn(
        _config(project_dir, "dev", "t1", env={"AGENT_WAVES_ECHO_SLEEP_SECONDS": "30"}),
    )

    result = kill_terminal(handle)

    assert result.killed is True
    assert result.exit_code not in (0, None)
    assert handle.status is TerminalStatus.EXITED
