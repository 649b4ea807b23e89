"""Worker process launching for single and parallel agent execution.

``build_spawn_command`` is pure and does no I/O. ``TerminalSpawner`` is the
thin runtime layer that materializes the terminal workdir and calls
``subprocess.Popen``. Nothing here waits for a process; supervision belongs to
``TerminalMonitor``.
"""

from __future__ import annotations

import itertools
import json
import logging
import os
import re
import subprocess
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from agent_waves.orchestrator.errors import (
    ProcessLaunchError,
    SpawnConfigError,
    WriteScopeConflictError,
)
from agent_waves.orchestrator.isolation import build_isolation_env, validate_write_scopes
from agent_waves.orchestrator.models import SpawnConfig, TerminalHandle, TerminalStatus
from agent_waves.orchestrator.providers import (
    DEFAULT_PROVIDER,
    PROVIDERS,
    ProviderDefinition,
    build_command,
    get_provider,
)
from agent_waves.orchestrator.workdir import TerminalWorkdirManager

logger = logging.getLogger(__name__)

_KILL_WAIT_SECONDS = 5.0
_UNSAFE_ID_CHARS = re.compile(r"[^\w.-]+")
_counter = itertools.count(1)


@dataclass(slots=True)
class SpawnCommand:
    """Everything needed to launch one terminal, before any I/O happens."""

    command: str
    args: list[str]
    env: dict[str, str]
    terminal_id: str
    provider: str
    prompt: str | None


@dataclass(slots=True)
class SpawnGroup:
    """Terminals launched together for one wave."""

    group_id: str
    terminals: list[TerminalHandle]
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(slots=True, frozen=True)
class KillResult:
    killed: bool
    exit_code: int | None


@dataclass(slots=True, frozen=True)
class TerminalStatusSnapshot:
    """Point-in-time view of a terminal for progress reporting."""

    id: str
    role: str
    model: str
    status: str
    elapsed_seconds: float
    exit_code: int | None


def generate_terminal_id(role: str) -> str:
    safe_role = _UNSAFE_ID_CHARS.sub("_", role) or "terminal"
    return f"{safe_role}-{int(time.time() * 1000)}-{next(_counter)}"


def reset_terminal_counter() -> None:
    """Restart terminal id numbering (tests only)."""

    global _counter  # noqa: PLW0603
    _counter = itertools.count(1)


def build_spawn_command(
    config: SpawnConfig,
    *,
    default_provider: str = DEFAULT_PROVIDER,
    providers: Mapping[str, ProviderDefinition] = PROVIDERS,
) -> SpawnCommand:
    """Resolve command line and isolation environment for one spawn config."""

    _validate_spawn_config(config)
    provider = get_provider(config.provider or default_provider, providers)
    terminal_id = generate_terminal_id(config.role)

    env = dict(config.env)
    env.update(build_isolation_env(config.role, write_scope=config.write_scope))
    env.update(
        {
            "AGENT_WAVES_TERMINAL_ID": terminal_id,
            "AGENT_WAVES_ROLE": config.role,
            "AGENT_WAVES_TASK_ID": config.task_id,
            "AGENT_WAVES_SPAWNED": "true",
        },
    )
    if config.context_payload is not None:
        env["AGENT_WAVES_CONTEXT"] = _serialize_context(config.context_payload)

    agent_command = build_command(config, provider)
    return SpawnCommand(
        command=agent_command.command,
        args=agent_command.args,
        env=env,
        terminal_id=terminal_id,
        provider=provider.name,
        prompt=agent_command.stdin_prompt,
    )


class TerminalSpawner:
    """Launch worker processes and hand back running terminal handles."""

    def __init__(
        self,
        *,
        workdir_manager: TerminalWorkdirManager,
        default_provider: str = DEFAULT_PROVIDER,
        base_env: Mapping[str, str] | None = None,
        providers: Mapping[str, ProviderDefinition] = PROVIDERS,
    ) -> None:
        self.workdir_manager = workdir_manager
        self.default_provider = default_provider
        self.providers = providers
        self.base_env = dict(os.environ if base_env is None else base_env)

    def spawn(self, config: SpawnConfig) -> TerminalHandle:
        """Launch one terminal; returns immediately with a running handle."""

        spawn_command = build_spawn_command(
            config,
            default_provider=self.default_provider,
            providers=self.providers,
        )
        cwd = _resolve_working_dir(config)

        workdir = self.workdir_manager.materialize(
            terminal_id=spawn_command.terminal_id,
            prompt=spawn_command.prompt,
        )
        env = {**self.base_env, **spawn_command.env}
        run_args = [spawn_command.command, *spawn_command.args]

        try:
            with (
                workdir.prompt_path.open("rb") as stdin_handle,
                workdir.stdout_path.open("wb") as stdout_handle,
                workdir.stderr_path.open("wb") as stderr_handle,
            ):
                process = subprocess.Popen(  # noqa: S603
                    run_args,
                    cwd=cwd,
                    env=env,
                    stdin=stdin_handle,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                )
        except FileNotFoundError as error:
            raise ProcessLaunchError(
                f"CLI command not found: {spawn_command.command}",
                command=spawn_command.command,
            ) from error
        except OSError as error:
            raise ProcessLaunchError(
                f"CLI command failed to start: {error}",
                command=spawn_command.command,
            ) from error

        logger.info(
            "Spawned terminal %s: role=%s task_id=%s provider=%s pid=%s",
            spawn_command.terminal_id,
            config.role,
            config.task_id,
            spawn_command.provider,
            process.pid,
        )
        return TerminalHandle(
            id=spawn_command.terminal_id,
            role=config.role,
            task_id=config.task_id,
            model=config.model or "unknown",
            provider=spawn_command.provider,
            process=process,
            timeout_seconds=config.timeout_seconds,
            stdout_path=workdir.stdout_path,
            stderr_path=workdir.stderr_path,
        )

    def spawn_group(self, configs: Sequence[SpawnConfig]) -> SpawnGroup:
        """Launch one terminal per config after validating the whole batch.

        Raises:
            SpawnConfigError: empty batch, a config is missing required fields or
                its working directory does not exist; nothing is launched.
            WriteScopeConflictError: two configs may write overlapping paths;
                nothing is launched.
            ProcessLaunchError: a process failed to start. Any failure after the
                first launch kills the terminals already started for this group
                before re-raising.
        """

        if not configs:
            raise SpawnConfigError("spawn_group requires a non-empty list of configs")
        for config in configs:
            _validate_spawn_config(config)
            get_provider(config.provider or self.default_provider, self.providers)
            _resolve_working_dir(config)

        validation = validate_write_scopes(configs)
        if not validation.valid:
            raise WriteScopeConflictError(validation.conflicts)

        group_id = f"group-{int(time.time() * 1000)}-{uuid4().hex[:8]}"
        terminals: list[TerminalHandle] = []
        try:
            for config in configs:
                terminals.append(self.spawn(config))
        except Exception:
            for terminal in terminals:
                kill_terminal(terminal)
            raise

        logger.info("Spawned group %s with %d terminal(s)", group_id, len(terminals))
        return SpawnGroup(group_id=group_id, terminals=terminals)


def kill_terminal(
    handle: TerminalHandle | None,
    *,
    exit_code_override: int | None = None,
) -> KillResult:
    """Force-kill a running terminal.

    A missing handle, a handle without a process, or an already exited
    terminal is left untouched and reported as not killed.
    """

    if handle is None:
        return KillResult(killed=False, exit_code=None)
    if handle.process is None or handle.status is TerminalStatus.EXITED:
        return KillResult(killed=False, exit_code=handle.exit_code)
    if handle.refresh():
        return KillResult(killed=False, exit_code=handle.exit_code)

    try:
        handle.process.kill()
    except OSError:
        logger.debug("Kill signal failed for terminal %s", handle.id, exc_info=True)
    try:
        returncode: int | None = handle.process.wait(timeout=_KILL_WAIT_SECONDS)
    except subprocess.TimeoutExpired:
        logger.warning("Terminal %s did not exit after kill", handle.id)
        returncode = handle.process.returncode

    handle.mark_exited(exit_code_override if exit_code_override is not None else returncode)
    return KillResult(killed=True, exit_code=handle.exit_code)


def get_terminal_status(handle: TerminalHandle) -> TerminalStatusSnapshot:
    return TerminalStatusSnapshot(
        id=handle.id,
        role=handle.role,
        model=handle.model,
        status=handle.status.value,
        elapsed_seconds=handle.elapsed_seconds(),
        exit_code=handle.exit_code,
    )


def _validate_spawn_config(config: SpawnConfig) -> None:
    if not isinstance(config.role, str) or not config.role.strip():
        raise SpawnConfigError("config.role is required and must be a non-empty string")
    if not isinstance(config.task_id, str) or not config.task_id.strip():
        raise SpawnConfigError("config.task_id is required and must be a non-empty string")
    if config.timeout_seconds <= 0:
        raise SpawnConfigError("config.timeout_seconds must be > 0")


def _resolve_working_dir(config: SpawnConfig) -> Path:
    cwd = config.working_dir or Path.cwd()
    if not cwd.is_dir():
        raise SpawnConfigError(f"Working directory does not exist: {cwd}")
    return cwd


def _serialize_context(payload: object) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        logger.warning("Context payload is not JSON serializable; sending empty object")
        return "{}"
