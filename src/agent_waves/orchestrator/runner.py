"""Caller-facing orchestration API.

``Orchestrator`` wires settings, routing, prompt building, spawning and
supervision together. The low-level steps (``analyze_waves``, ``spawn_group``,
``await_group``, ``collect_and_merge``) stay public so callers can drive a
wave by hand and apply their own retry policy between waves.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from agent_waves.config import Settings
from agent_waves.orchestrator.collector import (
    build_consolidated_handoff,
    collect_results,
    collect_terminal_result,
    determine_next_role,
    merge_handoffs,
    validate_results,
)
from agent_waves.orchestrator.errors import ConfigurationError, WriteScopeConflictError
from agent_waves.orchestrator.isolation import validate_write_scopes
from agent_waves.orchestrator.models import (
    ConsolidatedHandoff,
    HandoffStatus,
    SpawnConfig,
    TaskNode,
    TerminalHandle,
    TerminalResult,
    Wave,
)
from agent_waves.orchestrator.monitor import MonitorStatus, TerminalMonitor
from agent_waves.orchestrator.prompts import (
    ContextAssembler,
    DirectoryContextAssembler,
    PromptBuilder,
    PromptRequest,
)
from agent_waves.orchestrator.routing import RoutingDefaults
from agent_waves.orchestrator.session import SessionState, load_session_state
from agent_waves.orchestrator.spawner import SpawnGroup, TerminalSpawner
from agent_waves.orchestrator.waves import analyze_waves
from agent_waves.orchestrator.workdir import TerminalWorkdirManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AgentRun:
    """One worker to launch: role, task and optional per-run overrides."""

    role: str
    task_id: str
    provider: str | None = None
    model: str | None = None
    additional_context: str | None = None
    write_scope: tuple[str, ...] | None = None
    timeout_seconds: float | None = None
    env: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class AgentRunResult:
    """Outcome of a single-worker run."""

    result: TerminalResult
    provider: str
    prompt_chars: int

    @property
    def is_complete(self) -> bool:
        return self.result.status is HandoffStatus.COMPLETE


@dataclass(slots=True)
class PlanRunResult:
    """Outcome of running a whole task graph wave by wave."""

    waves: list[Wave]
    handoffs: list[ConsolidatedHandoff] = field(default_factory=list)

    @property
    def final_handoff(self) -> ConsolidatedHandoff | None:
        return self.handoffs[-1] if self.handoffs else None

    @property
    def is_complete(self) -> bool:
        if len(self.handoffs) != len(self.waves):
            return False
        return all(handoff.is_complete for handoff in self.handoffs)


class Orchestrator:
    """Run workers and waves of workers for one project."""

    def __init__(
        self,
        *,
        settings: Settings,
        context_assembler: ContextAssembler | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        self.settings = settings
        self.routing = RoutingDefaults.from_settings(settings.orchestrator)
        self.project_dir = settings.project_dir
        self.spawner = TerminalSpawner(
            workdir_manager=TerminalWorkdirManager(settings.orchestrator.runs_dir),
            default_provider=self.routing.primary_provider,
            base_env=base_env,
            providers=self.routing.providers,
        )
        self.prompt_builder = PromptBuilder(
            project_dir=self.project_dir,
            routing=self.routing,
            context_assembler=(
                context_assembler
                if context_assembler is not None
                else DirectoryContextAssembler(
                    settings.resolve_project_path(settings.session.context_dir),
                )
            ),
        )

    def load_session(self) -> SessionState:
        return load_session_state(
            self.settings.resolve_project_path(self.settings.session.session_file),
        )

    def analyze_waves(self, tasks: Sequence[TaskNode]) -> list[Wave]:
        return analyze_waves(tasks)

    def spawn_group(self, configs: Sequence[SpawnConfig]) -> SpawnGroup:
        return self.spawner.spawn_group(configs)

    def await_group(
        self,
        terminals: Sequence[TerminalHandle],
        *,
        timeout_seconds: float | None = None,
        on_progress: Callable[[MonitorStatus], None] | None = None,
    ) -> MonitorStatus:
        """Block until every terminal exited; returns the final monitor status."""

        orchestrator_settings = self.settings.orchestrator
        monitor = TerminalMonitor(
            poll_interval_seconds=orchestrator_settings.poll_interval_seconds,
            timeout_seconds=timeout_seconds or orchestrator_settings.group_timeout_seconds,
            safety_margin_seconds=orchestrator_settings.safety_margin_seconds,
        )
        for terminal in terminals:
            monitor.add_terminal(terminal)
        monitor.on_failure(_log_terminal_failure)
        if on_progress is not None:
            monitor.on_progress(on_progress)

        status = monitor.wait()
        logger.info(
            "Group finished: completed=%d failed=%d elapsed=%.1fs",
            len(status.completed),
            len(status.failed),
            status.elapsed_seconds,
        )
        return status

    def collect_and_merge(
        self,
        group_id: str,
        terminals: Sequence[TerminalHandle],
    ) -> ConsolidatedHandoff:
        """Collect every terminal of an exited group into one consolidated handoff."""

        collected = collect_results(group_id, terminals)
        validation = validate_results(collected.results)
        for message in (*validation.missing, *validation.errors):
            logger.warning("Group %s: %s", group_id, message)

        merged = merge_handoffs(collected.results)
        next_role = determine_next_role(merged.roles)
        consolidated = build_consolidated_handoff(merged, next_role, group_id)
        logger.info(
            "Consolidated group %s: status=%s next_role=%s",
            group_id,
            consolidated.status.value,
            next_role,
        )
        return consolidated

    def run_agent(
        self,
        run: AgentRun,
        *,
        previous_handoff: ConsolidatedHandoff | None = None,
    ) -> AgentRunResult:
        """Launch one worker and wait for it.

        A worker that exits 0 without a handoff block is reported ``partial``
        because nothing confirms its work is finished.
        """

        session = self.load_session()
        config = self._build_spawn_config(run, session, previous_handoff)
        handle = self.spawner.spawn(config)
        self.await_group([handle], timeout_seconds=config.timeout_seconds)
        result = collect_terminal_result(handle, success_status=HandoffStatus.PARTIAL)
        return AgentRunResult(
            result=result,
            provider=handle.provider,
            prompt_chars=len(config.prompt or ""),
        )

    def run_parallel(
        self,
        runs: Sequence[AgentRun],
        *,
        previous_handoff: ConsolidatedHandoff | None = None,
    ) -> ConsolidatedHandoff:
        """Launch one worker per run as a single group and merge the results."""

        session = self.load_session()
        configs = [self._build_spawn_config(run, session, previous_handoff) for run in runs]
        group = self.spawn_group(configs)
        self.await_group(group.terminals)
        return self.collect_and_merge(group.group_id, group.terminals)

    def run_plan(
        self,
        tasks: Sequence[TaskNode],
        *,
        default_role: str | None = None,
        previous_handoff: ConsolidatedHandoff | None = None,
    ) -> PlanRunResult:
        """Run every wave in dependency order.

        Each wave receives the previous wave's consolidated handoff. The run
        stops at the first wave that is not ``complete``; retrying is left to
        the caller.
        """

        waves = analyze_waves(tasks)
        by_id = {task.id: task for task in tasks}
        for task in tasks:
            if not (task.role or default_role):
                raise ConfigurationError(f"task {task.id!r} has no role and no default role")

        runs_by_wave = [
            [_run_for_task(by_id[task_id], default_role) for task_id in wave.task_ids]
            for wave in waves
        ]
        for runs in runs_by_wave:
            validation = validate_write_scopes(runs)
            if not validation.valid:
                raise WriteScopeConflictError(validation.conflicts)

        result = PlanRunResult(waves=waves)
        handoff = previous_handoff
        for wave, runs in zip(waves, runs_by_wave, strict=True):
            logger.info(
                "Running wave %d/%d: %s",
                wave.index + 1,
                len(waves),
                ", ".join(wave.task_ids),
            )
            handoff = self.run_parallel(runs, previous_handoff=handoff)
            result.handoffs.append(handoff)
            if not handoff.is_complete:
                logger.warning(
                    "Stopping after wave %d: status=%s",
                    wave.index + 1,
                    handoff.status.value,
                )
                break
        return result

    def _build_spawn_config(
        self,
        run: AgentRun,
        session: SessionState,
        previous_handoff: ConsolidatedHandoff | None,
    ) -> SpawnConfig:
        built = self.prompt_builder.build(
            PromptRequest(
                role=run.role,
                task_id=run.task_id,
                previous_handoff=previous_handoff,
                additional_context=run.additional_context,
                write_scope=run.write_scope,
                session_state=session,
                provider=run.provider,
                model=run.model,
            ),
        )
        return SpawnConfig(
            role=run.role,
            task_id=run.task_id,
            model=built.model,
            prompt=built.prompt,
            working_dir=Path(self.project_dir),
            timeout_seconds=(
                run.timeout_seconds or self.settings.orchestrator.agent_timeout_seconds
            ),
            provider=built.provider,
            env=dict(run.env),
            context_payload={
                "mode": session.mode,
                "previous_group_id": (
                    previous_handoff.group_id if previous_handoff is not None else None
                ),
            },
            write_scope=run.write_scope,
        )


def _run_for_task(task: TaskNode, default_role: str | None) -> AgentRun:
    return AgentRun(
        role=task.role or default_role or "",
        task_id=task.id,
        write_scope=task.write_scope,
    )


def _log_terminal_failure(handle: TerminalHandle) -> None:
    logger.warning(
        "Terminal %s (role=%s task_id=%s) exited with code %s",
        handle.id,
        handle.role,
        handle.task_id,
        handle.exit_code,
    )
