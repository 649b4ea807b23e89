"""Controllers for orchestration CLI commands."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml

from agent_waves.config import Settings
from agent_waves.orchestrator.errors import ConfigurationError
from agent_waves.orchestrator.models import ConsolidatedHandoff, TaskNode
from agent_waves.orchestrator.providers import is_provider_available
from agent_waves.orchestrator.routing import RoutingDefaults
from agent_waves.orchestrator.runner import AgentRun, Orchestrator
from agent_waves.orchestrator.waves import analyze_waves, validate_wave_scopes, wave_summary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WavesCommand:
    """CLI input for wave analysis."""

    tasks_path: Path
    output_format: str = "text"
    default_role: str | None = None


@dataclass(slots=True)
class RunAgentCommand:
    """CLI input for a single worker run."""

    role: str
    task_id: str
    project_dir: Path | None
    provider: str | None
    model: str | None
    previous_handoff_path: Path | None
    additional_context: str | None
    timeout_seconds: float | None


@dataclass(slots=True)
class RunParallelCommand:
    """CLI input for one parallel group; roles and task ids pair up by position."""

    roles: tuple[str, ...]
    task_ids: tuple[str, ...]
    project_dir: Path | None
    provider: str | None
    model: str | None
    previous_handoff_path: Path | None
    additional_context: str | None
    timeout_seconds: float | None
    output_path: Path | None = None


@dataclass(slots=True)
class RunPlanCommand:
    """CLI input for running a task graph wave by wave."""

    tasks_path: Path
    project_dir: Path | None
    default_role: str | None
    previous_handoff_path: Path | None
    output_path: Path | None = None


@dataclass(slots=True)
class CommandResult:
    """Lines to render plus the overall outcome."""

    lines: list[str]
    success: bool
    failure_message: str = "Orchestration run did not complete."


class OrchestrationCliController:
    """Coordinates wave analysis and worker execution CLI operations."""

    def waves(self, command: WavesCommand) -> CommandResult:
        tasks = load_tasks(command.tasks_path)
        waves = analyze_waves(tasks)
        summary = wave_summary(waves)
        validations = [
            validate_wave_scopes(tasks, wave, default_role=command.default_role)
            for wave in waves
        ]

        if command.output_format == "json":
            payload = {
                "waves": [
                    {
                        "index": wave.index,
                        "task_ids": list(wave.task_ids),
                        "conflicts": [conflict.to_dict() for conflict in validation.conflicts],
                    }
                    for wave, validation in zip(waves, validations, strict=True)
                ],
                "summary": asdict(summary),
            }
            return CommandResult(lines=[_to_json(payload)], success=True)

        lines: list[str] = []
        for wave, validation in zip(waves, validations, strict=True):
            lines.append(f"Wave {wave.index + 1}: {', '.join(wave.task_ids)}")
            lines.extend(
                f"  write scope conflict: {conflict.describe()}"
                for conflict in validation.conflicts
            )
        lines.append(
            f"Summary: waves={summary.total_waves} tasks={summary.total_tasks} "
            f"max_parallel={summary.max_parallel} sequential={summary.sequential}",
        )
        return CommandResult(lines=lines, success=True)

    def run_agent(self, command: RunAgentCommand) -> CommandResult:
        settings = _settings(command.project_dir)
        orchestrator = Orchestrator(settings=settings)
        outcome = orchestrator.run_agent(
            AgentRun(
                role=command.role,
                task_id=command.task_id,
                provider=command.provider,
                model=command.model,
                additional_context=command.additional_context,
                timeout_seconds=command.timeout_seconds,
            ),
            previous_handoff=_load_previous_handoff(command.previous_handoff_path),
        )
        payload = outcome.result.to_dict(
            raw_output_limit=settings.orchestrator.raw_output_limit,
            stderr_limit=settings.orchestrator.stderr_limit,
        )
        payload["provider"] = outcome.provider
        return CommandResult(
            lines=[_to_json(payload)],
            success=outcome.is_complete,
            failure_message=f"Worker finished with status={outcome.result.status.value}.",
        )

    def run_parallel(self, command: RunParallelCommand) -> CommandResult:
        if not command.roles:
            raise ConfigurationError("At least one --role is required.")
        if len(command.roles) != len(command.task_ids):
            raise ConfigurationError(
                f"Got {len(command.roles)} --role and {len(command.task_ids)} --task-id "
                "values; they pair up by position and must match.",
            )
        settings = _settings(command.project_dir)
        orchestrator = Orchestrator(settings=settings)
        consolidated = orchestrator.run_parallel(
            [
                AgentRun(
                    role=role,
                    task_id=task_id,
                    provider=command.provider,
                    model=command.model,
                    additional_context=command.additional_context,
                    timeout_seconds=command.timeout_seconds,
                )
                for role, task_id in zip(command.roles, command.task_ids, strict=True)
            ],
            previous_handoff=_load_previous_handoff(command.previous_handoff_path),
        )
        payload = consolidated.to_dict(
            raw_output_limit=settings.orchestrator.raw_output_limit,
            stderr_limit=settings.orchestrator.stderr_limit,
        )
        _write_output(command.output_path, payload)
        return CommandResult(
            lines=[_to_json(payload)],
            success=consolidated.is_complete,
            failure_message=f"Group finished with status={consolidated.status.value}.",
        )

    def run_plan(self, command: RunPlanCommand) -> CommandResult:
        settings = _settings(command.project_dir)
        tasks = load_tasks(command.tasks_path)
        orchestrator = Orchestrator(settings=settings)
        result = orchestrator.run_plan(
            tasks,
            default_role=command.default_role,
            previous_handoff=_load_previous_handoff(command.previous_handoff_path),
        )
        limits = {
            "raw_output_limit": settings.orchestrator.raw_output_limit,
            "stderr_limit": settings.orchestrator.stderr_limit,
        }
        final = result.final_handoff
        payload: dict[str, Any] = {
            "status": "complete" if result.is_complete else "incomplete",
            "waves": [list(wave.task_ids) for wave in result.waves],
            "waves_run": len(result.handoffs),
            "handoffs": [handoff.to_dict(**limits) for handoff in result.handoffs],
        }
        if final is not None:
            _write_output(command.output_path, final.to_dict(**limits))
        return CommandResult(
            lines=[_to_json(payload)],
            success=result.is_complete,
            failure_message=(
                f"Plan stopped after {len(result.handoffs)} of {len(result.waves)} wave(s)."
            ),
        )

    def providers(self) -> CommandResult:
        settings = _settings(None)
        routing = RoutingDefaults.from_settings(settings.orchestrator)
        lines: list[str] = []
        for name, provider in routing.providers.items():
            marker = "*" if name == routing.primary_provider else " "
            enabled = "enabled" if name in routing.enabled_providers else "disabled"
            available = (
                "available" if is_provider_available(name, routing.providers) else "missing"
            )
            models = ", ".join(f"{alias}={model}" for alias, model in provider.model_map.items())
            lines.append(
                f"{marker} {name}: {' '.join([provider.command, *provider.base_args])} "
                f"[{enabled}, {available}] models: {models or '-'}",
            )
        return CommandResult(lines=lines, success=True)


def load_tasks(path: Path) -> list[TaskNode]:
    """Read a task list from JSON or YAML: a list, or a mapping with ``tasks``."""

    raw_text = path.read_text("utf-8")
    try:
        if path.suffix.lower() == ".json":
            payload = json.loads(raw_text)
        else:
            payload = yaml.safe_load(raw_text)
    except (json.JSONDecodeError, yaml.YAMLError) as error:
        raise ConfigurationError(f"{path}: cannot parse task file: {error}") from error
    if isinstance(payload, dict):
        payload = payload.get("tasks")
    if not isinstance(payload, list):
        raise ConfigurationError(f"{path}: expected a list of tasks or a 'tasks' list")
    tasks: list[TaskNode] = []
    for index, item in enumerate(payload):
        if not isinstance(item, dict):
            raise ConfigurationError(f"{path}: task #{index} must be a mapping")
        try:
            tasks.append(TaskNode.from_dict(item))
        except (TypeError, ValueError) as error:
            raise ConfigurationError(f"{path}: {error}") from error
    return tasks


def _settings(project_dir: Path | None) -> Settings:
    try:
        settings = Settings.from_env(project_dir=project_dir)
        settings.validate()
    except ValueError as error:
        raise ConfigurationError(str(error)) from error
    return settings


def _load_previous_handoff(path: Path | None) -> ConsolidatedHandoff | None:
    if path is None:
        return None
    try:
        payload = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"{path}: invalid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise ConfigurationError(f"{path}: consolidated handoff must be a JSON object")
    try:
        return ConsolidatedHandoff.from_dict(payload)
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"{path}: {error}") from error


def _write_output(path: Path | None, payload: dict[str, Any]) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_to_json(payload) + "\n", "utf-8")
    logger.info("Wrote consolidated handoff to %s", path)


def _to_json(payload: object) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2)
