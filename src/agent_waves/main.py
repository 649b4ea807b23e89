"""CLI entrypoint for agent-waves."""

import logging
import os
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from agent_waves import __version__
from agent_waves.orchestrator.controllers import (
    CommandResult,
    OrchestrationCliController,
    RunAgentCommand,
    RunParallelCommand,
    RunPlanCommand,
    WavesCommand,
)
from agent_waves.orchestrator.errors import OrchestrationError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = OrchestrationCliController()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_project_dir_option = click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project root the workers run in. Defaults to AGENT_WAVES_PROJECT_DIR or cwd.",
)
_provider_option = click.option(
    "--provider",
    default=None,
    help="Force a provider (claude, gemini, codex, copilot) instead of role routing.",
)
_model_option = click.option("--model", default=None, help="Force a logical or concrete model.")
_previous_handoff_option = click.option(
    "--previous-handoff",
    "previous_handoff_path",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    default=None,
    help="Consolidated handoff JSON from the previous wave.",
)
_additional_context_option = click.option(
    "--additional-context",
    default=None,
    help="Extra text for the prompt, e.g. a user answer to a `needs_input` question.",
)
_timeout_option = click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Per-worker timeout. Defaults to AGENT_WAVES_AGENT_TIMEOUT_SECONDS.",
)
_output_option = click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Also write the final consolidated handoff JSON to this file.",
)


@click.group()
@click.version_option(version=__version__, prog_name="agent-waves")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level. Defaults to AGENT_WAVES_LOG_LEVEL or WARNING.",
)
def agent_waves(log_level: str | None) -> None:
    """Parallel agent orchestration: dependency waves, isolated workers, merged handoffs."""

    level = (log_level or os.getenv("AGENT_WAVES_LOG_LEVEL", "WARNING")).upper()
    logging.basicConfig(level=getattr(logging, level, logging.WARNING), format=_LOG_FORMAT)


@agent_waves.command("waves")
@click.option(
    "--tasks",
    "tasks_path",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    required=True,
    help="Task graph file (JSON or YAML).",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format.",
)
@click.option(
    "--default-role",
    default=None,
    help="Role assumed for tasks that do not name one when checking write scopes.",
)
def waves(tasks_path: Path, output_format: str, default_role: str | None) -> None:
    """Show the execution waves of a task graph and any write scope conflicts."""

    _invoke(
        lambda: CONTROLLER.waves(
            WavesCommand(
                tasks_path=tasks_path,
                output_format=output_format,
                default_role=default_role,
            ),
        ),
    )


@agent_waves.command("run-agent")
@click.option("--role", required=True, help="Worker role, e.g. `detail` or `dev`.")
@click.option("--task-id", required=True, help="Task identifier.")
@_project_dir_option
@_provider_option
@_model_option
@_previous_handoff_option
@_additional_context_option
@_timeout_option
def run_agent(  # noqa: PLR0913
    role: str,
    task_id: str,
    project_dir: Path | None,
    provider: str | None,
    model: str | None,
    previous_handoff_path: Path | None,
    additional_context: str | None,
    timeout_seconds: float | None,
) -> None:
    """Run one worker and print its result as JSON."""

    _invoke(
        lambda: CONTROLLER.run_agent(
            RunAgentCommand(
                role=role,
                task_id=task_id,
                project_dir=project_dir,
                provider=provider,
                model=model,
                previous_handoff_path=previous_handoff_path,
                additional_context=additional_context,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )


@agent_waves.command("run-parallel")
@click.option("--role", "roles", multiple=True, required=True, help="Worker role. Repeatable.")
@click.option(
    "--task-id",
    "task_ids",
    multiple=True,
    required=True,
    help="Task id for the --role at the same position. Repeatable.",
)
@_project_dir_option
@_provider_option
@_model_option
@_previous_handoff_option
@_additional_context_option
@_timeout_option
@_output_option
def run_parallel(  # noqa: PLR0913
    roles: tuple[str, ...],
    task_ids: tuple[str, ...],
    project_dir: Path | None,
    provider: str | None,
    model: str | None,
    previous_handoff_path: Path | None,
    additional_context: str | None,
    timeout_seconds: float | None,
    output_path: Path | None,
) -> None:
    """Run one group of workers concurrently and print the consolidated handoff."""

    _invoke(
        lambda: CONTROLLER.run_parallel(
            RunParallelCommand(
                roles=roles,
                task_ids=task_ids,
                project_dir=project_dir,
                provider=provider,
                model=model,
                previous_handoff_path=previous_handoff_path,
                additional_context=additional_context,
                timeout_seconds=timeout_seconds,
                output_path=output_path,
            ),
        ),
    )


@agent_waves.command("run-plan")
@click.option(
    "--tasks",
    "tasks_path",
    type=click.Path(path_type=Path, dir_okay=False, exists=True),
    required=True,
    help="Task graph file (JSON or YAML).",
)
@click.option(
    "--default-role",
    default=None,
    help="Role for tasks that do not name one.",
)
@_project_dir_option
@_previous_handoff_option
@_output_option
def run_plan(
    tasks_path: Path,
    default_role: str | None,
    project_dir: Path | None,
    previous_handoff_path: Path | None,
    output_path: Path | None,
) -> None:
    """Run every wave of a task graph in order, stopping at the first incomplete wave."""

    _invoke(
        lambda: CONTROLLER.run_plan(
            RunPlanCommand(
                tasks_path=tasks_path,
                project_dir=project_dir,
                default_role=default_role,
                previous_handoff_path=previous_handoff_path,
                output_path=output_path,
            ),
        ),
    )


@agent_waves.command("providers")
def providers() -> None:
    """List provider CLIs, their models and whether they are installed."""

    _invoke(CONTROLLER.providers)


def _invoke(action: Callable[[], CommandResult]) -> None:
    try:
        result = action()
    except OrchestrationError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(result.failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    agent_waves()
