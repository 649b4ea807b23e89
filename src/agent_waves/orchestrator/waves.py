"""Dependency-aware grouping of tasks into concurrently runnable waves."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from agent_waves.orchestrator.errors import ConfigurationError, CyclicDependencyError
from agent_waves.orchestrator.isolation import (
    ScopeValidation,
    effective_write_scope,
    find_scope_conflicts,
)
from agent_waves.orchestrator.models import TaskNode, Wave, WaveSummary


def analyze_waves(tasks: Sequence[TaskNode]) -> list[Wave]:
    """Layer the task graph with Kahn's algorithm.

    Dependencies that are not part of ``tasks`` are ignored rather than treated
    as unmet. Task ids inside a wave keep the input order.

    Raises:
        ConfigurationError: two tasks share an id.
        CyclicDependencyError: no task can be scheduled while some remain.
    """

    if not tasks:
        return []

    order = [task.id for task in tasks]
    if len(set(order)) != len(order):
        duplicates = sorted({task_id for task_id in order if order.count(task_id) > 1})
        raise ConfigurationError(f"Duplicate task ids: {', '.join(duplicates)}")

    known = set(order)
    in_degree = dict.fromkeys(order, 0)
    dependents: dict[str, list[str]] = {task_id: [] for task_id in order}
    for task in tasks:
        for dependency in dict.fromkeys(task.dependencies):
            if dependency not in known:
                continue
            dependents[dependency].append(task.id)
            in_degree[task.id] += 1

    waves: list[Wave] = []
    remaining = list(order)
    while remaining:
        ready = tuple(task_id for task_id in remaining if in_degree[task_id] == 0)
        if not ready:
            raise CyclicDependencyError(remaining)

        waves.append(Wave(index=len(waves), task_ids=ready))
        scheduled = set(ready)
        remaining = [task_id for task_id in remaining if task_id not in scheduled]
        for task_id in ready:
            for dependent in dependents[task_id]:
                in_degree[dependent] -= 1

    return waves


def validate_wave_scopes(
    tasks: Sequence[TaskNode],
    wave: Wave,
    *,
    default_role: str | None = None,
) -> ScopeValidation:
    """Report every pair of tasks in ``wave`` whose write scopes overlap.

    A task without an explicit write scope is checked against its role
    default, the same scope it would be spawned with. The result is advisory:
    callers may split the wave instead of running the conflicting tasks side
    by side.
    """

    by_id = {task.id: task for task in tasks}
    labelled = []
    for task_id in wave.task_ids:
        task = by_id.get(task_id)
        if task is None:
            continue
        role = task.role or default_role
        scope = effective_write_scope(replace(task, role=role))
        labelled.append((task.id, scope))
    return find_scope_conflicts(labelled)


def wave_summary(waves: Sequence[Wave]) -> WaveSummary:
    return WaveSummary(
        total_waves=len(waves),
        total_tasks=sum(len(wave.task_ids) for wave in waves),
        max_parallel=max((len(wave.task_ids) for wave in waves), default=0),
        sequential=all(len(wave.task_ids) == 1 for wave in waves),
    )
