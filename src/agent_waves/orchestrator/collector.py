"""Result collection and handoff merging for a completed wave."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from agent_waves.orchestrator.failure_classifier import classify_terminal_failure
from agent_waves.orchestrator.handoff import handoff_from_exit_code, parse_agent_output
from agent_waves.orchestrator.isolation import WRITE_SCOPE_ENV
from agent_waves.orchestrator.models import (
    ConsolidatedHandoff,
    HandoffStatus,
    TerminalHandle,
    TerminalResult,
)

logger = logging.getLogger(__name__)

_STDERR_EXCERPT_CHARS = 200


@dataclass(slots=True, frozen=True)
class GroupSummary:
    total: int
    succeeded: int
    failed: int


@dataclass(slots=True)
class CollectedGroup:
    """Per-terminal results of one wave."""

    group_id: str
    results: list[TerminalResult]
    summary: GroupSummary


@dataclass(slots=True)
class MergedHandoffs:
    """Merge of member handoffs before it is addressed to the next role."""

    merged: bool
    status: HandoffStatus
    summary: str
    outputs: list[str] = field(default_factory=list)
    decisions: dict[str, str] = field(default_factory=dict)
    blockers: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    members: list[TerminalResult] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class PhaseTransition:
    """Next role to schedule after a wave made of ``roles``.

    ``exact`` transitions match only that precise role set; the others match
    any wave containing every listed role.
    """

    roles: frozenset[str]
    next_role: str
    exact: bool = False

    def matches(self, ran: frozenset[str]) -> bool:
        if self.exact:
            return ran == self.roles
        return self.roles <= ran


PHASE_TRANSITIONS: tuple[PhaseTransition, ...] = (
    PhaseTransition(roles=frozenset({"architect", "detail", "ux"}), next_role="phases"),
    PhaseTransition(roles=frozenset({"dev"}), next_role="qa-implementation", exact=True),
)


@dataclass(slots=True)
class ResultValidation:
    valid: bool
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def collect_results(
    group_id: str,
    terminals: Iterable[TerminalHandle],
    *,
    success_status: HandoffStatus = HandoffStatus.COMPLETE,
) -> CollectedGroup:
    """Parse every terminal's captured output into a ``TerminalResult``.

    A terminal that printed no block is classified by exit code alone:
    ``success_status`` for exit 0, ``error`` otherwise. A block claiming
    ``complete`` from a process that did not exit cleanly is downgraded to
    ``error``.
    """

    results = [
        collect_terminal_result(handle, success_status=success_status) for handle in terminals
    ]
    succeeded = sum(1 for result in results if result.succeeded)
    summary = GroupSummary(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
    )
    logger.info(
        "Collected group %s: total=%d succeeded=%d failed=%d",
        group_id,
        summary.total,
        summary.succeeded,
        summary.failed,
    )
    return CollectedGroup(group_id=group_id, results=results, summary=summary)


def collect_terminal_result(
    handle: TerminalHandle,
    *,
    success_status: HandoffStatus = HandoffStatus.COMPLETE,
) -> TerminalResult:
    if handle.is_running:
        raise ValueError(f"Terminal {handle.id} is still running; wait for the group first")

    parsed = parse_agent_output(handle.stdout)
    if parsed.found and parsed.handoff is not None:
        handoff = parsed.handoff
        status = handoff.status
        if status is HandoffStatus.COMPLETE and handle.exit_code != 0:
            status = HandoffStatus.ERROR
    else:
        handoff = handoff_from_exit_code(handle.exit_code, success_status=success_status)
        status = handoff.status

    failure = classify_terminal_failure(
        provider=handle.provider,
        exit_code=handle.exit_code,
        status=status,
        handoff_found=parsed.found,
        stdout=handle.stdout,
        stderr=handle.stderr,
    )
    return TerminalResult(
        terminal_id=handle.id,
        role=handle.role,
        task_id=handle.task_id,
        model=handle.model,
        exit_code=handle.exit_code,
        timed_out=handle.timed_out,
        status=status,
        handoff=handoff,
        handoff_found=parsed.found,
        stdout=handle.stdout,
        stderr=handle.stderr,
        started_at=handle.started_at,
        elapsed_seconds=handle.elapsed_seconds(),
        failure=failure,
    )


def merge_handoffs(results: Sequence[TerminalResult]) -> MergedHandoffs:
    """Combine member handoffs in task-id order.

    Outputs and blockers are concatenated. Decisions are merged left to
    right so a later task overwrites an earlier key.
    """

    if not results:
        return MergedHandoffs(
            merged=False,
            status=HandoffStatus.PARTIAL,
            summary="No results to merge.",
        )

    ordered = sorted(results, key=lambda result: result.task_id)
    outputs: list[str] = []
    decisions: dict[str, str] = {}
    blockers: list[str] = []
    summaries: list[str] = []
    roles: list[str] = []

    for result in ordered:
        handoff = result.handoff
        outputs.extend(handoff.outputs)
        decisions.update(handoff.decisions)
        blockers.extend(handoff.blockers)
        if result.role not in roles:
            roles.append(result.role)
        fallback = "Completed" if result.status is HandoffStatus.COMPLETE else "Failed"
        summaries.append(f"[{result.role}:{result.task_id}] {handoff.summary or fallback}")

    all_complete = all(result.status is HandoffStatus.COMPLETE for result in ordered)
    return MergedHandoffs(
        merged=True,
        status=HandoffStatus.COMPLETE if all_complete else HandoffStatus.PARTIAL,
        summary="\n".join(summaries),
        outputs=outputs,
        decisions=decisions,
        blockers=blockers,
        roles=roles,
        members=list(ordered),
    )


def determine_next_role(
    roles: Iterable[str],
    transitions: Sequence[PhaseTransition] = PHASE_TRANSITIONS,
) -> str | None:
    """Return the first transition matching the set of roles that just ran."""

    ran = frozenset(roles)
    if not ran:
        return None
    for transition in transitions:
        if transition.matches(ran):
            return transition.next_role
    return None


def build_consolidated_handoff(
    merged: MergedHandoffs,
    next_role: str | None,
    group_id: str,
) -> ConsolidatedHandoff:
    """Address a merged wave result to the next role.

    Unresolved blockers keep the consolidated status at ``partial`` even when
    every member reported ``complete``.
    """

    status = merged.status
    if status is HandoffStatus.COMPLETE and merged.blockers:
        status = HandoffStatus.PARTIAL
    return ConsolidatedHandoff(
        group_id=group_id,
        status=status,
        summary=merged.summary,
        outputs=list(merged.outputs),
        decisions=dict(merged.decisions),
        blockers=list(merged.blockers),
        next_role=next_role,
        merged=merged.merged,
        members=list(merged.members),
    )


def validate_results(results: Sequence[TerminalResult]) -> ResultValidation:
    """Report missing identity fields, failed terminals and scope violation hints."""

    missing: list[str] = []
    errors: list[str] = []
    for result in results:
        label = result.terminal_id or "unknown"
        if not result.terminal_id:
            missing.append("terminal_id")
        if not result.role:
            missing.append(f"role for terminal {label}")
        if not result.task_id:
            missing.append(f"task_id for terminal {label}")

        if result.timed_out:
            errors.append(f"Terminal {label} ({result.role or 'unknown'}) timed out")
        elif not result.succeeded:
            errors.append(
                f"Terminal {label} ({result.role or 'unknown'}) failed "
                f"with exit code {result.exit_code}",
            )
        if WRITE_SCOPE_ENV in result.stderr:
            errors.append(
                f"Possible write scope violation in {result.role or 'unknown'}: "
                f"{result.stderr[:_STDERR_EXCERPT_CHARS]}",
            )
    return ResultValidation(valid=not missing and not errors, missing=missing, errors=errors)
