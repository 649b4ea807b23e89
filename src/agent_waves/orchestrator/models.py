"""Domain models for wave scheduling, terminal supervision and handoffs."""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agent_waves.orchestrator.failure_classifier import TerminalFailure

# Python reports signal deaths as -1..-64 and real exit codes are 0..255,
# so the timeout sentinel sits outside both ranges.
TIMEOUT_EXIT_CODE = -200
MAX_CAPTURE_CHARS = 10_000_000


class TerminalStatus(str, Enum):
    """Terminal lifecycle states."""

    RUNNING = "running"
    EXITED = "exited"


class HandoffStatus(str, Enum):
    """Status values a worker may report in its handoff block."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    NEEDS_INPUT = "needs_input"
    ERROR = "error"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> HandoffStatus:
        """Map free text onto a status, falling back to ``unknown``."""

        normalized = (value or "").strip().lower()
        for status in cls:
            if status.value == normalized:
                return status
        return cls.UNKNOWN


class FailureClass(str, Enum):
    """Normalized causes of a non-complete terminal."""

    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    KILLED_BY_SIGNAL = "killed_by_signal"
    ACCESS_OR_AUTH = "access_or_auth"
    BILLING_OR_QUOTA = "billing_or_quota"
    MODEL_NOT_AVAILABLE = "model_not_available"
    RATE_LIMITED = "rate_limited"
    MISSING_HANDOFF = "missing_handoff"
    REPORTED_BY_AGENT = "reported_by_agent"


@dataclass(slots=True, frozen=True)
class TaskNode:
    """One unit of work in the task graph.

    ``write_scope`` of ``None`` means the role default applies; an empty tuple
    means the task is read-only.
    """

    id: str
    dependencies: tuple[str, ...] = ()
    write_scope: tuple[str, ...] | None = None
    role: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskNode:
        """Build a task from a JSON-like mapping."""

        task_id = raw.get("id")
        if not isinstance(task_id, str) or not task_id.strip():
            raise ValueError("task.id must be a non-empty string")
        dependencies = raw.get("dependencies", raw.get("depends_on", []))
        write_scope = raw.get("write_scope", raw.get("writeScope"))
        role = raw.get("role")
        if not isinstance(dependencies, list) or not all(
            isinstance(item, str) for item in dependencies
        ):
            raise TypeError(f"task {task_id!r}: dependencies must be a list of strings")
        if write_scope is not None and (
            not isinstance(write_scope, list)
            or not all(isinstance(item, str) for item in write_scope)
        ):
            raise TypeError(f"task {task_id!r}: write_scope must be a list of strings")
        if role is not None and not isinstance(role, str):
            raise TypeError(f"task {task_id!r}: role must be a string")
        return cls(
            id=task_id.strip(),
            dependencies=tuple(dependencies),
            write_scope=tuple(write_scope) if write_scope is not None else None,
            role=role.strip() if role else None,
        )


@dataclass(slots=True, frozen=True)
class Wave:
    """A batch of tasks eligible to run concurrently."""

    index: int
    task_ids: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class WaveSummary:
    """Shape of a wave plan."""

    total_waves: int
    total_tasks: int
    max_parallel: int
    sequential: bool


@dataclass(slots=True)
class SpawnConfig:
    """Inputs required to launch one worker process."""

    role: str
    task_id: str
    model: str | None = None
    prompt: str | None = None
    working_dir: Path | None = None
    timeout_seconds: float = 300.0
    provider: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    context_payload: Any = None
    write_scope: tuple[str, ...] | None = None


@dataclass(slots=True)
class CommandSpec:
    """Concrete command line produced by a provider adapter."""

    command: str
    args: list[str]
    stdin_prompt: str | None


@dataclass(slots=True)
class TerminalHandle:
    """Runtime state of one launched worker process."""

    id: str
    role: str
    task_id: str
    model: str
    provider: str
    process: subprocess.Popen[bytes] | None
    timeout_seconds: float
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_monotonic: float = field(default_factory=time.monotonic)
    finished_monotonic: float | None = None
    status: TerminalStatus = TerminalStatus.RUNNING
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    notes: list[str] = field(default_factory=list)
    stdout_path: Path | None = None
    stderr_path: Path | None = None

    @property
    def timed_out(self) -> bool:
        return self.exit_code == TIMEOUT_EXIT_CODE

    @property
    def is_running(self) -> bool:
        return self.status is TerminalStatus.RUNNING

    def elapsed_seconds(self) -> float:
        end = time.monotonic() if self.finished_monotonic is None else self.finished_monotonic
        return end - self.started_monotonic

    def refresh(self) -> bool:
        """Poll the OS process and return True once the terminal has exited."""

        if self.is_running and self.process is not None:
            returncode = self.process.poll()
            if returncode is not None:
                self.mark_exited(returncode)
        return not self.is_running

    def mark_exited(self, exit_code: int | None) -> None:
        """Move the terminal to its final state and capture its output."""

        self.status = TerminalStatus.EXITED
        self.exit_code = exit_code
        self.finished_monotonic = time.monotonic()
        self.capture_output()

    def capture_output(self) -> None:
        """Load stdout/stderr buffers from the terminal log files."""

        self.stdout = _read_tail(self.stdout_path)
        stderr = _read_tail(self.stderr_path)
        if self.notes:
            stderr = "\n".join([stderr.rstrip("\n"), *self.notes]).lstrip("\n")
        self.stderr = stderr


@dataclass(slots=True, frozen=True)
class Handoff:
    """Structured result emitted by one worker. Immutable once parsed."""

    status: HandoffStatus = HandoffStatus.UNKNOWN
    score: int | None = None
    summary: str = ""
    outputs: tuple[str, ...] = ()
    decisions: dict[str, str] = field(default_factory=dict)
    blockers: tuple[str, ...] = ()
    needs_input_question: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "score": self.score,
            "summary": self.summary,
            "outputs": list(self.outputs),
            "decisions": dict(self.decisions),
            "blockers": list(self.blockers),
            "needs_input_question": self.needs_input_question,
        }


@dataclass(slots=True, frozen=True)
class ParsedOutput:
    """Outcome of scanning raw process output for a handoff block."""

    found: bool
    handoff: Handoff | None
    raw_output: str


@dataclass(slots=True)
class TerminalResult:
    """Collected outcome of one terminal after its wave completed."""

    terminal_id: str
    role: str
    task_id: str
    model: str
    exit_code: int | None
    timed_out: bool
    status: HandoffStatus
    handoff: Handoff
    handoff_found: bool
    stdout: str
    stderr: str
    started_at: datetime
    elapsed_seconds: float
    failure: TerminalFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0

    def to_dict(self, *, raw_output_limit: int, stderr_limit: int) -> dict[str, object]:
        payload: dict[str, object] = {
            "terminal_id": self.terminal_id,
            "role": self.role,
            "task_id": self.task_id,
            "model": self.model,
            "status": self.status.value,
            "score": self.handoff.score,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "handoff_found": self.handoff_found,
            "handoff": self.handoff.to_dict() if self.handoff_found else None,
            "started_at": self.started_at.isoformat(),
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }
        if not self.handoff_found:
            payload["raw_output"] = self.stdout[:raw_output_limit]
            payload["stderr"] = self.stderr[:stderr_limit]
        if self.failure is not None:
            payload["failure"] = self.failure.to_dict()
        return payload


@dataclass(slots=True)
class ConsolidatedHandoff:
    """Merge of every handoff produced by one wave."""

    group_id: str
    status: HandoffStatus
    summary: str
    outputs: list[str] = field(default_factory=list)
    decisions: dict[str, str] = field(default_factory=dict)
    blockers: list[str] = field(default_factory=list)
    next_role: str | None = None
    from_role: str = "parallel-group"
    score: int | None = None
    merged: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    members: list[TerminalResult] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.status is HandoffStatus.COMPLETE

    def to_dict(
        self,
        *,
        raw_output_limit: int = 5_000,
        stderr_limit: int = 2_000,
    ) -> dict[str, object]:
        return {
            "group_id": self.group_id,
            "from": self.from_role,
            "to": self.next_role,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "score": self.score,
            "merged": self.merged,
            "summary": self.summary,
            "outputs": list(self.outputs),
            "decisions": dict(self.decisions),
            "blockers": list(self.blockers),
            "members": [
                member.to_dict(raw_output_limit=raw_output_limit, stderr_limit=stderr_limit)
                for member in self.members
            ],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ConsolidatedHandoff:
        """Restore the merged fields of a serialized consolidated handoff.

        Member terminal results are diagnostics only and are not restored.
        """

        group_id = raw.get("group_id")
        if not isinstance(group_id, str) or not group_id.strip():
            raise ValueError("consolidated_handoff.group_id must be a non-empty string")
        outputs = raw.get("outputs", [])
        decisions = raw.get("decisions", {})
        blockers = raw.get("blockers", [])
        if not isinstance(outputs, list) or not isinstance(blockers, list):
            raise TypeError("consolidated_handoff outputs/blockers must be arrays")
        if not isinstance(decisions, dict):
            raise TypeError("consolidated_handoff.decisions must be an object")
        timestamp_raw = raw.get("timestamp")
        timestamp = (
            datetime.fromisoformat(timestamp_raw)
            if isinstance(timestamp_raw, str) and timestamp_raw
            else datetime.now(UTC)
        )
        score = raw.get("score")
        return cls(
            group_id=group_id,
            status=HandoffStatus.parse(raw.get("status")),
            summary=str(raw.get("summary") or ""),
            outputs=[str(item) for item in outputs],
            decisions={str(key): str(value) for key, value in decisions.items()},
            blockers=[str(item) for item in blockers],
            next_role=raw.get("to") if isinstance(raw.get("to"), str) else None,
            from_role=str(raw.get("from") or "parallel-group"),
            score=score if isinstance(score, int) and not isinstance(score, bool) else None,
            merged=bool(raw.get("merged", True)),
            timestamp=timestamp,
        )


def _read_tail(path: Path | None, *, limit: int = MAX_CAPTURE_CHARS) -> str:
    if path is None or not path.exists():
        return ""
    text = path.read_text("utf-8", errors="replace")
    if len(text) <= limit:
        return text
    return text[-limit:]
