"""Polling supervisor for a group of running terminals.

The monitor never blocks on a single process: every tick it polls all
registered terminals, kills those past their own timeout, and fires the
completion notification exactly once when none is left running. A group
deadline slightly longer than the monitor timeout guarantees the caller is
released even if per-terminal bookkeeping misses something.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from agent_waves.orchestrator.models import TIMEOUT_EXIT_CODE, TerminalHandle
from agent_waves.orchestrator.spawner import (
    TerminalStatusSnapshot,
    get_terminal_status,
    kill_terminal,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MonitorStatus:
    """Aggregated view of every registered terminal."""

    active: list[TerminalStatusSnapshot] = field(default_factory=list)
    completed: list[TerminalStatusSnapshot] = field(default_factory=list)
    failed: list[TerminalStatusSnapshot] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class TerminalMonitor:
    """Track terminals until all of them have exited."""

    def __init__(
        self,
        *,
        poll_interval_seconds: float = 2.0,
        timeout_seconds: float = 300.0,
        safety_margin_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self.safety_margin_seconds = safety_margin_seconds
        self._clock = clock
        self._sleep = sleep
        self._terminals: dict[str, TerminalHandle] = {}
        self._started = clock()
        self._completed = False
        self._on_complete: list[Callable[[MonitorStatus], None]] = []
        self._on_failure: list[Callable[[TerminalHandle], None]] = []
        self._on_progress: list[Callable[[MonitorStatus], None]] = []

    @property
    def completed(self) -> bool:
        return self._completed

    def add_terminal(self, handle: TerminalHandle) -> None:
        if handle is None or not handle.id:
            raise ValueError("add_terminal requires a terminal handle with an id")
        self._terminals[handle.id] = handle

    def remove_terminal(self, terminal_id: str) -> bool:
        return self._terminals.pop(terminal_id, None) is not None

    def on_complete(self, callback: Callable[[MonitorStatus], None]) -> None:
        self._on_complete.append(callback)

    def on_failure(self, callback: Callable[[TerminalHandle], None]) -> None:
        self._on_failure.append(callback)

    def on_progress(self, callback: Callable[[MonitorStatus], None]) -> None:
        self._on_progress.append(callback)

    def get_status(self) -> MonitorStatus:
        status = MonitorStatus(elapsed_seconds=self._clock() - self._started)
        for handle in self._terminals.values():
            snapshot = get_terminal_status(handle)
            if handle.is_running:
                status.active.append(snapshot)
            elif handle.exit_code == 0:
                status.completed.append(snapshot)
            else:
                status.failed.append(snapshot)
        return status

    def is_all_complete(self) -> bool:
        return all(not handle.is_running for handle in self._terminals.values())

    def get_failed_terminals(self) -> list[TerminalHandle]:
        return [
            handle
            for handle in self._terminals.values()
            if not handle.is_running and handle.exit_code != 0
        ]

    def poll_once(self) -> bool:
        """Run one poll tick. Returns True once the completion notification fired."""

        if self._completed:
            return True

        just_failed: list[TerminalHandle] = []
        for handle in list(self._terminals.values()):
            if not handle.is_running:
                continue
            if not handle.refresh() and self._is_overdue(handle):
                self._expire(handle)
            if not handle.is_running and handle.exit_code != 0:
                just_failed.append(handle)

        status = self.get_status()
        for progress_callback in self._on_progress:
            progress_callback(status)
        for handle in just_failed:
            for failure_callback in self._on_failure:
                failure_callback(handle)

        if self._terminals and self.is_all_complete():
            self._fire_complete(status)
        return self._completed

    def wait(self) -> MonitorStatus:
        """Poll until every terminal exited or the group deadline passed."""

        self._started = self._clock()
        deadline = self._started + self.timeout_seconds + self.safety_margin_seconds
        if not self._terminals:
            self._fire_complete(self.get_status())

        while not self._completed:
            if self.poll_once():
                break
            if self._clock() >= deadline:
                self._expire_group()
                break
            self._sleep(self.poll_interval_seconds)
        return self.get_status()

    def _is_overdue(self, handle: TerminalHandle) -> bool:
        limit = handle.timeout_seconds or self.timeout_seconds
        return handle.elapsed_seconds() >= limit

    def _expire(self, handle: TerminalHandle) -> None:
        elapsed = handle.elapsed_seconds()
        note = f"timeout: terminal exceeded its limit after {elapsed:.0f}s"
        if handle.process is None:
            handle.notes.append(note)
            handle.mark_exited(TIMEOUT_EXIT_CODE)
        else:
            result = kill_terminal(handle, exit_code_override=TIMEOUT_EXIT_CODE)
            if not result.killed:
                return
            handle.notes.append(note)
            handle.capture_output()
        logger.warning(
            "Terminal %s (role=%s task_id=%s) timed out after %.1fs",
            handle.id,
            handle.role,
            handle.task_id,
            elapsed,
        )

    def _expire_group(self) -> None:
        running = [handle for handle in self._terminals.values() if handle.is_running]
        logger.warning(
            "Group safety timer expired with %d terminal(s) still running",
            len(running),
        )
        for handle in running:
            self._expire(handle)
        self._fire_complete(self.get_status())

    def _fire_complete(self, status: MonitorStatus) -> None:
        if self._completed:
            return
        self._completed = True
        for callback in self._on_complete:
            callback(status)
