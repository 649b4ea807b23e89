from __future__ import annotations

import itertools
import time

import allure
import pytest

from agent_waves.orchestrator.models import TIMEOUT_EXIT_CODE, TerminalHandle, TerminalStatus
from agent_waves.orchestrator.monitor import MonitorStatus, TerminalMonitor

pytestmark = [
    allure.epic("Supervision"),
    allure.feature("Terminal monitor"),
]


def _handle(
    terminal_id: str,
    *,
    exit_code: int | None = None,
    timeout_seconds: float = 1000.0,
    started_ago: float = 0.0,
) -> TerminalHandle:
    handle = TerminalHandle(
        id=terminal_id,
        role="dev",
        task_id=terminal_id,
        model="opus",
        provider="claude",
        process=None,
        timeout_seconds=timeout_seconds,
        started_monotonic=time.monotonic() - started_ago,
    )
    if exit_code is not None:
        handle.status = TerminalStatus.EXITED
        handle.exit_code = exit_code
    return handle


def test_status_groups_terminals_by_outcome() -> None:
    monitor = TerminalMonitor()
    monitor.add_terminal(_handle("running"))
    monitor.add_terminal(_handle("ok", exit_code=0))
    monitor.add_terminal(_handle("bad", exit_code=3))

    status = monitor.get_status()

    assert [snapshot.id for snapshot in status.active] == ["running"]
    assert [snapshot.id for snapshot in status.completed] == ["ok"]
    assert [snapshot.id for snapshot in status.failed] == ["bad"]
    assert not monitor.is_all_complete()
    assert [handle.id for handle in monitor.get_failed_terminals()] == ["bad"]


def test_add_and_remove_terminals() -> None:
    monitor = TerminalMonitor()
    monitor.add_terminal(_handle("t1"))

    assert monitor.remove_terminal("t1") is True
    assert monitor.remove_terminal("t1") is False
    with pytest.raises(ValueError, match="handle with an id"):
        monitor.add_terminal(_handle(""))


def test_overdue_terminal_is_expired_with_sentinel() -> None:
    monitor = TerminalMonitor(timeout_seconds=60.0)
    handle = _handle("slow", timeout_seconds=1.0, started_ago=5.0)
    failures: list[TerminalHandle] = []
    monitor.add_terminal(handle)
    monitor.on_failure(failures.append)

    assert monitor.poll_once() is True

    assert handle.status is TerminalStatus.EXITED
    assert handle.exit_code == TIMEOUT_EXIT_CODE
    assert handle.timed_out
    assert handle.stderr.startswith("timeout: terminal exceeded its limit after 5s")
    assert failures == [handle]


def test_completion_fires_exactly_once() -> None:
    monitor = TerminalMonitor()
    monitor.add_terminal(_handle("a", exit_code=0))
    monitor.add_terminal(_handle("b", exit_code=1))
    completions: list[MonitorStatus] = []
    progress: list[MonitorStatus] = []
    monitor.on_complete(completions.append)
    monitor.on_progress(progress.append)

    assert monitor.poll_once() is True
    assert monitor.poll_once() is True
    monitor.wait()

    assert len(completions) == 1
    assert len(completions[0].completed) == 1
    assert len(completions[0].failed) == 1
    assert len(progress) == 1
    assert monitor.completed


def test_empty_monitor_completes_immediately() -> None:
    monitor = TerminalMonitor()
    completions: list[MonitorStatus] = []
    monitor.on_complete(completions.append)

    status = monitor.wait()

    assert len(completions) == 1
    assert status.active == status.completed == status.failed == []


def test_safety_timer_releases_the_caller() -> None:
    ticks = itertools.count(start=0.0, step=2.0)
    sleeps: list[float] = []
    monitor = TerminalMonitor(
        poll_interval_seconds=0.25,
        timeout_seconds=5.0,
        safety_margin_seconds=1.0,
        clock=lambda: next(ticks),
        sleep=sleeps.append,
    )
    stuck = _handle("stuck")
    monitor.add_terminal(stuck)
    completions: list[MonitorStatus] = []
    monitor.on_complete(completions.append)

    status = monitor.wait()

    assert stuck.exit_code == TIMEOUT_EXIT_CODE
    assert [snapshot.id for snapshot in status.failed] == ["stuck"]
    assert len(completions) == 1
    assert sleeps
    assert set(sleeps) == {0.25}
