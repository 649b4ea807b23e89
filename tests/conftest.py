"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
from pathlib import Path

import pytest

from agent_waves.orchestrator.providers import PROVIDERS, apply_command_overrides
from agent_waves.orchestrator.spawner import TerminalSpawner
from agent_waves.orchestrator.workdir import TerminalWorkdirManager

_ECHO_AGENT_COMMAND = (
    f"{shlex.quote(sys.executable)} -m agent_waves.orchestrator.backend.echo_agent"
)


@pytest.fixture(autouse=True)
def _clean_agent_waves_env(monkeypatch):
    """Keep developer AGENT_WAVES_* variables out of tests."""

    for name in list(os.environ):
        if name.startswith("AGENT_WAVES_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def echo_providers():
    """Provider registry where every provider runs the local echo agent."""

    return apply_command_overrides(dict.fromkeys(PROVIDERS, _ECHO_AGENT_COMMAND))


@pytest.fixture()
def spawner(tmp_path: Path, echo_providers) -> TerminalSpawner:
    return TerminalSpawner(
        workdir_manager=TerminalWorkdirManager(tmp_path / "runs"),
        providers=echo_providers,
    )


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture()
def echo_env(monkeypatch, tmp_path: Path, project_dir: Path) -> Path:
    """Route ``Settings.from_env`` at the echo agent with fast polling."""

    for provider in PROVIDERS:
        monkeypatch.setenv(f"AGENT_WAVES_{provider.upper()}_COMMAND", _ECHO_AGENT_COMMAND)
    monkeypatch.setenv("AGENT_WAVES_PROJECT_DIR", str(project_dir))
    monkeypatch.setenv("AGENT_WAVES_RUNS_DIR", str(tmp_path / "runs"))
    monkeypatch.setenv("AGENT_WAVES_POLL_INTERVAL_SECONDS", "0.05")
    monkeypatch.setenv("AGENT_WAVES_AGENT_TIMEOUT_SECONDS", "30")
    monkeypatch.setenv("AGENT_WAVES_GROUP_TIMEOUT_SECONDS", "60")
    monkeypatch.setenv("AGENT_WAVES_SAFETY_MARGIN_SECONDS", "1")
    return project_dir
