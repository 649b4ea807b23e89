from __future__ import annotations

from pathlib import Path

import allure
import pytest

from agent_waves.config import Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment settings"),
]


def test_defaults_without_environment(tmp_path: Path) -> None:
    settings = Settings.from_env(project_dir=tmp_path)
    settings.validate()

    assert settings.project_dir == tmp_path
    assert settings.orchestrator.provider == "claude"
    assert settings.orchestrator.enabled_providers == ("claude", "gemini", "codex", "copilot")
    assert settings.orchestrator.poll_interval_seconds == 2.0
    assert settings.orchestrator.agent_timeout_seconds == 600.0
    assert settings.orchestrator.group_timeout_seconds == 900.0
    assert settings.orchestrator.safety_margin_seconds == 10.0
    assert settings.orchestrator.command_overrides == {}
    assert settings.log_level == "WARNING"


def test_environment_values_are_parsed(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AGENT_WAVES_PROJECT_DIR", str(tmp_path))
    monkeypatch.setenv("AGENT_WAVES_PROVIDER", " Gemini ")
    monkeypatch.setenv("AGENT_WAVES_ENABLED_PROVIDERS", "gemini, codex,gemini")
    monkeypatch.setenv(
        "AGENT_WAVES_ROLE_OVERRIDES",
        "dev=codex:codex, architect=gemini:pro",
    )
    monkeypatch.setenv("AGENT_WAVES_CODEX_COMMAND", "my-codex exec")
    monkeypatch.setenv("AGENT_WAVES_RUNS_DIR", str(tmp_path / "runs"))
    monkeypatch.setenv("AGENT_WAVES_POLL_INTERVAL_SECONDS", "0.5")
    monkeypatch.setenv("AGENT_WAVES_LOG_LEVEL", "debug")

    settings = Settings.from_env()
    settings.validate()

    assert settings.project_dir == tmp_path
    assert settings.orchestrator.provider == "gemini"
    assert settings.orchestrator.enabled_providers == ("gemini", "codex")
    assert settings.orchestrator.role_overrides == {
        "dev": ("codex", "codex"),
        "architect": ("gemini", "pro"),
    }
    assert settings.orchestrator.command_overrides == {"codex": "my-codex exec"}
    assert settings.orchestrator.runs_dir == tmp_path / "runs"
    assert settings.orchestrator.poll_interval_seconds == 0.5
    assert settings.log_level == "DEBUG"


def test_invalid_enabled_provider_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WAVES_ENABLED_PROVIDERS", "claude,cursor")

    with pytest.raises(ValueError, match="Invalid AGENT_WAVES_ENABLED_PROVIDERS entry"):
        Settings.from_env()


def test_malformed_role_override_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("AGENT_WAVES_ROLE_OVERRIDES", "dev=codex")

    with pytest.raises(ValueError, match="<role>=<provider>:<model>"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("AGENT_WAVES_PROVIDER", "cursor", "AGENT_WAVES_PROVIDER must be one of"),
        ("AGENT_WAVES_AGENT_TIMEOUT_SECONDS", "0", "AGENT_WAVES_AGENT_TIMEOUT_SECONDS"),
        ("AGENT_WAVES_SAFETY_MARGIN_SECONDS", "-1", "SAFETY_MARGIN"),
        ("AGENT_WAVES_LOG_LEVEL", "LOUD", "AGENT_WAVES_LOG_LEVEL"),
    ],
)
def test_validate_rejects_unusable_values(
    monkeypatch,
    name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate()


def test_relative_paths_resolve_against_project(tmp_path: Path) -> None:
    settings = Settings.from_env(project_dir=tmp_path)

    assert settings.resolve_project_path(settings.session.session_file) == (
        tmp_path / ".agent_waves" / "session.yaml"
    )
    assert settings.resolve_project_path(tmp_path / "abs") == tmp_path / "abs"
