"""Runtime configuration for wave orchestration."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_KNOWN_PROVIDERS = ("claude", "gemini", "codex", "copilot")


@dataclass(slots=True)
class OrchestratorSettings:
    """Spawning, supervision and reporting settings."""

    provider: str = "claude"
    enabled_providers: tuple[str, ...] = _KNOWN_PROVIDERS
    role_overrides: dict[str, tuple[str, str]] = field(default_factory=dict)
    command_overrides: dict[str, str] = field(default_factory=dict)
    runs_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "agent-waves")
    poll_interval_seconds: float = 2.0
    agent_timeout_seconds: float = 600.0
    group_timeout_seconds: float = 900.0
    safety_margin_seconds: float = 10.0
    raw_output_limit: int = 5_000
    stderr_limit: int = 2_000


@dataclass(slots=True)
class SessionSettings:
    """Locations of the read-only collaborator documents."""

    session_file: Path = Path(".agent_waves/session.yaml")
    context_dir: Path = Path(".agent_waves/context")


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_dir: Path = field(default_factory=Path.cwd)
    orchestrator: OrchestratorSettings = field(default_factory=OrchestratorSettings)
    session: SessionSettings = field(default_factory=SessionSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, project_dir: Path | None = None) -> Settings:
        """Load settings from environment with defaults suitable for local runs."""

        resolved_project_dir = project_dir or Path(
            os.getenv("AGENT_WAVES_PROJECT_DIR", str(Path.cwd())),
        )
        runs_dir_raw = os.getenv("AGENT_WAVES_RUNS_DIR", "").strip()
        return cls(
            project_dir=resolved_project_dir,
            orchestrator=OrchestratorSettings(
                provider=os.getenv("AGENT_WAVES_PROVIDER", "claude").strip().lower(),
                enabled_providers=_collect_enabled_providers(),
                role_overrides=_collect_role_overrides(),
                command_overrides=_collect_command_overrides(),
                runs_dir=(
                    Path(runs_dir_raw)
                    if runs_dir_raw
                    else Path(tempfile.gettempdir()) / "agent-waves"
                ),
                poll_interval_seconds=float(
                    os.getenv("AGENT_WAVES_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                agent_timeout_seconds=float(
                    os.getenv("AGENT_WAVES_AGENT_TIMEOUT_SECONDS", "600"),
                ),
                group_timeout_seconds=float(
                    os.getenv("AGENT_WAVES_GROUP_TIMEOUT_SECONDS", "900"),
                ),
                safety_margin_seconds=float(
                    os.getenv("AGENT_WAVES_SAFETY_MARGIN_SECONDS", "10"),
                ),
                raw_output_limit=int(os.getenv("AGENT_WAVES_RAW_OUTPUT_LIMIT", "5000")),
                stderr_limit=int(os.getenv("AGENT_WAVES_STDERR_LIMIT", "2000")),
            ),
            session=SessionSettings(
                session_file=Path(
                    os.getenv("AGENT_WAVES_SESSION_FILE", ".agent_waves/session.yaml"),
                ),
                context_dir=Path(os.getenv("AGENT_WAVES_CONTEXT_DIR", ".agent_waves/context")),
            ),
            log_level=os.getenv("AGENT_WAVES_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        orchestrator = self.orchestrator
        if orchestrator.provider not in _KNOWN_PROVIDERS:
            raise ValueError(
                f"AGENT_WAVES_PROVIDER must be one of {_KNOWN_PROVIDERS}: "
                f"{orchestrator.provider!r}",
            )
        for name, value in (
            ("AGENT_WAVES_POLL_INTERVAL_SECONDS", orchestrator.poll_interval_seconds),
            ("AGENT_WAVES_AGENT_TIMEOUT_SECONDS", orchestrator.agent_timeout_seconds),
            ("AGENT_WAVES_GROUP_TIMEOUT_SECONDS", orchestrator.group_timeout_seconds),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0.")
        if orchestrator.safety_margin_seconds < 0:
            raise ValueError("AGENT_WAVES_SAFETY_MARGIN_SECONDS must be >= 0.")
        if orchestrator.raw_output_limit <= 0 or orchestrator.stderr_limit <= 0:
            raise ValueError(
                "AGENT_WAVES_RAW_OUTPUT_LIMIT and AGENT_WAVES_STDERR_LIMIT must be > 0.",
            )
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"AGENT_WAVES_LOG_LEVEL must be one of {_LOG_LEVELS}.")

    def resolve_project_path(self, path: Path) -> Path:
        """Anchor a relative settings path at the project directory."""

        if path.is_absolute():
            return path
        return self.project_dir / path


def _collect_enabled_providers() -> tuple[str, ...]:
    raw = os.getenv("AGENT_WAVES_ENABLED_PROVIDERS", "").strip()
    if not raw:
        return _KNOWN_PROVIDERS

    enabled: list[str] = []
    for part in raw.split(","):
        name = part.strip().lower()
        if not name or name in enabled:
            continue
        if name not in _KNOWN_PROVIDERS:
            raise ValueError(
                f"Invalid AGENT_WAVES_ENABLED_PROVIDERS entry: {name!r}. "
                f"Expected one of {_KNOWN_PROVIDERS}.",
            )
        enabled.append(name)
    return tuple(enabled)


def _collect_role_overrides() -> dict[str, tuple[str, str]]:
    raw = os.getenv("AGENT_WAVES_ROLE_OVERRIDES", "").strip()
    if not raw:
        return {}

    overrides: dict[str, tuple[str, str]] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token or ":" not in token.split("=", 1)[1]:
            raise ValueError(
                "Invalid AGENT_WAVES_ROLE_OVERRIDES entry: "
                f"{token!r}. Expected format '<role>=<provider>:<model>'.",
            )
        role, assignment = token.split("=", 1)
        provider, model = assignment.split(":", 1)
        role = role.strip()
        provider = provider.strip().lower()
        model = model.strip()
        if not role or not model:
            raise ValueError(f"Invalid AGENT_WAVES_ROLE_OVERRIDES entry: {token!r}")
        if provider not in _KNOWN_PROVIDERS:
            raise ValueError(
                f"Invalid AGENT_WAVES_ROLE_OVERRIDES provider for {role!r}: {provider!r}",
            )
        overrides[role] = (provider, model)
    return overrides


def _collect_command_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for provider in _KNOWN_PROVIDERS:
        command_line = os.getenv(f"AGENT_WAVES_{provider.upper()}_COMMAND", "").strip()
        if command_line:
            overrides[provider] = command_line
    return overrides
