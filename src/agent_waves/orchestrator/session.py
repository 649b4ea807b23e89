"""Read-only loader for the pipeline session document."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class SessionState:
    """Pipeline state snapshot shown to every worker.

    Defaults apply whenever the document or an individual field is absent.
    """

    project_name: str = "(unnamed)"
    project_type: str = "greenfield"
    mode: str = "discover"
    language: str = "en"
    user_level: str = "auto"
    execution_mode: str = "autonomous"
    current_role: str | None = None
    artifacts: tuple[str, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> SessionState:
        project = raw.get("project")
        if not isinstance(project, Mapping):
            project = {}
        artifacts = raw.get("artifacts")
        current_role = raw.get("current_role", raw.get("current_agent"))
        defaults = cls()
        return cls(
            project_name=_text(project.get("name"), defaults.project_name),
            project_type=_text(project.get("type"), defaults.project_type),
            mode=_text(project.get("state"), defaults.mode),
            language=_text(raw.get("language"), defaults.language),
            user_level=_text(raw.get("user_level"), defaults.user_level),
            execution_mode=_text(raw.get("execution_mode"), defaults.execution_mode),
            current_role=current_role if isinstance(current_role, str) else None,
            artifacts=(
                tuple(str(item) for item in artifacts) if isinstance(artifacts, list) else ()
            ),
            raw=dict(raw),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "project": {
                "name": self.project_name,
                "type": self.project_type,
                "state": self.mode,
            },
            "language": self.language,
            "user_level": self.user_level,
            "execution_mode": self.execution_mode,
            "current_role": self.current_role,
            "artifacts": list(self.artifacts),
        }


def load_session_state(path: Path) -> SessionState:
    """Load the session document, falling back to defaults.

    A missing file is normal. An unreadable or malformed file is logged and
    treated the same way; it never aborts a run.
    """

    if not path.exists():
        return SessionState()
    try:
        payload = yaml.safe_load(path.read_text("utf-8"))
    except (OSError, yaml.YAMLError) as error:
        logger.warning("Ignoring unreadable session file %s: %s", path, error)
        return SessionState()
    if payload is None:
        return SessionState()
    if not isinstance(payload, Mapping):
        logger.warning("Ignoring session file %s: top level is not a mapping", path)
        return SessionState()
    return SessionState.from_mapping(payload)


def _text(value: object, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default
