"""Write-scope registry and overlap checks for concurrently running workers.

Each role may write only under its own path prefixes; read access is
unrestricted. The isolation environment handed to a child process only tells
it its scope. It does not prevent the child from writing elsewhere.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

WRITE_SCOPE_ENV = "AGENT_WAVES_WRITE_SCOPE"
READ_SCOPE_ENV = "AGENT_WAVES_READ_SCOPE"

WRITE_SCOPES: Mapping[str, tuple[str, ...]] = {
    "greenfield-wu": ("artifacts/0-WU/",),
    "brownfield-wu": ("artifacts/0-WU/",),
    "brief": ("artifacts/1-Brief/",),
    "detail": ("artifacts/2-PRD/",),
    "architect": ("artifacts/3-Architecture/",),
    "ux": ("artifacts/4-UX/",),
    "phases": ("artifacts/5-Phases/",),
    "tasks": ("artifacts/6-Tasks/",),
    "qa-planning": ("artifacts/7-QA-Planning/",),
    "dev": ("src/", "tests/", "pyproject.toml"),
    "qa-implementation": ("tests/", "artifacts/8-QA-Impl/"),
    "devops": (".github/", "Dockerfile", "docker-compose.yml", "artifacts/9-Deploy/"),
}


class ScopedAssignment(Protocol):
    """Anything that names a role and may carry an explicit write scope."""

    role: str | None
    write_scope: tuple[str, ...] | None


@dataclass(slots=True, frozen=True)
class ScopeConflict:
    """Two assignments whose write prefixes overlap."""

    first: str
    second: str
    first_path: str
    second_path: str

    @property
    def path(self) -> str:
        if self.first_path == self.second_path:
            return self.first_path
        return f"{self.first_path} <-> {self.second_path}"

    def describe(self) -> str:
        return f"{self.first} vs {self.second} on {self.path}"

    def to_dict(self) -> dict[str, str]:
        return {
            "first": self.first,
            "second": self.second,
            "path": self.path,
        }


@dataclass(slots=True, frozen=True)
class ScopeValidation:
    """Result of a pairwise write-scope check."""

    conflicts: tuple[ScopeConflict, ...]

    @property
    def valid(self) -> bool:
        return not self.conflicts


def get_write_scope(role: str | None) -> tuple[str, ...]:
    """Return writable prefixes for a role; unknown roles get no write access."""

    if not role:
        return ()
    return WRITE_SCOPES.get(role, ())


def get_read_scope(_role: str | None = None) -> tuple[str, ...]:
    """Read access is universal."""

    return ("*",)


def effective_write_scope(assignment: ScopedAssignment) -> tuple[str, ...]:
    """Explicit write scope when given, otherwise the registry entry for the role."""

    if assignment.write_scope is not None:
        return tuple(assignment.write_scope)
    return get_write_scope(assignment.role)


def is_path_allowed(
    role: str | None,
    file_path: str,
    *,
    write_scope: Sequence[str] | None = None,
) -> bool:
    """True when ``file_path`` falls inside the role's write scope."""

    if not file_path:
        return False
    scope = tuple(write_scope) if write_scope is not None else get_write_scope(role)
    if not scope:
        return False
    normalized = normalize_path(file_path)
    return any(_is_within(normalize_path(prefix), normalized) for prefix in scope)


def paths_overlap(first: str, second: str) -> bool:
    """True when prefixes are equal or one contains the other as a directory."""

    left = normalize_path(first)
    right = normalize_path(second)
    if not left or not right:
        return False
    return _is_within(left, right) or _is_within(right, left)


def find_scope_conflicts(
    scopes: Sequence[tuple[str, Sequence[str]]],
) -> ScopeValidation:
    """Check every pair of labelled scopes and report all overlapping prefixes."""

    conflicts: list[ScopeConflict] = []
    for index, (first_label, first_scope) in enumerate(scopes):
        for second_label, second_scope in scopes[index + 1 :]:
            for first_path in first_scope:
                for second_path in second_scope:
                    if paths_overlap(first_path, second_path):
                        conflicts.append(
                            ScopeConflict(
                                first=first_label,
                                second=second_label,
                                first_path=first_path,
                                second_path=second_path,
                            ),
                        )
    return ScopeValidation(conflicts=tuple(conflicts))


def validate_write_scopes(assignments: Iterable[ScopedAssignment]) -> ScopeValidation:
    """Pairwise conflict check over role assignments, e.g. a batch of spawn configs."""

    labelled = [
        (_assignment_label(assignment), effective_write_scope(assignment))
        for assignment in assignments
    ]
    return find_scope_conflicts(labelled)


def build_isolation_env(
    role: str | None,
    *,
    write_scope: Sequence[str] | None = None,
) -> dict[str, str]:
    """Environment variables that tell a child process its scopes."""

    scope = tuple(write_scope) if write_scope is not None else get_write_scope(role)
    return {
        WRITE_SCOPE_ENV: ",".join(scope),
        READ_SCOPE_ENV: ",".join(get_read_scope(role)),
    }


def normalize_path(path: str) -> str:
    normalized = path.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _is_within(prefix: str, path: str) -> bool:
    if not prefix or not path:
        return False
    if prefix.rstrip("/") == path.rstrip("/"):
        return True
    directory = prefix if prefix.endswith("/") else f"{prefix}/"
    return path.startswith(directory)


def _assignment_label(assignment: ScopedAssignment) -> str:
    role = assignment.role or "unknown"
    task_id = getattr(assignment, "task_id", None)
    if task_id:
        return f"{role}:{task_id}"
    return role
