"""Error taxonomy for the orchestration engine.

Configuration errors and isolation violations are raised before any process
is launched. Process and parse failures are never raised: they are recorded
per terminal and surface as a non-complete consolidated status.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_waves.orchestrator.isolation import ScopeConflict


class OrchestrationError(Exception):
    """Base class for fatal orchestration errors."""


class ConfigurationError(OrchestrationError, ValueError):
    """Malformed task graph, spawn config, or provider selection."""


class CyclicDependencyError(ConfigurationError):
    """Task graph contains a cycle; no wave can be scheduled."""

    def __init__(self, remaining: Sequence[str]) -> None:
        self.remaining = tuple(remaining)
        super().__init__(
            f"Circular dependency detected among tasks: {', '.join(self.remaining)}",
        )


class SpawnConfigError(ConfigurationError):
    """Required spawn config field is missing or invalid."""


class UnknownProviderError(ConfigurationError):
    """Requested CLI provider is not registered."""

    def __init__(self, name: str, available: Sequence[str]) -> None:
        self.name = name
        self.available = tuple(available)
        super().__init__(
            f"Unknown CLI provider: {name!r}. Available: {', '.join(self.available)}",
        )


class WriteScopeConflictError(OrchestrationError):
    """Two configs of one batch may write overlapping paths."""

    def __init__(self, conflicts: Sequence[ScopeConflict]) -> None:
        self.conflicts = tuple(conflicts)
        details = "; ".join(conflict.describe() for conflict in self.conflicts)
        super().__init__(f"Write scope conflicts detected: {details}")


class ProcessLaunchError(OrchestrationError, RuntimeError):
    """The OS refused to start a worker process."""

    def __init__(self, message: str, *, command: str) -> None:
        super().__init__(message)
        self.command = command
