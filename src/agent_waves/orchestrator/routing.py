"""Routing resolution: which provider and logical model each role runs on."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from agent_waves.config import OrchestratorSettings
from agent_waves.orchestrator.providers import (
    PROVIDERS,
    ProviderDefinition,
    apply_command_overrides,
    get_provider,
)


@dataclass(slots=True, frozen=True)
class RoleAssignment:
    """Provider plus logical model tier for one role."""

    provider: str
    model: str


ROLE_MODELS: Mapping[str, RoleAssignment] = {
    "orchestrator": RoleAssignment(provider="claude", model="sonnet"),
    "greenfield-wu": RoleAssignment(provider="claude", model="haiku"),
    "brownfield-wu": RoleAssignment(provider="claude", model="opus"),
    "brief": RoleAssignment(provider="claude", model="sonnet"),
    "detail": RoleAssignment(provider="claude", model="opus"),
    "architect": RoleAssignment(provider="claude", model="opus"),
    "ux": RoleAssignment(provider="claude", model="sonnet"),
    "phases": RoleAssignment(provider="claude", model="sonnet"),
    "tasks": RoleAssignment(provider="claude", model="sonnet"),
    "qa-planning": RoleAssignment(provider="claude", model="opus"),
    "qa-implementation": RoleAssignment(provider="claude", model="opus"),
    "dev": RoleAssignment(provider="claude", model="opus"),
    "devops": RoleAssignment(provider="claude", model="sonnet"),
}


@dataclass(slots=True)
class RoutingDefaults:
    """Settings snapshot used to route roles onto providers."""

    primary_provider: str
    enabled_providers: tuple[str, ...]
    role_models: Mapping[str, RoleAssignment] = field(default_factory=lambda: dict(ROLE_MODELS))
    role_overrides: Mapping[str, RoleAssignment] = field(default_factory=dict)
    providers: Mapping[str, ProviderDefinition] = field(default_factory=lambda: dict(PROVIDERS))

    @classmethod
    def from_settings(cls, settings: OrchestratorSettings) -> RoutingDefaults:
        """Build validated routing defaults from orchestrator settings."""

        primary = get_provider(settings.provider).name
        enabled = tuple(get_provider(name).name for name in settings.enabled_providers)
        if primary not in enabled:
            enabled = (primary, *enabled)
        overrides = {
            role: RoleAssignment(provider=get_provider(provider).name, model=model)
            for role, (provider, model) in settings.role_overrides.items()
        }
        return cls(
            primary_provider=primary,
            enabled_providers=enabled,
            role_overrides=overrides,
            providers=apply_command_overrides(settings.command_overrides),
        )


def resolve_role_assignment(
    *,
    role: str,
    defaults: RoutingDefaults,
    provider_override: str | None = None,
    model_override: str | None = None,
) -> RoleAssignment:
    """Resolve provider and model for a role.

    Priority: explicit overrides, configured role overrides, the role's default
    assignment, then the primary provider with its first model tier. Provider
    choices that are not enabled fall through to the next source.
    """

    assignment = _resolve_default(role=role, defaults=defaults)
    provider = assignment.provider
    model = assignment.model
    if provider_override is not None:
        provider = get_provider(provider_override).name
        if model_override is None and provider != assignment.provider:
            model = _first_model(provider)
    if model_override is not None and model_override.strip():
        model = model_override.strip()
    return RoleAssignment(provider=provider, model=model)


def _resolve_default(*, role: str, defaults: RoutingDefaults) -> RoleAssignment:
    override = defaults.role_overrides.get(role)
    if override is not None and override.provider in defaults.enabled_providers:
        return override

    assignment = defaults.role_models.get(role)
    if assignment is not None and assignment.provider in defaults.enabled_providers:
        return assignment

    return RoleAssignment(
        provider=defaults.primary_provider,
        model=_first_model(defaults.primary_provider),
    )


def _first_model(provider: str) -> str:
    model_map = PROVIDERS[provider].model_map
    return next(iter(model_map), "sonnet")
