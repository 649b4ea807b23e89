from __future__ import annotations

import allure
import pytest

from agent_waves.config import OrchestratorSettings
from agent_waves.orchestrator.errors import UnknownProviderError
from agent_waves.orchestrator.routing import (
    RoleAssignment,
    RoutingDefaults,
    resolve_role_assignment,
)

pytestmark = [
    allure.epic("Providers"),
    allure.feature("Role routing"),
]


def _defaults(**kwargs) -> RoutingDefaults:
    settings = OrchestratorSettings(**kwargs)
    return RoutingDefaults.from_settings(settings)


def test_role_default_assignment() -> None:
    defaults = _defaults()

    assert resolve_role_assignment(role="architect", defaults=defaults) == RoleAssignment(
        provider="claude",
        model="opus",
    )
    assert resolve_role_assignment(role="ux", defaults=defaults).model == "sonnet"


def test_unknown_role_uses_primary_provider_first_model() -> None:
    defaults = _defaults(provider="gemini")

    assert resolve_role_assignment(role="reviewer", defaults=defaults) == RoleAssignment(
        provider="gemini",
        model="pro",
    )


def test_configured_role_override_wins_over_default() -> None:
    defaults = _defaults(role_overrides={"dev": ("codex", "codex")})

    assert resolve_role_assignment(role="dev", defaults=defaults) == RoleAssignment(
        provider="codex",
        model="codex",
    )


def test_disabled_provider_falls_back_to_primary() -> None:
    defaults = _defaults(
        provider="gemini",
        enabled_providers=("gemini",),
        role_overrides={"dev": ("codex", "codex")},
    )

    assert resolve_role_assignment(role="dev", defaults=defaults) == RoleAssignment(
        provider="gemini",
        model="pro",
    )


def test_primary_provider_is_always_enabled() -> None:
    defaults = _defaults(provider="codex", enabled_providers=("gemini",))

    assert defaults.enabled_providers == ("codex", "gemini")


def test_explicit_overrides_take_priority() -> None:
    defaults = _defaults()

    assert resolve_role_assignment(
        role="dev",
        defaults=defaults,
        provider_override="gemini",
    ) == RoleAssignment(provider="gemini", model="pro")
    assert resolve_role_assignment(
        role="dev",
        defaults=defaults,
        provider_override="gemini",
        model_override="flash",
    ) == RoleAssignment(provider="gemini", model="flash")
    assert resolve_role_assignment(
        role="dev",
        defaults=defaults,
        model_override=" haiku ",
    ) == RoleAssignment(provider="claude", model="haiku")


def test_unknown_provider_override_is_rejected() -> None:
    with pytest.raises(UnknownProviderError):
        resolve_role_assignment(role="dev", defaults=_defaults(), provider_override="cursor")


def test_command_overrides_reach_provider_registry() -> None:
    defaults = _defaults(command_overrides={"claude": "wrapped-claude --print"})

    assert defaults.providers["claude"].command == "wrapped-claude"
    assert defaults.providers["claude"].base_args == ("--print",)
    assert defaults.providers["gemini"].command == "gemini"
