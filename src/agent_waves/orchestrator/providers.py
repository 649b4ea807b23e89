"""Registry of external agent CLIs and the adapters that build their command lines.

Every adapter delivers the prompt on stdin, never as an argument, so prompt
size and shell escaping never matter. Adapters are plain functions selected by
provider name.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace

from agent_waves.orchestrator.errors import ConfigurationError, UnknownProviderError
from agent_waves.orchestrator.models import CommandSpec, SpawnConfig

DEFAULT_PROVIDER = "claude"


@dataclass(slots=True, frozen=True)
class ProviderDefinition:
    """Invocation details for one external CLI."""

    name: str
    command: str
    base_args: tuple[str, ...]
    model_flag: str
    model_map: Mapping[str, str] = field(default_factory=dict)
    stdin_support: bool = True
    context_file: str | None = None

    def resolve_model(self, model: str) -> str:
        """Map a logical model name to the provider id, passing unknown names through."""

        return self.model_map.get(model, model)


PROVIDERS: Mapping[str, ProviderDefinition] = {
    "claude": ProviderDefinition(
        name="claude",
        command="claude",
        base_args=("--print", "--dangerously-skip-permissions"),
        model_flag="--model",
        model_map={
            "opus": "claude-opus-4-6",
            "sonnet": "claude-sonnet-4-5-20250929",
            "haiku": "claude-haiku-4-5-20251001",
        },
        context_file="CLAUDE.md",
    ),
    "gemini": ProviderDefinition(
        name="gemini",
        command="gemini",
        base_args=(),
        model_flag="--model",
        model_map={
            "pro": "gemini-2.5-pro",
            "flash": "gemini-2.5-flash",
        },
        context_file="GEMINI.md",
    ),
    "codex": ProviderDefinition(
        name="codex",
        command="codex",
        base_args=("exec",),
        model_flag="-m",
        model_map={
            "codex": "gpt-5.3-codex",
            "mini": "codex-mini-latest",
        },
        context_file="AGENTS.md",
    ),
    "copilot": ProviderDefinition(
        name="copilot",
        command="copilot",
        base_args=("-p",),
        model_flag="--model",
        model_map={
            "claude-sonnet": "claude-sonnet-4.5",
            "gpt-5": "gpt-5",
        },
    ),
}

Adapter = Callable[[SpawnConfig, ProviderDefinition], CommandSpec]


def _base_command(config: SpawnConfig, provider: ProviderDefinition) -> CommandSpec:
    args = list(provider.base_args)
    if config.model:
        args.extend([provider.model_flag, provider.resolve_model(config.model)])
    return CommandSpec(
        command=provider.command,
        args=args,
        stdin_prompt=config.prompt or None,
    )


def _codex_command(config: SpawnConfig, provider: ProviderDefinition) -> CommandSpec:
    agent_command = _base_command(config, provider)
    # `codex exec -` reads the prompt from stdin.
    agent_command.args.append("-")
    return agent_command


ADAPTERS: Mapping[str, Adapter] = {
    "claude": _base_command,
    "gemini": _base_command,
    "codex": _codex_command,
    "copilot": _base_command,
}


def build_command(config: SpawnConfig, provider: ProviderDefinition) -> CommandSpec:
    """Translate a spawn config into the provider's concrete command line."""

    adapter = ADAPTERS.get(provider.name, _base_command)
    return adapter(config, provider)


def get_provider(
    name: str,
    providers: Mapping[str, ProviderDefinition] = PROVIDERS,
) -> ProviderDefinition:
    provider = providers.get(name.strip().lower())
    if provider is None:
        raise UnknownProviderError(name, tuple(providers))
    return provider


def with_command_override(provider: ProviderDefinition, command_line: str) -> ProviderDefinition:
    """Replace executable and base arguments, e.g. to point a provider at a wrapper.

    Model flag, model map and adapter stay those of the provider.
    """

    parts = shlex.split(command_line)
    if not parts:
        raise ConfigurationError(f"Empty command override for provider={provider.name!r}")
    return replace(provider, command=parts[0], base_args=tuple(parts[1:]))


def apply_command_overrides(
    overrides: Mapping[str, str],
    providers: Mapping[str, ProviderDefinition] = PROVIDERS,
) -> dict[str, ProviderDefinition]:
    registry = dict(providers)
    for name, command_line in overrides.items():
        provider = get_provider(name, registry)
        registry[provider.name] = with_command_override(provider, command_line)
    return registry


def is_provider_available(
    name: str,
    providers: Mapping[str, ProviderDefinition] = PROVIDERS,
) -> bool:
    """True when the provider's executable is on PATH."""

    provider = providers.get(name)
    if provider is None:
        return False
    return shutil.which(provider.command) is not None
