"""Self-contained prompt assembly for freshly spawned workers.

A spawned worker starts with no conversation history, so its prompt must
carry everything: assembled context, role definition, the previous wave's
handoff, write scope, session state and the output contract.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from agent_waves.orchestrator.handoff import HANDOFF_CLOSE, HANDOFF_OPEN, format_handoff
from agent_waves.orchestrator.isolation import effective_write_scope
from agent_waves.orchestrator.models import ConsolidatedHandoff
from agent_waves.orchestrator.routing import RoutingDefaults, resolve_role_assignment
from agent_waves.orchestrator.session import SessionState

logger = logging.getLogger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"

ROLE_DEFINITION_FILES: Mapping[str, str] = {
    "greenfield-wu": ".agent_waves/roles/discover/greenfield-wu.md",
    "brownfield-wu": ".agent_waves/roles/discover/brownfield-wu.md",
    "brief": ".agent_waves/roles/discover/brief.md",
    "detail": ".agent_waves/roles/plan/detail.md",
    "architect": ".agent_waves/roles/plan/architect.md",
    "ux": ".agent_waves/roles/plan/ux.md",
    "phases": ".agent_waves/roles/plan/phases.md",
    "tasks": ".agent_waves/roles/plan/tasks.md",
    "qa-planning": ".agent_waves/roles/quality/qa-planning.md",
    "dev": ".agent_waves/roles/build/dev.md",
    "qa-implementation": ".agent_waves/roles/quality/qa-implementation.md",
    "devops": ".agent_waves/roles/deploy/devops.md",
}

OUTPUT_INSTRUCTIONS = f"""\
<!-- OUTPUT INSTRUCTIONS -->
## Output Instructions (MANDATORY)

When you complete your work, you MUST include a structured handoff block at the END of your response.
This block is how the orchestrator reads your results. Without it, your work cannot be collected.

```
{HANDOFF_OPEN}
status: complete
score: 95
summary: One to three sentence summary of what was accomplished.
outputs:
  - path/to/artifact1.md
  - path/to/artifact2.md
decisions:
  key1: value1
  key2: value2
blockers:
  - Description of any unresolved blocker
needs_input_question: null
{HANDOFF_CLOSE}
```

### Status values:
- **complete**: All work finished successfully (score >= 95 required)
- **partial**: Some work done but not all criteria met
- **needs_input**: You need information from the user to continue. Set `needs_input_question` to your question.
- **error**: Something went wrong that you cannot recover from

### Important:
- The `{HANDOFF_OPEN}` block MUST appear in your response
- Score must be 0-100 (95+ to pass quality gate)
- List ALL artifacts you created/modified in outputs
- If you need user input, set status to "needs_input" and write your question in needs_input_question"""  # noqa: E501


@dataclass(slots=True, frozen=True)
class ContextRequest:
    """Inputs handed to the context-assembly collaborator."""

    role: str
    task_id: str
    mode: str
    session_state: SessionState
    previous_handoff: ConsolidatedHandoff | None = None
    remaining_budget_percent: int = 100


class ContextAssembler(Protocol):
    """Collaborator producing governance/context text for one worker."""

    def assemble(self, request: ContextRequest) -> str | None:
        """Return a text block to prepend, or None when nothing applies."""


class DirectoryContextAssembler:
    """Read ``global.md`` and ``<role>.md`` from a context directory."""

    def __init__(self, context_dir: Path) -> None:
        self.context_dir = context_dir

    def assemble(self, request: ContextRequest) -> str | None:
        if not self.context_dir.is_dir():
            return None
        parts: list[str] = []
        for name in ("global.md", f"{request.role}.md"):
            path = self.context_dir / name
            if path.is_file():
                text = path.read_text("utf-8", errors="replace").strip()
                if text:
                    parts.append(text)
        if not parts:
            return None
        return "<!-- CONTEXT -->\n" + "\n\n".join(parts)


@dataclass(slots=True)
class PromptRequest:
    role: str
    task_id: str
    previous_handoff: ConsolidatedHandoff | None = None
    additional_context: str | None = None
    write_scope: tuple[str, ...] | None = None
    session_state: SessionState = field(default_factory=SessionState)
    provider: str | None = None
    model: str | None = None


@dataclass(slots=True)
class BuiltPrompt:
    prompt: str
    model: str
    provider: str
    metadata: dict[str, object] = field(default_factory=dict)


class PromptBuilder:
    """Assemble worker prompts from project files and collaborators."""

    def __init__(
        self,
        *,
        project_dir: Path,
        routing: RoutingDefaults,
        context_assembler: ContextAssembler | None = None,
        role_definitions: Mapping[str, str] = ROLE_DEFINITION_FILES,
    ) -> None:
        self.project_dir = project_dir
        self.routing = routing
        self.context_assembler = context_assembler
        self.role_definitions = role_definitions

    def build(self, request: PromptRequest) -> BuiltPrompt:
        """Build the prompt; optional sections with no content are omitted."""

        if not request.role.strip():
            raise ValueError("PromptRequest.role must be a non-empty string")

        assignment = resolve_role_assignment(
            role=request.role,
            defaults=self.routing,
            provider_override=request.provider,
            model_override=request.model,
        )

        sections: list[str] = []
        context = self._assemble_context(request)
        if context:
            sections.append(context)

        role_definition = self._load_role_definition(request.role)
        if role_definition:
            sections.append("<!-- ROLE DEFINITION -->\n" + role_definition)

        if request.previous_handoff is not None:
            sections.append(_handoff_section(request.previous_handoff, request.role))

        if request.additional_context and request.additional_context.strip():
            sections.append(
                "<!-- ADDITIONAL CONTEXT -->\n"
                "## Additional Context from User\n\n" + request.additional_context.strip(),
            )

        scope = effective_write_scope(request)
        sections.append(_write_scope_section(scope))
        sections.append(
            _session_section(
                request.session_state,
                role=request.role,
                provider=assignment.provider,
                model=assignment.model,
            ),
        )
        sections.append(OUTPUT_INSTRUCTIONS)

        prompt = SECTION_SEPARATOR.join(sections)
        return BuiltPrompt(
            prompt=prompt,
            model=assignment.model,
            provider=assignment.provider,
            metadata={
                "role": request.role,
                "task_id": request.task_id,
                "sections": len(sections),
                "has_context": bool(context),
                "has_role_definition": bool(role_definition),
                "prompt_chars": len(prompt),
            },
        )

    def _assemble_context(self, request: PromptRequest) -> str | None:
        if self.context_assembler is None:
            return None
        context_request = ContextRequest(
            role=request.role,
            task_id=request.task_id,
            mode=request.session_state.mode,
            session_state=request.session_state,
            previous_handoff=request.previous_handoff,
        )
        try:
            text = self.context_assembler.assemble(context_request)
        except Exception as error:  # noqa: BLE001
            logger.warning(
                "Context assembly failed for role=%s task_id=%s: %s",
                request.role,
                request.task_id,
                error,
            )
            return None
        return text.strip() if text and text.strip() else None

    def _load_role_definition(self, role: str) -> str | None:
        relative = self.role_definitions.get(role)
        if relative is None:
            return None
        path = self.project_dir / relative
        if not path.is_file():
            return None
        return path.read_text("utf-8", errors="replace")


def _handoff_section(handoff: ConsolidatedHandoff, role: str) -> str:
    return "<!-- PREVIOUS HANDOFF -->\n" + format_handoff(
        handoff,
        from_role=handoff.from_role,
        to_role=role,
    )


def _write_scope_section(scope: tuple[str, ...]) -> str:
    if not scope:
        return (
            "<!-- WRITE SCOPE -->\n"
            "## Write Scope (MANDATORY)\n\n"
            "You have NO write access. This is a read-only execution.\n"
            "Do NOT use Write, Edit, or any file-modifying tool."
        )
    paths = "\n".join(f"- `{path}`" for path in scope)
    return (
        "<!-- WRITE SCOPE -->\n"
        "## Write Scope (MANDATORY)\n\n"
        "You may ONLY write to these paths:\n"
        f"{paths}\n\n"
        "**All other write operations are BLOCKED.** Do NOT attempt to write, edit, "
        "or create files outside these paths. "
        "Read access is unrestricted: you may read any file in the project."
    )


def _session_section(
    state: SessionState,
    *,
    role: str,
    provider: str,
    model: str,
) -> str:
    lines = [
        "<!-- SESSION CONTEXT -->",
        "## Session Context",
        "",
        f"- **Project**: {state.project_name}",
        f"- **Type**: {state.project_type}",
        f"- **Mode**: {state.mode}",
        f"- **Language**: {state.language} (interaction) / English (artifacts)",
        f"- **User Level**: {state.user_level}",
        f"- **Execution Mode**: {state.execution_mode}",
        f"- **Your Role**: {role}",
        f"- **Your Model**: {model}",
        f"- **Your Provider**: {provider}",
    ]
    return "\n".join(lines)
