"""Extraction and rendering of the structured block a worker prints before exiting.

Block notation, one entry per line::

    <agent-handoff>
    status: complete
    score: 95
    summary: One line.
    outputs:
      - path/one.md
    decisions:
      storage: sqlite
    blockers:
      - Something unresolved
    needs_input_question: null
    </agent-handoff>

A list or map key with an inline value is a one-entry shortcut, e.g.
``outputs: path/one.md`` or ``decisions: storage: sqlite``. An inline
decision without its own ``key: value`` pair is dropped.

Unrecognized keys are skipped so newer workers never break older parsers.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from agent_waves.orchestrator.models import (
    TIMEOUT_EXIT_CODE,
    ConsolidatedHandoff,
    Handoff,
    HandoffStatus,
    ParsedOutput,
)

HANDOFF_OPEN = "<agent-handoff>"
HANDOFF_CLOSE = "</agent-handoff>"

_BLOCK = re.compile(re.escape(HANDOFF_OPEN) + r"(.*?)" + re.escape(HANDOFF_CLOSE), re.DOTALL)
_KEY_VALUE = re.compile(r"^(\w[\w-]*):\s*(.*)$")
_LIST_ITEM = re.compile(r"^-\s+(.+)$")
_LEADING_INT = re.compile(r"^[+-]?\d+")

_SCALAR_KEYS = frozenset({"status", "score", "summary", "needs_input_question"})
_LIST_KEYS = frozenset({"outputs", "blockers"})
_MAP_KEYS = frozenset({"decisions"})
_KNOWN_KEYS = _SCALAR_KEYS | _LIST_KEYS | _MAP_KEYS


def parse_agent_output(output: str | None) -> ParsedOutput:
    """Find the first handoff block in ``output`` and parse it."""

    if not output:
        return ParsedOutput(found=False, handoff=None, raw_output="")

    match = _BLOCK.search(output)
    if match is None:
        return ParsedOutput(found=False, handoff=None, raw_output=output)
    return ParsedOutput(
        found=True,
        handoff=parse_handoff_fields(match.group(1)),
        raw_output=output,
    )


def parse_handoff_fields(content: str) -> Handoff:  # noqa: C901
    """Parse the text between the delimiters into a ``Handoff``."""

    status = HandoffStatus.UNKNOWN
    score: int | None = None
    summary = ""
    needs_input_question: str | None = None
    lists: dict[str, list[str]] = {key: [] for key in _LIST_KEYS}
    decisions: dict[str, str] = {}

    current_key: str | None = None
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        indented = raw_line[:1].isspace()

        if current_key in _LIST_KEYS:
            item = _LIST_ITEM.match(line)
            if item is not None:
                lists[current_key].append(item.group(1).strip())
                continue

        key_value = _KEY_VALUE.match(line)
        if current_key in _MAP_KEYS and key_value is not None:
            key, value = key_value.group(1), key_value.group(2).strip()
            if indented or key not in _KNOWN_KEYS:
                if value:
                    decisions[key] = value
                continue

        if key_value is None:
            continue
        key, value = key_value.group(1), key_value.group(2).strip()
        current_key = None

        if key in _LIST_KEYS:
            if value:
                lists[key] = [value]
            else:
                current_key = key
        elif key in _MAP_KEYS:
            if not value:
                current_key = key
            else:
                inline = _KEY_VALUE.match(value)
                if inline is not None and inline.group(2).strip():
                    decisions[inline.group(1)] = inline.group(2).strip()
        elif key == "status":
            status = HandoffStatus.parse(value)
        elif key == "score":
            score = _parse_score(value)
        elif key == "summary":
            summary = value
        elif key == "needs_input_question":
            needs_input_question = None if value in ("", "null") else value

    return Handoff(
        status=status,
        score=score,
        summary=summary,
        outputs=tuple(lists["outputs"]),
        decisions=decisions,
        blockers=tuple(lists["blockers"]),
        needs_input_question=needs_input_question,
    )


def handoff_from_exit_code(
    exit_code: int | None,
    *,
    success_status: HandoffStatus = HandoffStatus.COMPLETE,
) -> Handoff:
    """Derive a handoff for a terminal that printed no block."""

    if exit_code == 0:
        return Handoff(
            status=success_status,
            summary="Process exited cleanly without a handoff block.",
        )
    if exit_code == TIMEOUT_EXIT_CODE:
        summary = "Process was killed after exceeding its timeout."
    elif exit_code is None:
        summary = "Process exit code is unknown."
    else:
        summary = f"Process failed with exit code {exit_code}."
    return Handoff(status=HandoffStatus.ERROR, summary=summary)


def format_handoff(
    handoff: Handoff | ConsolidatedHandoff,
    *,
    from_role: str,
    to_role: str | None = None,
) -> str:
    """Render a handoff as Markdown for the next worker's prompt."""

    target = to_role or "orchestrator"
    score = "N/A" if handoff.score is None else str(handoff.score)
    lines = [
        f"# Handoff: {from_role} -> {target}",
        "",
        f"- **Status**: {handoff.status.value}",
        f"- **Score**: {score}",
        "",
        "## Summary",
        handoff.summary or "(no summary)",
        "",
    ]
    lines.extend(_bullet_section("Outputs", handoff.outputs))
    lines.extend(
        _bullet_section(
            "Decisions",
            (f"**{key}**: {value}" for key, value in handoff.decisions.items()),
        ),
    )
    lines.extend(_bullet_section("Blockers", handoff.blockers))
    return "\n".join(lines).rstrip() + "\n"


def _bullet_section(title: str, items: Iterable[str]) -> list[str]:
    bullets = [f"- {item}" for item in items]
    if not bullets:
        return []
    return [f"## {title}", *bullets, ""]


def _parse_score(value: str) -> int | None:
    match = _LEADING_INT.match(value)
    if match is None:
        return None
    return int(match.group(0))
