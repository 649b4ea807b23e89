"""Deterministic local worker that mimics an agent CLI.

Reads the prompt from stdin and prints a handoff block. Behavior comes from
``AGENT_WAVES_ECHO_*`` environment variables so one group can mix fast, slow
and failing workers through per-config env.
"""

from __future__ import annotations

import argparse
import os
import sys
import time

from agent_waves.orchestrator.handoff import HANDOFF_CLOSE, HANDOFF_OPEN


def main(argv: list[str] | None = None) -> int:
    """Echo a handoff block for the task named in the isolation env."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--model", default=None)
    parser.add_argument("--status", default=os.getenv("AGENT_WAVES_ECHO_STATUS", "complete"))
    parser.add_argument(
        "--exit-code",
        type=int,
        default=int(os.getenv("AGENT_WAVES_ECHO_EXIT_CODE", "0")),
    )
    parser.add_argument(
        "--sleep-seconds",
        type=float,
        default=float(os.getenv("AGENT_WAVES_ECHO_SLEEP_SECONDS", "0")),
    )
    parser.add_argument(
        "--no-block",
        action="store_true",
        default=os.getenv("AGENT_WAVES_ECHO_NO_BLOCK", "0") == "1",
    )
    args, _ = parser.parse_known_args(argv)

    prompt = sys.stdin.read()
    if args.sleep_seconds > 0:
        time.sleep(args.sleep_seconds)

    stderr_text = os.getenv("AGENT_WAVES_ECHO_STDERR", "")
    if stderr_text:
        print(stderr_text, file=sys.stderr)

    role = os.getenv("AGENT_WAVES_ROLE", "unknown")
    task_id = os.getenv("AGENT_WAVES_TASK_ID", "unknown")
    print(f"echo agent: role={role} task_id={task_id} model={args.model or 'default'}")
    if args.no_block:
        print(f"received {len(prompt)} prompt chars")
        return args.exit_code

    lines = [
        HANDOFF_OPEN,
        f"status: {args.status}",
        f"score: {95 if args.status == 'complete' else 50}",
        f"summary: Echoed {task_id} for {role} ({len(prompt)} prompt chars).",
        "outputs:",
        f"  - artifacts/{task_id}.md",
        "decisions:",
        f"  {task_id}: done",
        f"  last_role: {role}",
    ]
    blocker = os.getenv("AGENT_WAVES_ECHO_BLOCKER", "")
    if blocker:
        lines.extend(["blockers:", f"  - {blocker}"])
    lines.extend(["needs_input_question: null", HANDOFF_CLOSE])
    print("\n".join(lines))
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
