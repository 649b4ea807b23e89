"""Per-terminal directory layout for prompt and output files."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True)
class TerminalWorkdir:
    """Materialized file paths for one terminal."""

    base_dir: Path
    prompt_path: Path
    stdout_path: Path
    stderr_path: Path


class TerminalWorkdirManager:
    """Creates deterministic per-terminal directories under a runs root.

    Child stdout/stderr go to files rather than pipes so the supervising
    process never blocks on a full pipe buffer while polling.
    """

    def __init__(self, root_dir: Path) -> None:
        self.root_dir = root_dir

    def materialize(self, *, terminal_id: str, prompt: str | None) -> TerminalWorkdir:
        base_dir = self.root_dir / terminal_id
        base_dir.mkdir(parents=True, exist_ok=True)

        prompt_path = base_dir / "prompt.txt"
        stdout_path = base_dir / "stdout.log"
        stderr_path = base_dir / "stderr.log"
        prompt_path.write_text(prompt or "", "utf-8")
        stdout_path.touch()
        stderr_path.touch()

        return TerminalWorkdir(
            base_dir=base_dir,
            prompt_path=prompt_path,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
        )
