"""Plain-text output for the intentforge CLI.

File: src/intentforge/ui/render.py
Last updated: 2026-10-18

Purpose
- Keep every human-readable line the CLI prints in one place so ``--json`` stays the only
  machine interface.

Functional requirements
- Color only the status marker, and only on a TTY with neither ``NO_COLOR`` nor ``--no-color``.
- Same payload renders to the same text.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping, Sequence
from typing import Any, Final

# marker, ANSI color
_STATUS_STYLE: Final[dict[str, tuple[str, str]]] = {
    "success": ("OK", "32"),
    "completed": ("OK", "32"),
    "pending": ("..", "36"),
    "running": ("..", "36"),
    "clarification_required": ("?", "33"),
    "rejected": ("REJECTED", "31"),
    "error": ("FAIL", "31"),
    "failed": ("FAIL", "31"),
}


def _use_color(no_color: bool) -> bool:
    if no_color or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


class CLIRenderer:
    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _use_color(no_color)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        print()
        print(title)

    def status(self, label: str, status: str) -> None:
        marker, color = _STATUS_STYLE.get(status, (status.upper(), "0"))
        if self._color:
            marker = f"\033[{color}m{marker}\033[0m"
        print(f"[{marker}] {label}: {status}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Left-aligned columns separated by two spaces; an empty table prints nothing."""

        if not rows:
            return
        grid = [[str(cell) for cell in headers]]
        grid.extend([str(cell) for cell in row][: len(headers)] for row in rows)
        for line in grid:
            line.extend([""] * (len(headers) - len(line)))
        widths = [max(len(line[col]) for line in grid) for col in range(len(headers))]

        if title:
            self.section(title)
        grid.insert(1, ["-" * width for width in widths])
        for line in grid:
            cells = (cell.ljust(width) for cell, width in zip(line, widths, strict=True))
            print("  " + "  ".join(cells).rstrip())

    def issues(self, title: str, entries: Sequence[Mapping[str, Any]]) -> None:
        """Rule violations as ``Rule / Path / Message`` rows; suggestions follow when verbose."""

        self.table(
            ("Rule", "Path", "Message"),
            [
                (item.get("rule_id", ""), item.get("path", ""), item.get("message", ""))
                for item in entries
            ],
            title=title,
        )
        if not self.verbose:
            return
        for item in entries:
            if item.get("suggestion"):
                print(f"  {item.get('rule_id', '')}: {item['suggestion']}")

    def downgrades(self, entries: Sequence[Mapping[str, Any]]) -> None:
        self.table(
            ("Rule", "Path", "Original", "Fixed"),
            [
                (
                    item.get("rule_id", ""),
                    item.get("path", ""),
                    item.get("original_value"),
                    item.get("fixed_value"),
                )
                for item in entries
            ],
            title="Downgrades (auto-fixed):",
        )

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        self.items(steps, prefix="$ ")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
