"""Output rendering for the planforge CLI.

File: src/planforge/ui/render.py

Purpose
- Provide a thin plain-text rendering layer for CLI output.
- Respect the NO_COLOR environment variable and the --no-color CLI flag.

Functional requirements
- Output is deterministic so smoke tests can assert on it.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence


def color_allowed(no_color_flag: bool, stream: TextIO | None = None) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    target = stream if stream is not None else sys.stderr
    return hasattr(target, "isatty") and target.isatty()


class CLIRenderer:
    """Thin CLI output renderer writing to stdout."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self.color = color_allowed(no_color, sys.stdout)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        print(f"\n{title}")

    def warning(self, text: str) -> None:
        print(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table; nothing is printed for zero rows."""

        if not rows:
            return

        widths = [len(header) for header in headers]
        for row in rows:
            for index in range(min(len(row), len(headers))):
                widths[index] = max(widths[index], len(str(row[index])))

        def _pad(cells: Sequence[str]) -> str:
            parts = [
                (str(cells[index]) if index < len(cells) else "").ljust(widths[index])
                for index in range(len(headers))
            ]
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * width for width in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def next_steps(self, steps: Sequence[str]) -> None:
        if not steps:
            return
        self.section("Next steps:")
        for step in steps:
            print(f"  $ {step}")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "color_allowed", "create_renderer"]
