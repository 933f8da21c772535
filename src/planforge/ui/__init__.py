"""User-facing command-line surface."""

from planforge.ui.cli import build_parser, run_cli
from planforge.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "build_parser", "create_renderer", "run_cli"]
