"""Command-line surface: argparse router and plain-text renderer."""

from intentforge.ui.render import CLIRenderer, create_renderer

__all__ = ["CLIRenderer", "create_renderer"]
