"""converge command-line interface."""

from converge.cli.app import app

__all__ = ["app"]
