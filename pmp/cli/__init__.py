"""Command-line interface for PMP."""

from pmp.cli.main import main

__all__ = ["main"]
