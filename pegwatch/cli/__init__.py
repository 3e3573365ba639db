"""CLI commands for Pegwatch.

This package provides the command-line interface for Pegwatch,
including the alert wizard, alert listing and the price monitor.
"""

from pegwatch.cli.main import cli, main

__all__ = ["cli", "main"]
