"""Main CLI entry point for Pegwatch.

This module provides the main click group and lazy loading
for heavy imports to improve startup time.
"""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

# Console for rich output
console = Console()


class LazyGroup(click.Group):
    """A click Group that lazily loads commands.

    This improves CLI startup time by only importing
    command modules when they are actually invoked.
    """

    def __init__(self, *args, lazy_subcommands: dict[str, str] | None = None, **kwargs):
        """Initialize the lazy group.

        Args:
            lazy_subcommands: Mapping of command names to module paths.
        """
        super().__init__(*args, **kwargs)
        self._lazy_subcommands = lazy_subcommands or {}

    def list_commands(self, ctx: click.Context) -> list[str]:
        """List all available commands."""
        base = super().list_commands(ctx)
        lazy = list(self._lazy_subcommands.keys())
        return sorted(set(base + lazy))

    def get_command(self, ctx: click.Context, cmd_name: str) -> click.Command | None:
        """Get a command by name, lazily loading if needed."""
        if cmd_name in self.commands:
            return self.commands[cmd_name]

        if cmd_name in self._lazy_subcommands:
            return self._lazy_load(cmd_name)

        return None

    def _lazy_load(self, cmd_name: str) -> click.Command:
        """Lazily load a command from its module path."""
        import importlib

        module_path = self._lazy_subcommands[cmd_name]
        module = importlib.import_module(module_path)

        cmd = None
        for attr_name in dir(module):
            attr = getattr(module, attr_name)
            if isinstance(attr, click.Command) and attr.name == cmd_name:
                cmd = attr
                break

        if cmd is None:
            raise click.ClickException(f"Could not find command '{cmd_name}' in {module_path}")

        self.add_command(cmd)
        return cmd


LAZY_SUBCOMMANDS = {
    "monitor": "pegwatch.cli.monitor",
    "alert": "pegwatch.cli.alerts",
    "alerts": "pegwatch.cli.alerts",
    "symbols": "pegwatch.cli.alerts",
}


CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def print_error(title: str, message: str) -> None:
    console.print(Panel(
        f"[red]{message}[/red]",
        title=f"[bold red]{title}[/bold red]",
        border_style="red",
    ))


def get_config(ctx: click.Context):
    """Load configuration for a command, exiting on ConfigurationError."""
    from pathlib import Path
    from pegwatch.config import load_config
    from pegwatch.errors import ConfigurationError

    config_path = (ctx.obj or {}).get("config_path")
    try:
        return load_config(Path(config_path) if config_path else None)
    except ConfigurationError as e:
        print_error("Configuration Error", str(e))
        raise SystemExit(1)


def get_store(config):
    """Get the alert store for a loaded configuration."""
    from pegwatch.db.store import SQLiteAlertStore

    return SQLiteAlertStore(config.db_path)


def setup_logging(verbose: bool) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.group(cls=LazyGroup, lazy_subcommands=LAZY_SUBCOMMANDS, context_settings=CONTEXT_SETTINGS)
@click.version_option(package_name="pegwatch")
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to config.toml (default: ~/.config/pegwatch/config.toml).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Pegwatch - price, depeg and pair-ratio alerts for crypto assets.

    \b
    Quick Start:
      pegwatch alert price       # Create a price alert step by step
      pegwatch alerts            # List alerts
      pegwatch monitor           # Watch prices and send notifications
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
