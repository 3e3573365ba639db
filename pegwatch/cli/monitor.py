"""Monitor command for Pegwatch CLI.

Runs the price monitor either once or continuously until interrupted.
"""

from typing import Optional

import click
from rich.table import Table

from pegwatch.cli.main import console, get_config, get_store, print_error


def build_notifier(config, dry_run: bool):
    """Pick the notification sink for this run."""
    from pegwatch.notify import ConsoleNotifier, TelegramNotifier

    if dry_run:
        return ConsoleNotifier(console)
    if not config.telegram.token:
        print_error(
            "Configuration Error",
            "No Telegram bot token configured.\n\n"
            "Set TELEGRAM_BOT_TOKEN or [telegram] token in config.toml, "
            "or use --dry-run to print alerts instead.",
        )
        raise SystemExit(1)
    return TelegramNotifier(config.telegram.token, timeout=config.monitor.call_timeout)


def _print_report(report) -> None:
    table = Table(title="Monitor Tick", show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Alerts checked", str(report.alerts_checked))
    table.add_row("Prices fetched", str(report.quotes_fetched))
    table.add_row(
        "Prices missing",
        ", ".join(report.quotes_failed) if report.quotes_failed else "[dim]none[/dim]",
    )
    table.add_row(
        "Triggered",
        ", ".join(f"#{i}" for i in report.triggered) if report.triggered else "[dim]none[/dim]",
    )
    if report.errors:
        table.add_row("Errors", "[red]" + "\n".join(report.errors) + "[/red]")
    console.print(table)


@click.command("monitor")
@click.option("--once", is_flag=True, help="Run a single tick and exit.")
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between ticks (overrides config).",
)
@click.option("--dry-run", is_flag=True, help="Print alerts instead of sending them.")
@click.pass_context
def monitor(ctx: click.Context, once: bool, interval: Optional[float], dry_run: bool) -> None:
    """Watch active alerts and notify owners when they trigger.

    \b
    Examples:
      pegwatch monitor                 # Run until Ctrl-C
      pegwatch monitor --once          # One check, then exit
      pegwatch monitor --dry-run       # Print alerts to the terminal
    """
    from pegwatch.engine.monitor import MonitorLoop
    from pegwatch.sources import PriceRouter

    config = get_config(ctx)
    if interval is not None:
        if interval <= 0:
            raise click.BadParameter("must be greater than zero", param_hint="--interval")
        config.monitor.interval = interval

    store = get_store(config)
    loop = MonitorLoop.from_config(
        config,
        store=store,
        prices=PriceRouter.from_config(config),
        notifier=build_notifier(config, dry_run),
    )

    try:
        if once:
            _print_report(loop.run_once())
            return

        console.print(
            f"[bold green]Monitoring alerts every {loop.interval:g}s[/bold green] "
            "[dim](Ctrl-C to stop)[/dim]"
        )
        thread = loop.start()
        try:
            while thread.is_alive():
                thread.join(0.5)
        except KeyboardInterrupt:
            console.print("[yellow]Stopping after the current check...[/yellow]")
    finally:
        loop.stop()
