"""Alert management commands for Pegwatch CLI.

Handles alert operations including the interactive creation wizard,
listing and removing alerts, and showing the supported symbols.
"""

from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from pegwatch.cli.main import console, get_config, get_store, print_error
from pegwatch.models import Alert, DepegTarget, PairDepegTarget, PriceTarget


DEFAULT_SESSION = "cli"
CANCEL_WORDS = {"cancel", "/cancel", "quit", "q"}


def describe_alert(alert: Alert) -> str:
    """One-line human description of an alert's condition."""
    variant = alert.variant
    if isinstance(variant, PriceTarget):
        return f"price {variant.condition.value} ${variant.target_price:,.2f}"
    if isinstance(variant, DepegTarget):
        return (
            f"±{variant.differential_pct:g}% from ${variant.target_price:g} "
            f"on {', '.join(variant.sources)}"
        )
    if isinstance(variant, PairDepegTarget):
        return f"ratio {variant.expected_ratio:g} ±{variant.differential_pct:g}%"
    return ""


@click.command("alert")
@click.argument("kind", type=click.Choice(["price", "depeg", "pair_depeg"], case_sensitive=False))
@click.option(
    "--session", "session_id",
    default=DEFAULT_SESSION,
    show_default=True,
    help="Session / owner ID the alert belongs to (e.g. a Telegram chat id).",
)
@click.option(
    "--source", "sources",
    multiple=True,
    help="Venue to sample for depeg alerts (repeatable).",
)
@click.pass_context
def create_alert(ctx: click.Context, kind: str, session_id: str, sources: tuple[str, ...]) -> None:
    """Create an alert step by step.

    KIND is one of price, depeg or pair_depeg. Type 'cancel' at any
    prompt to abandon the wizard.

    \b
    Examples:
      pegwatch alert price
      pegwatch alert depeg --source binance --source coinbase
      pegwatch alert pair_depeg --session 123456789
    """
    from pegwatch.engine.wizard import (
        Completed,
        ConversationStateMachine,
        NotStarted,
    )
    from pegwatch.errors import PegwatchError, ValidationError

    config = get_config(ctx)
    store = get_store(config)
    machine = ConversationStateMachine.from_config(store, config)

    try:
        outcome = machine.start(session_id, kind, sources=list(sources) or None)
    except ValidationError as e:
        print_error("Invalid Alert", str(e))
        raise SystemExit(1)

    try:
        while True:
            if isinstance(outcome, Completed):
                alert = outcome.alert
                console.print(Panel(
                    f"[bold green]Alert Created[/bold green]\n\n"
                    f"ID:        {alert.id}\n"
                    f"Symbol:    {alert.symbol}\n"
                    f"Type:      {alert.kind}\n"
                    f"Condition: {describe_alert(alert)}",
                    title="[bold]New Alert[/bold]",
                    border_style="green",
                ))
                return
            if isinstance(outcome, NotStarted):
                print_error("Error", outcome.message)
                raise SystemExit(1)

            if outcome.reason:
                console.print(f"[red]✗ {outcome.reason}[/red]")
            if outcome.options:
                console.print(f"[dim]Options: {', '.join(outcome.options)}[/dim]")

            answer = click.prompt(outcome.message, prompt_suffix=" ")
            if answer.strip().lower() in CANCEL_WORDS:
                machine.cancel(session_id)
                console.print("[yellow]Alert creation cancelled[/yellow]")
                return
            outcome = machine.advance(session_id, answer)
    except click.Abort:
        machine.cancel(session_id)
        raise
    except PegwatchError as e:
        print_error("Failed to create alert", str(e))
        raise SystemExit(1)


@click.command("alerts")
@click.option("--owner", default=None, help="Only show alerts for this owner.")
@click.option(
    "--remove", "remove_id",
    type=int,
    default=None,
    help="Remove alert with specified ID.",
)
@click.option("--active", "active_only", is_flag=True, help="Hide triggered alerts.")
@click.pass_context
def list_alerts(
    ctx: click.Context,
    owner: Optional[str],
    remove_id: Optional[int],
    active_only: bool,
) -> None:
    """Display or manage alerts.

    \b
    Examples:
      pegwatch alerts              # List all alerts
      pegwatch alerts --active     # Only alerts still being watched
      pegwatch alerts --remove 5   # Remove alert with ID 5
    """
    from pegwatch.errors import PersistenceError

    config = get_config(ctx)

    try:
        store = get_store(config)

        if remove_id is not None:
            alert = store.get_alert_by_id(remove_id)
            if alert is None:
                console.print(f"[yellow]Alert with ID {remove_id} not found[/yellow]")
                return

            store.delete_alert(remove_id)
            console.print(f"[green]✓ Removed alert {remove_id} ({alert.symbol}: {describe_alert(alert)})[/green]")
            return

        alerts = store.get_alerts(owner=owner)
        if active_only:
            alerts = [a for a in alerts if a.active]

        if not alerts:
            console.print(Panel(
                "[dim]No alerts set. Use 'pegwatch alert KIND' to create one.[/dim]",
                title="[bold]Alerts[/bold]",
                border_style="dim",
            ))
            return

        table = Table(
            title="Alerts",
            show_header=True,
            header_style="bold cyan",
        )

        table.add_column("ID", style="dim", width=6)
        table.add_column("Owner")
        table.add_column("Symbol", style="bold")
        table.add_column("Type")
        table.add_column("Condition")
        table.add_column("Created", style="dim")
        table.add_column("Status", justify="center")

        for alert in alerts:
            if alert.active:
                status = "[green]●[/green]"
            else:
                status = f"[yellow]✓ {alert.triggered_at:%Y-%m-%d %H:%M}[/yellow]"

            table.add_row(
                str(alert.id),
                alert.owner,
                alert.symbol,
                alert.kind,
                describe_alert(alert),
                alert.created_at.strftime("%Y-%m-%d %H:%M"),
                status,
            )

        console.print(table)
        stats = store.get_stats()
        console.print(f"\n[dim]Total: {len(alerts)} alerts[/dim]")
        console.print(
            f"[dim]Store: {stats['active_alerts']} active, "
            f"{stats['triggered_alerts']} triggered, "
            f"{stats['open_sessions']} wizard(s) in progress[/dim]"
        )
        console.print("[dim]Use 'pegwatch alerts --remove ID' to delete an alert[/dim]")

    except PersistenceError as e:
        print_error("Failed to list alerts", str(e))
        raise SystemExit(1)


@click.command("symbols")
@click.pass_context
def list_symbols(ctx: click.Context) -> None:
    """Show the symbols and pairs alerts can be created for."""
    config = get_config(ctx)
    catalog = config.catalog

    table = Table(title="Supported Assets", header_style="bold cyan")
    table.add_column("Symbol", style="bold")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("CoinGecko ID", style="dim")

    for symbol, info in catalog.cryptocurrencies.items():
        table.add_row(symbol.upper(), info.name, "crypto", info.coingecko_id)
    for symbol, info in catalog.stablecoins.items():
        table.add_row(symbol.upper(), info.name, "[green]stablecoin[/green]", info.coingecko_id)
    console.print(table)

    if catalog.pairs:
        pairs = Table(title="Pairs", header_style="bold cyan")
        pairs.add_column("Pair", style="bold")
        pairs.add_column("Suggested ratio", justify="right")
        for pair in catalog.pair_list():
            pairs.add_row(pair.label, f"{pair.expected_ratio:g}")
        console.print(pairs)

    console.print(
        f"[dim]Depeg venues: {', '.join(config.depeg.default_sources)}[/dim]"
    )
