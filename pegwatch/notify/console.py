"""Console notifier for dry runs."""

from rich.console import Console
from rich.panel import Panel

from pegwatch.notify.base import NotificationSink


class ConsoleNotifier(NotificationSink):
    """Prints alerts to the terminal instead of delivering them."""

    def __init__(self, console: Console | None = None):
        self._console = console or Console()

    def send_alert(self, owner: str, message: str) -> None:
        self._console.print(Panel(
            message,
            title=f"[bold yellow]Alert for {owner}[/bold yellow]",
            border_style="yellow",
        ))

    def verify_reachable(self) -> None:
        return None
