"""Notification sinks for Pegwatch."""

from pegwatch.notify.base import NotificationSink
from pegwatch.notify.console import ConsoleNotifier
from pegwatch.notify.telegram import TelegramNotifier, escape_markdown

__all__ = [
    "ConsoleNotifier",
    "NotificationSink",
    "TelegramNotifier",
    "escape_markdown",
]
