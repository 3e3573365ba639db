"""Persistence for Pegwatch."""

from pegwatch.db.base import AlertStore
from pegwatch.db.store import SQLiteAlertStore

__all__ = [
    "AlertStore",
    "SQLiteAlertStore",
]
