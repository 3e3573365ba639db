"""AlertStore interface for Pegwatch."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from pegwatch.models import Alert, ConversationState


class AlertStore(ABC):
    """Durable storage for alerts and per-session wizard state.

    Implementations raise PersistenceError for any storage failure.
    """

    @abstractmethod
    def get_active_alerts(self) -> list[Alert]:
        """Get all alerts that have not triggered yet."""
        pass

    @abstractmethod
    def save_alert(self, alert: Alert) -> Alert:
        """Insert a new alert.

        Returns:
            The stored alert with its id populated.
        """
        pass

    @abstractmethod
    def mark_triggered(self, alert_id: int, triggered_at: datetime) -> None:
        """Transition an active alert to triggered.

        Raises:
            PersistenceError: If no active alert has this id.
        """
        pass

    @abstractmethod
    def get_conversation_state(self, session_id: str) -> Optional[ConversationState]:
        pass

    @abstractmethod
    def save_conversation_state(self, state: ConversationState) -> None:
        pass

    @abstractmethod
    def clear_conversation_state(self, session_id: str) -> None:
        pass

    @abstractmethod
    def complete_conversation(self, session_id: str, alert: Alert) -> Alert:
        """Insert the finished alert and clear the session state atomically.

        Returns:
            The stored alert with its id populated.
        """
        pass
