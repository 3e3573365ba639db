"""Notification sink interface for Pegwatch."""

from abc import ABC, abstractmethod


class NotificationSink(ABC):
    """Delivers alert messages to alert owners."""

    @abstractmethod
    def send_alert(self, owner: str, message: str) -> None:
        """Deliver a message to an owner.

        Raises:
            SourceUnavailable: If delivery fails.
        """
        pass

    @abstractmethod
    def verify_reachable(self) -> None:
        """Check the sink can be reached.

        Raises:
            SourceUnavailable: If the sink is unreachable or misconfigured.
        """
        pass
