"""Telegram Bot API notifier."""

import logging

import requests

from pegwatch.errors import SourceUnavailable
from pegwatch.notify.base import NotificationSink


logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"

# Characters MarkdownV2 requires to be escaped outside entities
MARKDOWN_V2_SPECIAL = "_*[]()~`>#+-=|{}.!\\$%<"


def escape_markdown(text: str) -> str:
    """Escape text for Telegram's MarkdownV2 parse mode."""
    return "".join(f"\\{ch}" if ch in MARKDOWN_V2_SPECIAL else ch for ch in text)


class TelegramNotifier(NotificationSink):
    """Sends alerts to Telegram chats; the owner is the chat id."""

    def __init__(
        self,
        token: str,
        base_url: str = TELEGRAM_API_URL,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ):
        if not token:
            raise ValueError("Telegram bot token is required")
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def _call(self, method: str, payload: dict | None = None) -> dict:
        url = f"{self._base_url}/bot{self._token}/{method}"
        try:
            response = self._session.post(url, json=payload or {}, timeout=self._timeout)
            body = response.json()
        except requests.RequestException as e:
            raise SourceUnavailable(f"telegram {method}: {e}") from e
        except ValueError as e:
            raise SourceUnavailable(f"telegram {method}: invalid JSON response") from e

        if not body.get("ok"):
            description = body.get("description", f"HTTP {response.status_code}")
            raise SourceUnavailable(f"telegram {method}: {description}")
        return body.get("result", {})

    def send_alert(self, owner: str, message: str) -> None:
        try:
            chat_id = int(owner)
        except (TypeError, ValueError):
            raise SourceUnavailable(f"Invalid Telegram chat id: {owner!r}")
        if chat_id == 0:
            raise SourceUnavailable("Invalid Telegram chat id: 0")

        logger.debug("Sending alert to chat %s", chat_id)
        self._call(
            "sendMessage",
            {
                "chat_id": chat_id,
                "text": escape_markdown(message),
                "parse_mode": "MarkdownV2",
            },
        )

    def verify_reachable(self) -> None:
        me = self._call("getMe")
        logger.info("Telegram bot verified: @%s", me.get("username", "?"))
