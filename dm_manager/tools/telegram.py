"""Telegram Bot API notifier for the studio manager."""

import re
from dataclasses import dataclass

import httpx

from ..logging_config import get_logger

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"

_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_markdown_v2(text: str) -> str:
    """Escape every character MarkdownV2 treats as markup."""
    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


@dataclass
class NotificationResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class TelegramNotifier:
    """Posts MarkdownV2 messages to the manager's chat."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = TELEGRAM_API_BASE,
    ):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send(self, text: str) -> NotificationResult:
        """Send already-escaped MarkdownV2 text."""
        if not self.configured:
            logger.warning("Telegram credentials not configured, notification not sent")
            return NotificationResult(success=False, error="Telegram not configured")

        url = f"{self._base_url}/bot{self._bot_token}/sendMessage"
        try:
            response = await self._client.post(
                url,
                json={
                    "chat_id": self._chat_id,
                    "text": text,
                    "parse_mode": "MarkdownV2",
                },
            )
        except httpx.HTTPError as e:
            logger.error("Telegram request failed: %s", e)
            return NotificationResult(success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success or not data.get("ok"):
            error = data.get("description") or f"HTTP {response.status_code}"
            logger.error(
                "Telegram rejected notification",
                extra={"context": {"status": response.status_code, "error": error}},
            )
            return NotificationResult(success=False, error=error)

        message_id = (data.get("result") or {}).get("message_id")
        logger.info("Sent Telegram notification", extra={"context": {"message_id": message_id}})
        return NotificationResult(
            success=True,
            message_id=str(message_id) if message_id is not None else None,
        )
