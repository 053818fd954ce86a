"""Instagram Graph API client for messaging."""

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx

from ..logging_config import get_logger
from ..models import ConversationMessage, Reaction, SenderProfile

logger = get_logger(__name__)

GRAPH_API_VERSION = "v24.0"
GRAPH_API_BASE = f"https://graph.facebook.com/{GRAPH_API_VERSION}"

MAX_RETRIES = 3
INITIAL_RETRY_DELAY_SECONDS = 1.0

_MESSAGE_FIELDS = "id,created_time,from,message,attachments,story,shares"


class InstagramAPIError(Exception):
    """The Graph API rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return response.reason_phrase or f"HTTP {response.status_code}"


def _retry_after_seconds(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _message_type(raw: dict) -> str:
    story = raw.get("story") or {}
    if "mention" in story:
        return "story_mention"
    if "reply_to" in story:
        return "story_reply"

    attachments = (raw.get("attachments") or {}).get("data") or []
    if attachments:
        attachment = attachments[0]
        if "image_data" in attachment:
            return "image"
        if "video_data" in attachment:
            return "video"
        return "share" if raw.get("shares") else "other"

    return "text"


def _parse_created_time(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    # Graph API timestamps look like 2024-03-15T12:00:00+0000
    try:
        return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return datetime.fromisoformat(value)


class InstagramClient:
    """Instagram messaging over the Graph API.

    Every request is retried on rate limiting (honouring ``Retry-After``),
    on 5xx answers and on transport errors, up to ``max_retries`` attempts
    with exponential backoff.
    """

    def __init__(
        self,
        access_token: str,
        page_id: str,
        client: httpx.AsyncClient | None = None,
        base_url: str = GRAPH_API_BASE,
        max_retries: int = MAX_RETRIES,
        initial_retry_delay: float = INITIAL_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if not access_token or not page_id:
            logger.warning(
                "Instagram credentials not configured. "
                "Set META_MESSENGER_ACCESS_TOKEN and INSTAGRAM_PAGE_ID."
            )
        self._access_token = access_token
        self._page_id = page_id
        self._base_url = base_url.rstrip("/")
        self._max_retries = max_retries
        self._initial_retry_delay = initial_retry_delay
        self._sleep = sleep
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = client is None

    @property
    def page_id(self) -> str:
        return self._page_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self._access_token}"}

        for attempt in range(self._max_retries):
            backoff = self._initial_retry_delay * (2**attempt)
            is_last = attempt == self._max_retries - 1

            try:
                response = await self._client.request(
                    method, url, headers=headers, **kwargs
                )
            except httpx.TransportError as e:
                if is_last:
                    raise InstagramAPIError(f"Request failed after retries: {e}") from e
                logger.warning(
                    "Instagram API request failed, retrying",
                    extra={"context": {"error": str(e), "attempt": attempt, "delay": backoff}},
                )
                await self._sleep(backoff)
                continue

            if response.status_code == 429 and not is_last:
                delay = _retry_after_seconds(response)
                delay = backoff if delay is None else delay
                logger.warning(
                    "Rate limited by Instagram API",
                    extra={"context": {"attempt": attempt, "delay": delay}},
                )
                await self._sleep(delay)
                continue

            if response.status_code >= 500 and not is_last:
                logger.warning(
                    "Instagram API server error, retrying",
                    extra={
                        "context": {
                            "status": response.status_code,
                            "attempt": attempt,
                            "delay": backoff,
                        }
                    },
                )
                await self._sleep(backoff)
                continue

            return response

        raise InstagramAPIError("Request failed after retries")

    async def send_message(self, recipient_id: str, text: str) -> str:
        """Send a text message. Returns the platform message id."""
        response = await self._request(
            "POST",
            f"{self._page_id}/messages",
            json={"recipient": {"id": recipient_id}, "message": {"text": text}},
        )
        if not response.is_success:
            message = _error_message(response)
            logger.error(
                "Failed to send Instagram message",
                extra={"context": {"status": response.status_code, "error": message}},
            )
            raise InstagramAPIError(
                f"Failed to send message: {message}", response.status_code
            )

        message_id = response.json().get("message_id", "")
        logger.info(
            "Sent Instagram message",
            extra={"context": {"recipient_id": recipient_id, "message_id": message_id}},
        )
        return message_id

    async def send_reaction(
        self, recipient_id: str, message_id: str, reaction: Reaction
    ) -> None:
        """React to a message in the recipient's thread."""
        response = await self._request(
            "POST",
            f"{self._page_id}/messages",
            json={
                "recipient": {"id": recipient_id},
                "sender_action": "react",
                "payload": {"message_id": message_id, "reaction": reaction.value},
            },
        )
        if not response.is_success:
            message = _error_message(response)
            logger.error(
                "Failed to send Instagram reaction",
                extra={"context": {"status": response.status_code, "error": message}},
            )
            raise InstagramAPIError(
                f"Failed to send reaction: {message}", response.status_code
            )

        logger.info(
            "Sent Instagram reaction",
            extra={"context": {"message_id": message_id, "reaction": reaction.value}},
        )

    async def get_user_profile(self, user_id: str) -> SenderProfile:
        """Fetch a user's public profile; minimal profile if not accessible."""
        try:
            response = await self._request(
                "GET", user_id, params={"fields": "id,username,name"}
            )
        except InstagramAPIError as e:
            logger.warning(
                "Could not fetch user profile: %s", e, extra={"context": {"user_id": user_id}}
            )
            return SenderProfile(id=user_id)

        if not response.is_success:
            logger.warning(
                "Could not fetch user profile", extra={"context": {"user_id": user_id}}
            )
            return SenderProfile(id=user_id)

        data = response.json()
        return SenderProfile(
            id=data.get("id") or user_id,
            username=data.get("username"),
            name=data.get("name"),
        )

    async def get_conversation_messages(
        self, user_id: str, limit: int = 50
    ) -> list[ConversationMessage]:
        """Fetch the DM thread with a user, newest first as the API returns it."""
        response = await self._request(
            "GET",
            f"{self._page_id}/conversations",
            params={
                "platform": "instagram",
                "user_id": user_id,
                "fields": f"messages.limit({limit}){{{_MESSAGE_FIELDS}}}",
            },
        )
        if not response.is_success:
            raise InstagramAPIError(
                f"Failed to fetch conversation: {_error_message(response)}",
                response.status_code,
            )

        conversations = response.json().get("data") or []
        if not conversations:
            return []

        raw_messages = (conversations[0].get("messages") or {}).get("data") or []
        return [
            ConversationMessage(
                id=raw.get("id", ""),
                sender_id=(raw.get("from") or {}).get("id", ""),
                text=raw.get("message") or "",
                timestamp=_parse_created_time(raw.get("created_time")),
                message_type=_message_type(raw),
            )
            for raw in raw_messages
        ]
