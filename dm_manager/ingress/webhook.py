"""Instagram webhook ingress: verification, parsing and event filtering."""

import hashlib
import hmac
from dataclasses import dataclass, field

from ..dispatch import IDelayedDispatcher
from ..logging_config import get_logger
from ..models import InstagramMessage
from ..storage import IStorage
from ..tracker import ITracker

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"

_KNOWN_ATTACHMENT_TYPES = {
    "image",
    "video",
    "audio",
    "file",
    "share",
    "story_mention",
    "reel",
    "ig_reel",
}


class WebhookSignatureError(Exception):
    """The request is not signed with our app secret."""


def verify_signature(body: bytes, signature_header: str | None, app_secret: str) -> None:
    """Check ``X-Hub-Signature-256: sha256=<hex hmac of the raw body>``."""
    if not app_secret:
        raise WebhookSignatureError("App secret not configured")
    if not signature_header:
        raise WebhookSignatureError("Missing signature header")

    expected = "sha256=" + hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature_header):
        raise WebhookSignatureError("Signature mismatch")


def extract_events(payload: dict) -> list[dict]:
    """Flatten messaging events from ``entry[].changes`` and ``entry[].messaging``.

    Entries and changes that are not objects are skipped.
    """
    events: list[dict] = []
    for entry in payload.get("entry") or []:
        if not isinstance(entry, dict):
            continue
        for change in entry.get("changes") or []:
            value = change.get("value") if isinstance(change, dict) else None
            if isinstance(value, dict):
                events.append(value)
        for event in entry.get("messaging") or []:
            if isinstance(event, dict):
                events.append(event)
    return events


def _sender_id(event: dict) -> str | None:
    sender = event.get("sender")
    return sender.get("id") if isinstance(sender, dict) else None


def _message_type(message: dict) -> str:
    reply_to = message.get("reply_to") or {}
    if "story" in reply_to:
        return "story_reply"

    attachments = message.get("attachments") or []
    if attachments:
        attachment_type = attachments[0].get("type")
        return attachment_type if attachment_type in _KNOWN_ATTACHMENT_TYPES else "other"

    return "text" if message.get("text") else "other"


def parse_message(event: dict, page_id: str) -> tuple[InstagramMessage | None, str]:
    """Turn one event into an inbound message, or say why it is discarded."""
    sender_id = _sender_id(event)

    if "reaction" in event:
        return None, "reaction"
    if "read" in event:
        return None, "read"
    if "postback" in event:
        logger.info(
            "Ignoring postback",
            extra={"context": {"thread_id": sender_id, "postback": event["postback"]}},
        )
        return None, "postback"
    if "referral" in event:
        logger.info(
            "Referral received",
            extra={"context": {"thread_id": sender_id, "referral": event["referral"]}},
        )

    message = event.get("message")
    if not isinstance(message, dict):
        return None, "no_message"
    if message.get("is_echo"):
        return None, "echo"
    if not sender_id:
        return None, "no_sender"
    if page_id and sender_id == page_id:
        return None, "own_message"

    return (
        InstagramMessage(
            id=message.get("mid", ""),
            sender_id=sender_id,
            recipient_id=(event.get("recipient") or {}).get("id", ""),
            text=message.get("text") or "",
            timestamp=int(event.get("timestamp") or 0),
            message_type=_message_type(message),
            reply_to_message_id=(message.get("reply_to") or {}).get("mid"),
        ),
        "accepted",
    )


@dataclass
class IngressSummary:
    accepted: int = 0
    reset: int = 0
    errors: int = 0
    discarded: dict[str, int] = field(default_factory=dict)

    def discard(self, reason: str) -> None:
        self.discarded[reason] = self.discarded.get(reason, 0) + 1


class WebhookIngress:
    """Marks threads pending and schedules their processing.

    The thread id is the sender's Instagram id. Errors on one message are
    logged and do not stop the rest of the batch.
    """

    def __init__(
        self,
        storage: IStorage,
        dispatcher: IDelayedDispatcher,
        tracker: ITracker,
        page_id: str,
        test_mode_sender_id: str = "",
        reset_keyword: str = "",
    ):
        self._storage = storage
        self._dispatcher = dispatcher
        self._tracker = tracker
        self._page_id = page_id
        self._test_mode_sender_id = test_mode_sender_id
        self._reset_keyword = reset_keyword

    async def handle(self, payload: dict) -> IngressSummary:
        summary = IngressSummary()

        if payload.get("object") != "instagram":
            logger.info("Ignoring webhook for object %s", payload.get("object"))
            summary.discard("not_instagram")
            return summary

        for event in extract_events(payload):
            try:
                await self._handle_event(event, summary)
            except Exception as e:
                summary.errors += 1
                logger.error(
                    "Failed to handle webhook event: %s",
                    e,
                    exc_info=True,
                    extra={"context": {"thread_id": _sender_id(event)}},
                )

        return summary

    async def _handle_event(self, event: dict, summary: IngressSummary) -> None:
        message, reason = parse_message(event, self._page_id)
        if message is None:
            logger.debug("Discarded webhook event: %s", reason)
            summary.discard(reason)
            return

        if self._test_mode_sender_id and message.sender_id != self._test_mode_sender_id:
            summary.discard("test_mode")
            return

        await self._accept(message, summary)

    async def _accept(self, message: InstagramMessage, summary: IngressSummary) -> None:
        thread_id = message.sender_id
        log_context = {"thread_id": thread_id, "message_id": message.id}

        if self._reset_keyword and message.text == self._reset_keyword:
            await self._storage.delete_thread_data(thread_id)
            summary.reset += 1
            logger.info("Thread reset by keyword", extra={"context": log_context})
            await self._tracker.track(
                event_type="thread_reset",
                actor="ingress",
                data={"source": "keyword"},
                thread_id=thread_id,
            )
            return

        await self._storage.mark_thread_pending(thread_id)
        task = await self._dispatcher.schedule(thread_id)
        summary.accepted += 1

        logger.info(
            "Inbound message accepted",
            extra={"context": {**log_context, "message_type": message.message_type}},
        )
        await self._tracker.track(
            event_type="message_received",
            actor="ingress",
            data={
                "message_id": message.id,
                "message_type": message.message_type,
                "task": task.name if task else None,
            },
            thread_id=thread_id,
        )
