"""Conversation assembler: platform messages to a role-tagged transcript."""

from typing import Iterable

from ..models import ConversationMessage, TranscriptEntry


def build_transcript(
    messages: Iterable[ConversationMessage],
    page_id: str,
    limit: int | None = None,
    newest_first: bool = False,
) -> list[TranscriptEntry]:
    """Tag each message with who sent it and order oldest first.

    Args:
        messages: Stored or platform-fetched messages.
        page_id: Our own page id; its messages become ``assistant`` turns.
        limit: Keep at most this many of the newest messages.
        newest_first: Input is in reverse-chronological order, as the
            conversations API returns it.
    """
    ordered = list(messages)
    if newest_first:
        ordered.reverse()

    if limit is not None and limit >= 0 and len(ordered) > limit:
        ordered = ordered[len(ordered) - limit :]

    return [
        TranscriptEntry(
            role="assistant" if msg.sender_id == page_id else "user",
            content=msg.text,
            timestamp=msg.timestamp,
            message_id=msg.id,
        )
        for msg in ordered
    ]


def latest_inbound(
    messages: Iterable[ConversationMessage],
    page_id: str,
    newest_first: bool = False,
) -> ConversationMessage | None:
    """The most recent message the user sent, if any."""
    ordered = list(messages)
    if not newest_first:
        ordered.reverse()
    return next((msg for msg in ordered if msg.sender_id != page_id), None)
