"""Conversation assembly."""

from .transcript import build_transcript, latest_inbound

__all__ = ["build_transcript", "latest_inbound"]
