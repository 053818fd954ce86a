"""Webhook ingress."""

from .webhook import (
    SIGNATURE_HEADER,
    IngressSummary,
    WebhookIngress,
    WebhookSignatureError,
    extract_events,
    parse_message,
    verify_signature,
)

__all__ = [
    "SIGNATURE_HEADER",
    "IngressSummary",
    "WebhookIngress",
    "WebhookSignatureError",
    "extract_events",
    "parse_message",
    "verify_signature",
]
