"""Instagram webhook routes."""

import hmac
import json

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from ...app import Application
from ...ingress import SIGNATURE_HEADER, WebhookSignatureError, verify_signature
from ...logging_config import get_logger

logger = get_logger(__name__)


def create_webhook_router(app: Application) -> APIRouter:
    """Create webhook router."""
    router = APIRouter(prefix="/webhook", tags=["webhook"])

    @router.get("/instagram", response_class=PlainTextResponse)
    async def verify_subscription(
        mode: str | None = Query(None, alias="hub.mode"),
        verify_token: str | None = Query(None, alias="hub.verify_token"),
        challenge: str | None = Query(None, alias="hub.challenge"),
    ) -> str:
        """Meta subscription handshake: echo the challenge."""
        expected = app.settings.instagram_verify_token
        if (
            mode == "subscribe"
            and expected
            and hmac.compare_digest(verify_token or "", expected)
        ):
            logger.info("Webhook subscription verified")
            return challenge or ""
        logger.warning("Webhook verification failed", extra={"context": {"mode": mode}})
        raise HTTPException(status_code=403, detail="Verification failed")

    @router.post("/instagram")
    async def receive_webhook(request: Request) -> dict:
        """Accept inbound events; always 200 once signature and JSON are valid."""
        body = await request.body()

        if not app.settings.local_mode:
            try:
                verify_signature(
                    body,
                    request.headers.get(SIGNATURE_HEADER),
                    app.settings.instagram_app_secret,
                )
            except WebhookSignatureError as e:
                logger.warning("Rejected webhook: %s", e)
                raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON")
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload")

        try:
            summary = await app.ingress.handle(payload)
        except Exception as e:
            logger.error(f"Webhook handling failed: {e}", exc_info=True)
            return {"status": "ok"}

        return {
            "status": "ok",
            "accepted": summary.accepted,
            "reset": summary.reset,
            "errors": summary.errors,
            "discarded": summary.discarded,
        }

    return router
