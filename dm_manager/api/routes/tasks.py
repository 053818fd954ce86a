"""Processing endpoint for delivered dispatch tasks."""

from typing import Literal

from pydantic import BaseModel, ValidationError
from fastapi import APIRouter, Header, HTTPException, Request

from ...app import Application
from ...dispatch import DispatchAuthError, parse_bearer, verify_dispatch_token
from ...logging_config import get_logger

logger = get_logger(__name__)


class ProcessThreadRequest(BaseModel):
    """Request model for processing a thread."""

    thread_id: str


class ProcessThreadResponse(BaseModel):
    """Response model for a processing pass."""

    status: Literal["processed", "skipped"]
    thread_id: str
    tools_invoked: list[str] = []
    follow_up_scheduled: bool = False


def create_tasks_router(app: Application) -> APIRouter:
    """Create tasks router."""
    router = APIRouter(prefix="/tasks", tags=["tasks"])

    @router.post("/process-thread", response_model=ProcessThreadResponse)
    async def process_thread(
        request: Request,
        authorization: str | None = Header(None),
    ) -> dict:
        """Run one processing pass. 500 makes the task runner retry.

        The bearer token is checked before the body is read, so an
        unauthenticated caller always gets 401.
        """
        try:
            verify_dispatch_token(app.dispatch_token_settings, parse_bearer(authorization))
        except DispatchAuthError as e:
            logger.warning("Rejected dispatch delivery: %s", e)
            raise HTTPException(status_code=401, detail="Unauthorized")

        try:
            body = ProcessThreadRequest.model_validate_json(await request.body())
        except ValidationError as e:
            raise HTTPException(
                status_code=422, detail=e.errors(include_url=False, include_context=False)
            )

        try:
            result = await app.processor.process_thread(body.thread_id)
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))

        tools = result.agent_result.tools_invoked if result.agent_result else []
        return {
            "status": result.status,
            "thread_id": result.thread_id,
            "tools_invoked": [tool.value for tool in tools],
            "follow_up_scheduled": result.follow_up_scheduled,
        }

    return router
