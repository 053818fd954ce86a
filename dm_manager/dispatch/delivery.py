"""Ways of handing a due dispatch task to the thread processor."""

import httpx

from ..logging_config import get_logger
from ..models import DispatchTask
from .auth import DispatchTokenSettings, issue_dispatch_token

logger = get_logger(__name__)


class LocalTaskDelivery:
    """Runs the processing pass in this process."""

    def __init__(self, processor):
        self._processor = processor

    async def __call__(self, task: DispatchTask) -> None:
        await self._processor.process_thread(task.thread_id)


class HttpTaskDelivery:
    """POSTs the task to the processing endpoint with a signed bearer token.

    Any non-2xx answer raises, so the runner retries the task.
    """

    def __init__(
        self,
        target_url: str,
        token_settings: DispatchTokenSettings,
        client: httpx.AsyncClient | None = None,
        timeout: float = 130.0,
    ):
        self._target_url = target_url
        self._token_settings = token_settings
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __call__(self, task: DispatchTask) -> None:
        token = issue_dispatch_token(self._token_settings, subject=task.name)
        response = await self._client.post(
            self._target_url,
            json=task.payload or {"thread_id": task.thread_id},
            headers={"Authorization": f"Bearer {token}"},
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
