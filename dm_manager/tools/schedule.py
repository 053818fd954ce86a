"""Upcoming net-session schedule, fetched from an external provider."""

from dataclasses import dataclass

import httpx

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ScheduleEvent:
    name: str
    start: str
    end: str | None = None
    location: str | None = None


def _parse_event(raw: dict) -> ScheduleEvent | None:
    name = raw.get("name") or raw.get("title")
    start = raw.get("start") or raw.get("start_time")
    if not name or not start:
        return None
    return ScheduleEvent(
        name=str(name),
        start=str(start),
        end=raw.get("end") or raw.get("end_time"),
        location=raw.get("location"),
    )


class ScheduleProvider:
    """Best-effort reader of the session calendar.

    Any failure (no URL configured, network error, bad payload) yields an
    empty schedule; the agent then tells the user it will check.
    """

    def __init__(self, url: str, client: httpx.AsyncClient | None = None):
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_events(self) -> list[ScheduleEvent]:
        if not self._url:
            logger.info("Schedule provider not configured")
            return []

        try:
            response = await self._client.get(self._url)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to fetch session schedule: %s", e)
            return []

        raw_events = payload.get("events", []) if isinstance(payload, dict) else payload
        if not isinstance(raw_events, list):
            logger.warning("Unexpected schedule payload shape")
            return []

        events = [
            event
            for event in (_parse_event(raw) for raw in raw_events if isinstance(raw, dict))
            if event is not None
        ]
        logger.debug("Fetched %d schedule events", len(events))
        return events
