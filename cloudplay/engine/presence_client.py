"""HTTP presence service.

Publishes "what am I doing" activities to a presence relay (a rich-presence
bridge, a status page, ...). Each call is one ``PUT {url}/activity`` with an
activity document; ``set_idle`` clears it with ``DELETE``.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

SERVICE_LABEL = "GeForce NOW"


class HttpPresenceService:
    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_s)
        self._client = client
        self._owns_client = client is None

    async def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def set_queued(self, title: str) -> None:
        await self._put(
            {
                "state": "Waiting in queue",
                "details": f"Waiting to play {title}",
                "assets": {"large_text": SERVICE_LABEL, "small_text": "In Queue"},
            }
        )

    async def set_playing(self, title: str, title_id: str, details: dict[str, Any]) -> None:
        activity = _playing_activity(title, details)
        activity["title_id"] = title_id
        await self._put(activity)

    async def update_stats(self, title: str, details: dict[str, Any]) -> None:
        await self._put(_playing_activity(title, details))

    async def set_idle(self) -> None:
        client = await self.get_client()
        response = await client.delete(f"{self.url}/activity")
        response.raise_for_status()
        logger.info("presence cleared")

    async def _put(self, activity: dict[str, Any]) -> None:
        client = await self.get_client()
        response = await client.put(f"{self.url}/activity", json=activity)
        response.raise_for_status()
        logger.info("presence updated: %s", activity.get("details"))


def _playing_activity(title: str, details: dict[str, Any]) -> dict[str, Any]:
    state = "Playing via " + SERVICE_LABEL
    if "resolution" in details:
        # live stats are opt-in; only present when the reporter added them
        state = f"{details['resolution']} {details.get('fps', '?')}fps {details.get('latency_ms', '?')}ms"
    return {
        "state": state,
        "details": title,
        "assets": {"large_text": SERVICE_LABEL, "small_text": "Playing"},
        "timestamps": {"start": int(details.get("start_time") or time.time())},
    }
