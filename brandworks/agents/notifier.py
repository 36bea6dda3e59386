"""Live progress notifications for agent sessions.

Clients following a brand subscribe to ``brand:<brandId>``. Each message
is a JSON object ``{"event": ..., "data": {...}, "timestamp": <ms>}``.
"""

import json
import logging
import time
from typing import Any, Dict, Protocol

logger = logging.getLogger(__name__)


def brand_channel(brand_id: str) -> str:
    return f"brand:{brand_id}"


class LiveNotifier(Protocol):
    async def publish(self, brand_id: str, event: str, data: Dict[str, Any]) -> None: ...


class RedisNotifier:
    """Publishes notifications on Redis pub/sub."""

    def __init__(self, client):
        self.client = client

    async def publish(self, brand_id: str, event: str, data: Dict[str, Any]) -> None:
        message = json.dumps(
            {"event": event, "data": data, "timestamp": int(time.time() * 1000)},
            default=str,
        )
        await self.client.publish(brand_channel(brand_id), message)


class LoggingNotifier:
    """Used when no pub/sub backend is configured (in-memory broker)."""

    async def publish(self, brand_id: str, event: str, data: Dict[str, Any]) -> None:
        logger.debug(f"{event} on {brand_channel(brand_id)}", extra={"data": data})
