import json
import logging
from typing import Optional

import httpx

from .errors import SinkUnavailable
from .models import NotificationEvent

logger = logging.getLogger(__name__)


class WebhookSink:
    """POSTs notification events to a downstream webhook. No retries."""

    def __init__(self, url: str, client: httpx.AsyncClient, timeout: Optional[float] = None):
        self.url = url
        self.client = client
        self.timeout = timeout

    async def deliver(self, event: NotificationEvent) -> None:
        kwargs = {"timeout": self.timeout} if self.timeout is not None else {}
        try:
            response = await self.client.post(
                self.url,
                json=event.to_wire(),
                headers={"Content-Type": "application/json"},
                **kwargs
            )
        except httpx.HTTPError as e:
            raise SinkUnavailable(f"Webhook call failed: {e}") from e

        if not response.is_success:
            raise SinkUnavailable(
                f"Webhook returned {response.status_code}",
                status_code=response.status_code
            )

        logger.info(json.dumps({
            "event": "notifications.sink.delivered",
            "url": self.url,
            "status": response.status_code
        }))
