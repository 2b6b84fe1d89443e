"""
Unit tests for WebhookSink.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from services.notifications.errors import SinkUnavailable
from services.notifications.models import NotificationEvent
from services.notifications.sink import WebhookSink

WEBHOOK_URL = "https://hooks.example/notify"


@pytest.fixture
def event():
    return NotificationEvent(
        notification_type="SUBSCRIBED",
        subtype=None,
        category="subscription.started",
        transaction_info={"transactionId": "1", "expiresDate": 1767225600000},
        received_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def client_returning(status_code, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code)
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebhookSink:

    @pytest.mark.asyncio
    async def test_posts_event_json(self, event):
        seen = []
        async with client_returning(200, seen) as client:
            await WebhookSink(WEBHOOK_URL, client).deliver(event)

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == WEBHOOK_URL
        body = json.loads(request.content)
        assert body["notificationType"] == "SUBSCRIBED"
        assert body["transactionInfo"]["expiresDate"] == 1767225600000
        assert body["receivedAt"].startswith("2026-01-01T00:00:00")

    @pytest.mark.asyncio
    async def test_non_success_status(self, event):
        async with client_returning(500) as client:
            with pytest.raises(SinkUnavailable) as exc_info:
                await WebhookSink(WEBHOOK_URL, client).deliver(event)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error(self, event):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SinkUnavailable) as exc_info:
                await WebhookSink(WEBHOOK_URL, client, timeout=2.0).deliver(event)
        assert exc_info.value.status_code is None
