"""
Tests for the optional webhook notification gateway client.
"""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from deskflow.helpdesk.infrastructure.external import (
    CircuitBreaker,
    CircuitState,
    GatewayMessage,
    WebhookNotificationClient,
)

MESSAGE = GatewayMessage(
    channel="in_app",
    title="Workflow Notification",
    message="Ticket T-1 escalated",
    recipients=["lead-1"],
    entity_type="ticket",
    entity_id="T-1",
)


def gateway(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebhookNotificationClient:

    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        client = WebhookNotificationClient(url=None, http_client=gateway(lambda request: httpx.Response(200)))

        assert client.enabled is False
        assert await client.forward(MESSAGE) is False

    @pytest.mark.asyncio
    async def test_forwards_payload(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202)

        client = WebhookNotificationClient(url="http://gateway.test/notify", http_client=gateway(handler))

        assert await client.forward(MESSAGE) is True
        assert seen[0].url == "http://gateway.test/notify"
        assert b'"recipients":["lead-1"]' in seen[0].content.replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_retries_then_gives_up(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client = WebhookNotificationClient(url="http://gateway.test/notify", http_client=gateway(handler))

        with patch("deskflow.helpdesk.infrastructure.external.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await client.forward(MESSAGE, max_retries=3) is False

        assert len(calls) == 3
        assert [c.args[0] for c in sleep.call_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_transport_errors_are_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused")
            return httpx.Response(200)

        client = WebhookNotificationClient(url="http://gateway.test/notify", http_client=gateway(handler))

        with patch("deskflow.helpdesk.infrastructure.external.asyncio.sleep", new=AsyncMock()):
            assert await client.forward(MESSAGE) is True

        assert len(attempts) == 2


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)

        breaker.record_failure()
        assert breaker.allow_request()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_half_open_after_recovery_timeout(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        breaker.record_failure()

        assert breaker.state == CircuitState.HALF_OPEN

        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED
