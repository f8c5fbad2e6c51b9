"""
Helpdesk External Service Integrations
======================================

Optional HTTP notification gateway. When ``notification_webhook_url`` is
configured, accepted notifications are forwarded to it; actual delivery
(push, email, WhatsApp) is the gateway's job.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from typing import List, Optional

import httpx

from deskflow.config import settings
from deskflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time:
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


@dataclass
class GatewayMessage:
    """Payload forwarded to the notification gateway."""
    channel: str
    title: str
    message: str
    recipients: List[str]
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


class WebhookNotificationClient:
    """
    Notification gateway client with circuit breaker and retry logic.

    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._url = url or settings.notification_webhook_url
        self._timeout = timeout_seconds or settings.notification_timeout_seconds
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def forward(self, data: GatewayMessage, max_retries: int = 3) -> bool:
        """
        Forward a notification to the gateway.

        Returns:
            True if the gateway accepted it, False otherwise
        """
        if not self.enabled:
            logger.debug("Notification gateway not configured, skipping")
            return False

        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, skipping notification forward",
                extra={"entity_id": data.entity_id}
            )
            return False

        for attempt in range(max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._url, json=asdict(data))

                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification forwarded",
                        extra={"channel": data.channel, "recipients": len(data.recipients)}
                    )
                    return True

                logger.warning(
                    "Notification gateway returned an error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                logger.error(
                    "Notification forward failed",
                    extra={"error": str(e), "attempt": attempt + 1, "entity_id": data.entity_id}
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# Process-wide client; shares its connection pool across requests
notification_client = WebhookNotificationClient()
