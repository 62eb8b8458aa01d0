"""
Notification Dispatcher - signed webhook delivery to merchant endpoints.

Every delivery is a compact JSON body signed with HMAC-SHA256 and sent with
signature, event-type and delivery-id headers. Failed attempts are retried
with a linear delay (retry_delay * attempt) up to ``max_attempts``. Delivery
never rolls back the state transition that triggered it.
"""
import asyncio
import json
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import httpx
from pydantic import BaseModel

from core.crypto import create_hmac_signature, verify_hmac_signature
from core.errors import ExternalServiceError, ValidationError
from core.retry import RetryError, calculate_linear_delay, retry_async

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-DhanSetu-Signature"
EVENT_HEADER = "X-DhanSetu-Event"
DELIVERY_HEADER = "X-DhanSetu-Delivery"
USER_AGENT = "DhanSetu-Webhook/1.0"

EVENT_TYPES = {
    "payment": [
        "payment.created",
        "payment.completed",
        "payment.failed",
        "payment.expired",
    ],
    "subscription": [
        "subscription.created",
        "subscription.payment_due",
        "subscription.payment_processed",
        "subscription.payment_failed",
        "subscription.cancelled",
        "subscription.expired",
    ],
    "system": [
        "webhook.test",
    ],
}


class DeliveryResult(BaseModel):
    success: bool
    status_code: Optional[int] = None
    attempts: int
    delivery_id: str
    error: Optional[str] = None


def build_event_payload(
    event: str,
    object_type: str,
    object_id: str,
    created: datetime,
    data: Dict[str, Any],
    livemode: bool,
) -> Dict[str, Any]:
    """Top-level webhook envelope shared by every event."""
    return {
        "event": event,
        "id": object_id,
        "object": object_type,
        "created": int(created.timestamp()),
        "data": data,
        "livemode": livemode,
    }


def serialize_payload(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), default=str)


class NotificationDispatcher:
    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._sleep = sleep
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def verify_signature(body: str, signature: str, secret: str) -> bool:
        return verify_hmac_signature(body, signature, secret)

    async def deliver(self, endpoint_url: str, payload: Dict[str, Any], secret: str) -> DeliveryResult:
        """
        Deliver one event with bounded retries.

        Args:
            endpoint_url: Merchant webhook URL
            payload: Event envelope from build_event_payload
            secret: HMAC secret shared with the merchant

        Returns:
            DeliveryResult; failures are reported, never raised
        """
        delivery_id = uuid.uuid4().hex
        event = payload.get("event", "unknown")

        if not endpoint_url:
            return DeliveryResult(success=False, attempts=0, delivery_id=delivery_id, error="No webhook URL")

        body = serialize_payload(payload)
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: create_hmac_signature(body, secret),
            EVENT_HEADER: event,
            DELIVERY_HEADER: delivery_id,
            "User-Agent": USER_AGENT,
        }
        last_status: Dict[str, Optional[int]] = {"code": None}

        async def attempt_delivery(attempt: int) -> int:
            try:
                response = await self._client.post(
                    endpoint_url, content=body, headers=headers, timeout=self.timeout
                )
            except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
                raise ValidationError(f"Unusable webhook URL: {e}") from e
            except httpx.HTTPError as e:
                last_status["code"] = None
                raise ExternalServiceError(f"{type(e).__name__}: {e}", service="webhook") from e

            last_status["code"] = response.status_code
            if not 200 <= response.status_code < 300:
                raise ExternalServiceError(f"HTTP {response.status_code}", service="webhook")

            logger.info(
                f"Webhook {event} delivered to {endpoint_url} "
                f"(status={response.status_code}, attempt={attempt}, delivery={delivery_id})"
            )
            return response.status_code

        def log_failure(attempt: int, error: BaseException) -> None:
            logger.warning(
                f"Webhook {event} delivery failed (attempt {attempt}/{self.max_attempts}, "
                f"url={endpoint_url}, delivery={delivery_id}): {error}"
            )

        try:
            status_code, attempts = await retry_async(
                attempt_delivery,
                max_attempts=self.max_attempts,
                base_delay=self.retry_delay,
                retry_exceptions=(ExternalServiceError,),
                delay_fn=calculate_linear_delay,
                sleep=self._sleep,
                on_failure=log_failure,
            )
        except ValidationError as e:
            # Malformed URLs fail on the first attempt
            logger.error(f"Webhook {event} not sent (delivery={delivery_id}): {e.message}")
            return DeliveryResult(success=False, attempts=1, delivery_id=delivery_id, error=e.message)
        except RetryError as e:
            logger.error(f"Webhook {event} to {endpoint_url} gave up after {e.attempts} attempts")
            return DeliveryResult(
                success=False,
                status_code=last_status["code"],
                attempts=e.attempts,
                delivery_id=delivery_id,
                error=str(e.last_exception),
            )

        return DeliveryResult(success=True, status_code=status_code, attempts=attempts, delivery_id=delivery_id)

    def dispatch(
        self,
        endpoint_url: str,
        payload: Dict[str, Any],
        secret: str,
        on_complete: Optional[Callable[[DeliveryResult], Awaitable[None]]] = None,
    ) -> asyncio.Task:
        """Schedule delivery in the background and return immediately."""

        async def run() -> DeliveryResult:
            result = await self.deliver(endpoint_url, payload, secret)
            if on_complete is not None:
                try:
                    await on_complete(result)
                except Exception:
                    logger.exception(f"Recording webhook result for {payload.get('id')} failed")
            return result

        task = asyncio.create_task(run())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_deliveries(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every scheduled delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def send_test_event(self, endpoint_url: str, secret: str, created: datetime) -> DeliveryResult:
        payload = build_event_payload(
            "webhook.test",
            "test",
            f"test_{uuid.uuid4().hex[:12]}",
            created,
            {"message": "This is a test webhook from DhanSetu", "timestamp": created.isoformat()},
            livemode=False,
        )
        return await self.deliver(endpoint_url, payload, secret)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()
