"""Webhook delivery engine."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError

from solarcrm.db.types import utcnow
from solarcrm.webhooks.config import WebhookSettings
from solarcrm.webhooks.events import canonical_json
from solarcrm.webhooks.exceptions import WebhookConfigError
from solarcrm.webhooks.models import DeliveryStatus, WebhookDelivery
from solarcrm.webhooks.signer import WebhookSigner
from solarcrm.webhooks.store import EndpointSnapshot, WebhookStore

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Result of a webhook delivery attempt."""

    success: bool
    http_status: int | None = None
    response_body: str | None = None
    error_message: str | None = None
    latency_ms: int | None = None
    # No point retrying: endpoint gone or unusable configuration
    fatal: bool = False


class DeliveryEngine:
    """Executes single delivery attempts and drives the delivery state machine.

    pending -> delivered | retrying | failed
    retrying -> delivered | retrying | failed
    delivered and failed are terminal.
    """

    def __init__(
        self,
        store: WebhookStore,
        settings: WebhookSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Persistence for endpoints and deliveries
            settings: Retry table, timeout and limits
            transport: Optional httpx transport (tests use MockTransport)
        """
        self._store = store
        self._settings = settings
        self._transport = transport

    @property
    def settings(self) -> WebhookSettings:
        return self._settings

    async def attempt_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Make one attempt for a delivery and persist the outcome.

        Never raises for delivery or storage failures; the returned record
        reflects what was persisted.
        """
        if delivery.is_terminal:
            logger.debug("Delivery %s is %s, skipping", delivery.id, delivery.status)
            return delivery

        expected_status = delivery.status
        expected_retry_count = delivery.retry_count

        try:
            endpoint = await self._store.get_endpoint_snapshot(delivery.endpoint_id)
            if endpoint is None:
                result = DeliveryResult(
                    success=False,
                    error_message="Webhook endpoint not found",
                    fatal=True,
                )
            else:
                result = await self._send(delivery.payload, endpoint)

            values = self._next_state(delivery, result, utcnow())
            persisted = await self._store.record_outcome(
                delivery.id,
                expected_status,
                expected_retry_count,
                values,
            )
        except SQLAlchemyError:
            logger.exception("Failed to record webhook delivery %s", delivery.id)
            return delivery

        if not persisted:
            logger.warning(
                "Delivery %s changed concurrently (was %s, retry %d); outcome discarded",
                delivery.id,
                expected_status,
                expected_retry_count,
            )
            return delivery

        for key, value in values.items():
            setattr(delivery, key, value)
        self._log_outcome(delivery, result)
        return delivery

    async def _send(self, payload: dict[str, Any], endpoint: EndpointSnapshot) -> DeliveryResult:
        """POST the signed payload to the endpoint."""
        body = canonical_json(payload)
        timeout = self._settings.delivery_timeout_seconds
        limit = self._settings.response_body_limit

        try:
            headers = WebhookSigner.get_headers(
                body,
                endpoint.secret,
                timestamp=utcnow().isoformat(),
                user_agent=self._settings.user_agent,
            )
        except WebhookConfigError as e:
            return DeliveryResult(success=False, error_message=str(e), fatal=True)

        start_time = time.monotonic()

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(endpoint.url, content=body, headers=headers)
        except httpx.TimeoutException:
            return DeliveryResult(
                success=False,
                error_message=f"Request timeout after {timeout}s",
            )
        except httpx.InvalidURL as e:
            return DeliveryResult(success=False, error_message=f"Invalid URL: {e}", fatal=True)
        except httpx.RequestError as e:
            return DeliveryResult(
                success=False,
                error_message=(str(e) or type(e).__name__)[:limit],
            )

        latency_ms = int((time.monotonic() - start_time) * 1000)
        response_body = response.text[:limit]

        if 200 <= response.status_code < 300:
            return DeliveryResult(
                success=True,
                http_status=response.status_code,
                response_body=response_body,
                latency_ms=latency_ms,
            )
        return DeliveryResult(
            success=False,
            http_status=response.status_code,
            response_body=response_body,
            error_message=f"HTTP {response.status_code}: {response_body}"[:limit],
            latency_ms=latency_ms,
        )

    def _next_state(
        self,
        delivery: WebhookDelivery,
        result: DeliveryResult,
        now: datetime,
    ) -> dict[str, Any]:
        """Column values for the record after this attempt."""
        values: dict[str, Any] = {
            "response_status": result.http_status,
            "response_body": result.response_body,
            "latency_ms": result.latency_ms,
            "next_retry_at": None,
        }

        if result.success:
            values["status"] = DeliveryStatus.DELIVERED.value
            values["delivered_at"] = now
            values["error_message"] = None
            return values

        values["error_message"] = result.error_message
        retry_count = delivery.retry_count + 1

        if result.fatal or retry_count > self._settings.max_retries:
            values["status"] = DeliveryStatus.FAILED.value
        else:
            values["status"] = DeliveryStatus.RETRYING.value
            values["retry_count"] = retry_count
            values["next_retry_at"] = now + timedelta(
                seconds=self._settings.retry_delay(retry_count)
            )
        return values

    @staticmethod
    def _log_outcome(delivery: WebhookDelivery, result: DeliveryResult) -> None:
        if delivery.status == DeliveryStatus.DELIVERED:
            logger.info(
                "Webhook delivered to endpoint %s (delivery: %s, status: %s, latency: %dms)",
                delivery.endpoint_id,
                delivery.id,
                result.http_status,
                result.latency_ms or 0,
            )
        elif delivery.status == DeliveryStatus.RETRYING:
            logger.warning(
                "Webhook delivery %s failed (attempt %d), retrying at %s: %s",
                delivery.id,
                delivery.retry_count,
                delivery.next_retry_at.isoformat() if delivery.next_retry_at else "-",
                result.error_message,
            )
        else:
            logger.error(
                "Webhook delivery %s failed permanently after %d retries: %s",
                delivery.id,
                delivery.retry_count,
                result.error_message,
            )
