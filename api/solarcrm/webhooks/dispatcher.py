"""Webhook event dispatcher."""

from __future__ import annotations

import asyncio
import logging
import uuid

from solarcrm.webhooks.config import WebhookSettings
from solarcrm.webhooks.engine import DeliveryEngine
from solarcrm.webhooks.events import (
    ContractData,
    EventData,
    InvoiceData,
    InvoicePaidData,
    LeadCreatedData,
    LeadStatusChangedData,
    LeadUpdatedData,
    PaymentFailedData,
    PaymentSucceededData,
    Record,
    ScreeningCompletedData,
    TenantUpdatedData,
    UserCreatedData,
    UserUpdatedData,
    WebhookEnvelope,
    WebhookEventType,
    WhatsAppMessageData,
)
from solarcrm.webhooks.models import WebhookDelivery
from solarcrm.webhooks.registry import EndpointRegistry
from solarcrm.webhooks.store import WebhookStore

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    """Turns domain events into delivery records and starts their first attempt.

    Record creation happens before ``send_webhook`` returns; HTTP attempts run
    on background tasks unless the caller asks to wait.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        store: WebhookStore,
        engine: DeliveryEngine,
        settings: WebhookSettings,
    ):
        self._registry = registry
        self._store = store
        self._engine = engine
        self._settings = settings
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        """Number of background delivery attempts still running."""
        return len(self._tasks)

    async def send_webhook(
        self,
        tenant_id: uuid.UUID,
        event_type: WebhookEventType | str,
        data: EventData | Record,
        metadata: Record | None = None,
        wait: bool = False,
    ) -> list[WebhookDelivery]:
        """
        Fan an event out to every subscribed active endpoint of the tenant.

        Args:
            tenant_id: Tenant the event belongs to
            event_type: A WebhookEventType (or its string value)
            data: Event data matching the event type's model
            metadata: Optional free-form metadata (bounded key count)
            wait: Await the first attempts instead of running them in the background

        Returns:
            The created delivery records (empty if nobody subscribes)

        Raises:
            WebhookConfigError: Unknown event type or invalid data/metadata
        """
        envelope = WebhookEnvelope.build(
            tenant_id,
            event_type,
            data,
            metadata,
            max_metadata_keys=self._settings.max_metadata_keys,
        )
        event = envelope.event

        try:
            endpoints = await self._registry.list_active_for(tenant_id, event)
            if not endpoints:
                logger.debug("No endpoints subscribe to event %s for tenant %s", event, tenant_id)
                return []

            deliveries = await self._store.create_deliveries(
                tenant_id,
                event.value,
                envelope.to_payload(),
                endpoints,
            )
        except Exception:
            logger.exception("Failed to record webhook event %s for tenant %s", event, tenant_id)
            return []

        logger.info(
            "Dispatching webhook event %s for tenant %s to %d endpoint(s)",
            event,
            tenant_id,
            len(deliveries),
        )

        if wait:
            for delivery in deliveries:
                await self._attempt(delivery)
        else:
            for delivery in deliveries:
                self._spawn(delivery)

        return deliveries

    def _spawn(self, delivery: WebhookDelivery) -> None:
        task = asyncio.create_task(
            self._attempt(delivery),
            name=f"webhook-delivery-{delivery.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _attempt(self, delivery: WebhookDelivery) -> None:
        # Delivery problems end up on the record, never with the caller
        try:
            await self._engine.attempt_delivery(delivery)
        except Exception:
            logger.exception("Unexpected error delivering webhook %s", delivery.id)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight background attempts (shutdown, tests)."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                "%d webhook attempt(s) still running after %ss; the sweeper will pick them up",
                len(pending),
                timeout,
            )


class WebhookEvents:
    """Typed helpers for the events domain services emit."""

    def __init__(self, dispatcher: WebhookDispatcher):
        self._dispatcher = dispatcher

    async def _send(
        self,
        tenant_id: uuid.UUID,
        event_type: WebhookEventType,
        data: EventData,
    ) -> list[WebhookDelivery]:
        return await self._dispatcher.send_webhook(tenant_id, event_type, data)

    async def lead_created(self, tenant_id: uuid.UUID, lead: Record) -> list[WebhookDelivery]:
        return await self._send(tenant_id, WebhookEventType.LEAD_CREATED, LeadCreatedData(lead=lead))

    async def lead_updated(
        self, tenant_id: uuid.UUID, lead: Record, changes: Record
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.LEAD_UPDATED,
            LeadUpdatedData(lead=lead, changes=changes),
        )

    async def lead_status_changed(
        self, tenant_id: uuid.UUID, lead: Record, old_status: str, new_status: str
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.LEAD_STATUS_CHANGED,
            LeadStatusChangedData(lead=lead, old_status=old_status, new_status=new_status),
        )

    async def contract_generated(self, tenant_id: uuid.UUID, contract: Record) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.CONTRACT_GENERATED, ContractData(contract=contract)
        )

    async def contract_signed(self, tenant_id: uuid.UUID, contract: Record) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.CONTRACT_SIGNED, ContractData(contract=contract)
        )

    async def contract_expired(self, tenant_id: uuid.UUID, contract: Record) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.CONTRACT_EXPIRED, ContractData(contract=contract)
        )

    async def invoice_created(self, tenant_id: uuid.UUID, invoice: Record) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.INVOICE_CREATED, InvoiceData(invoice=invoice)
        )

    async def invoice_paid(
        self, tenant_id: uuid.UUID, invoice: Record, payment: Record
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.INVOICE_PAID,
            InvoicePaidData(invoice=invoice, payment=payment),
        )

    async def invoice_overdue(self, tenant_id: uuid.UUID, invoice: Record) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.INVOICE_OVERDUE, InvoiceData(invoice=invoice)
        )

    async def payment_succeeded(self, tenant_id: uuid.UUID, payment: Record) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.PAYMENT_SUCCEEDED, PaymentSucceededData(payment=payment)
        )

    async def payment_failed(
        self, tenant_id: uuid.UUID, payment: Record, error: str
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.PAYMENT_FAILED,
            PaymentFailedData(payment=payment, error=error),
        )

    async def screening_completed(
        self, tenant_id: uuid.UUID, screening: Record
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.SCREENING_COMPLETED,
            ScreeningCompletedData(screening=screening),
        )

    async def whatsapp_message_sent(
        self, tenant_id: uuid.UUID, message: Record
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id, WebhookEventType.WHATSAPP_MESSAGE_SENT, WhatsAppMessageData(message=message)
        )

    async def whatsapp_message_received(
        self, tenant_id: uuid.UUID, message: Record
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.WHATSAPP_MESSAGE_RECEIVED,
            WhatsAppMessageData(message=message),
        )

    async def user_created(self, tenant_id: uuid.UUID, user: Record) -> list[WebhookDelivery]:
        return await self._send(tenant_id, WebhookEventType.USER_CREATED, UserCreatedData(user=user))

    async def user_updated(
        self, tenant_id: uuid.UUID, user: Record, changes: Record | None = None
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.USER_UPDATED,
            UserUpdatedData(user=user, changes=changes or {}),
        )

    async def tenant_updated(
        self, tenant_id: uuid.UUID, tenant: Record, changes: Record
    ) -> list[WebhookDelivery]:
        return await self._send(
            tenant_id,
            WebhookEventType.TENANT_UPDATED,
            TenantUpdatedData(tenant=tenant, changes=changes),
        )
