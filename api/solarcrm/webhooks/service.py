"""Webhook service facade used by domain services and the admin API."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import timedelta
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from solarcrm.db.types import utcnow
from solarcrm.webhooks.config import WebhookConfigLoader, WebhookSettings
from solarcrm.webhooks.dispatcher import WebhookDispatcher, WebhookEvents
from solarcrm.webhooks.engine import DeliveryEngine
from solarcrm.webhooks.events import EventData, Record, WebhookEventType
from solarcrm.webhooks.models import WebhookDelivery, WebhookEndpoint
from solarcrm.webhooks.registry import EndpointRegistry
from solarcrm.webhooks.store import DeliveryStats, WebhookStore
from solarcrm.webhooks.sweeper import RetrySweeper

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 1000


class WebhookService:
    """Wires store, registry, engine, dispatcher and sweeper together.

    Built once at process start and handed to whoever needs it.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: WebhookSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        use_sweep_lock: bool = False,
    ):
        self.settings = settings or WebhookConfigLoader.get_settings()
        self.store = WebhookStore(session_factory)
        self.registry = EndpointRegistry(self.store)
        self.engine = DeliveryEngine(self.store, self.settings, transport=transport)
        self.dispatcher = WebhookDispatcher(self.registry, self.store, self.engine, self.settings)
        self.sweeper = RetrySweeper(self.store, self.engine, self.settings, use_lock=use_sweep_lock)
        self.events = WebhookEvents(self.dispatcher)

    # Events

    async def send_webhook(
        self,
        tenant_id: uuid.UUID,
        event_type: WebhookEventType | str,
        data: EventData | Record,
        metadata: Record | None = None,
        wait: bool = False,
    ) -> list[WebhookDelivery]:
        return await self.dispatcher.send_webhook(tenant_id, event_type, data, metadata, wait=wait)

    # Endpoints

    async def register_endpoint(
        self,
        tenant_id: uuid.UUID,
        url: str,
        events: Iterable[WebhookEventType | str],
        secret: str | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> WebhookEndpoint:
        return await self.registry.register(tenant_id, url, events, secret, name, description)

    async def update_endpoint(
        self,
        endpoint_id: uuid.UUID,
        changes: dict[str, Any],
        tenant_id: uuid.UUID | None = None,
    ) -> WebhookEndpoint:
        return await self.registry.update(endpoint_id, changes, tenant_id)

    async def delete_endpoint(self, endpoint_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> None:
        await self.registry.delete(endpoint_id, tenant_id)

    async def get_endpoints(self, tenant_id: uuid.UUID) -> list[WebhookEndpoint]:
        return await self.registry.list_for_tenant(tenant_id)

    # Deliveries

    async def get_delivery_history(
        self,
        tenant_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        endpoint_id: uuid.UUID | None = None,
        status: str | None = None,
        event_type: str | None = None,
    ) -> list[WebhookDelivery]:
        """Newest-first delivery records of a tenant."""
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        if offset < 0:
            raise ValueError("offset must not be negative")
        return await self.store.delivery_history(
            tenant_id,
            limit=limit,
            offset=offset,
            endpoint_id=endpoint_id,
            status=status,
            event_type=event_type,
        )

    async def get_delivery_stats(self, tenant_id: uuid.UUID, days: int = 7) -> DeliveryStats:
        return await self.store.delivery_stats(tenant_id, since=utcnow() - timedelta(days=days))

    async def attempt_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        return await self.engine.attempt_delivery(delivery)

    async def process_retries(self) -> int:
        return await self.sweeper.process_retries()

    # Lifecycle

    async def start(self, sweeper: bool = True) -> None:
        if sweeper:
            await self.sweeper.start()

    async def shutdown(self, timeout: float = 35.0) -> None:
        """Stop the sweeper and give in-flight attempts a chance to finish."""
        await self.sweeper.stop()
        await self.dispatcher.drain(timeout=timeout)
