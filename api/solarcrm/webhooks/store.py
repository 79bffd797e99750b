"""Webhook persistence."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from solarcrm.db.types import utcnow
from solarcrm.webhooks.models import DeliveryStatus, WebhookDelivery, WebhookEndpoint

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (DeliveryStatus.DELIVERED.value, DeliveryStatus.FAILED.value)

# Fields an endpoint update may touch; the secret is deliberately absent.
UPDATABLE_ENDPOINT_FIELDS = frozenset({"url", "events", "active", "name", "description"})


@dataclass(frozen=True)
class EndpointSnapshot:
    """Read-once view of an endpoint used for a single delivery attempt."""

    id: uuid.UUID
    tenant_id: uuid.UUID
    url: str
    secret: str


@dataclass(frozen=True)
class DeliveryStats:
    """Delivery counts for a tenant over a time window."""

    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    pending_deliveries: int = 0
    success_rate: float = 0.0


class WebhookStore:
    """Durable storage for webhook endpoints and delivery records."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Endpoints

    async def add_endpoint(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        async with self._session_factory() as session:
            session.add(endpoint)
            await session.commit()
            await session.refresh(endpoint)
        return endpoint

    async def get_endpoint(
        self,
        endpoint_id: uuid.UUID,
        tenant_id: uuid.UUID | None = None,
    ) -> WebhookEndpoint | None:
        async with self._session_factory() as session:
            endpoint = await session.get(WebhookEndpoint, endpoint_id)
        if endpoint is None or (tenant_id is not None and endpoint.tenant_id != tenant_id):
            return None
        return endpoint

    async def update_endpoint(
        self,
        endpoint_id: uuid.UUID,
        values: dict[str, Any],
        tenant_id: uuid.UUID | None = None,
    ) -> WebhookEndpoint | None:
        """Apply already-validated changes; returns None if the endpoint is gone."""
        unknown = set(values) - UPDATABLE_ENDPOINT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update endpoint fields: {', '.join(sorted(unknown))}")

        async with self._session_factory() as session:
            endpoint = await session.get(WebhookEndpoint, endpoint_id)
            if endpoint is None or (tenant_id is not None and endpoint.tenant_id != tenant_id):
                return None
            for key, value in values.items():
                setattr(endpoint, key, value)
            endpoint.updated_at = utcnow()
            await session.commit()
            await session.refresh(endpoint)
        return endpoint

    async def delete_endpoint(
        self,
        endpoint_id: uuid.UUID,
        tenant_id: uuid.UUID | None = None,
    ) -> bool:
        stmt = delete(WebhookEndpoint).where(WebhookEndpoint.id == endpoint_id)
        if tenant_id is not None:
            stmt = stmt.where(WebhookEndpoint.tenant_id == tenant_id)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount > 0

    async def list_endpoints(
        self,
        tenant_id: uuid.UUID,
        active_only: bool = False,
    ) -> list[WebhookEndpoint]:
        stmt = (
            select(WebhookEndpoint)
            .where(WebhookEndpoint.tenant_id == tenant_id)
            .order_by(WebhookEndpoint.created_at.desc())
        )
        if active_only:
            stmt = stmt.where(WebhookEndpoint.active.is_(True))

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_endpoint_snapshot(self, endpoint_id: uuid.UUID) -> EndpointSnapshot | None:
        async with self._session_factory() as session:
            endpoint = await session.get(WebhookEndpoint, endpoint_id)
        if endpoint is None:
            return None
        return EndpointSnapshot(
            id=endpoint.id,
            tenant_id=endpoint.tenant_id,
            url=endpoint.url,
            secret=endpoint.secret,
        )

    # Deliveries

    async def create_deliveries(
        self,
        tenant_id: uuid.UUID,
        event_type: str,
        payload: dict[str, Any],
        endpoints: Iterable[WebhookEndpoint],
    ) -> list[WebhookDelivery]:
        """Insert one pending delivery per endpoint in a single transaction."""
        deliveries = [
            WebhookDelivery(
                id=uuid.uuid4(),
                tenant_id=tenant_id,
                endpoint_id=endpoint.id,
                event_type=event_type,
                payload=payload,
                status=DeliveryStatus.PENDING.value,
                retry_count=0,
            )
            for endpoint in endpoints
        ]
        if not deliveries:
            return []

        async with self._session_factory() as session:
            session.add_all(deliveries)
            await session.commit()
        return deliveries

    async def get_delivery(self, delivery_id: uuid.UUID) -> WebhookDelivery | None:
        async with self._session_factory() as session:
            return await session.get(WebhookDelivery, delivery_id)

    async def record_outcome(
        self,
        delivery_id: uuid.UUID,
        expected_status: str,
        expected_retry_count: int,
        values: dict[str, Any],
    ) -> bool:
        """Write an attempt outcome if the record is still in the expected state.

        Returns False when another worker changed the record first or it is
        already terminal.
        """
        stmt = (
            update(WebhookDelivery)
            .where(
                WebhookDelivery.id == delivery_id,
                WebhookDelivery.status == expected_status,
                WebhookDelivery.retry_count == expected_retry_count,
                WebhookDelivery.status.notin_(TERMINAL_STATUSES),
            )
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1

    async def due_deliveries(
        self,
        now: datetime,
        limit: int,
        stale_pending_before: datetime | None = None,
    ) -> list[WebhookDelivery]:
        """Deliveries whose retry time has arrived, oldest first.

        With ``stale_pending_before``, pending records created before that
        instant (initial attempt never recorded) are included as well.
        """
        due = and_(
            WebhookDelivery.status == DeliveryStatus.RETRYING.value,
            WebhookDelivery.next_retry_at <= now,
        )
        if stale_pending_before is not None:
            due = or_(
                due,
                and_(
                    WebhookDelivery.status == DeliveryStatus.PENDING.value,
                    WebhookDelivery.created_at <= stale_pending_before,
                ),
            )
        stmt = (
            select(WebhookDelivery)
            .where(due)
            .order_by(WebhookDelivery.created_at.asc())
            .limit(limit)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delivery_history(
        self,
        tenant_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        endpoint_id: uuid.UUID | None = None,
        status: str | None = None,
        event_type: str | None = None,
    ) -> list[WebhookDelivery]:
        stmt = select(WebhookDelivery).where(WebhookDelivery.tenant_id == tenant_id)

        if endpoint_id:
            stmt = stmt.where(WebhookDelivery.endpoint_id == endpoint_id)
        if status:
            stmt = stmt.where(WebhookDelivery.status == status)
        if event_type:
            stmt = stmt.where(WebhookDelivery.event_type == event_type)

        stmt = stmt.order_by(WebhookDelivery.created_at.desc()).offset(offset).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delivery_stats(self, tenant_id: uuid.UUID, since: datetime) -> DeliveryStats:
        stmt = (
            select(WebhookDelivery.status, func.count())
            .where(
                WebhookDelivery.tenant_id == tenant_id,
                WebhookDelivery.created_at >= since,
            )
            .group_by(WebhookDelivery.status)
        )

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            counts = {status: count for status, count in result.all()}

        total = sum(counts.values())
        delivered = counts.get(DeliveryStatus.DELIVERED.value, 0)
        return DeliveryStats(
            total_deliveries=total,
            successful_deliveries=delivered,
            failed_deliveries=counts.get(DeliveryStatus.FAILED.value, 0),
            pending_deliveries=(
                counts.get(DeliveryStatus.PENDING.value, 0)
                + counts.get(DeliveryStatus.RETRYING.value, 0)
            ),
            success_rate=round(delivered / total * 100, 2) if total else 0.0,
        )

    async def purge_deliveries(self, delivered_before: datetime, failed_before: datetime) -> int:
        """Delete old terminal records. Returns the number of rows removed."""
        old_terminal = delete(WebhookDelivery).where(
            WebhookDelivery.status.in_(TERMINAL_STATUSES),
            WebhookDelivery.created_at < delivered_before,
        )
        old_failed = delete(WebhookDelivery).where(
            WebhookDelivery.status == DeliveryStatus.FAILED.value,
            WebhookDelivery.created_at < failed_before,
        )

        async with self._session_factory() as session:
            removed = (await session.execute(old_terminal)).rowcount
            removed += (await session.execute(old_failed)).rowcount
            await session.commit()
        return removed
