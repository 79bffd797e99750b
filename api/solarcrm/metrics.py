"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from solarcrm.db.session import get_db
from solarcrm.db.types import utcnow
from solarcrm.webhooks.models import DeliveryStatus, WebhookDelivery, WebhookEndpoint

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(db: AsyncSession = Depends(get_db)):
    """Prometheus-compatible metrics endpoint."""

    metrics_output = []

    # Endpoints
    result = await db.execute(
        select(WebhookEndpoint.active, func.count()).group_by(WebhookEndpoint.active)
    )
    by_active = {bool(active): count for active, count in result.all()}
    metrics_output.append(f"solarcrm_webhook_endpoints_total {sum(by_active.values())}")
    metrics_output.append(f"solarcrm_webhook_endpoints_active {by_active.get(True, 0)}")

    # Deliveries by status
    result = await db.execute(
        select(WebhookDelivery.status, func.count()).group_by(WebhookDelivery.status)
    )
    by_status = dict(result.all())
    for delivery_status in DeliveryStatus:
        metrics_output.append(
            f'solarcrm_webhook_deliveries{{status="{delivery_status.value}"}} '
            f"{by_status.get(delivery_status.value, 0)}"
        )

    # Retries waiting for the sweeper
    result = await db.execute(
        select(func.count())
        .select_from(WebhookDelivery)
        .where(
            WebhookDelivery.status == DeliveryStatus.RETRYING.value,
            WebhookDelivery.next_retry_at <= utcnow(),
        )
    )
    metrics_output.append(f"solarcrm_webhook_retries_due {result.scalar()}")

    return "\n".join(metrics_output) + "\n"
