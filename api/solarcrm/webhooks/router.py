"""Webhook admin API router."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from solarcrm.webhooks.events import WebhookEventType
from solarcrm.webhooks.exceptions import EndpointNotFoundError, WebhookConfigError
from solarcrm.webhooks.models import DeliveryStatus
from solarcrm.webhooks.schemas import (
    DeliveryStatisticsResponse,
    PaginationResponse,
    ProcessRetriesResponse,
    WebhookDeliveryHistoryResponse,
    WebhookDeliveryResponse,
    WebhookEndpointCreate,
    WebhookEndpointCreatedResponse,
    WebhookEndpointResponse,
    WebhookEndpointUpdate,
    WebhookEventTypesResponse,
)
from solarcrm.webhooks.service import WebhookService

router = APIRouter(prefix="/webhooks", tags=["webhooks-admin"])


def get_webhook_service(request: Request) -> WebhookService:
    """Dependency returning the service built at startup."""
    return request.app.state.webhook_service


@router.get("/events", response_model=WebhookEventTypesResponse)
async def list_event_types():
    """List the event types endpoints can subscribe to."""
    return WebhookEventTypesResponse(events=[event.value for event in WebhookEventType])


@router.get("/endpoints", response_model=list[WebhookEndpointResponse])
async def list_endpoints(
    tenant_id: UUID = Query(..., description="Tenant ID"),
    service: WebhookService = Depends(get_webhook_service),
):
    """List the tenant's webhook endpoints.

    Secrets are never included.
    """
    endpoints = await service.get_endpoints(tenant_id)
    return [WebhookEndpointResponse.model_validate(ep) for ep in endpoints]


@router.post(
    "/endpoints",
    response_model=WebhookEndpointCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_endpoint(
    body: WebhookEndpointCreate,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    service: WebhookService = Depends(get_webhook_service),
):
    """Register a webhook endpoint.

    The response carries the signing secret; it is not shown again.
    """
    try:
        endpoint = await service.register_endpoint(
            tenant_id,
            body.url,
            body.events,
            secret=body.secret,
            name=body.name,
            description=body.description,
        )
    except WebhookConfigError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return WebhookEndpointCreatedResponse.model_validate(endpoint)


@router.patch("/endpoints/{endpoint_id}", response_model=WebhookEndpointResponse)
async def update_endpoint(
    endpoint_id: UUID,
    body: WebhookEndpointUpdate,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    service: WebhookService = Depends(get_webhook_service),
):
    """Update url, events, active flag, name or description."""
    try:
        endpoint = await service.update_endpoint(
            endpoint_id,
            body.model_dump(exclude_unset=True),
            tenant_id=tenant_id,
        )
    except EndpointNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except WebhookConfigError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return WebhookEndpointResponse.model_validate(endpoint)


@router.delete("/endpoints/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_endpoint(
    endpoint_id: UUID,
    tenant_id: UUID = Query(..., description="Tenant ID"),
    service: WebhookService = Depends(get_webhook_service),
):
    """Delete a webhook endpoint. Its delivery history is kept."""
    try:
        await service.delete_endpoint(endpoint_id, tenant_id=tenant_id)
    except EndpointNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/deliveries", response_model=WebhookDeliveryHistoryResponse)
async def list_deliveries(
    tenant_id: UUID = Query(..., description="Tenant ID"),
    endpoint_id: UUID | None = Query(None, description="Filter by endpoint ID"),
    delivery_status: DeliveryStatus | None = Query(
        None, alias="status", description="Filter by delivery status"
    ),
    event_type: WebhookEventType | None = Query(None, description="Filter by event type"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(0, ge=0, description="Records to skip"),
    service: WebhookService = Depends(get_webhook_service),
):
    """List recent webhook deliveries.

    Returns delivery history with status, retry and error details, plus
    statistics for the last 7 days.
    """
    deliveries = await service.get_delivery_history(
        tenant_id,
        limit=limit,
        offset=offset,
        endpoint_id=endpoint_id,
        status=delivery_status.value if delivery_status else None,
        event_type=event_type.value if event_type else None,
    )
    stats = await service.get_delivery_stats(tenant_id)

    return WebhookDeliveryHistoryResponse(
        deliveries=[WebhookDeliveryResponse.model_validate(d) for d in deliveries],
        statistics=DeliveryStatisticsResponse.model_validate(stats),
        pagination=PaginationResponse(limit=limit, offset=offset, count=len(deliveries)),
    )


@router.post("/retries/process", response_model=ProcessRetriesResponse)
async def process_retries(service: WebhookService = Depends(get_webhook_service)):
    """Run one retry sweep now instead of waiting for the scheduler."""
    processed = await service.process_retries()
    return ProcessRetriesResponse(processed=processed)
