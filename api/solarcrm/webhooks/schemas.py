"""Webhook Pydantic schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class WebhookEndpointCreate(BaseModel):
    """Request body for registering an endpoint."""

    url: str = Field(..., description="Destination URL (http or https)")
    events: list[str] = Field(..., min_length=1, description="Subscribed event types")
    secret: str | None = Field(None, description="Signing secret; generated when omitted")
    name: str | None = Field(None, max_length=200, description="Display name")
    description: str | None = Field(None, description="Endpoint description")


class WebhookEndpointUpdate(BaseModel):
    """Partial endpoint update; omitted fields are left unchanged."""

    url: str | None = Field(None, description="Destination URL (http or https)")
    events: list[str] | None = Field(None, min_length=1, description="Subscribed event types")
    active: bool | None = Field(None, description="Whether endpoint receives deliveries")
    name: str | None = Field(None, max_length=200, description="Display name")
    description: str | None = Field(None, description="Endpoint description")


class WebhookEndpointResponse(BaseModel):
    """Webhook endpoint configuration response (secret masked)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Endpoint ID")
    tenant_id: UUID = Field(..., description="Owning tenant")
    url: str = Field(..., description="Webhook URL")
    events: list[str] = Field(..., description="Subscribed event types")
    active: bool = Field(..., description="Whether endpoint is active")
    name: str | None = Field(None, description="Display name")
    description: str | None = Field(None, description="Endpoint description")
    created_at: datetime = Field(..., description="When endpoint was registered")
    updated_at: datetime = Field(..., description="Last configuration change")


class WebhookEndpointCreatedResponse(WebhookEndpointResponse):
    """Registration response; the only time the secret is returned."""

    secret: str = Field(..., description="Signing secret (store it now, it is not shown again)")


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery record response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Delivery record ID")
    tenant_id: UUID = Field(..., description="Owning tenant")
    endpoint_id: UUID = Field(..., description="Target endpoint ID")
    event_type: str = Field(..., description="Event type (e.g., lead.created)")
    payload: dict[str, Any] = Field(..., description="Envelope as sent")
    status: str = Field(..., description="Delivery status: pending, delivered, retrying, failed")
    response_status: int | None = Field(None, description="HTTP response status code")
    response_body: str | None = Field(None, description="Truncated response body")
    error_message: str | None = Field(None, description="Last error message")
    retry_count: int = Field(..., description="Number of failed attempts so far")
    next_retry_at: datetime | None = Field(None, description="When the next attempt is due")
    delivered_at: datetime | None = Field(None, description="When delivery succeeded")
    latency_ms: int | None = Field(None, description="Latency of the last attempt")
    created_at: datetime = Field(..., description="When delivery was created")
    updated_at: datetime = Field(..., description="Last state change")


class DeliveryStatisticsResponse(BaseModel):
    """Delivery statistics over the last days."""

    model_config = ConfigDict(from_attributes=True)

    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    pending_deliveries: int
    success_rate: float = Field(..., description="Delivered share in percent")


class PaginationResponse(BaseModel):
    limit: int
    offset: int
    count: int = Field(..., description="Number of records in this page")


class WebhookDeliveryHistoryResponse(BaseModel):
    """Delivery history page with statistics."""

    deliveries: list[WebhookDeliveryResponse]
    statistics: DeliveryStatisticsResponse
    pagination: PaginationResponse


class ProcessRetriesResponse(BaseModel):
    processed: int = Field(..., description="Number of deliveries attempted")


class WebhookEventTypesResponse(BaseModel):
    events: list[str] = Field(..., description="Event types endpoints can subscribe to")
