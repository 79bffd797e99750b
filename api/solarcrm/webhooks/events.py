"""Webhook event catalogue and envelope."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from solarcrm.webhooks.exceptions import WebhookConfigError

Record = dict[str, Any]


class WebhookEventType(StrEnum):
    """Supported webhook event types.

    Naming convention: {resource}.{action}
    """

    LEAD_CREATED = "lead.created"
    LEAD_UPDATED = "lead.updated"
    LEAD_STATUS_CHANGED = "lead.status_changed"
    CONTRACT_GENERATED = "contract.generated"
    CONTRACT_SIGNED = "contract.signed"
    CONTRACT_EXPIRED = "contract.expired"
    INVOICE_CREATED = "invoice.created"
    INVOICE_PAID = "invoice.paid"
    INVOICE_OVERDUE = "invoice.overdue"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    SCREENING_COMPLETED = "screening.completed"
    WHATSAPP_MESSAGE_SENT = "whatsapp.message_sent"
    WHATSAPP_MESSAGE_RECEIVED = "whatsapp.message_received"
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    TENANT_UPDATED = "tenant.updated"


def parse_event_type(value: str) -> WebhookEventType:
    """Coerce a string to a known event type."""
    try:
        return WebhookEventType(value)
    except ValueError:
        raise WebhookConfigError(f"Unknown webhook event type: {value!r}") from None


# Typed data per event type


class EventData(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LeadCreatedData(EventData):
    lead: Record


class LeadUpdatedData(EventData):
    lead: Record
    changes: Record


class LeadStatusChangedData(EventData):
    lead: Record
    old_status: str
    new_status: str


class ContractData(EventData):
    contract: Record


class InvoiceData(EventData):
    invoice: Record


class InvoicePaidData(EventData):
    invoice: Record
    payment: Record


class PaymentSucceededData(EventData):
    payment: Record


class PaymentFailedData(EventData):
    payment: Record
    error: str


class ScreeningCompletedData(EventData):
    screening: Record


class WhatsAppMessageData(EventData):
    message: Record


class UserCreatedData(EventData):
    user: Record


class UserUpdatedData(EventData):
    user: Record
    changes: Record = Field(default_factory=dict)


class TenantUpdatedData(EventData):
    tenant: Record
    changes: Record


EVENT_DATA_MODELS: dict[WebhookEventType, type[EventData]] = {
    WebhookEventType.LEAD_CREATED: LeadCreatedData,
    WebhookEventType.LEAD_UPDATED: LeadUpdatedData,
    WebhookEventType.LEAD_STATUS_CHANGED: LeadStatusChangedData,
    WebhookEventType.CONTRACT_GENERATED: ContractData,
    WebhookEventType.CONTRACT_SIGNED: ContractData,
    WebhookEventType.CONTRACT_EXPIRED: ContractData,
    WebhookEventType.INVOICE_CREATED: InvoiceData,
    WebhookEventType.INVOICE_PAID: InvoicePaidData,
    WebhookEventType.INVOICE_OVERDUE: InvoiceData,
    WebhookEventType.PAYMENT_SUCCEEDED: PaymentSucceededData,
    WebhookEventType.PAYMENT_FAILED: PaymentFailedData,
    WebhookEventType.SCREENING_COMPLETED: ScreeningCompletedData,
    WebhookEventType.WHATSAPP_MESSAGE_SENT: WhatsAppMessageData,
    WebhookEventType.WHATSAPP_MESSAGE_RECEIVED: WhatsAppMessageData,
    WebhookEventType.USER_CREATED: UserCreatedData,
    WebhookEventType.USER_UPDATED: UserUpdatedData,
    WebhookEventType.TENANT_UPDATED: TenantUpdatedData,
}


def validate_event_data(event_type: WebhookEventType, data: EventData | Record) -> Record:
    """Check data against the event's model and return its JSON form."""
    model = EVENT_DATA_MODELS[event_type]
    if isinstance(data, EventData) and not isinstance(data, model):
        raise WebhookConfigError(
            f"{type(data).__name__} is not valid data for {event_type.value} "
            f"(expected {model.__name__})"
        )
    try:
        validated = data if isinstance(data, model) else model.model_validate(data)
    except ValidationError as e:
        raise WebhookConfigError(f"Invalid data for {event_type.value}: {e}") from e
    return validated.model_dump(mode="json")


class WebhookEnvelope(BaseModel):
    """The JSON document transmitted and signed for every delivery."""

    event: WebhookEventType
    tenant_id: uuid.UUID
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    data: Record
    metadata: Record | None = None

    @classmethod
    def build(
        cls,
        tenant_id: uuid.UUID,
        event_type: WebhookEventType | str,
        data: EventData | Record,
        metadata: Record | None = None,
        max_metadata_keys: int = 50,
    ) -> WebhookEnvelope:
        """Validate inputs and create an envelope stamped with the current time."""
        event = parse_event_type(event_type)
        if metadata is not None and len(metadata) > max_metadata_keys:
            raise WebhookConfigError(
                f"Webhook metadata has {len(metadata)} keys (limit {max_metadata_keys})"
            )
        try:
            return cls(
                event=event,
                tenant_id=tenant_id,
                data=validate_event_data(event, data),
                metadata=metadata,
            )
        except ValidationError as e:
            raise WebhookConfigError(f"Invalid webhook envelope: {e}") from e

    def to_payload(self) -> Record:
        """Convert to JSON-serializable payload."""
        payload: Record = {
            "event": self.event.value,
            "tenant_id": str(self.tenant_id),
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }
        if self.metadata is not None:
            payload["metadata"] = self.model_dump(mode="json", include={"metadata"})["metadata"]
        return payload


def canonical_json(payload: Record) -> bytes:
    """Serialize a payload to the exact bytes that are signed and sent."""
    return json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
