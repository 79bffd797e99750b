"""Webhook endpoint registry."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlsplit

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError

from solarcrm.webhooks.events import WebhookEventType, parse_event_type
from solarcrm.webhooks.exceptions import EndpointNotFoundError, WebhookConfigError
from solarcrm.webhooks.models import WebhookEndpoint
from solarcrm.webhooks.signer import generate_webhook_secret
from solarcrm.webhooks.store import WebhookStore

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 16
MAX_SECRET_LENGTH = 255

# Host syntax (IDNA, IP literals) and port range
_http_url = TypeAdapter(AnyHttpUrl)


def validate_url(url: str) -> str:
    """Require an absolute http(s) URL with a host."""
    if not isinstance(url, str) or not url.strip():
        raise WebhookConfigError("Webhook URL is required")
    url = url.strip()
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        # Raises for ports outside 0-65535
        parts.port
    except ValueError as e:
        raise WebhookConfigError(f"Invalid webhook URL: {url}") from e
    if parts.scheme not in ("http", "https"):
        raise WebhookConfigError(f"Webhook URL must use http or https: {url}")
    if not hostname:
        raise WebhookConfigError(f"Webhook URL must be absolute: {url}")
    if any(ch.isspace() for ch in url):
        raise WebhookConfigError(f"Webhook URL must not contain whitespace: {url!r}")
    try:
        _http_url.validate_python(url)
    except ValidationError as e:
        raise WebhookConfigError(f"Invalid webhook URL: {url}") from e
    return url


def validate_events(events: Iterable[str]) -> list[str]:
    """Require a non-empty list of known event types; duplicates are dropped."""
    if isinstance(events, str):
        raise WebhookConfigError("Webhook events must be a list of event types")
    validated: list[str] = []
    invalid: list[str] = []
    for event in events:
        try:
            value = parse_event_type(event).value
        except WebhookConfigError:
            invalid.append(str(event))
            continue
        if value not in validated:
            validated.append(value)
    if invalid:
        raise WebhookConfigError(f"Invalid event types: {', '.join(invalid)}")
    if not validated:
        raise WebhookConfigError("Webhook endpoint must subscribe to at least one event")
    return validated


def validate_secret(secret: str) -> str:
    if not isinstance(secret, str):
        raise WebhookConfigError("Webhook secret must be a string")
    if not MIN_SECRET_LENGTH <= len(secret) <= MAX_SECRET_LENGTH:
        raise WebhookConfigError(
            f"Webhook secret must be {MIN_SECRET_LENGTH}-{MAX_SECRET_LENGTH} characters"
        )
    if any(ch.isspace() for ch in secret) or not secret.isprintable():
        raise WebhookConfigError("Webhook secret must not contain whitespace or control characters")
    return secret


class EndpointRegistry:
    """Tenant-scoped CRUD for webhook endpoints."""

    def __init__(self, store: WebhookStore):
        self._store = store

    async def register(
        self,
        tenant_id: uuid.UUID,
        url: str,
        events: Iterable[WebhookEventType | str],
        secret: str | None = None,
        name: str | None = None,
        description: str | None = None,
    ) -> WebhookEndpoint:
        """
        Register a new active endpoint.

        Args:
            tenant_id: Owning tenant
            url: Absolute http(s) destination
            events: Event types to subscribe to (non-empty)
            secret: Shared signing secret; generated when omitted

        Returns:
            The persisted endpoint, including its secret

        Raises:
            WebhookConfigError: If the URL, events or secret are invalid
        """
        endpoint = WebhookEndpoint(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            url=validate_url(url),
            events=validate_events(events),
            secret=validate_secret(secret) if secret is not None else generate_webhook_secret(),
            active=True,
            name=name,
            description=description,
        )
        endpoint = await self._store.add_endpoint(endpoint)
        logger.info(
            "Registered webhook endpoint %s for tenant %s (%d event(s))",
            endpoint.id,
            tenant_id,
            len(endpoint.events),
        )
        return endpoint

    async def update(
        self,
        endpoint_id: uuid.UUID,
        changes: dict[str, Any],
        tenant_id: uuid.UUID | None = None,
    ) -> WebhookEndpoint:
        """Partially update url, events, active, name or description.

        Changed fields are re-validated. Fields set to None are ignored.
        """
        values: dict[str, Any] = {}
        for key, value in changes.items():
            if value is None:
                continue
            if key == "url":
                values["url"] = validate_url(value)
            elif key == "events":
                values["events"] = validate_events(value)
            elif key == "active":
                if not isinstance(value, bool):
                    raise WebhookConfigError("'active' must be a boolean")
                values["active"] = value
            elif key in ("name", "description"):
                values[key] = value
            else:
                raise WebhookConfigError(f"Webhook endpoint field cannot be updated: {key}")

        if not values:
            endpoint = await self._store.get_endpoint(endpoint_id, tenant_id)
        else:
            endpoint = await self._store.update_endpoint(endpoint_id, values, tenant_id)
        if endpoint is None:
            raise EndpointNotFoundError(endpoint_id)

        if values:
            logger.info(
                "Updated webhook endpoint %s (%s)",
                endpoint_id,
                ", ".join(sorted(values)),
            )
        return endpoint

    async def delete(self, endpoint_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> None:
        """Hard-delete an endpoint. Delivery history is kept."""
        if not await self._store.delete_endpoint(endpoint_id, tenant_id):
            raise EndpointNotFoundError(endpoint_id)
        logger.info("Deleted webhook endpoint %s", endpoint_id)

    async def get(self, endpoint_id: uuid.UUID, tenant_id: uuid.UUID | None = None) -> WebhookEndpoint:
        endpoint = await self._store.get_endpoint(endpoint_id, tenant_id)
        if endpoint is None:
            raise EndpointNotFoundError(endpoint_id)
        return endpoint

    async def list_for_tenant(self, tenant_id: uuid.UUID) -> list[WebhookEndpoint]:
        return await self._store.list_endpoints(tenant_id)

    async def list_active_for(
        self,
        tenant_id: uuid.UUID,
        event_type: WebhookEventType | str,
    ) -> list[WebhookEndpoint]:
        """Active endpoints of the tenant subscribed to the event type."""
        endpoints = await self._store.list_endpoints(tenant_id, active_only=True)
        return [ep for ep in endpoints if ep.subscribes_to(str(event_type))]
