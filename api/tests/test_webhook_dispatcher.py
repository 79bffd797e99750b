"""Tests for WebhookDispatcher and WebhookEvents."""

import json
import uuid
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy.exc import OperationalError

from solarcrm.webhooks.exceptions import WebhookConfigError
from solarcrm.webhooks.models import DeliveryStatus
from solarcrm.webhooks.service import WebhookService


class TestSendWebhook:
    """Tests for fan-out of events to subscribed endpoints."""

    @pytest.mark.asyncio
    async def test_subscribed_endpoint_gets_one_delivery(
        self, webhook_service, register_endpoint, tenant_id, receiver
    ):
        """One pending record per subscriber, delivered after a 200."""
        endpoint = await register_endpoint(events=["lead.created"])

        deliveries = await webhook_service.send_webhook(
            tenant_id, "lead.created", {"lead": {"id": "lead-1"}}
        )

        assert len(deliveries) == 1
        assert deliveries[0].status == DeliveryStatus.PENDING
        assert deliveries[0].retry_count == 0
        assert deliveries[0].endpoint_id == endpoint.id

        await webhook_service.dispatcher.drain()

        stored = await webhook_service.store.get_delivery(deliveries[0].id)
        assert stored.status == DeliveryStatus.DELIVERED
        assert stored.response_status == 200
        assert len(receiver.requests) == 1

    @pytest.mark.asyncio
    async def test_unsubscribed_event_creates_nothing(
        self, webhook_service, register_endpoint, tenant_id, receiver
    ):
        await register_endpoint(events=["lead.created"])

        deliveries = await webhook_service.send_webhook(
            tenant_id,
            "invoice.paid",
            {"invoice": {"id": "inv-1"}, "payment": {"id": "pay-1"}},
            wait=True,
        )

        assert deliveries == []
        assert await webhook_service.get_delivery_history(tenant_id) == []
        assert receiver.requests == []

    @pytest.mark.asyncio
    async def test_no_endpoints_is_not_an_error(self, webhook_service, tenant_id):
        assert await webhook_service.send_webhook(tenant_id, "lead.created", {"lead": {}}) == []

    @pytest.mark.asyncio
    async def test_inactive_and_foreign_endpoints_are_skipped(
        self, webhook_service, register_endpoint, tenant_id
    ):
        inactive = await register_endpoint()
        await webhook_service.update_endpoint(inactive.id, {"active": False})
        await register_endpoint(tenant_id=uuid.uuid4())

        deliveries = await webhook_service.send_webhook(
            tenant_id, "lead.created", {"lead": {}}, wait=True
        )

        assert deliveries == []

    @pytest.mark.asyncio
    async def test_envelope_is_stored_and_sent(
        self, webhook_service, register_endpoint, tenant_id, receiver
    ):
        await register_endpoint()

        [delivery] = await webhook_service.send_webhook(
            tenant_id,
            "lead.created",
            {"lead": {"id": "lead-1", "kwp": 9.6}},
            metadata={"source": "import"},
            wait=True,
        )

        assert delivery.event_type == "lead.created"
        assert delivery.tenant_id == tenant_id
        sent = json.loads(receiver.requests[0].content)
        assert sent == delivery.payload
        assert sent["event"] == "lead.created"
        assert sent["tenant_id"] == str(tenant_id)
        assert sent["data"] == {"lead": {"id": "lead-1", "kwp": 9.6}}
        assert sent["metadata"] == {"source": "import"}
        assert "timestamp" in sent

    @pytest.mark.asyncio
    async def test_endpoints_fail_independently(self, session_factory, webhook_settings, tenant_id):
        """A failing endpoint does not affect delivery to the others."""

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.host == "down.example.com":
                return httpx.Response(500, text="unavailable")
            return httpx.Response(204)

        service = WebhookService(
            session_factory,
            settings=webhook_settings,
            transport=httpx.MockTransport(handler),
        )
        up = await service.register_endpoint(tenant_id, "https://up.example.com/hook", ["lead.created"])
        down = await service.register_endpoint(tenant_id, "https://down.example.com/hook", ["lead.created"])

        deliveries = await service.send_webhook(tenant_id, "lead.created", {"lead": {}}, wait=True)

        by_endpoint = {d.endpoint_id: d for d in deliveries}
        assert by_endpoint[up.id].status == DeliveryStatus.DELIVERED
        assert by_endpoint[up.id].response_status == 204
        assert by_endpoint[down.id].status == DeliveryStatus.RETRYING
        assert by_endpoint[down.id].retry_count == 1

    @pytest.mark.asyncio
    async def test_invalid_event_raises_before_recording(
        self, webhook_service, register_endpoint, tenant_id
    ):
        await register_endpoint()

        with pytest.raises(WebhookConfigError):
            await webhook_service.send_webhook(tenant_id, "lead.vanished", {"lead": {}})
        with pytest.raises(WebhookConfigError):
            await webhook_service.send_webhook(tenant_id, "lead.created", {"wrong": {}})

        assert await webhook_service.get_delivery_history(tenant_id) == []

    @pytest.mark.asyncio
    async def test_storage_error_does_not_reach_caller(
        self, webhook_service, register_endpoint, tenant_id, monkeypatch
    ):
        await register_endpoint()
        monkeypatch.setattr(
            webhook_service.store,
            "create_deliveries",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down"))),
        )

        assert await webhook_service.send_webhook(tenant_id, "lead.created", {"lead": {}}) == []

    @pytest.mark.asyncio
    async def test_connection_error_does_not_reach_caller(
        self, webhook_service, register_endpoint, tenant_id, monkeypatch
    ):
        await register_endpoint()
        monkeypatch.setattr(
            webhook_service.store,
            "list_endpoints",
            AsyncMock(side_effect=ConnectionRefusedError(111, "Connect call failed")),
        )

        assert await webhook_service.send_webhook(tenant_id, "lead.created", {"lead": {}}) == []

    @pytest.mark.asyncio
    async def test_attempt_errors_stay_in_background(
        self, webhook_service, register_endpoint, tenant_id, monkeypatch
    ):
        await register_endpoint()
        monkeypatch.setattr(
            webhook_service.engine,
            "attempt_delivery",
            AsyncMock(side_effect=RuntimeError("unexpected")),
        )

        deliveries = await webhook_service.send_webhook(tenant_id, "lead.created", {"lead": {}})
        await webhook_service.dispatcher.drain()

        assert len(deliveries) == 1
        assert webhook_service.dispatcher.in_flight == 0

    @pytest.mark.asyncio
    async def test_background_attempts_are_tracked(
        self, webhook_service, register_endpoint, tenant_id
    ):
        await register_endpoint()

        await webhook_service.send_webhook(tenant_id, "lead.created", {"lead": {}})

        assert webhook_service.dispatcher.in_flight == 1
        await webhook_service.dispatcher.drain()
        assert webhook_service.dispatcher.in_flight == 0


WRAPPER_CASES = [
    ("lead_created", ({"id": "l1"},), "lead.created"),
    ("lead_updated", ({"id": "l1"}, {"phone": "new"}), "lead.updated"),
    ("lead_status_changed", ({"id": "l1"}, "new", "qualified"), "lead.status_changed"),
    ("contract_generated", ({"id": "c1"},), "contract.generated"),
    ("contract_signed", ({"id": "c1"},), "contract.signed"),
    ("contract_expired", ({"id": "c1"},), "contract.expired"),
    ("invoice_created", ({"id": "i1"},), "invoice.created"),
    ("invoice_paid", ({"id": "i1"}, {"id": "p1"}), "invoice.paid"),
    ("invoice_overdue", ({"id": "i1"},), "invoice.overdue"),
    ("payment_succeeded", ({"id": "p1"},), "payment.succeeded"),
    ("payment_failed", ({"id": "p1"}, "card_declined"), "payment.failed"),
    ("screening_completed", ({"id": "s1"},), "screening.completed"),
    ("whatsapp_message_sent", ({"id": "m1"},), "whatsapp.message_sent"),
    ("whatsapp_message_received", ({"id": "m1"},), "whatsapp.message_received"),
    ("user_created", ({"id": "u1"},), "user.created"),
    ("user_updated", ({"id": "u1"},), "user.updated"),
    ("tenant_updated", ({"id": "t1"}, {"name": "New"}), "tenant.updated"),
]


class TestWebhookEvents:
    """Tests for the typed event helpers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,args,event", WRAPPER_CASES)
    async def test_wrapper_sends_its_event(
        self, webhook_service, register_endpoint, tenant_id, receiver, method, args, event
    ):
        await register_endpoint(events=[event])

        deliveries = await getattr(webhook_service.events, method)(tenant_id, *args)
        await webhook_service.dispatcher.drain()

        assert len(deliveries) == 1
        assert deliveries[0].event_type == event
        assert json.loads(receiver.requests[0].content)["event"] == event

    @pytest.mark.asyncio
    async def test_status_change_data(self, webhook_service, register_endpoint, tenant_id):
        await register_endpoint(events=["lead.status_changed"])

        [delivery] = await webhook_service.events.lead_status_changed(
            tenant_id, {"id": "l1"}, "new", "qualified"
        )

        assert delivery.payload["data"] == {
            "lead": {"id": "l1"},
            "old_status": "new",
            "new_status": "qualified",
        }
        await webhook_service.dispatcher.drain()
