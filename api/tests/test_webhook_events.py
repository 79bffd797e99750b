"""Tests for the event catalogue and WebhookEnvelope."""

import json
import uuid
from datetime import datetime

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from solarcrm.webhooks.events import (
    EVENT_DATA_MODELS,
    InvoicePaidData,
    LeadCreatedData,
    UserUpdatedData,
    WebhookEnvelope,
    WebhookEventType,
    canonical_json,
    parse_event_type,
)
from solarcrm.webhooks.exceptions import WebhookConfigError

json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=20),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=10), children, max_size=4),
    max_leaves=10,
)


class TestEventCatalogue:
    def test_every_event_type_has_a_data_model(self):
        assert set(EVENT_DATA_MODELS) == set(WebhookEventType)

    def test_catalogue(self):
        assert len(WebhookEventType) == 17
        assert WebhookEventType.LEAD_CREATED == "lead.created"
        assert WebhookEventType.WHATSAPP_MESSAGE_RECEIVED == "whatsapp.message_received"

    @pytest.mark.parametrize("value", [e.value for e in WebhookEventType])
    def test_parse_known(self, value: str):
        assert parse_event_type(value).value == value

    @pytest.mark.parametrize("value", ["lead.deleted", "LEAD.CREATED", "", "lead"])
    def test_parse_unknown(self, value: str):
        with pytest.raises(WebhookConfigError, match="Unknown webhook event type"):
            parse_event_type(value)


class TestWebhookEnvelope:
    def test_build_with_model(self):
        tenant_id = uuid.uuid4()

        envelope = WebhookEnvelope.build(
            tenant_id,
            WebhookEventType.LEAD_CREATED,
            LeadCreatedData(lead={"id": "lead-1", "name": "Sunny Roof"}),
        )
        payload = envelope.to_payload()

        assert payload["event"] == "lead.created"
        assert payload["tenant_id"] == str(tenant_id)
        assert payload["data"] == {"lead": {"id": "lead-1", "name": "Sunny Roof"}}
        assert "metadata" not in payload
        assert datetime.fromisoformat(payload["timestamp"]).utcoffset().total_seconds() == 0

    def test_build_with_dict_and_string_event(self):
        envelope = WebhookEnvelope.build(
            uuid.uuid4(),
            "invoice.paid",
            {"invoice": {"id": "inv-1"}, "payment": {"amount": 1200}},
            metadata={"source": "billing"},
        )

        payload = envelope.to_payload()

        assert payload["event"] == "invoice.paid"
        assert payload["data"]["payment"] == {"amount": 1200}
        assert payload["metadata"] == {"source": "billing"}

    def test_optional_fields_get_defaults(self):
        envelope = WebhookEnvelope.build(
            uuid.uuid4(), WebhookEventType.USER_UPDATED, {"user": {"id": "u1"}}
        )

        assert envelope.data == {"user": {"id": "u1"}, "changes": {}}
        assert UserUpdatedData(user={}).changes == {}

    def test_unknown_event_is_rejected(self):
        with pytest.raises(WebhookConfigError):
            WebhookEnvelope.build(uuid.uuid4(), "lead.deleted", {"lead": {}})

    def test_data_must_match_event_model(self):
        with pytest.raises(WebhookConfigError, match="lead.created"):
            WebhookEnvelope.build(uuid.uuid4(), "lead.created", {"invoice": {}})

    def test_wrong_model_instance_is_rejected(self):
        with pytest.raises(WebhookConfigError, match="InvoicePaidData"):
            WebhookEnvelope.build(
                uuid.uuid4(),
                WebhookEventType.LEAD_CREATED,
                InvoicePaidData(invoice={}, payment={}),
            )

    def test_unexpected_data_fields_are_rejected(self):
        with pytest.raises(WebhookConfigError):
            WebhookEnvelope.build(
                uuid.uuid4(), "lead.created", {"lead": {}, "extra": True}
            )

    def test_metadata_key_limit(self):
        metadata = {f"k{i}": i for i in range(51)}

        with pytest.raises(WebhookConfigError, match="metadata"):
            WebhookEnvelope.build(uuid.uuid4(), "lead.created", {"lead": {}}, metadata)

        envelope = WebhookEnvelope.build(
            uuid.uuid4(), "lead.created", {"lead": {}}, metadata, max_metadata_keys=51
        )
        assert len(envelope.metadata) == 51

    def test_invalid_tenant_id_is_rejected(self):
        with pytest.raises(WebhookConfigError):
            WebhookEnvelope.build("not-a-uuid", "lead.created", {"lead": {}})  # type: ignore[arg-type]


class TestCanonicalJson:
    def test_compact_sorted_utf8(self):
        body = canonical_json({"b": 1, "a": {"d": "é", "c": [1, 2]}})

        assert body == '{"a":{"c":[1,2],"d":"é"},"b":1}'.encode()

    @settings(max_examples=100)
    @given(payload=st.dictionaries(st.text(max_size=10), json_values, max_size=6))
    def test_key_order_does_not_change_bytes(self, payload: dict):
        reordered = dict(reversed(list(payload.items())))

        assert canonical_json(payload) == canonical_json(reordered)
        assert json.loads(canonical_json(payload)) == payload
