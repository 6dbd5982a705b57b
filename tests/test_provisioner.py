"""Tests for checkout provisioning against a fake payment-link API."""

import asyncio

import httpx
import pytest

from paylink.core.catalog import configured_links, get_plan, list_plans
from paylink.core.pagarme import PagarmeClient, ProviderError, decode_link, decode_link_list
from paylink.core.provisioner import provision_checkout
from paylink.models.records import TrackingContext

TRACKING = TrackingContext(leadId="lead-1", fbclid="fbclid-1", fbp="fb.1.123.456", eventId="evt-abc")


def _provision(fake, settings, store, plan_id="experience", tracking=None):
    async def run():
        async with fake.client() as http:
            return await provision_checkout(
                get_plan(plan_id),
                tracking,
                settings=settings,
                links=configured_links(settings),
                http=http,
                store=store,
            )
    return asyncio.run(run())


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------

class TestDecodeLink:
    def test_top_level_object(self):
        info = decode_link({"id": "pl_1", "url": "https://x/pl_1", "status": "active", "amount": 100})
        assert (info.id, info.url, info.status, info.amount) == ("pl_1", "https://x/pl_1", "active", 100)
        assert info.is_active

    def test_short_url_and_nested_data(self):
        info = decode_link({"data": {"payment_link_id": "pl_2", "short_url": "https://s/pl_2"}})
        assert info.id == "pl_2"
        assert info.url == "https://s/pl_2"

    def test_nested_url_preferred_over_bare_top_level_id(self):
        info = decode_link({"id": "req_1", "data": {"id": "pl_3", "url": "https://x/pl_3"}})
        assert info.url == "https://x/pl_3"

    def test_amount_from_order_items(self):
        info = decode_link({"id": "pl_4", "order": {"items": [{"unit_price": 75998}]}})
        assert info.amount == 75998

    def test_unrecognized_shapes(self):
        assert decode_link({"message": "ok"}) is None
        assert decode_link(["pl_1"]) is None

    def test_list_shapes(self):
        item = {"id": "pl_1", "url": "https://x/pl_1"}
        assert [i.id for i in decode_link_list([item])] == ["pl_1"]
        assert [i.id for i in decode_link_list({"data": [item, "junk"]})] == ["pl_1"]
        assert decode_link_list({"data": {}}) == []


class TestProviderError:
    def test_mentions_fields_dict(self):
        err = ProviderError(422, {"errors": {"PaymentSettings.CreditCardSettings": ["bad"]}}, "paymentlinks")
        assert err.mentions_fields("payment_settings", "cart_settings")

    def test_mentions_fields_other(self):
        err = ProviderError(422, {"errors": {"name": ["required"]}}, "paymentlinks")
        assert not err.mentions_fields("payment_settings", "cart_settings")

    def test_non_mapping_body(self):
        assert not ProviderError(500, "oops", "paymentlinks").mentions_fields("cart_settings")


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

class TestWithoutCredential:
    def test_static_fallback_without_network(self, fake_pagarme, make_settings, link_store):
        result = _provision(fake_pagarme, make_settings(), link_store, tracking=TRACKING)
        assert result.ok is False
        assert result.fallback is True
        assert result.url == get_plan("experience").static_fallback_url
        assert result.error == "provider_not_configured"
        assert fake_pagarme.requests == []
        assert link_store.all() == {}

    def test_precreated_link_trusted_blindly(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(paymentlink_experience="pl_env1")
        result = _provision(fake_pagarme, settings, link_store, tracking=TRACKING)
        assert result.ok is True
        assert result.reused is True
        assert result.source == "precreated"
        assert result.url == "https://payment-link-v3.pagar.me/pl_env1"
        assert fake_pagarme.requests == []
        assert link_store.get("pl_env1").tracking["leadId"] == "lead-1"

    @pytest.mark.parametrize("plan_id", [p.id for p in list_plans()])
    @pytest.mark.parametrize("api_key", ["", "sk_test"])
    @pytest.mark.parametrize("precreated", ["", "pl_env1"])
    def test_every_plan_gets_a_url(self, fake_pagarme, make_settings, link_store, plan_id, api_key, precreated):
        fake_pagarme.add_link("pl_env1", 39999)
        settings = make_settings(
            pagarme_api_key=api_key,
            paymentlink_experience=precreated,
            paymentlink_last_option=precreated,
            paymentlink_transformation=precreated,
        )
        result = _provision(fake_pagarme, settings, link_store, plan_id=plan_id)
        assert result.url


class TestPrecreatedWithCredential:
    def test_active_link_used(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.add_link("pl_env1", 39999)
        settings = make_settings(pagarme_api_key="sk_test", paymentlink_experience="pl_env1")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.source == "precreated"
        assert result.reused is True
        assert len(fake_pagarme.requests) == 1
        assert fake_pagarme.requests[0].headers["Authorization"].startswith("Basic ")

    def test_inactive_link_falls_through_to_creation(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.add_link("pl_env1", 39999, status="inactive")
        settings = make_settings(pagarme_api_key="sk_test", paymentlink_experience="pl_env1")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.source == "created"
        assert result.url != "https://payment-link-v3.pagar.me/pl_env1"

    def test_missing_link_falls_through(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(pagarme_api_key="sk_test", paymentlink_experience="pl_gone")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.ok is True
        assert result.source == "created"


class TestReuseAndCreate:
    def test_second_call_reuses_by_name(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(pagarme_api_key="sk_test")
        first = _provision(fake_pagarme, settings, link_store)
        second = _provision(fake_pagarme, settings, link_store)
        assert first.ok and first.reused is False and first.source == "created"
        assert second.reused is True
        assert second.source == "name_lookup"
        assert second.url == first.url
        assert len(fake_pagarme.created_payloads) == 1

    def test_deterministic_name_and_order_code(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store, plan_id="transformation")
        payload = fake_pagarme.created_payloads[0]
        assert payload["name"] == "sejamais2-transformation-107997"
        assert payload["order_code"].startswith("sejamais2_transformation_")
        assert result.order_code == payload["order_code"]
        assert payload["cart_settings"]["items"][0]["amount"] == 107997
        assert "payment_settings" in payload

    def test_tracking_metadata_attached(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(pagarme_api_key="sk_test")
        _provision(fake_pagarme, settings, link_store, tracking=TRACKING)
        assert fake_pagarme.created_payloads[0]["metadata"] == {
            "lead_id": "lead-1",
            "fbclid": "fbclid-1",
            "fbp": "fb.1.123.456",
        }

    def test_mapping_written_with_tracking(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store, tracking=TRACKING)
        record = link_store.get(result.payment_link_id)
        assert record.order_code == result.order_code
        assert record.url == result.url
        assert record.tracking["eventId"] == "evt-abc"
        assert record.amount == 39999

    def test_no_mapping_without_tracking(self, fake_pagarme, make_settings, link_store):
        settings = make_settings(pagarme_api_key="sk_test")
        _provision(fake_pagarme, settings, link_store)
        assert link_store.all() == {}

    def test_failed_lookup_still_creates(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.lookup_status = 500
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.source == "created"

    def test_alternate_payload_after_settings_rejection(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.create_errors.append(
            (422, {"message": "invalid", "errors": {"CartSettings.Items": ["invalid"]}})
        )
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.ok is True
        assert len(fake_pagarme.created_payloads) == 2
        alternate = fake_pagarme.created_payloads[1]
        assert "payment_config" in alternate
        assert alternate["cart_settings"]["items"][0]["unit_price"] == 39999

    def test_alternate_payload_tried_only_once(self, fake_pagarme, make_settings, link_store):
        rejection = (422, {"errors": {"PaymentSettings": ["invalid"]}})
        fake_pagarme.create_errors.extend([rejection, rejection])
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.fallback is True
        assert result.error == "provider_error"
        assert len(fake_pagarme.created_payloads) == 2

    def test_other_validation_error_not_retried(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.create_errors.append((422, {"errors": {"name": ["too long"]}}))
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store, tracking=TRACKING)
        assert result.fallback is True
        assert result.url == get_plan("experience").static_fallback_url
        assert len(fake_pagarme.created_payloads) == 1
        assert link_store.all() == {}

    def test_server_error_falls_back(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.create_errors.append((503, {"message": "unavailable"}))
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.fallback is True
        assert result.error == "provider_error"

    def test_network_failure_falls_back_without_retry(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.unreachable = True
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.fallback is True
        assert result.error == "provider_unreachable"
        assert len(fake_pagarme.requests) == 1

    def test_response_without_url_is_fallback(self, fake_pagarme, make_settings, link_store):
        fake_pagarme.create_errors.append((200, {"id": "pl_nourl"}))
        settings = make_settings(pagarme_api_key="sk_test")
        result = _provision(fake_pagarme, settings, link_store)
        assert result.fallback is True
        assert result.error == "malformed_provider_response"


class TestCheckoutResponse:
    def test_fallback_shape(self, fake_pagarme, make_settings, link_store):
        result = _provision(fake_pagarme, make_settings(), link_store)
        body = result.to_response()
        assert body == {
            "ok": False,
            "url": get_plan("experience").static_fallback_url,
            "fallback": True,
            "error": "provider_not_configured",
        }

    def test_shipping_carrier_echoed(self, fake_pagarme, make_settings, link_store):
        result = _provision(fake_pagarme, make_settings(), link_store)
        assert result.to_response("Melhor Envio")["shippingCarrier"] == "Melhor Envio"


class TestFindActiveLink:
    def _find(self, items):
        def handler(request):
            return httpx.Response(200, json={"data": items})

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
                client = PagarmeClient(http, "sk_test", "https://api.example.test/core/v5")
                return await client.find_active_link("sejamais2-experience-39999")
        return asyncio.run(run())

    def test_link_without_status_not_reused(self):
        assert self._find([{"id": "pl_1", "url": "https://x/pl_1"}]) is None

    def test_inactive_skipped_for_active(self):
        info = self._find([
            {"id": "pl_1", "url": "https://x/pl_1", "status": "inactive"},
            {"id": "pl_2", "url": "https://x/pl_2", "status": "active"},
        ])
        assert info.id == "pl_2"
