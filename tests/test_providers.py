"""
Unit tests for the provider adapters and the adapter registry.

Vendor HTTP is mocked at the requests.Session level so the payload
translation in each adapter is exercised end to end.
"""

import json
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from config import FulfillmentConfig, ProviderCredentials
from core.exceptions import InvalidSpec, ParseError, ProviderUnavailable
from models.order import OrderStatus, PrintOrder
from models.print_spec import BindingType
from models.quote import QuoteRequest
from models.shipping import ShippingMethod
from providers.base import money, vendor_list, vendor_object
from providers.lulu import LuluAdapter, lulu_pod_package_id
from providers.peecho import PeechoAdapter
from providers.prodigi import ProdigiAdapter, prodigi_sku
from providers.registry import AdapterRegistry, build_registry

from conftest import FakeAdapter


def response(status=200, body=None, headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.content = json.dumps(body).encode("utf-8") if body is not None else b""
    resp.text = json.dumps(body) if body is not None else ""
    resp.json.return_value = body
    resp.headers = headers or {"Content-Type": "application/json"}
    return resp


# Fixtures

@pytest.fixture
def session():
    """Mock requests.Session with a real headers dict."""
    session = MagicMock()
    session.headers = {}
    return session


@pytest.fixture
def order(quote_request):
    """A pending order built from the shared quote request."""
    return PrintOrder(
        spec=quote_request.spec,
        quantity=quote_request.quantity,
        shipping_address=quote_request.shipping_address,
        provider_id="test",
    )


# Tests for Prodigi

class TestProdigiAdapter:
    """Tests for the Prodigi adapter."""

    def test_api_key_header(self, session):
        """The API key goes in X-API-Key."""
        ProdigiAdapter("secret-key", session=session)
        assert session.headers["X-API-Key"] == "secret-key"

    def test_quote_translates_costs(self, session, quote_request):
        """itemCosts is per copy; the remainder of totalCost is handling."""
        session.request.return_value = response(body={
            "quotes": [{
                "quotesId": "q-1",
                "items": [{"itemCosts": {"amount": "8.00", "currency": "USD"}}],
                "shipmentCost": {"amount": "5.00"},
                "totalCost": {"amount": "22.00", "currency": "USD"},
            }],
        })
        adapter = ProdigiAdapter("key", session=session)

        quote = adapter.get_quote(quote_request)

        assert quote.available
        assert quote.cost.printing == 16.0
        assert quote.cost.shipping == 5.0
        assert quote.cost.handling == 1.0
        assert quote.cost.total == 22.0
        assert quote.quote_id == "q-1"
        assert quote.estimated_shipping_days == 7

        method, url = session.request.call_args.args
        payload = session.request.call_args.kwargs["json"]
        assert (method, url) == ("POST", "https://api.sandbox.prodigi.com/v4.0/quotes")
        assert payload["shippingMethod"] == "Standard"
        assert payload["destinationCountryCode"] == "US"
        assert payload["items"][0]["sku"] == "GLOBAL-SPB-6X9"
        assert payload["items"][0]["copies"] == 2

    def test_quote_failure_becomes_unavailable(self, session, quote_request):
        """Vendor rejections are absorbed with the vendor's message."""
        session.request.return_value = response(400, {"message": "Invalid SKU"})
        adapter = ProdigiAdapter("key", session=session, max_retries=0)

        quote = adapter.get_quote(quote_request)

        assert not quote.available
        assert quote.unavailable_reason == "Invalid SKU"

    def test_unsupported_spec_never_calls_vendor(self, session, quote_request):
        """Capability mismatches are answered locally."""
        adapter = ProdigiAdapter("key", session=session)
        spiral = quote_request.spec.with_changes(binding=BindingType.SPIRAL)

        quote = adapter.get_quote(QuoteRequest(
            spec=spiral,
            quantity=1,
            shipping_address=quote_request.shipping_address,
        ))

        assert not quote.available
        assert "Unsupported spec" in quote.unavailable_reason
        session.request.assert_not_called()

    def test_hardcover_sku(self, spec):
        """Hardcover-family bindings map to HPB."""
        assert prodigi_sku(spec.with_changes(binding=BindingType.CASE_WRAP)) == "GLOBAL-HPB-6X9"

    def test_create_order(self, session, order):
        """Orders carry the internal id as merchant reference."""
        session.request.return_value = response(body={
            "order": {"id": "ord_123", "status": {"stage": "InProgress"}},
        })
        adapter = ProdigiAdapter("key", session=session)

        result = adapter.create_order(order)

        assert result.external_id == "ord_123"
        assert result.status is OrderStatus.IN_PRODUCTION
        payload = session.request.call_args.kwargs["json"]
        assert payload["merchantReference"] == order.id
        assert payload["idempotencyKey"] == order.id
        assert payload["recipient"]["address"]["townOrCity"] == "Springfield"

    def test_create_order_is_not_retried(self, session, order):
        """A failed order POST is sent exactly once."""
        session.request.return_value = response(503, {"message": "busy"})
        adapter = ProdigiAdapter("key", session=session, max_retries=3)

        with pytest.raises(ProviderUnavailable):
            adapter.create_order(order)

        assert session.request.call_count == 1

    def test_webhook_shipped(self):
        """shipment.shipped maps to in_transit with tracking."""
        adapter = ProdigiAdapter("key", session=MagicMock(headers={}))
        event = adapter.handle_webhook({
            "event": "shipment.shipped",
            "data": {"order": {
                "id": "ord_123",
                "merchantReference": "internal-1",
                "shipments": [{
                    "carrier": {"name": "DHL"},
                    "tracking": {"number": "TRK9", "url": "https://track.example.com/TRK9"},
                }],
            }},
        })

        assert event.external_id == "ord_123"
        assert event.status is OrderStatus.IN_TRANSIT
        assert event.tracking.tracking_number == "TRK9"
        assert event.tracking.carrier == "DHL"
        assert event.merchant_reference == "internal-1"

    def test_webhook_unknown_shape(self):
        """Unexpected payloads raise ParseError."""
        adapter = ProdigiAdapter("key", session=MagicMock(headers={}))
        with pytest.raises(ParseError):
            adapter.handle_webhook({"hello": "world"})

    def test_quote_without_total_is_unavailable(self, session, quote_request):
        """A missing totalCost is a parse failure, never a free quote."""
        session.request.return_value = response(body={
            "quotes": [{
                "items": [{"itemCosts": {"amount": "8.00"}}],
                "shipmentCost": {"amount": "5.00"},
            }],
        })
        adapter = ProdigiAdapter("key", session=session)

        quote = adapter.get_quote(quote_request)

        assert not quote.available
        assert "totalCost is missing" in quote.unavailable_reason

    def test_quote_with_garbled_amount_is_unavailable(self, session, quote_request):
        """Non-numeric amounts are rejected."""
        session.request.return_value = response(body={
            "quotes": [{
                "items": [{"itemCosts": {"amount": "eight"}}],
                "totalCost": {"amount": "22.00"},
            }],
        })
        adapter = ProdigiAdapter("key", session=session)

        quote = adapter.get_quote(quote_request)

        assert not quote.available
        assert "itemCosts is not an amount" in quote.unavailable_reason

    def test_budget_shipping_not_offered_domestically(self, session, quote_request):
        """Economy maps to Budget, which Prodigi only ships internationally."""
        adapter = ProdigiAdapter("key", session=session)

        quote = adapter.get_quote(replace(quote_request, shipping_method=ShippingMethod.ECONOMY))

        assert not quote.available
        assert "economy shipping is not available" in quote.unavailable_reason
        session.request.assert_not_called()

    def test_priority_maps_to_overnight(self, session, quote_request):
        """Priority to a US address is Prodigi Overnight."""
        session.request.return_value = response(body={
            "quotes": [{
                "items": [{"itemCosts": {"amount": "8.00"}}],
                "shipmentCost": {"amount": "25.00"},
                "totalCost": {"amount": "41.00"},
            }],
        })
        adapter = ProdigiAdapter("key", session=session)

        quote = adapter.get_quote(replace(quote_request, shipping_method=ShippingMethod.PRIORITY))

        assert quote.available
        assert quote.estimated_shipping_days == 1
        assert session.request.call_args.kwargs["json"]["shippingMethod"] == "Overnight"

    def test_create_order_rejects_ineligible_shipping(self, session, order):
        """Overnight abroad is refused before any request is sent."""
        adapter = ProdigiAdapter("key", session=session)
        abroad = replace(
            order,
            shipping_address=replace(order.shipping_address, country="GB"),
            shipping_method=ShippingMethod.PRIORITY,
        )

        with pytest.raises(InvalidSpec) as exc_info:
            adapter.create_order(abroad)

        assert exc_info.value.details["available"] == ["economy", "express", "standard"]
        session.request.assert_not_called()

    def test_create_order_keeps_id_with_garbled_status(self, session, order):
        """An unreadable status does not lose the vendor id."""
        session.request.return_value = response(body={"order": {"id": "ord_123", "status": "InProgress"}})
        adapter = ProdigiAdapter("key", session=session)

        result = adapter.create_order(order)

        assert result.external_id == "ord_123"
        assert result.status is OrderStatus.PENDING

    @pytest.mark.parametrize("vendor_order", [
        {"id": "ord_123", "status": "InProgress"},
        {"id": "ord_123", "shipments": [{"tracking": "TRK9"}]},
        {"id": "ord_123", "shipments": [{"tracking": {"number": "TRK9"}, "carrier": "DHL"}]},
        {"id": "ord_123", "shipments": {"tracking": {"number": "TRK9"}}},
    ])
    def test_webhook_with_string_blocks(self, vendor_order):
        """Strings where objects belong raise ParseError instead of AttributeError."""
        adapter = ProdigiAdapter("key", session=MagicMock(headers={}))
        with pytest.raises(ParseError):
            adapter.handle_webhook({"event": "order.updated", "data": {"order": vendor_order}})

    def test_status_with_string_stage_block(self, session):
        """get_order_status rejects a string status block."""
        session.request.return_value = response(body={"order": {"id": "ord_123", "status": "InProgress"}})
        adapter = ProdigiAdapter("key", session=session)

        with pytest.raises(ParseError):
            adapter.get_order_status("ord_123")

    def test_unknown_stage_is_pending(self):
        """Unmapped vendor statuses fall back to pending."""
        adapter = ProdigiAdapter("key", session=MagicMock(headers={}))
        assert adapter.map_status("Teleported") is OrderStatus.PENDING


# Tests for Lulu

class TestLuluAdapter:
    """Tests for the Lulu adapter and its OAuth token cache."""

    COST_BODY = {
        "line_item_costs": [{"total_cost_excl_tax": "12.00"}],
        "shipping_cost": {"total_cost_excl_tax": "4.99"},
        "fulfillment_cost": {"total_cost_excl_tax": "0.75"},
        "total_tax": "1.00",
        "total_cost_excl_tax": "17.74",
        "currency": "USD",
    }

    def test_pod_package_id(self, spec):
        """6x9 full color perfect bound matte."""
        assert lulu_pod_package_id(spec) == "0600X0900FCSTDPB060UW444MXX"

    def test_quote_fetches_and_caches_token(self, session, quote_request):
        """The token is fetched once and reused until it expires."""
        session.request.side_effect = [
            response(body={"access_token": "tok", "expires_in": 3600}),
            response(body=self.COST_BODY),
            response(body=self.COST_BODY),
        ]
        adapter = LuluAdapter("client", "secret", session=session)

        first = adapter.get_quote(quote_request)
        second = adapter.get_quote(quote_request)

        assert first.available and second.available
        assert first.cost.printing == 12.0
        assert first.cost.shipping == 4.99
        assert first.cost.handling == 0.75
        assert first.cost.tax == 1.0
        assert first.cost.total == 18.74
        assert session.request.call_count == 3

        token_call = session.request.call_args_list[0]
        assert token_call.kwargs["auth"] == ("client", "secret")
        assert token_call.kwargs["data"] == {"grant_type": "client_credentials"}
        assert session.request.call_args_list[2].kwargs["headers"]["Authorization"] == "Bearer tok"

    def test_token_refreshed_after_expiry(self, session, quote_request):
        """Tokens are refreshed 60s before they expire."""
        now = [1000.0]
        session.request.side_effect = [
            response(body={"access_token": "tok-1", "expires_in": 120}),
            response(body=self.COST_BODY),
            response(body={"access_token": "tok-2", "expires_in": 120}),
            response(body=self.COST_BODY),
        ]
        adapter = LuluAdapter("client", "secret", session=session, clock=lambda: now[0])

        adapter.get_quote(quote_request)
        now[0] += 61
        adapter.get_quote(quote_request)

        assert session.request.call_args_list[3].kwargs["headers"]["Authorization"] == "Bearer tok-2"

    def test_cost_without_totals_is_unavailable(self, session, quote_request):
        """A response without totals is a parse failure, absorbed into the quote."""
        session.request.side_effect = [
            response(body={"access_token": "tok", "expires_in": 3600}),
            response(body={"line_item_costs": []}),
        ]
        adapter = LuluAdapter("client", "secret", session=session)

        quote = adapter.get_quote(quote_request)

        assert not quote.available
        assert "no totals" in quote.unavailable_reason

    def test_cost_with_garbled_shipping_is_unavailable(self, session, quote_request):
        """A string where the shipping cost object belongs is a parse failure."""
        session.request.side_effect = [
            response(body={"access_token": "tok", "expires_in": 3600}),
            response(body={**self.COST_BODY, "shipping_cost": "4.99"}),
        ]
        adapter = LuluAdapter("client", "secret", session=session)

        quote = adapter.get_quote(quote_request)

        assert not quote.available
        assert "shipping_cost is not an object" in quote.unavailable_reason

    def test_cost_without_line_items_is_unavailable(self, session, quote_request):
        """Totals without line item costs are not quoted."""
        session.request.side_effect = [
            response(body={"access_token": "tok", "expires_in": 3600}),
            response(body={**self.COST_BODY, "line_item_costs": []}),
        ]
        adapter = LuluAdapter("client", "secret", session=session)

        quote = adapter.get_quote(quote_request)

        assert not quote.available
        assert "no line item costs" in quote.unavailable_reason

    def test_create_order_keeps_id_with_garbled_status(self, session, order):
        """A print job with a string status is still recorded by id."""
        session.request.side_effect = [
            response(body={"access_token": "tok", "expires_in": 3600}),
            response(201, {"id": 4711, "status": "CREATED"}),
        ]
        adapter = LuluAdapter("client", "secret", session=session)

        result = adapter.create_order(order)

        assert result.external_id == "4711"
        assert result.status is OrderStatus.PENDING

    def test_shipping_level(self, session, quote_request):
        """Priority shipping maps to the EXPRESS level."""
        session.request.side_effect = [
            response(body={"access_token": "tok", "expires_in": 3600}),
            response(body=self.COST_BODY),
        ]
        adapter = LuluAdapter("client", "secret", session=session)
        request = QuoteRequest(
            spec=quote_request.spec,
            quantity=1,
            shipping_address=quote_request.shipping_address,
            shipping_method=ShippingMethod.PRIORITY,
        )

        quote = adapter.get_quote(request)

        assert session.request.call_args.kwargs["json"]["shipping_option"] == "EXPRESS"
        assert quote.estimated_shipping_days == 2

    def test_webhook(self):
        """PRINT_JOB_STATUS_CHANGED with a tracking id."""
        adapter = LuluAdapter("client", "secret", session=MagicMock(headers={}))
        event = adapter.handle_webhook({
            "topic": "PRINT_JOB_STATUS_CHANGED",
            "data": {
                "id": 4711,
                "external_id": "internal-1",
                "status": {"name": "SHIPPED"},
                "line_items": [{
                    "tracking_id": "1Z999",
                    "carrier_name": "UPS",
                    "tracking_urls": ["https://ups.example.com/1Z999"],
                }],
            },
        })

        assert event.external_id == "4711"
        assert event.status is OrderStatus.IN_TRANSIT
        assert event.tracking.tracking_number == "1Z999"
        assert event.tracking.tracking_url == "https://ups.example.com/1Z999"
        assert event.merchant_reference == "internal-1"

    def test_webhook_without_status(self):
        """data.status.name is required."""
        adapter = LuluAdapter("client", "secret", session=MagicMock(headers={}))
        with pytest.raises(ParseError):
            adapter.handle_webhook({"topic": "PRINT_JOB_STATUS_CHANGED", "data": {"id": 1}})

    def test_saddle_stitch_page_multiple(self, spec):
        """Saddle stitch needs pages in multiples of four."""
        adapter = LuluAdapter("client", "secret", session=MagicMock(headers={}))
        result = adapter.preflight(spec.with_changes(binding=BindingType.SADDLE_STITCH, page_count=30))
        assert [e.code for e in result.errors] == ["PAGE_COUNT_NOT_MULTIPLE_OF_4"]


# Tests for Peecho

class TestPeechoAdapter:
    """Tests for the Peecho rate card and order calls."""

    def test_rate_card_quote(self, session, quote_request):
        """(5 + 0.02 * pages) per copy, 5 shipping, 1.5 handling; no HTTP."""
        adapter = PeechoAdapter("key", session=session)

        quote = adapter.get_quote(quote_request)

        assert quote.cost.printing == 14.0
        assert quote.cost.shipping == 5.0
        assert quote.cost.handling == 1.5
        assert quote.cost.total == 20.5
        assert quote.estimated_shipping_days == 6
        session.request.assert_not_called()

    def test_fast_shipping(self, session, quote_request):
        """Express shipping costs 12 and takes 2 days."""
        adapter = PeechoAdapter("key", session=session)
        request = QuoteRequest(
            spec=quote_request.spec,
            quantity=1,
            shipping_address=quote_request.shipping_address,
            shipping_method=ShippingMethod.EXPRESS,
        )

        quote = adapter.get_quote(request)

        assert quote.cost.shipping == 12.0
        assert quote.estimated_shipping_days == 2

    def test_create_order(self, session, order):
        """The API key travels as a query parameter."""
        session.request.return_value = response(body={"id": 555, "status": "pending"})
        adapter = PeechoAdapter("peecho-key", session=session)

        result = adapter.create_order(order)

        assert result.external_id == "555"
        assert result.status is OrderStatus.SUBMITTED
        assert session.request.call_args.kwargs["params"] == {"api_key": "peecho-key"}
        assert session.request.call_args.kwargs["json"]["merchant_reference"] == order.id

    def test_cancel_refused(self, session):
        """Vendor refusals come back as success=False."""
        session.request.return_value = response(409, {"message": "Order already shipped"})
        adapter = PeechoAdapter("key", session=session)

        result = adapter.cancel_order("555")

        assert not result.success
        assert "Order already shipped" in result.message

    def test_webhook(self):
        """Flat {order_id, status} payloads."""
        adapter = PeechoAdapter("key", session=MagicMock(headers={}))
        event = adapter.handle_webhook({"order_id": "555", "status": "delivered"})
        assert event.status is OrderStatus.DELIVERED
        assert event.event == "order.delivered"


# Tests for the registry

class TestAdapterRegistry:
    """Tests for registration, lookups and build_registry()."""

    def test_build_registry_from_config(self):
        """Only fully configured providers are registered."""
        config = FulfillmentConfig(providers={
            "prodigi": ProviderCredentials(api_key="p"),
            "lulu": ProviderCredentials(api_key="l"),
            "peecho": ProviderCredentials(api_key="e"),
        })

        registry = build_registry(config)

        assert [a.provider_id for a in registry.all()] == ["prodigi", "peecho"]
        assert registry.frozen
        with pytest.raises(RuntimeError):
            registry.register(FakeAdapter("late"))
        registry.close()

    def test_duplicate_registration(self):
        """Provider ids are unique."""
        registry = AdapterRegistry()
        registry.register(FakeAdapter("alpha"))
        with pytest.raises(ValueError):
            registry.register(FakeAdapter("alpha"))

    def test_unknown_provider(self, registry):
        """Lookups of unregistered ids raise InvalidSpec."""
        with pytest.raises(InvalidSpec):
            registry.get("nobody")

    def test_fallback_for_skips_failed_and_unsupported(self, spec):
        """The fallback candidate supports the spec and is not the failed provider."""
        registry = AdapterRegistry()
        registry.register(FakeAdapter("alpha"))
        registry.register(FakeAdapter("spiral-only", bindings={BindingType.SPIRAL}))
        registry.register(FakeAdapter("gamma"))

        assert registry.fallback_for("alpha", spec).provider_id == "gamma"
        assert registry.fallback_for("gamma", spec).provider_id == "alpha"

    def test_adapters_quote_through_get_quote_only(self, session):
        """get_quote is the single quoting entry point on every adapter."""
        adapters = [
            ProdigiAdapter("key", session=session),
            LuluAdapter("client", "secret", session=session),
            PeechoAdapter("key", session=session),
        ]
        for adapter in adapters:
            assert callable(adapter.get_quote)
            assert not hasattr(adapter, "quote")

    def test_from_env(self):
        """Credentials are read per provider prefix."""
        config = FulfillmentConfig.from_env({
            "LULU_API_KEY": "k",
            "LULU_API_SECRET": "s",
            "LULU_ENV": "production",
            "LULU_WEBHOOK_SECRET": "wh",
            "FALLBACK_ENABLED": "false",
        })

        assert list(config.providers) == ["lulu"]
        assert config.credentials_for("lulu").is_live
        assert config.credentials_for("lulu").webhook_secret == "wh"
        assert not config.fallback_enabled
        assert not config.require_webhook_signatures


# Tests for vendor payload helpers

class TestVendorPayloadHelpers:
    """Tests for money, vendor_object and vendor_list."""

    @pytest.mark.parametrize("value, expected", [
        ("12.50", 12.5),
        (12, 12.0),
        ({"amount": "1.5", "currency": "USD"}, 1.5),
        (None, 0.0),
        ("", 0.0),
    ])
    def test_money(self, value, expected):
        """Strings, numbers and amount objects are accepted; absent is zero."""
        assert money(value, "test", "cost") == expected

    @pytest.mark.parametrize("value", ["twelve", True, [1], {"amount": "n/a"}])
    def test_money_rejects_garbage(self, value):
        """Anything that is not a number raises ParseError."""
        with pytest.raises(ParseError):
            money(value, "test", "cost")

    def test_required_money(self):
        """A required amount may not be missing."""
        with pytest.raises(ParseError) as exc_info:
            money({"currency": "USD"}, "test", "totalCost", required=True)
        assert "totalCost is missing" in exc_info.value.message

    def test_vendor_shapes(self):
        """Absent blocks are empty; wrong shapes raise."""
        assert vendor_object(None, "test", "order") == {}
        assert vendor_list("", "test", "items") == []
        with pytest.raises(ParseError):
            vendor_object("Shipped", "test", "status")
        with pytest.raises(ParseError):
            vendor_list({"id": 1}, "test", "shipments")
