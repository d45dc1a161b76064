"""
Prodigi adapter (https://www.prodigi.com, API v4.0).

Authentication is a static X-API-Key header. Books map to Prodigi's
GLOBAL-HPB (hardcover) and GLOBAL-SPB (softcover) SKUs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from core.exceptions import InvalidSpec, ParseError
from core.http_client import VendorHttpClient
from models.order import OrderStatus, PrintOrder
from models.preflight import PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType, ColorSpace, PrintSpec
from models.quote import CostBreakdown, Quote, QuoteRequest
from models.shipping import ShippingAddress, ShippingMethod, TrackingInfo
from providers.base import (
    ProviderAdapter,
    StatusResult,
    SubmissionResult,
    WebhookEvent,
    money,
    vendor_list,
    vendor_object,
)


SANDBOX_URL = "https://api.sandbox.prodigi.com/v4.0"
LIVE_URL = "https://api.prodigi.com/v4.0"

PRODUCTION_DAYS = 3
SHIPPING_DAYS = {"Budget": 10, "Standard": 7, "Express": 3, "Overnight": 1}

_SHIPPING_METHODS = {
    ShippingMethod.ECONOMY: "Budget",
    ShippingMethod.STANDARD: "Standard",
    ShippingMethod.EXPRESS: "Express",
    ShippingMethod.PRIORITY: "Overnight",
}

_SKUS = {
    ("hardcover", "6x9"): "GLOBAL-HPB-6X9",
    ("hardcover", "8.5x11"): "GLOBAL-HPB-8.5X11",
    ("softcover", "6x9"): "GLOBAL-SPB-6X9",
    ("softcover", "8.5x11"): "GLOBAL-SPB-8.5X11",
}

_WEBHOOK_EVENT_STATUS = {
    "shipment.shipped": OrderStatus.IN_TRANSIT,
    "shipment.delivered": OrderStatus.DELIVERED,
    "order.cancelled": OrderStatus.CANCELLED,
}


def prodigi_sku(spec: PrintSpec) -> str:
    """
    Raises:
        InvalidSpec: No Prodigi SKU for the binding/trim combination
    """
    family = "hardcover" if spec.binding.is_hardcover else "softcover"
    sku = _SKUS.get((family, spec.trim_size.name))
    if sku is None:
        raise InvalidSpec(
            f"Unsupported book specification: {spec.binding.value} {spec.trim_size.name}",
            {"provider_id": "prodigi"},
        )
    return sku


def prodigi_shipping_method(method: ShippingMethod) -> str:
    return _SHIPPING_METHODS[method]


class ProdigiAdapter(ProviderAdapter):
    """Prodigi REST adapter."""

    provider_id = "prodigi"
    provider_name = "Prodigi"

    supported_bindings = frozenset({
        BindingType.HARDCOVER,
        BindingType.CASE_WRAP,
        BindingType.SOFTCOVER,
        BindingType.PERFECT_BOUND,
    })
    supported_trims = frozenset({"6x9", "8.5x11"})
    min_pages = 24
    max_pages = 600

    # Budget is international only, Overnight is US only
    domestic_shipping_methods = frozenset({
        ShippingMethod.STANDARD,
        ShippingMethod.EXPRESS,
        ShippingMethod.PRIORITY,
    })
    international_shipping_methods = frozenset({
        ShippingMethod.ECONOMY,
        ShippingMethod.STANDARD,
        ShippingMethod.EXPRESS,
    })

    STATUS_MAP = {
        "Draft": OrderStatus.PENDING,
        "Submitted": OrderStatus.SUBMITTED,
        "InProgress": OrderStatus.IN_PRODUCTION,
        "Complete": OrderStatus.DELIVERED,
        "Cancelled": OrderStatus.CANCELLED,
        "AwaitingPayment": OrderStatus.ON_HOLD,
    }

    def __init__(
        self,
        api_key: str,
        environment: str = "sandbox",
        timeout_seconds: float = 15.0,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
    ):
        super().__init__()
        self.environment = environment
        self.client = VendorHttpClient(
            self.provider_id,
            LIVE_URL if environment == "live" else SANDBOX_URL,
            headers={"X-API-Key": api_key, "Content-Type": "application/json"},
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            session=session,
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    # Payload builders
    # ------------------------------------------------------------------

    def _items(self, spec: PrintSpec, quantity: int) -> list:
        return [{
            "sku": prodigi_sku(spec),
            "copies": quantity,
            "sizing": "fillPrintArea",
            "assets": [{"printArea": "default", "url": spec.interior_pdf_url}],
        }]

    @staticmethod
    def _recipient(address: ShippingAddress) -> Dict[str, Any]:
        recipient: Dict[str, Any] = {
            "name": address.name,
            "address": {
                "line1": address.street1,
                "line2": address.street2 or None,
                "postalOrZipCode": address.postal_code,
                "countryCode": address.country,
                "townOrCity": address.city,
                "stateOrCounty": address.state or None,
            },
        }
        if address.email:
            recipient["email"] = address.email
        if address.phone:
            recipient["phoneNumber"] = address.phone
        return recipient

    # ------------------------------------------------------------------
    # Adapter interface
    # ------------------------------------------------------------------

    def _fetch_quote(self, request: QuoteRequest) -> Quote:
        method = prodigi_shipping_method(request.shipping_method)
        body = self.client.post("/quotes", json_body={
            "shippingMethod": method,
            "destinationCountryCode": request.shipping_address.country,
            "currencyCode": "USD",
            "items": self._items(request.spec, request.quantity),
        })

        quotes = vendor_list(body.get("quotes"), self.provider_id, "quotes")
        if not quotes or not isinstance(quotes[0], dict):
            raise ParseError(self.provider_id, "quote response has no quotes")
        vendor_quote = quotes[0]

        items = vendor_list(vendor_quote.get("items"), self.provider_id, "quotes[0].items")
        first_item = vendor_object(items[0] if items else None, self.provider_id, "quotes[0].items[0]")
        # itemCosts is per copy
        printing = money(first_item.get("itemCosts"), self.provider_id, "itemCosts", required=True) * request.quantity
        shipping = money(vendor_quote.get("shipmentCost"), self.provider_id, "shipmentCost")
        total_cost = vendor_object(vendor_quote.get("totalCost"), self.provider_id, "totalCost")
        total = money(total_cost, self.provider_id, "totalCost", required=True)
        currency = total_cost.get("currency") or "USD"
        handling = max(0.0, round(total - printing - shipping, 2))

        return Quote(
            provider_id=self.provider_id,
            provider_name=self.provider_name,
            cost=CostBreakdown.build(printing, shipping, handling=handling, currency=currency),
            estimated_production_days=PRODUCTION_DAYS,
            estimated_shipping_days=SHIPPING_DAYS[method],
            quote_id=vendor_quote.get("quotesId"),
        )

    def preflight(self, spec: PrintSpec) -> PreflightResult:
        errors = self._capability_errors(spec)
        warnings = []
        if not spec.interior_pdf_url:
            errors.append(PreflightIssue(
                code="FILE_MISSING",
                message="Interior PDF URL is required",
                severity=Severity.HIGH,
                location="interior",
            ))
        if spec.color_space is ColorSpace.GRAYSCALE:
            warnings.append(PreflightIssue(
                code="COLOR_SPACE_GRAYSCALE",
                message="Grayscale may require special SKU selection",
                severity=Severity.LOW,
            ))
        return PreflightResult.from_issues(errors, warnings)

    def create_order(self, order: PrintOrder) -> SubmissionResult:
        self._require_spec_support(order.spec)
        self._require_shipping_support(order.shipping_method, order.shipping_address.country)
        payload = {
            "merchantReference": order.id,
            "idempotencyKey": order.id,
            "shippingMethod": prodigi_shipping_method(order.shipping_method),
            "recipient": self._recipient(order.shipping_address),
            "items": self._items(order.spec, order.quantity),
            "metadata": {
                "orderId": order.id,
                "renditionId": order.rendition_id,
                "userId": order.user_id,
            },
        }
        body = self.client.post("/orders", json_body=payload, retry=False)
        vendor_order = vendor_object(body.get("order"), self.provider_id, "order")
        external_id = vendor_order.get("id")
        if not external_id:
            raise ParseError(self.provider_id, "order response has no id")

        try:
            status = self.map_status(self._stage(vendor_order))
        except ParseError as e:
            # The id is all that is needed; polling fills in the status
            self.logger.warning(f"Prodigi order {external_id} has an unreadable status: {e.message}")
            status = OrderStatus.PENDING
        self.logger.info(f"Prodigi order {external_id} created for {order.id}")
        return SubmissionResult(external_id=external_id, status=status)

    def get_order_status(self, external_id: str) -> StatusResult:
        body = self.client.get(f"/orders/{external_id}")
        vendor_order = body.get("order")
        if not isinstance(vendor_order, dict):
            raise ParseError(self.provider_id, "status response has no order")
        status_block = vendor_object(vendor_order.get("status"), self.provider_id, "order.status")
        details = vendor_object(status_block.get("details"), self.provider_id, "order.status.details")
        return StatusResult(
            status=self.map_status(status_block.get("stage")),
            tracking=self._tracking(vendor_order),
            message=str(details.get("progress", "")),
        )

    def _cancel(self, external_id: str) -> None:
        self.client.delete(f"/orders/{external_id}")

    def handle_webhook(self, payload: Any) -> WebhookEvent:
        if not isinstance(payload, dict):
            raise ParseError(self.provider_id, "payload is not an object")
        event = payload.get("event")
        data = payload.get("data")
        if not isinstance(event, str) or not isinstance(data, dict):
            raise ParseError(self.provider_id, "expected {event, data}")
        vendor_order = data.get("order")
        if not isinstance(vendor_order, dict) or not vendor_order.get("id"):
            raise ParseError(self.provider_id, "data.order.id missing")

        status = _WEBHOOK_EVENT_STATUS.get(event)
        if status is None:
            status = self.map_status(self._stage(vendor_order))

        return WebhookEvent(
            external_id=str(vendor_order["id"]),
            status=status,
            tracking=self._tracking(vendor_order),
            event=event,
            merchant_reference=vendor_order.get("merchantReference"),
        )

    def _stage(self, vendor_order: Dict[str, Any]) -> Optional[str]:
        return vendor_object(vendor_order.get("status"), self.provider_id, "order.status").get("stage")

    def _tracking(self, vendor_order: Dict[str, Any]) -> Optional[TrackingInfo]:
        shipments = vendor_list(vendor_order.get("shipments"), self.provider_id, "order.shipments")
        if not shipments:
            return None
        shipment = vendor_object(shipments[0], self.provider_id, "order.shipments[0]")
        tracking = vendor_object(shipment.get("tracking"), self.provider_id, "shipment.tracking")
        number = tracking.get("number")
        if not number:
            return None
        carrier = vendor_object(shipment.get("carrier"), self.provider_id, "shipment.carrier")
        return TrackingInfo(
            tracking_number=str(number),
            carrier=carrier.get("name") or "Unknown",
            tracking_url=tracking.get("url"),
        )

    def close(self) -> None:
        self.client.close()
