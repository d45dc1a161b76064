"""
Peecho adapter (https://www.peecho.com).

Quotes are computed from Peecho's published rate card without a network
call; orders go through the REST API with the api_key as a query parameter.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from core.exceptions import ParseError
from core.http_client import VendorHttpClient
from models.order import OrderStatus, PrintOrder
from models.preflight import PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType, ColorSpace, PrintSpec
from models.quote import CostBreakdown, Quote, QuoteRequest
from models.shipping import TrackingInfo
from providers.base import ProviderAdapter, StatusResult, SubmissionResult, WebhookEvent


BASE_URL = "https://api.peecho.com/v1"
SANDBOX_URL = "https://test.www.peecho.com/rest/v3"

# Rate card
BASE_COST = 5.0
COST_PER_PAGE = 0.02
SHIPPING_FAST = 12.0
SHIPPING_STANDARD = 5.0
HANDLING_FEE = 1.5
PRODUCTION_DAYS = 5
SHIPPING_DAYS_FAST = 2
SHIPPING_DAYS_STANDARD = 6


class PeechoAdapter(ProviderAdapter):
    """Peecho adapter: rate-card quotes, REST orders."""

    provider_id = "peecho"
    provider_name = "Peecho"

    supported_bindings = frozenset({
        BindingType.PERFECT_BOUND,
        BindingType.SADDLE_STITCH,
        BindingType.CASE_WRAP,
    })
    supported_trims = frozenset({"5x8", "5.5x8.5", "6x9", "7x10", "8x10", "8.5x11"})

    STATUS_MAP = {
        "pending": OrderStatus.SUBMITTED,
        "processing": OrderStatus.IN_PRODUCTION,
        "shipped": OrderStatus.IN_TRANSIT,
        "delivered": OrderStatus.DELIVERED,
        "cancelled": OrderStatus.CANCELLED,
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
        self._api_key = api_key
        self.client = VendorHttpClient(
            self.provider_id,
            BASE_URL if environment == "live" else SANDBOX_URL,
            headers={"Content-Type": "application/json"},
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            session=session,
            logger=self.logger,
        )

    def _params(self) -> Dict[str, str]:
        return {"api_key": self._api_key}

    def _fetch_quote(self, request: QuoteRequest) -> Quote:
        unit_cost = BASE_COST + request.spec.page_count * COST_PER_PAGE
        fast = request.shipping_method.is_fast
        return Quote(
            provider_id=self.provider_id,
            provider_name=self.provider_name,
            cost=CostBreakdown.build(
                printing=unit_cost * request.quantity,
                shipping=SHIPPING_FAST if fast else SHIPPING_STANDARD,
                handling=HANDLING_FEE,
            ),
            estimated_production_days=PRODUCTION_DAYS,
            estimated_shipping_days=SHIPPING_DAYS_FAST if fast else SHIPPING_DAYS_STANDARD,
        )

    def preflight(self, spec: PrintSpec) -> PreflightResult:
        warnings = []
        if spec.color_space is ColorSpace.GRAYSCALE:
            warnings.append(PreflightIssue(
                code="COLOR_SPACE_GRAYSCALE",
                message="Grayscale interiors are printed on the color line at color prices",
                severity=Severity.LOW,
            ))
        return PreflightResult.from_issues(self._capability_errors(spec), warnings)

    def create_order(self, order: PrintOrder) -> SubmissionResult:
        self._require_spec_support(order.spec)
        address = order.shipping_address
        payload = {
            "merchant_reference": order.id,
            "quantity": order.quantity,
            "offering": {
                "binding": order.spec.binding.value,
                "trim_size": order.spec.trim_size.name,
                "page_count": order.spec.page_count,
                "color_space": order.spec.color_space.value,
            },
            "file_details": {
                "interior_url": order.spec.interior_pdf_url,
                "cover_url": order.spec.cover_pdf_url,
            },
            "shipping_method": order.shipping_method.value,
            "address": {
                "name": address.name,
                "company": address.company,
                "address_line_1": address.street1,
                "address_line_2": address.street2,
                "city": address.city,
                "state": address.state,
                "zip_code": address.postal_code,
                "country_code": address.country,
                "email": address.email,
                "phone": address.phone,
            },
        }
        body = self.client.post("/orders", json_body=payload, params=self._params(), retry=False)
        external_id = body.get("id") or body.get("order_id")
        if not external_id:
            raise ParseError(self.provider_id, "order response has no id")
        self.logger.info(f"Peecho order {external_id} created for {order.id}")
        return SubmissionResult(
            external_id=str(external_id),
            status=self.map_status(body.get("status") or "pending"),
        )

    def get_order_status(self, external_id: str) -> StatusResult:
        body = self.client.get(f"/orders/{external_id}", params=self._params())
        if "status" not in body:
            raise ParseError(self.provider_id, "order has no status")
        return StatusResult(status=self.map_status(body.get("status")), tracking=self._tracking(body))

    def _cancel(self, external_id: str) -> None:
        self.client.post(f"/orders/{external_id}/cancel", params=self._params())

    def handle_webhook(self, payload: Any) -> WebhookEvent:
        if not isinstance(payload, dict):
            raise ParseError(self.provider_id, "payload is not an object")
        external_id = payload.get("order_id") or payload.get("id")
        status = payload.get("status")
        if not external_id or not isinstance(status, str):
            raise ParseError(self.provider_id, "expected {order_id, status}")
        return WebhookEvent(
            external_id=str(external_id),
            status=self.map_status(status),
            tracking=self._tracking(payload),
            event=str(payload.get("event") or f"order.{status}"),
            merchant_reference=payload.get("merchant_reference"),
        )

    @staticmethod
    def _tracking(body: Dict[str, Any]) -> Optional[TrackingInfo]:
        number = body.get("tracking_number") or body.get("tracking_code")
        if not number:
            return None
        return TrackingInfo(
            tracking_number=str(number),
            carrier=body.get("carrier") or "Unknown",
            tracking_url=body.get("tracking_url"),
        )

    def close(self) -> None:
        self.client.close()
