"""
Lulu Print API adapter (https://developers.lulu.com).

Authentication is OAuth2 client-credentials; the access token is cached
until shortly before it expires. Products are addressed by a 27-character
pod_package_id built from trim, color, binding, paper and finish.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Dict, Optional

import requests

from core.exceptions import ParseError, ProviderUnavailable
from core.http_client import VendorHttpClient
from models.order import OrderStatus, PrintOrder
from models.preflight import PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType, ColorSpace, CoverFinish, PrintSpec
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


SANDBOX_URL = "https://api.sandbox.lulu.com"
LIVE_URL = "https://api.lulu.com"
TOKEN_PATH = "/auth/realms/glasstree/protocol/openid-connect/token"

# Refresh this many seconds before the token actually expires
TOKEN_EXPIRY_MARGIN = 60

PRODUCTION_DAYS = 4

_SHIPPING_LEVELS = {
    ShippingMethod.ECONOMY: ("MAIL", 10),
    ShippingMethod.STANDARD: ("GROUND", 5),
    ShippingMethod.EXPRESS: ("EXPEDITED", 3),
    ShippingMethod.PRIORITY: ("EXPRESS", 2),
}

_BINDING_CODES = {
    BindingType.PERFECT_BOUND: "PB",
    BindingType.SADDLE_STITCH: "SS",
    BindingType.CASE_WRAP: "CW",
    BindingType.COIL: "CO",
}


def lulu_pod_package_id(spec: PrintSpec) -> str:
    """e.g. 0600X0900BWSTDPB060UW444MXX for a 6x9 b/w perfect bound book."""
    trim = f"{int(round(spec.trim_size.width * 100)):04d}X{int(round(spec.trim_size.height * 100)):04d}"
    color = "BW" if spec.color_space is ColorSpace.GRAYSCALE else "FC"
    binding = _BINDING_CODES.get(spec.binding, "PB")
    finish = "G" if spec.cover_finish is CoverFinish.GLOSS else "M"
    return f"{trim}{color}STD{binding}060UW444{finish}XX"


class LuluAdapter(ProviderAdapter):
    """Lulu Print API adapter."""

    provider_id = "lulu"
    provider_name = "Lulu"

    supported_bindings = frozenset(_BINDING_CODES)
    min_pages = 2
    max_pages = 800

    STATUS_MAP = {
        "CREATED": OrderStatus.SUBMITTED,
        "UNPAID": OrderStatus.ON_HOLD,
        "PRODUCTION_DELAYED": OrderStatus.ON_HOLD,
        "PRODUCTION_READY": OrderStatus.ACCEPTED,
        "IN_PRODUCTION": OrderStatus.IN_PRODUCTION,
        "MANUFACTURING": OrderStatus.IN_PRODUCTION,
        "SHIPPED": OrderStatus.IN_TRANSIT,
        "DELIVERED": OrderStatus.DELIVERED,
        "CANCELED": OrderStatus.CANCELLED,
        "REJECTED": OrderStatus.FAILED,
    }

    def __init__(
        self,
        client_key: str,
        client_secret: str,
        environment: str = "sandbox",
        timeout_seconds: float = 15.0,
        max_retries: int = 2,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.environment = environment
        self._client_key = client_key
        self._client_secret = client_secret
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()
        self.client = VendorHttpClient(
            self.provider_id,
            LIVE_URL if environment == "live" else SANDBOX_URL,
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
            session=session,
            logger=self.logger,
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def _access_token(self) -> str:
        """Return the cached token, fetching a new one when expired."""
        with self._token_lock:
            if self._token and self._clock() < self._token_expires_at:
                return self._token

            body = self.client.post(
                TOKEN_PATH,
                data={"grant_type": "client_credentials"},
                auth=(self._client_key, self._client_secret),
            )
            token = body.get("access_token")
            if not token:
                raise ProviderUnavailable(self.provider_id, "token response has no access_token")

            expires_in = float(body.get("expires_in") or 3600)
            self._token = token
            self._token_expires_at = self._clock() + max(0.0, expires_in - TOKEN_EXPIRY_MARGIN)
            self.logger.debug(f"Fetched Lulu access token (expires in {expires_in:.0f}s)")
            return token

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token()}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Payload builders
    # ------------------------------------------------------------------

    @staticmethod
    def _address(address: ShippingAddress) -> Dict[str, Any]:
        data = {
            "name": address.name,
            "street1": address.street1,
            "city": address.city,
            "country_code": address.country,
            "postcode": address.postal_code,
        }
        if address.street2:
            data["street2"] = address.street2
        if address.state:
            data["state_code"] = address.state
        if address.company:
            data["organization"] = address.company
        if address.phone:
            data["phone_number"] = address.phone
        if address.email:
            data["email"] = address.email
        return data

    # ------------------------------------------------------------------
    # Adapter interface
    # ------------------------------------------------------------------

    def _fetch_quote(self, request: QuoteRequest) -> Quote:
        level, shipping_days = _SHIPPING_LEVELS[request.shipping_method]
        body = self.client.post(
            "/print-job-cost-calculations/",
            json_body={
                "line_items": [{
                    "page_count": request.spec.page_count,
                    "pod_package_id": lulu_pod_package_id(request.spec),
                    "quantity": request.quantity,
                }],
                "shipping_address": self._address(request.shipping_address),
                "shipping_option": level,
            },
            headers=self._auth_headers(),
        )

        if "total_cost_excl_tax" not in body and "total_cost_incl_tax" not in body:
            raise ParseError(self.provider_id, "cost calculation response has no totals")

        line_items = vendor_list(body.get("line_item_costs"), self.provider_id, "line_item_costs")
        if not line_items:
            raise ParseError(self.provider_id, "cost calculation response has no line item costs")
        printing = sum(
            money(
                vendor_object(item, self.provider_id, "line_item_costs[]").get("total_cost_excl_tax"),
                self.provider_id,
                "line_item_costs[].total_cost_excl_tax",
                required=True,
            )
            for item in line_items
        )
        shipping_cost = vendor_object(body.get("shipping_cost"), self.provider_id, "shipping_cost")
        fulfillment_cost = vendor_object(body.get("fulfillment_cost"), self.provider_id, "fulfillment_cost")
        shipping = money(shipping_cost.get("total_cost_excl_tax"), self.provider_id, "shipping_cost")
        handling = money(fulfillment_cost.get("total_cost_excl_tax"), self.provider_id, "fulfillment_cost")
        tax = money(body.get("total_tax"), self.provider_id, "total_tax")

        return Quote(
            provider_id=self.provider_id,
            provider_name=self.provider_name,
            cost=CostBreakdown.build(
                printing,
                shipping,
                handling=handling,
                tax=tax,
                currency=body.get("currency") or "USD",
            ),
            estimated_production_days=PRODUCTION_DAYS,
            estimated_shipping_days=shipping_days,
        )

    def preflight(self, spec: PrintSpec) -> PreflightResult:
        errors = self._capability_errors(spec)
        if spec.binding is BindingType.CASE_WRAP and not spec.cover_pdf_url:
            errors.append(PreflightIssue(
                code="FILE_MISSING",
                message="Cover PDF is required for case wrap binding",
                severity=Severity.HIGH,
                location="cover",
            ))
        if spec.binding is BindingType.SADDLE_STITCH and spec.page_count % 4:
            errors.append(PreflightIssue(
                code="PAGE_COUNT_NOT_MULTIPLE_OF_4",
                message=f"Saddle stitch needs a page count divisible by 4 (got {spec.page_count})",
                severity=Severity.HIGH,
            ))
        return PreflightResult.from_issues(errors)

    def create_order(self, order: PrintOrder) -> SubmissionResult:
        self._require_spec_support(order.spec)
        level, _ = _SHIPPING_LEVELS[order.shipping_method]
        payload = {
            "external_id": order.id,
            "contact_email": order.shipping_address.email or "",
            "line_items": [{
                "external_id": order.id,
                "title": order.spec.title or order.spec.id,
                "quantity": order.quantity,
                "pod_package_id": lulu_pod_package_id(order.spec),
                "printable_normalization": {
                    "cover": {"source_url": order.spec.cover_pdf_url},
                    "interior": {"source_url": order.spec.interior_pdf_url},
                },
            }],
            "shipping_address": self._address(order.shipping_address),
            "shipping_level": level,
        }
        body = self.client.post(
            "/print-jobs/",
            json_body=payload,
            headers=self._auth_headers(),
            retry=False,
        )
        external_id = body.get("id")
        if external_id in (None, ""):
            raise ParseError(self.provider_id, "print job response has no id")

        try:
            status = self.map_status(vendor_object(body.get("status"), self.provider_id, "status").get("name"))
        except ParseError as e:
            # The id is all that is needed; polling fills in the status
            self.logger.warning(f"Lulu print job {external_id} has an unreadable status: {e.message}")
            status = OrderStatus.PENDING
        self.logger.info(f"Lulu print job {external_id} created for {order.id}")
        return SubmissionResult(external_id=str(external_id), status=status)

    def get_order_status(self, external_id: str) -> StatusResult:
        body = self.client.get(f"/print-jobs/{external_id}/", headers=self._auth_headers())
        status_block = body.get("status")
        if not isinstance(status_block, dict):
            raise ParseError(self.provider_id, "print job has no status")
        return StatusResult(
            status=self.map_status(status_block.get("name")),
            tracking=self._tracking(body),
            message=str(status_block.get("message") or ""),
        )

    def _cancel(self, external_id: str) -> None:
        self.client.put(
            f"/print-jobs/{external_id}/status/",
            json_body={"name": "CANCELED"},
            headers=self._auth_headers(),
        )

    def handle_webhook(self, payload: Any) -> WebhookEvent:
        if not isinstance(payload, dict):
            raise ParseError(self.provider_id, "payload is not an object")
        topic = payload.get("topic")
        print_job = payload.get("data")
        if not isinstance(topic, str) or not isinstance(print_job, dict):
            raise ParseError(self.provider_id, "expected {topic, data}")
        if print_job.get("id") in (None, ""):
            raise ParseError(self.provider_id, "data.id missing")
        status_block = print_job.get("status")
        if not isinstance(status_block, dict) or not status_block.get("name"):
            raise ParseError(self.provider_id, "data.status.name missing")

        return WebhookEvent(
            external_id=str(print_job["id"]),
            status=self.map_status(status_block["name"]),
            tracking=self._tracking(print_job),
            event=topic,
            merchant_reference=print_job.get("external_id"),
        )

    def _tracking(self, print_job: Dict[str, Any]) -> Optional[TrackingInfo]:
        for item in vendor_list(print_job.get("line_items"), self.provider_id, "line_items"):
            if not isinstance(item, dict) or not item.get("tracking_id"):
                continue
            urls = vendor_list(item.get("tracking_urls"), self.provider_id, "line_items[].tracking_urls")
            return TrackingInfo(
                tracking_number=str(item["tracking_id"]),
                carrier=item.get("carrier_name") or "Unknown",
                tracking_url=urls[0] if urls else None,
            )
        return None

    def close(self) -> None:
        self.client.close()
