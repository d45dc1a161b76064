"""
Provider adapter interface.

Each POD vendor is wrapped in a ProviderAdapter subclass that translates
between the canonical models and the vendor's API. Vendor payload shapes
never leave the adapter.

Error contract:
    - get_quote() never raises; failures come back as Quote.unavailable(...)
    - cancel_order() never raises on vendor refusal; it returns success=False
    - create_order() raises ProviderUnavailable / VendorRejected so the
      orchestrator can decide about fallback
    - handle_webhook() raises ParseError for unrecognized payloads
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from core.exceptions import (
    InvalidSpec,
    ParseError,
    PrintFulfillmentError,
    ProviderUnavailable,
    VendorRejected,
)
from logging_config import get_logger
from models.order import OrderStatus, PrintOrder
from models.preflight import PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType, PrintSpec
from models.quote import Quote, QuoteRequest
from models.shipping import ShippingMethod, TrackingInfo, is_domestic


@dataclass(frozen=True)
class SubmissionResult:
    """Vendor acknowledgement of a created order."""

    external_id: str
    status: OrderStatus = OrderStatus.SUBMITTED


@dataclass(frozen=True)
class StatusResult:
    """Live status as reported by the vendor."""

    status: OrderStatus
    tracking: Optional[TrackingInfo] = None
    message: str = ""


@dataclass(frozen=True)
class CancelResult:
    success: bool
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass(frozen=True)
class WebhookEvent:
    """A vendor webhook reduced to what reconciliation needs."""

    external_id: str
    status: OrderStatus
    tracking: Optional[TrackingInfo] = None
    event: str = ""
    merchant_reference: Optional[str] = None


class ProviderAdapter(ABC):
    """
    Base class for POD provider adapters.

    Subclasses set provider_id / provider_name, the capability class
    attributes, STATUS_MAP, and implement the vendor calls.
    """

    provider_id: str = ""
    provider_name: str = ""

    supported_bindings: FrozenSet[BindingType] = frozenset()
    supported_trims: FrozenSet[str] = frozenset()
    """Trim names ('6x9'); empty means any trim."""

    min_pages: int = 1
    max_pages: int = 10000

    domestic_shipping_methods: FrozenSet[ShippingMethod] = frozenset()
    international_shipping_methods: FrozenSet[ShippingMethod] = frozenset()
    """Shipping methods offered by destination; empty means every method."""

    STATUS_MAP: Mapping[str, OrderStatus] = {}
    """Vendor status -> canonical status."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or get_logger(f"providers.{self.provider_id}")

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def supports_spec(self, spec: PrintSpec) -> bool:
        """Synchronous capability check: binding, trim and page range."""
        if self.supported_bindings and spec.binding not in self.supported_bindings:
            return False
        if self.supported_trims and spec.trim_size.name not in self.supported_trims:
            return False
        return self.min_pages <= spec.page_count <= self.max_pages

    def shipping_methods_for(self, country: str) -> FrozenSet[ShippingMethod]:
        methods = self.domestic_shipping_methods if is_domestic(country) else self.international_shipping_methods
        return methods or frozenset(ShippingMethod)

    def supports_shipping(self, method: ShippingMethod, country: str) -> bool:
        return method in self.shipping_methods_for(country)

    def map_status(self, vendor_status: Optional[str]) -> OrderStatus:
        """Unknown vendor statuses map to PENDING."""
        if vendor_status is None:
            return OrderStatus.PENDING
        status = self.STATUS_MAP.get(str(vendor_status))
        if status is None:
            self.logger.warning(f"Unknown {self.provider_id} status {vendor_status!r}, treating as pending")
            return OrderStatus.PENDING
        return status

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def get_quote(self, request: QuoteRequest) -> Quote:
        """
        Get a quote, converting every failure into an unavailable quote.

        Returns:
            Quote (available=False with a reason on any failure)
        """
        if not self.supports_spec(request.spec):
            return Quote.unavailable(
                self.provider_id,
                self.provider_name,
                f"Unsupported spec: {request.spec.binding.value} {request.spec.trim_size.name}, "
                f"{request.spec.page_count} pages",
            )
        address = request.shipping_address
        if not self.supports_shipping(request.shipping_method, address.country):
            return Quote.unavailable(
                self.provider_id,
                self.provider_name,
                f"{request.shipping_method.value} shipping is not available to {address.country}",
            )
        try:
            return self._fetch_quote(request)
        except VendorRejected as e:
            reason = e.vendor_detail
        except PrintFulfillmentError as e:
            reason = e.message
        except Exception as e:
            self.logger.exception(f"Unexpected error quoting with {self.provider_id}")
            reason = f"{type(e).__name__}: {e}"

        self.logger.warning(f"Quote unavailable from {self.provider_id}: {reason}")
        return Quote.unavailable(self.provider_id, self.provider_name, reason)

    @abstractmethod
    def _fetch_quote(self, request: QuoteRequest) -> Quote:
        """Vendor quote call. May raise; get_quote() absorbs the failure."""

    # ------------------------------------------------------------------
    # Preflight
    # ------------------------------------------------------------------

    def preflight(self, spec: PrintSpec) -> PreflightResult:
        """Vendor-specific checks. The base class checks capabilities only."""
        return PreflightResult.from_issues(self._capability_errors(spec))

    def _capability_errors(self, spec: PrintSpec) -> List[PreflightIssue]:
        errors: List[PreflightIssue] = []
        if self.supported_bindings and spec.binding not in self.supported_bindings:
            errors.append(PreflightIssue(
                code="BINDING_UNSUPPORTED",
                message=f"{self.provider_name} does not support {spec.binding.value} binding",
                severity=Severity.HIGH,
            ))
        if self.supported_trims and spec.trim_size.name not in self.supported_trims:
            errors.append(PreflightIssue(
                code="TRIM_UNSUPPORTED",
                message=f"{self.provider_name} does not support trim size {spec.trim_size.name}",
                severity=Severity.HIGH,
            ))
        if spec.page_count < self.min_pages:
            errors.append(PreflightIssue(
                code="PAGE_COUNT_TOO_LOW",
                message=f"Page count ({spec.page_count}) is below minimum ({self.min_pages} pages)",
                severity=Severity.HIGH,
                details={"page_count": spec.page_count, "minimum": self.min_pages},
            ))
        if spec.page_count > self.max_pages:
            errors.append(PreflightIssue(
                code="PAGE_COUNT_TOO_HIGH",
                message=f"Page count ({spec.page_count}) exceeds maximum ({self.max_pages} pages)",
                severity=Severity.HIGH,
                details={"page_count": spec.page_count, "maximum": self.max_pages},
            ))
        return errors

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @abstractmethod
    def create_order(self, order: PrintOrder) -> SubmissionResult:
        """
        Submit an order. The internal order id is sent as the vendor's
        merchant/idempotency reference.

        Raises:
            ProviderUnavailable: Vendor unreachable or 5xx
            VendorRejected: Vendor refused the order (4xx)
            InvalidSpec: Spec cannot be expressed for this vendor
        """

    @abstractmethod
    def get_order_status(self, external_id: str) -> StatusResult:
        """
        Raises:
            ProviderUnavailable: Vendor unreachable
        """

    def cancel_order(self, external_id: str) -> CancelResult:
        """Ask the vendor to cancel; refusals come back as success=False."""
        try:
            self._cancel(external_id)
        except (ProviderUnavailable, VendorRejected) as e:
            self.logger.warning(f"Cancel refused by {self.provider_id} for {external_id}: {e.message}")
            return CancelResult(success=False, message=e.message)
        self.logger.info(f"Cancelled {self.provider_id} order {external_id}")
        return CancelResult(success=True, message="Order cancelled successfully")

    @abstractmethod
    def _cancel(self, external_id: str) -> None:
        """Vendor cancel call. Raises on refusal."""

    @abstractmethod
    def handle_webhook(self, payload: Any) -> WebhookEvent:
        """
        Parse a vendor webhook body.

        Raises:
            ParseError: Payload shape not recognized
        """

    def close(self) -> None:
        """Release HTTP resources."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_spec_support(self, spec: PrintSpec) -> None:
        errors = self._capability_errors(spec)
        if errors:
            raise InvalidSpec(
                f"{self.provider_name} cannot print this spec",
                {"provider_id": self.provider_id, "errors": [e.message for e in errors]},
            )

    def _require_shipping_support(self, method: ShippingMethod, country: str) -> None:
        if not self.supports_shipping(method, country):
            raise InvalidSpec(
                f"{self.provider_name} does not offer {method.value} shipping to {country}",
                {
                    "provider_id": self.provider_id,
                    "available": sorted(m.value for m in self.shipping_methods_for(country)),
                },
            )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(provider_id={self.provider_id!r})"


def money(value: Any, provider_id: str, name: str, required: bool = False) -> float:
    """
    Parse a vendor money amount ('12.50', 12.5 or {'amount': '12.50'}).

    A missing optional amount is 0.0. A missing required amount, or any
    amount that is not a number, raises ParseError so a broken response
    never turns into a free quote.
    """
    if isinstance(value, dict):
        value = value.get("amount")
    if value is None or value == "":
        if required:
            raise ParseError(provider_id, f"{name} is missing")
        return 0.0
    if isinstance(value, bool):
        raise ParseError(provider_id, f"{name} is not an amount: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ParseError(provider_id, f"{name} is not an amount: {value!r}")


def vendor_object(value: Any, provider_id: str, name: str) -> Dict[str, Any]:
    """A nested vendor object; absent is {}, any other shape is a ParseError."""
    if value is None or value == "":
        return {}
    if not isinstance(value, dict):
        raise ParseError(provider_id, f"{name} is not an object")
    return value


def vendor_list(value: Any, provider_id: str, name: str) -> List[Any]:
    """A vendor array; absent is [], any other shape is a ParseError."""
    if value is None or value == "":
        return []
    if not isinstance(value, list):
        raise ParseError(provider_id, f"{name} is not a list")
    return value
