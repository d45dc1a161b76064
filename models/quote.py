"""
Quote data models.

A Quote is a provider-scoped price/time estimate for one
(spec, quantity, destination, shipping method) tuple. Quotes are immutable
once returned; an expired quote cannot be used to create an order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.exceptions import InvalidSpec
from models.print_spec import PrintSpec, utc_now
from models.shipping import ShippingAddress, ShippingMethod


DEFAULT_QUOTE_TTL = timedelta(hours=24)


@dataclass(frozen=True)
class CostBreakdown:
    """Itemised cost of an order. `total` is the sum of the other parts."""

    printing: float
    """Printing cost for all copies."""

    shipping: float
    """Shipping cost."""

    handling: float = 0.0
    """Vendor handling fee."""

    tax: float = 0.0
    """Tax as reported by the vendor (never computed here)."""

    total: float = 0.0
    """Grand total."""

    currency: str = "USD"
    """ISO 4217 currency code."""

    @classmethod
    def build(
        cls,
        printing: float,
        shipping: float,
        handling: float = 0.0,
        tax: float = 0.0,
        currency: str = "USD"
    ) -> "CostBreakdown":
        """Create a breakdown with the total computed from its parts."""
        return cls(
            printing=round(printing, 2),
            shipping=round(shipping, 2),
            handling=round(handling, 2),
            tax=round(tax, 2),
            total=round(printing + shipping + handling + tax, 2),
            currency=currency,
        )

    @classmethod
    def zero(cls, currency: str = "USD") -> "CostBreakdown":
        return cls(printing=0.0, shipping=0.0, currency=currency)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "printing": self.printing,
            "shipping": self.shipping,
            "handling": self.handling,
            "tax": self.tax,
            "total": self.total,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class QuoteRequest:
    """What to price: a spec, a quantity and a destination."""

    spec: PrintSpec
    """Product being quoted."""

    quantity: int
    """Number of copies."""

    shipping_address: ShippingAddress
    """Destination."""

    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    """Requested shipping speed."""

    rendition_id: Optional[str] = None
    """Rendition that produced the spec's PDFs, when known."""

    def __post_init__(self):
        if not isinstance(self.quantity, int) or self.quantity < 1:
            raise InvalidSpec(f"Quantity must be at least 1: {self.quantity!r}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuoteRequest":
        if "spec" not in data or "shipping_address" not in data:
            raise InvalidSpec("Quote request needs 'spec' and 'shipping_address'")
        try:
            quantity = int(data.get("quantity", 1))
        except (TypeError, ValueError):
            raise InvalidSpec(f"Invalid quantity: {data.get('quantity')!r}")
        return cls(
            spec=PrintSpec.from_dict(data["spec"]),
            quantity=quantity,
            shipping_address=ShippingAddress.from_dict(data["shipping_address"]),
            shipping_method=ShippingMethod.parse(data.get("shipping_method")),
            rendition_id=data.get("rendition_id"),
        )


@dataclass(frozen=True)
class Quote:
    """
    A provider's price and lead-time estimate.

    Unavailable quotes (available=False) carry the reason instead of prices,
    so callers can show which providers could not answer.
    """

    provider_id: str
    """Provider that issued the quote."""

    provider_name: str
    """Human-readable provider name."""

    cost: CostBreakdown
    """Price breakdown."""

    estimated_production_days: int = 0
    """Days in production before dispatch."""

    estimated_shipping_days: int = 0
    """Days in transit."""

    expires_at: datetime = field(default_factory=lambda: utc_now() + DEFAULT_QUOTE_TTL)
    """Quote is valid while now < expires_at."""

    available: bool = True
    """False when the provider could not produce a quote."""

    unavailable_reason: Optional[str] = None
    """Why the quote is unavailable."""

    quote_id: Optional[str] = None
    """Vendor-side quote reference, if any."""

    created_at: datetime = field(default_factory=utc_now)
    """When the quote was produced."""

    @classmethod
    def unavailable(cls, provider_id: str, provider_name: str, reason: str) -> "Quote":
        return cls(
            provider_id=provider_id,
            provider_name=provider_name,
            cost=CostBreakdown.zero(),
            available=False,
            unavailable_reason=reason,
        )

    @property
    def total_lead_days(self) -> int:
        return self.estimated_production_days + self.estimated_shipping_days

    @property
    def estimated_delivery_date(self) -> datetime:
        return self.created_at + timedelta(days=self.total_lead_days)

    @property
    def sort_key(self) -> float:
        """Ordering used by quote aggregation: total plus shipping."""
        return self.cost.total + self.cost.shipping

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once now >= expires_at."""
        now = now or utc_now()
        return not now < self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "cost": self.cost.to_dict(),
            "estimated_production_days": self.estimated_production_days,
            "estimated_shipping_days": self.estimated_shipping_days,
            "estimated_delivery_date": self.estimated_delivery_date.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "available": self.available,
            "unavailable_reason": self.unavailable_reason,
            "quote_id": self.quote_id,
        }


@dataclass(frozen=True)
class QuoteResponse:
    """Result of quote aggregation across providers."""

    quotes: List[Quote]
    """Available quotes, cheapest first."""

    unavailable: Dict[str, str] = field(default_factory=dict)
    """provider_id -> reason for providers that did not quote."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "quotes": [q.to_dict() for q in self.quotes],
            "unavailable": dict(self.unavailable),
        }
