"""
Shipping data models: destination, method, tracking and shipments.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import InvalidSpec
from models.print_spec import parse_enum, utc_now


class ShippingMethod(Enum):
    ECONOMY = "economy"
    STANDARD = "standard"
    EXPRESS = "express"
    PRIORITY = "priority"

    @property
    def is_fast(self) -> bool:
        return self in (ShippingMethod.EXPRESS, ShippingMethod.PRIORITY)

    @classmethod
    def parse(cls, value: Any) -> "ShippingMethod":
        return parse_enum(cls, value or "standard", "shipping method")


DOMESTIC_COUNTRY = "US"


def is_domestic(country: str, home: str = DOMESTIC_COUNTRY) -> bool:
    """True when the destination is in the fulfillment home country."""
    return country.upper() == home.upper()


@dataclass(frozen=True)
class ShippingAddress:
    """
    Postal destination for an order.

    The country code drives shipping-method eligibility at the vendor.
    """

    name: str
    """Recipient name."""

    street1: str
    """First address line."""

    city: str
    """Town or city."""

    postal_code: str
    """Postal or ZIP code."""

    country: str
    """ISO 3166-1 alpha-2 country code (upper case)."""

    state: str = ""
    """State, county or region."""

    street2: str = ""
    """Second address line."""

    company: str = ""
    """Optional company name."""

    phone: Optional[str] = None
    """Recipient phone number (some carriers require it)."""

    email: Optional[str] = None
    """Recipient email for carrier notifications."""

    def __post_init__(self):
        country = (self.country or "").strip().upper()
        if len(country) != 2 or not country.isalpha():
            raise InvalidSpec(f"Country must be an ISO alpha-2 code: {self.country!r}")
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "country", country)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "company": self.company,
            "street1": self.street1,
            "street2": self.street2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "phone": self.phone,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingAddress":
        missing = [k for k in ("name", "street1", "city", "postal_code", "country") if not data.get(k)]
        if missing:
            raise InvalidSpec(
                "Shipping address is incomplete",
                {"missing": missing},
            )
        return cls(
            name=data["name"],
            street1=data["street1"],
            street2=data.get("street2", "") or "",
            company=data.get("company", "") or "",
            city=data["city"],
            state=data.get("state", "") or "",
            postal_code=str(data["postal_code"]),
            country=data["country"],
            phone=data.get("phone"),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class TrackingInfo:
    """Carrier tracking for a shipped order."""

    tracking_number: str
    """Carrier tracking number."""

    carrier: str = "Unknown"
    """Carrier name as reported by the vendor."""

    tracking_url: Optional[str] = None
    """Public tracking page."""

    status: str = ""
    """Carrier-level status text (informational only)."""

    estimated_delivery: Optional[datetime] = None
    """Carrier delivery estimate."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tracking_number": self.tracking_number,
            "carrier": self.carrier,
            "tracking_url": self.tracking_url,
            "status": self.status,
            "estimated_delivery": self.estimated_delivery.isoformat() if self.estimated_delivery else None,
        }


@dataclass(frozen=True)
class Shipment:
    """
    One physical package of an order.

    Created the first time a tracking number is seen; an order may split
    into several shipments.
    """

    order_id: str
    tracking_number: str
    carrier: str = "Unknown"
    tracking_url: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_tracking(cls, order_id: str, tracking: TrackingInfo) -> "Shipment":
        return cls(
            order_id=order_id,
            tracking_number=tracking.tracking_number,
            carrier=tracking.carrier,
            tracking_url=tracking.tracking_url,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "carrier": self.carrier,
            "tracking_number": self.tracking_number,
            "tracking_url": self.tracking_url,
            "created_at": self.created_at.isoformat(),
        }
