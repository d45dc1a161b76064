"""
Order data models.

These models represent a print order as it flows through the core:
quote -> create -> submit -> (webhook | polling) -> delivered.

Thread Safety:
    - PrintOrder is mutable but only ever mutated inside OrderStore under its lock
    - OrderStore hands out copies (PrintOrder.copy()) so readers never observe
      a half-applied update
    - OrderStatusUpdate and Shipment are frozen (append-only history)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from models.print_spec import PrintSpec, parse_enum, utc_now
from models.quote import CostBreakdown
from models.shipping import ShippingAddress, ShippingMethod, TrackingInfo


class OrderStatus(Enum):
    """
    Canonical order status.

    Lifecycle:
        PENDING -> SUBMITTED -> ACCEPTED -> IN_PRODUCTION -> IN_TRANSIT -> DELIVERED

        CANCELLED / FAILED reachable from any non-terminal state
        ON_HOLD reachable from SUBMITTED / ACCEPTED, resumes forward

    Terminal: DELIVERED, CANCELLED, FAILED. Nothing moves backward.
    """

    PENDING = "pending"
    """Created locally, not yet sent to a provider."""

    SUBMITTED = "submitted"
    """Provider has the order."""

    ACCEPTED = "accepted"
    """Provider validated files and payment."""

    IN_PRODUCTION = "in_production"
    """Being printed/bound."""

    IN_TRANSIT = "in_transit"
    """Handed to the carrier."""

    DELIVERED = "delivered"
    """Delivered to the recipient."""

    CANCELLED = "cancelled"
    """Cancelled at the provider or locally before submission."""

    FAILED = "failed"
    """Submission or production failed."""

    ON_HOLD = "on_hold"
    """Provider paused the order (payment, file issue)."""

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """True if moving from self to target is a forward transition."""
        return target in ALLOWED_TRANSITIONS[self]

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        return parse_enum(cls, value, "order status")


TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.FAILED,
})

_MAIN_LINE = (
    OrderStatus.PENDING,
    OrderStatus.SUBMITTED,
    OrderStatus.ACCEPTED,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
)


def _build_transitions() -> Dict[OrderStatus, FrozenSet[OrderStatus]]:
    table: Dict[OrderStatus, set] = {status: set() for status in OrderStatus}

    # Forward along the main line, skipping allowed (a webhook may be missed)
    for index, status in enumerate(_MAIN_LINE):
        table[status].update(_MAIN_LINE[index + 1:])

    table[OrderStatus.SUBMITTED].add(OrderStatus.ON_HOLD)
    table[OrderStatus.ACCEPTED].add(OrderStatus.ON_HOLD)
    table[OrderStatus.ON_HOLD].update({
        OrderStatus.ACCEPTED,
        OrderStatus.IN_PRODUCTION,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    })

    for status in OrderStatus:
        if status in TERMINAL_STATUSES:
            table[status].clear()
        else:
            table[status].update({OrderStatus.CANCELLED, OrderStatus.FAILED})

    return {status: frozenset(targets) for status, targets in table.items()}


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = _build_transitions()


class StatusSource(Enum):
    """Where a status update came from."""

    WEBHOOK = "webhook"
    POLLING = "polling"
    SYSTEM = "system"


@dataclass
class PrintOrder:
    """
    The unit of work submitted to exactly one provider.

    Invariant: once submitted_at is set the provider never changes. Moving to
    another provider creates a NEW PrintOrder with fallback_of pointing here.
    """

    spec: PrintSpec
    """Product being ordered (immutable)."""

    quantity: int
    """Number of copies."""

    shipping_address: ShippingAddress
    """Destination."""

    provider_id: str
    """Provider that owns (or will own) this order."""

    shipping_method: ShippingMethod = ShippingMethod.STANDARD
    """Requested shipping speed."""

    status: OrderStatus = OrderStatus.PENDING
    """Current canonical status."""

    cost: CostBreakdown = field(default_factory=CostBreakdown.zero)
    """Cost quoted/charged for this order."""

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Internal order id (also the vendor merchant reference)."""

    external_id: Optional[str] = None
    """Provider's order id once submitted."""

    tracking: Optional[TrackingInfo] = None
    """Latest tracking info."""

    rendition_id: Optional[str] = None
    """Rendition whose PDFs this order prints."""

    user_id: Optional[str] = None
    """Ordering user (informational)."""

    fallback_of: Optional[str] = None
    """Id of the failed order this one replaces."""

    reorder_of: Optional[str] = None
    """Id of the order this one repeats."""

    error: Optional[str] = None
    """Last failure message."""

    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    submitted_at: Optional[datetime] = None
    shipped_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    @property
    def is_fallback(self) -> bool:
        return self.fallback_of is not None

    def copy(self) -> "PrintOrder":
        """Shallow copy; nested values are immutable."""
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        def _iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "external_id": self.external_id,
            "provider_id": self.provider_id,
            "status": self.status.value,
            "spec": self.spec.to_dict(),
            "quantity": self.quantity,
            "shipping_address": self.shipping_address.to_dict(),
            "shipping_method": self.shipping_method.value,
            "cost": self.cost.to_dict(),
            "tracking": self.tracking.to_dict() if self.tracking else None,
            "rendition_id": self.rendition_id,
            "user_id": self.user_id,
            "fallback_of": self.fallback_of,
            "reorder_of": self.reorder_of,
            "error": self.error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "submitted_at": _iso(self.submitted_at),
            "shipped_at": _iso(self.shipped_at),
            "delivered_at": _iso(self.delivered_at),
        }


@dataclass(frozen=True)
class OrderStatusUpdate:
    """One entry of an order's append-only status history."""

    order_id: str
    previous_status: Optional[OrderStatus]
    status: OrderStatus
    source: StatusSource
    message: str = ""
    tracking: Optional[TrackingInfo] = None
    payload: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "status": self.status.value,
            "source": self.source.value,
            "message": self.message,
            "tracking": self.tracking.to_dict() if self.tracking else None,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class OrderStatusView:
    """Status answer for callers: live from the vendor or last known."""

    order_id: str
    status: OrderStatus
    live: bool
    tracking: Optional[TrackingInfo] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "status": self.status.value,
            "live": self.live,
            "tracking": self.tracking.to_dict() if self.tracking else None,
            "message": self.message,
        }
