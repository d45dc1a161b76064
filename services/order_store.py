"""
In-memory order store.

Holds orders, their append-only status history and their shipments. Every
write happens under one lock as a single atomic step, which is what makes
concurrent webhooks, polling and submissions safe: the forward-only status
check and the write cannot be interleaved.

Readers get copies (PrintOrder.copy()), never the stored instance.

Submission claims:
    claim_submission() registers an in-flight marker per order. A second
    claim while the first is in flight raises SubmissionConflict; the caller
    can wait_for_submission() to receive the first caller's outcome.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.exceptions import OrderNotFound, SubmissionConflict
from logging_config import get_logger
from models.order import OrderStatus, OrderStatusUpdate, PrintOrder, StatusSource
from models.print_spec import utc_now
from models.shipping import Shipment, TrackingInfo


logger = get_logger(__name__)


@dataclass
class _InFlight:
    event: threading.Event = field(default_factory=threading.Event)
    outcome: Any = None


@dataclass(frozen=True)
class AppliedUpdate:
    """Result of a status write that changed something."""

    update: OrderStatusUpdate
    order: PrintOrder
    status_changed: bool
    new_shipment: Optional[Shipment] = None


class OrderStore:
    """Thread-safe store for orders, history and shipments."""

    def __init__(self):
        self._orders: Dict[str, PrintOrder] = {}
        self._history: Dict[str, List[OrderStatusUpdate]] = {}
        self._shipments: Dict[str, List[Shipment]] = {}
        self._in_flight: Dict[str, _InFlight] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def add(self, order: PrintOrder) -> PrintOrder:
        """Insert a new order with its initial history entry."""
        with self._lock:
            if order.id in self._orders:
                raise ValueError(f"Order already exists: {order.id}")
            stored = order.copy()
            self._orders[stored.id] = stored
            self._history[stored.id] = [OrderStatusUpdate(
                order_id=stored.id,
                previous_status=None,
                status=stored.status,
                source=StatusSource.SYSTEM,
                message="Order created",
            )]
            self._shipments[stored.id] = []
            logger.debug(f"Stored order {stored.id} ({stored.provider_id})")
            return stored.copy()

    def get(self, order_id: str) -> PrintOrder:
        """
        Raises:
            OrderNotFound: Unknown order id
        """
        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise OrderNotFound(order_id)
            return order.copy()

    def find_by_external_id(self, external_id: str, provider_id: Optional[str] = None) -> Optional[PrintOrder]:
        with self._lock:
            for order in self._orders.values():
                if order.external_id != external_id:
                    continue
                if provider_id is not None and order.provider_id != provider_id:
                    continue
                return order.copy()
        return None

    def list(self) -> List[PrintOrder]:
        with self._lock:
            return [order.copy() for order in self._orders.values()]

    def history(self, order_id: str) -> List[OrderStatusUpdate]:
        with self._lock:
            if order_id not in self._orders:
                raise OrderNotFound(order_id)
            return list(self._history[order_id])

    def shipments(self, order_id: str) -> List[Shipment]:
        with self._lock:
            if order_id not in self._orders:
                raise OrderNotFound(order_id)
            return list(self._shipments[order_id])

    # ------------------------------------------------------------------
    # Submission bookkeeping
    # ------------------------------------------------------------------

    def claim_submission(self, order_id: str) -> None:
        """
        Mark a submission of this order as in flight.

        Raises:
            OrderNotFound: Unknown order id
            SubmissionConflict: Another submission is already in flight
        """
        with self._lock:
            if order_id not in self._orders:
                raise OrderNotFound(order_id)
            if order_id in self._in_flight:
                raise SubmissionConflict(order_id)
            self._in_flight[order_id] = _InFlight()

    def release_submission(self, order_id: str, outcome: Any) -> None:
        """Clear the in-flight marker and hand the outcome to waiters."""
        with self._lock:
            marker = self._in_flight.pop(order_id, None)
        if marker is not None:
            marker.outcome = outcome
            marker.event.set()

    def wait_for_submission(self, order_id: str, timeout: float) -> Optional[Any]:
        """
        Wait for the in-flight submission of an order.

        Returns:
            The outcome passed to release_submission(), or None on timeout
            (also None when nothing was in flight)
        """
        with self._lock:
            marker = self._in_flight.get(order_id)
        if marker is None:
            return None
        if not marker.event.wait(timeout):
            return None
        return marker.outcome

    def record_submission(
        self,
        order_id: str,
        external_id: Optional[str],
        status: OrderStatus,
        submitted_at: Optional[datetime] = None,
        error: Optional[str] = None
    ) -> PrintOrder:
        """
        Set the vendor id and submission time, then move to `status`.

        external_id is None when the vendor accepted the order but its
        answer could not be read; `error` then says why.
        """
        with self._lock:
            order = self._require(order_id)
            order.external_id = external_id
            order.submitted_at = submitted_at or utc_now()
            order.error = error
            message = f"Submitted as {external_id}" if external_id else "Submitted, vendor id unknown"
            if order.status.can_transition_to(status):
                self._write_status(order, status, StatusSource.SYSTEM, message)
            order.updated_at = utc_now()
            return order.copy()

    def attach_external_id(self, order_id: str, external_id: str) -> Optional[PrintOrder]:
        """
        Fill in the vendor id of an order submitted without one.

        Returns:
            The updated order, or None when it already had a vendor id
        """
        with self._lock:
            order = self._require(order_id)
            if order.external_id:
                return None
            order.external_id = external_id
            order.error = None
            order.updated_at = utc_now()
            logger.info(f"Order {order_id} matched to vendor id {external_id}")
            return order.copy()

    def record_error(self, order_id: str, error: str) -> PrintOrder:
        with self._lock:
            order = self._require(order_id)
            order.error = error
            order.updated_at = utc_now()
            return order.copy()

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------

    def apply_status_update(
        self,
        order_id: str,
        status: OrderStatus,
        source: StatusSource,
        tracking: Optional[TrackingInfo] = None,
        message: str = "",
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Optional[AppliedUpdate]:
        """
        Apply a status update if it moves the order forward or brings a new
        tracking number.

        Returns:
            AppliedUpdate, or None when the update is stale or a duplicate
        """
        with self._lock:
            order = self._require(order_id)
            status_changed = order.status.can_transition_to(status)
            known_numbers = {s.tracking_number for s in self._shipments[order_id]}
            new_tracking = tracking is not None and tracking.tracking_number not in known_numbers

            if not status_changed and not new_tracking:
                return None

            previous = order.status
            if status_changed:
                order.status = status
                now = utc_now()
                if status in (OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED) and order.shipped_at is None:
                    order.shipped_at = now
                if status is OrderStatus.DELIVERED:
                    order.delivered_at = now
            if error is not None:
                order.error = error

            shipment = None
            if tracking is not None:
                order.tracking = tracking
                if new_tracking:
                    shipment = Shipment.from_tracking(order_id, tracking)
                    self._shipments[order_id].append(shipment)

            order.updated_at = utc_now()
            update = OrderStatusUpdate(
                order_id=order_id,
                previous_status=previous,
                status=order.status,
                source=source,
                message=message,
                tracking=tracking,
                payload=payload,
            )
            self._history[order_id].append(update)
            return AppliedUpdate(
                update=update,
                order=order.copy(),
                status_changed=status_changed,
                new_shipment=shipment,
            )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def orders_needing_poll(
        self,
        now: datetime,
        stale_after: timedelta,
        max_age: timedelta,
        limit: int
    ) -> List[PrintOrder]:
        """
        Non-terminal submitted orders that have gone quiet.

        Selects orders with an external id, no update for `stale_after`, and
        created within `max_age`; oldest update first, at most `limit`.
        """
        with self._lock:
            candidates = [
                order for order in self._orders.values()
                if order.external_id
                and not order.status.is_terminal
                and now - order.updated_at >= stale_after
                and now - order.created_at < max_age
            ]
            candidates.sort(key=lambda o: o.updated_at)
            return [order.copy() for order in candidates[:limit]]

    # ------------------------------------------------------------------
    # Internals (call with the lock held)
    # ------------------------------------------------------------------

    def _require(self, order_id: str) -> PrintOrder:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _write_status(self, order: PrintOrder, status: OrderStatus, source: StatusSource, message: str) -> None:
        self._history[order.id].append(OrderStatusUpdate(
            order_id=order.id,
            previous_status=order.status,
            status=status,
            source=source,
            message=message,
        ))
        order.status = status

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)
