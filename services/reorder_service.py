"""
Reorder service.

Re-quotes a previous order using its stored spec and the PDFs of its
(completed) rendition, and creates the repeat order with reorder_of set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.exceptions import InvalidSpec, OrderNotFound
from logging_config import get_logger
from models.order import PrintOrder
from models.quote import Quote, QuoteRequest, QuoteResponse
from models.rendition import RenditionStatus
from models.shipping import ShippingAddress, ShippingMethod
from services.orchestrator import FulfillmentOrchestrator


logger = get_logger(__name__)


@dataclass(frozen=True)
class ReorderEligibility:
    eligible: bool
    reason: str = ""
    rendition_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"eligible": self.eligible, "reason": self.reason, "rendition_id": self.rendition_id}


class ReorderService:
    """Repeat orders from their original rendition."""

    def __init__(self, orchestrator: FulfillmentOrchestrator):
        self._orchestrator = orchestrator

    def can_reorder(self, order_id: str) -> ReorderEligibility:
        try:
            order = self._orchestrator.store.get(order_id)
        except OrderNotFound:
            return ReorderEligibility(False, "Order not found")

        if not order.rendition_id:
            return ReorderEligibility(False, "Order has no rendition")

        renditions = self._orchestrator.renditions
        rendition = renditions.find_rendition(order.rendition_id) if renditions is not None else None
        if rendition is None:
            return ReorderEligibility(False, "Rendition not found", order.rendition_id)
        if rendition.status is not RenditionStatus.COMPLETED:
            return ReorderEligibility(
                False,
                f"Rendition is {rendition.status.value}",
                rendition.id,
            )
        if not rendition.has_files:
            return ReorderEligibility(False, "Rendition PDFs are missing", rendition.id)
        return ReorderEligibility(True, rendition_id=rendition.id)

    def build_request(
        self,
        order_id: str,
        quantity: Optional[int] = None,
        shipping_address: Optional[ShippingAddress] = None,
        shipping_method: Optional[ShippingMethod] = None
    ) -> QuoteRequest:
        """
        Raises:
            InvalidSpec: Order cannot be reordered
        """
        eligibility = self.can_reorder(order_id)
        if not eligibility.eligible:
            raise InvalidSpec(f"Order {order_id} cannot be reordered: {eligibility.reason}")

        order = self._orchestrator.store.get(order_id)
        rendition = self._orchestrator.renditions.get_rendition(eligibility.rendition_id)
        spec = order.spec.with_changes(
            interior_pdf_url=rendition.interior_pdf_url,
            cover_pdf_url=rendition.cover_pdf_url,
        )
        return QuoteRequest(
            spec=spec,
            quantity=quantity or order.quantity,
            shipping_address=shipping_address or order.shipping_address,
            shipping_method=shipping_method or order.shipping_method,
            rendition_id=rendition.id,
        )

    def reorder(
        self,
        order_id: str,
        quantity: Optional[int] = None,
        shipping_address: Optional[ShippingAddress] = None,
        shipping_method: Optional[ShippingMethod] = None
    ) -> QuoteResponse:
        """Fresh quotes for repeating an order."""
        request = self.build_request(order_id, quantity, shipping_address, shipping_method)
        logger.info(f"Re-quoting order {order_id} (qty {request.quantity})")
        return self._orchestrator.get_all_quotes(request)

    def create_reorder(
        self,
        order_id: str,
        quote: Quote,
        quantity: Optional[int] = None,
        shipping_address: Optional[ShippingAddress] = None,
        shipping_method: Optional[ShippingMethod] = None,
        user_id: Optional[str] = None
    ) -> PrintOrder:
        """Create the repeat order (pending) from a chosen quote."""
        request = self.build_request(order_id, quantity, shipping_address, shipping_method)
        original = self._orchestrator.store.get(order_id)
        return self._orchestrator.create_order(
            quote,
            request,
            user_id=user_id or original.user_id,
            rendition_id=request.rendition_id,
            reorder_of=order_id,
        )
