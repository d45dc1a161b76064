"""
Order routes.

Handles:
- /api/orders                  - Create an order from a provider quote, then submit
- /api/orders/<id>             - Order with history and shipments
- /api/orders/<id>/status      - Live (or last known) status
- /api/orders/<id>/cancel      - Cooperative cancel
- /api/orders/<id>/reorder     - Fresh quotes for repeating an order
"""

from typing import Optional

from flask import Blueprint

from core.exceptions import InvalidSpec, ProviderUnavailable
from models.quote import QuoteRequest
from models.shipping import ShippingAddress, ShippingMethod
from logging_config import get_logger
from routes.common import get_service, json_body, sanitize_address, sanitize_quote_request


# Module logger
logger = get_logger(__name__)

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.route("", methods=["POST"])
def create_order():
    """
    Quote the chosen provider, create the order and submit it.

    Body:
        provider_id: Provider to order from
        request: QuoteRequest JSON
        user_id: Optional owner
        override_preflight: Order even if the rendition is not ready or failed preflight

    Returns 201 when the order reached a vendor, 202 while a concurrent
    submission is still in flight, 502 when every attempt failed.
    """
    orchestrator = get_service("ORCHESTRATOR", "Orchestrator")
    data = json_body()

    provider_id = data.get("provider_id")
    if not provider_id:
        raise InvalidSpec("'provider_id' is required")
    if not isinstance(data.get("request"), dict):
        raise InvalidSpec("'request' must be a quote request object")

    quote_request = QuoteRequest.from_dict(sanitize_quote_request(data["request"]))
    override = bool(data.get("override_preflight"))
    quote = orchestrator.get_provider_quote(provider_id, quote_request, override_preflight=override)
    if not quote.available:
        raise ProviderUnavailable(provider_id, quote.unavailable_reason or "no quote")

    order = orchestrator.create_order(
        quote,
        quote_request,
        user_id=data.get("user_id"),
        override_preflight=override,
    )
    outcome = orchestrator.submit_order(order.id, override_preflight=override)

    if outcome.submitted:
        status_code = 201
    elif outcome.in_progress:
        status_code = 202
    else:
        status_code = 502
    logger.info(f"Order {order.id} via {provider_id}: HTTP {status_code}")
    return outcome.to_dict(), status_code


@orders_bp.route("/<order_id>", methods=["GET"])
def get_order(order_id: str):
    store = get_service("ORDER_STORE", "Order store")
    order = store.get(order_id)
    return {
        "order": order.to_dict(),
        "history": [u.to_dict() for u in store.history(order_id)],
        "shipments": [s.to_dict() for s in store.shipments(order_id)],
    }, 200


@orders_bp.route("/<order_id>/status", methods=["GET"])
def order_status(order_id: str):
    orchestrator = get_service("ORCHESTRATOR", "Orchestrator")
    return orchestrator.get_order_status(order_id).to_dict(), 200


@orders_bp.route("/<order_id>/cancel", methods=["POST"])
def cancel_order(order_id: str):
    orchestrator = get_service("ORCHESTRATOR", "Orchestrator")
    result = orchestrator.cancel_order(order_id)
    order = orchestrator.store.get(order_id)
    payload = result.to_dict()
    payload["order"] = order.to_dict()
    return payload, 200 if result.success else 409


@orders_bp.route("/<order_id>/reorder", methods=["POST"])
def reorder(order_id: str):
    """
    Re-quote an order from its rendition.

    Body (all optional): quantity, shipping_address, shipping_method.
    """
    reorders = get_service("REORDER_SERVICE", "Reorder service")
    data = json_body(required=False)

    quantity: Optional[int] = None
    if data.get("quantity") is not None:
        try:
            quantity = int(data["quantity"])
        except (TypeError, ValueError):
            raise InvalidSpec(f"Invalid quantity: {data['quantity']!r}")

    address = None
    if isinstance(data.get("shipping_address"), dict):
        address = ShippingAddress.from_dict(sanitize_address(data["shipping_address"]))
    method = ShippingMethod.parse(data["shipping_method"]) if data.get("shipping_method") else None

    response = reorders.reorder(order_id, quantity=quantity, shipping_address=address, shipping_method=method)
    payload = response.to_dict()
    payload["reorder_of"] = order_id
    return payload, 200
