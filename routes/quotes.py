"""
Quote routes.

Handles:
- /api/quotes      - All provider quotes, comparison and unavailable reasons
- /api/quotes/best - Single best quote by cost or speed
"""

from flask import Blueprint, request

from models.quote import QuoteRequest
from modules.quote_comparison import compare_quotes
from logging_config import get_logger
from routes.common import get_service, json_body, sanitize_quote_request


# Module logger
logger = get_logger(__name__)

quotes_bp = Blueprint("quotes", __name__, url_prefix="/api/quotes")


@quotes_bp.route("", methods=["POST"])
def all_quotes():
    """
    Quote every provider that can print the spec.

    Body: QuoteRequest JSON (spec, quantity, shipping_address,
    shipping_method, rendition_id).
    """
    orchestrator = get_service("ORCHESTRATOR", "Orchestrator")
    quote_request = QuoteRequest.from_dict(sanitize_quote_request(json_body()))

    response = orchestrator.get_all_quotes(quote_request)
    payload = response.to_dict()
    payload["comparison"] = compare_quotes(response.quotes).to_dict() if response.quotes else None
    return payload, 200


@quotes_bp.route("/best", methods=["POST"])
def best_quote():
    """Best quote; `?preference=speed` ranks by lead time instead of cost."""
    orchestrator = get_service("ORCHESTRATOR", "Orchestrator")
    data = json_body()
    preference = request.args.get("preference") or data.get("preference") or "cost"
    quote_request = QuoteRequest.from_dict(sanitize_quote_request(data))

    quote = orchestrator.get_best_quote(quote_request, preference=preference)
    if quote is None:
        return {"error": "NoQuote", "message": "No provider could quote this request"}, 404
    return {"quote": quote.to_dict(), "preference": preference}, 200
