"""
Vendor webhook route.

Handles:
- /webhooks/<provider_id> - Verify the HMAC signature, then hand the payload
  to the status reconciler

Signature schemes (hex digest of the raw body):
    prodigi  HMAC-SHA256  X-Prodigi-Signature
    lulu     HMAC-SHA1    X-Lulu-Signature
    peecho   HMAC-SHA256  X-Peecho-Signature

X-Signature is accepted for every provider.
"""

import hashlib
import hmac
from typing import Optional

from flask import Blueprint, request

from core.exceptions import ParseError, SignatureError
from logging_config import get_logger
from routes.common import get_service


# Module logger
logger = get_logger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")

SIGNATURE_SCHEMES = {
    "prodigi": (hashlib.sha256, "X-Prodigi-Signature"),
    "lulu": (hashlib.sha1, "X-Lulu-Signature"),
    "peecho": (hashlib.sha256, "X-Peecho-Signature"),
}
DEFAULT_SCHEME = (hashlib.sha256, "X-Signature")


def compute_signature(provider_id: str, body: bytes, secret: str) -> str:
    digest, _ = SIGNATURE_SCHEMES.get(provider_id, DEFAULT_SCHEME)
    return hmac.new(secret.encode("utf-8"), body, digest).hexdigest()


def verify_signature(provider_id: str, body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time comparison of the received signature with the expected one."""
    if not signature:
        return False
    expected = compute_signature(provider_id, body, secret)
    return hmac.compare_digest(signature.strip().lower().encode("utf-8"), expected.encode("utf-8"))


def _signature_header(provider_id: str) -> Optional[str]:
    _, header = SIGNATURE_SCHEMES.get(provider_id, DEFAULT_SCHEME)
    return request.headers.get(header) or request.headers.get("X-Signature")


@webhooks_bp.route("/<provider_id>", methods=["POST"])
def receive(provider_id: str):
    """
    Apply a vendor status webhook.

    Returns 200 with the outcome (applied=False for stale or duplicate
    deliveries), 401 on a bad signature, 400 on an unrecognized payload.
    """
    registry = get_service("PROVIDER_REGISTRY", "Provider registry")
    reconciler = get_service("RECONCILER", "Status reconciler")
    config = get_service("FULFILLMENT_CONFIG", "Fulfillment config")

    if provider_id not in registry:
        return {"error": "UnknownProvider", "message": f"Unknown provider: {provider_id}"}, 404

    body = request.get_data(cache=True)
    credentials = config.credentials_for(provider_id)
    secret = credentials.webhook_secret if credentials else ""

    if secret:
        if not verify_signature(provider_id, body, _signature_header(provider_id), secret):
            logger.warning(f"Rejected {provider_id} webhook: invalid signature")
            raise SignatureError("Invalid webhook signature", {"provider_id": provider_id})
    elif config.require_webhook_signatures:
        logger.error(f"Rejected {provider_id} webhook: no webhook secret configured")
        raise SignatureError("Webhook signature required", {"provider_id": provider_id})
    else:
        logger.warning(f"{provider_id.upper()}_WEBHOOK_SECRET not set - skipping signature verification")

    payload = request.get_json(silent=True)
    if payload is None:
        raise ParseError(provider_id, "body is not valid JSON")

    outcome = reconciler.handle_webhook(provider_id, payload)
    return outcome.to_dict(), 200
