"""
Cron routes.

Handles:
- /cron/poll-orders             - Run one status poll sweep (external scheduler trigger)
- /cron/renditions/maintenance  - Retry exhausted jobs, clean up, check the failure rate

Requires `Authorization: Bearer <CRON_SECRET>`.
"""

import hmac

from flask import Blueprint, request

from core.exceptions import ServiceUnavailableError, SignatureError
from logging_config import get_logger
from routes.common import get_service


# Module logger
logger = get_logger(__name__)

cron_bp = Blueprint("cron", __name__, url_prefix="/cron")


def _require_cron_secret(secret: str) -> None:
    if not secret:
        raise ServiceUnavailableError("cron", "CRON_SECRET is not configured")
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip().encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Rejected cron request: bad or missing bearer token")
        raise SignatureError("Unauthorized")


@cron_bp.route("/poll-orders", methods=["GET", "POST"])
def poll_orders():
    config = get_service("FULFILLMENT_CONFIG", "Fulfillment config")
    _require_cron_secret(config.cron_secret)

    poller = get_service("STATUS_POLLER", "Status poller")
    summary = poller.poll_once()
    return {"success": True, **summary.to_dict()}, 200


@cron_bp.route("/renditions/maintenance", methods=["GET", "POST"])
def rendition_maintenance():
    """Retry exhausted rendition jobs, drop old ones and check the failure rate."""
    config = get_service("FULFILLMENT_CONFIG", "Fulfillment config")
    _require_cron_secret(config.cron_secret)

    pipeline = get_service("RENDITION_PIPELINE", "Rendition pipeline")
    summary = pipeline.run_maintenance()
    logger.info(f"Rendition maintenance: {summary}")
    return {"success": True, **summary}, 200
