"""
Health route.

Handles:
- /health - Service status (providers, poller, rendition pipeline)
"""

from flask import Blueprint, current_app


health_bp = Blueprint("health", __name__)


@health_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint with service status."""
    health_status = {
        "status": "ok",
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
        "checks": {}
    }

    # Providers
    registry = current_app.config.get("PROVIDER_REGISTRY")
    if registry is not None and len(registry) > 0:
        health_status["checks"]["providers"] = sorted(a.provider_id for a in registry.all())
    else:
        health_status["checks"]["providers"] = []
        health_status["status"] = "degraded"

    # Status poller (only expected to run when background services are on)
    poller = current_app.config.get("STATUS_POLLER")
    if poller is not None and poller.is_running:
        health_status["checks"]["poller"] = "running"
    else:
        health_status["checks"]["poller"] = "not_running"
        if current_app.config.get("START_BACKGROUND_SERVICES"):
            health_status["status"] = "degraded"

    # Rendition pipeline (optional: needs a renderer)
    pipeline = current_app.config.get("RENDITION_PIPELINE")
    if pipeline is None:
        health_status["checks"]["renditions"] = "not_configured"
    else:
        health_status["checks"]["renditions"] = "running" if pipeline.is_running else "idle"
        health_status["checks"]["job_queue"] = pipeline.queue_metrics()

    status_code = 200 if health_status["status"] == "ok" else 503
    return health_status, status_code
