"""
Rendition routes.

Handles:
- /api/renditions          - Create a rendition (interior, cover, preflight jobs)
- /api/renditions/<id>     - Rendition status with its jobs; DELETE cancels
- /api/renditions/metrics  - Job queue counts by state
- /api/renditions/stats    - Job counts, average duration and success rate

All endpoints answer 503 when no renderer is configured.
"""

from flask import Blueprint, request

from core.exceptions import InvalidSpec
from models.print_spec import PrintSpec
from logging_config import get_logger
from routes.common import get_service, json_body


# Module logger
logger = get_logger(__name__)

renditions_bp = Blueprint("renditions", __name__, url_prefix="/api/renditions")


def _pipeline():
    return get_service("RENDITION_PIPELINE", "Rendition pipeline")


@renditions_bp.route("", methods=["POST"])
def create_rendition():
    """
    Body:
        book_id: Book to render
        version: Book version (default 1)
        spec: Optional PrintSpec JSON used for preflight
    """
    pipeline = _pipeline()
    data = json_body()

    book_id = data.get("book_id")
    if not book_id:
        raise InvalidSpec("'book_id' is required")
    try:
        version = int(data.get("version", 1))
    except (TypeError, ValueError):
        raise InvalidSpec(f"Invalid version: {data.get('version')!r}")
    spec = PrintSpec.from_dict(data["spec"]) if data.get("spec") else None

    rendition = pipeline.create_rendition(str(book_id), version=version, spec=spec)
    return _rendition_payload(pipeline, rendition), 201


@renditions_bp.route("/metrics", methods=["GET"])
def metrics():
    return _pipeline().queue_metrics(), 200


@renditions_bp.route("/stats", methods=["GET"])
def stats():
    """Job statistics; ?hours= sets the window (default 24)."""
    try:
        hours = float(request.args.get("hours", 24))
    except ValueError:
        raise InvalidSpec(f"Invalid hours: {request.args.get('hours')!r}")
    return _pipeline().job_stats(hours=hours), 200


@renditions_bp.route("/<rendition_id>", methods=["GET"])
def get_rendition(rendition_id: str):
    pipeline = _pipeline()
    return _rendition_payload(pipeline, pipeline.get_rendition(rendition_id)), 200


@renditions_bp.route("/<rendition_id>", methods=["DELETE"])
def cancel_rendition(rendition_id: str):
    pipeline = _pipeline()
    rendition = pipeline.cancel_rendition(rendition_id)
    return _rendition_payload(pipeline, rendition), 200


def _rendition_payload(pipeline, rendition):
    return {
        "rendition": rendition.to_dict(),
        "jobs": [job.to_dict() for job in pipeline.list_jobs(rendition.id)],
    }
