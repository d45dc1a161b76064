"""
Services layer for the print fulfillment core.

- FulfillmentOrchestrator: quoting, ordering, submission with fallback
- OrderStore: lock-guarded orders, history and shipments
- StatusReconciler / StatusPoller: webhook + polling status convergence
- RenditionPipeline: PDF rendering and preflight jobs
- ReorderService: repeat orders from a completed rendition

Thread Model:
    Main Thread (Flask)
    ├── Vendor pool (quote fan-out, live status lookups)
    ├── Poller thread (30-minute sweep loop)
    └── Renditions scheduler thread
        └── Render worker pool (worker_concurrency)
"""

from .collaborators import (
    Renderer,
    RenderOutput,
    Storage,
    Notifier,
    LocalFileStorage,
    LoggingNotifier,
)
from .order_store import OrderStore
from .fallback import FallbackDecision, decide_fallback
from .orchestrator import FulfillmentOrchestrator, SubmissionOutcome
from .reconciliation import StatusReconciler, StatusPoller, WebhookOutcome, PollSummary
from .rendition_service import RenditionPipeline
from .reorder_service import ReorderService, ReorderEligibility

__all__ = [
    "Renderer",
    "RenderOutput",
    "Storage",
    "Notifier",
    "LocalFileStorage",
    "LoggingNotifier",
    "OrderStore",
    "FallbackDecision",
    "decide_fallback",
    "FulfillmentOrchestrator",
    "SubmissionOutcome",
    "StatusReconciler",
    "StatusPoller",
    "WebhookOutcome",
    "PollSummary",
    "RenditionPipeline",
    "ReorderService",
    "ReorderEligibility",
]
