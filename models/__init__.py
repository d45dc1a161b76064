"""
Data models for the print fulfillment core.

This package is the canonical vocabulary shared by every component:
- PrintSpec: immutable product description
- Quote / QuoteRequest / CostBreakdown: pricing
- PrintOrder / OrderStatus: orders and their forward-only state machine
- PreflightResult: print-readiness verdicts
- Rendition / RenditionJob: generated PDFs and the jobs producing them

Adapters translate vendor payloads into these types; nothing vendor-specific
leaks past the providers package.
"""

from .print_spec import (
    PrintSpec,
    TrimSize,
    BindingType,
    PaperType,
    ColorSpace,
    CoverFinish,
    ProductType,
)
from .shipping import ShippingAddress, ShippingMethod, TrackingInfo, Shipment
from .quote import CostBreakdown, Quote, QuoteRequest, QuoteResponse
from .order import (
    PrintOrder,
    OrderStatus,
    OrderStatusUpdate,
    OrderStatusView,
    StatusSource,
)
from .preflight import PreflightIssue, PreflightResult, Severity, DPIResult
from .rendition import Rendition, RenditionJob, RenditionStatus, JobType, JobState

__all__ = [
    # Spec models
    "PrintSpec",
    "TrimSize",
    "BindingType",
    "PaperType",
    "ColorSpace",
    "CoverFinish",
    "ProductType",
    # Shipping models
    "ShippingAddress",
    "ShippingMethod",
    "TrackingInfo",
    "Shipment",
    # Quote models
    "CostBreakdown",
    "Quote",
    "QuoteRequest",
    "QuoteResponse",
    # Order models
    "PrintOrder",
    "OrderStatus",
    "OrderStatusUpdate",
    "OrderStatusView",
    "StatusSource",
    # Preflight models
    "PreflightIssue",
    "PreflightResult",
    "Severity",
    "DPIResult",
    # Rendition models
    "Rendition",
    "RenditionJob",
    "RenditionStatus",
    "JobType",
    "JobState",
]
