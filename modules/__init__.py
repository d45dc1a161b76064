"""Helper modules for the print fulfillment core."""

__all__ = [
    "pdf_inspector",
    "preflight",
    "quote_comparison",
    "spiral_preflight",
]
