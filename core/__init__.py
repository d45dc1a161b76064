"""
Core module for the print fulfillment service.

Contains fundamental infrastructure components:
- exceptions: Error taxonomy shared by adapters, services and routes
- http_client: requests-based vendor client with timeouts and backoff
- rate_limiter: Token bucket for rendition job starts
"""

from .exceptions import (
    PrintFulfillmentError,
    ProviderUnavailable,
    VendorRejected,
    ParseError,
    InvalidSpec,
    QuoteExpired,
    SubmissionConflict,
    OrderNotFound,
    JobExhausted,
    ServiceUnavailableError,
    SignatureError,
)
from .http_client import VendorHttpClient
from .rate_limiter import TokenBucket

__all__ = [
    "PrintFulfillmentError",
    "ProviderUnavailable",
    "VendorRejected",
    "ParseError",
    "InvalidSpec",
    "QuoteExpired",
    "SubmissionConflict",
    "OrderNotFound",
    "JobExhausted",
    "ServiceUnavailableError",
    "SignatureError",
    "VendorHttpClient",
    "TokenBucket",
]
