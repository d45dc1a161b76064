"""
Custom exceptions for the print fulfillment core.

Exception Hierarchy:
    PrintFulfillmentError (base)
    ├── ProviderUnavailable  - Network/timeout/5xx from a vendor (retryable)
    ├── InvalidSpec          - Preflight or capability mismatch (fix the spec first)
    ├── QuoteExpired         - Quote is past its expiry, re-quote required
    ├── SubmissionConflict   - Duplicate submission guard tripped (in progress)
    ├── VendorRejected       - 4xx business-rule rejection from a vendor
    ├── JobExhausted         - Rendition job hit its retry ceiling (terminal)
    ├── ParseError           - Vendor webhook body has an unrecognized shape
    ├── OrderNotFound        - No order with the given id
    ├── ServiceUnavailableError - Backend service not configured or running
    └── SignatureError       - Webhook signature or cron token rejected

Usage:
    Adapters swallow transient failures into result objects (Quote.available=False,
    CancelResult.success=False). Orchestrator invariant violations are raised to the
    caller. Routes translate the taxonomy into JSON error responses.
"""

from datetime import datetime
from typing import Optional, Dict, Any


class PrintFulfillmentError(Exception):
    """
    Base exception for all print fulfillment errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON error responses."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# VENDOR ERRORS - Raised by the HTTP layer, absorbed by adapters where possible
# =============================================================================

class ProviderUnavailable(PrintFulfillmentError):
    """
    A print provider could not be reached or answered with a server error.

    This is a RETRYABLE error. Typical causes:
    - Connection refused / DNS failure
    - Request timed out
    - HTTP 429 or 5xx after retries were exhausted
    """

    http_status = 503

    def __init__(
        self,
        provider_id: str,
        reason: str,
        status_code: Optional[int] = None
    ):
        message = f"Provider '{provider_id}' unavailable: {reason}"
        details: Dict[str, Any] = {"provider_id": provider_id, "retryable": True}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.provider_id = provider_id
        self.reason = reason
        self.status_code = status_code


class VendorRejected(PrintFulfillmentError):
    """
    A vendor refused the request on business-rule grounds (HTTP 4xx).

    The vendor's own explanation is kept verbatim in `vendor_detail` so it can
    be surfaced to the caller unchanged.
    """

    http_status = 502

    def __init__(
        self,
        provider_id: str,
        vendor_detail: str,
        status_code: Optional[int] = None
    ):
        message = f"Provider '{provider_id}' rejected the request: {vendor_detail}"
        details: Dict[str, Any] = {
            "provider_id": provider_id,
            "vendor_detail": vendor_detail,
        }
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details)
        self.provider_id = provider_id
        self.vendor_detail = vendor_detail
        self.status_code = status_code


class ParseError(PrintFulfillmentError):
    """
    A vendor payload (usually a webhook) did not match any known shape.

    Raised instead of crashing on missing keys; the webhook endpoint answers
    with HTTP 400 so the vendor can see the delivery was not accepted.
    """

    http_status = 400

    def __init__(self, provider_id: str, reason: str):
        super().__init__(
            f"Unrecognized payload from '{provider_id}': {reason}",
            {"provider_id": provider_id},
        )
        self.provider_id = provider_id
        self.reason = reason


# =============================================================================
# ORDER ERRORS - Raised by the orchestrator to the caller
# =============================================================================

class InvalidSpec(PrintFulfillmentError):
    """
    The print spec cannot be produced as requested.

    Covers capability mismatches (no provider supports the binding/trim),
    failing preflight results, and malformed request values. Not retryable
    without changing the spec.
    """

    http_status = 422


class QuoteExpired(PrintFulfillmentError):
    """A quote was used after its expiry timestamp and must be re-requested."""

    http_status = 409

    def __init__(self, provider_id: str, expires_at: Optional[datetime] = None):
        details: Dict[str, Any] = {"provider_id": provider_id}
        if expires_at is not None:
            details["expires_at"] = expires_at.isoformat()
        super().__init__(f"Quote from '{provider_id}' has expired", details)
        self.provider_id = provider_id
        self.expires_at = expires_at


class SubmissionConflict(PrintFulfillmentError):
    """
    A submission for this order is already in flight.

    Treated as success-in-progress: the orchestrator waits on the in-flight
    submission instead of surfacing this to the caller.
    """

    http_status = 409

    def __init__(self, order_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Submission already in progress for order {order_id}",
            {"order_id": order_id},
        )
        self.order_id = order_id


class OrderNotFound(PrintFulfillmentError):
    """No order exists with the given internal or external id."""

    http_status = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}", {"order_id": order_id})
        self.order_id = order_id


# =============================================================================
# PIPELINE ERRORS
# =============================================================================

class JobExhausted(PrintFulfillmentError):
    """
    A rendition job reached its retry ceiling.

    This is a TERMINAL failure of the owning rendition: quoting against it is
    blocked until an operator regenerates it.
    """

    http_status = 409

    def __init__(self, rendition_id: str, job_type: str, attempts: int, last_error: str = ""):
        message = (
            f"Rendition {rendition_id} failed: {job_type} job exhausted "
            f"{attempts} attempts"
        )
        details = {
            "rendition_id": rendition_id,
            "job_type": job_type,
            "attempts": attempts,
        }
        if last_error:
            details["last_error"] = last_error
        super().__init__(message, details)
        self.rendition_id = rendition_id
        self.job_type = job_type
        self.attempts = attempts


# =============================================================================
# APPLICATION ERRORS
# =============================================================================

class ServiceUnavailableError(PrintFulfillmentError):
    """A backend service (render pipeline, poller) is not configured or running."""

    http_status = 503

    def __init__(self, service_name: str, message: Optional[str] = None):
        super().__init__(
            message or f"Service unavailable: {service_name}",
            {"service": service_name},
        )
        self.service_name = service_name


class SignatureError(PrintFulfillmentError):
    """A webhook or cron request failed authentication."""

    http_status = 401
