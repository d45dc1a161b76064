"""
Fulfillment orchestrator.

Coordinates quoting, order creation, submission (with single-shot fallback),
cancellation and status lookups across the registered provider adapters.

Flow:
    1. get_all_quotes(request)    - concurrent fan-out, per-call timeout
    2. create_order(quote, ...)   - pending order carrying the quote's cost
    3. submit_order(order_id)     - preflight gate -> idempotency claim ->
                                    adapter.create_order -> fallback table
    4. webhooks / polling         - see services.reconciliation

Submission idempotency:
    The store's in-flight claim guarantees one vendor call per order. A
    concurrent duplicate waits for the first caller's outcome and returns
    it with deduplicated=True (or in_progress=True if it is still running
    after submit_timeout_seconds). A local cancel takes the same claim, so
    it can never race a vendor call.

Rendition gate:
    Orders tied to a rendition are only created and submitted once the
    rendition has COMPLETED with a passing preflight. override_preflight
    skips the gate.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional

from config import FulfillmentConfig
from core.exceptions import (
    InvalidSpec,
    PrintFulfillmentError,
    QuoteExpired,
    SubmissionConflict,
    VendorRejected,
)
from logging_config import get_logger, get_order_logger
from models.order import OrderStatus, OrderStatusView, PrintOrder, StatusSource
from models.preflight import PreflightResult
from models.print_spec import PrintSpec
from models.rendition import RenditionStatus
from models.quote import Quote, QuoteRequest, QuoteResponse
from providers.base import CancelResult, ProviderAdapter, SubmissionResult
from providers.registry import AdapterRegistry
from services.fallback import FallbackDecision, accepted_by_vendor, decide_fallback
from services.order_store import OrderStore


logger = get_logger(__name__)

PREFERENCES = ("cost", "speed")


@dataclass(frozen=True)
class SubmissionOutcome:
    """What happened to a submit_order() call."""

    order: PrintOrder
    """Final order: the original, or the fallback order if one was created."""

    submitted: bool = False
    """The order is at a vendor."""

    deduplicated: bool = False
    """This call piggybacked on a concurrent submission."""

    in_progress: bool = False
    """A concurrent submission had not finished when we stopped waiting."""

    fallback_used: bool = False
    """The order was re-created on a secondary provider."""

    error: Optional[str] = None
    """Failure message of the final attempt (vendor detail verbatim)."""

    primary_error: Optional[str] = None
    """Failure of the primary provider when a fallback was attempted."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order.to_dict(),
            "submitted": self.submitted,
            "deduplicated": self.deduplicated,
            "in_progress": self.in_progress,
            "fallback_used": self.fallback_used,
            "error": self.error,
            "primary_error": self.primary_error,
        }


def _error_message(error: BaseException) -> str:
    if isinstance(error, VendorRejected):
        return error.vendor_detail
    if isinstance(error, PrintFulfillmentError):
        return error.message
    return f"{type(error).__name__}: {error}"


class FulfillmentOrchestrator:
    """
    Entry point for quoting and ordering.

    Attributes:
        registry: Active provider adapters
        store: Order store
        config: Operator configuration
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        store: OrderStore,
        config: Optional[FulfillmentConfig] = None,
        reconciler=None,
        renditions=None,
        max_workers: int = 8
    ):
        """
        Args:
            registry: Provider adapters
            store: Order store
            config: Operator configuration (defaults when omitted)
            reconciler: StatusReconciler for applying live status lookups
            renditions: RenditionPipeline for readiness and preflight checks
            max_workers: Size of the vendor-call pool
        """
        self.registry = registry
        self.store = store
        self.config = config or FulfillmentConfig()
        self.reconciler = reconciler
        self.renditions = renditions
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="Vendor")

    def register_adapter(self, adapter: ProviderAdapter) -> None:
        self.registry.register(adapter)

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    def get_all_quotes(self, request: QuoteRequest) -> QuoteResponse:
        """
        Quote every provider that supports the spec, concurrently.

        Returns:
            QuoteResponse with available quotes sorted by total + shipping and
            the reason for every provider that did not quote

        Raises:
            InvalidSpec: The named rendition is unknown, failed or not ready
            JobExhausted: The named rendition exhausted its job retries
        """
        if request.rendition_id and self.renditions is not None:
            self.renditions.require_ready(request.rendition_id)

        unavailable: Dict[str, str] = {}
        futures = {}
        for adapter in self.registry.all():
            if not adapter.supports_spec(request.spec):
                unavailable[adapter.provider_id] = "Provider does not support this spec"
                continue
            futures[adapter.provider_id] = self._executor.submit(adapter.get_quote, request)

        deadline = time.monotonic() + self.config.quote_timeout_seconds
        quotes: List[Quote] = []
        for provider_id, future in futures.items():
            try:
                quote = future.result(timeout=max(0.0, deadline - time.monotonic()))
            except FutureTimeoutError:
                future.cancel()
                logger.warning(f"Quote from {provider_id} timed out after {self.config.quote_timeout_seconds}s")
                unavailable[provider_id] = "timed out"
                continue
            except Exception as e:
                logger.exception(f"Quote from {provider_id} raised")
                unavailable[provider_id] = _error_message(e)
                continue

            if quote.available:
                quotes.append(quote)
            else:
                unavailable[provider_id] = quote.unavailable_reason or "unavailable"

        quotes.sort(key=lambda q: q.sort_key)
        logger.info(
            f"Quoted {len(quotes)} of {len(self.registry)} providers "
            f"({request.spec.binding.value} {request.spec.trim_size.name}, qty {request.quantity})"
        )
        return QuoteResponse(quotes=quotes, unavailable=unavailable)

    def get_provider_quote(
        self,
        provider_id: str,
        request: QuoteRequest,
        override_preflight: bool = False
    ) -> Quote:
        """
        Quote a single provider, behind the same rendition check as
        get_all_quotes().

        Raises:
            InvalidSpec: Unknown provider, or the rendition is not ready
            JobExhausted: The rendition exhausted its job retries
        """
        if request.rendition_id and self.renditions is not None and not override_preflight:
            self.renditions.require_ready(request.rendition_id)
        return self.registry.get(provider_id).get_quote(request)

    def get_best_quote(self, request: QuoteRequest, preference: str = "cost") -> Optional[Quote]:
        """
        Cheapest (or fastest) quote, biased toward the preferred provider
        when its total is within the configured tolerance of the best.
        """
        if preference not in PREFERENCES:
            raise InvalidSpec(f"Invalid preference: {preference!r}", {"allowed": list(PREFERENCES)})

        quotes = self.get_all_quotes(request).quotes
        if not quotes:
            return None

        if preference == "cost":
            best = min(quotes, key=lambda q: q.cost.total)
        else:
            best = min(quotes, key=lambda q: (q.total_lead_days, q.cost.total))

        preferred_id = self.config.preferred_provider
        if preferred_id and best.provider_id != preferred_id:
            preferred = next((q for q in quotes if q.provider_id == preferred_id), None)
            ceiling = best.cost.total * (1 + self.config.preferred_provider_tolerance)
            if preferred is not None and preferred.cost.total <= ceiling:
                logger.info(
                    f"Choosing preferred provider {preferred_id} ({preferred.cost.total:.2f}) "
                    f"over {best.provider_id} ({best.cost.total:.2f})"
                )
                return preferred
        return best

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(
        self,
        quote: Quote,
        request: QuoteRequest,
        user_id: Optional[str] = None,
        rendition_id: Optional[str] = None,
        reorder_of: Optional[str] = None,
        override_preflight: bool = False
    ) -> PrintOrder:
        """
        Create a pending order from a quote.

        Raises:
            QuoteExpired: Quote is past expires_at or unavailable
            InvalidSpec: Provider unknown, cannot print the spec or ship
                with the requested method; rendition not ready
            JobExhausted: The rendition exhausted its job retries
        """
        if not quote.available or quote.is_expired():
            raise QuoteExpired(quote.provider_id, quote.expires_at)

        rendition_id = rendition_id or request.rendition_id
        if rendition_id and self.renditions is not None and not override_preflight:
            self.renditions.require_ready(rendition_id)

        adapter = self.registry.get(quote.provider_id)
        if not adapter.supports_spec(request.spec):
            raise InvalidSpec(
                f"{adapter.provider_name} cannot print this spec",
                {"provider_id": adapter.provider_id},
            )
        country = request.shipping_address.country
        if not adapter.supports_shipping(request.shipping_method, country):
            raise InvalidSpec(
                f"{adapter.provider_name} does not offer {request.shipping_method.value} shipping to {country}",
                {
                    "provider_id": adapter.provider_id,
                    "available": sorted(m.value for m in adapter.shipping_methods_for(country)),
                },
            )

        order = self.store.add(PrintOrder(
            spec=request.spec,
            quantity=request.quantity,
            shipping_address=request.shipping_address,
            provider_id=quote.provider_id,
            shipping_method=request.shipping_method,
            cost=quote.cost,
            rendition_id=rendition_id,
            user_id=user_id,
            reorder_of=reorder_of,
        ))
        get_order_logger(order.id).info(
            f"Created order with {order.provider_id} ({order.cost.total:.2f} {order.cost.currency})"
        )
        return order

    def submit_order(self, order_id: str, override_preflight: bool = False) -> SubmissionOutcome:
        """
        Submit an order to its provider exactly once.

        Raises:
            OrderNotFound: Unknown order
            InvalidSpec: Rendition not ready or preflight failed (and not
                overridden), or the provider cannot print the spec
            JobExhausted: The rendition exhausted its job retries
        """
        order_logger = get_order_logger(order_id)
        order = self.store.get(order_id)
        self._check_preflight(order, override_preflight)

        if order.status is not OrderStatus.PENDING:
            return self._current_outcome(order)

        try:
            self.store.claim_submission(order_id)
        except SubmissionConflict:
            order_logger.info("Submission already in flight, waiting for its outcome")
            return self._await_in_flight(order_id)

        outcome: Optional[SubmissionOutcome] = None
        try:
            order = self.store.get(order_id)
            if order.status is not OrderStatus.PENDING:
                outcome = self._current_outcome(order)
            else:
                outcome = self._submit(order)
            return outcome
        finally:
            self.store.release_submission(order_id, outcome)

    def _submit(self, order: PrintOrder) -> SubmissionOutcome:
        order_logger = get_order_logger(order.id)
        error = self._send(order)
        if error is None:
            return SubmissionOutcome(order=self.store.get(order.id), submitted=True)

        message = _error_message(error)
        if accepted_by_vendor(error):
            return self._record_unconfirmed(order, message)

        candidate = self.registry.fallback_for(order.provider_id, order.spec)
        decision = decide_fallback(
            error,
            self.config.fallback_enabled,
            order.is_fallback,
            candidate is not None,
        )
        failed = self._mark_failed(order.id, message)

        if isinstance(error, InvalidSpec):
            raise error

        if decision is FallbackDecision.NONE:
            order_logger.error(f"Submission to {order.provider_id} failed, no fallback: {message}")
            return SubmissionOutcome(order=failed, error=message)

        order_logger.warning(
            f"Submission to {order.provider_id} failed ({message}), falling back to {candidate.provider_id}"
        )
        replacement = self.store.add(PrintOrder(
            spec=order.spec,
            quantity=order.quantity,
            shipping_address=order.shipping_address,
            provider_id=candidate.provider_id,
            shipping_method=order.shipping_method,
            cost=order.cost,
            rendition_id=order.rendition_id,
            user_id=order.user_id,
            fallback_of=order.id,
            reorder_of=order.reorder_of,
        ))

        # The replacement is new and unshared; the claim only guards against
        # a concurrent submit_order() on its id.
        self.store.claim_submission(replacement.id)
        fallback_error: Optional[BaseException] = None
        try:
            fallback_error = self._send(replacement)
            if fallback_error is None:
                outcome = SubmissionOutcome(
                    order=self.store.get(replacement.id),
                    submitted=True,
                    fallback_used=True,
                    primary_error=message,
                )
            elif accepted_by_vendor(fallback_error):
                outcome = replace(
                    self._record_unconfirmed(replacement, _error_message(fallback_error)),
                    fallback_used=True,
                    primary_error=message,
                )
            else:
                fallback_message = _error_message(fallback_error)
                get_order_logger(replacement.id).error(
                    f"Fallback submission to {replacement.provider_id} failed: {fallback_message}"
                )
                outcome = SubmissionOutcome(
                    order=self._mark_failed(replacement.id, fallback_message),
                    fallback_used=True,
                    error=fallback_message,
                    primary_error=message,
                )
        finally:
            self.store.release_submission(replacement.id, None)
        return outcome

    def _send(self, order: PrintOrder) -> Optional[BaseException]:
        """One vendor create_order call; returns the failure instead of raising."""
        order_logger = get_order_logger(order.id)
        adapter = self.registry.get(order.provider_id)
        try:
            result: SubmissionResult = adapter.create_order(order)
        except PrintFulfillmentError as e:
            return e
        except Exception as e:
            order_logger.exception(f"Unexpected error submitting to {order.provider_id}")
            return e

        status = result.status
        if status in (OrderStatus.PENDING, OrderStatus.FAILED):
            status = OrderStatus.SUBMITTED
        self.store.record_submission(order.id, result.external_id, status)
        order_logger.info(f"Submitted to {order.provider_id} as {result.external_id}")
        return None

    def _record_unconfirmed(self, order: PrintOrder, message: str) -> SubmissionOutcome:
        """
        The vendor holds the order but its id is unknown. The order stays
        SUBMITTED so it is never sent again; a webhook carrying the merchant
        reference fills in the vendor id.
        """
        note = (
            f"{order.provider_id} accepted the order but its response could not be read ({message}); "
            f"reconcile by merchant reference {order.id}"
        )
        get_order_logger(order.id).error(note)
        submitted = self.store.record_submission(order.id, None, OrderStatus.SUBMITTED, error=note)
        return SubmissionOutcome(order=submitted, submitted=True, error=note)

    def _mark_failed(self, order_id: str, message: str) -> PrintOrder:
        self._apply(order_id, OrderStatus.FAILED, StatusSource.SYSTEM, message)
        return self.store.record_error(order_id, message)

    def _await_in_flight(self, order_id: str) -> SubmissionOutcome:
        outcome = self.store.wait_for_submission(order_id, self.config.submit_timeout_seconds)
        if outcome is not None:
            return replace(outcome, deduplicated=True)

        order = self.store.get(order_id)
        if order.status is OrderStatus.PENDING:
            return SubmissionOutcome(order=order, deduplicated=True, in_progress=True)
        return replace(self._current_outcome(order), deduplicated=True)

    @staticmethod
    def _current_outcome(order: PrintOrder) -> SubmissionOutcome:
        return SubmissionOutcome(
            order=order,
            submitted=order.submitted_at is not None,
            error=order.error,
        )

    def _check_preflight(self, order: PrintOrder, override: bool) -> None:
        if not order.rendition_id or self.renditions is None:
            return
        rendition = self.renditions.find_rendition(order.rendition_id)
        result = rendition.preflight if rendition is not None else None
        if (
            rendition is not None
            and rendition.status is RenditionStatus.COMPLETED
            and (result is None or result.passed)
        ):
            return

        if override:
            state = rendition.status.value if rendition is not None else "unknown"
            get_order_logger(order.id).warning(
                f"Submitting against rendition {order.rendition_id} ({state}), override set"
            )
            return
        if result is not None and not result.passed:
            raise InvalidSpec(
                "Preflight failed; fix the files or override",
                {
                    "rendition_id": rendition.id,
                    "errors": [e.to_dict() for e in result.errors],
                },
            )
        # Raises for unknown, processing, failed, exhausted and cancelled renditions
        self.renditions.require_ready(order.rendition_id)

    # ------------------------------------------------------------------
    # Cancel / status
    # ------------------------------------------------------------------

    def cancel_order(self, order_id: str) -> CancelResult:
        """
        Cooperative cancel: ask the vendor, record cancellation on success.

        Pending orders are cancelled locally. While a submission is in
        flight the cancel is refused (success=False) rather than racing it.

        Raises:
            OrderNotFound: Unknown order
        """
        order_logger = get_order_logger(order_id)
        order = self.store.get(order_id)
        if order.status.is_terminal:
            return CancelResult(success=False, message=f"Order is already {order.status.value}")

        if order.status is OrderStatus.PENDING:
            return self._cancel_unsubmitted(order_id)

        if not order.external_id:
            order_logger.warning("Cancel requested before the vendor id is known")
            return CancelResult(
                success=False,
                message=f"Order is at {order.provider_id} but its vendor id is not known yet; try again later",
            )

        adapter = self.registry.get(order.provider_id)
        result = adapter.cancel_order(order.external_id)
        if result.success:
            self._apply(order_id, OrderStatus.CANCELLED, StatusSource.SYSTEM, result.message or "Cancelled at provider")
        else:
            order_logger.warning(f"Cancel refused by {order.provider_id}: {result.message}")
        return result

    def _cancel_unsubmitted(self, order_id: str) -> CancelResult:
        order_logger = get_order_logger(order_id)
        try:
            self.store.claim_submission(order_id)
        except SubmissionConflict:
            order_logger.warning("Cancel refused, submission in progress")
            return CancelResult(success=False, message="Submission in progress; cancel again once it completes")

        try:
            if self.store.get(order_id).status is OrderStatus.PENDING:
                self._apply(order_id, OrderStatus.CANCELLED, StatusSource.SYSTEM, "Cancelled before submission")
                order_logger.info("Cancelled locally (never submitted)")
                return CancelResult(success=True, message="Order cancelled before submission")
        finally:
            self.store.release_submission(order_id, None)

        # Submitted between our read and the claim
        return self.cancel_order(order_id)

    def get_order_status(self, order_id: str) -> OrderStatusView:
        """
        Live status from the vendor, or the last known status with
        live=False when the vendor is slow or unreachable.
        """
        order = self.store.get(order_id)
        if not order.external_id or order.status.is_terminal:
            return OrderStatusView(order.id, order.status, live=False, tracking=order.tracking)

        adapter = self.registry.get(order.provider_id)
        future = self._executor.submit(adapter.get_order_status, order.external_id)
        try:
            result = future.result(timeout=self.config.status_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning(f"Live status for {order.id} at {order.provider_id} timed out")
            return OrderStatusView(order.id, order.status, live=False, tracking=order.tracking,
                                   message="Live status timed out")
        except PrintFulfillmentError as e:
            logger.warning(f"Live status for {order.id} unavailable: {e.message}")
            return OrderStatusView(order.id, order.status, live=False, tracking=order.tracking,
                                   message=e.message)
        except Exception as e:
            logger.exception(f"Unexpected error fetching live status for {order.id} from {order.provider_id}")
            return OrderStatusView(order.id, order.status, live=False, tracking=order.tracking,
                                   message=_error_message(e))

        if self.reconciler is None:
            return OrderStatusView(order.id, result.status, live=True, tracking=result.tracking,
                                   message=result.message)

        self.reconciler.apply(
            order.id,
            result.status,
            StatusSource.POLLING,
            tracking=result.tracking,
            message=result.message,
        )
        current = self.store.get(order.id)
        return OrderStatusView(current.id, current.status, live=True, tracking=current.tracking,
                               message=result.message)

    def preflight(self, spec: PrintSpec) -> Dict[str, PreflightResult]:
        """Vendor preflight from every provider that supports the spec."""
        return {adapter.provider_id: adapter.preflight(spec) for adapter in self.registry.supporting(spec)}

    def _apply(self, order_id: str, status: OrderStatus, source: StatusSource, message: str) -> None:
        if self.reconciler is not None:
            self.reconciler.apply(order_id, status, source, message=message)
        else:
            self.store.apply_status_update(order_id, status, source, message=message)
