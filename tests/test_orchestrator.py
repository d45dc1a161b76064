"""
Unit tests for FulfillmentOrchestrator: quote aggregation, submission
idempotency, fallback, cancellation and live status.
"""

import threading
import time
from dataclasses import replace
from unittest.mock import MagicMock

import pytest

from config import FulfillmentConfig
from core.exceptions import (
    InvalidSpec,
    JobExhausted,
    OrderNotFound,
    ParseError,
    ProviderUnavailable,
    QuoteExpired,
    VendorRejected,
)
from models.order import OrderStatus
from models.preflight import PreflightIssue, PreflightResult, Severity
from models.print_spec import BindingType
from models.rendition import JobType, Rendition, RenditionStatus
from models.shipping import ShippingMethod, TrackingInfo
from providers.base import StatusResult
from providers.registry import AdapterRegistry
from services.fallback import FallbackDecision, decide_fallback
from services.orchestrator import FulfillmentOrchestrator
from services.rendition_service import RenditionPipeline

from conftest import T0, FakeAdapter, FakeRenderer, MemoryStorage, expired_quote


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# Fixtures

@pytest.fixture
def pending_order(orchestrator, alpha, quote_request):
    """A pending alpha order."""
    return orchestrator.create_order(alpha.get_quote(quote_request), quote_request, user_id="u-1")


@pytest.fixture
def failed_preflight_rendition():
    """A completed rendition whose preflight failed."""
    error = PreflightIssue(code="WIRE_CAPACITY_EXCEEDED", message="too thick", severity=Severity.HIGH)
    return Rendition(
        book_id="book-1",
        status=RenditionStatus.FAILED,
        interior_pdf_url="memory://i.pdf",
        cover_pdf_url="memory://c.pdf",
        preflight=PreflightResult.from_issues([error]),
    )


@pytest.fixture
def failed_pipeline(orchestrator):
    """Pipeline whose interior render always fails, wired into the orchestrator."""
    pipeline = RenditionPipeline(
        FakeRenderer(fail_types=[JobType.INTERIOR]),
        MemoryStorage(),
        config=FulfillmentConfig(job_max_attempts=1),
        clock=lambda: T0,
    )
    orchestrator.renditions = pipeline
    yield pipeline
    pipeline.stop()


# Tests for quotes

class TestQuotes:
    """Tests for get_all_quotes and get_best_quote."""

    def test_sorted_by_total_plus_shipping(self, orchestrator, quote_request):
        """Cheapest (total + shipping) first."""
        response = orchestrator.get_all_quotes(quote_request)
        assert [q.provider_id for q in response.quotes] == ["alpha", "beta"]
        assert response.unavailable == {}

    def test_failing_and_unsupported_providers_reported(self, store, config, quote_request):
        """One healthy adapter gives exactly one quote; the others explain why."""
        healthy = FakeAdapter("healthy")
        broken = FakeAdapter("broken")
        broken.quote_error = ProviderUnavailable("broken", "HTTP 503")
        picky = FakeAdapter("picky", bindings={BindingType.SPIRAL})
        registry = AdapterRegistry()
        for adapter in (healthy, broken, picky):
            registry.register(adapter)
        orchestrator = FulfillmentOrchestrator(registry, store, config=config)

        response = orchestrator.get_all_quotes(quote_request)

        assert [q.provider_id for q in response.quotes] == ["healthy"]
        assert "HTTP 503" in response.unavailable["broken"]
        assert "picky" in response.unavailable
        orchestrator.close()

    def test_slow_provider_times_out(self, store, quote_request):
        """A provider slower than the quote timeout is reported as timed out."""
        slow = FakeAdapter("slow")
        gate = threading.Event()
        original = slow._fetch_quote

        def blocked(request):
            gate.wait(timeout=5)
            return original(request)

        slow._fetch_quote = blocked
        registry = AdapterRegistry()
        registry.register(FakeAdapter("fast"))
        registry.register(slow)
        orchestrator = FulfillmentOrchestrator(
            registry, store, config=FulfillmentConfig(quote_timeout_seconds=0.2)
        )

        response = orchestrator.get_all_quotes(quote_request)
        gate.set()

        assert [q.provider_id for q in response.quotes] == ["fast"]
        assert response.unavailable["slow"] == "timed out"
        orchestrator.close()

    def test_best_quote_by_cost_and_speed(self, orchestrator, quote_request):
        """Cost picks alpha, speed picks beta."""
        assert orchestrator.get_best_quote(quote_request).provider_id == "alpha"
        assert orchestrator.get_best_quote(quote_request, preference="speed").provider_id == "beta"

    def test_preferred_provider_within_tolerance(self, registry, store, quote_request, beta):
        """The preferred provider wins when within the tolerance of the best."""
        beta.total = 21.0
        orchestrator = FulfillmentOrchestrator(
            registry, store, config=FulfillmentConfig(preferred_provider="beta", preferred_provider_tolerance=0.10)
        )
        assert orchestrator.get_best_quote(quote_request).provider_id == "beta"

        beta.total = 30.0
        assert orchestrator.get_best_quote(quote_request).provider_id == "alpha"
        orchestrator.close()

    def test_invalid_preference(self, orchestrator, quote_request):
        """Only cost and speed are accepted."""
        with pytest.raises(InvalidSpec):
            orchestrator.get_best_quote(quote_request, preference="vibes")

    def test_rendition_must_be_ready(self, orchestrator, quote_request):
        """Quoting against a rendition checks its readiness first."""
        orchestrator.renditions = MagicMock()
        orchestrator.renditions.require_ready.side_effect = InvalidSpec("not ready")

        with pytest.raises(InvalidSpec):
            orchestrator.get_all_quotes(replace(quote_request, rendition_id="r-1"))
        orchestrator.renditions.require_ready.assert_called_once_with("r-1")


# Tests for order creation and submission

class TestSubmission:
    """Tests for create_order and submit_order."""

    def test_create_order_copies_quote(self, pending_order):
        """Orders start pending with the quoted cost."""
        assert pending_order.status is OrderStatus.PENDING
        assert pending_order.cost.total == 20.0
        assert pending_order.provider_id == "alpha"
        assert pending_order.user_id == "u-1"

    def test_expired_quote_rejected(self, orchestrator, quote_request):
        """Quotes past expires_at cannot create orders."""
        with pytest.raises(QuoteExpired):
            orchestrator.create_order(expired_quote("alpha"), quote_request)

    def test_submit_success(self, orchestrator, pending_order, alpha):
        """A successful submission records the vendor id."""
        outcome = orchestrator.submit_order(pending_order.id)

        assert outcome.submitted
        assert not outcome.fallback_used
        assert outcome.order.external_id == "alpha-1"
        assert outcome.order.status is OrderStatus.SUBMITTED
        assert alpha.create_calls[0].id == pending_order.id

    def test_resubmit_is_noop(self, orchestrator, pending_order, alpha):
        """Submitting an already submitted order does not call the vendor again."""
        orchestrator.submit_order(pending_order.id)
        outcome = orchestrator.submit_order(pending_order.id)

        assert outcome.submitted
        assert len(alpha.create_calls) == 1

    def test_concurrent_duplicates_call_vendor_once(self, orchestrator, pending_order, alpha):
        """Two concurrent submits produce exactly one vendor call."""
        alpha.gate = threading.Event()
        outcomes = []

        def submit():
            outcomes.append(orchestrator.submit_order(pending_order.id))

        first = threading.Thread(target=submit)
        first.start()
        assert wait_until(lambda: len(alpha.create_calls) == 1)

        second = threading.Thread(target=submit)
        second.start()
        time.sleep(0.1)
        alpha.gate.set()
        first.join(timeout=5)
        second.join(timeout=5)

        assert len(alpha.create_calls) == 1
        assert len(outcomes) == 2
        assert {o.order.external_id for o in outcomes} == {"alpha-1"}
        assert all(o.submitted for o in outcomes)

    def test_fallback_to_secondary(self, orchestrator, pending_order, alpha, beta, store):
        """A failed primary creates a new order on the secondary provider."""
        alpha.submit_error = ProviderUnavailable("alpha", "HTTP 503")

        outcome = orchestrator.submit_order(pending_order.id)

        assert outcome.submitted
        assert outcome.fallback_used
        assert outcome.order.provider_id == "beta"
        assert outcome.order.fallback_of == pending_order.id
        assert outcome.order.id != pending_order.id
        assert "HTTP 503" in outcome.primary_error
        assert store.get(pending_order.id).status is OrderStatus.FAILED
        assert len(beta.create_calls) == 1

    def test_fallback_happens_once(self, orchestrator, pending_order, alpha, beta):
        """When the secondary also fails there is no third attempt."""
        alpha.submit_error = ProviderUnavailable("alpha", "down")
        beta.submit_error = VendorRejected("beta", "Address undeliverable")

        outcome = orchestrator.submit_order(pending_order.id)

        assert not outcome.submitted
        assert outcome.fallback_used
        assert outcome.error == "Address undeliverable"
        assert outcome.order.status is OrderStatus.FAILED
        assert len(alpha.create_calls) == 1
        assert len(beta.create_calls) == 1

    def test_fallback_disabled(self, registry, store, quote_request, alpha, beta):
        """With fallback off the vendor detail is surfaced verbatim."""
        orchestrator = FulfillmentOrchestrator(registry, store, config=FulfillmentConfig(fallback_enabled=False))
        alpha.submit_error = VendorRejected("alpha", "Invalid postcode")
        order = orchestrator.create_order(alpha.get_quote(quote_request), quote_request)

        outcome = orchestrator.submit_order(order.id)

        assert not outcome.submitted
        assert outcome.error == "Invalid postcode"
        assert beta.create_calls == []
        assert store.get(order.id).error == "Invalid postcode"
        orchestrator.close()

    def test_invalid_spec_never_falls_back(self, orchestrator, pending_order, alpha, beta, store):
        """Spec errors propagate and do not try another provider."""
        alpha.submit_error = InvalidSpec("cannot print")

        with pytest.raises(InvalidSpec):
            orchestrator.submit_order(pending_order.id)

        assert beta.create_calls == []
        assert store.get(pending_order.id).status is OrderStatus.FAILED

    def test_preflight_gate(self, orchestrator, pending_order, alpha, failed_preflight_rendition, store, quote_request):
        """A failed preflight blocks submission unless overridden."""
        orchestrator.renditions = MagicMock()
        orchestrator.renditions.find_rendition.return_value = failed_preflight_rendition
        order = orchestrator.create_order(
            alpha.get_quote(quote_request), quote_request, rendition_id=failed_preflight_rendition.id
        )

        with pytest.raises(InvalidSpec) as exc_info:
            orchestrator.submit_order(order.id)
        assert exc_info.value.details["errors"][0]["code"] == "WIRE_CAPACITY_EXCEEDED"
        assert alpha.create_calls == []

        outcome = orchestrator.submit_order(order.id, override_preflight=True)
        assert outcome.submitted

    def test_unreadable_acceptance_never_falls_back(self, orchestrator, pending_order, alpha, beta, store):
        """A 2xx the adapter cannot read means the vendor holds the order; no second provider is asked."""
        alpha.submit_error = ParseError("alpha", "order response has no id")

        outcome = orchestrator.submit_order(pending_order.id)

        assert outcome.submitted
        assert not outcome.fallback_used
        assert "merchant reference" in outcome.error
        assert beta.create_calls == []
        stored = store.get(pending_order.id)
        assert stored.status is OrderStatus.SUBMITTED
        assert stored.external_id is None

        orchestrator.submit_order(pending_order.id)
        assert len(alpha.create_calls) == 1

    def test_unreadable_acceptance_reconciled_by_webhook(self, orchestrator, pending_order, alpha, reconciler, store):
        """A webhook carrying our id as merchant reference fills in the vendor id."""
        alpha.submit_error = ParseError("alpha", "order response has no id")
        orchestrator.submit_order(pending_order.id)

        refused = orchestrator.cancel_order(pending_order.id)
        assert not refused.success
        assert alpha.cancel_calls == []

        reconciler.handle_webhook(
            "alpha",
            {"id": "alpha-late", "status": "accepted", "reference": pending_order.id},
        )

        stored = store.get(pending_order.id)
        assert stored.external_id == "alpha-late"
        assert stored.status is OrderStatus.ACCEPTED
        assert stored.error is None

    def test_ineligible_shipping_rejected(self, orchestrator, alpha, quote_request):
        """Orders cannot use a shipping method the provider does not offer to the destination."""
        alpha.domestic_shipping_methods = frozenset({ShippingMethod.STANDARD})
        quote = alpha.get_quote(quote_request)

        with pytest.raises(InvalidSpec) as exc_info:
            orchestrator.create_order(quote, replace(quote_request, shipping_method=ShippingMethod.PRIORITY))

        assert exc_info.value.details["available"] == ["standard"]

    def test_unknown_order(self, orchestrator):
        """Submitting an unknown id raises OrderNotFound."""
        with pytest.raises(OrderNotFound):
            orchestrator.submit_order("missing")


class TestRenditionGate:
    """Orders against a rendition need it completed with a passing preflight."""

    def test_exhausted_rendition_blocks_order(self, orchestrator, failed_pipeline, alpha, quote_request):
        """An exhausted rendition blocks quoting and order creation."""
        rendition = failed_pipeline.create_rendition("book-1")
        failed_pipeline.tick(T0)
        request = replace(quote_request, rendition_id=rendition.id)

        with pytest.raises(JobExhausted):
            orchestrator.get_provider_quote("alpha", request)
        with pytest.raises(JobExhausted):
            orchestrator.create_order(alpha.get_quote(quote_request), request)
        assert alpha.create_calls == []

    def test_failed_rendition_blocks_submission(self, orchestrator, failed_pipeline, alpha, quote_request):
        """Without preflight results a failed rendition still blocks submission."""
        rendition = failed_pipeline.create_rendition("book-1")
        failed_pipeline.tick(T0)
        assert failed_pipeline.get_rendition(rendition.id).preflight is None
        order = orchestrator.create_order(
            alpha.get_quote(quote_request),
            quote_request,
            rendition_id=rendition.id,
            override_preflight=True,
        )

        with pytest.raises(JobExhausted):
            orchestrator.submit_order(order.id)
        assert alpha.create_calls == []

        outcome = orchestrator.submit_order(order.id, override_preflight=True)
        assert outcome.submitted
        assert len(alpha.create_calls) == 1

    def test_processing_rendition_blocks_order(self, orchestrator, failed_pipeline, alpha, quote_request):
        """A rendition still rendering cannot be ordered."""
        rendition = failed_pipeline.create_rendition("book-1")

        with pytest.raises(InvalidSpec):
            orchestrator.create_order(alpha.get_quote(quote_request), quote_request, rendition_id=rendition.id)

    def test_cancelled_rendition_blocks_submission(self, orchestrator, failed_pipeline, alpha, quote_request):
        """A rendition cancelled after the order was created blocks its submission."""
        rendition = failed_pipeline.create_rendition("book-1")
        order = orchestrator.create_order(
            alpha.get_quote(quote_request),
            quote_request,
            rendition_id=rendition.id,
            override_preflight=True,
        )
        failed_pipeline.cancel_rendition(rendition.id)

        with pytest.raises(InvalidSpec):
            orchestrator.submit_order(order.id)
        assert alpha.create_calls == []

    def test_unknown_rendition_blocks_submission(self, orchestrator, failed_pipeline, alpha, quote_request):
        """Orders naming a rendition the pipeline never saw are not sent."""
        order = orchestrator.create_order(
            alpha.get_quote(quote_request),
            quote_request,
            rendition_id="missing",
            override_preflight=True,
        )

        with pytest.raises(InvalidSpec):
            orchestrator.submit_order(order.id)
        assert alpha.create_calls == []


class TestFallbackTable:
    """Tests for decide_fallback."""

    @pytest.mark.parametrize("error, enabled, is_fallback, candidate, expected", [
        (None, True, False, True, FallbackDecision.NONE),
        (InvalidSpec("x"), True, False, True, FallbackDecision.NONE),
        (ParseError("p", "x"), True, False, True, FallbackDecision.NONE),
        (ProviderUnavailable("p", "x"), False, False, True, FallbackDecision.NONE),
        (ProviderUnavailable("p", "x"), True, True, True, FallbackDecision.NONE),
        (ProviderUnavailable("p", "x"), True, False, False, FallbackDecision.NONE),
        (VendorRejected("p", "x"), True, False, True, FallbackDecision.RETRY_ON_SECONDARY),
        (RuntimeError("x"), True, False, True, FallbackDecision.RETRY_ON_SECONDARY),
    ])
    def test_decisions(self, error, enabled, is_fallback, candidate, expected):
        """Every row of the table."""
        assert decide_fallback(error, enabled, is_fallback, candidate) is expected


# Tests for cancel and status

class TestCancelAndStatus:
    """Tests for cancel_order and get_order_status."""

    def test_cancel_before_submission(self, orchestrator, pending_order, alpha):
        """Pending orders are cancelled locally."""
        result = orchestrator.cancel_order(pending_order.id)

        assert result.success
        assert alpha.cancel_calls == []
        assert orchestrator.store.get(pending_order.id).status is OrderStatus.CANCELLED

    def test_cancel_at_vendor(self, orchestrator, submitted_order, alpha, notifier):
        """Submitted orders are cancelled at the vendor and the user is told."""
        result = orchestrator.cancel_order(submitted_order.id)

        assert result.success
        assert alpha.cancel_calls == ["alpha-1"]
        assert orchestrator.store.get(submitted_order.id).status is OrderStatus.CANCELLED
        notifier.order_status_changed.assert_called_once()

    def test_cancel_refused(self, orchestrator, submitted_order, alpha):
        """A vendor refusal leaves the status alone."""
        alpha.cancel_error = VendorRejected("alpha", "Already in production")

        result = orchestrator.cancel_order(submitted_order.id)

        assert not result.success
        assert orchestrator.store.get(submitted_order.id).status is OrderStatus.SUBMITTED

    def test_cancel_terminal(self, orchestrator, pending_order):
        """Cancelled orders cannot be cancelled again."""
        orchestrator.cancel_order(pending_order.id)
        assert not orchestrator.cancel_order(pending_order.id).success

    def test_cancel_during_submission_is_refused(self, orchestrator, pending_order, alpha):
        """A cancel cannot slip in while the vendor call is in flight."""
        alpha.gate = threading.Event()
        worker = threading.Thread(target=orchestrator.submit_order, args=(pending_order.id,))
        worker.start()
        assert wait_until(lambda: len(alpha.create_calls) == 1)

        result = orchestrator.cancel_order(pending_order.id)

        assert not result.success
        assert "in progress" in result.message
        alpha.gate.set()
        worker.join(timeout=5)

        stored = orchestrator.store.get(pending_order.id)
        assert stored.status is OrderStatus.SUBMITTED
        assert stored.external_id == "alpha-1"

        assert orchestrator.cancel_order(pending_order.id).success
        assert alpha.cancel_calls == ["alpha-1"]

    def test_unexpected_status_error_returns_last_known(self, orchestrator, submitted_order, alpha):
        """A crash inside the adapter degrades to the stored status."""
        alpha.status_error = AttributeError("'str' object has no attribute 'get'")

        view = orchestrator.get_order_status(submitted_order.id)

        assert not view.live
        assert view.status is OrderStatus.SUBMITTED
        assert view.message

    def test_live_status_is_applied(self, orchestrator, submitted_order, alpha):
        """Live vendor status is written through the reconciler."""
        alpha.status_result = StatusResult(
            status=OrderStatus.IN_TRANSIT,
            tracking=TrackingInfo(tracking_number="TRK1", carrier="UPS"),
        )

        view = orchestrator.get_order_status(submitted_order.id)

        assert view.live
        assert view.status is OrderStatus.IN_TRANSIT
        assert view.tracking.tracking_number == "TRK1"
        assert len(orchestrator.store.shipments(submitted_order.id)) == 1

    def test_unreachable_vendor_returns_last_known(self, orchestrator, submitted_order, alpha):
        """Vendor errors fall back to the stored status with live=False."""
        alpha.status_error = ProviderUnavailable("alpha", "HTTP 502")

        view = orchestrator.get_order_status(submitted_order.id)

        assert not view.live
        assert view.status is OrderStatus.SUBMITTED
        assert "HTTP 502" in view.message

    def test_vendor_preflight(self, orchestrator, spec):
        """Every supporting provider reports its own preflight."""
        results = orchestrator.preflight(spec)
        assert set(results) == {"alpha", "beta"}
        assert all(r.passed for r in results.values())
