"""
Unit tests for StatusReconciler and StatusPoller.

Webhooks and polling must converge: duplicates are ignored, statuses never
move backward, and a failing lookup never aborts a sweep.
"""

from datetime import timedelta

import pytest

from config import FulfillmentConfig
from core.exceptions import OrderNotFound, ParseError, ProviderUnavailable
from models.order import OrderStatus, StatusSource
from models.print_spec import utc_now
from providers.base import StatusResult
from services.reconciliation import StatusPoller


# Fixtures

@pytest.fixture
def poller(store, registry, reconciler, config):
    """Poller that is never started; tests call poll_once()."""
    poller = StatusPoller(store, registry, reconciler, config)
    yield poller
    poller.stop()


class TestWebhooks:
    """Tests for StatusReconciler.handle_webhook."""

    def test_webhook_applies_once(self, reconciler, submitted_order, store, notifier):
        """A redelivered webhook is acknowledged but not applied again."""
        payload = {"id": "alpha-1", "status": "in_transit", "tracking": "TRK1", "event": "shipped"}

        first = reconciler.handle_webhook("alpha", payload)
        second = reconciler.handle_webhook("alpha", payload)

        assert first.applied
        assert not second.applied
        assert second.status is OrderStatus.IN_TRANSIT
        assert len(store.shipments(submitted_order.id)) == 1
        notifier.order_status_changed.assert_called_once()
        assert notifier.order_status_changed.call_args.args[1] is OrderStatus.IN_TRANSIT

    def test_late_webhook_does_not_regress(self, reconciler, submitted_order, store):
        """A stale in_production after delivered is ignored."""
        reconciler.apply(submitted_order.id, OrderStatus.DELIVERED, StatusSource.POLLING)

        outcome = reconciler.handle_webhook("alpha", {"id": "alpha-1", "status": "in_production"})

        assert not outcome.applied
        assert store.get(submitted_order.id).status is OrderStatus.DELIVERED

    def test_history_records_source(self, reconciler, submitted_order, store):
        """Webhook updates are tagged with their source and payload."""
        payload = {"id": "alpha-1", "status": "accepted"}
        reconciler.handle_webhook("alpha", payload)

        last = store.history(submitted_order.id)[-1]
        assert last.source is StatusSource.WEBHOOK
        assert last.payload == payload

    def test_lookup_by_merchant_reference(self, reconciler, submitted_order, store):
        """Vendors that echo our id are matched even with an unknown external id."""
        outcome = reconciler.handle_webhook(
            "alpha",
            {"id": "vendor-renamed", "status": "accepted", "reference": submitted_order.id},
        )
        assert outcome.applied
        assert outcome.order_id == submitted_order.id

    def test_merchant_reference_must_match_provider(self, reconciler, submitted_order):
        """An order is only matched for its own provider."""
        with pytest.raises(OrderNotFound):
            reconciler.handle_webhook(
                "beta",
                {"id": "other", "status": "accepted", "reference": submitted_order.id},
            )

    def test_unknown_order(self, reconciler):
        """Webhooks for unknown orders raise OrderNotFound."""
        with pytest.raises(OrderNotFound):
            reconciler.handle_webhook("alpha", {"id": "nope", "status": "accepted"})

    def test_bad_payload(self, reconciler):
        """Unrecognized payloads raise ParseError."""
        with pytest.raises(ParseError):
            reconciler.handle_webhook("alpha", {"unexpected": True})

    def test_notifier_failure_is_contained(self, reconciler, submitted_order, notifier, store):
        """A broken notifier does not undo the status write."""
        notifier.order_status_changed.side_effect = RuntimeError("smtp down")

        assert reconciler.apply(submitted_order.id, OrderStatus.DELIVERED, StatusSource.WEBHOOK)
        assert store.get(submitted_order.id).status is OrderStatus.DELIVERED


class TestStatusPoller:
    """Tests for StatusPoller.poll_once."""

    def test_polls_stale_orders(self, poller, submitted_order, alpha, store):
        """Quiet orders get their live status applied."""
        alpha.status_result = StatusResult(status=OrderStatus.IN_PRODUCTION)

        summary = poller.poll_once(now=utc_now() + timedelta(minutes=31))

        assert summary.to_dict() == {"checked": 1, "updated": 1, "errors": 0}
        assert store.get(submitted_order.id).status is OrderStatus.IN_PRODUCTION
        assert store.history(submitted_order.id)[-1].source is StatusSource.POLLING

    def test_skips_fresh_orders(self, poller, submitted_order):
        """Orders updated within the stale window are left alone."""
        assert poller.poll_once(now=utc_now()).checked == 0

    def test_skips_old_orders(self, poller, submitted_order):
        """Orders older than the max age are left for manual follow-up."""
        assert poller.poll_once(now=utc_now() + timedelta(hours=73)).checked == 0

    def test_unchanged_status_not_counted(self, poller, submitted_order, alpha):
        """A vendor repeating the current status is checked but not updated."""
        alpha.status_result = StatusResult(status=OrderStatus.SUBMITTED)

        summary = poller.poll_once(now=utc_now() + timedelta(hours=1))

        assert summary.checked == 1
        assert summary.updated == 0

    def test_errors_counted_not_raised(self, poller, submitted_order, alpha):
        """Vendor failures are counted per order."""
        alpha.status_error = ProviderUnavailable("alpha", "HTTP 500")

        summary = poller.poll_once(now=utc_now() + timedelta(hours=1))

        assert summary.errors == 1
        assert poller.last_summary == summary

    def test_batch_size(self, store, registry, reconciler, orchestrator, alpha, quote_request):
        """At most poll_batch_size orders are checked per sweep."""
        for _ in range(3):
            order = orchestrator.create_order(alpha.get_quote(quote_request), quote_request)
            orchestrator.submit_order(order.id)
        poller = StatusPoller(store, registry, reconciler, FulfillmentConfig(poll_batch_size=2))

        assert poller.poll_once(now=utc_now() + timedelta(hours=1)).checked == 2
        poller.stop()

    def test_start_stop(self, poller):
        """The background thread starts and stops cleanly."""
        poller.start()
        assert poller.is_running
        poller.stop()
        assert not poller.is_running
