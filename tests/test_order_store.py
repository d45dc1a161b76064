"""
Unit tests for OrderStore: atomic status writes, shipments, polling
selection and submission claims.
"""

import threading
from datetime import timedelta

import pytest

from core.exceptions import OrderNotFound, SubmissionConflict
from models.order import OrderStatus, PrintOrder, StatusSource
from models.print_spec import utc_now
from models.shipping import TrackingInfo


# Fixtures

@pytest.fixture
def order(quote_request):
    """A pending order for alpha."""
    return PrintOrder(
        spec=quote_request.spec,
        quantity=quote_request.quantity,
        shipping_address=quote_request.shipping_address,
        provider_id="alpha",
    )


@pytest.fixture
def stored(store, order):
    """The order after submission as ext-1."""
    store.add(order)
    store.record_submission(order.id, "ext-1", OrderStatus.SUBMITTED)
    return store.get(order.id)


class TestOrderStore:
    """Tests for the in-memory order store."""

    def test_add_records_creation(self, store, order):
        """New orders start with one history entry."""
        store.add(order)

        history = store.history(order.id)
        assert len(history) == 1
        assert history[0].previous_status is None
        assert history[0].status is OrderStatus.PENDING

    def test_readers_get_copies(self, store, order):
        """Mutating a returned order does not touch the store."""
        store.add(order)
        copy = store.get(order.id)
        copy.status = OrderStatus.DELIVERED

        assert store.get(order.id).status is OrderStatus.PENDING

    def test_unknown_order(self, store):
        """get() raises OrderNotFound."""
        with pytest.raises(OrderNotFound):
            store.get("missing")

    def test_record_submission(self, stored):
        """Submission sets the external id and time."""
        assert stored.external_id == "ext-1"
        assert stored.submitted_at is not None
        assert stored.status is OrderStatus.SUBMITTED

    def test_submission_without_vendor_id(self, store, order):
        """An unreadable acceptance is recorded as submitted with no vendor id."""
        store.add(order)

        submitted = store.record_submission(order.id, None, OrderStatus.SUBMITTED, error="response unreadable")

        assert submitted.status is OrderStatus.SUBMITTED
        assert submitted.external_id is None
        assert store.history(order.id)[-1].message == "Submitted, vendor id unknown"

    def test_attach_external_id_once(self, store, order):
        """The vendor id is filled in once and clears the error."""
        store.add(order)
        store.record_submission(order.id, None, OrderStatus.SUBMITTED, error="response unreadable")

        attached = store.attach_external_id(order.id, "ext-9")

        assert attached.external_id == "ext-9"
        assert attached.error is None
        assert store.attach_external_id(order.id, "ext-10") is None
        assert store.find_by_external_id("ext-9", "alpha").id == order.id

    def test_forward_update_applies(self, store, stored):
        """A forward status change is written to history."""
        applied = store.apply_status_update(stored.id, OrderStatus.IN_PRODUCTION, StatusSource.WEBHOOK)

        assert applied.status_changed
        assert applied.update.previous_status is OrderStatus.SUBMITTED
        assert store.get(stored.id).status is OrderStatus.IN_PRODUCTION

    def test_stale_update_ignored(self, store, stored):
        """Backward moves return None and leave history alone."""
        store.apply_status_update(stored.id, OrderStatus.IN_TRANSIT, StatusSource.WEBHOOK)
        before = len(store.history(stored.id))

        assert store.apply_status_update(stored.id, OrderStatus.IN_PRODUCTION, StatusSource.POLLING) is None
        assert len(store.history(stored.id)) == before
        assert store.get(stored.id).status is OrderStatus.IN_TRANSIT

    def test_duplicate_tracking_creates_one_shipment(self, store, stored):
        """The same tracking number twice is one shipment."""
        tracking = TrackingInfo(tracking_number="TRK1", carrier="UPS")

        first = store.apply_status_update(stored.id, OrderStatus.IN_TRANSIT, StatusSource.WEBHOOK, tracking=tracking)
        second = store.apply_status_update(stored.id, OrderStatus.IN_TRANSIT, StatusSource.POLLING, tracking=tracking)

        assert first.new_shipment.tracking_number == "TRK1"
        assert second is None
        assert len(store.shipments(stored.id)) == 1
        assert store.get(stored.id).shipped_at is not None

    def test_new_tracking_without_status_change(self, store, stored):
        """A second package is recorded even when status does not move."""
        store.apply_status_update(
            stored.id, OrderStatus.IN_TRANSIT, StatusSource.WEBHOOK, tracking=TrackingInfo("TRK1")
        )
        applied = store.apply_status_update(
            stored.id, OrderStatus.IN_TRANSIT, StatusSource.WEBHOOK, tracking=TrackingInfo("TRK2")
        )

        assert not applied.status_changed
        assert [s.tracking_number for s in store.shipments(stored.id)] == ["TRK1", "TRK2"]

    def test_delivered_sets_timestamps(self, store, stored):
        """Skipping straight to delivered sets shipped_at and delivered_at."""
        store.apply_status_update(stored.id, OrderStatus.DELIVERED, StatusSource.POLLING)
        order = store.get(stored.id)
        assert order.shipped_at is not None
        assert order.delivered_at is not None

    def test_concurrent_updates_write_once(self, store, stored):
        """Racing identical updates change the order exactly once."""
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(store.apply_status_update(stored.id, OrderStatus.ACCEPTED, StatusSource.WEBHOOK))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(1 for r in results if r is not None) == 1

    def test_claims_are_exclusive(self, store, order):
        """A second claim while in flight conflicts until released."""
        store.add(order)
        store.claim_submission(order.id)

        with pytest.raises(SubmissionConflict):
            store.claim_submission(order.id)

        store.release_submission(order.id, "done")
        store.claim_submission(order.id)

    def test_waiters_receive_outcome(self, store, order):
        """wait_for_submission() returns what the first caller released."""
        store.add(order)
        store.claim_submission(order.id)
        threading.Timer(0.05, store.release_submission, args=(order.id, "outcome")).start()

        assert store.wait_for_submission(order.id, timeout=2) == "outcome"

    def test_orders_needing_poll(self, store, stored, order):
        """Quiet, young, submitted orders are selected."""
        now = utc_now()
        stale = timedelta(minutes=30)
        max_age = timedelta(hours=72)

        assert store.orders_needing_poll(now, stale, max_age, 50) == []
        due = store.orders_needing_poll(now + timedelta(minutes=31), stale, max_age, 50)
        assert [o.id for o in due] == [stored.id]
        assert store.orders_needing_poll(now + timedelta(hours=73), stale, max_age, 50) == []

    def test_terminal_and_unsubmitted_orders_not_polled(self, store, stored, quote_request):
        """Delivered orders and orders without an external id are skipped."""
        pending = PrintOrder(
            spec=quote_request.spec,
            quantity=1,
            shipping_address=quote_request.shipping_address,
            provider_id="alpha",
        )
        store.add(pending)
        store.apply_status_update(stored.id, OrderStatus.DELIVERED, StatusSource.WEBHOOK)

        later = utc_now() + timedelta(hours=1)
        assert store.orders_needing_poll(later, timedelta(minutes=30), timedelta(hours=72), 50) == []
