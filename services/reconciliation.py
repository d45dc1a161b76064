"""
Status reconciliation: webhooks and polling converge on one update path.

StatusReconciler.apply() is the only way an order's status changes after
submission. It relies on OrderStore.apply_status_update(), which checks the
forward-only state machine and writes under the store lock, so a late
webhook can never undo a newer polled status (or vice versa).

StatusPoller is a background thread that sweeps quiet orders:

    Every poll_interval_seconds:
        orders = non-terminal, has external id,
                 no update for poll_stale_minutes,
                 created less than poll_max_age_hours ago
        oldest update first, at most poll_batch_size
        for each: live status (bounded by status_timeout_seconds) -> apply()

Per-order failures are counted and logged; they never abort a sweep.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from config import FulfillmentConfig
from core.exceptions import OrderNotFound, PrintFulfillmentError
from logging_config import get_logger, get_order_logger, set_thread_name
from models.order import OrderStatus, StatusSource
from models.print_spec import utc_now
from models.shipping import TrackingInfo
from providers.registry import AdapterRegistry
from services.collaborators import Notifier
from services.order_store import OrderStore


logger = get_logger(__name__)

NOTIFY_STATUSES = frozenset({
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
})


@dataclass(frozen=True)
class WebhookOutcome:
    applied: bool
    order_id: str
    status: OrderStatus

    def to_dict(self) -> Dict[str, Any]:
        return {"applied": self.applied, "order_id": self.order_id, "status": self.status.value}


@dataclass(frozen=True)
class PollSummary:
    checked: int = 0
    updated: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"checked": self.checked, "updated": self.updated, "errors": self.errors}


class StatusReconciler:
    """Applies vendor status information to canonical orders."""

    def __init__(
        self,
        store: OrderStore,
        registry: AdapterRegistry,
        notifier: Optional[Notifier] = None
    ):
        self._store = store
        self._registry = registry
        self._notifier = notifier

    def apply(
        self,
        order_id: str,
        status: OrderStatus,
        source: StatusSource,
        tracking: Optional[TrackingInfo] = None,
        message: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Apply a status update through the forward-only state machine.

        Returns:
            True if the order changed, False for stale or duplicate updates
        """
        order_logger = get_order_logger(order_id)
        applied = self._store.apply_status_update(
            order_id,
            status,
            source,
            tracking=tracking,
            message=message or "",
            payload=payload,
        )
        if applied is None:
            order_logger.debug(f"Ignored {source.value} update to {status.value} (stale or duplicate)")
            return False

        if applied.status_changed:
            order_logger.info(
                f"Status {applied.update.previous_status.value} -> {status.value} via {source.value}"
            )
            if status in NOTIFY_STATUSES and self._notifier is not None:
                self._notify(applied.order, status)
        if applied.new_shipment is not None:
            order_logger.info(
                f"New shipment {applied.new_shipment.tracking_number} ({applied.new_shipment.carrier})"
            )
        return True

    def _notify(self, order, status: OrderStatus) -> None:
        try:
            self._notifier.order_status_changed(order, status)
        except Exception:
            # Notification is best effort; the status write already happened
            logger.exception(f"Notifier failed for order {order.id} ({status.value})")

    def handle_webhook(self, provider_id: str, payload: Any) -> WebhookOutcome:
        """
        Parse a vendor webhook and apply it.

        Raises:
            InvalidSpec: Unknown provider
            ParseError: Unrecognized payload shape
            OrderNotFound: No order matches the external id or merchant reference
        """
        adapter = self._registry.get(provider_id)
        event = adapter.handle_webhook(payload)

        order = self._store.find_by_external_id(event.external_id, provider_id)
        if order is None and event.merchant_reference:
            try:
                candidate = self._store.get(event.merchant_reference)
            except OrderNotFound:
                candidate = None
            if candidate is not None and candidate.provider_id == provider_id:
                order = candidate
        if order is None:
            raise OrderNotFound(event.external_id)
        if not order.external_id:
            self._store.attach_external_id(order.id, event.external_id)

        applied = self.apply(
            order.id,
            event.status,
            StatusSource.WEBHOOK,
            tracking=event.tracking,
            message=event.event,
            payload=payload if isinstance(payload, dict) else None,
        )
        current = self._store.get(order.id)
        logger.info(
            f"Webhook {provider_id}/{event.event} for order {order.id}: "
            f"{'applied' if applied else 'ignored'} ({current.status.value})"
        )
        return WebhookOutcome(applied=applied, order_id=order.id, status=current.status)


class StatusPoller:
    """
    Background poller for orders whose webhooks went missing.

    Attributes:
        interval_seconds: Time between sweeps
        is_running: Whether the background thread is active
    """

    def __init__(
        self,
        store: OrderStore,
        registry: AdapterRegistry,
        reconciler: StatusReconciler,
        config: Optional[FulfillmentConfig] = None
    ):
        self._store = store
        self._registry = registry
        self._reconciler = reconciler
        self._config = config or FulfillmentConfig()

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._is_running = False
        self._sweep_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="PollStatus")

        self._consecutive_failures = 0
        self._last_summary: Optional[PollSummary] = None

        logger.info(
            f"StatusPoller initialized (interval: {self._config.poll_interval_seconds}s, "
            f"stale: {self._config.poll_stale_minutes}m, max age: {self._config.poll_max_age_hours}h)"
        )

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def interval_seconds(self) -> float:
        return self._config.poll_interval_seconds

    @property
    def last_summary(self) -> Optional[PollSummary]:
        return self._last_summary

    def start(self) -> None:
        """Start the background thread. Safe to call twice."""
        if self._is_running:
            logger.warning("StatusPoller already running")
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._poll_loop, name="Poller", daemon=True)
        self._is_running = True
        self._thread.start()
        logger.info("Status poller thread started")

    def stop(self) -> None:
        """Stop the background thread and the lookup pool."""
        if self._is_running:
            self._stop_event.set()
            if self._thread and self._thread.is_alive():
                self._thread.join(timeout=5.0)
                if self._thread.is_alive():
                    logger.warning("Poller thread did not stop cleanly")
            self._is_running = False
            self._thread = None
            logger.info("Status poller thread stopped")
        self._executor.shutdown(wait=False)

    def poll_once(self, now: Optional[datetime] = None) -> PollSummary:
        """
        Run one sweep synchronously.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            PollSummary(checked, updated, errors)
        """
        now = now or utc_now()
        orders = self._store.orders_needing_poll(
            now,
            stale_after=timedelta(minutes=self._config.poll_stale_minutes),
            max_age=timedelta(hours=self._config.poll_max_age_hours),
            limit=self._config.poll_batch_size,
        )

        checked = updated = errors = 0
        with self._sweep_lock:
            for order in orders:
                checked += 1
                order_logger = get_order_logger(order.id)
                try:
                    adapter = self._registry.get(order.provider_id)
                    future = self._executor.submit(adapter.get_order_status, order.external_id)
                    result = future.result(timeout=self._config.status_timeout_seconds)
                except FutureTimeoutError:
                    errors += 1
                    order_logger.warning(f"Status lookup at {order.provider_id} timed out")
                    continue
                except PrintFulfillmentError as e:
                    errors += 1
                    order_logger.warning(f"Status lookup at {order.provider_id} failed: {e.message}")
                    continue
                except Exception:
                    errors += 1
                    order_logger.exception(f"Unexpected error polling {order.provider_id}")
                    continue

                if self._reconciler.apply(
                    order.id,
                    result.status,
                    StatusSource.POLLING,
                    tracking=result.tracking,
                    message=result.message,
                ):
                    updated += 1

        summary = PollSummary(checked=checked, updated=updated, errors=errors)
        self._last_summary = summary
        if checked:
            logger.info(f"Poll sweep: {checked} checked, {updated} updated, {errors} errors")
        else:
            logger.debug("Poll sweep: nothing to check")
        return summary

    def _poll_loop(self) -> None:
        set_thread_name("Poller")
        logger.info("Status poll loop starting")

        self._do_poll()
        while not self._stop_event.is_set():
            if self._stop_event.wait(timeout=self._config.poll_interval_seconds):
                break
            self._do_poll()

        logger.info("Status poll loop exiting")

    def _do_poll(self) -> bool:
        try:
            self.poll_once()
        except Exception as e:
            self._consecutive_failures += 1

            # Log with increasing severity based on consecutive failures
            if self._consecutive_failures == 1:
                logger.warning(f"Poll sweep failed: {e}")
            elif self._consecutive_failures <= 3:
                logger.error(f"Poll sweep failed ({self._consecutive_failures} consecutive): {e}")
            elif self._consecutive_failures % 5 == 0:
                logger.error(f"Poll sweep still failing ({self._consecutive_failures} consecutive): {e}")
            return False

        if self._consecutive_failures > 0:
            logger.info(f"Poll sweep recovered after {self._consecutive_failures} failures")
        self._consecutive_failures = 0
        return True
