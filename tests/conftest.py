"""
Shared fixtures for the print fulfillment test suite.

FakeAdapter stands in for a vendor: it quotes from fixed numbers, records
every create_order call and can be told to fail or to block on an event.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional
from unittest.mock import MagicMock

import pytest

from config import FulfillmentConfig, ProviderCredentials
from core.exceptions import ParseError
from models.order import OrderStatus, PrintOrder
from models.print_spec import BindingType, PrintSpec, TrimSize
from models.quote import CostBreakdown, Quote, QuoteRequest
from models.shipping import ShippingAddress, ShippingMethod, TrackingInfo
from providers.base import ProviderAdapter, StatusResult, SubmissionResult, WebhookEvent
from providers.registry import AdapterRegistry
from services.collaborators import Renderer, RenderOutput, Storage
from services.order_store import OrderStore
from services.orchestrator import FulfillmentOrchestrator
from services.reconciliation import StatusReconciler


T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeAdapter(ProviderAdapter):
    """In-memory provider with scriptable failures."""

    def __init__(
        self,
        provider_id: str,
        total: float = 20.0,
        shipping: float = 5.0,
        production_days: int = 4,
        shipping_days: int = 5,
        bindings=frozenset(),
    ):
        self.provider_id = provider_id
        self.provider_name = provider_id.title()
        self.supported_bindings = frozenset(bindings)
        super().__init__()
        self.total = total
        self.shipping = shipping
        self.production_days = production_days
        self.shipping_days = shipping_days

        self.create_calls: List[PrintOrder] = []
        self.cancel_calls: List[str] = []
        self.submit_error: Optional[Exception] = None
        self.quote_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None
        self.cancel_error: Optional[Exception] = None
        self.status_result = StatusResult(status=OrderStatus.IN_PRODUCTION)
        self.gate: Optional[threading.Event] = None

    def _fetch_quote(self, request: QuoteRequest) -> Quote:
        if self.quote_error is not None:
            raise self.quote_error
        return Quote(
            provider_id=self.provider_id,
            provider_name=self.provider_name,
            cost=CostBreakdown.build(self.total - self.shipping, self.shipping),
            estimated_production_days=self.production_days,
            estimated_shipping_days=self.shipping_days,
        )

    def create_order(self, order: PrintOrder) -> SubmissionResult:
        self.create_calls.append(order)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.submit_error is not None:
            raise self.submit_error
        return SubmissionResult(external_id=f"{self.provider_id}-{len(self.create_calls)}")

    def get_order_status(self, external_id: str) -> StatusResult:
        if self.status_error is not None:
            raise self.status_error
        return self.status_result

    def _cancel(self, external_id: str) -> None:
        self.cancel_calls.append(external_id)
        if self.cancel_error is not None:
            raise self.cancel_error

    def handle_webhook(self, payload: Any) -> WebhookEvent:
        if not isinstance(payload, dict) or "id" not in payload or "status" not in payload:
            raise ParseError(self.provider_id, "expected {id, status}")
        tracking = None
        if payload.get("tracking"):
            tracking = TrackingInfo(tracking_number=payload["tracking"], carrier="UPS")
        return WebhookEvent(
            external_id=payload["id"],
            status=OrderStatus.parse(payload["status"]),
            tracking=tracking,
            event=payload.get("event", "order.updated"),
            merchant_reference=payload.get("reference"),
        )


class FakeRenderer(Renderer):
    """Renders a tiny fake PDF; job types in fail_types raise."""

    def __init__(self, page_count: int = 100, fail_types=()):
        self.page_count = page_count
        self.fail_types = set(fail_types)
        self.calls = []

    def render(self, book_id, version, job_type):
        self.calls.append(job_type)
        if job_type in self.fail_types:
            raise RuntimeError(f"{job_type.value} renderer crashed")
        return RenderOutput(pdf_bytes=b"%PDF-1.4 fake", page_count=self.page_count)


class MemoryStorage(Storage):
    def __init__(self):
        self.files = {}

    def store(self, data, path):
        self.files[path] = data
        return f"memory://{path}"


# Fixtures

@pytest.fixture
def spec():
    """A 6x9 perfect bound book with both PDFs."""
    return PrintSpec(
        trim_size=TrimSize(6, 9),
        page_count=100,
        binding=BindingType.PERFECT_BOUND,
        interior_pdf_url="https://files.example.com/interior.pdf",
        cover_pdf_url="https://files.example.com/cover.pdf",
        title="Field Notes",
    )


@pytest.fixture
def address():
    """A US shipping address."""
    return ShippingAddress(
        name="Ada Reader",
        street1="1 Main St",
        city="Springfield",
        postal_code="12345",
        country="us",
        state="IL",
        email="ada@example.com",
    )


@pytest.fixture
def quote_request(spec, address):
    """Two copies, standard shipping."""
    return QuoteRequest(
        spec=spec,
        quantity=2,
        shipping_address=address,
        shipping_method=ShippingMethod.STANDARD,
    )


@pytest.fixture
def request_json():
    """Quote request body as a client would post it."""
    return {
        "spec": {
            "trim_size": "6x9",
            "page_count": 100,
            "binding": "perfect_bound",
            "interior_pdf_url": "https://files.example.com/interior.pdf",
            "cover_pdf_url": "https://files.example.com/cover.pdf",
            "title": "<b>Field</b> Notes",
        },
        "quantity": 2,
        "shipping_address": {
            "name": "Ada Reader",
            "street1": "1 Main St",
            "city": "Springfield",
            "postal_code": "12345",
            "country": "US",
        },
        "shipping_method": "standard",
    }


@pytest.fixture
def alpha():
    """Cheaper provider."""
    return FakeAdapter("alpha", total=20.0, shipping=5.0, production_days=5, shipping_days=6)


@pytest.fixture
def beta():
    """Pricier but faster provider."""
    return FakeAdapter("beta", total=30.0, shipping=6.0, production_days=2, shipping_days=2)


@pytest.fixture
def registry(alpha, beta):
    """Registry holding alpha then beta."""
    registry = AdapterRegistry()
    registry.register(alpha)
    registry.register(beta)
    return registry


@pytest.fixture
def config():
    """Short timeouts so a misbehaving test fails fast."""
    return FulfillmentConfig(
        providers={"alpha": ProviderCredentials(api_key="key", webhook_secret="whsec-alpha")},
        quote_timeout_seconds=5.0,
        submit_timeout_seconds=5.0,
        status_timeout_seconds=2.0,
        cron_secret="cron-token",
    )


@pytest.fixture
def store():
    """Empty order store."""
    return OrderStore()


@pytest.fixture
def notifier():
    """Mock notifier."""
    return MagicMock()


@pytest.fixture
def reconciler(store, registry, notifier):
    """Reconciler wired to the shared store and registry."""
    return StatusReconciler(store, registry, notifier)


@pytest.fixture
def orchestrator(registry, store, config, reconciler):
    """Orchestrator without a rendition pipeline."""
    orchestrator = FulfillmentOrchestrator(registry, store, config=config, reconciler=reconciler)
    yield orchestrator
    orchestrator.close()


@pytest.fixture
def submitted_order(orchestrator, alpha, quote_request):
    """An order already submitted to alpha."""
    quote = alpha.get_quote(quote_request)
    order = orchestrator.create_order(quote, quote_request)
    return orchestrator.submit_order(order.id).order


def expired_quote(provider_id: str) -> Quote:
    return Quote(
        provider_id=provider_id,
        provider_name=provider_id.title(),
        cost=CostBreakdown.build(10.0, 5.0),
        expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
    )
