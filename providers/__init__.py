"""
Print provider adapters.

- ProviderAdapter: base interface every vendor adapter implements
- ProdigiAdapter, LuluAdapter, PeechoAdapter: concrete vendors
- AdapterRegistry / build_registry: the injected set of active adapters
"""

from .base import (
    ProviderAdapter,
    SubmissionResult,
    StatusResult,
    CancelResult,
    WebhookEvent,
)
from .prodigi import ProdigiAdapter
from .lulu import LuluAdapter
from .peecho import PeechoAdapter
from .registry import AdapterRegistry, build_registry

__all__ = [
    "ProviderAdapter",
    "SubmissionResult",
    "StatusResult",
    "CancelResult",
    "WebhookEvent",
    "ProdigiAdapter",
    "LuluAdapter",
    "PeechoAdapter",
    "AdapterRegistry",
    "build_registry",
]
