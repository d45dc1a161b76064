"""
Adapter registry.

Built once at startup and injected into the orchestrator; there is no
module-level singleton. Registration is lock-guarded and closed by
freeze(); lookups after that are read-only.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from config import FulfillmentConfig
from core.exceptions import InvalidSpec
from logging_config import get_logger
from models.print_spec import PrintSpec
from providers.base import ProviderAdapter
from providers.lulu import LuluAdapter
from providers.peecho import PeechoAdapter
from providers.prodigi import ProdigiAdapter


logger = get_logger(__name__)


class AdapterRegistry:
    """Provider adapters keyed by provider id, in registration order."""

    def __init__(self):
        self._adapters: Dict[str, ProviderAdapter] = {}
        self._lock = threading.Lock()
        self._frozen = False

    def register(self, adapter: ProviderAdapter) -> None:
        """
        Raises:
            ValueError: Provider id already registered
            RuntimeError: Registry is frozen
        """
        with self._lock:
            if self._frozen:
                raise RuntimeError("Adapter registry is frozen")
            if adapter.provider_id in self._adapters:
                raise ValueError(f"Provider already registered: {adapter.provider_id}")
            self._adapters[adapter.provider_id] = adapter
        logger.info(f"Registered provider adapter: {adapter.provider_id}")

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, provider_id: str) -> ProviderAdapter:
        """
        Raises:
            InvalidSpec: Unknown provider id
        """
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise InvalidSpec(
                f"Unknown provider: {provider_id}",
                {"registered": list(self._adapters)},
            )
        return adapter

    def all(self) -> List[ProviderAdapter]:
        return list(self._adapters.values())

    def supporting(self, spec: PrintSpec) -> List[ProviderAdapter]:
        return [a for a in self._adapters.values() if a.supports_spec(spec)]

    def fallback_for(self, exclude_id: str, spec: PrintSpec) -> Optional[ProviderAdapter]:
        """First other adapter that can print the spec."""
        for adapter in self._adapters.values():
            if adapter.provider_id != exclude_id and adapter.supports_spec(spec):
                return adapter
        return None

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def build_registry(config: FulfillmentConfig, freeze: bool = True) -> AdapterRegistry:
    """
    Create adapters for every provider with credentials configured.

    Args:
        config: Operator configuration
        freeze: Close the registry to further registration

    Returns:
        AdapterRegistry (possibly empty)
    """
    registry = AdapterRegistry()
    http = {
        "timeout_seconds": config.http_timeout_seconds,
        "max_retries": config.http_max_retries,
    }

    prodigi = config.credentials_for("prodigi")
    if prodigi:
        registry.register(ProdigiAdapter(prodigi.api_key, environment=prodigi.environment, **http))

    lulu = config.credentials_for("lulu")
    if lulu:
        if lulu.api_secret:
            registry.register(LuluAdapter(
                lulu.api_key,
                lulu.api_secret,
                environment=lulu.environment,
                **http,
            ))
        else:
            logger.warning("LULU_API_KEY set without LULU_API_SECRET, Lulu adapter not registered")

    peecho = config.credentials_for("peecho")
    if peecho:
        registry.register(PeechoAdapter(peecho.api_key, environment=peecho.environment, **http))

    if not len(registry):
        logger.warning("No print providers configured, quotes will be empty")

    if freeze:
        registry.freeze()
    return registry
