"""
Portfolio Provider Registry - Priority-ordered catalogue of vendor adapters.

Features:
- Adapter registration and discovery
- Availability derived from configured credentials, never from I/O
- Priority-ordered provider lists per chain
- Diagnostic status and health views
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from portfolio_providers.base import BaseProviderAdapter
from portfolio_providers.models import ProviderHealth, ProviderStatus
from portfolio_providers.providers import (
    AlchemyAdapter,
    CovalentAdapter,
    MoralisAdapter,
)


logger = logging.getLogger(__name__)

# Chains shown in diagnostic status views
COMMON_CHAIN_IDS = [1, 137, 56, 43114, 42161, 10, 8453, 250, 25]


class ProviderRegistry:
    """
    Central registry for portfolio data adapters.

    Usage:
        registry = ProviderRegistry()
        registry.register(CovalentAdapter())
        registry.register(MoralisAdapter())

        names = registry.available_providers_for_chain(137)
        adapter = registry.get_adapter(names[0])
    """

    def __init__(self, health_check_timeout: float = 30.0) -> None:
        self._adapters: dict[str, BaseProviderAdapter] = {}
        self._priorities: dict[str, int] = {}
        self._health_check_timeout = health_check_timeout

    def register(
        self,
        adapter: BaseProviderAdapter,
        priority: Optional[int] = None,
    ) -> None:
        """
        Register a provider adapter.

        Args:
            adapter: Adapter instance
            priority: Lower = preferred; defaults to the adapter's metadata priority
        """
        name = adapter.name

        if name in self._adapters:
            logger.warning(f"Provider '{name}' already registered, replacing")

        if priority is None:
            priority = adapter.metadata().priority

        self._adapters[name] = adapter
        self._priorities[name] = priority

        logger.info(
            f"Registered provider '{name}' with priority {priority} "
            f"(available={adapter.is_available()})"
        )

    def unregister(self, name: str) -> Optional[BaseProviderAdapter]:
        """Unregister an adapter."""
        adapter = self._adapters.pop(name, None)
        self._priorities.pop(name, None)
        if adapter is not None:
            logger.info(f"Unregistered provider '{name}'")
        return adapter

    def get_adapter(self, name: str) -> Optional[BaseProviderAdapter]:
        """Get a specific adapter by name."""
        return self._adapters.get(name)

    def list_providers(self) -> list[str]:
        """All registered provider names in priority order."""
        return sorted(self._adapters, key=lambda name: (self._priorities[name], name))

    def available_providers_for_chain(self, chain_id: int) -> list[str]:
        """Configured providers supporting chain_id, preferred first."""
        return [
            name for name in self.list_providers()
            if self._adapters[name].is_available()
            and self._adapters[name].supports_chain(chain_id)
        ]

    def best_provider_for_chain(self, chain_id: int) -> Optional[str]:
        """Most preferred usable provider, or None."""
        providers = self.available_providers_for_chain(chain_id)
        return providers[0] if providers else None

    def has_available_providers(self) -> bool:
        return any(adapter.is_available() for adapter in self._adapters.values())

    def status_snapshot(
        self,
        chain_ids: Optional[list[int]] = None,
    ) -> dict[str, dict[str, Any]]:
        """Availability and supported chains for every registered provider."""
        chain_ids = chain_ids or COMMON_CHAIN_IDS
        snapshot = {}
        for name in self.list_providers():
            adapter = self._adapters[name]
            snapshot[name] = {
                "available": adapter.is_available(),
                "supported_chains": [c for c in chain_ids if adapter.supports_chain(c)],
                "priority": self._priorities[name],
                "status": adapter.get_health().status.value,
                "circuits": (
                    adapter.policy.circuit_breaker.snapshot()
                    if adapter.policy.circuit_breaker is not None else {}
                ),
            }
        return snapshot

    async def health_check_all(self) -> dict[str, ProviderHealth]:
        """Health-check every adapter concurrently."""
        names = self.list_providers()
        results = await asyncio.gather(
            *(
                asyncio.wait_for(
                    self._adapters[name].health_check(),
                    timeout=self._health_check_timeout,
                )
                for name in names
            ),
            return_exceptions=True,
        )

        health = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning(f"[{name}] Health check failed: {result!r}")
                health[name] = ProviderHealth(
                    status=ProviderStatus.UNAVAILABLE,
                    last_check=datetime.utcnow(),
                    last_error=str(result) or result.__class__.__name__,
                )
            else:
                health[name] = result
        return health

    def get_all_health(self) -> dict[str, ProviderHealth]:
        """Get health for all adapters."""
        return {name: adapter.get_health() for name, adapter in self._adapters.items()}

    async def close_all(self) -> None:
        """Close all adapters."""
        for adapter in self._adapters.values():
            try:
                await adapter.close()
            except Exception as e:
                logger.error(f"[{adapter.name}] Error closing adapter: {e}")
        logger.info("Closed all provider adapters")

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, name: str) -> bool:
        return name in self._adapters


# ─────────────────────────────────────────────────────────────
# Default Registry
# ─────────────────────────────────────────────────────────────

def create_default_registry(
    call_timeout_seconds: float = 15.0,
    api_keys: Optional[dict[str, str]] = None,
) -> ProviderRegistry:
    """
    Build a registry with the Covalent, Moralis and Alchemy adapters.

    Each adapter gets its vendor's default ResiliencePolicy, built here
    once. Keys not passed in api_keys are read from the environment.
    """
    api_keys = api_keys or {}
    registry = ProviderRegistry()
    for adapter_cls in (CovalentAdapter, MoralisAdapter, AlchemyAdapter):
        adapter = adapter_cls(
            api_key=api_keys.get(adapter_cls.API_KEY_ENV),
            policy=adapter_cls.default_policy(call_timeout=call_timeout_seconds),
            timeout=call_timeout_seconds,
        )
        registry.register(adapter)

    if not registry.has_available_providers():
        logger.warning("No portfolio provider API keys configured")

    return registry
