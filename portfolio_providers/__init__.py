"""
Portfolio Providers Package - Normalized multi-vendor wallet data layer.

Wraps third-party blockchain data APIs behind one adapter contract.

Features:
- Isolated, replaceable vendor adapters (Covalent, Moralis, Alchemy)
- Normalized TokenBalance / Transaction output
- Explicit vendor schemas, validated at the adapter boundary
- Shared rate limiting, retry/backoff and circuit breaking per adapter
- Graceful degradation when credentials are missing

Quick Start:
    from portfolio_providers import create_default_registry

    async def show_balances(address: str):
        registry = create_default_registry()

        for name in registry.available_providers_for_chain(1):
            adapter = registry.get_adapter(name)
            try:
                balances = await adapter.get_token_balances(address, 1)
            except ProviderError as e:
                logger.warning(f"{name} failed: {e}")
                continue
            for token in balances:
                print(f"{token.symbol}: {token.balance} (${token.value:,.2f})")
            break

        await registry.close_all()

Adding New Adapters:
    class NewAdapter(BaseProviderAdapter):
        API_KEY_ENV = "NEW_API_KEY"

        @property
        def name(self) -> str:
            return "new_vendor"

        def metadata(self): ...
        @classmethod
        def default_policy(cls, call_timeout=15.0): ...
        async def _fetch_token_balances(self, address, chain_id): ...
        async def _fetch_transactions(self, address, chain_id, page_size): ...
        async def _fetch_portfolio_value(self, address, chain_id): ...

    registry.register(NewAdapter())
"""

from portfolio_providers.base import BaseProviderAdapter
from portfolio_providers.chains import (
    CHAIN_PRIORITIES,
    FALLBACK_CHAINS,
    ChainDirectory,
    get_chain_directory,
)
from portfolio_providers.exceptions import (
    AggregateProviderError,
    ChainNotSupportedError,
    CircuitOpenError,
    ConfigurationError,
    FetchError,
    NoAvailableProviderError,
    NormalizationError,
    ProviderError,
    RateLimitError,
)
from portfolio_providers.models import (
    Capability,
    ChainConfig,
    ProviderHealth,
    ProviderMetadata,
    ProviderResult,
    ProviderStatus,
    TokenBalance,
    Transaction,
    TransactionType,
)
from portfolio_providers.providers import (
    AlchemyAdapter,
    CovalentAdapter,
    MoralisAdapter,
)
from portfolio_providers.registry import (
    ProviderRegistry,
    create_default_registry,
)
from portfolio_providers.resilience import (
    CircuitBreaker,
    CircuitState,
    ResiliencePolicy,
    RetryPolicy,
    SlidingWindowRateLimiter,
)


__version__ = "1.0.0"

__all__ = [
    # Base
    "BaseProviderAdapter",

    # Models
    "Capability",
    "ChainConfig",
    "ProviderHealth",
    "ProviderMetadata",
    "ProviderResult",
    "ProviderStatus",
    "TokenBalance",
    "Transaction",
    "TransactionType",

    # Exceptions
    "ProviderError",
    "FetchError",
    "RateLimitError",
    "NormalizationError",
    "ChainNotSupportedError",
    "ConfigurationError",
    "CircuitOpenError",
    "NoAvailableProviderError",
    "AggregateProviderError",

    # Resilience
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "CircuitBreaker",
    "CircuitState",
    "ResiliencePolicy",

    # Providers
    "CovalentAdapter",
    "MoralisAdapter",
    "AlchemyAdapter",

    # Registry
    "ProviderRegistry",
    "create_default_registry",

    # Chains
    "ChainDirectory",
    "get_chain_directory",
    "CHAIN_PRIORITIES",
    "FALLBACK_CHAINS",
]
