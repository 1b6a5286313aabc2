"""
Shared fixtures and fakes.

FakeAdapter is a real BaseProviderAdapter whose vendor calls are served
from per-chain tables, so the resilience wrapper, health tracking and
registry logic all run for real.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from portfolio_providers.base import BaseProviderAdapter
from portfolio_providers.models import ProviderMetadata, TokenBalance, Transaction
from portfolio_providers.registry import ProviderRegistry
from portfolio_providers.resilience import (
    ResiliencePolicy,
    RetryPolicy,
    SlidingWindowRateLimiter,
)


WALLET = "0x742ccf2e36aebe0ad95a00c7cc1d8cb9abbdbfe4"
BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================
# FACTORIES
# ============================================================

def make_token(
    symbol: str,
    value: float,
    chain_id: int = 1,
    balance: float = 1.0,
    contract_address: Optional[str] = None,
    name: Optional[str] = None,
) -> TokenBalance:
    return TokenBalance(
        symbol=symbol,
        name=name or symbol,
        balance=balance,
        value=value,
        price=value / balance if balance else 0.0,
        chain_id=chain_id,
        contract_address=contract_address,
        source_name="fake",
    )


def make_tx(
    tx_hash: str,
    minutes_ago: int = 0,
    chain_id: int = 1,
    value: float = 0.1,
) -> Transaction:
    return Transaction(
        hash=tx_hash,
        from_address=WALLET,
        to_address="0x0000000000000000000000000000000000000001",
        value=value,
        timestamp=BASE_TIME - timedelta(minutes=minutes_ago),
        chain_id=chain_id,
        source_name="fake",
    )


def fast_policy(call_timeout: float = 5.0) -> ResiliencePolicy:
    """No retries, no breaker, effectively no rate limit."""
    return ResiliencePolicy(
        rate_limiter=SlidingWindowRateLimiter(max_requests=10_000, window_seconds=1.0),
        retry=RetryPolicy(delays=()),
        circuit_breaker=None,
        call_timeout_seconds=call_timeout,
    )


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# ============================================================
# FAKE ADAPTER
# ============================================================

class FakeAdapter(BaseProviderAdapter):
    """
    Table-driven adapter.

    Each table maps chain id to a return value or an exception instance
    to raise. Missing chains return empty data.
    """

    def __init__(
        self,
        name: str = "fake",
        priority: int = 1,
        chains: tuple[int, ...] = (1, 137),
        balances: Optional[dict[int, Any]] = None,
        transactions: Optional[dict[int, Any]] = None,
        portfolio: Optional[dict[int, Any]] = None,
        delays: Optional[dict[int, float]] = None,
        api_key: Optional[str] = "test-key",
        policy: Optional[ResiliencePolicy] = None,
    ) -> None:
        self._name = name
        self._priority = priority
        self._chains = list(chains)
        self.balances = balances or {}
        self.transactions = transactions or {}
        self.portfolio = portfolio or {}
        self.delays = delays or {}
        self.calls: list[tuple[str, int]] = []
        super().__init__(api_key=api_key or "", policy=policy or fast_policy())

    @property
    def name(self) -> str:
        return self._name

    def metadata(self) -> ProviderMetadata:
        return ProviderMetadata(
            name=self._name,
            display_name=self._name.title(),
            supported_chains=self._chains,
            priority=self._priority,
        )

    @classmethod
    def default_policy(cls, call_timeout: float = 15.0) -> ResiliencePolicy:
        return fast_policy(call_timeout)

    async def _serve(self, kind: str, table: dict[int, Any], chain_id: int, default: Any) -> Any:
        self.calls.append((kind, chain_id))
        delay = self.delays.get(chain_id)
        if delay:
            await asyncio.sleep(delay)
        value = table.get(chain_id, default)
        if isinstance(value, Exception):
            raise value
        return value

    async def _fetch_token_balances(self, address, chain_id):
        return await self._serve("balances", self.balances, chain_id, [])

    async def _fetch_transactions(self, address, chain_id, page_size):
        txs = await self._serve("transactions", self.transactions, chain_id, [])
        return txs[:page_size]

    async def _fetch_portfolio_value(self, address, chain_id):
        return await self._serve("portfolio", self.portfolio, chain_id, 0.0)


def make_registry(*adapters: BaseProviderAdapter) -> ProviderRegistry:
    registry = ProviderRegistry(health_check_timeout=2.0)
    for adapter in adapters:
        registry.register(adapter)
    return registry


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def fake_clock():
    """Manual clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def no_vendor_keys(monkeypatch):
    """Environment without any vendor credentials."""
    for key in ("COVALENT_API_KEY", "MORALIS_API_KEY", "ALCHEMY_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(key, raising=False)
