"""
Multi-Provider Aggregator - Provider fallback per chain, merge across chains.

Within one chain, providers are tried strictly one after another in
priority order and the first success wins. Across chains, fetches run
concurrently (bounded by a semaphore) and a failing chain never aborts
the others.
"""

import asyncio
import logging
import math
from dataclasses import replace
from typing import Any, Iterable, Optional

from portfolio_providers.base import BaseProviderAdapter
from portfolio_providers.exceptions import (
    AggregateProviderError,
    NoAvailableProviderError,
    ProviderError,
)
from portfolio_providers.models import (
    Capability,
    ProviderResult,
    TokenBalance,
    Transaction,
)
from portfolio_providers.registry import ProviderRegistry
from wallet_analysis.models import MultiChainResult


logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────
# Pure merge helpers
# ─────────────────────────────────────────────────────────────

def merge_token_balances(balances: Iterable[TokenBalance]) -> list[TokenBalance]:
    """
    Deduplicate by (contract address or symbol, chain id).

    Exact duplicates have balance and value summed; the first entry's
    metadata is kept. Result is sorted by value descending. Applying the
    merge to its own output returns the same list.
    """
    merged: dict[tuple[str, int], TokenBalance] = {}
    for token in balances:
        key = token.identity_key
        existing = merged.get(key)
        if existing is None:
            merged[key] = token
        else:
            merged[key] = replace(
                existing,
                balance=existing.balance + token.balance,
                value=existing.value + token.value,
            )

    return sorted(
        merged.values(),
        key=lambda t: (-t.value, t.chain_id, t.symbol, t.contract_address or ""),
    )


def merge_transactions(
    transactions: Iterable[Transaction],
    limit: int,
) -> list[Transaction]:
    """Deduplicate by hash, newest first, truncated to limit."""
    unique: dict[str, Transaction] = {}
    for tx in transactions:
        unique.setdefault(tx.hash, tx)

    ordered = sorted(unique.values(), key=lambda tx: (tx.timestamp, tx.hash), reverse=True)
    return ordered[:max(0, limit)]


def reconcile_total_value(
    portfolio_value: float,
    token_balances: list[TokenBalance],
) -> float:
    """
    Portfolio total with the token-value fallback.

    Some vendors report 0 when they have no priced portfolio data even
    though token-level prices exist; in that case the token values are
    summed instead.
    """
    if portfolio_value == 0 and token_balances:
        return sum(token.value for token in token_balances)
    return portfolio_value


def portfolio_value_for_chains(
    portfolio: MultiChainResult[float],
    chain_ids: Iterable[int],
) -> float:
    """Sum of per-chain portfolio values restricted to chain_ids."""
    wanted = set(chain_ids)
    return sum(
        float(result.data)
        for chain_id, result in sorted(portfolio.per_chain.items())
        if chain_id in wanted
    )


def per_chain_page_size(limit: int, chain_count: int) -> int:
    """Even split of the transaction limit across chains."""
    if chain_count <= 0:
        return limit
    return max(1, math.ceil(limit / chain_count))


# ─────────────────────────────────────────────────────────────
# Aggregator
# ─────────────────────────────────────────────────────────────

class MultiProviderAggregator:
    """
    Fetches one capability across chains with per-chain provider fallback.

    Usage:
        aggregator = MultiProviderAggregator(registry, max_chain_concurrency=5)
        balances = await aggregator.get_token_balances(address, [1, 137])
        for chain_id, errors in balances.failures.items():
            logger.warning(f"Chain {chain_id} omitted: {errors}")
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        max_chain_concurrency: int = 5,
    ) -> None:
        if max_chain_concurrency < 1:
            raise ValueError("max_chain_concurrency must be at least 1")
        self._registry = registry
        self._max_chain_concurrency = max_chain_concurrency

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def fetch_for_chain(
        self,
        capability: Capability,
        address: str,
        chain_id: int,
        page_size: Optional[int] = None,
    ) -> ProviderResult:
        """
        Try each usable provider in priority order until one succeeds.

        Raises:
            NoAvailableProviderError: no configured provider supports the chain
            AggregateProviderError: every provider failed
        """
        providers = self._registry.available_providers_for_chain(chain_id)
        if not providers:
            raise NoAvailableProviderError(
                message=f"No provider available for chain {chain_id}",
                capability=capability.value,
                chain_id=chain_id,
            )

        errors: dict[str, str] = {}
        for name in providers:
            adapter = self._registry.get_adapter(name)
            if adapter is None:
                continue

            try:
                data = await self._invoke(adapter, capability, address, chain_id, page_size)
            except ProviderError as e:
                errors[name] = e.message
                logger.warning(
                    f"[{name}] {capability.value} failed on chain {chain_id}: {e.message}"
                )
                continue

            if errors:
                logger.info(
                    f"[{name}] Served {capability.value} on chain {chain_id} "
                    f"after {len(errors)} provider failure(s)"
                )
            return ProviderResult(
                data=data,
                provider=name,
                chain_id=chain_id,
                capability=capability,
                errors=dict(errors),
            )

        raise AggregateProviderError(
            message=f"All providers failed for {capability.value} on chain {chain_id}",
            capability=capability.value,
            chain_id=chain_id,
            errors=errors,
        )

    async def _invoke(
        self,
        adapter: BaseProviderAdapter,
        capability: Capability,
        address: str,
        chain_id: int,
        page_size: Optional[int],
    ) -> Any:
        if capability == Capability.TOKEN_BALANCES:
            return await adapter.get_token_balances(address, chain_id)
        if capability == Capability.TRANSACTIONS:
            if page_size is None:
                return await adapter.get_transaction_history(address, chain_id)
            return await adapter.get_transaction_history(address, chain_id, page_size=page_size)
        return await adapter.get_portfolio_value(address, chain_id)

    async def fetch_across_chains(
        self,
        capability: Capability,
        address: str,
        chain_ids: list[int],
        budget_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
    ) -> tuple[dict[int, ProviderResult], dict[int, dict[str, str]], list[int]]:
        """
        Run fetch_for_chain for every chain concurrently.

        Returns (per-chain results, per-chain provider error maps, chains
        still pending when budget_seconds elapsed). Pending fetches are
        cancelled; everything already collected is kept.
        """
        results: dict[int, ProviderResult] = {}
        failures: dict[int, dict[str, str]] = {}
        if not chain_ids:
            return results, failures, []

        semaphore = asyncio.Semaphore(self._max_chain_concurrency)

        async def run(chain_id: int) -> ProviderResult:
            async with semaphore:
                return await self.fetch_for_chain(capability, address, chain_id, page_size)

        tasks = {asyncio.ensure_future(run(chain_id)): chain_id for chain_id in chain_ids}
        try:
            done, pending = await asyncio.wait(tasks.keys(), timeout=budget_seconds)
        finally:
            # Also reached when the caller's deadline cancels us
            for task in tasks:
                if not task.done():
                    task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            chain_id = tasks[task]
            error = task.exception()
            if error is None:
                results[chain_id] = task.result()
            elif isinstance(error, AggregateProviderError):
                failures[chain_id] = error.errors
            elif isinstance(error, ProviderError):
                failures[chain_id] = {"registry": error.message}
            else:
                logger.error(
                    f"Unexpected error fetching {capability.value} on chain {chain_id}: {error!r}"
                )
                failures[chain_id] = {"unexpected": repr(error)}

        timed_out = sorted(tasks[task] for task in pending)
        if timed_out:
            logger.warning(
                f"{capability.value} still pending on chains {timed_out} after "
                f"{budget_seconds}s budget, continuing without them"
            )

        return results, failures, timed_out

    async def get_token_balances(
        self,
        address: str,
        chain_ids: list[int],
        budget_seconds: Optional[float] = None,
    ) -> MultiChainResult[list[TokenBalance]]:
        """Merged, deduplicated balances across chains, by value descending."""
        results, failures, timed_out = await self.fetch_across_chains(
            Capability.TOKEN_BALANCES, address, chain_ids, budget_seconds
        )
        merged = merge_token_balances(
            token
            for chain_id in sorted(results)
            for token in results[chain_id].data
        )
        return MultiChainResult(
            capability=Capability.TOKEN_BALANCES.value,
            data=merged,
            per_chain=results,
            failures=failures,
            timed_out=timed_out,
        )

    async def get_transactions(
        self,
        address: str,
        chain_ids: list[int],
        limit: int = 50,
        budget_seconds: Optional[float] = None,
    ) -> MultiChainResult[list[Transaction]]:
        """Newest-first transactions across chains, truncated to limit."""
        results, failures, timed_out = await self.fetch_across_chains(
            Capability.TRANSACTIONS,
            address,
            chain_ids,
            budget_seconds,
            page_size=per_chain_page_size(limit, len(chain_ids)),
        )
        merged = merge_transactions(
            (tx for chain_id in sorted(results) for tx in results[chain_id].data),
            limit,
        )
        return MultiChainResult(
            capability=Capability.TRANSACTIONS.value,
            data=merged,
            per_chain=results,
            failures=failures,
            timed_out=timed_out,
        )

    async def get_portfolio_value(
        self,
        address: str,
        chain_ids: list[int],
        budget_seconds: Optional[float] = None,
    ) -> MultiChainResult[float]:
        """Sum of per-chain portfolio values for the chains that succeeded."""
        results, failures, timed_out = await self.fetch_across_chains(
            Capability.PORTFOLIO_VALUE, address, chain_ids, budget_seconds
        )
        total = sum(float(results[chain_id].data) for chain_id in sorted(results))
        return MultiChainResult(
            capability=Capability.PORTFOLIO_VALUE.value,
            data=total,
            per_chain=results,
            failures=failures,
            timed_out=timed_out,
        )
