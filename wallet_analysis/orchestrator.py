"""
Wallet Analysis Orchestrator - Single entry point for one wallet analysis.

Stages, in order:
1. Validate   - address format; failure is terminal (ValidationError)
2. Acquire    - balances, transactions and portfolio value, concurrently,
                across chains, within the acquisition budget
3. Build      - per-chain snapshots, cross-chain metrics, transaction types
4. Score      - whale metrics, DeFi positions and liquidation risk (pure)
5. Summarize  - primary generator with a timeout, deterministic fallback
6. Assemble   - PortfolioSnapshot

Stages 2-6 run under the outer analysis deadline. Callers only ever see
ValidationError, AcquisitionError or AnalysisTimeoutError.

analyze_defi runs stages 1-4 for balances and transactions only, and
summarize_portfolio runs stages 3-5 over data the caller already holds.
"""

import asyncio
import logging
import time
from typing import Awaitable, Optional, TypeVar

from portfolio_providers.chains import ChainDirectory, get_chain_directory
from portfolio_providers.models import TokenBalance, Transaction
from portfolio_providers.registry import ProviderRegistry, create_default_registry
from wallet_analysis.aggregator import (
    MultiProviderAggregator,
    merge_token_balances,
    merge_transactions,
    portfolio_value_for_chains,
    reconcile_total_value,
)
from wallet_analysis.config import AnalysisConfig
from wallet_analysis.defi import analyze_defi, classify_transactions
from wallet_analysis.exceptions import (
    AcquisitionError,
    AnalysisTimeoutError,
    ConfigurationError,
    WalletAnalysisError,
)
from wallet_analysis.models import (
    AIAnalysis,
    AnalysisProvenance,
    DeFiAnalysis,
    MultiChainResult,
    PortfolioSnapshot,
)
from wallet_analysis.scoring import compute_whale_metrics
from wallet_analysis.snapshot import build_chain_snapshots, compute_cross_chain_metrics
from wallet_analysis.summary import (
    FallbackSummaryGenerator,
    OpenAISummaryGenerator,
    SummaryGenerator,
)
from wallet_analysis.validation import sanitize_address


logger = logging.getLogger(__name__)

T = TypeVar("T")


class WalletAnalysisOrchestrator:
    """
    Runs the analysis pipeline for one address at a time.

    The registry (and with it every adapter's rate limiter and circuit
    breaker) is meant to be shared across requests; everything else is
    rebuilt per analysis.

    Usage:
        orchestrator = WalletAnalysisOrchestrator(config=AnalysisConfig.from_env())
        snapshot = await orchestrator.analyze_wallet("0x...")
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        registry: Optional[ProviderRegistry] = None,
        aggregator: Optional[MultiProviderAggregator] = None,
        summary_generator: Optional[SummaryGenerator] = None,
        fallback_generator: Optional[SummaryGenerator] = None,
        chain_directory: Optional[ChainDirectory] = None,
    ) -> None:
        self.config = config or AnalysisConfig.from_env()

        errors = self.config.validate()
        if errors:
            raise ConfigurationError(f"Invalid configuration: {', '.join(errors)}")

        self.registry = registry or create_default_registry(
            call_timeout_seconds=self.config.provider_call_timeout_seconds,
        )
        self.aggregator = aggregator or MultiProviderAggregator(
            self.registry,
            max_chain_concurrency=self.config.max_chain_concurrency,
        )
        self.summary_generator = summary_generator or OpenAISummaryGenerator(
            api_key=self.config.openai_api_key,
            model=self.config.openai_model,
            timeout=self.config.summary_timeout_seconds,
        )
        self.fallback_generator = fallback_generator or FallbackSummaryGenerator()
        self.chain_directory = chain_directory or get_chain_directory()

    async def analyze_wallet(self, address: str) -> PortfolioSnapshot:
        """
        Analyze one wallet across the configured chains.

        Raises:
            ValidationError: malformed address
            AcquisitionError: no usable data from any provider on any chain
            AnalysisTimeoutError: the analysis deadline elapsed
        """
        address = sanitize_address(address)
        started = time.monotonic()

        logger.info(f"Starting analysis of {address} on {len(self.config.chain_ids)} chains")

        snapshot = await self._with_deadline(self._run(address, started), address)

        logger.info(
            f"Analysis of {address} complete in {snapshot.duration_ms:.0f}ms "
            f"(chains={len(snapshot.chains)}, value=${snapshot.total_value:,.2f}, "
            f"summary={snapshot.summary_source}, degraded={snapshot.provenance.degraded})"
        )
        return snapshot

    async def analyze_defi(self, address: str) -> DeFiAnalysis:
        """
        DeFi positions of one wallet, without portfolio value or summary.

        Raises the same three errors as analyze_wallet.
        """
        address = sanitize_address(address)
        started = time.monotonic()

        logger.info(f"Starting DeFi analysis of {address} on {len(self.config.chain_ids)} chains")

        analysis = await self._with_deadline(self._run_defi(address, started), address)

        logger.info(
            f"DeFi analysis of {address} complete "
            f"(positions={len(analysis.positions)}, protocols={analysis.protocols}, "
            f"risk={analysis.liquidation_risk.risk_level.value})"
        )
        return analysis

    async def summarize_portfolio(
        self,
        address: str,
        token_balances: list[TokenBalance],
        transactions: list[Transaction],
        total_value: Optional[float] = None,
    ) -> PortfolioSnapshot:
        """
        Score and summarize holdings the caller already has, without any
        provider call. total_value defaults to the sum of token values.

        Raises:
            ValidationError: malformed address
        """
        address = sanitize_address(address)
        started = time.monotonic()

        balances = merge_token_balances(token_balances)
        if total_value is None:
            total_value = sum(token.value for token in balances)

        snapshot = self._assemble(
            address,
            total_value,
            balances,
            merge_transactions(transactions, self.config.transaction_limit),
            AnalysisProvenance(),
        )
        snapshot.analysis = await self._summarize(snapshot, started)
        snapshot.duration_ms = (time.monotonic() - started) * 1000
        return snapshot

    async def _with_deadline(self, operation: Awaitable[T], address: str) -> T:
        deadline = self.config.analysis_deadline_seconds
        try:
            return await asyncio.wait_for(operation, timeout=deadline)
        except asyncio.TimeoutError:
            logger.error(f"Analysis of {address} exceeded the {deadline:.0f}s deadline")
            raise AnalysisTimeoutError(
                f"Analysis did not complete within {deadline:.0f}s, please try again",
                address=address,
                deadline_seconds=deadline,
            )
        except WalletAnalysisError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error analyzing {address}")
            raise AcquisitionError(
                f"Unexpected error during analysis: {e}",
                address=address,
                original_error=e,
            )

    def _remaining(self, started: float) -> float:
        return self.config.analysis_deadline_seconds - (time.monotonic() - started)

    async def _run(self, address: str, started: float) -> PortfolioSnapshot:
        chain_ids = list(self.config.chain_ids)
        budget = min(self.config.acquisition_budget_seconds, self._remaining(started))

        # Stage 2: acquire
        balances, transactions, portfolio, _ = await asyncio.gather(
            self.aggregator.get_token_balances(address, chain_ids, budget_seconds=budget),
            self.aggregator.get_transactions(
                address,
                chain_ids,
                limit=self.config.transaction_limit,
                budget_seconds=budget,
            ),
            self.aggregator.get_portfolio_value(address, chain_ids, budget_seconds=budget),
            self.chain_directory.ensure_fresh(),
        )
        results = [balances, transactions, portfolio]
        self._require_data(address, results)

        provenance = self._provenance(results)
        for result in results:
            for chain_id, errors in result.failures.items():
                logger.warning(
                    f"Omitting {result.capability} for chain {chain_id}: "
                    f"{'; '.join(f'{p}: {m}' for p, m in errors.items())}"
                )

        # Only chains whose balances were served, so the total matches the tokens shown
        total_value = reconcile_total_value(
            portfolio_value_for_chains(portfolio, balances.per_chain),
            balances.data,
        )

        # Stages 3-4: build and score
        snapshot = self._assemble(address, total_value, balances.data, transactions.data, provenance)

        # Stage 5: summarize
        snapshot.analysis = await self._summarize(snapshot, started)

        # Stage 6: assemble
        snapshot.duration_ms = (time.monotonic() - started) * 1000
        return snapshot

    async def _run_defi(self, address: str, started: float) -> DeFiAnalysis:
        chain_ids = list(self.config.chain_ids)
        budget = min(self.config.acquisition_budget_seconds, self._remaining(started))

        balances, transactions = await asyncio.gather(
            self.aggregator.get_token_balances(address, chain_ids, budget_seconds=budget),
            self.aggregator.get_transactions(
                address,
                chain_ids,
                limit=self.config.transaction_limit,
                budget_seconds=budget,
            ),
        )
        self._require_data(address, [balances, transactions])

        return analyze_defi(
            address,
            balances.data,
            classify_transactions(transactions.data),
            chain_ids=balances.succeeded_chains,
        )

    def _require_data(self, address: str, results: list[MultiChainResult]) -> None:
        """Raise AcquisitionError when no capability succeeded on any chain."""
        if any(result.any_succeeded for result in results):
            return

        chain_errors = self._chain_errors(results)
        if not self.registry.has_available_providers():
            message = "No portfolio data provider is configured"
        else:
            message = "All providers failed on every chain"
        logger.error(f"{message} for {address}")
        raise AcquisitionError(message, address=address, chain_errors=chain_errors)

    def _assemble(
        self,
        address: str,
        total_value: float,
        token_balances: list[TokenBalance],
        transactions: list[Transaction],
        provenance: AnalysisProvenance,
    ) -> PortfolioSnapshot:
        transactions = classify_transactions(transactions)
        chains = build_chain_snapshots(token_balances, transactions, self.chain_directory)

        whale_metrics = compute_whale_metrics(token_balances, transactions, total_value=total_value)
        defi = analyze_defi(
            address,
            token_balances,
            transactions,
            chain_ids=[chain.chain_id for chain in chains],
        )

        return PortfolioSnapshot(
            address=address,
            total_value=total_value,
            token_balances=token_balances,
            transactions=transactions,
            chains=chains,
            cross_chain_metrics=compute_cross_chain_metrics(chains),
            whale_metrics=whale_metrics,
            liquidation_risk=defi.liquidation_risk,
            provenance=provenance,
            defi=defi,
        )

    async def _summarize(self, snapshot: PortfolioSnapshot, started: float) -> AIAnalysis:
        whale_metrics = snapshot.whale_metrics
        liquidation_risk = snapshot.liquidation_risk
        timeout = min(self.config.summary_timeout_seconds, self._remaining(started))

        if timeout > 0:
            try:
                analysis = await asyncio.wait_for(
                    self.summary_generator.generate(snapshot, whale_metrics, liquidation_risk),
                    timeout=timeout,
                )
                snapshot.provenance.summary_source = self.summary_generator.name or "primary"
                return analysis
            except asyncio.TimeoutError:
                reason = f"timed out after {timeout:.1f}s"
            except Exception as e:
                reason = str(e) or e.__class__.__name__
        else:
            reason = "no time left before the deadline"

        logger.warning(f"Summary generation fell back for {snapshot.address}: {reason}")
        snapshot.provenance.summary_source = "fallback"
        snapshot.provenance.summary_error = reason
        return await self.fallback_generator.generate(snapshot, whale_metrics, liquidation_risk)

    @staticmethod
    def _chain_errors(results: list[MultiChainResult]) -> dict[int, dict[str, str]]:
        """Per-chain error map across capabilities, keyed "capability/provider"."""
        chain_errors: dict[int, dict[str, str]] = {}
        for result in results:
            for chain_id, errors in result.failures.items():
                entry = chain_errors.setdefault(chain_id, {})
                for provider, message in errors.items():
                    entry[f"{result.capability}/{provider}"] = message
            for chain_id in result.timed_out:
                chain_errors.setdefault(chain_id, {})[f"{result.capability}/timeout"] = (
                    "acquisition budget elapsed"
                )
        return chain_errors

    @staticmethod
    def _provenance(results: list[MultiChainResult]) -> AnalysisProvenance:
        provenance = AnalysisProvenance()
        timed_out: set[int] = set()
        for result in results:
            provenance.sources[result.capability] = {
                chain_id: item.provider for chain_id, item in sorted(result.per_chain.items())
            }
            provenance.provider_errors[result.capability] = {
                chain_id: item.errors
                for chain_id, item in sorted(result.per_chain.items())
                if item.errors
            }
            provenance.provider_errors[result.capability].update(result.failures)
            provenance.failed_chains[result.capability] = sorted(result.failures)
            provenance.provider_fallback = provenance.provider_fallback or result.used_fallback
            timed_out.update(result.timed_out)
        provenance.timed_out_chains = sorted(timed_out)
        return provenance

    async def close(self) -> None:
        """Close every provider session."""
        await self.registry.close_all()


_default_orchestrator: Optional[WalletAnalysisOrchestrator] = None


def get_default_orchestrator() -> WalletAnalysisOrchestrator:
    """Get or create the process-wide orchestrator (shared registry)."""
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = WalletAnalysisOrchestrator()
    return _default_orchestrator


async def close_default_orchestrator() -> None:
    """Close the process-wide orchestrator, if one was ever created."""
    global _default_orchestrator
    if _default_orchestrator is None:
        return
    orchestrator, _default_orchestrator = _default_orchestrator, None
    await orchestrator.close()


async def analyze_wallet(
    address: str,
    orchestrator: Optional[WalletAnalysisOrchestrator] = None,
) -> PortfolioSnapshot:
    """Analyze a wallet with the given or the default orchestrator."""
    return await (orchestrator or get_default_orchestrator()).analyze_wallet(address)
