"""
Wallet Analysis Package - Cross-chain wallet portfolio analysis.

Turns a wallet address into a PortfolioSnapshot: merged token balances
and transactions, per-chain snapshots, cross-chain distribution, whale
score, DeFi positions, liquidation risk and a natural-language summary.

Quick Start:
    from wallet_analysis import WalletAnalysisOrchestrator, AnalysisConfig

    async def main():
        orchestrator = WalletAnalysisOrchestrator(config=AnalysisConfig.from_env())
        try:
            snapshot = await orchestrator.analyze_wallet("0x...")
        except AnalysisTimeoutError:
            ...  # safe to retry
        finally:
            await orchestrator.close()

        print(snapshot.total_value, snapshot.whale_score, snapshot.ai_summary)
"""

from wallet_analysis.aggregator import (
    MultiProviderAggregator,
    merge_token_balances,
    merge_transactions,
    per_chain_page_size,
    portfolio_value_for_chains,
    reconcile_total_value,
)
from wallet_analysis.config import AnalysisConfig
from wallet_analysis.defi import analyze_defi, classify_transaction, detect_positions
from wallet_analysis.exceptions import (
    AcquisitionError,
    AnalysisTimeoutError,
    ConfigurationError,
    SummaryGenerationError,
    ValidationError,
    WalletAnalysisError,
)
from wallet_analysis.models import (
    AIAnalysis,
    AnalysisProvenance,
    ChainDistribution,
    ChainSnapshot,
    CrossChainMetrics,
    DeFiAnalysis,
    DeFiPosition,
    DeFiPositionType,
    LiquidationRisk,
    MultiChainResult,
    PortfolioSnapshot,
    RiskLevel,
    WhaleMetrics,
)
from wallet_analysis.orchestrator import (
    WalletAnalysisOrchestrator,
    analyze_wallet,
    close_default_orchestrator,
    get_default_orchestrator,
)
from wallet_analysis.scoring import compute_liquidation_risk, compute_whale_metrics
from wallet_analysis.snapshot import build_chain_snapshots, compute_cross_chain_metrics
from wallet_analysis.summary import (
    FallbackSummaryGenerator,
    OpenAISummaryGenerator,
    SummaryGenerator,
)
from wallet_analysis.validation import is_valid_address, sanitize_address


__all__ = [
    # Orchestration
    "WalletAnalysisOrchestrator",
    "analyze_wallet",
    "get_default_orchestrator",
    "close_default_orchestrator",
    "AnalysisConfig",

    # Acquisition
    "MultiProviderAggregator",
    "merge_token_balances",
    "merge_transactions",
    "per_chain_page_size",
    "portfolio_value_for_chains",
    "reconcile_total_value",

    # Models
    "AIAnalysis",
    "AnalysisProvenance",
    "ChainDistribution",
    "ChainSnapshot",
    "CrossChainMetrics",
    "DeFiAnalysis",
    "DeFiPosition",
    "DeFiPositionType",
    "LiquidationRisk",
    "MultiChainResult",
    "PortfolioSnapshot",
    "RiskLevel",
    "WhaleMetrics",

    # Analysis
    "build_chain_snapshots",
    "compute_cross_chain_metrics",
    "compute_whale_metrics",
    "compute_liquidation_risk",
    "analyze_defi",
    "classify_transaction",
    "detect_positions",
    "SummaryGenerator",
    "OpenAISummaryGenerator",
    "FallbackSummaryGenerator",

    # Validation
    "is_valid_address",
    "sanitize_address",

    # Exceptions
    "WalletAnalysisError",
    "ValidationError",
    "AcquisitionError",
    "AnalysisTimeoutError",
    "SummaryGenerationError",
    "ConfigurationError",
]
