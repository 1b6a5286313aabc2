"""
Wallet Analysis Models.

Everything here is built fresh for one analysis request and discarded
once the response is sent.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from portfolio_providers.models import ProviderResult, TokenBalance, Transaction


T = TypeVar("T")


class RiskLevel(Enum):
    """Ordered liquidation risk tiers."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ============================================================
# ACQUISITION
# ============================================================

@dataclass
class MultiChainResult(Generic[T]):
    """
    One capability fetched across chains.

    data is the merged cross-chain value. per_chain holds the provider
    result for every chain that succeeded, failures the provider error
    map for every chain that did not, and timed_out the chains still in
    flight when the acquisition budget ran out.
    """
    capability: str
    data: T
    per_chain: dict[int, ProviderResult] = field(default_factory=dict)
    failures: dict[int, dict[str, str]] = field(default_factory=dict)
    timed_out: list[int] = field(default_factory=list)

    @property
    def succeeded_chains(self) -> list[int]:
        return sorted(self.per_chain)

    @property
    def any_succeeded(self) -> bool:
        return bool(self.per_chain)

    @property
    def used_fallback(self) -> bool:
        """A lower-priority provider served at least one chain."""
        return any(result.used_fallback for result in self.per_chain.values())


@dataclass
class AnalysisProvenance:
    """Which vendor served what, and what was degraded."""
    sources: dict[str, dict[int, str]] = field(default_factory=dict)
    provider_errors: dict[str, dict[int, dict[str, str]]] = field(default_factory=dict)
    failed_chains: dict[str, list[int]] = field(default_factory=dict)
    timed_out_chains: list[int] = field(default_factory=list)
    provider_fallback: bool = False
    summary_source: str = "fallback"
    summary_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        """True when any part of the result came from a fallback path."""
        return (
            self.provider_fallback
            or any(self.failed_chains.values())
            or bool(self.timed_out_chains)
            or self.summary_source == "fallback"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sources": {
                capability: {str(chain): provider for chain, provider in chains.items()}
                for capability, chains in self.sources.items()
            },
            "provider_errors": {
                capability: {str(chain): errors for chain, errors in chains.items()}
                for capability, chains in self.provider_errors.items()
            },
            "failed_chains": self.failed_chains,
            "timed_out_chains": self.timed_out_chains,
            "provider_fallback": self.provider_fallback,
            "summary_source": self.summary_source,
            "summary_error": self.summary_error,
            "degraded": self.degraded,
        }


# ============================================================
# SNAPSHOT
# ============================================================

@dataclass(frozen=True)
class ChainSnapshot:
    """
    One chain's aggregated view.

    total_value and token_count are derived from tokens, so they cannot
    drift from the merged balances.
    """
    chain_id: int
    chain_name: str
    native_currency: str
    tokens: tuple[TokenBalance, ...] = ()
    transaction_count: int = 0
    defi_value: float = 0.0
    staking_value: float = 0.0
    color: str = "#6B7280"

    @property
    def total_value(self) -> float:
        return sum(token.value for token in self.tokens)

    @property
    def token_count(self) -> int:
        return len(self.tokens)

    @property
    def is_active(self) -> bool:
        return self.token_count > 0 or self.transaction_count > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "native_currency": self.native_currency,
            "total_value": self.total_value,
            "token_count": self.token_count,
            "transaction_count": self.transaction_count,
            "defi_value": self.defi_value,
            "staking_value": self.staking_value,
            "is_active": self.is_active,
            "color": self.color,
        }


@dataclass(frozen=True)
class ChainDistribution:
    """Share of the portfolio held on one chain."""
    chain_id: int
    chain_name: str
    percentage: float
    value: float
    color: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "chain_name": self.chain_name,
            "percentage": self.percentage,
            "value": self.value,
            "color": self.color,
        }


@dataclass
class CrossChainMetrics:
    """Portfolio spread across chains."""
    total_chains: int = 0
    dominant_chain: str = "Unknown"
    chain_distribution: list[ChainDistribution] = field(default_factory=list)
    multi_chain_score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chains": self.total_chains,
            "dominant_chain": self.dominant_chain,
            "chain_distribution": [d.to_dict() for d in self.chain_distribution],
            "multi_chain_score": self.multi_chain_score,
        }


# ============================================================
# SCORING
# ============================================================

@dataclass(frozen=True)
class WhaleMetrics:
    """Inputs and result of the whale score. score is an integer 0-100."""
    total_value: float
    large_transactions: int
    staking_value: float
    lending_value: float
    nft_value: float
    unique_tokens: int
    average_transaction_size: float
    score: int

    @property
    def level(self) -> str:
        if self.score >= 80:
            return "LEGENDARY WHALE"
        if self.score >= 60:
            return "MEGA WHALE"
        if self.score >= 40:
            return "WHALE"
        if self.score >= 20:
            return "DOLPHIN"
        return "FISH"

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_value": self.total_value,
            "large_transactions": self.large_transactions,
            "staking_value": self.staking_value,
            "lending_value": self.lending_value,
            "nft_value": self.nft_value,
            "unique_tokens": self.unique_tokens,
            "average_transaction_size": self.average_transaction_size,
            "score": self.score,
            "level": self.level,
        }


@dataclass(frozen=True)
class LiquidationRisk:
    """
    Liquidation risk estimate.

    health_factor is collateral / borrowed, or None when nothing is
    borrowed.
    """
    total_collateral: float
    total_borrowed: float
    health_factor: Optional[float]
    risk_level: RiskLevel
    risk_score: int
    recommendations: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_collateral": self.total_collateral,
            "total_borrowed": self.total_borrowed,
            "health_factor": self.health_factor,
            "risk_level": self.risk_level.value,
            "risk_score": self.risk_score,
            "recommendations": list(self.recommendations),
        }


@dataclass
class AIAnalysis:
    """Natural-language summary. confidence is a float 0-1."""
    summary: str
    key_findings: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "key_findings": self.key_findings,
            "risk_factors": self.risk_factors,
            "recommendations": self.recommendations,
            "confidence": self.confidence,
        }


# ============================================================
# DEFI
# ============================================================

class DeFiPositionType(Enum):
    """What a detected DeFi position represents."""
    SUPPLY = "supply"
    BORROW = "borrow"
    STAKE = "stake"
    LIQUIDITY = "liquidity"
    INTERACTION = "interaction"


@dataclass(frozen=True)
class DeFiPosition:
    """
    One protocol position detected in a wallet.

    Positions read from receipt, debt, staking or LP tokens carry the
    token's USD value. INTERACTION positions come from transactions sent
    to a known protocol contract; they only prove contact with the
    protocol and carry no USD value.
    """
    protocol: str
    position_type: DeFiPositionType
    symbol: str
    underlying_symbol: str
    chain_id: int
    contract_address: Optional[str] = None
    amount: float = 0.0
    value: float = 0.0

    @property
    def identity_key(self) -> tuple[str, str, str, int]:
        return (
            self.protocol,
            self.position_type.value,
            (self.contract_address or self.symbol).lower(),
            self.chain_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "type": self.position_type.value,
            "symbol": self.symbol,
            "underlying_symbol": self.underlying_symbol,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "amount": self.amount,
            "value": self.value,
        }


@dataclass
class DeFiAnalysis:
    """DeFi positions of one wallet with their totals and liquidation risk."""
    address: str
    positions: list[DeFiPosition]
    liquidation_risk: LiquidationRisk
    recommendations: list[str] = field(default_factory=list)
    chain_ids: list[int] = field(default_factory=list)

    def _total(self, position_type: DeFiPositionType) -> float:
        return sum(p.value for p in self.positions if p.position_type == position_type)

    @property
    def total_supplied(self) -> float:
        return self._total(DeFiPositionType.SUPPLY)

    @property
    def total_borrowed(self) -> float:
        return self._total(DeFiPositionType.BORROW)

    @property
    def total_staked(self) -> float:
        return self._total(DeFiPositionType.STAKE)

    @property
    def total_liquidity(self) -> float:
        return self._total(DeFiPositionType.LIQUIDITY)

    @property
    def net_worth(self) -> float:
        """Everything deployed in protocols minus what is owed."""
        return (
            self.total_supplied + self.total_staked + self.total_liquidity
            - self.total_borrowed
        )

    @property
    def protocols(self) -> list[str]:
        return sorted({p.protocol for p in self.positions})

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "positions": [p.to_dict() for p in self.positions],
            "protocols": self.protocols,
            "total_supplied": self.total_supplied,
            "total_borrowed": self.total_borrowed,
            "total_staked": self.total_staked,
            "total_liquidity": self.total_liquidity,
            "net_worth": self.net_worth,
            "liquidation_risk": self.liquidation_risk.to_dict(),
            "recommendations": self.recommendations,
            "chain_ids": self.chain_ids,
        }


# ============================================================
# ROOT AGGREGATE
# ============================================================

@dataclass
class PortfolioSnapshot:
    """The complete result of one wallet analysis."""
    address: str
    total_value: float
    token_balances: list[TokenBalance]
    transactions: list[Transaction]
    chains: list[ChainSnapshot]
    cross_chain_metrics: CrossChainMetrics
    whale_metrics: WhaleMetrics
    liquidation_risk: LiquidationRisk
    provenance: AnalysisProvenance
    analysis: Optional[AIAnalysis] = None
    defi: Optional[DeFiAnalysis] = None
    analyzed_at: datetime = field(default_factory=datetime.utcnow)
    duration_ms: float = 0.0

    @property
    def whale_score(self) -> int:
        return self.whale_metrics.score

    @property
    def summary_source(self) -> str:
        return self.provenance.summary_source

    @property
    def ai_summary(self) -> Optional[str]:
        return self.analysis.summary if self.analysis else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "address": self.address,
            "total_value": self.total_value,
            "token_balances": [t.to_dict() for t in self.token_balances],
            "transactions": [t.to_dict() for t in self.transactions],
            "chains": [c.to_dict() for c in self.chains],
            "cross_chain_metrics": self.cross_chain_metrics.to_dict(),
            "whale_score": self.whale_score,
            "whale_metrics": self.whale_metrics.to_dict(),
            "liquidation_risk": self.liquidation_risk.to_dict(),
            "defi": self.defi.to_dict() if self.defi else None,
            "ai_summary": self.ai_summary,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "summary_source": self.summary_source,
            "provenance": self.provenance.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat(),
            "duration_ms": self.duration_ms,
        }
