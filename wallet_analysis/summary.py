"""
Summary Generators - natural-language wallet analysis.

OpenAISummaryGenerator asks an OpenAI chat model for a JSON analysis.
FallbackSummaryGenerator builds a templated analysis from the numbers
alone and never fails; the orchestrator uses it whenever the primary
generator raises or times out.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import openai
from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError, field_validator

from wallet_analysis.exceptions import SummaryGenerationError
from wallet_analysis.models import (
    AIAnalysis,
    LiquidationRisk,
    PortfolioSnapshot,
    RiskLevel,
    WhaleMetrics,
)


logger = logging.getLogger(__name__)

MAX_FINDINGS = 8
MAX_RISKS = 6
MAX_RECOMMENDATIONS = 8


class SummaryGenerator(ABC):
    """Produces an AIAnalysis for an assembled snapshot."""

    name: str = ""

    @abstractmethod
    async def generate(
        self,
        snapshot: PortfolioSnapshot,
        whale_metrics: WhaleMetrics,
        liquidation_risk: LiquidationRisk,
    ) -> AIAnalysis:
        pass


def _usd(value: float) -> str:
    return f"${value:,.2f}"


# ============================================================
# OPENAI
# ============================================================

SYSTEM_PROMPT = (
    "You are an analyst specializing in DeFi, Web3 and whale behavior. "
    "Given a wallet's portfolio data, return a JSON object with the keys "
    "summary (string), key_findings (list of strings), risk_factors (list of "
    "strings), recommendations (list of strings) and confidence (number from "
    "0 to 1). Be data-driven and concise."
)


class SummaryPayload(BaseModel):
    """Expected shape of the model's JSON answer."""
    summary: str
    key_findings: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    confidence: float = 0.8

    @field_validator("confidence")
    @classmethod
    def normalize_confidence(cls, value: float) -> float:
        # Models sometimes answer in percent
        if value > 1:
            value = value / 100
        return max(0.0, min(1.0, value))


def build_prompt(
    snapshot: PortfolioSnapshot,
    whale_metrics: WhaleMetrics,
    liquidation_risk: LiquidationRisk,
) -> str:
    """User prompt with the headline numbers of the analysis."""
    holdings = "\n".join(
        f"- {t.symbol} on chain {t.chain_id}: {t.balance:.4f} ({_usd(t.value)})"
        for t in snapshot.token_balances[:10]
    ) or "No token data available"

    chains = "\n".join(
        f"- {c.chain_name}: {_usd(c.total_value)}, {c.token_count} tokens, "
        f"{c.transaction_count} transactions"
        for c in snapshot.chains
    ) or "No active chains"

    health = (
        f"{liquidation_risk.health_factor:.2f}"
        if liquidation_risk.health_factor is not None else "n/a (no debt)"
    )
    protocols = ", ".join(snapshot.defi.protocols) if snapshot.defi else ""

    return (
        f"Analyze this wallet: {snapshot.address}\n\n"
        f"Portfolio overview:\n"
        f"- Total value: {_usd(snapshot.total_value)}\n"
        f"- Token count: {len(snapshot.token_balances)}\n"
        f"- Recent transactions: {len(snapshot.transactions)}\n"
        f"- Dominant chain: {snapshot.cross_chain_metrics.dominant_chain}\n\n"
        f"Top holdings:\n{holdings}\n\n"
        f"Chains:\n{chains}\n\n"
        f"Whale metrics:\n"
        f"- Whale score: {whale_metrics.score}/100 ({whale_metrics.level})\n"
        f"- Large transactions: {whale_metrics.large_transactions}\n"
        f"- Staking value: {_usd(whale_metrics.staking_value)}\n"
        f"- Lending value: {_usd(whale_metrics.lending_value)}\n"
        f"- DeFi protocols: {protocols or 'none detected'}\n\n"
        f"Liquidation risk:\n"
        f"- Level: {liquidation_risk.risk_level.value}\n"
        f"- Borrowed: {_usd(liquidation_risk.total_borrowed)}\n"
        f"- Collateral: {_usd(liquidation_risk.total_collateral)}\n"
        f"- Health factor: {health}"
    )


class OpenAISummaryGenerator(SummaryGenerator):
    """
    OpenAI chat completion in JSON mode.

    Any missing key, client error or unparseable answer is raised as
    SummaryGenerationError.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        temperature: float = 0.6,
        max_tokens: int = 700,
        timeout: float = 10.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.environ.get("OPENAI_API_KEY", "")
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._client = client

    def is_available(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout, max_retries=0)
        return self._client

    async def generate(
        self,
        snapshot: PortfolioSnapshot,
        whale_metrics: WhaleMetrics,
        liquidation_risk: LiquidationRisk,
    ) -> AIAnalysis:
        if not self.is_available():
            raise SummaryGenerationError("OPENAI_API_KEY not configured", address=snapshot.address)

        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_prompt(snapshot, whale_metrics, liquidation_risk)},
                ],
                response_format={"type": "json_object"},
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )
        except openai.OpenAIError as e:
            raise SummaryGenerationError(
                f"OpenAI request failed: {e}",
                address=snapshot.address,
                original_error=e,
            )

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise SummaryGenerationError("OpenAI returned an empty answer", address=snapshot.address)

        try:
            payload = SummaryPayload.model_validate(json.loads(content))
        except (ValueError, ValidationError) as e:
            raise SummaryGenerationError(
                f"Unparseable OpenAI answer: {e}",
                address=snapshot.address,
                original_error=e,
            )

        return AIAnalysis(
            summary=payload.summary,
            key_findings=payload.key_findings[:MAX_FINDINGS],
            risk_factors=payload.risk_factors[:MAX_RISKS],
            recommendations=payload.recommendations[:MAX_RECOMMENDATIONS],
            confidence=payload.confidence,
        )


# ============================================================
# FALLBACK
# ============================================================

class FallbackSummaryGenerator(SummaryGenerator):
    """Deterministic templated analysis. Never raises."""

    name = "fallback"

    async def generate(
        self,
        snapshot: PortfolioSnapshot,
        whale_metrics: WhaleMetrics,
        liquidation_risk: LiquidationRisk,
    ) -> AIAnalysis:
        return self.build(snapshot, whale_metrics, liquidation_risk)

    def build(
        self,
        snapshot: PortfolioSnapshot,
        whale_metrics: WhaleMetrics,
        liquidation_risk: LiquidationRisk,
    ) -> AIAnalysis:
        try:
            return self._build(snapshot, whale_metrics, liquidation_risk)
        except Exception as e:
            logger.error(f"Fallback summary failed, using minimal template: {e}")
            return AIAnalysis(
                summary=(
                    f"Wallet {snapshot.address} holds {_usd(snapshot.total_value)} "
                    f"across {len(snapshot.chains)} chain(s)."
                ),
                confidence=0.5,
            )

    def _build(
        self,
        snapshot: PortfolioSnapshot,
        whale_metrics: WhaleMetrics,
        liquidation_risk: LiquidationRisk,
    ) -> AIAnalysis:
        findings: list[str] = []
        risks: list[str] = []
        recommendations: list[str] = []

        score = whale_metrics.score
        if score >= 80:
            findings.append(
                f"Legendary whale status with an exceptional portfolio ({_usd(whale_metrics.total_value)})"
            )
            findings.append("Institutional-level trading patterns with significant market influence")
        elif score >= 60:
            findings.append(
                f"Significant whale activity with large holdings ({_usd(whale_metrics.total_value)})"
            )
            findings.append("Strong market position with substantial trading volume")
        elif score >= 40:
            findings.append("Moderate whale characteristics with a growing portfolio")
            findings.append("Active trading strategy with regular large transactions")
        elif score >= 20:
            findings.append("Active trader with consistent transaction patterns")
        else:
            findings.append("Standard retail wallet with basic trading activity")

        unique = whale_metrics.unique_tokens
        if unique >= 50:
            findings.append(f"Extremely diversified portfolio across {unique} different tokens")
            recommendations.append("Consider portfolio optimization to reduce complexity")
        elif unique >= 30:
            findings.append("Highly diversified portfolio with broad risk distribution")
        elif unique >= 15:
            findings.append("Well-diversified holdings across multiple sectors")
        elif unique >= 5:
            findings.append("Moderate diversification with room for improvement")
            recommendations.append("Consider diversifying into more token categories")
        else:
            findings.append("Limited diversification, holdings are concentrated")
            risks.append("High concentration risk due to limited token variety")
            recommendations.append("Diversify holdings to reduce concentration risk")

        if whale_metrics.large_transactions >= 10:
            findings.append("Frequent large transactions indicate sophisticated trading behavior")
        elif whale_metrics.large_transactions >= 1:
            findings.append(f"{whale_metrics.large_transactions} large transaction(s) detected")

        if whale_metrics.staking_value > 10_000:
            findings.append(f"Active staking with {_usd(whale_metrics.staking_value)} earning rewards")
        elif whale_metrics.staking_value > 0:
            findings.append("Some staking activity detected")
            recommendations.append("Consider increasing staking exposure for passive income")

        if whale_metrics.lending_value > 50_000:
            findings.append(
                f"Significant DeFi lending activity with {_usd(whale_metrics.lending_value)} supplied"
            )
        elif whale_metrics.lending_value > 0:
            findings.append("Some DeFi lending exposure detected")

        if snapshot.defi and snapshot.defi.protocols:
            findings.append(
                f"Active in {len(snapshot.defi.protocols)} DeFi protocol(s): "
                f"{', '.join(snapshot.defi.protocols)}"
            )

        level = liquidation_risk.risk_level
        if level == RiskLevel.CRITICAL:
            risks.append("CRITICAL liquidation risk, positions may be liquidated soon")
            risks.append("Health factor below safe levels")
        elif level == RiskLevel.HIGH:
            risks.append("High liquidation risk in current market conditions")
        elif level == RiskLevel.MEDIUM:
            risks.append("Moderate DeFi leverage with manageable risk")
        elif liquidation_risk.total_borrowed > 0:
            findings.append("Conservative DeFi strategy with low liquidation risk")
        recommendations.extend(liquidation_risk.recommendations)

        if snapshot.total_value > 1_000_000:
            risks.append("Large portfolio value exposed to market volatility")
            recommendations.append("Consider a systematic profit-taking strategy")

        if len(snapshot.chains) == 1:
            risks.append(f"All holdings sit on a single chain ({snapshot.chains[0].chain_name})")

        if score >= 60:
            recommendations.append("Consider advanced risk management strategies")
        elif score >= 30:
            recommendations.append("Continue building a diversified portfolio")
        else:
            recommendations.append("Focus on gradual accumulation and learning DeFi fundamentals")
        recommendations.append("Set up price alerts for major holdings")

        confidence = 0.7
        if len(snapshot.token_balances) > 10:
            confidence += 0.1
        if len(snapshot.transactions) > 50:
            confidence += 0.1
        if liquidation_risk.total_borrowed > 0:
            confidence += 0.05
        if whale_metrics.staking_value > 0 or whale_metrics.lending_value > 0:
            confidence += 0.05

        return AIAnalysis(
            summary=self._summary_text(snapshot, whale_metrics, liquidation_risk),
            key_findings=findings[:MAX_FINDINGS],
            risk_factors=risks[:MAX_RISKS],
            recommendations=recommendations[:MAX_RECOMMENDATIONS],
            confidence=round(min(confidence, 1.0), 2),
        )

    def _summary_text(
        self,
        snapshot: PortfolioSnapshot,
        whale_metrics: WhaleMetrics,
        liquidation_risk: LiquidationRisk,
    ) -> str:
        parts = [
            f"This {whale_metrics.level.lower()} wallet holds {_usd(snapshot.total_value)} "
            f"across {len(snapshot.token_balances)} tokens on {len(snapshot.chains)} chain(s) "
            f"with {liquidation_risk.risk_level.value.lower()} DeFi risk exposure."
        ]

        if snapshot.chains:
            parts.append(
                f"Most value sits on {snapshot.cross_chain_metrics.dominant_chain}."
            )

        if whale_metrics.staking_value > 1000:
            parts.append(f"Staking positions total {_usd(whale_metrics.staking_value)}.")

        if whale_metrics.large_transactions > 0:
            parts.append(
                f"{whale_metrics.large_transactions} large transaction(s) indicate active trading."
            )

        if liquidation_risk.health_factor is not None:
            parts.append(
                f"{_usd(liquidation_risk.total_borrowed)} is borrowed at a "
                f"{liquidation_risk.health_factor:.2f} collateral ratio."
            )

        if liquidation_risk.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
            parts.append("Immediate risk management is required to avoid liquidation losses.")

        return " ".join(parts)
