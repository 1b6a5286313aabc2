"""
Scoring Functions - whale score, liquidation risk, token tagging.

Pure and deterministic: no I/O, no clock, same input gives same output.
"""

import re
from typing import Iterable, Optional

from portfolio_providers.models import TokenBalance, Transaction
from wallet_analysis.models import LiquidationRisk, RiskLevel, WhaleMetrics


# Approximate native token price used to value transactions in USD
NATIVE_PRICE_USD = 3000.0
LARGE_TRANSACTION_USD = 100_000.0
WHALE_VALUE_USD = 1_000_000.0

STAKING_SYMBOLS = ("steth", "wsteth", "reth", "cbeth", "sfrxeth")
LENDING_RECEIPT_PATTERN = re.compile(r"^[ac][A-Z]")
DEBT_PREFIXES = ("variabledebt", "stabledebt")
# Standalone LP markers ("CAKE-LP", "SushiSwap LP Token"), never inside a word ("ALPHA")
LP_PATTERN = re.compile(r"(?<![A-Za-z])S?LP(?![A-Za-z])|\bUNI-V[23]\b|\bPool\b")


# ============================================================
# TOKEN TAGGING
# ============================================================

def is_debt_token(token: TokenBalance) -> bool:
    """Aave-style variableDebt* / stableDebt* tokens."""
    symbol = (token.symbol or "").lower()
    return symbol.startswith(DEBT_PREFIXES)


def is_lending_receipt(token: TokenBalance) -> bool:
    """aTokens (aUSDC) and cTokens (cETH)."""
    if is_debt_token(token):
        return False
    return bool(LENDING_RECEIPT_PATTERN.match(token.symbol or ""))


def is_staking_token(token: TokenBalance) -> bool:
    symbol = (token.symbol or "").lower()
    if any(marker in symbol for marker in STAKING_SYMBOLS):
        return True
    return "Staked" in (token.symbol or "") or "Staked" in (token.name or "")


def is_lp_token(token: TokenBalance) -> bool:
    return bool(
        LP_PATTERN.search(token.symbol or "")
        or LP_PATTERN.search(token.name or "")
    )


def is_nft_token(token: TokenBalance) -> bool:
    return "NFT" in (token.symbol or "") or "NFT" in (token.name or "")


def _value_of(tokens: Iterable[TokenBalance], predicate) -> float:
    return sum(token.value for token in tokens if predicate(token))


def staking_value(tokens: Iterable[TokenBalance]) -> float:
    return _value_of(tokens, is_staking_token)


def lending_value(tokens: Iterable[TokenBalance]) -> float:
    return _value_of(tokens, is_lending_receipt)


def debt_value(tokens: Iterable[TokenBalance]) -> float:
    return _value_of(tokens, is_debt_token)


def defi_value(tokens: Iterable[TokenBalance]) -> float:
    """LP positions plus lending receipts."""
    return _value_of(tokens, lambda t: is_lp_token(t) or is_lending_receipt(t))


# ============================================================
# WHALE SCORE
# ============================================================

def _value_score(total_value: float) -> int:
    if total_value >= WHALE_VALUE_USD * 10:
        return 40
    if total_value >= WHALE_VALUE_USD * 5:
        return 35
    if total_value >= WHALE_VALUE_USD:
        return 25
    if total_value >= WHALE_VALUE_USD * 0.5:
        return 15
    if total_value >= WHALE_VALUE_USD * 0.1:
        return 5
    return 0


def _large_transaction_score(large_transactions: int) -> int:
    if large_transactions >= 50:
        return 20
    if large_transactions >= 20:
        return 15
    if large_transactions >= 10:
        return 10
    if large_transactions >= 5:
        return 5
    return 0


def _defi_score(value: float) -> int:
    if value >= 500_000:
        return 20
    if value >= 100_000:
        return 15
    if value >= 50_000:
        return 10
    if value >= 10_000:
        return 5
    return 0


def _diversity_score(unique_tokens: int) -> int:
    if unique_tokens >= 50:
        return 10
    if unique_tokens >= 30:
        return 8
    if unique_tokens >= 20:
        return 6
    if unique_tokens >= 10:
        return 4
    if unique_tokens >= 5:
        return 2
    return 0


def _average_size_score(average_transaction_size: float) -> int:
    average_usd = average_transaction_size * NATIVE_PRICE_USD
    if average_usd >= 100_000:
        return 10
    if average_usd >= 50_000:
        return 8
    if average_usd >= 10_000:
        return 6
    if average_usd >= 5_000:
        return 4
    if average_usd >= 1_000:
        return 2
    return 0


def compute_whale_metrics(
    token_balances: list[TokenBalance],
    transactions: list[Transaction],
    total_value: Optional[float] = None,
) -> WhaleMetrics:
    """
    Whale metrics and the 0-100 integer score.

    total_value defaults to the sum of token values. Each sub-score is
    capped (value 40, large transactions 20, DeFi 20, diversity 10,
    average size 10).
    """
    if total_value is None:
        total_value = sum(token.value for token in token_balances)

    large_transactions = sum(
        1 for tx in transactions
        if tx.value * NATIVE_PRICE_USD > LARGE_TRANSACTION_USD
    )
    staked = staking_value(token_balances)
    lent = lending_value(token_balances)
    nft = _value_of(token_balances, is_nft_token)
    unique_tokens = len(token_balances)
    average_size = (
        sum(tx.value for tx in transactions) / len(transactions)
        if transactions else 0.0
    )

    score = (
        _value_score(total_value)
        + _large_transaction_score(large_transactions)
        + _defi_score(staked + lent)
        + _diversity_score(unique_tokens)
        + _average_size_score(average_size)
    )

    return WhaleMetrics(
        total_value=total_value,
        large_transactions=large_transactions,
        staking_value=staked,
        lending_value=lent,
        nft_value=nft,
        unique_tokens=unique_tokens,
        average_transaction_size=average_size,
        score=max(0, min(100, score)),
    )


# ============================================================
# LIQUIDATION RISK
# ============================================================

RISK_SCORES = {
    RiskLevel.LOW: 10,
    RiskLevel.MEDIUM: 40,
    RiskLevel.HIGH: 70,
    RiskLevel.CRITICAL: 95,
}

RISK_RECOMMENDATIONS = {
    RiskLevel.LOW: (
        "Positions are well collateralized",
        "Keep monitoring health factors during volatile markets",
    ),
    RiskLevel.MEDIUM: (
        "Keep monitoring health factors regularly",
        "Consider adding collateral ahead of volatile periods",
    ),
    RiskLevel.HIGH: (
        "Monitor positions closely and prepare emergency funds",
        "Consider reducing leverage ratios",
    ),
    RiskLevel.CRITICAL: (
        "URGENT: Add collateral or repay debt immediately",
        "Consider closing some leveraged positions",
    ),
}


def classify_collateral_ratio(ratio: float) -> RiskLevel:
    if ratio > 2.5:
        return RiskLevel.LOW
    if ratio > 1.5:
        return RiskLevel.MEDIUM
    if ratio > 1.2:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def compute_liquidation_risk(token_balances: list[TokenBalance]) -> LiquidationRisk:
    """Risk tier from lending-receipt collateral versus debt-token value."""
    return liquidation_risk_from_totals(
        lending_value(token_balances),
        debt_value(token_balances),
    )


def liquidation_risk_from_totals(collateral: float, borrowed: float) -> LiquidationRisk:
    """
    Risk tier from collateral and borrowed USD totals.

    Nothing borrowed is always LOW.
    """
    if borrowed <= 0:
        return LiquidationRisk(
            total_collateral=collateral,
            total_borrowed=0.0,
            health_factor=None,
            risk_level=RiskLevel.LOW,
            risk_score=RISK_SCORES[RiskLevel.LOW],
            recommendations=(
                ("No outstanding debt detected",)
                if collateral <= 0 else RISK_RECOMMENDATIONS[RiskLevel.LOW]
            ),
        )

    ratio = collateral / borrowed
    level = classify_collateral_ratio(ratio)
    return LiquidationRisk(
        total_collateral=collateral,
        total_borrowed=borrowed,
        health_factor=ratio,
        risk_level=level,
        risk_score=RISK_SCORES[level],
        recommendations=RISK_RECOMMENDATIONS[level],
    )
