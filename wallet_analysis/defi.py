"""
DeFi Position Analysis - protocol positions from balances and transactions.

Positions are read from two sources:
- Tokens: lending receipts (aUSDC, cETH), debt tokens (variableDebtUSDC),
  liquid staking tokens (stETH, rETH) and LP tokens. These carry USD value.
- Transactions: calls to a known protocol contract among the most recent
  transactions. These prove contact with the protocol but carry no value.

Pure and deterministic, like the scoring functions.
"""

from dataclasses import dataclass, replace
from typing import Iterable, Optional

from portfolio_providers.models import TokenBalance, Transaction, TransactionType
from wallet_analysis.models import DeFiAnalysis, DeFiPosition, DeFiPositionType
from wallet_analysis.scoring import (
    DEBT_PREFIXES,
    is_debt_token,
    is_lending_receipt,
    is_lp_token,
    is_staking_token,
    liquidation_risk_from_totals,
)


# Transactions scanned for protocol contact, newest first
INTERACTION_SCAN_LIMIT = 20


@dataclass(frozen=True)
class ProtocolContract:
    """A protocol contract and what a call to it means."""
    protocol: str
    tx_type: TransactionType
    label: str


# ============================================================
# KNOWN CONTRACTS
# ============================================================

KNOWN_CONTRACTS: dict[tuple[int, str], ProtocolContract] = {
    (chain_id, address.lower()): contract
    for chain_id, address, contract in (
        (1, "0x87870Bca3F3fD6335C3F4ce8392D69350B4fA4E2",
         ProtocolContract("aave", TransactionType.LEND, "Aave V3 Pool")),
        (1, "0x7d2768dE32b0b80b7a3454c06BdAc94A69DDc7A9",
         ProtocolContract("aave", TransactionType.LEND, "Aave V2 Lending Pool")),
        (1, "0xc3d688B66703497DAA19211EEdff47f25384cdc3",
         ProtocolContract("compound", TransactionType.LEND, "Compound V3 USDC")),
        (1, "0xA17581A9E3356d9A858b789D68B4d866e593aE94",
         ProtocolContract("compound", TransactionType.LEND, "Compound V3 WETH")),
        (1, "0x39AA39c021dfbaE8faC545936693aC917d5E7563",
         ProtocolContract("compound", TransactionType.LEND, "Compound cUSDC")),
        (1, "0x4Ddc2D193948926D02f9B1fE9e1daa0718270ED5",
         ProtocolContract("compound", TransactionType.LEND, "Compound cETH")),
        (1, "0x5d3a536E4D6DbD6114cc1Ead35777bAB948E3643",
         ProtocolContract("compound", TransactionType.LEND, "Compound cDAI")),
        (1, "0x9759A6Ac90977b93B58547b4A71c78317f391A28",
         ProtocolContract("makerdao", TransactionType.BORROW, "MakerDAO DAI Join")),
        (1, "0x5ef30b9986345249bc32d8928B7ee64DE9435E39",
         ProtocolContract("makerdao", TransactionType.BORROW, "MakerDAO CDP Manager")),
        (1, "0xC36442b4a4522E871399CD717aBDD847Ab11FE88",
         ProtocolContract("uniswap", TransactionType.LIQUIDITY, "Uniswap V3 Positions")),
        (1, "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
         ProtocolContract("uniswap", TransactionType.SWAP, "Uniswap V2 Router")),
        (1, "0xE592427A0AEce92De3Edee1F18E0157C05861564",
         ProtocolContract("uniswap", TransactionType.SWAP, "Uniswap V3 Router")),
        (1, "0xae7ab96520DE3A18E5e111B5EaAb095312D7fE84",
         ProtocolContract("lido", TransactionType.STAKE, "Lido stETH")),
        (1, "0xA0c68C638235ee32657e8f720a23ceC1bFc77C77",
         ProtocolContract("polygon-bridge", TransactionType.BRIDGE, "Polygon PoS Bridge")),
        (1, "0x99C9fc46f92E8a1c0deC1b1747d010903E884bE1",
         ProtocolContract("optimism-bridge", TransactionType.BRIDGE, "Optimism Gateway")),
        (1, "0x4Dbd4fc535Ac27206064B68FfCf827b0A60BAB3f",
         ProtocolContract("arbitrum-bridge", TransactionType.BRIDGE, "Arbitrum Inbox")),
    )
}

# Calls that leave a position behind; swaps and bridges do not
POSITION_TX_TYPES = frozenset({
    TransactionType.LEND,
    TransactionType.BORROW,
    TransactionType.STAKE,
    TransactionType.LIQUIDITY,
})

STAKING_PROTOCOLS = (
    ("steth", "lido"),
    ("sfrxeth", "frax"),
    ("cbeth", "coinbase"),
    ("reth", "rocket-pool"),
)

LP_PROTOCOLS = (
    ("uni-v", "uniswap"),
    ("slp", "sushiswap"),
    ("sushi", "sushiswap"),
    ("cake", "pancakeswap"),
    ("curve", "curve"),
    ("balancer", "balancer"),
    ("bpt", "balancer"),
)


def lookup_contract(chain_id: int, address: Optional[str]) -> Optional[ProtocolContract]:
    if not address:
        return None
    return KNOWN_CONTRACTS.get((chain_id, address.lower()))


# ============================================================
# TRANSACTION CLASSIFICATION
# ============================================================

def classify_transaction(tx: Transaction) -> Transaction:
    """Set tx_type from the destination contract; unknown destinations stay transfers."""
    contract = lookup_contract(tx.chain_id, tx.to_address)
    if contract is None or contract.tx_type == tx.tx_type:
        return tx
    return replace(tx, tx_type=contract.tx_type)


def classify_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    return [classify_transaction(tx) for tx in transactions]


# ============================================================
# POSITION DETECTION
# ============================================================

def _first_match(text: str, table: tuple[tuple[str, str], ...]) -> str:
    lowered = text.lower()
    for marker, protocol in table:
        if marker in lowered:
            return protocol
    return "other"


def _strip_debt_prefix(symbol: str) -> str:
    lowered = symbol.lower()
    for prefix in DEBT_PREFIXES:
        if lowered.startswith(prefix):
            return symbol[len(prefix):] or symbol
    return symbol


def position_from_token(token: TokenBalance) -> Optional[DeFiPosition]:
    """The DeFi position a token represents, or None for a plain token."""
    symbol = token.symbol or ""

    if is_debt_token(token):
        protocol, kind, underlying = "aave", DeFiPositionType.BORROW, _strip_debt_prefix(symbol)
    elif is_lending_receipt(token):
        protocol = "aave" if symbol.startswith("a") else "compound"
        kind, underlying = DeFiPositionType.SUPPLY, symbol[1:]
    elif is_staking_token(token):
        protocol = _first_match(symbol, STAKING_PROTOCOLS)
        kind, underlying = DeFiPositionType.STAKE, "ETH" if protocol != "other" else symbol
    elif is_lp_token(token):
        protocol = _first_match(f"{symbol} {token.name or ''}", LP_PROTOCOLS)
        kind, underlying = DeFiPositionType.LIQUIDITY, symbol
    else:
        return None

    return DeFiPosition(
        protocol=protocol,
        position_type=kind,
        symbol=symbol,
        underlying_symbol=underlying,
        chain_id=token.chain_id,
        contract_address=token.contract_address,
        amount=token.balance,
        value=token.value,
    )


def position_from_transaction(tx: Transaction) -> Optional[DeFiPosition]:
    """A valueless INTERACTION position for a call to a known protocol contract."""
    contract = lookup_contract(tx.chain_id, tx.to_address)
    if contract is None or contract.tx_type not in POSITION_TX_TYPES:
        return None
    return DeFiPosition(
        protocol=contract.protocol,
        position_type=DeFiPositionType.INTERACTION,
        symbol=contract.label,
        underlying_symbol="ETH",
        chain_id=tx.chain_id,
        contract_address=tx.to_address.lower(),
        amount=tx.value,
        value=0.0,
    )


def detect_positions(
    token_balances: Iterable[TokenBalance],
    transactions: Iterable[Transaction],
    scan_limit: int = INTERACTION_SCAN_LIMIT,
) -> list[DeFiPosition]:
    """
    Token positions plus protocol interactions, deduplicated.

    Duplicates (same protocol, type, contract and chain) have amount and
    value summed. Sorted by value descending.
    """
    found = [p for p in map(position_from_token, token_balances) if p is not None]
    found.extend(
        p for p in map(position_from_transaction, list(transactions)[:max(0, scan_limit)])
        if p is not None
    )

    merged: dict[tuple[str, str, str, int], DeFiPosition] = {}
    for position in found:
        key = position.identity_key
        existing = merged.get(key)
        if existing is None:
            merged[key] = position
        else:
            merged[key] = replace(
                existing,
                amount=existing.amount + position.amount,
                value=existing.value + position.value,
            )

    return sorted(
        merged.values(),
        key=lambda p: (-p.value, p.protocol, p.position_type.value, p.symbol, p.chain_id),
    )


# ============================================================
# ANALYSIS
# ============================================================

PROTOCOL_RECOMMENDATIONS = {
    "aave": "Watch Aave borrow rates, switching debt between stable and variable can lower costs",
    "compound": "Follow Compound governance proposals that change market parameters",
    "makerdao": "Keep MakerDAO vaults well above their liquidation ratio",
    "lido": "Track the stETH/ETH peg before using staked ETH as collateral",
}


def defi_recommendations(analysis: DeFiAnalysis) -> list[str]:
    recommendations = list(analysis.liquidation_risk.recommendations)
    if not analysis.positions:
        recommendations.append("No active DeFi positions detected")
        return recommendations

    protocols = analysis.protocols
    recommendations.extend(
        PROTOCOL_RECOMMENDATIONS[protocol]
        for protocol in protocols
        if protocol in PROTOCOL_RECOMMENDATIONS
    )
    if len(protocols) > 2:
        recommendations.append("Consolidating positions into fewer protocols reduces gas and monitoring costs")
    return recommendations


def analyze_defi(
    address: str,
    token_balances: list[TokenBalance],
    transactions: list[Transaction],
    chain_ids: Optional[list[int]] = None,
) -> DeFiAnalysis:
    """
    DeFi positions, totals and liquidation risk for one wallet.

    Liquidation risk compares supplied value (collateral) with borrowed
    value, so it matches compute_liquidation_risk over the same tokens.
    """
    positions = detect_positions(token_balances, transactions)
    supplied = sum(p.value for p in positions if p.position_type == DeFiPositionType.SUPPLY)
    borrowed = sum(p.value for p in positions if p.position_type == DeFiPositionType.BORROW)

    analysis = DeFiAnalysis(
        address=address,
        positions=positions,
        liquidation_risk=liquidation_risk_from_totals(supplied, borrowed),
        chain_ids=sorted(chain_ids) if chain_ids is not None else sorted(
            {token.chain_id for token in token_balances}
        ),
    )
    analysis.recommendations = defi_recommendations(analysis)
    return analysis
