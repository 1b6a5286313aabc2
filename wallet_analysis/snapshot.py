"""
Snapshot building - per-chain folding and cross-chain metrics.
"""

import math
from collections import defaultdict
from typing import Optional

from portfolio_providers.chains import ChainDirectory
from portfolio_providers.models import TokenBalance, Transaction
from wallet_analysis.models import ChainDistribution, ChainSnapshot, CrossChainMetrics
from wallet_analysis.scoring import defi_value, staking_value


DISTRIBUTION_COLORS = [
    "#3B82F6",  # blue
    "#EF4444",  # red
    "#10B981",  # green
    "#F59E0B",  # yellow
    "#8B5CF6",  # purple
    "#F97316",  # orange
    "#06B6D4",  # cyan
    "#84CC16",  # lime
]


def build_chain_snapshots(
    token_balances: list[TokenBalance],
    transactions: list[Transaction],
    directory: Optional[ChainDirectory] = None,
) -> list[ChainSnapshot]:
    """
    Group tokens and transactions by chain id.

    Only active chains (at least one token or transaction) are returned,
    ordered by total value descending, chain id ascending.
    """
    directory = directory or ChainDirectory(api_key="")

    tokens_by_chain: dict[int, list[TokenBalance]] = defaultdict(list)
    for token in token_balances:
        tokens_by_chain[token.chain_id].append(token)

    tx_counts: dict[int, int] = defaultdict(int)
    for tx in transactions:
        tx_counts[tx.chain_id] += 1

    snapshots = []
    for chain_id in set(tokens_by_chain) | set(tx_counts):
        tokens = tokens_by_chain.get(chain_id, [])
        config = directory.get_chain(chain_id)
        snapshot = ChainSnapshot(
            chain_id=chain_id,
            chain_name=directory.chain_name(chain_id),
            native_currency=config.native_symbol if config else "ETH",
            tokens=tuple(tokens),
            transaction_count=tx_counts.get(chain_id, 0),
            defi_value=defi_value(tokens),
            staking_value=staking_value(tokens),
            color=directory.chain_color(chain_id),
        )
        if snapshot.is_active:
            snapshots.append(snapshot)

    return sorted(snapshots, key=lambda c: (-c.total_value, c.chain_id))


def distribution_evenness(values: list[float]) -> float:
    """Normalized Shannon entropy of a value distribution, in [0, 1]."""
    total = sum(v for v in values if v > 0)
    n = len(values)
    if n <= 1 or total <= 0:
        return 0.0

    entropy = 0.0
    for value in values:
        if value > 0:
            p = value / total
            entropy -= p * math.log(p)
    return min(1.0, entropy / math.log(n))


def multi_chain_score(values: list[float]) -> int:
    """0 for one chain or none; otherwise rewards chain count and evenness."""
    n = len(values)
    if n <= 1:
        return 0
    score = 12 * min(n, 5) + 40 * distribution_evenness(values)
    return min(100, round(score))


def compute_cross_chain_metrics(chains: list[ChainSnapshot]) -> CrossChainMetrics:
    """Dominant chain, distribution and multi-chain score for active chains."""
    if not chains:
        return CrossChainMetrics()

    ordered = sorted(chains, key=lambda c: (-c.total_value, c.chain_id))
    values = [c.total_value for c in ordered]
    total = sum(values)

    distribution = [
        ChainDistribution(
            chain_id=chain.chain_id,
            chain_name=chain.chain_name,
            percentage=(chain.total_value / total * 100) if total > 0 else 0.0,
            value=chain.total_value,
            color=DISTRIBUTION_COLORS[index % len(DISTRIBUTION_COLORS)],
        )
        for index, chain in enumerate(ordered)
    ]

    return CrossChainMetrics(
        total_chains=len(ordered),
        dominant_chain=ordered[0].chain_name,
        chain_distribution=distribution,
        multi_chain_score=multi_chain_score(values),
    )
