"""
Tests for snapshot building and cross-chain metrics.
"""

import pytest

from portfolio_providers.chains import ChainDirectory
from wallet_analysis.snapshot import (
    DISTRIBUTION_COLORS,
    build_chain_snapshots,
    compute_cross_chain_metrics,
    distribution_evenness,
    multi_chain_score,
)

from tests.conftest import make_token, make_tx


@pytest.fixture
def directory():
    return ChainDirectory(api_key="")


class TestBuildChainSnapshots:
    """Tests for build_chain_snapshots."""

    def test_groups_by_chain_and_orders_by_value(self, directory):
        tokens = [
            make_token("MATIC", 50, chain_id=137),
            make_token("ETH", 500, chain_id=1),
            make_token("USDC", 100, chain_id=1),
        ]
        txs = [make_tx("0x1", chain_id=1), make_tx("0x2", chain_id=1)]

        chains = build_chain_snapshots(tokens, txs, directory)

        assert [c.chain_id for c in chains] == [1, 137]
        assert chains[0].chain_name == "Ethereum"
        assert chains[0].native_currency == "ETH"
        assert chains[0].total_value == 600
        assert chains[0].token_count == 2
        assert chains[0].transaction_count == 2
        assert chains[1].chain_name == "Polygon"
        assert chains[1].transaction_count == 0

    def test_chain_total_equals_token_sum(self, directory):
        tokens = [make_token("ETH", 1.5), make_token("USDC", 2.25), make_token("UNI", 0.25)]

        chains = build_chain_snapshots(tokens, [], directory)

        assert chains[0].total_value == sum(t.value for t in tokens)

    def test_transaction_only_chain_is_active(self, directory):
        chains = build_chain_snapshots([], [make_tx("0x1", chain_id=10)], directory)

        assert len(chains) == 1
        assert chains[0].chain_name == "Optimism"
        assert chains[0].total_value == 0
        assert chains[0].is_active

    def test_ties_break_on_chain_id(self, directory):
        tokens = [make_token("A", 10, chain_id=137), make_token("B", 10, chain_id=56)]

        chains = build_chain_snapshots(tokens, [], directory)

        assert [c.chain_id for c in chains] == [56, 137]

    def test_unknown_chain(self, directory):
        chains = build_chain_snapshots([make_token("X", 1, chain_id=999)], [], directory)

        assert chains[0].chain_name == "Chain 999"

    def test_defi_and_staking_values(self, directory):
        tokens = [
            make_token("stETH", 100),
            make_token("aUSDC", 40),
            make_token("UNI-V2", 10),
        ]

        chain = build_chain_snapshots(tokens, [], directory)[0]

        assert chain.staking_value == 100
        assert chain.defi_value == 50

    def test_empty(self, directory):
        assert build_chain_snapshots([], [], directory) == []


class TestCrossChainMetrics:
    """Tests for compute_cross_chain_metrics."""

    def test_no_chains(self):
        metrics = compute_cross_chain_metrics([])

        assert metrics.total_chains == 0
        assert metrics.dominant_chain == "Unknown"
        assert metrics.multi_chain_score == 0

    def test_single_chain(self, directory):
        chains = build_chain_snapshots([make_token("ETH", 600)], [], directory)

        metrics = compute_cross_chain_metrics(chains)

        assert metrics.total_chains == 1
        assert metrics.dominant_chain == "Ethereum"
        assert metrics.chain_distribution[0].percentage == 100
        assert metrics.multi_chain_score == 0

    def test_distribution_sums_to_100(self, directory):
        tokens = [
            make_token("ETH", 300, chain_id=1),
            make_token("MATIC", 200, chain_id=137),
            make_token("BNB", 100, chain_id=56),
        ]
        chains = build_chain_snapshots(tokens, [], directory)

        metrics = compute_cross_chain_metrics(chains)

        assert metrics.dominant_chain == "Ethereum"
        assert sum(d.percentage for d in metrics.chain_distribution) == pytest.approx(100)
        assert [d.color for d in metrics.chain_distribution] == DISTRIBUTION_COLORS[:3]
        assert 0 < metrics.multi_chain_score <= 100

    def test_zero_value_chains(self, directory):
        chains = build_chain_snapshots(
            [], [make_tx("0x1", chain_id=1), make_tx("0x2", chain_id=137)], directory
        )

        metrics = compute_cross_chain_metrics(chains)

        assert all(d.percentage == 0 for d in metrics.chain_distribution)


class TestMultiChainScore:
    """Tests for multi_chain_score and distribution_evenness."""

    def test_even_split_is_fully_even(self):
        assert distribution_evenness([100, 100, 100]) == pytest.approx(1.0)

    def test_single_or_empty(self):
        assert distribution_evenness([100]) == 0.0
        assert multi_chain_score([100]) == 0
        assert multi_chain_score([]) == 0

    def test_even_spread_beats_concentration(self):
        assert multi_chain_score([50, 50]) > multi_chain_score([99, 1])

    def test_formula(self):
        # 12 * 2 chains + 40 * evenness 1.0
        assert multi_chain_score([10, 10]) == 64

    def test_capped(self):
        assert multi_chain_score([1] * 9) == 100
