"""
Scripts - Analyze Wallet.

============================================================
RESPONSIBILITY
============================================================
Runs one wallet analysis from the command line and prints
the report.

============================================================
USAGE
============================================================
python -m scripts.analyze_wallet 0x742ccf2e36aebe0ad95a00c7cc1d8cb9abbdbfe4

Options:
  --chains           Comma-separated chain ids (overrides WALLET_CHAIN_IDS)
  --json             Print the raw snapshot as JSON
  --providers        Only print provider status and exit

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from wallet_analysis import (
    AnalysisConfig,
    PortfolioSnapshot,
    WalletAnalysisError,
    WalletAnalysisOrchestrator,
)


logger = logging.getLogger(__name__)


def print_banner(text: str) -> None:
    """Print a banner."""
    print("\n" + "=" * 60)
    print(f"  {text}")
    print("=" * 60)


def print_report(snapshot: PortfolioSnapshot) -> None:
    print_banner(f"WALLET {snapshot.address}")
    print(f"  Total Value: ${snapshot.total_value:,.2f}")
    print(f"  Whale Score: {snapshot.whale_score}/100 ({snapshot.whale_metrics.level})")
    risk = snapshot.liquidation_risk
    print(f"  Liquidation Risk: {risk.risk_level.value} ({risk.risk_score}/100)")
    print(f"  Duration: {snapshot.duration_ms:.0f}ms")

    print_banner("CHAINS")
    for chain in snapshot.chains:
        print(
            f"  {chain.chain_name:<20} ${chain.total_value:>14,.2f}  "
            f"{chain.token_count} tokens, {chain.transaction_count} txs"
        )
    metrics = snapshot.cross_chain_metrics
    print(f"  Dominant: {metrics.dominant_chain}, multi-chain score {metrics.multi_chain_score}")

    print_banner("TOP TOKENS")
    for token in snapshot.token_balances[:10]:
        print(f"  {token.symbol:<10} {token.balance:>18,.4f}  ${token.value:>14,.2f}")

    if snapshot.analysis:
        print_banner(f"SUMMARY ({snapshot.summary_source})")
        print(f"  {snapshot.analysis.summary}")
        for finding in snapshot.analysis.key_findings:
            print(f"  - {finding}")

    if snapshot.provenance.degraded:
        print_banner("DEGRADED")
        print(json.dumps(snapshot.provenance.to_dict(), indent=2))


async def run(args: argparse.Namespace) -> int:
    config = AnalysisConfig.from_env()
    if args.chains:
        config.chain_ids = [int(c) for c in args.chains.split(",") if c.strip()]

    orchestrator = WalletAnalysisOrchestrator(config=config)
    try:
        if args.providers:
            print(json.dumps(orchestrator.registry.status_snapshot(), indent=2))
            return 0

        try:
            snapshot = await orchestrator.analyze_wallet(args.address)
        except WalletAnalysisError as e:
            logger.error(f"{e.__class__.__name__}: {e.message}")
            if args.json:
                print(json.dumps(e.to_dict(), indent=2, default=str))
            return 1

        if args.json:
            print(json.dumps(snapshot.to_dict(), indent=2, default=str))
        else:
            print_report(snapshot)
        return 0
    finally:
        await orchestrator.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Analyze a wallet across chains")
    parser.add_argument("address", nargs="?", default="", help="EVM wallet address")
    parser.add_argument("--chains", help="Comma-separated chain ids")
    parser.add_argument("--json", action="store_true", help="Print raw JSON")
    parser.add_argument("--providers", action="store_true", help="Print provider status")
    args = parser.parse_args()

    config = AnalysisConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
