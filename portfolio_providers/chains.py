"""
Chain Metadata Directory - chain id to display name, native currency, explorer.

Read-mostly and shared across requests. The table is refreshed from the
Covalent chains endpoint at most once per TTL (24h by default); any
refresh failure keeps the static table, so lookups never fail.
"""

import asyncio
import logging
import os
import time
from typing import Any, Optional

import aiohttp
from pydantic import BaseModel, Field

from portfolio_providers.models import ChainConfig


logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60

# Display order for multi-chain views
CHAIN_PRIORITIES = [1, 137, 56, 43114, 42161, 10, 8453, 250, 25]


FALLBACK_CHAINS: dict[int, ChainConfig] = {
    1: ChainConfig(
        chain_id=1,
        name="ethereum",
        display_name="Ethereum",
        native_symbol="ETH",
        native_name="Ether",
        rpc_url="https://eth.llamarpc.com",
        block_explorer="https://etherscan.io",
        color="#627EEA",
        defi_protocols=("Uniswap", "Aave", "Compound", "MakerDAO", "Curve"),
    ),
    137: ChainConfig(
        chain_id=137,
        name="polygon",
        display_name="Polygon",
        native_symbol="MATIC",
        native_name="MATIC",
        rpc_url="https://polygon.llamarpc.com",
        block_explorer="https://polygonscan.com",
        color="#8247E5",
        defi_protocols=("QuickSwap", "Aave", "Curve", "SushiSwap"),
    ),
    56: ChainConfig(
        chain_id=56,
        name="bsc",
        display_name="BNB Smart Chain",
        native_symbol="BNB",
        native_name="BNB",
        rpc_url="https://bsc.publicnode.com",
        block_explorer="https://bscscan.com",
        color="#F3BA2F",
        defi_protocols=("PancakeSwap", "Venus", "Alpaca Finance"),
    ),
    43114: ChainConfig(
        chain_id=43114,
        name="avalanche",
        display_name="Avalanche",
        native_symbol="AVAX",
        native_name="AVAX",
        rpc_url="https://avalanche.public-rpc.com",
        block_explorer="https://snowtrace.io",
        color="#E84142",
        defi_protocols=("Trader Joe", "Aave", "Benqi", "Curve"),
    ),
    250: ChainConfig(
        chain_id=250,
        name="fantom",
        display_name="Fantom",
        native_symbol="FTM",
        native_name="FTM",
        rpc_url="https://rpc.fantom.network",
        block_explorer="https://ftmscan.com",
        color="#1969FF",
        defi_protocols=("SpookySwap", "Geist Finance", "Curve"),
    ),
    42161: ChainConfig(
        chain_id=42161,
        name="arbitrum",
        display_name="Arbitrum One",
        native_symbol="ETH",
        native_name="Ether",
        rpc_url="https://arbitrum.public-rpc.com",
        block_explorer="https://arbiscan.io",
        color="#2D374B",
        defi_protocols=("Uniswap V3", "Aave", "Curve", "GMX"),
    ),
    10: ChainConfig(
        chain_id=10,
        name="optimism",
        display_name="Optimism",
        native_symbol="ETH",
        native_name="Ether",
        rpc_url="https://optimism.public-rpc.com",
        block_explorer="https://optimistic.etherscan.io",
        color="#FF0420",
        defi_protocols=("Uniswap V3", "Aave", "Curve", "Synthetix"),
    ),
    8453: ChainConfig(
        chain_id=8453,
        name="base",
        display_name="Base",
        native_symbol="ETH",
        native_name="Ether",
        rpc_url="https://base.public-rpc.com",
        block_explorer="https://basescan.org",
        color="#0052FF",
        defi_protocols=("Uniswap V3", "Aave", "Compound"),
    ),
    25: ChainConfig(
        chain_id=25,
        name="cronos",
        display_name="Cronos",
        native_symbol="CRO",
        native_name="CRO",
        rpc_url="https://evm.cronos.org",
        block_explorer="https://cronoscan.com",
        color="#003D6B",
        defi_protocols=("VVS Finance", "Tectonic"),
    ),
}


class CovalentNativeToken(BaseModel):
    contract_decimals: Optional[int] = None
    contract_name: Optional[str] = None
    contract_ticker_symbol: Optional[str] = None


class CovalentChainItem(BaseModel):
    name: str
    chain_id: Optional[str] = None
    is_testnet: bool = False
    label: Optional[str] = None
    logo_url: Optional[str] = None
    native_token: Optional[CovalentNativeToken] = None


class CovalentChainsData(BaseModel):
    items: list[CovalentChainItem] = Field(default_factory=list)


class CovalentChainsResponse(BaseModel):
    data: Optional[CovalentChainsData] = None
    error: bool = False
    error_message: Optional[str] = None


class ChainDirectory:
    """
    Cached chain metadata.

    Lookups are synchronous and served from the current table. Call
    refresh() (or ensure_fresh()) from async code to pull the remote list.
    """

    CHAINS_URL = "https://api.covalenthq.com/v1/chains/"

    def __init__(
        self,
        api_key: Optional[str] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        timeout: float = 10.0,
        clock=time.monotonic,
    ) -> None:
        if api_key is None:
            api_key = os.environ.get("COVALENT_API_KEY", "")
        self._api_key = api_key
        self._ttl_seconds = ttl_seconds
        self._timeout = timeout
        self._clock = clock
        self._chains: dict[int, ChainConfig] = dict(FALLBACK_CHAINS)
        self._fetched_at: Optional[float] = None
        self._lock: Optional[asyncio.Lock] = None
        self.source = "fallback"

    def is_stale(self) -> bool:
        if self._fetched_at is None:
            return True
        return self._clock() - self._fetched_at >= self._ttl_seconds

    async def ensure_fresh(self) -> None:
        """Refresh if the TTL has expired."""
        if self.is_stale():
            await self.refresh()

    async def refresh(self, force: bool = False) -> dict[int, ChainConfig]:
        """
        Pull the remote chain list. Never raises.

        Concurrent callers share one in-flight refresh; the ones that were
        waiting return the table it produced.
        """
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            if not force and not self.is_stale():
                return self._chains

            chains: Optional[dict[int, ChainConfig]] = None
            if not self._api_key:
                logger.warning("COVALENT_API_KEY not configured, using fallback chains")
            else:
                try:
                    chains = await self._fetch_remote()
                except Exception as e:
                    logger.warning(f"Chain list refresh failed, using fallback chains: {e}")

            if chains:
                self._chains = chains
                self.source = "covalent"
            else:
                self._chains = dict(FALLBACK_CHAINS)
                self.source = "fallback"
            # Failures also wait a full TTL before the next attempt
            self._fetched_at = self._clock()

            logger.info(f"Chain directory loaded {len(self._chains)} chains from {self.source}")
            return self._chains

    async def _fetch_remote(self) -> dict[int, ChainConfig]:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        ) as session:
            async with session.get(
                self.CHAINS_URL,
                headers={"Authorization": f"Bearer {self._api_key}"},
            ) as response:
                response.raise_for_status()
                raw = await response.json(content_type=None)

        return self.parse_chains(raw)

    @staticmethod
    def parse_chains(raw: Any) -> dict[int, ChainConfig]:
        """Convert a Covalent chains payload into mainnet ChainConfigs."""
        payload = CovalentChainsResponse.model_validate(raw)
        if payload.error or payload.data is None:
            raise ValueError(payload.error_message or "Covalent chains payload has no data")

        chains: dict[int, ChainConfig] = {}
        for item in payload.data.items:
            if item.is_testnet or not item.chain_id:
                continue
            try:
                chain_id = int(item.chain_id)
            except ValueError:
                continue

            known = FALLBACK_CHAINS.get(chain_id)
            native = item.native_token or CovalentNativeToken()
            chains[chain_id] = ChainConfig(
                chain_id=chain_id,
                name=item.name,
                display_name=item.label or (known.display_name if known else item.name),
                native_symbol=native.contract_ticker_symbol or (known.native_symbol if known else "ETH"),
                native_name=native.contract_name or (known.native_name if known else "Ether"),
                native_decimals=native.contract_decimals or 18,
                rpc_url=known.rpc_url if known else "",
                block_explorer=known.block_explorer if known else "",
                logo=item.logo_url or "",
                color=known.color if known else ChainConfig.color,
                is_mainnet=True,
                defi_protocols=known.defi_protocols if known else (),
            )
        return chains

    # ─────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────

    def get_chain(self, chain_id: int) -> Optional[ChainConfig]:
        return self._chains.get(chain_id) or FALLBACK_CHAINS.get(chain_id)

    def all_chains(self) -> list[ChainConfig]:
        return list(self._chains.values())

    def chain_name(self, chain_id: int) -> str:
        """Display name, or "Chain <id>" for unknown chains."""
        chain = self.get_chain(chain_id)
        return chain.display_name if chain else f"Chain {chain_id}"

    def chain_color(self, chain_id: int) -> str:
        chain = self.get_chain(chain_id)
        return chain.color if chain else ChainConfig.color

    def explorer_url(self, chain_id: int, value: str, kind: str = "tx") -> str:
        """Explorer link for a transaction hash or an address; "#" when unknown."""
        chain = self.get_chain(chain_id)
        if not chain or not chain.block_explorer:
            return "#"
        path = "address" if kind == "address" else "tx"
        return f"{chain.block_explorer}/{path}/{value}"

    def priority_chains(self) -> list[ChainConfig]:
        return [self._chains[c] for c in CHAIN_PRIORITIES if c in self._chains]


_default_directory: Optional[ChainDirectory] = None


def get_chain_directory() -> ChainDirectory:
    """Get or create the process-wide chain directory."""
    global _default_directory
    if _default_directory is None:
        _default_directory = ChainDirectory()
    return _default_directory
