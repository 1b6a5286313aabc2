"""
Alchemy Portfolio Adapter - Alchemy enhanced JSON-RPC API.

Lowest-priority vendor. Alchemy has no price data: every balance it
reports has value 0 and portfolio value is therefore 0 unless a
higher-priority vendor served the chain.

Limits (free tier):
- ~5 requests / second (compute-unit based)
"""

import logging
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from portfolio_providers.base import BaseProviderAdapter, scale_amount
from portfolio_providers.exceptions import FetchError, ProviderError
from portfolio_providers.models import (
    ProviderMetadata,
    TokenBalance,
    Transaction,
    ensure_utc,
)
from portfolio_providers.resilience import (
    CircuitBreaker,
    ResiliencePolicy,
    RetryPolicy,
    SlidingWindowRateLimiter,
)


logger = logging.getLogger(__name__)


class AlchemyRpcError(BaseModel):
    code: int = 0
    message: str = ""


class AlchemyRpcResponse(BaseModel):
    id: Optional[int] = None
    result: Any = None
    error: Optional[AlchemyRpcError] = None


class AlchemyTokenBalance(BaseModel):
    contractAddress: str
    tokenBalance: Optional[str] = None


class AlchemyTokenBalances(BaseModel):
    address: Optional[str] = None
    tokenBalances: list[AlchemyTokenBalance] = Field(default_factory=list)


class AlchemyTokenMetadata(BaseModel):
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: Optional[int] = None
    logo: Optional[str] = None


class AlchemyTransferMetadata(BaseModel):
    blockTimestamp: Optional[datetime] = None


class AlchemyTransfer(BaseModel):
    hash: str
    to: Optional[str] = None
    value: Optional[float] = None
    asset: Optional[str] = None
    metadata: AlchemyTransferMetadata = Field(default_factory=AlchemyTransferMetadata)
    from_address: Optional[str] = Field(default=None, alias="from")


class AlchemyTransfers(BaseModel):
    transfers: list[AlchemyTransfer] = Field(default_factory=list)
    pageKey: Optional[str] = None


class AlchemyAdapter(BaseProviderAdapter):
    """Alchemy adapter. The API key is part of the RPC URL."""

    API_KEY_ENV = "ALCHEMY_API_KEY"

    NETWORKS = {
        1: "eth-mainnet",
        137: "polygon-mainnet",
        56: "bnb-mainnet",
        42161: "arb-mainnet",
        10: "opt-mainnet",
        8453: "base-mainnet",
    }

    TRANSFER_CATEGORIES = ["external", "erc20", "erc721", "erc1155"]
    METADATA_CACHE_SIZE = 5000

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # Token metadata never changes; keyed by (chain id, contract)
        self._metadata_cache: dict[tuple[int, str], AlchemyTokenMetadata] = {}

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "alchemy"

    def metadata(self) -> ProviderMetadata:
        """Return adapter metadata."""
        return ProviderMetadata(
            name=self.name,
            display_name="Alchemy",
            supported_chains=list(self.NETWORKS.keys()),
            priority=3,
            base_url="https://www.alchemy.com",
            documentation_url="https://docs.alchemy.com/reference/api-overview",
            api_key_env=self.API_KEY_ENV,
            has_price_data=False,
            tags=["balances", "transactions", "rpc"],
        )

    @classmethod
    def default_policy(cls, call_timeout: float = 15.0) -> ResiliencePolicy:
        return ResiliencePolicy(
            rate_limiter=SlidingWindowRateLimiter(
                max_requests=5,
                window_seconds=1.0,
                margin_seconds=0.05,
                name="alchemy",
            ),
            retry=RetryPolicy(delays=(1.0, 2.0, 4.0)),
            circuit_breaker=CircuitBreaker(failure_threshold=3, cooldown_seconds=300.0),
            call_timeout_seconds=call_timeout,
        )

    def _rpc_url(self, chain_id: int) -> str:
        return f"https://{self.NETWORKS[chain_id]}.g.alchemy.com/v2/{self._api_key}"

    async def _rpc(self, chain_id: int, method: str, params: list[Any]) -> Any:
        """Single JSON-RPC call; RPC-level errors become FetchError."""
        raw = await self._make_request(
            "POST",
            self._rpc_url(chain_id),
            json={"id": 1, "jsonrpc": "2.0", "method": method, "params": params},
            chain_id=chain_id,
        )
        response = self._parse(AlchemyRpcResponse, raw, chain_id)
        if response.error is not None:
            raise FetchError(
                message=f"{method} failed: {response.error.message}",
                provider_name=self.name,
                chain_id=chain_id,
                status_code=400 if response.error.code in (-32600, -32602) else None,
                context={"rpc_code": response.error.code},
            )
        return response.result

    async def _token_metadata(self, chain_id: int, contract: str) -> AlchemyTokenMetadata:
        """
        Metadata for one contract, as its own guarded call.

        Each lookup takes its own rate-limit slot, timeout and retries, and
        is cached, so a retried balance fetch does not repeat lookups.
        """
        key = (chain_id, contract.lower())
        cached = self._metadata_cache.get(key)
        if cached is not None:
            return cached

        async def lookup() -> AlchemyTokenMetadata:
            raw = await self._rpc(chain_id, "alchemy_getTokenMetadata", [contract])
            return self._parse(AlchemyTokenMetadata, raw or {}, chain_id)

        meta = await self._policy.call(
            lookup,
            endpoint=f"token_metadata:{chain_id}",
            provider_name=self.name,
            chain_id=chain_id,
        )

        if len(self._metadata_cache) >= self.METADATA_CACHE_SIZE:
            self._metadata_cache.clear()
        self._metadata_cache[key] = meta
        return meta

    async def _fetch_token_balances(
        self,
        address: str,
        chain_id: int,
    ) -> list[TokenBalance]:
        result = await self._rpc(chain_id, "alchemy_getTokenBalances", [address, "erc20"])
        balances = self._parse(AlchemyTokenBalances, result, chain_id)

        tokens: list[TokenBalance] = []
        for entry in balances.tokenBalances:
            if not entry.tokenBalance or int(entry.tokenBalance, 16) == 0:
                continue

            try:
                meta = await self._token_metadata(chain_id, entry.contractAddress)
            except ProviderError as e:
                logger.warning(
                    f"[{self.name}] Skipping token {entry.contractAddress}, "
                    f"metadata lookup failed: {e.message}"
                )
                continue

            tokens.append(
                TokenBalance(
                    symbol=meta.symbol or "UNKNOWN",
                    name=meta.name or "Unknown Token",
                    balance=scale_amount(entry.tokenBalance, meta.decimals if meta.decimals is not None else 18),
                    value=0.0,
                    price=0.0,
                    chain_id=chain_id,
                    contract_address=entry.contractAddress,
                    decimals=meta.decimals,
                    logo=meta.logo,
                    source_name=self.name,
                )
            )

        return tokens

    async def _fetch_transactions(
        self,
        address: str,
        chain_id: int,
        page_size: int,
    ) -> list[Transaction]:
        result = await self._rpc(
            chain_id,
            "alchemy_getAssetTransfers",
            [{
                "fromBlock": "0x0",
                "toBlock": "latest",
                "fromAddress": address,
                "category": self.TRANSFER_CATEGORIES,
                "withMetadata": True,
                "excludeZeroValue": False,
                "order": "desc",
                "maxCount": hex(page_size),
            }],
        )
        page = self._parse(AlchemyTransfers, result, chain_id)

        transactions = []
        for transfer in page.transfers[:page_size]:
            timestamp = transfer.metadata.blockTimestamp
            if timestamp is None:
                continue
            transactions.append(
                Transaction(
                    hash=transfer.hash,
                    from_address=transfer.from_address or address,
                    to_address=transfer.to or "",
                    value=transfer.value or 0.0,
                    timestamp=ensure_utc(timestamp),
                    chain_id=chain_id,
                    source_name=self.name,
                )
            )
        return transactions

    async def _fetch_portfolio_value(
        self,
        address: str,
        chain_id: int,
    ) -> float:
        # No price data: the sum is the token values, which are all 0
        tokens = await self._fetch_token_balances(address, chain_id)
        return sum(token.value for token in tokens)
