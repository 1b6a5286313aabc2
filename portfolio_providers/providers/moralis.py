"""
Moralis Portfolio Adapter - Moralis Web3 Data API v2.2.

Second-priority vendor. Token prices come with the balances, but there
is no dedicated portfolio endpoint, so portfolio value is the sum of the
priced token values.

Limits (free tier):
- ~100 requests / minute
"""

import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field, RootModel

from portfolio_providers.base import BaseProviderAdapter, scale_amount
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


class MoralisToken(BaseModel):
    token_address: str
    symbol: Optional[str] = None
    name: Optional[str] = None
    logo: Optional[str] = None
    thumbnail: Optional[str] = None
    decimals: Optional[int] = None
    balance: Union[int, str] = "0"
    possible_spam: bool = False
    usd_price: Optional[float] = None
    usd_value: Optional[float] = None


class MoralisTokenList(RootModel[list[MoralisToken]]):
    pass


class MoralisTransaction(BaseModel):
    hash: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: Union[int, str] = "0"
    gas_price: Optional[Union[int, str]] = None
    receipt_gas_used: Optional[Union[int, str]] = None
    block_timestamp: datetime


class MoralisTransactionPage(BaseModel):
    result: list[MoralisTransaction] = Field(default_factory=list)
    cursor: Optional[str] = None


class MoralisAdapter(BaseProviderAdapter):
    """Moralis adapter. Spam-flagged and zero balances are dropped."""

    BASE_URL = "https://deep-index.moralis.io/api/v2.2"
    API_KEY_ENV = "MORALIS_API_KEY"

    CHAIN_SLUGS = {
        1: "eth",
        137: "polygon",
        56: "bsc",
        43114: "avalanche",
        42161: "arbitrum",
        10: "optimism",
        8453: "base",
        250: "fantom",
        25: "cronos",
    }

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "moralis"

    def metadata(self) -> ProviderMetadata:
        """Return adapter metadata."""
        return ProviderMetadata(
            name=self.name,
            display_name="Moralis",
            supported_chains=list(self.CHAIN_SLUGS.keys()),
            priority=2,
            base_url=self.BASE_URL,
            documentation_url="https://docs.moralis.io/web3-data-api/evm",
            api_key_env=self.API_KEY_ENV,
            has_price_data=True,
            tags=["balances", "transactions", "prices"],
        )

    @classmethod
    def default_policy(cls, call_timeout: float = 15.0) -> ResiliencePolicy:
        return ResiliencePolicy(
            rate_limiter=SlidingWindowRateLimiter(
                max_requests=100,
                window_seconds=60.0,
                margin_seconds=0.1,
                name="moralis",
            ),
            retry=RetryPolicy(delays=(2.0, 4.0, 8.0)),
            circuit_breaker=CircuitBreaker(failure_threshold=3, cooldown_seconds=300.0),
            call_timeout_seconds=call_timeout,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"X-API-Key": self._api_key}

    async def _fetch_erc20(self, address: str, chain_id: int) -> list[MoralisToken]:
        raw = await self._make_request(
            "GET",
            f"{self.BASE_URL}/{address}/erc20",
            params={
                "chain": self.CHAIN_SLUGS[chain_id],
                "exclude_spam": "true",
            },
            chain_id=chain_id,
        )
        tokens = self._parse(MoralisTokenList, raw, chain_id).root
        return [
            token for token in tokens
            if not token.possible_spam and int(token.balance or 0) > 0
        ]

    async def _fetch_token_balances(
        self,
        address: str,
        chain_id: int,
    ) -> list[TokenBalance]:
        tokens = await self._fetch_erc20(address, chain_id)
        return [
            TokenBalance(
                symbol=token.symbol or "UNKNOWN",
                name=token.name or "Unknown Token",
                balance=scale_amount(token.balance, token.decimals),
                value=token.usd_value or 0.0,
                price=token.usd_price or 0.0,
                chain_id=chain_id,
                contract_address=token.token_address,
                decimals=token.decimals,
                logo=token.logo or token.thumbnail,
                source_name=self.name,
            )
            for token in tokens
        ]

    async def _fetch_transactions(
        self,
        address: str,
        chain_id: int,
        page_size: int,
    ) -> list[Transaction]:
        raw = await self._make_request(
            "GET",
            f"{self.BASE_URL}/{address}",
            params={
                "chain": self.CHAIN_SLUGS[chain_id],
                "limit": page_size,
                "order": "DESC",
            },
            chain_id=chain_id,
        )
        page = self._parse(MoralisTransactionPage, raw, chain_id)

        return [
            Transaction(
                hash=tx.hash,
                from_address=tx.from_address or "",
                to_address=tx.to_address or "",
                value=scale_amount(tx.value, 18),
                timestamp=ensure_utc(tx.block_timestamp),
                chain_id=chain_id,
                gas_used=int(tx.receipt_gas_used or 0),
                gas_price_gwei=scale_amount(tx.gas_price, 9) if tx.gas_price else None,
                source_name=self.name,
            )
            for tx in page.result[:page_size]
        ]

    async def _fetch_portfolio_value(
        self,
        address: str,
        chain_id: int,
    ) -> float:
        tokens = await self._fetch_erc20(address, chain_id)
        return sum(token.usd_value or 0.0 for token in tokens)
