"""
Covalent Portfolio Adapter - GoldRush / Covalent unified REST API.

Highest-priority vendor: the only one that returns balances, prices and
historical portfolio quotes in a single call per chain.

Limits (free tier):
- ~100 requests / minute, account-wide

Endpoints used:
- /v1/{chain}/address/{addr}/balances_v2/
- /v1/{chain}/address/{addr}/transactions_v2/
- /v1/{chain}/address/{addr}/portfolio_v2/
"""

import logging
from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field

from portfolio_providers.base import BaseProviderAdapter, scale_amount
from portfolio_providers.exceptions import FetchError
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


# ─────────────────────────────────────────────────────────────
# Vendor schemas
# ─────────────────────────────────────────────────────────────

class CovalentBalanceItem(BaseModel):
    contract_ticker_symbol: Optional[str] = None
    contract_name: Optional[str] = None
    contract_address: Optional[str] = None
    contract_decimals: Optional[int] = None
    balance: Optional[Union[int, str]] = None
    quote: Optional[float] = None
    quote_rate: Optional[float] = None
    logo_url: Optional[str] = None


class CovalentTransactionItem(BaseModel):
    tx_hash: str
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    value: Optional[Union[int, str]] = None
    block_signed_at: datetime
    gas_spent: Optional[int] = None
    gas_price: Optional[int] = None


class CovalentQuote(BaseModel):
    quote: Optional[float] = None


class CovalentHolding(BaseModel):
    close: CovalentQuote = Field(default_factory=CovalentQuote)


class CovalentPortfolioItem(BaseModel):
    contract_address: Optional[str] = None
    holdings: list[CovalentHolding] = Field(default_factory=list)


class CovalentBalancesData(BaseModel):
    items: list[CovalentBalanceItem] = Field(default_factory=list)


class CovalentTransactionsData(BaseModel):
    items: list[CovalentTransactionItem] = Field(default_factory=list)


class CovalentPortfolioData(BaseModel):
    items: list[CovalentPortfolioItem] = Field(default_factory=list)


class CovalentBalancesResponse(BaseModel):
    data: Optional[CovalentBalancesData] = None
    error: bool = False
    error_message: Optional[str] = None


class CovalentTransactionsResponse(BaseModel):
    data: Optional[CovalentTransactionsData] = None
    error: bool = False
    error_message: Optional[str] = None


class CovalentPortfolioResponse(BaseModel):
    data: Optional[CovalentPortfolioData] = None
    error: bool = False
    error_message: Optional[str] = None


# ─────────────────────────────────────────────────────────────
# Adapter
# ─────────────────────────────────────────────────────────────

class CovalentAdapter(BaseProviderAdapter):
    """
    Covalent adapter.

    Balance is raw / 10^decimals, value is the vendor quote and price the
    vendor quote_rate. Transaction values are reported in native units.
    """

    BASE_URL = "https://api.covalenthq.com/v1"
    API_KEY_ENV = "COVALENT_API_KEY"

    CHAIN_SLUGS = {
        1: "eth-mainnet",
        137: "matic-mainnet",
        56: "bsc-mainnet",
        43114: "avalanche-mainnet",
        42161: "arbitrum-mainnet",
        10: "optimism-mainnet",
        8453: "base-mainnet",
        250: "fantom-mainnet",
        25: "cronos-mainnet",
        100: "gnosis-mainnet",
    }

    @property
    def name(self) -> str:
        """Unique identifier."""
        return "covalent"

    def metadata(self) -> ProviderMetadata:
        """Return adapter metadata."""
        return ProviderMetadata(
            name=self.name,
            display_name="Covalent",
            supported_chains=list(self.CHAIN_SLUGS.keys()),
            priority=1,
            base_url=self.BASE_URL,
            documentation_url="https://goldrush.dev/docs/api",
            api_key_env=self.API_KEY_ENV,
            has_price_data=True,
            tags=["balances", "transactions", "portfolio", "prices"],
        )

    @classmethod
    def default_policy(cls, call_timeout: float = 15.0) -> ResiliencePolicy:
        return ResiliencePolicy(
            rate_limiter=SlidingWindowRateLimiter(
                max_requests=100,
                window_seconds=60.0,
                margin_seconds=0.1,
                name="covalent",
            ),
            retry=RetryPolicy(delays=(2.0, 4.0, 8.0)),
            circuit_breaker=CircuitBreaker(failure_threshold=3, cooldown_seconds=300.0),
            call_timeout_seconds=call_timeout,
        )

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _address_url(self, address: str, chain_id: int, resource: str) -> str:
        return f"{self.BASE_URL}/{self.CHAIN_SLUGS[chain_id]}/address/{address}/{resource}/"

    def _check_envelope(self, response, chain_id: int) -> None:
        # Covalent reports some failures inside a 200 response
        if response.error:
            raise FetchError(
                message=response.error_message or "Covalent returned an error payload",
                provider_name=self.name,
                chain_id=chain_id,
            )

    async def _fetch_token_balances(
        self,
        address: str,
        chain_id: int,
    ) -> list[TokenBalance]:
        raw = await self._make_request(
            "GET",
            self._address_url(address, chain_id, "balances_v2"),
            chain_id=chain_id,
        )
        response = self._parse(CovalentBalancesResponse, raw, chain_id)
        self._check_envelope(response, chain_id)

        items = response.data.items if response.data else []
        return [
            TokenBalance(
                symbol=item.contract_ticker_symbol or "UNKNOWN",
                name=item.contract_name or "Unknown Token",
                balance=scale_amount(item.balance, item.contract_decimals),
                value=item.quote or 0.0,
                price=item.quote_rate or 0.0,
                chain_id=chain_id,
                contract_address=item.contract_address,
                decimals=item.contract_decimals,
                logo=item.logo_url,
                source_name=self.name,
            )
            for item in items
        ]

    async def _fetch_transactions(
        self,
        address: str,
        chain_id: int,
        page_size: int,
    ) -> list[Transaction]:
        raw = await self._make_request(
            "GET",
            self._address_url(address, chain_id, "transactions_v2"),
            params={"page-size": page_size},
            chain_id=chain_id,
        )
        response = self._parse(CovalentTransactionsResponse, raw, chain_id)
        self._check_envelope(response, chain_id)

        items = response.data.items if response.data else []
        return [
            Transaction(
                hash=tx.tx_hash,
                from_address=tx.from_address or "",
                to_address=tx.to_address or "",
                value=scale_amount(tx.value, 18),
                timestamp=ensure_utc(tx.block_signed_at),
                chain_id=chain_id,
                gas_used=tx.gas_spent or 0,
                gas_price_gwei=tx.gas_price / 1e9 if tx.gas_price else None,
                source_name=self.name,
            )
            for tx in items[:page_size]
        ]

    async def _fetch_portfolio_value(
        self,
        address: str,
        chain_id: int,
    ) -> float:
        raw = await self._make_request(
            "GET",
            self._address_url(address, chain_id, "portfolio_v2"),
            chain_id=chain_id,
        )
        response = self._parse(CovalentPortfolioResponse, raw, chain_id)
        self._check_envelope(response, chain_id)

        if not response.data:
            return 0.0

        # holdings are newest first; the latest close quote is the current value
        return sum(
            item.holdings[0].close.quote or 0.0
            for item in response.data.items
            if item.holdings
        )
