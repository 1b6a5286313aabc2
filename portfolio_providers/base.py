"""
Base Portfolio Provider Adapter - Abstract interface for every data vendor.

All adapters MUST:
- Return a valid (possibly empty) list/number or raise a ProviderError
- Parse vendor payloads through explicit schemas at this boundary
- Route every outbound call through their injected ResiliencePolicy
- Report "not configured" instead of crashing when credentials are absent
"""

import logging
import os
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from portfolio_providers.exceptions import (
    ChainNotSupportedError,
    ConfigurationError,
    FetchError,
    NormalizationError,
    ProviderError,
    RateLimitError,
)
from portfolio_providers.models import (
    Capability,
    ProviderHealth,
    ProviderMetadata,
    ProviderStatus,
    TokenBalance,
    Transaction,
)
from portfolio_providers.resilience import ResiliencePolicy


logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

# Well-known funded address used by health checks
HEALTH_CHECK_ADDRESS = "0x742CCF2e36AeBE0ad95A00c7cc1d8CB9aBBDBfE4"
HEALTH_CHECK_CHAIN_ID = 1


class BaseProviderAdapter(ABC):
    """
    Abstract base class for all portfolio data adapters.

    Each adapter must:
    1. Implement name / metadata() / default_policy()
    2. Implement _fetch_token_balances() - balances on one chain
    3. Implement _fetch_transactions() - recent transactions on one chain
    4. Implement _fetch_portfolio_value() - USD value on one chain

    The public get_* methods add the credential and chain checks and run
    the fetch under the adapter's ResiliencePolicy.
    """

    DEFAULT_TIMEOUT = 15.0
    DEFAULT_PAGE_SIZE = 100
    DEGRADED_THRESHOLD = 3
    UNAVAILABLE_THRESHOLD = 5
    API_KEY_ENV = ""

    def __init__(
        self,
        api_key: Optional[str] = None,
        policy: Optional[ResiliencePolicy] = None,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if api_key is None and self.API_KEY_ENV:
            api_key = os.environ.get(self.API_KEY_ENV, "")
        self._api_key = api_key or ""
        self._timeout = timeout
        self._policy = policy or self.default_policy(call_timeout=timeout)
        self._session = session
        self._owns_session = session is None

        self._health = ProviderHealth(
            status=ProviderStatus.UNKNOWN if self._api_key else ProviderStatus.NOT_CONFIGURED,
            last_check=datetime.utcnow(),
        )
        self._last_successful_request: Optional[datetime] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this adapter."""
        pass

    @abstractmethod
    def metadata(self) -> ProviderMetadata:
        """Static adapter metadata (chains, priority, docs)."""
        pass

    @classmethod
    @abstractmethod
    def default_policy(cls, call_timeout: float = DEFAULT_TIMEOUT) -> ResiliencePolicy:
        """Vendor-specific rate limit, retry schedule and breaker."""
        pass

    @abstractmethod
    async def _fetch_token_balances(
        self,
        address: str,
        chain_id: int,
    ) -> list[TokenBalance]:
        pass

    @abstractmethod
    async def _fetch_transactions(
        self,
        address: str,
        chain_id: int,
        page_size: int,
    ) -> list[Transaction]:
        pass

    @abstractmethod
    async def _fetch_portfolio_value(
        self,
        address: str,
        chain_id: int,
    ) -> float:
        pass

    # ─────────────────────────────────────────────────────────────
    # Public contract
    # ─────────────────────────────────────────────────────────────

    @property
    def policy(self) -> ResiliencePolicy:
        return self._policy

    @property
    def priority(self) -> int:
        return self.metadata().priority

    def is_available(self) -> bool:
        """True iff required credentials are configured. No I/O."""
        return bool(self._api_key)

    def supports_chain(self, chain_id: int) -> bool:
        """Static capability table lookup."""
        return self.metadata().supports_chain(chain_id)

    async def get_token_balances(
        self,
        address: str,
        chain_id: int,
    ) -> list[TokenBalance]:
        """Token balances held by address on chain_id."""
        self._require_usable(chain_id)
        return await self._call(
            Capability.TOKEN_BALANCES,
            chain_id,
            lambda: self._fetch_token_balances(address, chain_id),
        )

    async def get_transaction_history(
        self,
        address: str,
        chain_id: int,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> list[Transaction]:
        """Most recent transactions, bounded to page_size."""
        self._require_usable(chain_id)
        page_size = max(1, min(page_size, self.DEFAULT_PAGE_SIZE))
        return await self._call(
            Capability.TRANSACTIONS,
            chain_id,
            lambda: self._fetch_transactions(address, chain_id, page_size),
        )

    async def get_portfolio_value(
        self,
        address: str,
        chain_id: int,
    ) -> float:
        """USD value on chain_id; 0.0 means no priced data, failures raise."""
        self._require_usable(chain_id)
        return await self._call(
            Capability.PORTFOLIO_VALUE,
            chain_id,
            lambda: self._fetch_portfolio_value(address, chain_id),
        )

    async def health_check(self) -> ProviderHealth:
        """Check credentials, then call the balances endpoint once."""
        now = datetime.utcnow()
        if not self.is_available():
            self._health.status = ProviderStatus.NOT_CONFIGURED
            self._health.last_error = f"{self.API_KEY_ENV or 'API key'} not configured"
            self._health.last_check = now
            return self._health

        if not self.supports_chain(HEALTH_CHECK_CHAIN_ID):
            self._health.status = ProviderStatus.UNKNOWN
            self._health.last_error = "Health check chain not supported"
            self._health.last_check = now
            return self._health

        try:
            await self.get_token_balances(HEALTH_CHECK_ADDRESS, HEALTH_CHECK_CHAIN_ID)
        except ProviderError as e:
            logger.warning(f"[{self.name}] Health check failed: {e}")

        self._health.last_check = now
        return self._health

    def get_health(self) -> ProviderHealth:
        """Get current health status."""
        return self._health

    # ─────────────────────────────────────────────────────────────
    # Guarded calls
    # ─────────────────────────────────────────────────────────────

    def _require_usable(self, chain_id: int) -> None:
        if not self.is_available():
            raise ConfigurationError(
                message=f"{self.metadata().display_name} API key not configured",
                provider_name=self.name,
                config_key=self.API_KEY_ENV,
            )
        if not self.supports_chain(chain_id):
            raise ChainNotSupportedError(
                message=f"Chain {chain_id} not supported by {self.metadata().display_name}",
                provider_name=self.name,
                chain_id=chain_id,
                supported_chains=list(self.metadata().supported_chains),
            )

    async def _call(
        self,
        capability: Capability,
        chain_id: int,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        endpoint = f"{capability.value}:{chain_id}"
        try:
            result = await self._policy.call(
                operation,
                endpoint=endpoint,
                provider_name=self.name,
                chain_id=chain_id,
            )
        except ProviderError as e:
            if e.chain_id is None:
                e.chain_id = chain_id
            self._on_error(e)
            raise

        self._on_success()
        return result

    def _parse(self, model: type[M], raw: Any, chain_id: Optional[int] = None) -> M:
        """Validate a vendor payload against its schema."""
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            raise NormalizationError(
                message=f"Unexpected {model.__name__} payload",
                provider_name=self.name,
                chain_id=chain_id,
                raw_data=raw,
                original_error=e,
            )

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers=self._get_default_headers(),
            )
            self._owns_session = True
        return self._session

    def _get_default_headers(self) -> dict[str, str]:
        """Get default HTTP headers."""
        return {
            "Accept": "application/json",
            "User-Agent": "WalletAnalytics/1.0",
        }

    def _auth_headers(self) -> dict[str, str]:
        """Per-request credential headers. Override per vendor."""
        return {}

    async def _make_request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
        chain_id: Optional[int] = None,
    ) -> Any:
        """Make HTTP request and map failures onto the ProviderError hierarchy."""
        session = await self._get_session()
        request_headers = {**self._auth_headers(), **(headers or {})}

        start_time = time.time()
        try:
            async with session.request(
                method,
                url,
                params=params,
                headers=request_headers,
                json=json,
            ) as response:
                self._health.latency_ms = (time.time() - start_time) * 1000
                self._health.requests_total += 1
                self._parse_rate_limit_headers(response.headers)

                if response.status == 429:
                    raise RateLimitError(
                        message="Rate limit exceeded",
                        provider_name=self.name,
                        chain_id=chain_id,
                        retry_after_seconds=_parse_retry_after(
                            response.headers.get("Retry-After")
                        ),
                    )

                if response.status >= 400:
                    body = await response.text()
                    raise FetchError(
                        message=f"HTTP {response.status}",
                        provider_name=self.name,
                        chain_id=chain_id,
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=self._redact(url),
                    )

                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise NormalizationError(
                        message="Response body is not valid JSON",
                        provider_name=self.name,
                        chain_id=chain_id,
                        original_error=e,
                    )

        except aiohttp.ClientError as e:
            raise FetchError(
                message=f"Connection error: {e}",
                provider_name=self.name,
                chain_id=chain_id,
                request_url=self._redact(url),
                original_error=e,
            )

    def _redact(self, url: str) -> str:
        """Strip the API key from URLs that embed it."""
        if self._api_key and self._api_key in url:
            return url.replace(self._api_key, "***")
        return url

    def _parse_rate_limit_headers(self, headers: Any) -> None:
        """Parse rate limit info from response headers."""
        remaining = headers.get("X-RateLimit-Remaining") or headers.get("X-Rate-Limit-Remaining")
        if remaining:
            try:
                self._health.rate_limit_remaining = int(remaining)
            except ValueError:
                pass

    # ─────────────────────────────────────────────────────────────
    # Health Tracking
    # ─────────────────────────────────────────────────────────────

    def _on_success(self) -> None:
        """Handle successful request."""
        self._last_successful_request = datetime.utcnow()
        self._health.consecutive_failures = 0

        if self._health.status != ProviderStatus.HEALTHY:
            self._health.status = ProviderStatus.HEALTHY
            logger.info(f"[{self.name}] Recovered to HEALTHY status")

    def _on_error(self, error: ProviderError) -> None:
        """Handle request error."""
        self._health.error_count += 1
        self._health.consecutive_failures += 1
        self._health.last_error = str(error)
        self._health.last_error_time = datetime.utcnow()

        if isinstance(error, RateLimitError):
            self._health.status = ProviderStatus.RATE_LIMITED
        elif self._health.consecutive_failures >= self.UNAVAILABLE_THRESHOLD:
            if self._health.status != ProviderStatus.UNAVAILABLE:
                self._health.status = ProviderStatus.UNAVAILABLE
                logger.error(f"[{self.name}] Marked UNAVAILABLE")
        elif self._health.consecutive_failures >= self.DEGRADED_THRESHOLD:
            if self._health.status != ProviderStatus.DEGRADED:
                self._health.status = ProviderStatus.DEGRADED
                logger.warning(f"[{self.name}] Marked DEGRADED")

        logger.warning(f"[{self.name}] Call failed: {error}")

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "BaseProviderAdapter":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name={self.name}, status={self._health.status.value})>"


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def scale_amount(raw: Any, decimals: Optional[int]) -> float:
    """Convert an integer base-unit amount (decimal or 0x-hex string) to units."""
    if raw is None or raw == "":
        return 0.0
    if isinstance(raw, str) and raw.startswith("0x"):
        amount = int(raw, 16)
    else:
        amount = int(float(raw)) if isinstance(raw, float) else int(raw)
    return amount / (10 ** (decimals or 0))
