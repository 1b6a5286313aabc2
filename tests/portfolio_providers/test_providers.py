"""
Vendor Adapter Tests.

============================================================
PURPOSE
============================================================
Each adapter is exercised against recorded-shape vendor payloads
with _make_request patched out.

TEST CATEGORIES:
- Normalization: vendor fields -> TokenBalance / Transaction
- Schema errors: unexpected payloads -> NormalizationError
- Guards: missing credentials, unsupported chains
- HTTP mapping: status codes -> ProviderError subclasses

============================================================
"""

from datetime import timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from portfolio_providers.base import HEALTH_CHECK_ADDRESS, scale_amount
from portfolio_providers.exceptions import (
    ChainNotSupportedError,
    ConfigurationError,
    FetchError,
    NormalizationError,
    RateLimitError,
)
from portfolio_providers.models import ProviderStatus
from portfolio_providers.providers import AlchemyAdapter, CovalentAdapter, MoralisAdapter
from portfolio_providers.resilience import (
    ResiliencePolicy,
    RetryPolicy,
    SlidingWindowRateLimiter,
)

from tests.conftest import WALLET, fast_policy


def covalent() -> CovalentAdapter:
    return CovalentAdapter(api_key="cov-key", policy=fast_policy())


def moralis() -> MoralisAdapter:
    return MoralisAdapter(api_key="mor-key", policy=fast_policy())


def alchemy() -> AlchemyAdapter:
    return AlchemyAdapter(api_key="alc-key", policy=fast_policy())


class CountingLimiter(SlidingWindowRateLimiter):
    """Records how many slots were taken."""

    acquired = 0

    async def acquire(self) -> float:
        self.acquired += 1
        return await super().acquire()


# ============================================================
# HELPERS
# ============================================================

class TestScaleAmount:
    """Tests for scale_amount."""

    def test_decimal_string(self):
        assert scale_amount("2500000000", 6) == 2500.0

    def test_hex_string(self):
        assert scale_amount("0x0de0b6b3a7640000", 18) == 1.0

    def test_missing_values(self):
        assert scale_amount(None, 18) == 0.0
        assert scale_amount("", 18) == 0.0

    def test_no_decimals(self):
        assert scale_amount(42, None) == 42.0


# ============================================================
# COVALENT
# ============================================================

class TestCovalentAdapter:
    """Tests for CovalentAdapter."""

    @pytest.mark.asyncio
    async def test_token_balances_are_normalized(self):
        adapter = covalent()
        payload = {
            "data": {
                "items": [
                    {
                        "contract_ticker_symbol": "USDC",
                        "contract_name": "USD Coin",
                        "contract_address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
                        "contract_decimals": 6,
                        "balance": "2500000000",
                        "quote": 2500.0,
                        "quote_rate": 1.0,
                    },
                    {
                        "contract_decimals": 18,
                        "balance": "1000000000000000000",
                    },
                ]
            },
            "error": False,
        }

        with patch.object(adapter, "_make_request", AsyncMock(return_value=payload)) as request:
            balances = await adapter.get_token_balances(WALLET, 1)

        assert len(balances) == 2
        usdc = balances[0]
        assert usdc.symbol == "USDC"
        assert usdc.balance == 2500.0
        assert usdc.value == 2500.0
        assert usdc.price == 1.0
        assert usdc.chain_id == 1
        assert usdc.source_name == "covalent"
        assert balances[1].symbol == "UNKNOWN"
        assert balances[1].value == 0.0

        url = request.call_args.args[1]
        assert url.endswith(f"/eth-mainnet/address/{WALLET}/balances_v2/")

    @pytest.mark.asyncio
    async def test_transactions_are_normalized(self):
        adapter = covalent()
        payload = {
            "data": {
                "items": [
                    {
                        "tx_hash": "0xabc",
                        "from_address": WALLET,
                        "to_address": "0xdef",
                        "value": "1500000000000000000",
                        "block_signed_at": "2024-01-02T03:04:05Z",
                        "gas_spent": 21000,
                        "gas_price": 20000000000,
                    }
                ]
            },
            "error": False,
        }

        with patch.object(adapter, "_make_request", AsyncMock(return_value=payload)) as request:
            txs = await adapter.get_transaction_history(WALLET, 137, page_size=10)

        assert request.call_args.kwargs["params"] == {"page-size": 10}
        assert len(txs) == 1
        tx = txs[0]
        assert tx.hash == "0xabc"
        assert tx.value == 1.5
        assert tx.gas_used == 21000
        assert tx.gas_price_gwei == 20.0
        assert tx.timestamp.tzinfo == timezone.utc
        assert tx.chain_id == 137

    @pytest.mark.asyncio
    async def test_portfolio_value_uses_latest_close_quote(self):
        adapter = covalent()
        payload = {
            "data": {
                "items": [
                    {"holdings": [{"close": {"quote": 100.0}}, {"close": {"quote": 90.0}}]},
                    {"holdings": [{"close": {"quote": 50.5}}]},
                    {"holdings": []},
                ]
            },
            "error": False,
        }

        with patch.object(adapter, "_make_request", AsyncMock(return_value=payload)):
            value = await adapter.get_portfolio_value(WALLET, 1)

        assert value == pytest.approx(150.5)

    @pytest.mark.asyncio
    async def test_schema_mismatch_raises_normalization_error(self):
        adapter = covalent()
        payload = {"data": {"items": [{"contract_decimals": "not-a-number"}]}}

        with patch.object(adapter, "_make_request", AsyncMock(return_value=payload)):
            with pytest.raises(NormalizationError) as exc_info:
                await adapter.get_token_balances(WALLET, 1)

        assert exc_info.value.provider_name == "covalent"
        assert exc_info.value.chain_id == 1

    @pytest.mark.asyncio
    async def test_error_envelope_raises_fetch_error(self):
        adapter = covalent()
        payload = {"data": None, "error": True, "error_message": "Malformed address"}

        with patch.object(adapter, "_make_request", AsyncMock(return_value=payload)):
            with pytest.raises(FetchError, match="Malformed address"):
                await adapter.get_token_balances(WALLET, 1)

    def test_auth_header(self):
        assert covalent()._auth_headers() == {"Authorization": "Bearer cov-key"}

    def test_metadata(self):
        metadata = covalent().metadata()
        assert metadata.priority == 1
        assert 100 in metadata.supported_chains
        assert metadata.has_price_data is True


# ============================================================
# MORALIS
# ============================================================

class TestMoralisAdapter:
    """Tests for MoralisAdapter."""

    ERC20 = [
        {
            "token_address": "0xlink",
            "symbol": "LINK",
            "name": "Chainlink",
            "decimals": 18,
            "balance": "2000000000000000000",
            "usd_price": 15.0,
            "usd_value": 30.0,
        },
        {
            "token_address": "0xspam",
            "symbol": "FREE",
            "decimals": 18,
            "balance": "1000",
            "possible_spam": True,
            "usd_value": 999.0,
        },
        {
            "token_address": "0xempty",
            "symbol": "ZERO",
            "decimals": 18,
            "balance": "0",
        },
    ]

    @pytest.mark.asyncio
    async def test_spam_and_zero_balances_are_dropped(self):
        adapter = moralis()

        with patch.object(adapter, "_make_request", AsyncMock(return_value=self.ERC20)) as request:
            balances = await adapter.get_token_balances(WALLET, 137)

        assert [t.symbol for t in balances] == ["LINK"]
        assert balances[0].balance == 2.0
        assert balances[0].value == 30.0
        params = request.call_args.kwargs["params"]
        assert params == {"chain": "polygon", "exclude_spam": "true"}

    @pytest.mark.asyncio
    async def test_portfolio_value_sums_usd_values(self):
        adapter = moralis()

        with patch.object(adapter, "_make_request", AsyncMock(return_value=self.ERC20)):
            value = await adapter.get_portfolio_value(WALLET, 1)

        assert value == 30.0

    @pytest.mark.asyncio
    async def test_transactions_are_normalized(self):
        adapter = moralis()
        payload = {
            "result": [
                {
                    "hash": "0x1",
                    "from_address": WALLET,
                    "to_address": "0x2",
                    "value": "1000000000000000000",
                    "gas_price": "30000000000",
                    "receipt_gas_used": "21000",
                    "block_timestamp": "2024-03-01T12:00:00.000Z",
                }
            ],
            "cursor": None,
        }

        with patch.object(adapter, "_make_request", AsyncMock(return_value=payload)) as request:
            txs = await adapter.get_transaction_history(WALLET, 1, page_size=5)

        assert request.call_args.kwargs["params"]["limit"] == 5
        assert request.call_args.kwargs["params"]["order"] == "DESC"
        assert txs[0].value == 1.0
        assert txs[0].gas_price_gwei == 30.0
        assert txs[0].gas_used == 21000

    @pytest.mark.asyncio
    async def test_non_list_payload_raises_normalization_error(self):
        adapter = moralis()

        with patch.object(adapter, "_make_request", AsyncMock(return_value={"message": "oops"})):
            with pytest.raises(NormalizationError):
                await adapter.get_token_balances(WALLET, 1)

    @pytest.mark.asyncio
    async def test_unsupported_chain(self):
        adapter = moralis()
        request = AsyncMock()

        with patch.object(adapter, "_make_request", request):
            with pytest.raises(ChainNotSupportedError) as exc_info:
                await adapter.get_token_balances(WALLET, 100)

        request.assert_not_called()
        assert 1 in exc_info.value.supported_chains


# ============================================================
# ALCHEMY
# ============================================================

class TestAlchemyAdapter:
    """Tests for AlchemyAdapter."""

    @staticmethod
    def rpc_router(responses):
        async def route(method, url, params=None, headers=None, json=None, chain_id=None):
            rpc_method = json["method"]
            if rpc_method == "alchemy_getTokenMetadata":
                return responses[(rpc_method, json["params"][0])]
            return responses[rpc_method]
        return route

    @pytest.mark.asyncio
    async def test_token_balances_skip_zero_and_failed_metadata(self):
        adapter = alchemy()
        responses = {
            "alchemy_getTokenBalances": {
                "id": 1,
                "result": {
                    "address": WALLET,
                    "tokenBalances": [
                        {"contractAddress": "0xaaa", "tokenBalance": "0x0de0b6b3a7640000"},
                        {"contractAddress": "0xbbb", "tokenBalance": "0x0"},
                        {"contractAddress": "0xccc", "tokenBalance": "0x01"},
                    ],
                },
            },
            ("alchemy_getTokenMetadata", "0xaaa"): {
                "id": 1,
                "result": {"symbol": "LINK", "name": "Chainlink", "decimals": 18},
            },
            ("alchemy_getTokenMetadata", "0xccc"): {
                "id": 1,
                "error": {"code": -32602, "message": "invalid params"},
            },
        }

        with patch.object(adapter, "_make_request", side_effect=self.rpc_router(responses)) as request:
            balances = await adapter.get_token_balances(WALLET, 1)

        assert len(balances) == 1
        assert balances[0].symbol == "LINK"
        assert balances[0].balance == 1.0
        assert balances[0].value == 0.0
        assert balances[0].price == 0.0
        # balances + two metadata lookups; the zero balance is never looked up
        assert request.call_count == 3
        assert "alc-key" in request.call_args.args[1]

    @pytest.mark.asyncio
    async def test_rpc_error_raises_permanent_fetch_error(self):
        adapter = alchemy()
        responses = {
            "alchemy_getTokenBalances": {
                "id": 1,
                "error": {"code": -32602, "message": "invalid address"},
            },
        }

        with patch.object(adapter, "_make_request", side_effect=self.rpc_router(responses)):
            with pytest.raises(FetchError) as exc_info:
                await adapter.get_token_balances(WALLET, 1)

        assert exc_info.value.status_code == 400
        assert exc_info.value.is_transient() is False

    @pytest.mark.asyncio
    async def test_transfers_without_timestamp_are_skipped(self):
        adapter = alchemy()
        responses = {
            "alchemy_getAssetTransfers": {
                "id": 1,
                "result": {
                    "transfers": [
                        {
                            "hash": "0x1",
                            "from": WALLET,
                            "to": "0x2",
                            "value": 0.5,
                            "asset": "ETH",
                            "metadata": {"blockTimestamp": "2024-05-01T00:00:00.000Z"},
                        },
                        {"hash": "0x2", "metadata": {}},
                    ]
                },
            },
        }

        with patch.object(adapter, "_make_request", side_effect=self.rpc_router(responses)) as request:
            txs = await adapter.get_transaction_history(WALLET, 1, page_size=5)

        assert [tx.hash for tx in txs] == ["0x1"]
        assert txs[0].from_address == WALLET
        assert txs[0].value == 0.5
        sent = request.call_args.kwargs["json"]["params"][0]
        assert sent["maxCount"] == "0x5"
        assert sent["fromAddress"] == WALLET

    @staticmethod
    def many_tokens(count):
        async def route(method, url, params=None, headers=None, json=None, chain_id=None):
            if json["method"] == "alchemy_getTokenBalances":
                return {
                    "id": 1,
                    "result": {
                        "tokenBalances": [
                            {"contractAddress": f"0x{i:040x}", "tokenBalance": "0x01"}
                            for i in range(count)
                        ],
                    },
                }
            contract = json["params"][0]
            return {"id": 1, "result": {"symbol": f"T{contract[-3:]}", "decimals": 0}}
        return route

    @pytest.mark.asyncio
    async def test_every_metadata_lookup_takes_a_rate_limit_slot(self, fake_clock):
        limiter = CountingLimiter(5, 1.0, clock=fake_clock, sleep=fake_clock.sleep)
        policy = ResiliencePolicy(rate_limiter=limiter, retry=RetryPolicy(delays=()), sleep=fake_clock.sleep)
        adapter = AlchemyAdapter(api_key="alc-key", policy=policy)

        with patch.object(adapter, "_make_request", side_effect=self.many_tokens(20)) as request:
            balances = await adapter.get_token_balances(WALLET, 1)

        assert len(balances) == 20
        assert request.call_count == 21
        assert limiter.acquired == request.call_count
        # 21 requests at 5/s: waits before the 6th, 11th, 16th and 21st
        assert len(fake_clock.sleeps) == 4

    @pytest.mark.asyncio
    async def test_metadata_is_cached_across_calls(self):
        adapter = alchemy()

        with patch.object(adapter, "_make_request", side_effect=self.many_tokens(3)) as request:
            await adapter.get_token_balances(WALLET, 1)
            await adapter.get_token_balances(WALLET, 1)

        # 1 + 3 lookups, then only the balances call
        assert request.call_count == 5

    def test_no_price_data(self):
        metadata = alchemy().metadata()
        assert metadata.has_price_data is False
        assert metadata.priority == 3
        assert 43114 not in metadata.supported_chains


# ============================================================
# SHARED GUARDS
# ============================================================

class TestAdapterGuards:
    """Credential checks and health reporting common to every adapter."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("adapter_cls", [CovalentAdapter, MoralisAdapter, AlchemyAdapter])
    async def test_missing_key_raises_configuration_error(self, adapter_cls):
        adapter = adapter_cls(api_key="", policy=fast_policy())
        request = AsyncMock()

        assert adapter.is_available() is False
        with patch.object(adapter, "_make_request", request):
            with pytest.raises(ConfigurationError) as exc_info:
                await adapter.get_token_balances(WALLET, 1)

        request.assert_not_called()
        assert exc_info.value.config_key == adapter_cls.API_KEY_ENV

    def test_key_read_from_environment(self, monkeypatch):
        monkeypatch.setenv("MORALIS_API_KEY", "from-env")

        assert MoralisAdapter(policy=fast_policy()).is_available() is True

    @pytest.mark.asyncio
    async def test_health_check_not_configured(self):
        adapter = CovalentAdapter(api_key="", policy=fast_policy())

        health = await adapter.health_check()

        assert health.status == ProviderStatus.NOT_CONFIGURED
        assert "COVALENT_API_KEY" in health.last_error

    @pytest.mark.asyncio
    async def test_health_check_calls_balances(self):
        adapter = moralis()

        with patch.object(adapter, "_make_request", AsyncMock(return_value=[])) as request:
            health = await adapter.health_check()

        assert health.status == ProviderStatus.HEALTHY
        assert HEALTH_CHECK_ADDRESS in request.call_args.args[1]

    @pytest.mark.asyncio
    async def test_repeated_failures_degrade_health(self):
        adapter = covalent()
        error = FetchError("HTTP 404", status_code=404)

        with patch.object(adapter, "_make_request", AsyncMock(side_effect=error)):
            for _ in range(3):
                with pytest.raises(FetchError):
                    await adapter.get_token_balances(WALLET, 1)

        health = adapter.get_health()
        assert health.status == ProviderStatus.DEGRADED
        assert health.consecutive_failures == 3
        assert health.error_count == 3

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_session(self):
        async with covalent() as adapter:
            session = await adapter._get_session()

        assert session.closed


# ============================================================
# HTTP ERROR MAPPING
# ============================================================

def fake_session(status, headers=None, body="", payload=None):
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.text = AsyncMock(return_value=body)
    response.json = AsyncMock(return_value=payload)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.closed = False
    session.request = MagicMock(return_value=context)
    return session


class TestMakeRequest:
    """Tests for BaseProviderAdapter._make_request."""

    @pytest.mark.asyncio
    async def test_success_returns_json_and_sends_auth(self):
        session = fake_session(200, headers={"X-RateLimit-Remaining": "42"}, payload={"ok": 1})
        adapter = CovalentAdapter(api_key="cov-key", policy=fast_policy(), session=session)

        result = await adapter._make_request("GET", "https://example.test/x", chain_id=1)

        assert result == {"ok": 1}
        headers = session.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer cov-key"
        assert adapter.get_health().rate_limit_remaining == 42

    @pytest.mark.asyncio
    async def test_429_maps_to_rate_limit_error(self):
        session = fake_session(429, headers={"Retry-After": "3"})
        adapter = MoralisAdapter(api_key="k", policy=fast_policy(), session=session)

        with pytest.raises(RateLimitError) as exc_info:
            await adapter._make_request("GET", "https://example.test/x")

        assert exc_info.value.retry_after_seconds == 3.0

    @pytest.mark.asyncio
    async def test_server_error_maps_to_transient_fetch_error(self):
        session = fake_session(502, body="bad gateway")
        adapter = MoralisAdapter(api_key="k", policy=fast_policy(), session=session)

        with pytest.raises(FetchError) as exc_info:
            await adapter._make_request("GET", "https://example.test/x")

        assert exc_info.value.status_code == 502
        assert exc_info.value.response_body == "bad gateway"
        assert exc_info.value.is_transient()

    @pytest.mark.asyncio
    async def test_api_key_is_redacted_from_error_url(self):
        session = fake_session(401, body="unauthorized")
        adapter = AlchemyAdapter(api_key="secret-key", policy=fast_policy(), session=session)

        with pytest.raises(FetchError) as exc_info:
            await adapter._make_request("POST", adapter._rpc_url(1), json={})

        assert "secret-key" not in exc_info.value.request_url
        assert exc_info.value.is_transient() is False

    @pytest.mark.asyncio
    async def test_invalid_json_maps_to_normalization_error(self):
        session = fake_session(200)
        session.request.return_value.__aenter__.return_value.json = AsyncMock(
            side_effect=ValueError("not json")
        )
        adapter = MoralisAdapter(api_key="k", policy=fast_policy(), session=session)

        with pytest.raises(NormalizationError):
            await adapter._make_request("GET", "https://example.test/x")
