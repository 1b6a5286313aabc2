"""
Portfolio Provider Models - Normalized shapes shared by every vendor adapter.

Vendor-specific field names never leave the adapters; everything above
them speaks TokenBalance, Transaction and ProviderResult.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class ProviderStatus(Enum):
    """Health status of a provider adapter."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


class Capability(Enum):
    """Data capabilities every adapter exposes."""
    TOKEN_BALANCES = "token_balances"
    TRANSACTIONS = "transactions"
    PORTFOLIO_VALUE = "portfolio_value"


class TransactionType(Enum):
    """Coarse transaction classification."""
    TRANSFER = "transfer"
    SWAP = "swap"
    STAKE = "stake"
    LEND = "lend"
    BORROW = "borrow"
    LIQUIDITY = "liquidity"
    BRIDGE = "bridge"


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps so every Transaction sorts together."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TokenBalance:
    """
    One token position on one chain, as reported by one provider.

    value is balance * price in USD at fetch time and is never
    recomputed afterwards.
    """
    symbol: str
    name: str
    balance: float
    value: float
    price: float
    chain_id: int
    contract_address: Optional[str] = None
    decimals: Optional[int] = None
    logo: Optional[str] = None
    source_name: str = ""

    @property
    def identity_key(self) -> tuple[str, int]:
        """Deduplication key: (contract address or symbol, chain id)."""
        if self.contract_address:
            return (self.contract_address.lower(), self.chain_id)
        return (self.symbol, self.chain_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "symbol": self.symbol,
            "name": self.name,
            "balance": self.balance,
            "value": self.value,
            "price": self.price,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "decimals": self.decimals,
            "logo": self.logo,
            "source_name": self.source_name,
        }


@dataclass(frozen=True)
class Transaction:
    """A single on-chain transaction. Identity is the hash."""
    hash: str
    from_address: str
    to_address: str
    value: float
    timestamp: datetime
    chain_id: int
    gas_used: int = 0
    gas_price_gwei: Optional[float] = None
    tx_type: TransactionType = TransactionType.TRANSFER
    source_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "hash": self.hash,
            "from": self.from_address,
            "to": self.to_address,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "chain_id": self.chain_id,
            "gas_used": self.gas_used,
            "gas_price_gwei": self.gas_price_gwei,
            "type": self.tx_type.value,
            "source_name": self.source_name,
        }


@dataclass
class ProviderResult(Generic[T]):
    """
    A capability result plus where it came from.

    errors holds the providers that were tried first and failed, so a
    result served by a lower-priority vendor can be flagged as degraded.
    """
    data: T
    provider: str
    chain_id: int
    capability: Capability
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def used_fallback(self) -> bool:
        """True when a higher-priority provider failed before this one."""
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (data excluded)."""
        return {
            "provider": self.provider,
            "chain_id": self.chain_id,
            "capability": self.capability.value,
            "errors": self.errors,
            "used_fallback": self.used_fallback,
        }


@dataclass
class ProviderHealth:
    """Health status of a provider adapter."""
    status: ProviderStatus
    last_check: datetime
    latency_ms: Optional[float] = None
    rate_limit_remaining: Optional[int] = None
    error_count: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    consecutive_failures: int = 0
    requests_total: int = 0

    def is_healthy(self) -> bool:
        """Check if adapter is operational."""
        return self.status == ProviderStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "last_check": self.last_check.isoformat(),
            "latency_ms": self.latency_ms,
            "rate_limit_remaining": self.rate_limit_remaining,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_error_time": self.last_error_time.isoformat() if self.last_error_time else None,
            "consecutive_failures": self.consecutive_failures,
            "requests_total": self.requests_total,
        }


@dataclass
class ProviderMetadata:
    """Static description of a provider adapter."""
    name: str
    display_name: str
    supported_chains: list[int]
    priority: int
    base_url: str = ""
    documentation_url: str = ""
    requires_api_key: bool = True
    api_key_env: str = ""
    has_price_data: bool = True
    tags: list[str] = field(default_factory=list)

    def supports_chain(self, chain_id: int) -> bool:
        """Check if chain is supported."""
        return chain_id in self.supported_chains

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "display_name": self.display_name,
            "supported_chains": list(self.supported_chains),
            "priority": self.priority,
            "base_url": self.base_url,
            "documentation_url": self.documentation_url,
            "requires_api_key": self.requires_api_key,
            "api_key_env": self.api_key_env,
            "has_price_data": self.has_price_data,
            "tags": self.tags,
        }


@dataclass(frozen=True)
class ChainConfig:
    """Display and network metadata for one chain."""
    chain_id: int
    name: str
    display_name: str
    native_symbol: str
    native_name: str = ""
    native_decimals: int = 18
    rpc_url: str = ""
    block_explorer: str = ""
    logo: str = ""
    color: str = "#6B7280"
    is_mainnet: bool = True
    defi_protocols: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "chain_id": self.chain_id,
            "name": self.name,
            "display_name": self.display_name,
            "native_currency": {
                "name": self.native_name,
                "symbol": self.native_symbol,
                "decimals": self.native_decimals,
            },
            "rpc_url": self.rpc_url,
            "block_explorer": self.block_explorer,
            "logo": self.logo,
            "color": self.color,
            "is_mainnet": self.is_mainnet,
            "defi_protocols": list(self.defi_protocols),
        }
