"""
Portfolio Provider Exceptions - Custom exception hierarchy.

Every adapter failure is raised as a ProviderError subclass. The
aggregator catches them per provider and only ever surfaces
AggregateProviderError (or NoAvailableProviderError) for a whole
capability/chain.
"""

from datetime import datetime
from typing import Any, Optional


class ProviderError(Exception):
    """Base exception for all provider adapter errors."""

    # Transient errors are retried by the RetryPolicy
    transient: bool = False

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        chain_id: Optional[int] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_name = provider_name
        self.chain_id = chain_id
        self.original_error = original_error
        self.context = context or {}
        self.timestamp = datetime.utcnow()

    def is_transient(self) -> bool:
        """Whether a retry may succeed."""
        return self.transient

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "provider_name": self.provider_name,
            "chain_id": self.chain_id,
            "original_error": str(self.original_error) if self.original_error else None,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]
        if self.provider_name:
            parts.append(f"[provider={self.provider_name}]")
        if self.chain_id is not None:
            parts.append(f"[chain={self.chain_id}]")
        if self.original_error:
            parts.append(f"(caused by: {self.original_error})")
        return " ".join(parts)


class FetchError(ProviderError):
    """Error during data fetching from a vendor API."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        chain_id: Optional[int] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, chain_id, original_error, context)
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url

    def is_transient(self) -> bool:
        """429, 5xx and connection-level failures (no status) are transient."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "status_code": self.status_code,
            "response_body": self.response_body,
            "request_url": self.request_url,
        })
        return data


class RateLimitError(ProviderError):
    """Vendor rejected the call with HTTP 429."""

    transient = True

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        chain_id: Optional[int] = None,
        retry_after_seconds: Optional[float] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, chain_id, original_error, context)
        self.retry_after_seconds = retry_after_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["retry_after_seconds"] = self.retry_after_seconds
        return data


class NormalizationError(ProviderError):
    """Vendor response did not match the expected schema."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        chain_id: Optional[int] = None,
        raw_data: Optional[Any] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, chain_id, original_error, context)
        self.raw_data = raw_data

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["raw_data"] = str(self.raw_data)[:500] if self.raw_data else None
        return data


class ChainNotSupportedError(ProviderError):
    """Requested chain is not supported by the adapter."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        chain_id: Optional[int] = None,
        supported_chains: Optional[list[int]] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, chain_id, original_error, context)
        self.supported_chains = supported_chains or []

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["supported_chains"] = self.supported_chains
        return data


class ConfigurationError(ProviderError):
    """Adapter is missing required configuration (usually its API key)."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        config_key: Optional[str] = None,
        original_error: Optional[Exception] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, None, original_error, context)
        self.config_key = config_key

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["config_key"] = self.config_key
        return data


class CircuitOpenError(ProviderError):
    """Call short-circuited because the endpoint's breaker is open."""

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        chain_id: Optional[int] = None,
        endpoint: Optional[str] = None,
        retry_in_seconds: Optional[float] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, provider_name, chain_id, None, context)
        self.endpoint = endpoint
        self.retry_in_seconds = retry_in_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "endpoint": self.endpoint,
            "retry_in_seconds": self.retry_in_seconds,
        })
        return data


class NoAvailableProviderError(ProviderError):
    """No configured provider supports the requested chain."""

    def __init__(
        self,
        message: str,
        capability: Optional[str] = None,
        chain_id: Optional[int] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, chain_id, None, context)
        self.capability = capability

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data["capability"] = self.capability
        return data


class AggregateProviderError(ProviderError):
    """Every provider tried for one capability on one chain failed."""

    def __init__(
        self,
        message: str,
        capability: Optional[str] = None,
        chain_id: Optional[int] = None,
        errors: Optional[dict[str, str]] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, None, chain_id, None, context)
        self.capability = capability
        self.errors = errors or {}

    @property
    def attempted_providers(self) -> list[str]:
        """Providers tried, in the order they were tried."""
        return list(self.errors.keys())

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = super().to_dict()
        data.update({
            "capability": self.capability,
            "errors": self.errors,
        })
        return data
