"""
Wallet Analysis Exceptions.

Callers of analyze_wallet only ever see ValidationError,
AcquisitionError or AnalysisTimeoutError. SummaryGenerationError is
raised by summary generators and always recovered inside the
orchestrator.
"""

from datetime import datetime
from typing import Any, Optional


class WalletAnalysisError(Exception):
    """Base exception for wallet analysis failures."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.address = address
        self.details = details or {}
        self.original_error = original_error
        self.timestamp = datetime.utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "address": self.address,
            "retryable": self.retryable,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(WalletAnalysisError):
    """Malformed wallet address."""


class AcquisitionError(WalletAnalysisError):
    """No usable data from any provider on any chain."""

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        chain_errors: Optional[dict[int, dict[str, str]]] = None,
        original_error: Optional[Exception] = None,
    ) -> None:
        super().__init__(
            message,
            address=address,
            details={"chain_errors": chain_errors or {}},
            original_error=original_error,
        )
        self.chain_errors = chain_errors or {}


class AnalysisTimeoutError(WalletAnalysisError):
    """The outer analysis deadline elapsed. Safe to try again."""

    retryable = True

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
        deadline_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(
            message,
            address=address,
            details={"deadline_seconds": deadline_seconds},
        )
        self.deadline_seconds = deadline_seconds


class SummaryGenerationError(WalletAnalysisError):
    """The primary summary generator could not produce a summary."""


class ConfigurationError(WalletAnalysisError):
    """AnalysisConfig failed validation."""
