"""
Wallet Analysis Configuration.

Environment-driven settings for one analysis: which chains to scan and
the time budget of each stage.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_CHAIN_IDS = [1, 137, 56, 43114, 42161, 10, 8453, 250, 25]


def _parse_chain_ids(value: Optional[str]) -> List[int]:
    if not value:
        return list(DEFAULT_CHAIN_IDS)
    return [int(part) for part in value.split(",") if part.strip()]


@dataclass
class AnalysisConfig:
    """Configuration for the wallet analysis orchestrator."""

    chain_ids: List[int] = field(default_factory=lambda: list(DEFAULT_CHAIN_IDS))

    # Outer deadline; must stay under the host's 30s request timeout
    analysis_deadline_seconds: float = 25.0
    # Cross-chain fan-out budget; pending chain fetches are cancelled after it
    acquisition_budget_seconds: float = 18.0
    summary_timeout_seconds: float = 5.0
    provider_call_timeout_seconds: float = 15.0

    max_chain_concurrency: int = 5
    transaction_limit: int = 50

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o"

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AnalysisConfig":
        """Load configuration from environment variables."""
        return cls(
            chain_ids=_parse_chain_ids(os.getenv("WALLET_CHAIN_IDS")),
            analysis_deadline_seconds=float(os.getenv("ANALYSIS_DEADLINE_SECONDS", "25")),
            acquisition_budget_seconds=float(os.getenv("ACQUISITION_BUDGET_SECONDS", "18")),
            summary_timeout_seconds=float(os.getenv("SUMMARY_TIMEOUT_SECONDS", "5")),
            provider_call_timeout_seconds=float(os.getenv("PROVIDER_CALL_TIMEOUT_SECONDS", "15")),
            max_chain_concurrency=int(os.getenv("MAX_CHAIN_CONCURRENCY", "5")),
            transaction_limit=int(os.getenv("TRANSACTION_LIMIT", "50")),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.chain_ids:
            errors.append("chain_ids must not be empty")

        for name in (
            "analysis_deadline_seconds",
            "acquisition_budget_seconds",
            "summary_timeout_seconds",
            "provider_call_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be positive")

        if self.analysis_deadline_seconds <= self.acquisition_budget_seconds:
            errors.append(
                "analysis_deadline_seconds must be greater than acquisition_budget_seconds"
            )

        if self.max_chain_concurrency < 1:
            errors.append("max_chain_concurrency must be at least 1")

        if self.transaction_limit < 1:
            errors.append("transaction_limit must be at least 1")

        return errors
