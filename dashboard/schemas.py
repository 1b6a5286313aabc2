"""
Pydantic schemas for the wallet analysis HTTP API.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# =======================
# COMMON
# =======================

class BaseResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

class ErrorResponse(BaseModel):
    error: str
    timeout: bool = False
    details: Optional[Dict[str, Any]] = None

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str = "1.0.0"
    uptime_seconds: float = 0

# =======================
# 1. WALLET ANALYSIS
# =======================

class AnalyzeRequest(BaseModel):
    # Optional so a missing address is reported as 400 rather than 422
    address: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={"example": {"address": "0x742ccf2e36aebe0ad95a00c7cc1d8cb9abbdbfe4"}}
    )

class TokenBalanceIn(BaseModel):
    symbol: str
    name: Optional[str] = None
    balance: float = 0.0
    value: float = 0.0
    price: float = 0.0
    chain_id: int = 1
    contract_address: Optional[str] = None
    decimals: Optional[int] = None

    model_config = ConfigDict(extra="ignore")

class TransactionIn(BaseModel):
    hash: str
    from_address: str = Field(default="", alias="from")
    to_address: str = Field(default="", alias="to")
    value: float = 0.0
    timestamp: datetime
    chain_id: int = 1
    gas_used: int = 0

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

class AIAnalysisRequest(BaseModel):
    # Same field names as the /api/wallet/analyze response, so it can be posted back
    address: Optional[str] = None
    total_value: Optional[float] = None
    token_balances: List[TokenBalanceIn] = Field(default_factory=list)
    transactions: List[TransactionIn] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

class AIAnalysisResponse(BaseModel):
    analysis: Dict[str, Any]
    summary_source: str
    summary_error: Optional[str] = None
    whale_score: int
    liquidation_risk: Dict[str, Any]

# =======================
# 2. DEFI
# =======================

class DeFiAnalysisResponse(BaseResponse):
    data: Dict[str, Any]

# =======================
# 3. PROVIDERS
# =======================

class ProviderStatusEntry(BaseModel):
    available: bool
    supported_chains: List[int]
    priority: int
    status: str  # healthy, degraded, unavailable, not_configured
    circuits: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

class ProviderStatusResponse(BaseResponse):
    providers: Dict[str, ProviderStatusEntry]
    available_count: int

class ProviderHealthDetail(BaseModel):
    status: str
    last_check: str
    latency_ms: Optional[float] = None
    error_count: int = 0
    last_error: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

class ProviderTestResponse(BaseResponse):
    results: Dict[str, ProviderHealthDetail]
