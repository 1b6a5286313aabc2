"""
Dashboard - API.

============================================================
RESPONSIBILITY
============================================================
Thin REST surface over wallet analysis. Route handlers only map
requests to the orchestrator and terminal errors to status codes:

    ValidationError       -> 400
    AnalysisTimeoutError  -> 408 {error, timeout: true}
    AcquisitionError      -> 502

Routes: wallet analysis, DeFi analysis, summary of client-held data,
provider diagnostics.
============================================================
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dashboard.schemas import (
    AIAnalysisRequest,
    AIAnalysisResponse,
    AnalyzeRequest,
    DeFiAnalysisResponse,
    ErrorResponse,
    HealthResponse,
    ProviderHealthDetail,
    ProviderStatusEntry,
    ProviderStatusResponse,
    ProviderTestResponse,
    TokenBalanceIn,
    TransactionIn,
)
from portfolio_providers.models import TokenBalance, Transaction, ensure_utc
from wallet_analysis import (
    AcquisitionError,
    AnalysisTimeoutError,
    ValidationError,
    WalletAnalysisError,
    WalletAnalysisOrchestrator,
    close_default_orchestrator,
    get_default_orchestrator,
)

load_dotenv()

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def get_orchestrator() -> WalletAnalysisOrchestrator:
    """Process-wide orchestrator; overridden in tests."""
    return get_default_orchestrator()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Overrides belong to whoever installed them; only the default is ours
    await close_default_orchestrator()
    logger.info("Wallet analysis API shut down")


# ============================================================
# FastAPI Application
# ============================================================

app = FastAPI(
    title="Wallet Analysis API",
    description="Cross-chain wallet portfolio analysis",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Startup time for uptime calculation
_startup_time = datetime.utcnow()


def _error(status_code: int, message: str, timeout: bool = False,
           details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    body = ErrorResponse(error=message, timeout=timeout, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _analysis_error(address: str, error: WalletAnalysisError) -> JSONResponse:
    if isinstance(error, ValidationError):
        return _error(400, error.message)
    if isinstance(error, AnalysisTimeoutError):
        return _error(408, error.message, timeout=True)

    logger.error(f"Analysis failed for {address}: {error.message}")
    chain_errors = getattr(error, "chain_errors", {})
    return _error(
        502,
        error.message,
        details={str(chain): errors for chain, errors in chain_errors.items()},
    )


def _token_balance(item: TokenBalanceIn) -> TokenBalance:
    return TokenBalance(
        symbol=item.symbol,
        name=item.name or item.symbol,
        balance=item.balance,
        value=item.value,
        price=item.price,
        chain_id=item.chain_id,
        contract_address=item.contract_address,
        decimals=item.decimals,
        source_name="client",
    )


def _transaction(item: TransactionIn) -> Transaction:
    return Transaction(
        hash=item.hash,
        from_address=item.from_address,
        to_address=item.to_address,
        value=item.value,
        timestamp=ensure_utc(item.timestamp),
        chain_id=item.chain_id,
        gas_used=item.gas_used,
        source_name="client",
    )


# ============================================================
# API Endpoints
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    uptime = (datetime.utcnow() - _startup_time).total_seconds()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow().isoformat(),
        version=API_VERSION,
        uptime_seconds=uptime,
    )


@app.post("/api/wallet/analyze", tags=["Wallet"])
async def analyze_wallet(
    payload: Optional[AnalyzeRequest] = None,
    orchestrator: WalletAnalysisOrchestrator = Depends(get_orchestrator),
):
    """Run a full analysis for one wallet address."""
    address = payload.address if payload else None
    if not address:
        return _error(400, "Wallet address is required")

    try:
        snapshot = await orchestrator.analyze_wallet(address)
    except (ValidationError, AnalysisTimeoutError, AcquisitionError) as e:
        return _analysis_error(address, e)

    return snapshot.to_dict()


@app.post("/api/ai-analysis", response_model=AIAnalysisResponse, tags=["Wallet"])
async def ai_analysis(
    payload: Optional[AIAnalysisRequest] = None,
    orchestrator: WalletAnalysisOrchestrator = Depends(get_orchestrator),
):
    """Summarize holdings the client already has, e.g. a previous analysis result."""
    address = payload.address if payload else None
    if not address:
        return _error(400, "Wallet address is required")

    try:
        snapshot = await orchestrator.summarize_portfolio(
            address,
            [_token_balance(item) for item in payload.token_balances],
            [_transaction(item) for item in payload.transactions],
            total_value=payload.total_value,
        )
    except ValidationError as e:
        return _error(400, e.message)

    return AIAnalysisResponse(
        analysis=snapshot.analysis.to_dict(),
        summary_source=snapshot.summary_source,
        summary_error=snapshot.provenance.summary_error,
        whale_score=snapshot.whale_score,
        liquidation_risk=snapshot.liquidation_risk.to_dict(),
    )


@app.get("/api/defi-analysis", response_model=DeFiAnalysisResponse, tags=["DeFi"])
async def defi_analysis(
    address: Optional[str] = None,
    orchestrator: WalletAnalysisOrchestrator = Depends(get_orchestrator),
):
    """DeFi positions and liquidation risk for one wallet."""
    if not address:
        return _error(400, "Wallet address is required")

    try:
        analysis = await orchestrator.analyze_defi(address)
    except (ValidationError, AnalysisTimeoutError, AcquisitionError) as e:
        return _analysis_error(address, e)

    return DeFiAnalysisResponse(success=True, data=analysis.to_dict())


@app.get("/api/providers/status", response_model=ProviderStatusResponse, tags=["Providers"])
async def providers_status(
    orchestrator: WalletAnalysisOrchestrator = Depends(get_orchestrator),
):
    """Which providers are configured and which chains each serves."""
    snapshot = orchestrator.registry.status_snapshot()
    providers = {name: ProviderStatusEntry(**entry) for name, entry in snapshot.items()}
    return ProviderStatusResponse(
        success=True,
        providers=providers,
        available_count=sum(1 for entry in providers.values() if entry.available),
    )


@app.get("/api/providers/test", response_model=ProviderTestResponse, tags=["Providers"])
async def providers_test(
    orchestrator: WalletAnalysisOrchestrator = Depends(get_orchestrator),
):
    """Health-check every provider with one cheap call."""
    health = await orchestrator.registry.health_check_all()
    results = {
        name: ProviderHealthDetail(**status.to_dict())
        for name, status in health.items()
    }
    healthy = [name for name, status in health.items() if status.is_healthy()]
    return ProviderTestResponse(
        success=bool(healthy),
        message=f"{len(healthy)}/{len(results)} providers healthy",
        results=results,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
