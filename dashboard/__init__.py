"""
Dashboard Package.

Thin HTTP surface over wallet analysis.

Modules:
- api: FastAPI application and route handlers
- schemas: request/response models

Run:
    uvicorn dashboard.api:app --port 8000
"""

from dashboard.api import app, get_orchestrator

__all__ = ["app", "get_orchestrator"]
