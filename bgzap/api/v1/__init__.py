"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- /api/v1/process/*    - Background removal and orchestrator state
- /api/v1/credentials  - API token management for the remote backend
- /api/v1/metrics      - Prometheus metrics
"""

from fastapi import APIRouter

from bgzap.api.v1.process import router as process_router
from bgzap.api.v1.credentials import router as credentials_router
from bgzap.api.v1.metrics import router as metrics_router

api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(process_router, prefix="/process", tags=["processing"])
api_v1_router.include_router(credentials_router, prefix="/credentials", tags=["credentials"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
