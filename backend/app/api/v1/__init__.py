"""
API v1 Router

All versioned API endpoints.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import agent, market

router = APIRouter()

router.include_router(market.router, prefix="/marketdata", tags=["Market Data"])
router.include_router(agent.router, prefix="/agent", tags=["Agent"])
