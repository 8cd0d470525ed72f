"""
API v1 - REST endpoints for the cost-control engine.

- Synchronization with the estimate and maintenance (reset, recalculate, verify)
- Direct edits of cost-control items
"""
from fastapi import APIRouter

from .cost_control import router as cost_control_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(cost_control_router, tags=["Cost Control"])
