from fastapi import APIRouter

from benchmarkai.api.routes import checkout, generation, health, reports, webhooks

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(checkout.router, tags=["checkout"])
api_router.include_router(generation.router, tags=["generation"])
api_router.include_router(webhooks.router, tags=["webhooks"])
