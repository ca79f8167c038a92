"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import webhooks, cron, matching

api_router = APIRouter()

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["webhooks"]
)

api_router.include_router(
    cron.router,
    prefix="/cron",
    tags=["cron"]
)

api_router.include_router(
    matching.router,
    prefix="/matching",
    tags=["matching"]
)
