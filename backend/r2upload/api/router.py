"""
API router aggregator.
Includes all route modules.
"""
from fastapi import APIRouter
from r2upload.api import health, s3

api_router = APIRouter()

# Include route modules
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(s3.router, prefix="/s3", tags=["s3"])
