"""
Health check endpoint.
Reports whether the storage backend is configured.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from r2upload.config import settings
from r2upload.storage.r2_client import R2Client, get_r2_client

router = APIRouter()


@router.get("")
async def health_check(r2: R2Client = Depends(get_r2_client)):
    """
    Health check endpoint.
    Returns 503 when storage credentials are missing.
    """
    health_status = {
        "status": "healthy",
        "storage": "configured",
        "bucket": settings.r2_bucket,
    }

    if not r2.is_configured:
        health_status["status"] = "unhealthy"
        health_status["storage"] = "not configured"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
