"""
FastAPI application entry point for the presigning broker.
Sets up logging, CORS, metrics and the /s3 routes.
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.exceptions import HTTPException as StarletteHTTPException

from r2upload import __version__
from r2upload.config import settings
from r2upload.api.router import api_router
from r2upload.middleware.metrics_middleware import MetricsMiddleware
from r2upload.storage.r2_client import get_r2_client
from r2upload.utils.logging import configure_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events.
    - Startup: configure logging and the storage client
    """
    # Configure structured JSON logging
    configure_logging('r2-upload-broker', settings.log_level)

    # Logs a warning when credentials are missing; /s3 routes then return 503
    get_r2_client()

    yield


# Create FastAPI app
app = FastAPI(
    title="R2 Upload Broker",
    description="Issues presigned URLs for direct uploads to R2",
    version=__version__,
    lifespan=lifespan
)

# CORS middleware (browser uploads from any origin)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics middleware (must be after CORS to track all requests)
app.add_middleware(MetricsMiddleware)

# Include API routes
app.include_router(api_router)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Errors are returned as {"error": "..."}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Invalid request bodies are 400s, not FastAPI's default 422."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid request body"
    return JSONResponse(status_code=400, content={"error": message})


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "R2 Upload Broker",
        "version": __version__,
        "environment": settings.environment
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
