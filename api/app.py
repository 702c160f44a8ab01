"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
Face Login API.

The application provides:
- REST endpoints driving enrollment and verification
- WebSocket endpoint streaming session events
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes.session import router as session_router
from api.schemas import ErrorResponse, HealthResponse
from face_login.config import get_config, get_server_config
from face_login.errors import AttemptInProgress, DimensionMismatch, InvalidTransition
from face_login.matching import DEFAULT_THRESHOLD
from face_login.session import get_session

APP_NAME = "Face Login API"
APP_VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=get_config().get("logging", {}).get("level", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Build the session (embedding provider, template store, matcher)

    Runs on shutdown:
    - Close the template store
    """
    logger.info("=" * 60)
    logger.info(f"Starting {APP_NAME}")
    logger.info("=" * 60)

    session = get_session()
    enrolled = session.store.exists()
    logger.info(f"Template store ready: {'face enrolled' if enrolled else 'no face enrolled'}")

    # The embedding model is loaded lazily on the first capture

    logger.info("API startup complete!")

    yield

    logger.info("Shutting down API...")
    session.store.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=APP_NAME,
    description="""
Single-profile face login.

## Features
- **Enrollment**: Capture one face and store its embedding
- **Verification**: Compare a fresh capture with the enrolled face (Euclidean distance < threshold)
- **Events**: Subscribe to `/ws/session` for state changes and outcomes

Frames are sent as JSON: `{"frame": "<base64 JPEG>"}`
    """,
    version=APP_VERSION,
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins (adjust for production)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(session_router)


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(detail=str(exc), code="INVALID_TRANSITION").model_dump(),
    )


@app.exception_handler(AttemptInProgress)
async def attempt_in_progress_handler(request: Request, exc: AttemptInProgress):
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(detail=str(exc), code="ATTEMPT_IN_PROGRESS").model_dump(),
    )


@app.exception_handler(DimensionMismatch)
async def dimension_mismatch_handler(request: Request, exc: DimensionMismatch):
    logger.error(f"Configuration error: {exc}")
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(detail=str(exc), code="DIMENSION_MISMATCH").model_dump(),
    )


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the API and its dependencies.

    Returns status of:
    - Embedding backend (name, loaded/not loaded)
    - Whether a face is enrolled
    """
    session = get_session()
    provider = session.provider

    backend = getattr(provider, "backend", type(provider).__name__)
    model_loaded = bool(getattr(provider, "is_loaded", True))

    return HealthResponse(
        status="healthy" if backend is not None else "degraded",
        backend=backend,
        model_loaded=model_loaded,
        enrolled=session.store.exists(),
        threshold=getattr(session.matcher, "threshold", DEFAULT_THRESHOLD),
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    server = get_server_config()

    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "api.app:app",
        host=server["host"],
        port=server["port"],
        reload=True,
        log_level="info",
    )
