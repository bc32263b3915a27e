"""
Nyumba API - Main FastAPI Application Entry Point

AI room analysis and product recommendations for Kenyan homes.
Combines all routers and middleware into a single FastAPI application.

Run with:
    uvicorn nyumba.api.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from nyumba.api.routes_analysis import router as analysis_router
from nyumba.errors import AnalysisError, AssetNotFoundError, MediaProcessingError, ValidationError
from nyumba.services.pipeline import drain_runs

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await drain_runs()


app = FastAPI(
    title="Nyumba API",
    description="Room-to-recommendation pipeline for Kenyan interior design",
    version="0.1.0",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for MVP -- restrict in production)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handler
# ---------------------------------------------------------------------------
_ERROR_MESSAGES = {
    ValidationError: "Invalid upload. Please check the file and preferences.",
    AssetNotFoundError: "Media asset not found.",
    MediaProcessingError: "The uploaded media could not be processed.",
    AnalysisError: "Room analysis failed.",
    TimeoutError: "The request took too long.",
}


@app.exception_handler(ValidationError)
@app.exception_handler(AssetNotFoundError)
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions and return structured JSON error responses."""
    error_type = type(exc).__name__

    message = next(
        (msg for exc_type, msg in _ERROR_MESSAGES.items() if isinstance(exc, exc_type)),
        "An unexpected error occurred.",
    )

    status_code = 500
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, AssetNotFoundError):
        status_code = 404

    if status_code >= 500:
        logger.error("[api] %s: %s | Path: %s", error_type, exc, request.url.path, exc_info=exc)
    else:
        logger.info("[api] %s: %s | Path: %s", error_type, exc, request.url.path)

    return JSONResponse(
        status_code=status_code,
        content={
            "error": error_type,
            "message": message,
            "detail": str(exc) if status_code < 500 else None,
        },
    )


# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(analysis_router)


# ---------------------------------------------------------------------------
# Root & health-check endpoints
# ---------------------------------------------------------------------------
@app.get("/")
async def root():
    """Root endpoint returning basic API information."""
    return {
        "name": "Nyumba API",
        "version": "0.1.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring and load balancers."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("nyumba.api.main:app", host="0.0.0.0", port=8000, reload=True)
