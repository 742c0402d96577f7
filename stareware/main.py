"""
StareWare Proctoring Service - FastAPI Application
"""
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, settings
from .proctor.api import router as proctor_router
from .proctor.registry import SessionRegistry
from .proctor.storage import FallbackResultSink, InMemoryResultSink, JsonFileResultSink, JsonFileTestRepository
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_registry(config: Settings) -> SessionRegistry:
    """Wire the session registry to the JSON stores named in the settings."""
    return SessionRegistry(
        repository=JsonFileTestRepository(config.TESTS_PATH),
        # Results are kept in memory if the results file cannot be written
        result_sink=FallbackResultSink(JsonFileResultSink(config.RESULTS_PATH), InMemoryResultSink()),
        settings=config,
    )


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Proctored MCQ test sessions with face, tab and fullscreen monitoring",
    version=__version__,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None
)
app.state.registry = build_registry(settings)


# ============================================================================
# Request Logging Middleware
# ============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming requests with timing."""
    start = time.time()
    method = request.method
    path = request.url.path

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(f"RequestError: {method} {path}: {e}")
        raise

    if path not in ["/health", "/favicon.ico"]:
        duration_ms = int((time.time() - start) * 1000)
        logger.info(f"{method} {path} -> {response.status_code} in {duration_ms}ms")
    return response


# CORS middleware - allow all origins for LAN access
# Note: When using allow_origins=["*"], credentials must be False
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(proctor_router)


@app.on_event("startup")
async def startup_event():
    """Configure logging and report the active configuration."""
    setup_logging(
        service_name="stareware",
        level=settings.LOG_LEVEL,
        log_to_file=settings.LOG_TO_FILE,
        log_dir=settings.LOG_DIR,
    )
    logger.info(f"{settings.APP_NAME} starting on port {settings.PORT}")
    logger.info(f"  Tests: {settings.TESTS_PATH}")
    logger.info(f"  Results: {settings.RESULTS_PATH}")
    logger.info(f"  Max warnings: {settings.MAX_WARNINGS}, face grace: {settings.FACE_GRACE_SECONDS}s")
    logger.info(f"  Server-side countdown: {settings.AUTO_TICK}")


@app.on_event("shutdown")
async def shutdown_event():
    app.state.registry.close()
    logger.info(f"{settings.APP_NAME} stopped")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": __version__
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.APP_NAME,
        "docs": "/docs" if settings.DEBUG else None,
        "proctoring": "/api/proctor"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("stareware.main:app", host="0.0.0.0", port=settings.PORT, reload=settings.DEBUG)
