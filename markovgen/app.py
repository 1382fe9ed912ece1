"""
Markov Sequence Generator Service
Main application entry point
"""

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from markovgen.config import settings
from markovgen.services.markov import InvalidModel, MarkovModelRegistry, get_markov_registry
from markovgen.utils.logger import setup_logger

# Setup logging
logger = setup_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for service initialization"""
    logger.info("[BOOT] Starting Markov service...")

    try:
        registry = get_markov_registry()

        if settings.MARKOV_PRELOAD:
            logger.info(f"[BOOT] Preloading models from {settings.MARKOV_MODEL_DIR}...")
            loaded = registry.load_all()
            logger.info(f"[BOOT] Loaded {len(loaded)} model(s): {', '.join(loaded) or '-'}")

        logger.info("[BOOT] Markov service ready!")
        yield

    except Exception as e:
        logger.error(f"[ERR] Failed to initialize: {e}", exc_info=True)
        raise
    finally:
        logger.info("[SHUTDOWN] Markov service stopped")


# Create FastAPI app
app = FastAPI(
    title="Markov Sequence Generator",
    description="First-order Markov chain training and sampling",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidModel)
async def invalid_model_handler(request: Request, exc: InvalidModel):
    logger.warning(f"[ERR] Invalid model: {exc}")
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": {"code": "INVALID_MODEL", "message": str(exc)},
        },
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"[ERR] Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": {
                "code": "MARKOV_SERVICE_ERROR",
                "message": "Internal server error occurred",
                "details": {"type": type(exc).__name__},
            },
        },
    )


# Health check
@app.get("/health")
async def health_check(registry: MarkovModelRegistry = Depends(get_markov_registry)):
    """Health check endpoint"""
    return {
        "ok": True,
        "data": {
            "status": "healthy",
            "models": len(registry.names()),
        },
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "endpoints": {
            "health": "/health",
            "docs": "/docs",
            "markov": "/markov/*",
        },
    }


from markovgen.api.routers import markov_router

app.include_router(markov_router.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "markovgen.app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
