from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from app.core.config import settings
from app.core.database import init_db, close_db
from app.core.exceptions import SparkBuildError, error_response
from app.core.logging_config import logger
from app.core.middleware import RequestLoggingMiddleware
from app.api.v1.router import api_router
from app.services.generation_manager import GenerationManager
from app.services.generation_repository import GenerationRepository
from app.services.ghost_fix_service import GhostFixService
from app.services.preview_state import PreviewSessionRegistry
from app.utils.claude_client import ClaudeClient


def validate_config():
    """Warn about configuration that breaks generation without stopping startup"""
    if not settings.ANTHROPIC_API_KEY:
        logger.warning("[Startup] ANTHROPIC_API_KEY is not set - AI generation will NOT work!")
    if not settings.DATABASE_URL:
        raise RuntimeError("Missing critical configuration: DATABASE_URL is not set")
    logger.info("[Startup] Configuration validated")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.APP_NAME}...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"API Version: {settings.API_VERSION}")
    logger.info("=" * 60)

    validate_config()
    await init_db()

    repository = GenerationRepository()
    client = ClaudeClient()
    ghost_fix_service = GhostFixService(client)

    app.state.repository = repository
    app.state.generation_manager = GenerationManager(repository, client)
    app.state.ghost_fix_service = ghost_fix_service
    app.state.preview_registry = PreviewSessionRegistry(ghost_fix_service.stream_fix, repository=repository)

    # Streaming rows from a previous process can never complete
    await app.state.generation_manager.mark_stale_on_startup()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.APP_NAME}...")
    app.state.preview_registry.dispose_all()
    await app.state.generation_manager.shutdown()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Streaming code generation with self-healing live previews",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    redirect_slashes=False  # Prevent 307 redirects that break CORS
)

# Add middleware (order matters - last added runs first)
# 1. Request logging
app.add_middleware(RequestLoggingMiddleware)

# 2. CORS - Origins from CORS_ORIGINS_STR in .env
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)


# Exception handlers
@app.exception_handler(SparkBuildError)
async def sparkbuild_exception_handler(request: Request, exc: SparkBuildError):
    if exc.status_code >= 500:
        logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred"
        }
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app_name": settings.APP_NAME,
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


# Root endpoint
@app.get("/", tags=["Root"])
async def root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


# Include API router
app.include_router(api_router, prefix=f"/api/{settings.API_VERSION}")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG
    )
