"""
MarketDesk Backend - FastAPI Application

Main entry point for the backend API.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import router as api_v1_router
from app.core.config import settings
from app.db import close_db, get_market_data_repository, init_db, ping_db
from app.services.base import PersistenceError, ServiceError, ValidationError
from app.services.cache import close_redis, get_market_cache, init_redis
from app.services.exchanges import close_exchange_clients

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    await init_db()

    redis_client = await init_redis()
    if redis_client is None:
        logger.info("Redis unavailable - using in-memory cache")

    try:
        removed = await get_market_data_repository().purge_expired()
        logger.info(f"Purged {removed} expired documents")
    except PersistenceError as e:
        logger.warning(f"Skipping expired document purge: {e.message}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await close_exchange_clients()
    await close_redis()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    MarketDesk Indian Equity Market Data API

    ## Architecture
    - **Exchange Clients**: Live NSE and BSE quotes, history, search and indices
    - **Cache**: Redis with in-memory fallback, TTL per data kind
    - **Document Store**: Quotes, historical ranges and indicators (SQLite)
    - **Indicator Engine**: Technical indicators (pure Python/NumPy)
    - **Agent**: LLM intent classification routed to domain agents
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ============ Error translation ============


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p not in ('query', 'path', 'body'))}: {err.get('msg')}"
        for err in errors
    )
    return JSONResponse(status_code=400, content={"detail": message or "Invalid request"})


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Include API routes
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check: 200 when the document store answers, 503 otherwise."""
    db_ok = await ping_db()
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "healthy" if db_ok else "degraded",
            "app": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "database": "ok" if db_ok else "unavailable",
            "cache": get_market_cache().backend,
        },
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "MarketDesk Backend API",
        "docs": "/docs",
        "health": "/health",
    }
