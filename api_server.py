"""
FastAPI Server for the AlgoMakers dashboard
Serves the subscription, billing and affiliate API under /api
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from config.config import (
    API_RATE_LIMIT,
    CORS_ORIGINS,
    DATABASE_URL,
    ENVIRONMENT,
    WEBAPP_URL,
    validate_config,
)
from config.logging import setup_logging
from config.sentry import init_sentry
from src.api.errors import register_exception_handlers
from src.api.router import router as api_router
from src.database.engine import check_connection, dispose_engine, init_db
from src.services.posthog_service import get_posthog_service

# Setup logging at module level (must run before app creation)
# This ensures logging works when uvicorn imports the module
setup_logging()
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup/shutdown events
    """
    # Startup
    logger.info("Starting AlgoMakers API Server...")

    try:
        validate_config()
    except ValueError as e:
        if ENVIRONMENT == "production":
            logger.critical(str(e))
            raise
        logger.warning(str(e))

    # Local SQLite runs have no migrations: create the schema on startup
    if DATABASE_URL.startswith("sqlite"):
        await init_db()

    yield

    # Shutdown
    logger.info("Shutting down AlgoMakers API Server...")

    get_posthog_service().shutdown()

    await dispose_engine()
    logger.info("Database connections closed")


# Rate limiter (per IP)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)

app = FastAPI(
    title="AlgoMakers API",
    description="Subscriptions, billing and affiliate payouts for the AlgoMakers dashboard",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
# Applies the default limits to every route
app.add_middleware(SlowAPIMiddleware)

register_exception_handlers(app)


# CORS: exact origins only
allowed_origins = [
    "http://localhost:3000",  # Local development
    "http://127.0.0.1:3000",
]

if WEBAPP_URL and WEBAPP_URL not in allowed_origins:
    allowed_origins.append(WEBAPP_URL)

for origin in CORS_ORIGINS:
    if origin not in allowed_origins:
        allowed_origins.append(origin)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    """
    Security headers on every response (JSON API: nothing may be framed or sniffed)
    """
    response = await call_next(request)

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

    if ENVIRONMENT == "production" and request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )

    return response


app.include_router(api_router, prefix="/api")


@app.get("/health")
async def health():
    """
    Health check endpoint (no auth required)
    """
    database_ok = await check_connection()
    return {
        "status": "healthy" if database_ok else "degraded",
        "database": "ok" if database_ok else "unavailable",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api_server:app",
        host="127.0.0.1",  # behind the reverse proxy
        port=8003,
        reload=ENVIRONMENT == "development",
        log_level="info",
    )
