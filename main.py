"""
Pet Avatar Gallery API - Main Application Entry Point.

Initializes and configures the FastAPI application serving the pet avatar
gallery: the paginated public feed, the person-name directory used by the
guessing game, publishing of generated avatars and the guess write path.

Key Responsibilities:
- Configure logging, the database and the metrics collector at startup.
- Install the middleware stack (correlation IDs, error handling, performance
  logging, request validation, security and cache-control headers).
- Register the exception handlers producing `{"error": ...}` bodies.
- Mount the health/monitoring routers and the gallery router.

Configuration comes from environment variables: `DATABASE_URL`,
`JWT_SECRET_KEY`, `JWT_ALGORITHM`, `JWT_AUDIENCE`, `ENVIRONMENT`,
`LOG_LEVEL` and `CORS_ORIGINS` (comma-separated).
"""

import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.database import create_db_and_tables
from core.logging_config import setup_logging, get_logger
from core.middleware import (
    CacheControlMiddleware,
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    PerformanceMiddleware,
    RequestValidationMiddleware,
    SecurityHeadersMiddleware,
    register_exception_handlers,
)
from core.performance import init_metrics_collector
from core.auth import init_auth_service
from api.endpoints import router
from api.health_router import health_router, monitoring_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger = get_logger("api.startup")

    await create_db_and_tables()
    logger.info("Database initialized successfully")

    init_metrics_collector()
    logger.info("Performance monitoring initialized")

    init_auth_service()
    logger.info("Service startup completed")
    yield

    logger.info("Shutting down Gallery API")


app = FastAPI(
    title="Pet Avatar Gallery API",
    description="Public feed, name directory and guessing game backend",
    version="1.0.0",
    lifespan=lifespan,
)

register_exception_handlers(app)

# Innermost first: the last middleware added runs first on each request
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(CacheControlMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestValidationMiddleware)
app.add_middleware(PerformanceMiddleware)
app.add_middleware(CorrelationMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Health routers first (no authentication required for monitoring)
app.include_router(health_router)
app.include_router(monitoring_router)

app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        log_level="info",
    )
