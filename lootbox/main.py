"""
Lootbox Backend - FastAPI Application

Authoritative reward backend: container opens, keep / liquidate decisions
and balance reads for the client orchestrator.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lootbox import __version__
from lootbox.config import settings
from lootbox.database import close_db, get_db, get_redis, init_db
from lootbox.routers import rpc


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Initialize database connections
    - Verify MongoDB and Redis
    - Cleanup on shutdown
    """
    await init_db()

    try:
        await get_db().client.admin.command("ping")
        logger.info("Connected to MongoDB")
    except Exception as e:
        logger.error(f"FAILED to connect to MongoDB: {e}")

    try:
        await get_redis().ping()
        logger.info("Redis connected")
    except Exception as e:
        logger.error(f"FAILED to connect to Redis: {e}")

    yield

    await close_db()


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Lootbox API",
    description="""
    Lootbox - Randomized Reward Backend

    ## Features
    - Atomic container opens (debit, server-side roll, credit)
    - Idempotent opening sessions
    - Keep / liquidate decisions on held rewards

    ## Authentication
    The upstream gateway identifies the caller with the `X-Actor-Id` header.
    Administrators add `X-Admin-Secret`.
    """,
    version=__version__,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)


# =============================================================================
# Middleware
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Exception Handlers
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler for unhandled errors.

    SECURITY: Do not leak internal error details. Clients treat a 500 as an
    ambiguous outcome and reconcile.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Something went wrong. Please try again shortly."},
    )


# =============================================================================
# Routers
# =============================================================================

app.include_router(rpc.router, prefix=f"{settings.api_v1_str}/rpc", tags=["Rewards"])


@app.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "ok", "version": __version__}
