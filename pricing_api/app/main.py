"""
FastAPI application entry point.
"""

import asyncio
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from app.api.v1.router import router as v1_router
from app.config import get_settings
from app.deps import close_redis, get_executor, get_redis
from app.schemas.common import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    scheduler_task = None
    if settings.scheduler_embedded:
        executor = await get_executor()
        scheduler_task = asyncio.create_task(executor.run_forever())
        logger.info("Embedded scheduler started")

    yield

    if scheduler_task is not None:
        executor = await get_executor()
        executor.stop()
        await scheduler_task
    await close_redis()


app = FastAPI(
    title="Price Schedule API",
    description="Bulk price edits with scheduled apply and revert",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(v1_router, prefix="/api/v1")


@app.get("/api/v1/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    """Health check endpoint."""
    return HealthResponse(ok=True)


@app.get("/api/v1/health/redis", tags=["health"])
async def health_check_redis():
    """Check Redis connection health."""
    try:
        redis = await get_redis()
        await redis.ping()
        return {"ok": True, "redis": "connected"}
    except Exception as e:
        return {"ok": False, "redis": "disconnected", "error": str(e)}


@app.get("/", tags=["root"])
async def root():
    """Root endpoint."""
    return {
        "message": "Price Schedule API",
        "version": "1.0.0",
        "docs": "/docs"
    }
