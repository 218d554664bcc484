"""Saga Engine ASGI app: health check plus the /v1 project routes."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import router as v1_router
from app.core.analytics import shutdown_analytics
from app.core.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info("Saga Engine starting")
    yield
    shutdown_analytics()
    logger.info("Saga Engine stopped")


app = FastAPI(
    title="Saga Engine",
    description="Writing-assistant agent with hybrid retrieval over a typed story world graph",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(v1_router, prefix="/v1", tags=["v1"])


@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness check; touches no external service."""
    return {"status": "ok", "service": "saga-engine"}
