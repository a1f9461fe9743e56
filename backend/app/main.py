from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy import text

from app.api.routes.analytics import router as analytics_router
from app.api.routes.auth import router as auth_router
from app.core.cache import response_cache, run_sweeper
from app.core.config import get_settings
from app.core.logging import setup_logging
from app.core.middleware import RequestContextMiddleware
from app.db.base import Base
from app.db.session import AsyncSessionLocal, engine
from app.schemas.common import APIError, APIErrorEnvelope, HealthCheckResponse

settings = get_settings()
setup_logging(settings.debug)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    max_age=3600,
)

app_start_time = time.time()


@app.on_event("startup")
async def on_startup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.cache_sweeper = asyncio.create_task(
        run_sweeper(response_cache, settings.response_cache_sweep_interval_seconds)
    )
    logger.info("Application startup complete")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sweeper = getattr(app.state, "cache_sweeper", None)
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await engine.dispose()
    logger.info("Application shutdown complete")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    logger.exception("Unhandled exception", extra={"request_id": request_id})
    envelope = APIErrorEnvelope(
        error=APIError(code="INTERNAL_SERVER_ERROR", message="Unexpected server error", request_id=request_id)
    )
    return JSONResponse(status_code=500, content=envelope.model_dump(exclude_none=True))


@app.get("/health", response_model=HealthCheckResponse)
async def health() -> dict:
    uptime = int(time.time() - app_start_time)
    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": uptime,
        "checks": {
            "application": {"status": "healthy"},
        },
    }


@app.get("/health/ready")
async def health_ready() -> JSONResponse:
    uptime = int(time.time() - app_start_time)
    http_status = 200

    db_latency_ms = 0
    db_status = "healthy"
    db_start = time.time()
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        db_latency_ms = int((time.time() - db_start) * 1000)
    except Exception:
        logger.exception("Database readiness check failed")
        db_status = "unhealthy"
        http_status = 503

    return JSONResponse(
        status_code=http_status,
        content={
            "status": "healthy" if http_status == 200 else "unhealthy",
            "version": settings.app_version,
            "uptime_seconds": uptime,
            "checks": {
                "database": {"status": db_status, "latency_ms": db_latency_ms},
                "response_cache": {"status": "healthy", "entries": len(response_cache)},
            },
        },
    )


app.include_router(auth_router, prefix=settings.api_prefix)
app.include_router(analytics_router, prefix=settings.api_prefix)

frontend_dist = Path(__file__).resolve().parents[2] / "frontend" / "dist"
if frontend_dist.exists():
    assets_path = frontend_dist / "assets"
    if assets_path.exists():
        app.mount("/assets", StaticFiles(directory=str(assets_path)), name="assets")


@app.get("/{full_path:path}")
async def spa_fallback(full_path: str):
    if full_path.startswith("api"):
        return JSONResponse(status_code=404, content={"error": "Not found"})

    index_path = frontend_dist / "index.html"
    if index_path.exists():
        return FileResponse(index_path)
    return JSONResponse(content={"message": "Frontend not built"}, status_code=404)
