from __future__ import annotations

import asyncio
import importlib.metadata as md
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from batch.api.api_v1.api import api_router
from batch.factory import get_request_manager
from batch.queue.entry import current_millis
from core.error_handler import register_exception_handlers
from core.exceptions import BatchQueueError
from core.logging import logger_batch as logger
from core.settings import get_settings

# Core Services Settings
settings = get_settings()

_HOUR_MS = 60 * 60 * 1000


async def run_retention_sweep() -> int:
    """Delete completed records older than COMPLETED_RETENTION_HOURS. Returns how many went."""
    cutoff = current_millis() - settings.COMPLETED_RETENTION_HOURS * _HOUR_MS
    queue_manager = get_request_manager().queue_manager
    return await asyncio.to_thread(queue_manager.remove_old_completed_requests, cutoff)


async def retention_checker() -> None:
    """
    Background task that periodically drops old records of completed requests.

    Runs every CLEANUP_INTERVAL_SECONDS. Failed records are never removed here.
    """
    while True:
        try:
            await asyncio.sleep(settings.CLEANUP_INTERVAL_SECONDS)
            await run_retention_sweep()
        except BatchQueueError as e:  # noqa: PERF203
            logger.error(f"Retention sweep failed: {e.message}", extra={"error_code": e.error_code})
        except Exception as e:
            logger.error(f"Error in retention sweep: {e}", exc_info=True)


@asynccontextmanager
async def app_init(app: FastAPI) -> AsyncIterator[None]:
    """
    Performs initialization tasks for the application during startup.

    Tasks:
        - Loads API routes
        - Starts the background retention sweep

    Args:
        app (FastAPI): The FastAPI application instance.

    Yields:
        None: Allows the application to continue initialization.
    """
    logger.info("Initializing web server...")

    app.include_router(api_router, prefix=settings.API_V1_STR)
    logger.info("API routes loaded...")

    if settings.CLEANUP_INTERVAL_SECONDS > 0:
        retention_task = asyncio.create_task(retention_checker())
        logger.info(
            f"Retention sweep started (every {settings.CLEANUP_INTERVAL_SECONDS}s, "
            f"keeping {settings.COMPLETED_RETENTION_HOURS}h)"
        )
    else:
        retention_task = None
        logger.info("Retention sweep disabled (CLEANUP_INTERVAL_SECONDS=0)")

    yield

    logger.info("Shutting down batch queue service...")
    if retention_task is not None:
        retention_task.cancel()
        try:
            await retention_task
        except asyncio.CancelledError:
            logger.info("Retention sweep stopped")


def _project_metadata() -> dict[str, str]:
    try:
        meta = md.metadata("batch-queue")
        return {"summary": meta["Summary"] or "", "version": meta["Version"]}
    except md.PackageNotFoundError:
        return {"summary": "", "version": "0.0.0"}


# Create the FastAPI application instance
projectMetadata = _project_metadata()
app = FastAPI(
    title=settings.PROJECT_NAME,
    description=projectMetadata["summary"],
    version=projectMetadata["version"],
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    license_info={"name": "MIT License"},
    lifespan=app_init,
)
register_exception_handlers(app)

# Configure CORS (Cross-Origin Resource Sharing) settings
if settings.CORS_ORIGINS:
    cors_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    logger.info(f"Configuring CORS with allowed origins: {cors_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    logger.warning("CORS_ORIGINS is not set. No CORS configuration applied.")


@app.get("/", response_class=RedirectResponse, include_in_schema=False)
async def index() -> Any:
    return "/docs"


@app.get("/health")
@app.get("/healthz")
async def healthcheck() -> JSONResponse:
    """
    Healthcheck endpoint to verify that the server is running.

    Returns:
        dict: A JSON response with the key "status" and value "ok".
    """
    return JSONResponse({"status": "ok"})


def main() -> None:
    """Serve the application with uvicorn on HOST:PORT."""
    import uvicorn

    uvicorn.run("batch.app:app", host=settings.HOST, port=settings.PORT, log_config=None)
