"""tidesync API, the FastAPI application entry point.

Run locally:
    uvicorn tidesync.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from tidesync.config import Settings, get_settings
from tidesync.routers import health, tidepool
from tidesync.uploader.records import InMemoryRecordSource
from tidesync.uploader.status import StatusReporter
from tidesync.uploader.uploader import TidepoolUploader
from tidesync.uploader.watermark import JsonFileStore, WatermarkStore

logger = logging.getLogger("tidesync")


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def build_uploader(settings: Settings) -> TidepoolUploader:
    """Wire the uploader to its on-disk watermark and an in-memory record source."""
    reporter = StatusReporter(settings.status_history_size)
    watermark = WatermarkStore(JsonFileStore(settings.resolved_state_path), reporter)
    return TidepoolUploader(
        settings,
        source=InMemoryRecordSource(),
        watermark=watermark,
        reporter=reporter,
    )


# ---------- App factory ----------

def create_app(uploader: TidepoolUploader | None = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup / shutdown hooks."""
        logger.info(
            "Starting tidesync v%s [%s] against %s",
            settings.app_version,
            settings.environment,
            settings.tidepool_base_url,
        )
        app.state.uploader = uploader or build_uploader(settings)
        yield
        app.state.uploader.guard.release()
        logger.info("tidesync shut down")

    app = FastAPI(
        title="tidesync",
        description="Incremental upload of locally recorded diabetes data to Tidepool.",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(tidepool.router, prefix="/api/v1")

    return app


app = create_app()
