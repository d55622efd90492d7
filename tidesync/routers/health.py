"""Liveness endpoint, public and unauthenticated."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter

from tidesync.dependencies import AppSettings, Uploader

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(settings: AppSettings, uploader: Uploader) -> dict:
    """Liveness probe. Returns 200 if the process is up."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "tidepool": uploader.status.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
