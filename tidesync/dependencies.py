"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from tidesync.config import Settings, get_settings
from tidesync.uploader.uploader import TidepoolUploader


def get_uploader(request: Request) -> TidepoolUploader:
    """Return the process-wide uploader built in the app lifespan."""
    uploader: TidepoolUploader | None = getattr(request.app.state, "uploader", None)
    if uploader is None:
        raise HTTPException(status_code=503, detail="Uploader not initialized")
    return uploader


# Annotated shortcuts for route signatures
Uploader = Annotated[TidepoolUploader, Depends(get_uploader)]
AppSettings = Annotated[Settings, Depends(get_settings)]
