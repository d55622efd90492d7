"""Trigger endpoints for the Tidepool uploader.

Each call runs one protocol step to completion and answers with the
current status snapshot; failures show up in the snapshot, not as 5xx.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from tidesync.config import get_settings
from tidesync.dependencies import Uploader
from tidesync.uploader.records import InMemoryRecordSource, Record
from tidesync.uploader.uploader import TidepoolUploader

router = APIRouter(prefix="/tidepool", tags=["tidepool"])


class StatusEntry(BaseModel):
    message: str
    at: datetime


class StatusSnapshot(BaseModel):
    status: str
    last_end: datetime
    upload_id: str | None = None
    iterations: int = 0
    history: list[StatusEntry]
    result: Any = None


def _snapshot(uploader: TidepoolUploader, result: Any = None) -> StatusSnapshot:
    session = uploader.session
    return StatusSnapshot(
        status=uploader.status.value,
        last_end=uploader.watermark.read(),
        upload_id=session.upload_id if session else None,
        iterations=session.iteration_count if session else 0,
        history=[
            StatusEntry(message=e.message, at=e.at) for e in uploader.reporter.history()
        ],
        result=result,
    )


@router.get("/status", response_model=StatusSnapshot)
async def get_status(uploader: Uploader) -> Any:
    return _snapshot(uploader)


@router.post("/login", response_model=StatusSnapshot)
async def login(uploader: Uploader, upload: bool = Query(default=False)) -> Any:
    status = await uploader.login(upload=upload)
    return _snapshot(uploader, status.value)


@router.post("/upload", response_model=StatusSnapshot)
async def upload(uploader: Uploader) -> Any:
    outcome = await uploader.upload()
    return _snapshot(uploader, outcome.value)


@router.post("/test-login", response_model=StatusSnapshot)
async def test_login(uploader: Uploader) -> Any:
    ok = await uploader.test_login()
    return _snapshot(uploader, ok)


@router.delete("/dataset", response_model=StatusSnapshot)
async def delete_dataset(uploader: Uploader) -> Any:
    removed = await uploader.delete_dataset()
    return _snapshot(uploader, removed)


@router.post("/reset", response_model=StatusSnapshot)
async def reset(uploader: Uploader) -> Any:
    get_settings.cache_clear()
    uploader.reset_instance(get_settings())
    return _snapshot(uploader)


RecordIn = Annotated[Record, Field(discriminator="type")]


@router.post("/records", status_code=202)
async def add_records(uploader: Uploader, records: list[RecordIn]) -> dict:
    """Queue locally recorded readings for the next upload."""
    source = uploader.source
    if not isinstance(source, InMemoryRecordSource):
        raise HTTPException(status_code=409, detail="Record source is read-only")
    for record in records:
        source.add(record)
    return {"accepted": len(records), "stored": len(source)}
