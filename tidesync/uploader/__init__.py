"""Tidepool upload pipeline.

Modules:
    session   — Session state and stored credentials
    client    — httpx transport for the Tidepool platform API
    records   — Tidepool record types and the local record source
    chunk     — Bounded chunk producer
    watermark — Persisted, retention-clamped "last uploaded" timestamp
    wakelock  — Wake-lock guard held across network steps
    status    — Human-readable status stream
    uploader  — Connection state machine (``TidepoolUploader``)

``uploader`` depends on ``tidesync.config`` and is imported directly
rather than re-exported here.
"""

from tidesync.uploader.chunk import ChunkProducer, UploadChunk
from tidesync.uploader.errors import (
    ConfigurationError,
    ProducerError,
    ProtocolError,
    TidepoolError,
    TransportFailure,
)
from tidesync.uploader.session import Credential, Session
from tidesync.uploader.status import StatusReporter
from tidesync.uploader.wakelock import WakeLockGuard
from tidesync.uploader.watermark import WatermarkStore

__all__ = [
    "ChunkProducer",
    "UploadChunk",
    "TidepoolError",
    "ConfigurationError",
    "ProtocolError",
    "TransportFailure",
    "ProducerError",
    "Credential",
    "Session",
    "StatusReporter",
    "WakeLockGuard",
    "WatermarkStore",
]
