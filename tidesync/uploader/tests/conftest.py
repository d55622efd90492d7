"""Shared fixtures for the Tidepool uploader tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from tidesync.config import Settings
from tidesync.uploader.client import TidepoolClient
from tidesync.uploader.messages import AuthReply, DatasetReply, UploadReply
from tidesync.uploader.records import InMemoryRecordSource, SensorGlucose
from tidesync.uploader.status import StatusReporter
from tidesync.uploader.uploader import TidepoolUploader
from tidesync.uploader.wakelock import InProcessWakeLock, WakeLockGuard
from tidesync.uploader.watermark import MemoryStore, WatermarkStore

# Fixed "now" for every clock in the suite
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

TEST_USER_ID = "a1b2c3d4e5"
TEST_TOKEN = "session-token-123"
TEST_DATASET_ID = "ds-0001"
TEST_UPLOAD_ID = "up-0001"


def fixed_clock() -> datetime:
    return NOW


def glucose_at(time: datetime, value: float = 110.0, origin: str | None = None) -> SensorGlucose:
    return SensorGlucose(
        time=time,
        value=value,
        origin_id=origin or f"cbg-{int(time.timestamp())}",
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    """Settings with credentials, isolated from the environment and .env."""
    return Settings(
        _env_file=None,
        tidepool_username="alice@example.com",
        tidepool_password="correct horse",
        tidepool_dev_servers=True,
        tidepool_client_id="info.nightscout.androidaps",
        tidepool_client_version="3.0.0",
    )


@pytest.fixture
def settings_no_credentials() -> Settings:
    return Settings(_env_file=None, tidepool_username=None, tidepool_password=None)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def reporter() -> StatusReporter:
    return StatusReporter()


@pytest.fixture
def kv_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def watermark(kv_store: MemoryStore, reporter: StatusReporter) -> WatermarkStore:
    return WatermarkStore(kv_store, reporter, clock=fixed_clock)


@pytest.fixture
def records() -> InMemoryRecordSource:
    return InMemoryRecordSource()


@pytest.fixture
def wake_lock() -> InProcessWakeLock:
    return InProcessWakeLock(tag="test")


@pytest.fixture
def guard(wake_lock: InProcessWakeLock) -> WakeLockGuard:
    return WakeLockGuard(wake_lock)


# ---------------------------------------------------------------------------
# Mock Tidepool client
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_client() -> AsyncMock:
    """TidepoolClient double: login OK, no open dataset, create/upload/delete OK."""
    client = AsyncMock(spec=TidepoolClient)
    client.base_url = "https://int-api.tidepool.org"
    client.authenticate.return_value = AuthReply(token=TEST_TOKEN, userid=TEST_USER_ID)
    client.list_open_datasets.return_value = []
    client.create_dataset.return_value = DatasetReply.model_validate(
        {"data": {"id": TEST_DATASET_ID, "uploadId": TEST_UPLOAD_ID}}
    )
    client.upload_chunk.return_value = UploadReply()
    client.delete_dataset.return_value = None
    return client


@pytest.fixture
def uploader(
    settings: Settings,
    records: InMemoryRecordSource,
    watermark: WatermarkStore,
    reporter: StatusReporter,
    guard: WakeLockGuard,
    mock_client: AsyncMock,
) -> TidepoolUploader:
    return TidepoolUploader(
        settings,
        source=records,
        watermark=watermark,
        reporter=reporter,
        guard=guard,
        client_factory=lambda _s: mock_client,
        clock=fixed_clock,
    )


@pytest.fixture
def hour_of_readings(watermark: WatermarkStore) -> list[SensorGlucose]:
    """Five readings inside the hour after the current watermark."""
    start = watermark.read()
    return [glucose_at(start + timedelta(minutes=5 + 10 * i), 100 + i) for i in range(5)]
