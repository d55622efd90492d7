"""Tidepool connection state machine.

Drives one Session through the upload protocol:

1. ``login``           — authenticate with stored credentials
2. ``resolve_dataset`` — reuse our open dataset or create a new one
3. ``upload``          — send the next chunk past the watermark
4. ``delete_dataset``  — drop the dataset (optional, user initiated)

Status walks ``DISCONNECTED → CONNECTING → CONNECTED``; ``FAILED`` is
reachable from ``CONNECTING`` and from dataset resolution, and a later
``login`` starts over.  A failed upload leaves the status alone so the
same session can simply be asked to upload again.

Every step holds the wake lock from right before its request until its
outcome is known, on success, failure and unexpected exceptions alike.
There is no retry or backoff here; the caller decides when to try again.

Usage::

    uploader = TidepoolUploader(settings, source=records, watermark=watermark)
    await uploader.login(upload=True)
    ...
    await uploader.upload()
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable

from tidesync.config import Settings
from tidesync.uploader.chunk import ChunkProducer
from tidesync.uploader.client import TidepoolClient
from tidesync.uploader.errors import (
    ConfigurationError,
    ProducerError,
    ProtocolError,
    TidepoolError,
)
from tidesync.uploader.messages import OpenDatasetRequest
from tidesync.uploader.records import RecordSource
from tidesync.uploader.session import Credential, Session
from tidesync.uploader.status import StatusReporter
from tidesync.uploader.wakelock import WakeLockGuard
from tidesync.uploader.watermark import WatermarkStore, utc_now

logger = logging.getLogger("tidesync.uploader")

# Open datasets to ask for when looking for one to append to
OPEN_DATASET_LIMIT = 1


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


# States from which a new login may start
_LOGIN_ALLOWED = frozenset({ConnectionStatus.DISCONNECTED, ConnectionStatus.FAILED})


class UploadOutcome(str, Enum):
    """What a single ``upload()`` call ended up doing."""

    NO_SESSION = "no_session"
    PRODUCER_ERROR = "producer_error"
    NO_DATA = "no_data"
    UPLOADED = "uploaded"
    FAILED = "failed"


def _default_client_factory(settings: Settings) -> TidepoolClient:
    return TidepoolClient(
        base_url=settings.tidepool_base_url,
        timeout=settings.http_timeout_seconds,
    )


class TidepoolUploader:
    """Single-session uploader.  One instance per process.

    Attributes:
        session: The Session of the most recent login attempt, or None.
    """

    def __init__(
        self,
        settings: Settings,
        source: RecordSource,
        watermark: WatermarkStore,
        reporter: StatusReporter | None = None,
        guard: WakeLockGuard | None = None,
        client_factory: Callable[[Settings], TidepoolClient] = _default_client_factory,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._settings = settings
        self._source = source
        self._watermark = watermark
        self._reporter = reporter or StatusReporter(settings.status_history_size)
        self._guard = guard or WakeLockGuard()
        self._client_factory = client_factory
        self._client: TidepoolClient | None = None
        self._producer = ChunkProducer(
            source,
            watermark,
            max_span=timedelta(days=settings.max_chunk_days),
            max_records=settings.max_chunk_records,
            clock=clock,
        )
        self._status = ConnectionStatus.DISCONNECTED
        self._status_lock = threading.Lock()
        self._upload_lock = asyncio.Lock()
        self.session: Session | None = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def reporter(self) -> StatusReporter:
        return self._reporter

    @property
    def guard(self) -> WakeLockGuard:
        return self._guard

    @property
    def watermark(self) -> WatermarkStore:
        return self._watermark

    @property
    def source(self) -> RecordSource:
        return self._source

    @property
    def client(self) -> TidepoolClient:
        if self._client is None:
            self._client = self._client_factory(self._settings)
            logger.debug("Using Tidepool API at %s", self._client.base_url)
        return self._client

    def reset_instance(self, settings: Settings | None = None) -> None:
        """Drop the cached client (picks up a changed server flag) and disconnect."""
        if settings is not None:
            self._settings = settings
        self._client = None
        self._set_status(ConnectionStatus.DISCONNECTED)
        logger.debug("Instance reset")

    def _set_status(self, new: ConnectionStatus) -> None:
        with self._status_lock:
            old, self._status = self._status, new
        if old is not new:
            logger.info("Connection status %s → %s", old.value, new.value)

    def _transition(self, allowed: frozenset, new: ConnectionStatus) -> bool:
        """Compare-and-set: move to ``new`` only from a state in ``allowed``."""
        with self._status_lock:
            if self._status not in allowed:
                return False
            old, self._status = self._status, new
        logger.info("Connection status %s → %s", old.value, new.value)
        return True

    def _report(self, message: str) -> None:
        self._reporter.report(message)

    # ------------------------------------------------------------------
    # Protocol steps
    # ------------------------------------------------------------------

    async def login(self, upload: bool = False) -> ConnectionStatus:
        """Authenticate and resolve a dataset, optionally uploading afterwards.

        Does nothing while a login is in flight or a session is connected.

        Args:
            upload: Run ``upload()`` once a dataset has been resolved.

        Returns:
            Connection status when the chain finished.
        """
        if self._status not in _LOGIN_ALLOWED:
            logger.debug("Already connected")
            return self._status

        try:
            credential = Credential.from_settings(
                self._settings.tidepool_username, self._settings.tidepool_password
            )
        except ConfigurationError:
            logger.debug("Cannot do login as user credentials have not been set correctly")
            if self._transition(_LOGIN_ALLOWED, ConnectionStatus.FAILED):
                self._report("Invalid credentials")
            return self._status

        if not self._transition(_LOGIN_ALLOWED, ConnectionStatus.CONNECTING):
            logger.debug("Already connected")
            return self._status

        session = Session(credential)
        self.session = session
        self._guard.extend(self._settings.login_wake_ms)
        try:
            self._report("Connecting")
            try:
                reply = await self.client.authenticate(credential)
            except TidepoolError as exc:
                logger.error("Login failed: %s", exc)
                self._set_status(ConnectionStatus.FAILED)
                self._report("Login FAILED")
                return self._status

            session.token = reply.token
            session.user_id = reply.user_id
            await self.resolve_dataset(session, upload)
            return self._status
        except BaseException:
            # never leave a dead chain parked in CONNECTING
            self._transition(frozenset({ConnectionStatus.CONNECTING}), ConnectionStatus.FAILED)
            raise
        finally:
            self._guard.release()

    async def resolve_dataset(self, session: Session, upload: bool = False) -> ConnectionStatus:
        """Find our open dataset or create one, then mark the session connected."""
        self._guard.extend(self._settings.login_wake_ms)
        try:
            if not session.user_id:
                logger.error("Got login response but cannot determine userid - cannot proceed")
                self._set_status(ConnectionStatus.FAILED)
                self._report("Error userid")
                return self._status

            try:
                existing = await self.client.list_open_datasets(
                    session.token,
                    session.user_id,
                    self._settings.tidepool_client_id,
                    OPEN_DATASET_LIMIT,
                )
            except TidepoolError as exc:
                logger.error("Open dataset lookup failed: %s", exc)
                self._set_status(ConnectionStatus.FAILED)
                self._report("Open dataset FAILED")
                return self._status

            dataset = next((d for d in existing if d.resolved_upload_id), None)
            if dataset is not None:
                session.set_dataset(dataset.dataset_id, dataset.resolved_upload_id)
                logger.debug("Existing Dataset: %s", session.upload_id)
                self._set_status(ConnectionStatus.CONNECTED)
                self._report("Appending to existing dataset")
            else:
                self._report("Creating new dataset")
                body = OpenDatasetRequest.build(
                    self._settings.tidepool_client_id,
                    self._settings.tidepool_client_version,
                ).body()
                try:
                    created = await self.client.create_dataset(
                        session.token, session.user_id, body
                    )
                    if not created.resolved_upload_id:
                        raise ProtocolError("New dataset reply has no upload id")
                except TidepoolError as exc:
                    logger.error("Dataset creation failed: %s", exc)
                    self._report("New dataset FAILED")
                    self._set_status(ConnectionStatus.FAILED)
                    return self._status

                session.set_dataset(created.dataset_id, created.resolved_upload_id)
                self._set_status(ConnectionStatus.CONNECTED)
                self._report("New dataset OK")

            if upload:
                await self.upload()
            return self._status
        finally:
            self._guard.release()

    async def upload(self) -> UploadOutcome:
        """Upload the next chunk of records past the watermark.

        Returns:
            UploadOutcome describing what happened.
        """
        async with self._upload_lock:
            session = self.session
            if session is None or not session.can_upload:
                logger.error("Session is null, cannot proceed")
                return UploadOutcome.NO_SESSION

            self._guard.extend(self._settings.upload_wake_ms)
            try:
                session.iteration_count += 1
                try:
                    chunk = self._producer.next_chunk(session)
                except ProducerError as exc:
                    logger.error("Upload chunk is null, cannot proceed: %s", exc)
                    return UploadOutcome.PRODUCER_ERROR

                if chunk.is_empty:
                    logger.debug("Empty dataset - marking as succeeded")
                    self._report("No data to upload")
                    return UploadOutcome.NO_DATA

                self._report("Uploading")
                logger.debug(
                    "Upload #%d: %d records", session.iteration_count, chunk.record_count
                )
                try:
                    await self.client.upload_chunk(session.token, session.upload_id, chunk.body)
                except TidepoolError as exc:
                    logger.error("Data upload failed: %s", exc)
                    self._report("Upload FAILED")
                    return UploadOutcome.FAILED

                self._watermark.advance(session.window_end)
                self._report("Upload completed OK")
                return UploadOutcome.UPLOADED
            finally:
                self._guard.release()

    async def delete_dataset(self) -> bool:
        """Delete the session's dataset.  Always ends ``DISCONNECTED``.

        The session forgets its dataset either way, so no later ``upload()``
        can post to it; a new ``login()`` resolves a fresh one.

        Returns:
            True if Tidepool confirmed the deletion.
        """
        session = self.session
        if session is None or not session.dataset_id:
            logger.error("Got login response but cannot determine datasetId - cannot proceed")
            return False

        self._guard.extend(self._settings.upload_wake_ms)
        try:
            try:
                await self.client.delete_dataset(session.token, session.dataset_id)
            except TidepoolError as exc:
                logger.error("Dataset delete failed: %s", exc)
                session.clear_dataset()
                self._set_status(ConnectionStatus.DISCONNECTED)
                self._report("Dataset remove FAILED")
                return False

            session.clear_dataset()
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._report("Dataset removed OK")
            return True
        finally:
            self._guard.release()

    async def test_login(self) -> bool:
        """Check the stored credentials without touching the active session."""
        try:
            credential = Credential.from_settings(
                self._settings.tidepool_username, self._settings.tidepool_password
            )
        except ConfigurationError:
            self._report("Cannot do login as user credentials have not been set correctly")
            return False

        try:
            await self.client.authenticate(credential)
        except TidepoolError as exc:
            logger.info("Test login failed: %s", exc)
            self._report(
                "Failed to log into Tidepool. "
                "Check that your user name and password are correct."
            )
            return False

        self._report("Successfully logged into Tidepool.")
        return True
