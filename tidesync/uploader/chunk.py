"""Produce the next bounded batch of records to upload.

Window rules:
    start = watermark.read()
    end   = min(start + max_span, now)

``now`` is cut to whole milliseconds, the precision the watermark keeps.
If nothing falls in that span but newer records are waiting, ``end`` is
re-anchored to ``oldest pending + max_span`` so a quiet stretch after the
watermark never stalls the upload.

Records in ``[start, end)`` are serialized oldest-first as one JSON array.
When more than ``max_records`` qualify, the batch is cut and ``end`` is
pulled back to the millisecond of the first record left out, so the next cycle
starts exactly where this one stopped.  The window is written to the
Session; the watermark advances to ``session.window_end`` only after
Tidepool acknowledges the upload.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from pydantic import ValidationError

from tidesync.uploader.errors import ProducerError
from tidesync.uploader.records import RecordSource, TidepoolRecord
from tidesync.uploader.session import Session
from tidesync.uploader.watermark import ONE_MILLI, WatermarkStore, floor_millis, utc_now

logger = logging.getLogger("tidesync.uploader.chunk")

DEFAULT_MAX_SPAN = timedelta(days=7)
DEFAULT_MAX_RECORDS = 1000


@dataclass(frozen=True)
class UploadChunk:
    """One serialized batch.

    Attributes:
        body:         JSON array text sent as the request body.
        record_count: Number of records in ``body``.
        window_start: Inclusive start of the covered window.
        window_end:   Exclusive end of the covered window.
    """

    body: str
    record_count: int
    window_start: datetime
    window_end: datetime

    @property
    def is_empty(self) -> bool:
        return self.record_count == 0


class ChunkProducer:
    """Select and serialize records for the session's next upload window."""

    def __init__(
        self,
        source: RecordSource,
        watermark: WatermarkStore,
        max_span: timedelta = DEFAULT_MAX_SPAN,
        max_records: int = DEFAULT_MAX_RECORDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_records < 1:
            raise ValueError("max_records must be at least 1")
        self._source = source
        self._watermark = watermark
        self._max_span = max_span
        self._max_records = max_records
        self._clock = clock

    def next_chunk(self, session: Session) -> UploadChunk:
        """Build the next chunk and record its window on ``session``.

        Raises:
            ProducerError: If the records cannot be read or serialized.
        """
        start = self._watermark.read()
        now = floor_millis(self._clock())
        end = max(min(start + self._max_span, now), start)

        records = self._read(start, end)
        if not records and end < now:
            # skip the quiet stretch: re-anchor the span on the oldest pending record
            pending = self._read(end, now)
            if pending:
                end = min(floor_millis(pending[0].time) + self._max_span, now)
                records = self._read(start, end)
                logger.debug(
                    "No records before %s, window end moved to %s",
                    pending[0].time.isoformat(),
                    end.isoformat(),
                )

        if len(records) > self._max_records:
            cutoff = floor_millis(records[self._max_records].time)
            kept = [r for r in records if r.time < cutoff]
            if not kept:
                # the batch opens with one crowded millisecond; send all of it
                cutoff += ONE_MILLI
                kept = [r for r in records if r.time < cutoff]
            end = cutoff
            records = kept
            logger.debug(
                "Chunk capped at %d records, window end pulled back to %s",
                len(records),
                end.isoformat(),
            )

        session.window_start = start
        session.window_end = end

        body = self.serialize(records)
        logger.debug(
            "Chunk for %s → %s: %d records, %d bytes",
            start.isoformat(),
            end.isoformat(),
            len(records),
            len(body),
        )
        return UploadChunk(
            body=body,
            record_count=len(records),
            window_start=start,
            window_end=end,
        )

    def _read(self, start: datetime, end: datetime) -> list[TidepoolRecord]:
        try:
            return self._source.records_between(start, end)
        except Exception as exc:
            raise ProducerError(f"Could not read records: {exc}") from exc

    @staticmethod
    def serialize(records: list[TidepoolRecord]) -> str:
        """Serialize records to the JSON array Tidepool accepts.

        Raises:
            ProducerError: If a record cannot be rendered.
        """
        try:
            return json.dumps([r.to_tidepool() for r in records], separators=(",", ":"))
        except (TypeError, ValueError, ValidationError) as exc:
            raise ProducerError(f"Could not serialize records: {exc}") from exc
