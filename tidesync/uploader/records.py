"""Tidepool record types and the record source the chunk producer reads from.

Records are the locally recorded time-series (sensor glucose, finger-stick
glucose, boluses, temp basals).  Each one serializes to the JSON object the
Tidepool data API expects.  Timestamps are UTC and compared as half-open
windows: a record belongs to ``[start, end)`` when ``start <= time < end``.
"""

from __future__ import annotations

import bisect
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Literal, Protocol, Union

from pydantic import Field, field_serializer, field_validator

from tidesync.uploader.messages import TidepoolMessage

logger = logging.getLogger("tidesync.uploader.records")

# mmol/L → mg/dL
MMOL_TO_MGDL = 18.0182


def to_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TidepoolRecord(TidepoolMessage):
    """Fields shared by every record type."""

    type: str
    time: datetime
    origin_id: str = Field(alias="originId")
    device_id: str = Field(default="AndroidAPS", alias="deviceId")

    @field_validator("time")
    @classmethod
    def _time_to_utc(cls, value: datetime) -> datetime:
        return to_utc(value)

    @field_serializer("time")
    def _serialize_time(self, value: datetime) -> str:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"

    def to_tidepool(self) -> dict[str, Any]:
        """Return the JSON object sent to Tidepool for this record."""
        body = self.model_dump(by_alias=True, exclude={"origin_id"})
        body["origin"] = {"id": self.origin_id}
        return body


class SensorGlucose(TidepoolRecord):
    """Continuous glucose monitor reading (Tidepool ``cbg``)."""

    type: Literal["cbg"] = "cbg"
    units: Literal["mg/dL"] = "mg/dL"
    value: float = Field(gt=0)

    @classmethod
    def from_mmol(cls, time: datetime, mmol: float, origin_id: str) -> "SensorGlucose":
        return cls(time=time, value=round(mmol * MMOL_TO_MGDL), origin_id=origin_id)


class FingerstickGlucose(TidepoolRecord):
    """Self-monitored blood glucose (Tidepool ``smbg``)."""

    type: Literal["smbg"] = "smbg"
    sub_type: str = Field(default="manual", alias="subType")
    units: Literal["mg/dL"] = "mg/dL"
    value: float = Field(gt=0)


class Bolus(TidepoolRecord):
    """Normal (immediate) insulin bolus in units."""

    type: Literal["bolus"] = "bolus"
    sub_type: str = Field(default="normal", alias="subType")
    normal: float = Field(ge=0)


class TempBasal(TidepoolRecord):
    """Temporary basal rate in U/h lasting ``duration`` milliseconds."""

    type: Literal["basal"] = "basal"
    delivery_type: str = Field(default="temp", alias="deliveryType")
    duration: int = Field(ge=0)
    rate: float = Field(ge=0)
    percent: float | None = None


Record = Union[SensorGlucose, FingerstickGlucose, Bolus, TempBasal]


class RecordSource(Protocol):
    """Read side of the local data store."""

    def records_between(self, start: datetime, end: datetime) -> list[TidepoolRecord]:
        """Return records with ``start <= time < end``, oldest first."""
        ...


class InMemoryRecordSource:
    """Time-ordered in-process record store.

    Good enough for a single device feeding one uploader; records are kept
    sorted on insert so window queries are a pair of bisects.
    """

    def __init__(self, records: list[TidepoolRecord] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: list[TidepoolRecord] = []
        self._times: list[datetime] = []
        for record in records or []:
            self.add(record)

    def add(self, record: TidepoolRecord) -> None:
        with self._lock:
            idx = bisect.bisect_right(self._times, record.time)
            self._times.insert(idx, record.time)
            self._records.insert(idx, record)
        logger.debug("Stored %s record at %s", record.type, record.time.isoformat())

    def records_between(self, start: datetime, end: datetime) -> list[TidepoolRecord]:
        start, end = to_utc(start), to_utc(end)
        with self._lock:
            lo = bisect.bisect_left(self._times, start)
            hi = bisect.bisect_left(self._times, end)
            return list(self._records[lo:hi])

    def __len__(self) -> int:
        return len(self._records)
