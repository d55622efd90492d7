"""Pydantic models for the Tidepool wire messages.

Only the fields the uploader reads are declared; everything else the
server sends is ignored.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TidepoolMessage(BaseModel):
    """Base model with shared config for all Tidepool messages."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )


class AuthReply(TidepoolMessage):
    """Reply to ``POST /auth/login``.

    The token travels in the ``x-tidepool-session-token`` response header and
    is filled in by the client; the body only carries the user.
    """

    token: str | None = None
    user_id: str | None = Field(default=None, alias="userid")
    username: str | None = None
    email_verified: bool | None = Field(default=None, alias="emailVerified")


class DatasetData(TidepoolMessage):
    id: str | None = None
    upload_id: str | None = Field(default=None, alias="uploadId")


class DatasetReply(TidepoolMessage):
    """A dataset (upload target), as returned by the list and create calls.

    The create call nests the ids under ``data``; the list call returns them
    at the top level.  Both shapes are accepted.
    """

    id: str | None = None
    upload_id: str | None = Field(default=None, alias="uploadId")
    data: DatasetData | None = None

    @property
    def dataset_id(self) -> str | None:
        if self.data is not None and self.data.id:
            return self.data.id
        return self.id

    @property
    def resolved_upload_id(self) -> str | None:
        if self.data is not None and self.data.upload_id:
            return self.data.upload_id
        return self.upload_id


class UploadReply(TidepoolMessage):
    data: Any = None
    errors: list[dict] = Field(default_factory=list)


class ClientInfo(TidepoolMessage):
    name: str
    version: str


class Deduplicator(TidepoolMessage):
    name: str = "org.tidepool.deduplicator.dataset.delete.origin"


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


class OpenDatasetRequest(TidepoolMessage):
    """Body of ``POST /v1/users/{userId}/data_sets``."""

    type: str = "upload"
    data_set_type: str = Field(default="continuous", alias="dataSetType")
    client: ClientInfo
    deduplicator: Deduplicator = Field(default_factory=Deduplicator)
    device_manufacturers: list[str] = Field(
        default_factory=lambda: ["Various"], alias="deviceManufacturers"
    )
    device_model: str = Field(default="AndroidAPS", alias="deviceModel")
    device_tags: list[str] = Field(
        default_factory=lambda: ["bgm", "cgm", "insulin-pump"], alias="deviceTags"
    )
    device_id: str = Field(alias="deviceId")
    time_processing: str = Field(default="none", alias="timeProcessing")
    computer_time: str = Field(alias="computerTime")
    time: str
    timezone_offset: int = Field(default=0, alias="timezoneOffset")
    timezone: str = "UTC"
    version: str

    @classmethod
    def build(
        cls, client_id: str, client_version: str, now: datetime | None = None
    ) -> "OpenDatasetRequest":
        """Build a dataset body stamped with the current time."""
        now = now or datetime.now(timezone.utc)
        offset = now.utcoffset()
        return cls(
            client=ClientInfo(name=client_id, version=client_version),
            device_id=f"{client_id}-{client_version}",
            computer_time=now.strftime("%Y-%m-%dT%H:%M:%S"),
            time=_utc_iso(now),
            timezone_offset=int(offset.total_seconds() // 60) if offset else 0,
            version=client_version,
        )

    def body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
