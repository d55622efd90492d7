"""Per-login session state for the Tidepool uploader."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime

from tidesync.uploader.errors import ConfigurationError


@dataclass(frozen=True)
class Credential:
    """Stored Tidepool username/password, rendered as an HTTP Basic header."""

    username: str
    password: str

    @classmethod
    def from_settings(cls, username: str | None, password: str | None) -> "Credential":
        """Build a credential, rejecting missing or blank values.

        Raises:
            ConfigurationError: If either value is missing or blank.
        """
        if not username or not username.strip() or not password:
            raise ConfigurationError("Tidepool username/password have not been set")
        return cls(username=username.strip(), password=password)

    @property
    def auth_header(self) -> str:
        raw = f"{self.username}:{self.password}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


@dataclass
class Session:
    """Mutable state for one authenticate → resolve → upload cycle.

    A fresh Session is created on every login attempt and replaced on the
    next one.  Only one protocol step touches it at a time.

    Attributes:
        credential:      Stored credentials; always present once constructed.
        token:           Session token, set once authentication succeeds.
        user_id:         Tidepool user id from the authentication reply.
        dataset_id:      Id of the open dataset we append to.
        upload_id:       Upload id used as the target of chunk uploads.
        window_start:    Start of the data window of the current upload.
        window_end:      End (exclusive) of the data window of the current upload.
        iteration_count: Number of upload attempts made with this session.
    """

    credential: Credential
    token: str | None = None
    user_id: str | None = None
    dataset_id: str | None = None
    upload_id: str | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    iteration_count: int = 0

    @property
    def authenticated(self) -> bool:
        return self.token is not None

    @property
    def can_upload(self) -> bool:
        """True when both a token and an upload target are known."""
        return self.token is not None and self.upload_id is not None

    def set_dataset(self, dataset_id: str | None, upload_id: str | None) -> None:
        """Record the resolved dataset.  Once set, it is not replaced."""
        if self.upload_id is not None:
            return
        self.dataset_id = dataset_id
        self.upload_id = upload_id

    def clear_dataset(self) -> None:
        """Forget the dataset, e.g. after it was deleted on the server."""
        self.dataset_id = None
        self.upload_id = None
