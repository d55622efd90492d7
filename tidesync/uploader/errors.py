"""Error kinds raised inside the Tidepool upload pipeline.

All of them are caught by ``TidepoolUploader`` and turned into connection
status transitions; none are expected to reach the external caller.

    ConfigurationError — stored credentials missing or blank (no retry)
    ProtocolError      — server reply is missing a field we depend on
    TransportFailure   — any network or non-2xx HTTP failure
    ProducerError      — records could not be serialized into a chunk
"""

from __future__ import annotations


class TidepoolError(Exception):
    """Base class for everything the uploader raises on purpose."""


class ConfigurationError(TidepoolError):
    """Raised when a Session cannot be built from stored credentials."""


class ProtocolError(TidepoolError):
    """Raised when a reply lacks an expected field (e.g. the user id)."""


class TransportFailure(TidepoolError):
    """Raised for any HTTP or network failure talking to Tidepool.

    Attributes:
        operation:   Short name of the call that failed ("Login", "Data Upload").
        status_code: HTTP status when the server answered, else None.
    """

    def __init__(
        self, operation: str, message: str, status_code: int | None = None
    ) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.status_code = status_code


class ProducerError(TidepoolError):
    """Raised when the chunk producer cannot serialize the selected records."""
