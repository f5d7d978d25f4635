"""Exceptions raised by the sync pipeline and the report service."""

from __future__ import annotations


class AsanaReportError(Exception):
    """Base class for all asana-report errors."""


class ConfigurationError(AsanaReportError):
    """A required setting (token, project id) is missing. Never retried."""


class SourceError(AsanaReportError):
    """The Asana API could not satisfy a request."""


class SourceUnavailable(SourceError):
    """Rate limiting, 5xx responses or timeouts outlasted the retry ceiling.

    A future sync attempt may succeed; the current one is over.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceRejected(SourceError):
    """A non-retryable 4xx response (anything but 429)."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Asana API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class SourceUnreachable(SourceError):
    """The connection to the Asana API failed."""


class PersistenceError(AsanaReportError):
    """A write batch failed; the batches after it were not attempted."""

    def __init__(self, batch: str, message: str) -> None:
        super().__init__(f"Failed to write {batch}: {message}")
        self.batch = batch


class AuthorizationError(AsanaReportError):
    """The requester may not perform the operation."""
