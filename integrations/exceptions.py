"""Typed exception hierarchy for provider errors.

Every provider failure carries an :class:`ErrorDisposition` so the sync
pipeline can decide between retrying, asking the user to reconnect, and
giving up, by inspecting ``error.disposition`` rather than matching on
message text or exception class.
"""

from enum import Enum


class ErrorDisposition(str, Enum):
    """What the caller should do about a provider failure."""

    RETRYABLE = "retryable"
    REQUIRES_RECONNECT = "requires_reconnect"
    FATAL = "fatal"


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed,
    plus the HTTP status, the provider's own error code and any parsed
    error body details.
    """

    disposition: ErrorDisposition = ErrorDisposition.FATAL

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict | None = None,
    ):
        self.provider_name = provider_name
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    @property
    def retriable(self) -> bool:
        return self.disposition == ErrorDisposition.RETRYABLE


class ProviderAuthError(ProviderError):
    """Credentials missing, expired, or invalid (HTTP 401/403)."""

    disposition = ErrorDisposition.REQUIRES_RECONNECT


class ProviderConnectionError(ProviderError):
    """Network failures: timeouts, DNS resolution, connection refused."""

    disposition = ErrorDisposition.RETRYABLE


class ProviderRateLimitError(ProviderError):
    """HTTP 429 that outlasted the client's retry loop."""

    disposition = ErrorDisposition.RETRYABLE

    def __init__(self, message: str, provider_name: str = "", *, retry_after: float | None = None, **kwargs):
        self.retry_after = retry_after
        kwargs.setdefault("status_code", 429)
        super().__init__(message, provider_name, **kwargs)


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses not covered by a more specific class."""

    @property
    def disposition(self) -> ErrorDisposition:
        """5xx responses are transient; anything else is final."""
        if self.status_code is not None and self.status_code >= 500:
            return ErrorDisposition.RETRYABLE
        return ErrorDisposition.FATAL


class ProviderValidationError(ProviderError):
    """The provider rejected the shape of the request (HTTP 400/422)."""

    pass


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass


class PartialRecordError(ProviderError):
    """A single record could not be normalized or written.

    Raised and caught inside batch processing; it never aborts the batch.
    """

    def __init__(self, message: str, provider_name: str = "", *, record_id: str | None = None, **kwargs):
        self.record_id = record_id
        super().__init__(message, provider_name, **kwargs)


class SyncInProgressError(Exception):
    """Another sync for the same connection is already running."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Sync already in progress for connection {connection_id}")


class ConnectionNotFoundError(Exception):
    """No connection matches the requested id, tenant and provider."""

    pass


def disposition_for(exc: BaseException) -> ErrorDisposition:
    """Return the disposition for any exception.

    Non-provider exceptions are treated as fatal.
    """
    if isinstance(exc, ProviderError):
        return exc.disposition
    return ErrorDisposition.FATAL
