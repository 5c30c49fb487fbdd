from __future__ import annotations


class PipelineError(Exception):
    """Base pipeline exception."""


class TransientNetworkError(PipelineError):
    """Raised for one failed fetch attempt (timeout, transport failure, non-2xx)."""

    def __init__(
        self,
        message: str,
        *,
        target: str,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.target = target
        self.status_code = status_code
        self.body = body


class FetchError(PipelineError):
    """Raised when a request failed after exhausting its retries."""

    def __init__(self, message: str, *, attempts: int, last_error: Exception | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class ProviderDataError(PipelineError):
    """Raised when a provider payload does not have the expected shape."""


class ValidationError(PipelineError):
    """Raised when a record is missing mandatory fields."""


class PersistenceError(PipelineError):
    """Raised when the store rejects or fails a write."""


class PersistenceConflictError(PersistenceError):
    """Raised when a write violates a uniqueness or check constraint."""


class ServiceNotFoundError(PipelineError):
    """Raised when a manual record does not exist."""


class OwnershipError(PipelineError):
    """Raised when a user edits a manual record they do not own."""
