from __future__ import annotations

from dataclasses import dataclass

from service_pipeline.core.exceptions import (
    FetchError,
    OwnershipError,
    PersistenceConflictError,
    PersistenceError,
    ProviderDataError,
    ServiceNotFoundError,
    ValidationError,
)


@dataclass
class ApiError(Exception):
    code: str
    message: str
    status_code: int


# Checked in order; subclasses come before their bases.
_PIPELINE_ERROR_STATUS: tuple[tuple[type[Exception], str, int], ...] = (
    (ServiceNotFoundError, "NOT_FOUND", 404),
    (OwnershipError, "FORBIDDEN", 403),
    (PersistenceConflictError, "CONFLICT", 409),
    (PersistenceError, "PERSISTENCE_ERROR", 500),
    (FetchError, "UPSTREAM_ERROR", 502),
    (ProviderDataError, "UPSTREAM_ERROR", 502),
    (ValidationError, "VALIDATION_ERROR", 422),
    (ValueError, "VALIDATION_ERROR", 422),
)

HANDLED_PIPELINE_ERRORS = tuple(error_type for error_type, _, _ in _PIPELINE_ERROR_STATUS)


def api_error_for(exc: Exception) -> ApiError:
    for error_type, code, status_code in _PIPELINE_ERROR_STATUS:
        if isinstance(exc, error_type):
            return ApiError(code, str(exc), status_code)
    raise TypeError(f"no HTTP mapping for {type(exc).__name__}") from exc
