from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from pydantic import BaseModel, Field


class MetricsError(Exception):
    """Base class for every error raised by the metrics engine."""


class MalformedEventError(MetricsError, ValueError):
    """An integration event failed validation and was not recorded."""


class InvalidTimeRangeError(MetricsError, ValueError):
    """The requested time range is not one of the supported windows."""

    def __init__(self, time_range: str, allowed: list[str]) -> None:
        super().__init__(f"Unsupported time range {time_range!r}; expected one of {', '.join(allowed)}")
        self.time_range = time_range
        self.allowed = allowed


class MetricsQueryError(MetricsError):
    """
    A metrics read could not be served.

    Read paths never fall back to zeros on store failures; dashboards need to
    tell "query failed" apart from "no activity", so the query context rides
    along with the error.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = " ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


class IntegrationNotFoundError(MetricsError, LookupError):
    def __init__(self, integration_id: str, user_id: str | None = None) -> None:
        super().__init__(f"Integration {integration_id} not found or not owned by user {user_id}")
        self.integration_id = integration_id
        self.user_id = user_id


class ErrorResponse(BaseModel):
    """
    Standard error payload returned by the metrics HTTP endpoints:
    {
        "error": "metrics_query_failed",
        "message": "Failed to load provider metrics",
        "code": 503,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def http_error(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """
    Helper to create an HTTPException with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return HTTPException(status_code=status_code, detail=payload.model_dump())


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_400_BAD_REQUEST, error="bad_request", message=message, details=details
    )


def not_found(message: str, *, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    return http_error(
        status.HTTP_404_NOT_FOUND, error="not_found", message=message, details=details
    )


def service_unavailable(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    return http_error(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        error="metrics_query_failed",
        message=message,
        details=details,
    )


__all__ = [
    "ErrorResponse",
    "IntegrationNotFoundError",
    "InvalidTimeRangeError",
    "MalformedEventError",
    "MetricsError",
    "MetricsQueryError",
    "bad_request",
    "http_error",
    "not_found",
    "service_unavailable",
]
