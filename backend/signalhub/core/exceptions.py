# core/exceptions.py
from __future__ import annotations

from typing import Optional


class SignalHubError(Exception):
    """Base exception for the signal service.

    Carries the HTTP status and the machine-readable code that the API
    boundary turns into an error response.
    """

    status_code: int = 500
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.field = field

    def __str__(self) -> str:
        fld = f" field={self.field}" if self.field else ""
        return f"{self.code}: {self.message}{fld}"


class SignalValidationError(SignalHubError):
    status_code = 400
    code = "invalid_request"


class AuthenticationError(SignalHubError):
    status_code = 401
    code = "unauthorized"


class PermissionDeniedError(SignalHubError):
    status_code = 403
    code = "forbidden"


class SignalNotFoundError(SignalHubError):
    status_code = 404
    code = "not_found"

    def __init__(self, signal_id: str) -> None:
        super().__init__(f"Signal {signal_id} not found")
        self.signal_id = signal_id


class ConfigurationError(SignalHubError):
    status_code = 500
    code = "ingestion_not_configured"


class StorageError(SignalHubError):
    """Unexpected failure reading or writing the signal table.

    The message stays server side; callers only see a generic 500.
    """

    status_code = 500
    code = "storage_error"


class BroadcastError(SignalHubError):
    """Publishing an event failed. Never surfaced to HTTP callers."""

    code = "broadcast_error"
