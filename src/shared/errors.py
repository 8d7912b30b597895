"""Exception taxonomy for the release gate and discovery scanner."""
from __future__ import annotations

from src.shared.constants import MAX_ERROR_BODY_CHARS


def truncate_body(body: str | None, limit: int = MAX_ERROR_BODY_CHARS) -> str:
    """Cut a response body down to *limit* characters for logging."""
    if not body:
        return ""
    if len(body) <= limit:
        return body
    return body[:limit] + "...(truncated)"


class ReleaseGateError(Exception):
    """Base application error."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ConfigurationError(ReleaseGateError):
    """Missing or invalid configuration.  Never retried."""

    def __init__(self, detail: str = "Configuration error") -> None:
        super().__init__(detail)


class TransportError(ReleaseGateError):
    """Network failure or non-2xx response from the remote service."""

    def __init__(
        self,
        detail: str = "Transport error",
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = truncate_body(body)
        message = detail
        if status_code is not None:
            message = f"{message} (HTTP {status_code})"
        if self.body:
            message = f"{message}: {self.body}"
        super().__init__(message)


class ProtocolError(TransportError):
    """Response body is not the structure the service promises."""

    def __init__(
        self,
        detail: str = "Protocol error",
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(detail, status_code=status_code, body=body)


class RetriesExhaustedError(ReleaseGateError):
    """Every permitted attempt ended in a transport or protocol error."""

    def __init__(self, attempts: int, last_error: Exception | None = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        detail = f"ArmorCode request error after {attempts} attempt(s)"
        if last_error is not None:
            detail = f"{detail}: {last_error}"
        super().__init__(detail)


class SchedulingError(ReleaseGateError):
    """Cron expression cannot be parsed."""

    def __init__(self, detail: str = "Invalid cron expression") -> None:
        super().__init__(detail)
