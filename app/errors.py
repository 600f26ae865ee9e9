"""Error taxonomy shared by the API surface and the background pipeline.

Every error carries the HTTP status it maps to when raised on the
synchronous request path. Errors raised inside a background job never reach
the submitting client; they are recorded as the job's FAILED state.
"""

from typing import Optional


class DTPError(Exception):
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(DTPError):
    status_code = 400


class InvalidRequestError(DTPError):
    status_code = 400


class AuthError(DTPError):
    status_code = 401


class NotFoundError(DTPError):
    status_code = 404


class ConflictError(DTPError):
    status_code = 409


class InvalidTransitionError(DTPError):
    status_code = 409


class PayloadTooLargeError(DTPError):
    status_code = 413


class RateLimitedError(DTPError):
    status_code = 429

    def __init__(self, message: str, retry_after_seconds: int):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class ServiceUnavailableError(DTPError):
    status_code = 503


class UpstreamError(DTPError):
    """Failure reported by (or while reaching) an external service."""

    status_code = 502


class UpstreamEmptyResultError(UpstreamError):
    """The generation call succeeded but returned no inline image."""


class ConfigurationError(DTPError):
    status_code = 500
