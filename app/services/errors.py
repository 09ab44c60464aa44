from __future__ import annotations

from typing import Any

from fastapi import status


class ServiceError(Exception):
    """Base for every failure the API reports as a structured JSON error.

    ``code`` is the machine-readable value returned in the ``error`` field,
    ``extra`` is merged into the response body, and ``state`` carries the OTP
    lifecycle tag when the failure comes from the OTP flow.
    """

    code = "ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        state: Any = None,
        **extra: Any,
    ) -> None:
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        self.state = state
        self.extra = extra
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        body = {"error": self.code, "message": self.message}
        body.update(self.extra)
        return body


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class NotFoundError(ServiceError):
    code = "NOT_FOUND"
    default_message = "Not found"


class ExpiredError(ServiceError):
    code = "EXPIRED"
    default_message = "Request has expired"


class RateLimitedError(ServiceError):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests"

    def __init__(self, retry_after: int, message: str | None = None, **kwargs: Any) -> None:
        self.retry_after = retry_after
        super().__init__(
            message or f"Please wait {retry_after} seconds before requesting a new code",
            rate_limited=True,
            retry_after=retry_after,
            **kwargs,
        )


class LockedError(ServiceError):
    code = "LOCKED"
    default_message = "Too many failed attempts"


class InvalidCredentialError(ServiceError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"


class InvalidOtpError(InvalidCredentialError):
    code = "INVALID_OTP"
    default_message = "Invalid OTP code"

    def __init__(self, attempts_left: int, **kwargs: Any) -> None:
        self.attempts_left = attempts_left
        super().__init__(attempts_left=attempts_left, **kwargs)


class AuthenticationError(ServiceError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class PermissionDeniedError(ServiceError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have access to this resource"


class InternalError(ServiceError):
    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, retryable=True, **kwargs)
