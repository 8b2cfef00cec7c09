"""
Error taxonomy surfaced to callers.

Every failure a caller can see is one of five kinds. Each carries a stable
``status`` code and the HTTP status the API layer renders it with.
Processor failures are raised as ``ProcessorError`` by the provider layer
and converted into ``FailedPrecondition`` at the engine boundary.
"""

from typing import Optional


class BillingError(Exception):
    """Base class for caller-visible failures."""

    status = "INTERNAL"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"status": self.status, "message": self.message}


class Unauthenticated(BillingError):
    """No caller identity on the request."""

    status = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message)


class InvalidArgument(BillingError):
    """A required field is missing or malformed."""

    status = "INVALID_ARGUMENT"
    http_status = 400


class PermissionDenied(BillingError):
    """The caller is not the participant allowed to do this."""

    status = "PERMISSION_DENIED"
    http_status = 403


class FailedPrecondition(BillingError):
    """The record's state does not permit the operation."""

    status = "FAILED_PRECONDITION"
    http_status = 400


class NotFound(BillingError):
    """A referenced record does not exist."""

    status = "NOT_FOUND"
    http_status = 404


class ProcessorError(Exception):
    """Failure reported by the payment processor."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
