# leasesign/signing/exceptions.py

"""
Custom exceptions for signing links and the signature request ledger.

Messages on token errors are shown to signers as-is.
"""

from typing import Optional
from fastapi import HTTPException, status


class SigningBaseException(Exception):
    """Base exception for all signing errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class TokenUnauthorizedError(SigningBaseException):
    """Raised when a token is unknown or was replaced by a newer link."""
    def __init__(self):
        super().__init__(
            "This signing link is not valid. Please use the most recent link you were sent."
        )


class TokenExpiredError(SigningBaseException):
    """Raised when a signing link is past its expiry."""
    def __init__(self, request_id: Optional[int] = None):
        super().__init__(
            "This signing link has expired. Ask the landlord to send you a new one.",
            {"request_id": request_id},
        )


class AlreadyCompletedError(SigningBaseException):
    """Raised when the request behind a token has already been signed."""
    def __init__(self, request_id: Optional[int] = None):
        super().__init__("This document has already been signed.", {"request_id": request_id})


class InvalidRequestStateError(SigningBaseException):
    """Raised when a transition is attempted from a terminal state."""
    def __init__(self, request_id: int, current_state: str, attempted_state: str):
        super().__init__(
            f"Cannot transition signature request {request_id} from {current_state} to {attempted_state}",
            {"request_id": request_id, "current_state": current_state, "attempted_state": attempted_state},
        )


class RecipientMissingError(SigningBaseException):
    """Raised when the lease has no name or email for the party being asked to sign."""
    def __init__(self, lease_id: int, role: str, fields: Optional[list] = None):
        super().__init__(
            f"Lease {lease_id} has no usable {role} name and email to send a signing link to",
            {"lease_id": lease_id, "role": role, "fields": fields or [f"{role}_name", f"{role}_email"]},
        )


def convert_to_http_exception(exc: SigningBaseException) -> HTTPException:
    """
    Convert a SigningBaseException to an HTTPException with appropriate status code.
    """
    if isinstance(exc, TokenUnauthorizedError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, TokenExpiredError):
        code = status.HTTP_410_GONE
    elif isinstance(exc, (AlreadyCompletedError, InvalidRequestStateError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, RecipientMissingError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail={"message": exc.message, "details": exc.details})
