# leasesign/esign/exceptions.py

"""
Custom exceptions for the Docusign connection, envelopes and webhooks.
"""

from typing import Optional
from fastapi import HTTPException, status


class ESignBaseException(Exception):
    """Base exception for all e-signature provider errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ProviderAuthError(ESignBaseException):
    """Raised when the provider rejects our credentials or a token refresh fails."""
    def __init__(self, message: str, reconnect_required: bool = False, details: Optional[dict] = None):
        self.reconnect_required = reconnect_required
        super().__init__(message, {**(details or {}), "reconnect_required": reconnect_required})


class OAuthStateMismatchError(ESignBaseException):
    """Raised when an OAuth callback does not match the attempt that started it."""
    def __init__(self, reason: str):
        super().__init__("Docusign authorization could not be verified. Please connect again.", {"reason": reason})


class ProviderAPIError(ESignBaseException):
    """Raised when a Docusign API call fails after retries."""
    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message, {"status_code": status_code, "body": (body or "")[:500]})
        self.status_code = status_code


class ProviderNotConnectedError(ESignBaseException):
    """Raised when a landlord account has no usable Docusign connection."""
    def __init__(self, landlord_account_id: int):
        super().__init__(
            "Connect DocuSign first to send leases for signature.",
            {"landlord_account_id": landlord_account_id},
        )


class EnvelopeNotFoundError(ESignBaseException):
    """Raised when a lease has no Docusign envelope to act on."""
    def __init__(self, lease_id: int):
        super().__init__("This lease has not been sent through DocuSign yet.", {"lease_id": lease_id})


class MalformedWebhookError(ESignBaseException):
    """Raised when a webhook body cannot be decoded into a known shape."""
    def __init__(self, reason: str):
        super().__init__("Webhook payload could not be parsed", {"reason": reason})


def convert_to_http_exception(exc: ESignBaseException) -> HTTPException:
    """
    Convert an ESignBaseException to an HTTPException with appropriate status code.
    """
    if isinstance(exc, ProviderAuthError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, OAuthStateMismatchError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, ProviderAPIError):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, ProviderNotConnectedError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, EnvelopeNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, MalformedWebhookError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail={"message": exc.message, "details": exc.details})
