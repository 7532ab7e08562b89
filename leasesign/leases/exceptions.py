# leasesign/leases/exceptions.py

"""
Custom exceptions for the Leases module.
"""

from typing import Optional
from fastapi import HTTPException, status


class LeaseBaseException(Exception):
    """Base exception for all Lease-related errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class LeaseNotFoundError(LeaseBaseException):
    """Raised when a lease does not exist."""
    def __init__(self, lease_id: int):
        super().__init__(f"Lease with ID {lease_id} not found", {"lease_id": lease_id})


class InvalidSigningRoleError(LeaseBaseException):
    """Raised when a role other than tenant or landlord is supplied."""
    def __init__(self, role: str):
        super().__init__(f"Unknown signing role: {role}", {"role": role})


class ArtifactNotFoundError(LeaseBaseException):
    """Raised when a signed artifact does not exist on the given lease."""
    def __init__(self, lease_id: int, artifact_id: int):
        super().__init__(
            f"Signed document {artifact_id} not found for lease {lease_id}",
            {"lease_id": lease_id, "artifact_id": artifact_id},
        )


def convert_to_http_exception(exc: LeaseBaseException) -> HTTPException:
    """
    Convert a LeaseBaseException to an HTTPException with appropriate status code.
    """
    if isinstance(exc, (LeaseNotFoundError, ArtifactNotFoundError)):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": exc.message, "details": exc.details}
        )
    elif isinstance(exc, InvalidSigningRoleError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": exc.message, "details": exc.details}
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": exc.message, "details": exc.details}
    )
