# leasesign/documents/exceptions.py

"""
Custom exceptions for lease document rendering and stamping.
"""

from typing import Optional
from fastapi import HTTPException, status


class DocumentBaseException(Exception):
    """Base exception for all document-related errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DocumentValidationError(DocumentBaseException):
    """Raised when lease terms or a captured signature cannot be used to build a document."""
    def __init__(self, message: str, fields: Optional[list] = None):
        super().__init__(message, {"fields": fields or []})


class AnchorNotFoundError(DocumentBaseException):
    """Raised when a rendered document has no placement for a required anchor."""
    def __init__(self, anchor: str):
        super().__init__(f"Anchor {anchor} is not present in the document", {"anchor": anchor})


def convert_to_http_exception(exc: DocumentBaseException) -> HTTPException:
    """
    Convert a DocumentBaseException to an HTTPException with appropriate status code.
    """
    if isinstance(exc, DocumentValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "details": exc.details}
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"message": exc.message, "details": exc.details}
    )
