# leasesign/signing/router.py

"""
Public signing-link endpoints. The token in the path is the only credential.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from leasesign.core.db import get_db
from leasesign.documents.exceptions import DocumentBaseException
from leasesign.documents.exceptions import convert_to_http_exception as document_http_exception
from leasesign.documents.renderer import render_lease_document
from leasesign.documents.schemas import LeaseTerms
from leasesign.signing.exceptions import SigningBaseException, convert_to_http_exception
from leasesign.signing.repository import SignatureLedger
from leasesign.signing.schemas import SignatureSubmit, SignatureSubmitResult, SigningSession
from leasesign.signing.services import native_signing_service
from leasesign.utils.general import get_client_ip
from leasesign.utils.logger import get_logger, mask_token
from leasesign.utils.s3_utils import StorageError

logger = get_logger(__name__)
router = APIRouter(tags=["Signing"], prefix="/sign")


def storage_unavailable(exc: StorageError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "message": "Your signature could not be saved, please try again.",
            "details": exc.details,
        },
    )


@router.get("/{token}", response_model=SigningSession)
def get_signing_session(token: str, db: Session = Depends(get_db)):
    """
    Load the document and signer details behind a signing link.
    """
    try:
        return native_signing_service.open_session(db, token)
    except SigningBaseException as e:
        raise convert_to_http_exception(e) from e
    except DocumentBaseException as e:
        raise document_http_exception(e) from e


@router.get("/{token}/document", response_class=HTMLResponse)
def get_signing_document(token: str, db: Session = Depends(get_db)):
    """
    The lease document as HTML, exactly as it will be stamped.
    """
    try:
        request = SignatureLedger(db).resolve_token(token)
        document = render_lease_document(LeaseTerms.model_validate(request.document_snapshot))
        return HTMLResponse(content=document.html)
    except SigningBaseException as e:
        raise convert_to_http_exception(e) from e
    except DocumentBaseException as e:
        raise document_http_exception(e) from e


@router.post("/{token}", response_model=SignatureSubmitResult)
def submit_signature(
    token: str,
    payload: SignatureSubmit,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Apply the captured signature and store the signed document.
    """
    logger.info("Signature submitted", token=mask_token(token))
    try:
        return native_signing_service.submit_signature(
            db,
            token,
            payload.signature_image,
            client_ip=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except SigningBaseException as e:
        raise convert_to_http_exception(e) from e
    except DocumentBaseException as e:
        raise document_http_exception(e) from e
    except StorageError as e:
        raise storage_unavailable(e) from e
