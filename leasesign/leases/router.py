# leasesign/leases/router.py

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from leasesign.core.db import get_db
from leasesign.core.jwt import AccountPrincipal, get_current_account
from leasesign.documents.exceptions import DocumentBaseException
from leasesign.documents.exceptions import convert_to_http_exception as document_http_exception
from leasesign.esign.exceptions import ESignBaseException
from leasesign.esign.exceptions import convert_to_http_exception as esign_http_exception
from leasesign.esign.schemas import EnvelopeResult, RecipientViewRequest, RecipientViewResponse
from leasesign.esign.services import envelope_service
from leasesign.leases.exceptions import LeaseBaseException, convert_to_http_exception
from leasesign.leases.schemas import ArtifactVerification, LeaseSigningStatus, SignatureRequestCreate
from leasesign.leases.services import get_lease, signing_status, verify_artifact
from leasesign.signing.exceptions import SigningBaseException
from leasesign.signing.exceptions import convert_to_http_exception as signing_http_exception
from leasesign.signing.router import storage_unavailable
from leasesign.signing.schemas import SignatureRequestCreated
from leasesign.signing.services import signature_request_service
from leasesign.utils.logger import get_logger
from leasesign.utils.s3_utils import StorageError

logger = get_logger(__name__)
router = APIRouter(tags=["Leases"], prefix="/leases")


def _authorize(db: Session, lease_id: int, principal: AccountPrincipal) -> None:
    try:
        lease = get_lease(db, lease_id)
    except LeaseBaseException as e:
        raise convert_to_http_exception(e) from e
    principal.require_account(lease.landlord_account_id)


@router.post(
    "/{lease_id}/signature-requests",
    response_model=SignatureRequestCreated,
    status_code=status.HTTP_201_CREATED,
)
def create_signature_request(
    lease_id: int,
    payload: SignatureRequestCreate,
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """
    Open a signature request for the tenant or landlord and email them the link.
    Any earlier open link for the same party stops working.
    """
    _authorize(db, lease_id, principal)
    try:
        return signature_request_service.request_signature(
            db, lease_id, payload.role, created_by=principal.user_id
        )
    except LeaseBaseException as e:
        raise convert_to_http_exception(e) from e
    except SigningBaseException as e:
        raise signing_http_exception(e) from e
    except DocumentBaseException as e:
        raise document_http_exception(e) from e


@router.get("/{lease_id}/signing-status", response_model=LeaseSigningStatus)
def get_signing_status(
    lease_id: int,
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """Signing timestamps, requests and stored documents for a lease."""
    _authorize(db, lease_id, principal)
    return signing_status(db, lease_id)


@router.get("/{lease_id}/artifacts/{artifact_id}/verify", response_model=ArtifactVerification)
def verify_signed_artifact(
    lease_id: int,
    artifact_id: int,
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """Re-download a signed document and check it against its recorded hash."""
    _authorize(db, lease_id, principal)
    try:
        return verify_artifact(db, lease_id, artifact_id)
    except LeaseBaseException as e:
        raise convert_to_http_exception(e) from e
    except StorageError as e:
        raise storage_unavailable(e) from e


@router.post("/{lease_id}/docusign/envelope", response_model=EnvelopeResult, status_code=status.HTTP_201_CREATED)
async def send_docusign_envelope(
    lease_id: int,
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """Send the lease to both parties through the landlord's Docusign account."""
    _authorize(db, lease_id, principal)
    try:
        return await envelope_service.send_lease_envelope(db, lease_id, created_by=principal.user_id)
    except ESignBaseException as e:
        raise esign_http_exception(e) from e
    except SigningBaseException as e:
        raise signing_http_exception(e) from e
    except DocumentBaseException as e:
        raise document_http_exception(e) from e


@router.post("/{lease_id}/docusign/recipient-view", response_model=RecipientViewResponse)
async def create_docusign_recipient_view(
    lease_id: int,
    payload: RecipientViewRequest,
    db: Session = Depends(get_db),
    principal: AccountPrincipal = Depends(get_current_account),
):
    """
    Generate a one-time embedded signing URL for a party of the lease's envelope.
    The URL is single-use and short-lived, so request it just before redirecting.
    """
    _authorize(db, lease_id, principal)
    try:
        return await envelope_service.create_recipient_view(
            db, lease_id, payload.role, str(payload.return_url) if payload.return_url else None
        )
    except ESignBaseException as e:
        raise esign_http_exception(e) from e
    except SigningBaseException as e:
        raise signing_http_exception(e) from e
