# leasesign/signing/services.py

import hashlib
import json
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from leasesign.core.config import settings
from leasesign.documents.exceptions import DocumentValidationError
from leasesign.documents.pdf import build_lease_pdf, decode_signature_image, stamp_signature
from leasesign.documents.renderer import render_lease_document
from leasesign.documents.schemas import LeaseTerms, SigningRole
from leasesign.leases.models import Lease
from leasesign.leases.services import (
    dispatch_lease_events,
    get_lease,
    lease_state_synchronizer,
    lease_terms,
)
from leasesign.notifications.services import notification_dispatcher
from leasesign.signing.exceptions import (
    AlreadyCompletedError,
    InvalidRequestStateError,
    RecipientMissingError,
)
from leasesign.signing.models import (
    ArtifactSource,
    SignatureRequest,
    SignedArtifact,
)
from leasesign.signing.repository import SignatureLedger
from leasesign.signing.schemas import (
    Recipient,
    SignatureRequestCreated,
    SignatureSubmitResult,
    SigningSession,
)
from leasesign.utils.general import as_utc, utcnow
from leasesign.utils.logger import get_logger
from leasesign.utils.s3_utils import StorageError, s3_utils

logger = get_logger(__name__)


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def artifact_keys(lease_id: int, content_hash: str):
    prefix = f"signed-leases/{lease_id}/{content_hash}"
    return f"{prefix}.pdf", f"{prefix}.audit.json"


def lease_recipient(lease: Lease, role: SigningRole) -> Recipient:
    if role == SigningRole.TENANT:
        name, email = lease.tenant_name, lease.tenant_email
    else:
        name, email = lease.landlord_name, lease.landlord_email
    if not name or not email:
        raise RecipientMissingError(lease.id, role.value)
    try:
        return Recipient(name=name, email=email)
    except ValidationError as e:
        fields = [f"{role.value}_{err['loc'][0]}" for err in e.errors()]
        raise RecipientMissingError(lease.id, role.value, fields=fields) from e


class SignatureRequestService:
    """Opens signature requests and keeps their recipients nudged."""

    def __init__(self, dispatcher=None):
        self.dispatcher = dispatcher or notification_dispatcher

    def open_request(
        self, db: Session, lease_id: int, role: SigningRole, created_by: Optional[int] = None
    ) -> SignatureRequest:
        """
        Validate the lease renders, then create the request. Does not commit.

        Raises:
            LeaseNotFoundError, RecipientMissingError, DocumentValidationError
        """
        role = SigningRole(role)
        lease = get_lease(db, lease_id)
        recipient = lease_recipient(lease, role)
        terms = lease_terms(lease)
        render_lease_document(terms)

        request = SignatureLedger(db).create_request(lease.id, role, recipient, terms)
        request.created_by = created_by
        return request

    def request_signature(
        self, db: Session, lease_id: int, role: SigningRole, created_by: Optional[int] = None
    ) -> SignatureRequestCreated:
        """
        Create a signature request for one party and email them the link.
        """
        request = self.open_request(db, lease_id, role, created_by=created_by)
        db.commit()
        queued = self.dispatcher.signing_link_created(request.id)
        return SignatureRequestCreated(
            request_id=request.id,
            lease_id=request.lease_id,
            role=request.role,
            recipient_email=request.recipient_email,
            expires_at=request.expires_at,
            notification_queued=queued,
        )

    def remind_pending_landlords(self, db: Session, now: Optional[datetime] = None) -> dict:
        """
        Nudge landlords on recent leases the tenant has signed.

        A landlord with no usable link gets a fresh request; otherwise the open
        request is re-sent at most once per reminder interval.
        """
        now = now or utcnow()
        window_start = now - timedelta(days=settings.landlord_reminder_window_days)
        interval = timedelta(hours=settings.landlord_reminder_interval_hours)
        ledger = SignatureLedger(db)

        leases = db.execute(
            select(Lease).where(
                Lease.tenant_signed_at.is_not(None),
                Lease.landlord_signed_at.is_(None),
                Lease.created_on >= window_start,
            )
        ).scalars().all()

        created, reminded, skipped = 0, 0, 0
        for lease in leases:
            request = ledger.get_open_request(lease.id, SigningRole.LANDLORD)
            if request is None or as_utc(request.expires_at) <= now:
                try:
                    request = self.open_request(db, lease.id, SigningRole.LANDLORD)
                except (RecipientMissingError, DocumentValidationError) as e:
                    db.rollback()
                    logger.warning("Cannot open landlord request", lease_id=lease.id, error_message=e.message)
                    skipped += 1
                    continue
                request.last_reminded_at = now
                db.commit()
                self.dispatcher.signing_link_created(request.id)
                created += 1
            elif ledger.claim_reminder(request.id, now, interval):
                db.commit()
                self.dispatcher.signing_reminder(request.id)
                reminded += 1
            else:
                skipped += 1

        logger.info("Landlord reminders processed", created=created, reminded=reminded, skipped=skipped)
        return {"created": created, "reminded": reminded, "skipped": skipped}


class NativeSigningService:
    """
    Token-link signing: show the document, capture a signature, stamp it,
    store the result and close the request.
    """

    def __init__(self, storage=None, dispatcher=None, synchronizer=None):
        self.storage = storage or s3_utils
        self.dispatcher = dispatcher or notification_dispatcher
        self.synchronizer = synchronizer or lease_state_synchronizer

    def open_session(self, db: Session, token: str) -> SigningSession:
        """
        Resolve a signing link and render the document captured for it.
        """
        request = SignatureLedger(db).resolve_token(token)
        document = render_lease_document(LeaseTerms.model_validate(request.document_snapshot))
        role = SigningRole(request.role)
        return SigningSession(
            request_id=request.id,
            lease_id=request.lease_id,
            role=role,
            signer_name=request.recipient_name,
            signer_email=request.recipient_email,
            expires_at=request.expires_at,
            document_title=document.title,
            document_html=document.html,
            anchors=document.anchors_for(role),
        )

    def _base_pdf(self, ledger: SignatureLedger, request: SignatureRequest, base_hash: str) -> Optional[bytes]:
        """
        Bytes of the counterparty's signed copy when it was stamped on the same
        render, so the final PDF carries both signatures.
        """
        prior = ledger.latest_native_artifact_by_other_role(request.lease_id, request.role)
        if prior is None or prior.base_document_hash != base_hash:
            return None
        content = self.storage.download_file(prior.document_key)
        if sha256_hex(content) != prior.content_hash:
            logger.error("Stored artifact failed its integrity check", artifact_id=prior.id)
            raise StorageError("Stored artifact failed its integrity check", {"artifact_id": prior.id})
        return content

    def _discard(self, *keys: str) -> None:
        for key in keys:
            self.storage.delete_file(key)

    def submit_signature(
        self,
        db: Session,
        token: str,
        signature_image: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SignatureSubmitResult:
        """
        Apply a captured signature to the document behind a signing link.

        Either the artifact is stored and the request is closed, or neither
        happens and the link still works.

        Raises:
            TokenUnauthorizedError, TokenExpiredError, AlreadyCompletedError,
            DocumentValidationError, StorageError
        """
        ledger = SignatureLedger(db)
        request = ledger.resolve_token(token, for_update=True)
        role = SigningRole(request.role)
        signature = decode_signature_image(signature_image)

        document = render_lease_document(LeaseTerms.model_validate(request.document_snapshot))
        rendered = build_lease_pdf(document)
        base_hash = sha256_hex(rendered.content)
        base_pdf = self._base_pdf(ledger, request, base_hash) or rendered.content

        signed_at = utcnow()
        signature_anchor = document.signature_anchor(role)
        capture = {
            "token": request.token,
            "role": role.value,
            "signerName": request.recipient_name,
            "signerEmail": request.recipient_email,
            "signedAt": signed_at.isoformat(),
            "ip": client_ip,
            "userAgent": user_agent,
            "leaseId": request.lease_id,
            "signatureRequestId": request.id,
            "requestCreatedAt": request.created_on.isoformat() if request.created_on else None,
            "requestExpiresAt": as_utc(request.expires_at).isoformat(),
        }
        stamp_lines = [
            f"Name: {request.recipient_name}",
            f"Email: {request.recipient_email}",
            f"Signed At: {signed_at.strftime('%Y-%m-%d %H:%M:%S')} UTC",
            f"IP: {client_ip or 'unknown'}",
            f"User-Agent: {user_agent or 'unknown'}",
        ]
        stamped = stamp_signature(
            base_pdf, rendered.placements[signature_anchor.name], signature, stamp_lines, capture
        )
        content_hash = sha256_hex(stamped)

        audit_record = {
            **capture,
            "documentHash": content_hash,
            "baseDocumentHash": base_hash,
            "documentFingerprint": document.fingerprint,
            "anchorsSatisfied": [signature_anchor.name],
        }
        document_key, audit_key = artifact_keys(request.lease_id, content_hash)

        try:
            self.storage.upload_bytes(stamped, document_key, metadata={"sha256": content_hash})
            self.storage.upload_bytes(
                json.dumps(audit_record, indent=2, sort_keys=True).encode("utf-8"), audit_key
            )
        except StorageError:
            db.rollback()
            self._discard(document_key)
            logger.error("Signed document upload failed", request_id=request.id, lease_id=request.lease_id)
            raise

        try:
            closed = ledger.mark_signed(request.id, content_hash, signed_at)
        except InvalidRequestStateError:
            db.rollback()
            self._discard(document_key, audit_key)
            logger.warning("Signature request closed during submit", request_id=request.id)
            raise

        if not closed:
            winner_hash = db.execute(
                select(SignatureRequest.document_hash).where(SignatureRequest.id == request.id)
            ).scalar_one_or_none()
            db.rollback()
            if winner_hash != content_hash:
                self._discard(document_key, audit_key)
            raise AlreadyCompletedError(request.id)

        artifact = ledger.add_artifact(
            SignedArtifact(
                lease_id=request.lease_id,
                signature_request_id=request.id,
                source=ArtifactSource.NATIVE.value,
                document_key=document_key,
                audit_key=audit_key,
                content_hash=content_hash,
                base_document_hash=base_hash,
                size_bytes=len(stamped),
            )
        )
        lease = get_lease(db, request.lease_id)
        lease.signed_document_key = document_key

        sync = self.synchronizer.record_signature(db, request.lease_id, role, signed_at)

        follow_up = None
        if (
            role == SigningRole.TENANT
            and lease.landlord_signed_at is None
            and ledger.get_open_request(lease.id, SigningRole.LANDLORD) is None
        ):
            try:
                follow_up = SignatureRequestService(self.dispatcher).open_request(
                    db, lease.id, SigningRole.LANDLORD
                )
            except (RecipientMissingError, DocumentValidationError) as e:
                logger.warning("Landlord request not created", lease_id=lease.id, error_message=e.message)

        db.commit()
        logger.info(
            "Native signature completed",
            request_id=request.id,
            lease_id=request.lease_id,
            role=role.value,
            document_hash=content_hash,
        )

        if follow_up is not None:
            self.dispatcher.signing_link_created(follow_up.id)
        if sync.fully_executed:
            dispatch_lease_events(db, self.dispatcher, lease_id=request.lease_id)

        return SignatureSubmitResult(
            request_id=request.id,
            lease_id=request.lease_id,
            role=role,
            signed_at=signed_at,
            document_hash=content_hash,
            artifact_id=artifact.id,
            document_key=document_key,
            audit_key=audit_key,
            lease_fully_executed=sync.fully_executed,
            follow_up_request_id=follow_up.id if follow_up else None,
        )

    def expire_stale_requests(self, db: Session) -> int:
        count = SignatureLedger(db).expire_stale()
        db.commit()
        if count:
            logger.info("Expired stale signature requests", count=count)
        return count


signature_request_service = SignatureRequestService()
native_signing_service = NativeSigningService()
