# leasesign/signing/repository.py

"""
Signature request ledger.

Every status change is a conditional UPDATE guarded on the current status,
so concurrent requests on the same token cannot both succeed.
"""

import secrets
from datetime import datetime, timedelta
from typing import List, Optional, Union

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from leasesign.core.config import settings
from leasesign.documents.schemas import LeaseTerms, SigningRole
from leasesign.signing.exceptions import (
    AlreadyCompletedError,
    InvalidRequestStateError,
    TokenExpiredError,
    TokenUnauthorizedError,
)
from leasesign.signing.models import (
    ArtifactSource,
    SignatureRequest,
    SignatureRequestStatus,
    SignedArtifact,
    open_slot_key,
)
from leasesign.signing.schemas import Recipient
from leasesign.utils.general import as_utc, utcnow
from leasesign.utils.logger import get_logger, mask_token

logger = get_logger(__name__)

TOKEN_BYTES = 32


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class SignatureLedger:
    """
    Repository for signature requests and their artifacts.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_request(
        self,
        lease_id: int,
        role: Union[SigningRole, str],
        recipient: Recipient,
        terms: LeaseTerms,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        """
        Void any open request for (lease, role) and open a new one with a fresh token.
        Does not commit.
        """
        role = SigningRole(role)
        now = now or utcnow()

        voided = self.db.execute(
            update(SignatureRequest)
            .where(
                SignatureRequest.lease_id == lease_id,
                SignatureRequest.role == role.value,
                SignatureRequest.status == SignatureRequestStatus.SENT.value,
            )
            .values(status=SignatureRequestStatus.VOID.value, open_slot=None)
        ).rowcount

        request = SignatureRequest(
            lease_id=lease_id,
            role=role.value,
            recipient_name=recipient.name,
            recipient_email=str(recipient.email),
            token=generate_token(),
            status=SignatureRequestStatus.SENT.value,
            open_slot=open_slot_key(lease_id, role.value),
            expires_at=now + timedelta(hours=settings.signing_token_ttl_hours),
            document_snapshot=terms.model_dump(mode="json"),
        )
        self.db.add(request)
        self.db.flush()

        logger.info(
            "Created signature request",
            request_id=request.id,
            lease_id=lease_id,
            role=role.value,
            voided_previous=voided,
            token=mask_token(request.token),
        )
        return request

    def resolve_token(
        self, token: str, for_update: bool = False, now: Optional[datetime] = None
    ) -> SignatureRequest:
        """
        Look up an open request by its bearer token.

        Raises:
            TokenUnauthorizedError: unknown token or a link that was replaced
            AlreadyCompletedError: the request is signed
            TokenExpiredError: the request is expired, or just went past its expiry
        """
        if not token:
            raise TokenUnauthorizedError()

        stmt = select(SignatureRequest).where(SignatureRequest.token == token)
        if for_update:
            stmt = stmt.with_for_update()
        request = self.db.execute(stmt).scalar_one_or_none()

        if request is None or request.status == SignatureRequestStatus.VOID.value:
            logger.warning("Rejected signing token", token=mask_token(token))
            raise TokenUnauthorizedError()
        if request.status == SignatureRequestStatus.SIGNED.value:
            raise AlreadyCompletedError(request.id)
        if request.status == SignatureRequestStatus.EXPIRED.value:
            raise TokenExpiredError(request.id)

        now = now or utcnow()
        if as_utc(request.expires_at) <= now:
            self.mark_expired(request.id)
            raise TokenExpiredError(request.id)
        return request

    def mark_expired(self, request_id: int) -> bool:
        """
        Move a sent request to expired. Commits so the transition survives the
        error the caller is about to raise.
        """
        result = self.db.execute(
            update(SignatureRequest)
            .where(
                SignatureRequest.id == request_id,
                SignatureRequest.status == SignatureRequestStatus.SENT.value,
            )
            .values(status=SignatureRequestStatus.EXPIRED.value, open_slot=None)
        )
        self.db.commit()
        if result.rowcount:
            logger.info("Signature request expired", request_id=request_id)
        return result.rowcount == 1

    def mark_signed(
        self, request_id: int, document_hash: str, signed_at: Optional[datetime] = None
    ) -> bool:
        """
        Transition sent -> signed.

        Returns:
            True if this call closed the request, False if it was already signed

        Raises:
            InvalidRequestStateError: the request is expired, void or missing
        """
        result = self.db.execute(
            update(SignatureRequest)
            .where(
                SignatureRequest.id == request_id,
                SignatureRequest.status == SignatureRequestStatus.SENT.value,
            )
            .values(
                status=SignatureRequestStatus.SIGNED.value,
                document_hash=document_hash,
                signed_at=signed_at or utcnow(),
                open_slot=None,
            )
        )
        if result.rowcount == 1:
            return True

        current = self.db.execute(
            select(SignatureRequest.status).where(SignatureRequest.id == request_id)
        ).scalar_one_or_none()
        if current == SignatureRequestStatus.SIGNED.value:
            return False
        raise InvalidRequestStateError(
            request_id, current or "missing", SignatureRequestStatus.SIGNED.value
        )

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Bulk-expire sent requests past their expiry. Does not commit."""
        result = self.db.execute(
            update(SignatureRequest)
            .where(
                SignatureRequest.status == SignatureRequestStatus.SENT.value,
                SignatureRequest.expires_at <= (now or utcnow()),
            )
            .values(status=SignatureRequestStatus.EXPIRED.value, open_slot=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def get_open_request(self, lease_id: int, role: Union[SigningRole, str]) -> Optional[SignatureRequest]:
        return self.db.execute(
            select(SignatureRequest).where(
                SignatureRequest.lease_id == lease_id,
                SignatureRequest.role == SigningRole(role).value,
                SignatureRequest.status == SignatureRequestStatus.SENT.value,
            )
        ).scalar_one_or_none()

    def list_for_lease(self, lease_id: int) -> List[SignatureRequest]:
        return list(
            self.db.execute(
                select(SignatureRequest)
                .where(SignatureRequest.lease_id == lease_id)
                .order_by(SignatureRequest.id)
            ).scalars()
        )

    def claim_reminder(self, request_id: int, now: datetime, min_interval: timedelta) -> bool:
        """Stamp last_reminded_at unless a reminder went out within min_interval."""
        result = self.db.execute(
            update(SignatureRequest)
            .where(
                SignatureRequest.id == request_id,
                SignatureRequest.status == SignatureRequestStatus.SENT.value,
                or_(
                    SignatureRequest.last_reminded_at.is_(None),
                    SignatureRequest.last_reminded_at <= now - min_interval,
                ),
            )
            .values(last_reminded_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ==== Artifacts ====

    def add_artifact(self, artifact: SignedArtifact) -> SignedArtifact:
        self.db.add(artifact)
        self.db.flush()
        return artifact

    def get_artifact(self, lease_id: int, artifact_id: int) -> Optional[SignedArtifact]:
        return self.db.execute(
            select(SignedArtifact).where(
                SignedArtifact.id == artifact_id, SignedArtifact.lease_id == lease_id
            )
        ).scalar_one_or_none()

    def latest_native_artifact_by_other_role(
        self, lease_id: int, role: Union[SigningRole, str]
    ) -> Optional[SignedArtifact]:
        """Most recent native artifact produced by the counterparty's request."""
        return self.db.execute(
            select(SignedArtifact)
            .join(SignatureRequest, SignatureRequest.id == SignedArtifact.signature_request_id)
            .where(
                SignedArtifact.lease_id == lease_id,
                SignedArtifact.source == ArtifactSource.NATIVE.value,
                SignatureRequest.role != SigningRole(role).value,
            )
            .order_by(SignedArtifact.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def list_artifacts(self, lease_id: int) -> List[SignedArtifact]:
        return list(
            self.db.execute(
                select(SignedArtifact)
                .where(SignedArtifact.lease_id == lease_id)
                .order_by(SignedArtifact.id)
            ).scalars()
        )
