# leasesign/leases/services.py

import hashlib
from datetime import datetime
from typing import List, Union

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from leasesign.documents.exceptions import DocumentValidationError
from leasesign.documents.schemas import LeaseTerms, SigningRole
from leasesign.leases.exceptions import (
    ArtifactNotFoundError,
    InvalidSigningRoleError,
    LeaseNotFoundError,
)
from leasesign.leases.models import Lease, LeaseEvent
from leasesign.leases.schemas import (
    LEASE_FULLY_EXECUTED,
    ArtifactVerification,
    LeaseSigningStatus,
    SignatureRequestSummary,
    SignatureSyncResult,
    SignedArtifactSummary,
)
from leasesign.notifications.services import notification_dispatcher
from leasesign.signing.repository import SignatureLedger
from leasesign.utils.general import utcnow
from leasesign.utils.logger import get_logger
from leasesign.utils.s3_utils import s3_utils

logger = get_logger(__name__)


def get_lease(db: Session, lease_id: int) -> Lease:
    lease = db.get(Lease, lease_id)
    if not lease:
        raise LeaseNotFoundError(lease_id)
    return lease


def lease_terms(lease: Lease, agreement_date=None) -> LeaseTerms:
    """Lease data used by the template renderer"""
    created = lease.created_on.date() if lease.created_on else None
    try:
        return LeaseTerms(
            landlord_name=lease.landlord_name,
            tenant_name=lease.tenant_name,
            property_label=lease.property_label,
            start_date=lease.start_date,
            end_date=lease.end_date,
            rent_amount=lease.rent_amount,
            billing_day_of_month=lease.billing_day_of_month,
            agreement_date=agreement_date or created or utcnow().date(),
            tenant_email=lease.tenant_email,
            landlord_email=lease.landlord_email,
        )
    except ValidationError as e:
        fields = [str(err['loc'][0]) for err in e.errors()]
        raise DocumentValidationError(f"Lease has invalid fields: {', '.join(fields)}", fields=fields) from e


class LeaseStateSynchronizer:
    """
    Sole writer of the lease signing timestamps.

    Both signing backends report completions here. Each write is a
    conditional UPDATE so the first signal for a role wins and later
    duplicates are no-ops.
    """

    ROLE_COLUMNS = {
        SigningRole.TENANT: Lease.tenant_signed_at,
        SigningRole.LANDLORD: Lease.landlord_signed_at,
    }

    def record_signature(
        self,
        db: Session,
        lease_id: int,
        role: Union[SigningRole, str],
        signed_at: datetime,
    ) -> SignatureSyncResult:
        """
        Set the role's signed timestamp if it is still null.

        When this call completes the second signature, fully_executed_at is set
        and a single lease_fully_executed event is written to the outbox in the
        same transaction. Does not commit.
        """
        try:
            role = SigningRole(role)
        except ValueError as e:
            raise InvalidSigningRoleError(str(role)) from e

        lease = get_lease(db, lease_id)
        column = self.ROLE_COLUMNS[role]

        result = db.execute(
            update(Lease)
            .where(Lease.id == lease_id, column.is_(None))
            .values({column.key: signed_at})
            .execution_options(synchronize_session=False)
        )
        applied = result.rowcount == 1

        executed = db.execute(
            update(Lease)
            .where(
                Lease.id == lease_id,
                Lease.tenant_signed_at.is_not(None),
                Lease.landlord_signed_at.is_not(None),
                Lease.fully_executed_at.is_(None),
            )
            .values(fully_executed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        fully_executed = executed.rowcount == 1

        if fully_executed:
            db.add(
                LeaseEvent(
                    lease_id=lease_id,
                    event_type=LEASE_FULLY_EXECUTED,
                    payload={"lease_id": lease_id, "completed_by_role": role.value},
                )
            )
        db.flush()
        db.refresh(lease)

        logger.info(
            "Recorded lease signature",
            lease_id=lease_id,
            role=role.value,
            applied=applied,
            fully_executed=fully_executed,
        )
        return SignatureSyncResult(
            lease_id=lease_id, role=role, applied=applied, fully_executed=fully_executed
        )


def dispatch_lease_events(db: Session, dispatcher=None, lease_id: int = None) -> List[int]:
    """
    Hand undispatched outbox events to the notification dispatcher and mark
    the ones that were accepted. Commits.

    Returns:
        List of dispatched event ids
    """
    dispatcher = dispatcher or notification_dispatcher
    stmt = select(LeaseEvent).where(LeaseEvent.dispatched_at.is_(None)).order_by(LeaseEvent.id)
    if lease_id is not None:
        stmt = stmt.where(LeaseEvent.lease_id == lease_id)

    dispatched = []
    for event in db.execute(stmt).scalars().all():
        if event.event_type != LEASE_FULLY_EXECUTED:
            logger.warning("Skipping unknown lease event", event_id=event.id, event_type=event.event_type)
            continue
        claimed = db.execute(
            update(LeaseEvent)
            .where(LeaseEvent.id == event.id, LeaseEvent.dispatched_at.is_(None))
            .values(dispatched_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            continue
        if dispatcher.lease_fully_executed(event.lease_id):
            dispatched.append(event.id)
        else:
            db.execute(
                update(LeaseEvent)
                .where(LeaseEvent.id == event.id)
                .values(dispatched_at=None)
                .execution_options(synchronize_session=False)
            )

    db.commit()
    return dispatched


def signing_status(db: Session, lease_id: int) -> LeaseSigningStatus:
    """Timestamps, every signature request and every stored artifact of a lease"""
    lease = get_lease(db, lease_id)
    ledger = SignatureLedger(db)
    return LeaseSigningStatus(
        lease_id=lease.id,
        tenant_signed=lease.tenant_signed_at is not None,
        landlord_signed=lease.landlord_signed_at is not None,
        tenant_signed_at=lease.tenant_signed_at,
        landlord_signed_at=lease.landlord_signed_at,
        fully_executed_at=lease.fully_executed_at,
        docusign_envelope_id=lease.docusign_envelope_id,
        signed_document_key=lease.signed_document_key,
        requests=[SignatureRequestSummary.model_validate(r) for r in ledger.list_for_lease(lease.id)],
        artifacts=[SignedArtifactSummary.model_validate(a) for a in ledger.list_artifacts(lease.id)],
    )


def verify_artifact(db: Session, lease_id: int, artifact_id: int, storage=None) -> ArtifactVerification:
    """
    Download a stored artifact and compare its SHA-256 to the recorded hash.

    Raises:
        LeaseNotFoundError, ArtifactNotFoundError, StorageError
    """
    storage = storage or s3_utils
    get_lease(db, lease_id)
    artifact = SignatureLedger(db).get_artifact(lease_id, artifact_id)
    if artifact is None:
        raise ArtifactNotFoundError(lease_id, artifact_id)

    computed = hashlib.sha256(storage.download_file(artifact.document_key)).hexdigest()
    matches = computed == artifact.content_hash
    if not matches:
        logger.error(
            "Signed document hash mismatch",
            lease_id=lease_id, artifact_id=artifact_id, recorded=artifact.content_hash, computed=computed,
        )
    return ArtifactVerification(
        artifact_id=artifact.id, recorded_hash=artifact.content_hash, computed_hash=computed, matches=matches
    )


lease_state_synchronizer = LeaseStateSynchronizer()
