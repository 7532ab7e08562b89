# leasesign/signing/models.py

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from leasesign.core.db import AuditMixin, Base


class SignatureRequestStatus(str, PyEnum):
    """Lifecycle of a signature request. Everything but SENT is terminal."""
    SENT = "sent"
    SIGNED = "signed"
    EXPIRED = "expired"
    VOID = "void"


class ArtifactSource(str, PyEnum):
    NATIVE = "native"
    DOCUSIGN = "docusign"


def open_slot_key(lease_id: int, role: str) -> str:
    return f"{lease_id}:{role}"


class SignatureRequest(Base, AuditMixin):
    """
    One party's obligation to sign one lease.
    """

    __tablename__ = "signature_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), index=True)
    role: Mapped[str] = mapped_column(String(16), comment="tenant or landlord")

    recipient_name: Mapped[str] = mapped_column(String(255))
    recipient_email: Mapped[str] = mapped_column(String(255))

    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(
        String(16), default=SignatureRequestStatus.SENT.value, index=True
    )
    # Set to "<lease_id>:<role>" while the request is sent and cleared when it
    # leaves that state; the unique constraint allows one open request per slot.
    open_slot: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    document_snapshot: Mapped[dict] = mapped_column(
        JSON, comment="Lease terms captured when the request was created"
    )

    document_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_reminded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class SignedArtifact(Base, AuditMixin):
    """
    Immutable signed document plus its audit record.
    """

    __tablename__ = "signed_artifacts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), index=True)
    signature_request_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("signature_requests.id"), nullable=True, unique=True
    )
    source: Mapped[str] = mapped_column(String(16), default=ArtifactSource.NATIVE.value)

    document_key: Mapped[str] = mapped_column(String(512))
    audit_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), index=True)
    base_document_hash: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Hash of the unsigned render the stamp was applied to"
    )
    size_bytes: Mapped[int] = mapped_column(Integer)
