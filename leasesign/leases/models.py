# leasesign/leases/models.py

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from leasesign.core.db import AuditMixin, Base


class Lease(Base, AuditMixin):
    """
    Lease model.

    Rows are owned by property/tenant management; this service only reads the
    party data and writes the signing columns through the synchronizer.
    """

    __tablename__ = "leases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    tenant_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    landlord_account_id: Mapped[int] = mapped_column(Integer, index=True)

    tenant_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tenant_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    landlord_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    landlord_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    property_label: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, comment="Null for month-to-month leases"
    )
    rent_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    billing_day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Written only by LeaseStateSynchronizer
    tenant_signed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    landlord_signed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    fully_executed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    docusign_envelope_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    signed_document_key: Mapped[Optional[str]] = mapped_column(
        String(512), nullable=True, comment="Storage key of the latest signed artifact"
    )


class LeaseEvent(Base, AuditMixin):
    """
    Outbox of lease events for downstream collaborators.
    """

    __tablename__ = "lease_events"
    __table_args__ = (
        UniqueConstraint("lease_id", "event_type", name="uq_lease_events_lease_event"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), index=True)
    event_type: Mapped[str] = mapped_column(String(64))
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
