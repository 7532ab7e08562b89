# leasesign/esign/models.py

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from leasesign.core.db import AuditMixin, Base


class ProviderConnection(Base, AuditMixin):
    """
    A landlord account's Docusign authorization.

    Tokens are stored Fernet-encrypted and never leave the service.
    """

    __tablename__ = "provider_connections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    landlord_account_id: Mapped[int] = mapped_column(Integer, unique=True, index=True)

    # Transient PKCE material for an in-flight connect attempt
    oauth_state: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    pkce_verifier: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    access_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    access_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    provider_account_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provider_base_uri: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    connected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    @property
    def is_connected(self) -> bool:
        return bool(self.refresh_token_encrypted and self.provider_account_id)


class ESignEnvelope(Base, AuditMixin):
    """
    Model to track the status and metadata of a docusign envelope.
    """
    __tablename__ = "esign_envelopes"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # The unique ID provided by DocuSign for the envelope
    envelope_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)

    # Current status of the envelope (e.g., sent, delivered, completed)
    status: Mapped[str] = mapped_column(String(64))

    object_type: Mapped[str] = mapped_column(String(64), default="lease")
    object_id: Mapped[int] = mapped_column(Integer, index=True)
    landlord_account_id: Mapped[int] = mapped_column(Integer)

    # Docusign recipientId -> signing role, fixed when the envelope is created
    recipient_roles: Mapped[dict] = mapped_column(JSON, default=dict)

    def role_for_recipient(self, recipient_id) -> Optional[str]:
        if recipient_id is None:
            return None
        return (self.recipient_roles or {}).get(str(recipient_id))
