# leasesign/signing/schemas.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from leasesign.documents.schemas import Anchor, SigningRole


class Recipient(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr


class SignatureRequestCreated(BaseModel):
    request_id: int
    lease_id: int
    role: SigningRole
    recipient_email: EmailStr
    expires_at: datetime
    notification_queued: bool = False


class SigningSession(BaseModel):
    """What a signer sees when following a signing link"""

    request_id: int
    lease_id: int
    role: SigningRole
    signer_name: str
    signer_email: str
    expires_at: datetime
    document_title: str
    document_html: str
    anchors: List[Anchor]


class SignatureSubmit(BaseModel):
    signature_image: str = Field(
        min_length=1, description="Captured signature as a data URL or base64 PNG/JPEG"
    )


class SignatureSubmitResult(BaseModel):
    request_id: int
    lease_id: int
    role: SigningRole
    signed_at: datetime
    document_hash: str
    artifact_id: int
    document_key: str
    audit_key: str
    lease_fully_executed: bool = False
    follow_up_request_id: Optional[int] = None
