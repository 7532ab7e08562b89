# leasesign/leases/schemas.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from leasesign.documents.schemas import SigningRole

LEASE_FULLY_EXECUTED = "lease_fully_executed"


class SignatureSyncResult(BaseModel):
    """Outcome of recording one role's signature on a lease"""

    lease_id: int
    role: SigningRole
    applied: bool
    fully_executed: bool


class SignatureRequestCreate(BaseModel):
    role: SigningRole


class SignatureRequestSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    role: SigningRole
    status: str
    recipient_name: str
    recipient_email: str
    expires_at: datetime
    signed_at: Optional[datetime] = None
    document_hash: Optional[str] = None


class SignedArtifactSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    signature_request_id: Optional[int] = None
    document_key: str
    audit_key: Optional[str] = None
    content_hash: str
    created_on: Optional[datetime] = None


class LeaseSigningStatus(BaseModel):
    lease_id: int
    tenant_signed: bool
    landlord_signed: bool
    tenant_signed_at: Optional[datetime] = None
    landlord_signed_at: Optional[datetime] = None
    fully_executed_at: Optional[datetime] = None
    docusign_envelope_id: Optional[str] = None
    signed_document_key: Optional[str] = None
    requests: List[SignatureRequestSummary] = []
    artifacts: List[SignedArtifactSummary] = []


class ArtifactVerification(BaseModel):
    artifact_id: int
    recorded_hash: str
    computed_hash: str
    matches: bool
