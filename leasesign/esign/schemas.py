# leasesign/esign/schemas.py

from datetime import datetime
from typing import Dict, Optional

from pydantic import AnyHttpUrl, BaseModel

from leasesign.documents.schemas import SigningRole


class ConnectRedirect(BaseModel):
    """Where to send the landlord to authorize, plus the values for the cookies."""

    authorization_url: str
    state: str
    verifier_fingerprint: str


class ConnectionStatus(BaseModel):
    landlord_account_id: int
    connected: bool
    provider_account_id: Optional[str] = None
    access_token_expires_at: Optional[datetime] = None
    connected_at: Optional[datetime] = None
    last_error: Optional[str] = None


class ConnectionTestResult(BaseModel):
    landlord_account_id: int
    ok: bool
    provider_account_id: Optional[str] = None
    account_name: Optional[str] = None


class EnvelopeResult(BaseModel):
    """Response after creating an envelope."""

    lease_id: int
    envelope_id: str
    status: str
    recipient_roles: Dict[str, SigningRole]


class RecipientViewRequest(BaseModel):
    role: SigningRole
    # The URL the signer is redirected to after embedded signing
    return_url: Optional[AnyHttpUrl] = None


class RecipientViewResponse(BaseModel):
    lease_id: int
    envelope_id: str
    role: SigningRole
    url: str


class WebhookResult(BaseModel):
    status: str
    envelope_id: Optional[str] = None
    applied: int = 0
    fully_executed: bool = False
    reason: Optional[str] = None
