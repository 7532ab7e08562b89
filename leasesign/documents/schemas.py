# leasesign/documents/schemas.py

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, EmailStr


class SigningRole(str, Enum):
    """Parties that sign a lease"""
    TENANT = "tenant"
    LANDLORD = "landlord"


class AnchorKind(str, Enum):
    INITIALS = "initials"
    SIGNATURE = "signature"


class BlockKind(str, Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    INITIALS = "initials"
    SIGNATURE = "signature"


class LeaseTerms(BaseModel):
    """
    Lease and party data needed to render the agreement.
    Captured verbatim on each signature request so a signer always sees
    the terms that were current when their link was issued.
    """

    landlord_name: Optional[str] = None
    tenant_name: Optional[str] = None
    property_label: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    rent_amount: Optional[Decimal] = None
    billing_day_of_month: Optional[int] = None
    agreement_date: Optional[date] = None
    tenant_email: Optional[EmailStr] = None
    landlord_email: Optional[EmailStr] = None


class Anchor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    kind: AnchorKind
    role: SigningRole


class DocumentBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: BlockKind
    text: str = ""
    anchor: Optional[Anchor] = None


class LeaseDocument(BaseModel):
    """Canonical rendered lease: ordered blocks, anchors and the HTML markup"""

    model_config = ConfigDict(frozen=True)

    title: str
    blocks: Tuple[DocumentBlock, ...]
    anchors: Tuple[Anchor, ...]
    html: str
    fingerprint: str

    def anchors_for(self, role: SigningRole) -> List[Anchor]:
        return [a for a in self.anchors if a.role == role]

    def signature_anchor(self, role: SigningRole) -> Anchor:
        return next(
            a for a in self.anchors
            if a.role == role and a.kind == AnchorKind.SIGNATURE
        )


class AnchorPlacement(BaseModel):
    """Where an anchor landed in the PDF, in points from the bottom-left corner"""

    model_config = ConfigDict(frozen=True)

    page_index: int
    x: float
    y: float
    width: float
    height: float


class RenderedPdf(BaseModel):
    content: bytes
    placements: Dict[str, AnchorPlacement]
