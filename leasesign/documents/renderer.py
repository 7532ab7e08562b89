# leasesign/documents/renderer.py

"""
Lease template renderer.

Turns lease terms into the canonical agreement: an ordered list of blocks
with anchor markers for every tenant initial and both signatures. The
hosted provider places its tabs by searching for the anchor strings in the
HTML and the PDF builder stamps at the positions of the same anchors, so
the layout must depend only on the terms passed in.
"""

import hashlib
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import List

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from leasesign.documents.exceptions import DocumentValidationError
from leasesign.documents.schemas import (
    Anchor,
    AnchorKind,
    BlockKind,
    DocumentBlock,
    LeaseDocument,
    LeaseTerms,
    SigningRole,
)

DOCUMENT_TITLE = "Residential Lease Agreement"

REQUIRED_FIELDS = (
    "landlord_name",
    "tenant_name",
    "property_label",
    "start_date",
    "rent_amount",
    "billing_day_of_month",
    "agreement_date",
)

TENANT_SIGNATURE_ANCHOR = "/sig_tenant/"
LANDLORD_SIGNATURE_ANCHOR = "/sig_landlord/"

# (heading, paragraphs); each section is initialled by the tenant
SECTIONS = (
    (
        "Property",
        (
            "The Landlord hereby leases to the Tenant the premises located at: "
            "{property_label} (\"Premises\").",
        ),
    ),
    (
        "Lease Term",
        (
            "The term of this Lease shall begin on {start_date} and end on "
            "{end_date} unless renewed or terminated earlier.",
        ),
    ),
    (
        "Rent",
        (
            "Tenant agrees to pay monthly rent of ${rent_amount}, due on the "
            "{billing_day} day of each month.",
            "Payments shall be made to: {landlord_name}.",
        ),
    ),
    (
        "Security Deposit",
        (
            "Tenant shall pay a security deposit as required by law and/or as "
            "provided in the addendum(s) to this Lease.",
        ),
    ),
    (
        "Utilities",
        (
            "Tenant is responsible for the following utilities: Electric, Gas, "
            "Internet, Cable.",
            "Landlord is responsible for: Water, Sewer, Trash.",
        ),
    ),
    (
        "Rules & Regulations",
        ("Tenant agrees to comply with all property rules.",),
    ),
)

_template_env = Environment(
    loader=FileSystemLoader(Path(__file__).parent.parent / "templates" / "documents"),
    autoescape=select_autoescape(["html"]),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def format_long_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def format_money(value: Decimal) -> str:
    return f"{Decimal(value):,.2f}"


def ordinal(day: int) -> str:
    if 10 <= day % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def validate_terms(terms: LeaseTerms) -> None:
    """
    Raise DocumentValidationError when the terms cannot produce a complete agreement
    """
    missing: List[str] = []
    for field in REQUIRED_FIELDS:
        value = getattr(terms, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    if missing:
        raise DocumentValidationError(
            f"Lease is missing required fields: {', '.join(missing)}", fields=missing
        )

    if terms.rent_amount <= 0:
        raise DocumentValidationError("Rent amount must be greater than zero", fields=["rent_amount"])
    if not 1 <= terms.billing_day_of_month <= 31:
        raise DocumentValidationError(
            "Billing day must be between 1 and 31", fields=["billing_day_of_month"]
        )
    if terms.end_date and terms.end_date < terms.start_date:
        raise DocumentValidationError(
            "Lease end date is before the start date", fields=["start_date", "end_date"]
        )


def _build_blocks(terms: LeaseTerms) -> List[DocumentBlock]:
    values = {
        "landlord_name": terms.landlord_name.strip(),
        "tenant_name": terms.tenant_name.strip(),
        "property_label": terms.property_label.strip(),
        "start_date": format_long_date(terms.start_date),
        "end_date": format_long_date(terms.end_date) if terms.end_date else "Month-to-Month",
        "rent_amount": format_money(terms.rent_amount),
        "billing_day": ordinal(terms.billing_day_of_month),
        "agreement_date": format_long_date(terms.agreement_date),
    }

    blocks = [
        DocumentBlock(
            kind=BlockKind.PARAGRAPH,
            text="THIS LEASE AGREEMENT (\"Agreement\") is made on {agreement_date}, between:".format(**values),
        ),
        DocumentBlock(kind=BlockKind.PARAGRAPH, text="Landlord: {landlord_name} (\"Landlord\")".format(**values)),
        DocumentBlock(kind=BlockKind.PARAGRAPH, text="Tenant(s): {tenant_name} (\"Tenant\")".format(**values)),
    ]

    for number, (heading, paragraphs) in enumerate(SECTIONS, start=1):
        blocks.append(DocumentBlock(kind=BlockKind.HEADING, text=heading))
        blocks.extend(
            DocumentBlock(kind=BlockKind.PARAGRAPH, text=p.format(**values)) for p in paragraphs
        )
        blocks.append(
            DocumentBlock(
                kind=BlockKind.INITIALS,
                text="Tenant Initials:",
                anchor=Anchor(name=f"/init{number}/", kind=AnchorKind.INITIALS, role=SigningRole.TENANT),
            )
        )

    blocks.append(DocumentBlock(kind=BlockKind.HEADING, text="Signatures"))
    blocks.append(
        DocumentBlock(
            kind=BlockKind.SIGNATURE,
            text="LANDLORD SIGNATURE:",
            anchor=Anchor(name=LANDLORD_SIGNATURE_ANCHOR, kind=AnchorKind.SIGNATURE, role=SigningRole.LANDLORD),
        )
    )
    blocks.append(
        DocumentBlock(
            kind=BlockKind.SIGNATURE,
            text="TENANT SIGNATURE:",
            anchor=Anchor(name=TENANT_SIGNATURE_ANCHOR, kind=AnchorKind.SIGNATURE, role=SigningRole.TENANT),
        )
    )
    return blocks


def render_lease_document(terms: LeaseTerms) -> LeaseDocument:
    """
    Render the canonical lease agreement for the given terms.

    Args:
        terms: Lease and party data

    Returns:
        LeaseDocument with ordered blocks, anchors and HTML markup

    Raises:
        DocumentValidationError: If a required field is missing or invalid
    """
    validate_terms(terms)
    blocks = _build_blocks(terms)
    anchors = tuple(b.anchor for b in blocks if b.anchor is not None)

    html = _template_env.get_template("lease_agreement.html").render(
        title=DOCUMENT_TITLE,
        blocks=blocks,
        agreement_date=format_long_date(terms.agreement_date),
    )

    return LeaseDocument(
        title=DOCUMENT_TITLE,
        blocks=tuple(blocks),
        anchors=anchors,
        html=html,
        fingerprint=hashlib.sha256(html.encode("utf-8")).hexdigest(),
    )
