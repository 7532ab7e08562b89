import base64
from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from PIL import Image
from pypdf import PdfReader

from leasesign.documents.exceptions import DocumentValidationError
from leasesign.documents.pdf import build_lease_pdf, decode_signature_image, stamp_signature
from leasesign.documents.renderer import (
    LANDLORD_SIGNATURE_ANCHOR,
    TENANT_SIGNATURE_ANCHOR,
    render_lease_document,
)
from leasesign.documents.schemas import AnchorKind, LeaseTerms, SigningRole
from leasesign.testing_dependencies import SIGNATURE_IMAGE


def lease_terms(**overrides):
    values = {
        "landlord_name": "Maple Street Holdings",
        "tenant_name": "Jordan Avery",
        "property_label": "12 Maple Street, Unit 3B",
        "start_date": date(2026, 11, 1),
        "end_date": date(2027, 10, 31),
        "rent_amount": Decimal("1850.00"),
        "billing_day_of_month": 1,
        "agreement_date": date(2026, 10, 19),
    }
    values.update(overrides)
    return LeaseTerms(**values)


def test_render_is_deterministic():
    first = render_lease_document(lease_terms())
    second = render_lease_document(lease_terms())

    assert first.html == second.html
    assert first.fingerprint == second.fingerprint
    assert first.anchors == second.anchors


def test_render_places_every_anchor():
    document = render_lease_document(lease_terms())

    initials = [a.name for a in document.anchors if a.kind == AnchorKind.INITIALS]
    assert initials == [f"/init{n}/" for n in range(1, 7)]
    assert document.signature_anchor(SigningRole.TENANT).name == TENANT_SIGNATURE_ANCHOR
    assert document.signature_anchor(SigningRole.LANDLORD).name == LANDLORD_SIGNATURE_ANCHOR
    assert len(document.anchors_for(SigningRole.TENANT)) == 7
    assert len(document.anchors_for(SigningRole.LANDLORD)) == 1
    for anchor in document.anchors:
        assert anchor.name in document.html


def test_render_fills_terms():
    html = render_lease_document(lease_terms()).html

    assert "12 Maple Street, Unit 3B" in html
    assert "$1,850.00" in html
    assert "1st day of each month" in html
    assert "November 1, 2026" in html
    assert "October 19, 2026" in html


def test_month_to_month_lease():
    html = render_lease_document(lease_terms(end_date=None)).html
    assert "Month-to-Month" in html


def test_different_terms_change_fingerprint():
    base = render_lease_document(lease_terms())
    changed = render_lease_document(lease_terms(rent_amount=Decimal("1900.00")))
    assert base.fingerprint != changed.fingerprint


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"tenant_name": None}, "tenant_name"),
        ({"property_label": "   "}, "property_label"),
        ({"start_date": None}, "start_date"),
        ({"rent_amount": Decimal("0")}, "rent_amount"),
        ({"billing_day_of_month": 32}, "billing_day_of_month"),
        ({"end_date": date(2026, 10, 1)}, "end_date"),
    ],
)
def test_render_rejects_invalid_terms(overrides, field):
    with pytest.raises(DocumentValidationError) as exc_info:
        render_lease_document(lease_terms(**overrides))
    assert field in exc_info.value.details["fields"]


def test_pdf_layout_is_deterministic():
    document = render_lease_document(lease_terms())
    first = build_lease_pdf(document)
    second = build_lease_pdf(document)

    assert first.content == second.content
    assert first.placements == second.placements
    assert set(first.placements) == {a.name for a in document.anchors}


def test_pdf_placements_are_on_the_page():
    rendered = build_lease_pdf(render_lease_document(lease_terms()))
    reader = PdfReader(BytesIO(rendered.content))

    for placement in rendered.placements.values():
        page = reader.pages[placement.page_index]
        assert 0 <= placement.x < float(page.mediabox.width)
        assert 0 <= placement.y < float(page.mediabox.height)
        assert placement.width > 0 and placement.height > 0


def test_decode_signature_accepts_data_url():
    image = decode_signature_image(SIGNATURE_IMAGE)
    assert image.mode == "RGB"
    assert image.size == (240, 80)


def test_decode_signature_accepts_bare_base64():
    bare = SIGNATURE_IMAGE.split(",", 1)[1]
    assert decode_signature_image(bare).size == (240, 80)


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "data:image/png;base64,not-base64!!",
        "data:image/png;base64," + base64.b64encode(b"plain text, not an image").decode(),
    ],
)
def test_decode_signature_rejects_garbage(payload):
    with pytest.raises(DocumentValidationError):
        decode_signature_image(payload)


def test_decode_signature_rejects_oversized_payload():
    with pytest.raises(DocumentValidationError):
        decode_signature_image(b"\x89PNG" + b"\x00" * (2 * 1024 * 1024 + 1))


def test_decode_signature_rejects_huge_dimensions():
    buf = BytesIO()
    Image.new("1", (5000, 1000)).save(buf, format="PNG")
    assert len(buf.getvalue()) < 2 * 1024 * 1024

    with pytest.raises(DocumentValidationError) as exc_info:
        decode_signature_image(buf.getvalue())
    assert exc_info.value.details["fields"] == ["signature_image"]


def test_decode_signature_rejects_decompression_bomb(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(DocumentValidationError):
        decode_signature_image(SIGNATURE_IMAGE)


def test_stamp_adds_signature_block_and_audit_page():
    document = render_lease_document(lease_terms())
    rendered = build_lease_pdf(document)
    base_pages = len(PdfReader(BytesIO(rendered.content)).pages)
    placement = rendered.placements[TENANT_SIGNATURE_ANCHOR]

    stamped = stamp_signature(
        rendered.content,
        placement,
        decode_signature_image(SIGNATURE_IMAGE),
        ["Name: Jordan Avery", "Email: jordan@example.com"],
        {"role": "tenant", "signerName": "Jordan Avery", "ip": "203.0.113.9"},
    )
    reader = PdfReader(BytesIO(stamped))

    assert len(reader.pages) == base_pages + 1
    assert "Name: Jordan Avery" in reader.pages[placement.page_index].extract_text()
    audit_text = reader.pages[-1].extract_text()
    assert "Audit Log" in audit_text
    assert "203.0.113.9" in audit_text
