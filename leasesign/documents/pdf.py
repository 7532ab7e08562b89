### leasesign/documents/pdf.py

# Standard library imports
import base64
import binascii
import json
import textwrap
from io import BytesIO
from typing import Dict, List, Union
from xml.sax.saxutils import escape

# Third party imports
from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import Flowable, Paragraph, SimpleDocTemplate, Spacer

# Local imports
from leasesign.documents.exceptions import AnchorNotFoundError, DocumentValidationError
from leasesign.documents.schemas import (
    AnchorPlacement,
    BlockKind,
    DocumentBlock,
    LeaseDocument,
    RenderedPdf,
)
from leasesign.utils.logger import get_logger

logger = get_logger(__name__)

MAX_SIGNATURE_BYTES = 2 * 1024 * 1024
MAX_SIGNATURE_PIXELS = 4_000_000
PAGE_MARGIN = 54

SIGNATURE_BOX_WIDTH = 250
SIGNATURE_BOX_HEIGHT = 38
SIGNATURE_BLOCK_HEIGHT = 110
INITIALS_BOX_WIDTH = 90
INITIALS_BLOCK_HEIGHT = 24
STAMP_LINE_HEIGHT = 9


class AnchorFlowable(Flowable):
    """
    Draws an initials or signature line and records where its box landed
    so the stamper can later draw into it.
    """

    def __init__(self, block: DocumentBlock, placements: Dict[str, AnchorPlacement]):
        super().__init__()
        self.block = block
        self.placements = placements
        self.is_signature = block.kind == BlockKind.SIGNATURE
        self.height = SIGNATURE_BLOCK_HEIGHT if self.is_signature else INITIALS_BLOCK_HEIGHT

    def wrap(self, availWidth, availHeight):
        self.width = availWidth
        return availWidth, self.height

    def draw(self):
        c = self.canv
        anchor = self.block.anchor

        if self.is_signature:
            c.setFont("Helvetica-Bold", 9)
            c.drawString(0, self.height - 12, self.block.text)
            box_x, box_y = 0, 54
            box_w, box_h = SIGNATURE_BOX_WIDTH, SIGNATURE_BOX_HEIGHT
            c.line(box_x, box_y - 2, box_x + box_w, box_y - 2)
        else:
            c.setFont("Helvetica-Bold", 8)
            c.setFillColor(colors.HexColor("#666666"))
            c.drawString(0, 8, self.block.text)
            box_x, box_y = 80, 4
            box_w, box_h = INITIALS_BOX_WIDTH, INITIALS_BLOCK_HEIGHT - 6
            c.line(box_x, box_y - 1, box_x + box_w, box_y - 1)

        # Anchor string stays in the text layer for tab placement
        c.setFont("Helvetica", 1)
        c.setFillColor(colors.white)
        c.drawString(box_x, box_y, anchor.name)

        abs_x, abs_y = c.absolutePosition(box_x, box_y)
        self.placements[anchor.name] = AnchorPlacement(
            page_index=c.getPageNumber() - 1,
            x=abs_x,
            y=abs_y,
            width=box_w,
            height=box_h,
        )


def build_lease_pdf(document: LeaseDocument) -> RenderedPdf:
    """
    Lay out the rendered lease as a PDF.

    The same document always produces the same bytes and anchor placements.
    """
    buffer = BytesIO()
    placements: Dict[str, AnchorPlacement] = {}
    doc = SimpleDocTemplate(
        buffer, pagesize=LETTER, rightMargin=PAGE_MARGIN, leftMargin=PAGE_MARGIN,
        topMargin=PAGE_MARGIN, bottomMargin=PAGE_MARGIN,
        title=document.title, invariant=1,
    )
    styles = getSampleStyleSheet()
    body = styles["BodyText"]
    heading = styles["Heading4"]

    elements = [Paragraph(escape(document.title.upper()), styles["Title"]), Spacer(1, 12)]
    for block in document.blocks:
        if block.kind == BlockKind.HEADING:
            elements.append(Paragraph(escape(block.text.upper()), heading))
        elif block.kind == BlockKind.PARAGRAPH:
            elements.append(Paragraph(escape(block.text), body))
        else:
            elements.append(AnchorFlowable(block, placements))
            elements.append(Spacer(1, 6))

    doc.build(elements)

    for anchor in document.anchors:
        if anchor.name not in placements:
            raise AnchorNotFoundError(anchor.name)

    return RenderedPdf(content=buffer.getvalue(), placements=placements)


def decode_signature_image(data: Union[str, bytes]) -> Image.Image:
    """
    Decode a captured signature into an RGB image on a white background.

    Accepts a data URL (``data:image/png;base64,...``), bare base64 or raw bytes.

    Raises:
        DocumentValidationError: If the payload is not a readable image
    """
    if isinstance(data, str):
        raw = data.strip()
        if raw.startswith("data:"):
            header, _, raw = raw.partition(",")
            if "base64" not in header.lower():
                raise DocumentValidationError("Signature must be a base64 data URL", fields=["signature_image"])
        try:
            payload = base64.b64decode(raw, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DocumentValidationError("Signature image is not valid base64", fields=["signature_image"]) from e
    else:
        payload = data

    if not payload:
        raise DocumentValidationError("Signature image is empty", fields=["signature_image"])
    if len(payload) > MAX_SIGNATURE_BYTES:
        raise DocumentValidationError("Signature image is too large", fields=["signature_image"])

    try:
        img = Image.open(BytesIO(payload))
        if img.width * img.height > MAX_SIGNATURE_PIXELS:
            raise DocumentValidationError("Signature image dimensions are too large", fields=["signature_image"])
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise DocumentValidationError("Signature image could not be read", fields=["signature_image"]) from e

    if img.width <= 0 or img.height <= 0:
        raise DocumentValidationError("Signature image has no content", fields=["signature_image"])

    rgba = img.convert("RGBA")
    background = Image.new("RGB", rgba.size, "white")
    background.paste(rgba, mask=rgba.split()[-1])
    return background


def _overlay_page(page_width: float, page_height: float, draw) -> PdfReader:
    overlay_buf = BytesIO()
    c = canvas.Canvas(overlay_buf, pagesize=(page_width, page_height), invariant=1)
    draw(c)
    c.save()
    overlay_buf.seek(0)
    return PdfReader(overlay_buf)


def _audit_pages(audit_record: dict, page_width: float, page_height: float) -> PdfReader:
    lines: List[str] = []
    for line in json.dumps(audit_record, indent=2, sort_keys=True, default=str).splitlines():
        lines.extend(textwrap.wrap(line, width=95, subsequent_indent="    ") or [""])

    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(page_width, page_height), invariant=1)
    top = page_height - PAGE_MARGIN

    def start_page():
        c.setFont("Helvetica-Bold", 14)
        c.drawString(PAGE_MARGIN, top, "Audit Log")
        c.setFont("Helvetica", 9)
        c.drawString(
            PAGE_MARGIN, top - 16,
            "Capture context recorded when the signature above was applied.",
        )
        c.setFont("Courier", 8)
        return top - 40

    y = start_page()
    for line in lines:
        if y < PAGE_MARGIN:
            c.showPage()
            y = start_page()
        c.drawString(PAGE_MARGIN, y, line)
        y -= 10
    c.save()
    buf.seek(0)
    return PdfReader(buf)


def stamp_signature(
    base_pdf: bytes,
    placement: AnchorPlacement,
    signature: Image.Image,
    stamp_lines: List[str],
    audit_record: dict,
) -> bytes:
    """
    Draw the signature image and its text block at an anchor placement and
    append an audit page.

    Args:
        base_pdf: Document to stamp
        placement: Signature box for the signer's role
        signature: Decoded signature image
        stamp_lines: Visible text block printed beneath the signature
        audit_record: Full capture context written to the audit page

    Returns:
        bytes: The stamped PDF
    """
    reader = PdfReader(BytesIO(base_pdf))
    writer = PdfWriter()

    if placement.page_index >= len(reader.pages):
        raise AnchorNotFoundError(f"page {placement.page_index + 1}")

    first_page = reader.pages[0]
    page_w = float(first_page.mediabox.width)
    page_h = float(first_page.mediabox.height)

    iw, ih = signature.size
    scale = min(placement.width / float(iw), placement.height / float(ih))
    draw_w, draw_h = iw * scale, ih * scale

    def draw_stamp(c):
        c.drawImage(
            ImageReader(signature),
            placement.x, placement.y + (placement.height - draw_h) / 2.0,
            width=draw_w, height=draw_h,
        )
        c.setFont("Helvetica", 7)
        y = placement.y - 2 - STAMP_LINE_HEIGHT
        for line in stamp_lines:
            c.drawString(placement.x, y, line[:110])
            y -= STAMP_LINE_HEIGHT

    for idx, page in enumerate(reader.pages):
        if idx == placement.page_index:
            overlay = _overlay_page(
                float(page.mediabox.width), float(page.mediabox.height), draw_stamp
            )
            page.merge_page(overlay.pages[0])
        writer.add_page(page)

    for page in _audit_pages(audit_record, page_w, page_h).pages:
        writer.add_page(page)

    out = BytesIO()
    writer.write(out)
    logger.info("Stamped signature onto document", page_index=placement.page_index, pages=len(writer.pages))
    return out.getvalue()
