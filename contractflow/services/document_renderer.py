"""
Final contract document rendering.

Produces the immutable PDF handed to both parties once a contract is signed
and paid: parties, financial summary, the full content body, signature block
and the payment reference. Layout is intentionally plain.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from datetime import datetime

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from contractflow.utils.money import format_cents
from contractflow.utils.validators import escape_markup

logger = logging.getLogger(__name__)


@dataclass
class DocumentData:
    contract_id: str
    title: str
    content: str
    currency: str
    total_amount_cents: int
    deposit_amount_cents: int
    total_paid_cents: int
    contractor_name: str
    contractor_email: str
    client_name: str
    client_email: str
    signer_name: str
    signed_at: datetime | None
    contract_hash: str
    signature_image: bytes | None = None
    payment_reference: str | None = None
    completed_at: datetime | None = None


def _signature_flowable(image_bytes: bytes | None):
    if not image_bytes:
        return None
    try:
        reader = ImageReader(io.BytesIO(image_bytes))
        width, height = reader.getSize()
    except (OSError, ValueError):
        logger.warning("document.signature_image_unreadable", extra={"event": "document.signature_image_unreadable"})
        return None
    scale = min(2.5 * inch / max(width, 1), 0.9 * inch / max(height, 1))
    return Image(io.BytesIO(image_bytes), width=width * scale, height=height * scale)


def render_contract_pdf(data: DocumentData) -> bytes:
    """Render the final signed contract and return the PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=inch,
        leftMargin=inch,
        topMargin=inch,
        bottomMargin=inch,
        title=data.title,
    )

    elements = []
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ContractTitle",
        parent=styles["Heading1"],
        fontSize=20,
        textColor=colors.HexColor("#2C3E50"),
        spaceAfter=20,
        alignment=TA_CENTER,
    )

    elements.append(Paragraph(escape_markup(data.title), title_style))
    elements.append(Spacer(1, 0.2 * inch))

    parties = [
        ["Contractor:", escape_markup(data.contractor_name), "Client:", escape_markup(data.client_name)],
        ["", escape_markup(data.contractor_email), "", escape_markup(data.client_email)],
    ]
    parties_table = Table(parties, colWidths=[1.1 * inch, 2.2 * inch, 0.8 * inch, 2.4 * inch])
    parties_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ]
        )
    )
    elements.append(parties_table)
    elements.append(Spacer(1, 0.3 * inch))

    remaining = max(data.total_amount_cents - data.total_paid_cents, 0)
    summary = [
        ["Financial summary", ""],
        ["Total", format_cents(data.total_amount_cents, data.currency)],
        ["Deposit", format_cents(data.deposit_amount_cents, data.currency)],
        ["Paid", format_cents(data.total_paid_cents, data.currency)],
        ["Remaining", format_cents(remaining, data.currency)],
    ]
    summary_table = Table(summary, colWidths=[3.5 * inch, 2 * inch])
    summary_table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#3498DB")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
            ]
        )
    )
    elements.append(summary_table)
    elements.append(Spacer(1, 0.3 * inch))

    for block in (data.content or "").split("\n\n"):
        if block.strip():
            elements.append(Paragraph(escape_markup(block).replace("\n", "<br/>"), styles["Normal"]))
            elements.append(Spacer(1, 0.1 * inch))

    elements.append(Spacer(1, 0.3 * inch))
    elements.append(Paragraph("<b>Signature</b>", styles["Heading2"]))
    signature = _signature_flowable(data.signature_image)
    if signature is not None:
        elements.append(signature)
    signed_on = data.signed_at.strftime("%B %d, %Y %H:%M UTC") if data.signed_at else "N/A"
    elements.append(Paragraph(f"Signed by {escape_markup(data.signer_name)} on {signed_on}", styles["Normal"]))

    footer_style = ParagraphStyle("Footer", parent=styles["Normal"], fontSize=8, textColor=colors.grey)
    elements.append(Spacer(1, 0.3 * inch))
    elements.append(Paragraph(f"Contract ID: {escape_markup(data.contract_id)}", footer_style))
    elements.append(Paragraph(f"Content SHA-256: {escape_markup(data.contract_hash)}", footer_style))
    if data.payment_reference:
        elements.append(Paragraph(f"Payment reference: {escape_markup(data.payment_reference)}", footer_style))

    doc.build(elements)
    return buffer.getvalue()
