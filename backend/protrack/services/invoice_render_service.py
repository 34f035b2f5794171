# Overview: Renders a recorded sale as a printable PDF invoice.

"""
Invoice Rendering

Pure formatting: consumes the resolved sale detail produced by
sales_service.sale_detail() and never re-derives pricing. Every amount
printed here is a stored snapshot.
"""

from __future__ import annotations

from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from protrack.time_utils import parse_iso_datetime

FOOTER_TEXT = "Thank you for your business!"


def format_cents(cents: int | None) -> str:
    cents = cents or 0
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) // 100:,}.{abs(cents) % 100:02d}"


def format_rate(bps: int | None) -> str:
    bps = bps or 0
    if bps % 100 == 0:
        return f"{bps // 100}%"
    return f"{bps / 100:.2f}".rstrip("0").rstrip(".") + "%"


def _invoice_date(detail: dict) -> str:
    created = parse_iso_datetime(detail.get("created_at"))
    return created.strftime("%Y-%m-%d") if created else "N/A"


def _billed_to(detail: dict) -> list[str]:
    customer = detail.get("customer") or {}
    lines = [customer.get("name") or "N/A"]
    for key in ("phone", "email", "formatted_address"):
        if customer.get(key):
            lines.append(customer[key])
    return lines


def _item_rows(detail: dict) -> list[list[str]]:
    rows = [["Item", "Model", "Qty", "Unit Price", "Total"]]
    for line in detail.get("lines", []):
        product = line.get("product") or {}
        rows.append([
            product.get("name") or f"Product #{line.get('product_id')}",
            product.get("model_number") or "",
            str(line["quantity"]),
            format_cents(line["unit_price_cents"]),
            format_cents(line["line_total_cents"]),
        ])
    return rows


def _total_rows(detail: dict) -> list[list[str]]:
    rows = [
        ["Subtotal:", format_cents(detail["subtotal_cents"])],
        [f"Tax ({format_rate(detail['tax_rate_bps'])}):", format_cents(detail["tax_cents"])],
    ]
    if detail.get("discount_cents"):
        rows.append([
            f"Discount ({format_rate(detail['discount_rate_bps'])}):",
            f"-{format_cents(detail['discount_cents'])}",
        ])
    rows.append(["Total:", format_cents(detail["total_cents"])])
    return rows


def render_invoice_pdf(detail: dict, shop: dict) -> bytes:
    """
    Build the invoice PDF for one sale.

    Args:
        detail: resolved sale detail (customer, lines with product names)
        shop: issuer header, keys name/address/phone/email

    Returns:
        PDF document bytes
    """
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        title=f"Invoice {detail['invoice_number']}",
    )

    styles = getSampleStyleSheet()
    shop_style = ParagraphStyle("Shop", parent=styles["Heading1"], fontSize=18, spaceAfter=4)
    title_style = ParagraphStyle("Title", parent=styles["Heading1"], fontSize=20, spaceAfter=12, alignment=2)
    footer_style = ParagraphStyle("Footer", parent=styles["Normal"], alignment=1, textColor=colors.grey)

    story = []

    # Shop header
    story.append(Paragraph(escape(shop.get("name") or ""), shop_style))
    for key in ("address", "phone", "email"):
        if shop.get(key):
            story.append(Paragraph(escape(shop[key]), styles["Normal"]))
    story.append(Spacer(1, 12))

    story.append(Paragraph("INVOICE", title_style))

    invoice_info = [
        ["Invoice Number:", detail["invoice_number"]],
        ["Invoice Date:", _invoice_date(detail)],
        ["Payment Status:", detail.get("payment_status") or ""],
        ["Payment Method:", detail.get("payment_method") or ""],
    ]
    info_table = Table(invoice_info, colWidths=[1.6 * inch, 2.4 * inch], hAlign="RIGHT")
    info_table.setStyle(TableStyle([
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]))
    story.append(info_table)
    story.append(Spacer(1, 12))

    # Billed to
    story.append(Paragraph("<b>Bill To:</b>", styles["Normal"]))
    for text in _billed_to(detail):
        story.append(Paragraph(escape(text), styles["Normal"]))
    story.append(Spacer(1, 16))

    items_table = Table(
        _item_rows(detail),
        colWidths=[2.3 * inch, 1.3 * inch, 0.6 * inch, 1.2 * inch, 1.2 * inch],
        repeatRows=1,
    )
    items_table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.lightgrey),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("ALIGN", (2, 0), (-1, -1), "RIGHT"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
    ]))
    story.append(items_table)
    story.append(Spacer(1, 12))

    totals_table = Table(_total_rows(detail), colWidths=[1.6 * inch, 1.2 * inch], hAlign="RIGHT")
    totals_table.setStyle(TableStyle([
        ("ALIGN", (0, 0), (-1, -1), "RIGHT"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("LINEABOVE", (0, -1), (-1, -1), 0.5, colors.black),
    ]))
    story.append(totals_table)

    if detail.get("notes"):
        story.append(Spacer(1, 16))
        story.append(Paragraph("<b>Notes:</b>", styles["Normal"]))
        story.append(Paragraph(escape(detail["notes"]), styles["Normal"]))

    story.append(Spacer(1, 30))
    story.append(Paragraph(FOOTER_TEXT, footer_style))

    doc.build(story)
    return buffer.getvalue()
