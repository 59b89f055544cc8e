from __future__ import annotations

from io import BytesIO
from typing import Any, Dict

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas


def quotation_pdf_filename(quotation: Dict[str, Any], decision: str) -> str:
    number = str(quotation.get("quote_number") or quotation.get("id") or "quotation")
    return f"{number}-{decision.lower()}.pdf"


def _money(value) -> str:
    try:
        return f"{float(value or 0):,.2f}"
    except (TypeError, ValueError):
        return "0.00"


class ReportlabQuotationRenderer:
    """One-page quotation summary used for the decision snapshots."""

    def __init__(self, brand: str = "FacilityFlow") -> None:
        self.brand = brand

    def render_quotation_pdf(self, quotation: Dict[str, Any]) -> bytes:
        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=A4)
        c.setTitle(str(quotation.get("quote_number") or "Quotation"))
        _, height = A4

        y = height - 20 * mm
        c.setFont("Helvetica-Bold", 16)
        c.drawString(20 * mm, y, self.brand)
        c.setFont("Helvetica", 11)
        c.drawString(20 * mm, y - 8 * mm, f"Quotation {quotation.get('quote_number') or ''}")

        y -= 18 * mm
        c.setFont("Helvetica", 10)

        def line(text: str) -> None:
            nonlocal y
            c.drawString(20 * mm, y, text[:110])
            y -= 6 * mm

        line(f"RFQ: {quotation.get('rfq_reference') or '-'}")
        author = quotation.get("created_by_email") or quotation.get("submitted_by_email") or "FacilityFlow"
        line(f"Submitted by: {author}")
        line(f"Status: {quotation.get('status') or ''}")
        line(f"Date: {quotation.get('created_at') or ''}")
        y -= 4 * mm

        c.setFont("Helvetica-Bold", 10)
        line("Items")
        c.setFont("Helvetica", 10)
        for item in quotation.get("items") or []:
            if y < 40 * mm:
                c.showPage()
                c.setFont("Helvetica", 10)
                y = height - 20 * mm
            description = str(item.get("description") or "")
            line(
                f"{description} | qty {item.get('quantity', 0)} x {_money(item.get('unit_price'))}"
                f" = {_money(item.get('amount'))}"
            )

        y -= 4 * mm
        line(f"Subtotal: {_money(quotation.get('subtotal'))}")
        line(f"Tax: {_money(quotation.get('tax'))}")
        c.setFont("Helvetica-Bold", 11)
        line(f"Total: {_money(quotation.get('total'))}")

        c.showPage()
        c.save()
        return buf.getvalue()
