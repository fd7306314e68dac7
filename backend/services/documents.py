"""Rendu du bon de commande (pièce jointe envoyée au fournisseur)."""

from __future__ import annotations

from decimal import Decimal

import pandas as pd
from fpdf import FPDF

from backend.app.core.errors import ValidationError
from backend.app.db.models.models_v1 import PurchaseOrder
from backend.services.email_client import Attachment

SUPPORTED_FORMATS = ("pdf", "csv")


def _money(value) -> str:
    return f"{Decimal(value or 0):.2f}"


def render_po_pdf(po: PurchaseOrder) -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", "B", 16)
    pdf.cell(0, 10, f"PURCHASE ORDER {po.po_number}", new_x="LMARGIN", new_y="NEXT", align="C")
    pdf.ln(5)

    pdf.set_font("Helvetica", size=11)
    pdf.cell(0, 8, f"Vendor: {po.vendor_name or '-'}", new_x="LMARGIN", new_y="NEXT")
    if po.approved_at:
        pdf.cell(0, 8, f"Approved: {po.approved_at:%Y-%m-%d} by {po.approved_by or '-'}", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(5)

    # en-tête du tableau
    pdf.set_font("Helvetica", "B", 10)
    for label, width in (("SKU", 40), ("Product", 70), ("Qty", 20), ("Unit cost", 30), ("Total", 30)):
        pdf.cell(width, 8, label, border=1)
    pdf.ln()

    pdf.set_font("Helvetica", size=10)
    for line in po.lines:
        pdf.cell(40, 8, line.sku[:20], border=1)
        pdf.cell(70, 8, (line.product_name or "")[:38], border=1)
        pdf.cell(20, 8, str(line.quantity), border=1, align="R")
        pdf.cell(30, 8, _money(line.unit_cost), border=1, align="R")
        pdf.cell(30, 8, _money(line.line_total), border=1, align="R")
        pdf.ln()

    pdf.set_font("Helvetica", "B", 11)
    pdf.cell(160, 8, "TOTAL", border=1, align="R")
    pdf.cell(30, 8, _money(po.total_amount), border=1, align="R")
    return bytes(pdf.output())


def render_po_csv(po: PurchaseOrder) -> bytes:
    df = pd.DataFrame(
        [
            {
                "po_number": po.po_number,
                "sku": line.sku,
                "product_name": line.product_name or "",
                "quantity": line.quantity,
                "unit_cost": _money(line.unit_cost),
                "line_total": _money(line.line_total),
            }
            for line in po.lines
        ],
        columns=["po_number", "sku", "product_name", "quantity", "unit_cost", "line_total"],
    )
    return df.to_csv(index=False).encode("utf-8")


def render_po_document(po: PurchaseOrder, fmt: str) -> Attachment:
    fmt = (fmt or "pdf").lower()
    if fmt == "pdf":
        return Attachment(f"{po.po_number}.pdf", "application/pdf", render_po_pdf(po))
    if fmt == "csv":
        return Attachment(f"{po.po_number}.csv", "text/csv", render_po_csv(po))
    raise ValidationError(f"Unsupported attachment format {fmt!r}", {"supported": list(SUPPORTED_FORMATS)})
