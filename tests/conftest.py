import io

import pytest
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle

INVOICE_LINE_ITEMS = [
    ["Item", "Qty", "Amount"],
    ["Widget", "2", "40.00"],
    ["Gadget", "1", "25.50"],
]


@pytest.fixture()
def invoice_pdf_bytes() -> bytes:
    """One-page invoice: a letterhead, two label/value lines and a ruled line-item table."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.drawString(72, 780, "ACME Supplies Ltd")
    c.drawString(72, 760, "Invoice Number: INV-2041")
    c.drawString(72, 740, "Due Date: 2026-02-14")

    table = Table(INVOICE_LINE_ITEMS, colWidths=[160, 60, 90])
    table.setStyle(TableStyle([("GRID", (0, 0), (-1, -1), 0.75, colors.black)]))
    _, height = table.wrapOn(c, 400, 200)
    table.drawOn(c, 72, 700 - height)
    c.save()
    return buf.getvalue()


@pytest.fixture()
def statement_pdf_bytes() -> bytes:
    """Two-page account statement with one text line per page."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.drawString(72, 780, "Statement for March 2026")
    c.showPage()
    c.drawString(72, 780, "Closing Balance: 1250.00")
    c.save()
    return buf.getvalue()


@pytest.fixture()
def blank_pdf_bytes() -> bytes:
    """A scanned-looking upload with no text layer (blank page)."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.showPage()
    c.save()
    return buf.getvalue()
