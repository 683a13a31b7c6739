"""
PDF invoices.

The page template (letterhead, column headings and rules) is drawn first,
then the order fields are written over it at fixed positions measured in
millimetres from the top-left corner of a Letter page.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path

from reportlab.lib.pagesizes import letter
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from storefront.errors import InvoiceRenderError

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = letter
FONT = "Times-Roman"
FONT_BOLD = "Times-Bold"


@dataclass
class Invoice:
    id: int
    quantity: int
    amount: int
    product: str
    first_name: str
    last_name: str
    email: str
    created_at: datetime
    currency: str = "eur"

    def as_dict(self) -> dict:
        return asdict(self)


def format_amount(amount: int, currency: str = "eur") -> str:
    """Minor units to display text: 1000 -> '10.00 eur'."""
    return f"{amount / 100:.2f} {currency}"


def _y(top_mm: float) -> float:
    return PAGE_HEIGHT - top_mm * mm


class InvoiceRenderer:
    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def path_for(self, order_id: int) -> Path:
        return self.output_dir / f"{order_id}.pdf"

    def render(self, invoice: Invoice) -> Path:
        path = self.path_for(invoice.id)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            pdf = canvas.Canvas(str(path), pagesize=letter, pageCompression=0)
            pdf.setTitle(f"Invoice {invoice.id}")
            self._draw_template(pdf)
            self._draw_fields(pdf, invoice)
            pdf.showPage()
            pdf.save()
        except OSError as e:
            logger.error(f"Could not write invoice {path}: {e}")
            raise InvoiceRenderError() from e

        logger.info(f"Invoice {path} created")
        return path

    @staticmethod
    def _draw_template(pdf: canvas.Canvas) -> None:
        pdf.setFont(FONT_BOLD, 20)
        pdf.drawString(10 * mm, _y(25), "Widgets")
        pdf.setFont(FONT, 10)
        pdf.drawString(10 * mm, _y(31), "Quality widgets since forever")
        pdf.setFont(FONT_BOLD, 24)
        pdf.drawRightString(PAGE_WIDTH - 10 * mm, _y(25), "INVOICE")

        pdf.setLineWidth(0.5)
        pdf.line(10 * mm, _y(40), PAGE_WIDTH - 10 * mm, _y(40))

        # line item header
        pdf.setFont(FONT_BOLD, 11)
        pdf.drawString(10 * mm, _y(88), "Product")
        pdf.drawCentredString(176 * mm, _y(88), "Qty")
        pdf.drawRightString(205 * mm, _y(88), "Amount")
        pdf.line(10 * mm, _y(90), PAGE_WIDTH - 10 * mm, _y(90))
        pdf.line(10 * mm, _y(103), PAGE_WIDTH - 10 * mm, _y(103))

        pdf.setFont(FONT, 9)
        pdf.drawCentredString(PAGE_WIDTH / 2, 15 * mm, "Thank you for your business.")

    @staticmethod
    def _draw_fields(pdf: canvas.Canvas, invoice: Invoice) -> None:
        pdf.setFont(FONT, 11)
        pdf.drawString(10 * mm, _y(55.5), f"Attention: {invoice.first_name} {invoice.last_name}")
        pdf.drawString(10 * mm, _y(60.5), invoice.email)
        pdf.drawString(10 * mm, _y(65.5), invoice.created_at.strftime("%Y-%m-%d"))

        pdf.drawString(10 * mm, _y(98.5), invoice.product)
        pdf.drawCentredString(176 * mm, _y(98.5), str(invoice.quantity))
        pdf.drawRightString(205 * mm, _y(98.5), format_amount(invoice.amount, invoice.currency))
