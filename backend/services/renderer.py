# services/renderer.py
# ============================================================================
# RESCISAO CHECKOUT SERVICE — PDF RENDERER
# ============================================================================
# Order input -> PDF bytes with reportlab. Documents are built with
# invariant=1 so the same input always yields the same bytes.
# ============================================================================

import asyncio
from io import BytesIO
from xml.sax.saxutils import escape

import structlog
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from schemas.order_definitions import OrderInput
from services.calculator import calculate_breakdown, format_brl

logger = structlog.get_logger(component="renderer")

DOCUMENT_TITLE = "Cálculo Detalhado de Rescisão Indireta"
NOT_INFORMED = "Não informado"


def render_artifact(order: OrderInput) -> bytes:
    """Build the detailed calculation PDF. Blocking; see PdfRenderer."""
    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        topMargin=1.5 * cm, bottomMargin=1.5 * cm,
        leftMargin=1.5 * cm, rightMargin=1.5 * cm,
        title=DOCUMENT_TITLE,
        author="",
        invariant=1,
    )
    styles = getSampleStyleSheet()
    N = styles["Normal"]
    s_title = ParagraphStyle(
        "RTitle", parent=N,
        fontSize=16, leading=20, fontName="Helvetica-Bold", alignment=TA_CENTER,
    )
    s_section = ParagraphStyle(
        "RSection", parent=N,
        fontSize=12, leading=15, fontName="Helvetica-Bold",
    )

    story = [
        Paragraph(f"Cálculo para: {escape(order.name or NOT_INFORMED)}", N),
        Paragraph(f"E-mail: {escape(order.email)}", N),
        Paragraph(f"WhatsApp: {escape(order.whatsapp or NOT_INFORMED)}", N),
        Spacer(1, 0.6 * cm),
        Paragraph(DOCUMENT_TITLE, s_title),
        Spacer(1, 0.5 * cm),
    ]

    rows = [["Verba", "Valor (R$)"]]
    rows += [
        [label, format_brl(value)]
        for label, value in calculate_breakdown(order).items()
        if value > 0
    ]

    tbl = Table(rows, colWidths=[11 * cm, 5 * cm])
    style = [
        ("BACKGROUND",   (0, 0), (-1, 0), colors.HexColor("#2980b9")),
        ("TEXTCOLOR",    (0, 0), (-1, 0), colors.white),
        ("FONTNAME",     (0, 0), (-1, 0), "Helvetica-Bold"),
        ("ALIGN",        (1, 0), (1, -1), "RIGHT"),
        ("GRID",         (0, 0), (-1, -1), 0.5, colors.HexColor("#d1d5db")),
        ("TOPPADDING",   (0, 0), (-1, -1), 6),
        ("BOTTOMPADDING",(0, 0), (-1, -1), 6),
    ]
    if len(rows) > 1:
        style += [
            ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f2f2f2")]),
            ("FONTNAME",     (0, -1), (-1, -1), "Helvetica-Bold"),
        ]
    tbl.setStyle(TableStyle(style))
    story.append(tbl)

    if order.irregularities:
        story.append(Spacer(1, 0.6 * cm))
        story.append(Paragraph("Irregularidades Apontadas:", s_section))
        story.append(Spacer(1, 0.2 * cm))
        for item in order.irregularities:
            story.append(Paragraph(f"- {escape(item)}", N))

    doc.build(story)
    return buf.getvalue()


class PdfRenderer:
    """Runs render_artifact off the event loop with a bounded timeout."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def render(self, order: OrderInput) -> bytes:
        data = await asyncio.wait_for(
            asyncio.to_thread(render_artifact, order),
            timeout=self.timeout,
        )
        logger.debug("artifact_rendered", size=len(data))
        return data
