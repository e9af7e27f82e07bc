"""
Shared base utilities for PDF generation (reportlab).

Provides common styles, header/footer drawing, and helper flowables for the
visual invoice. The Factur-X XML is attached afterwards by
``generators.einvoice.embed``; nothing here knows about it.
"""
from __future__ import annotations

from decimal import Decimal
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import BaseDocTemplate, Flowable, Frame, PageTemplate


# ─── Colour palette ──────────────────────────────────────────────
CLR_BLACK = colors.black
CLR_GREY_MID = colors.HexColor("#d9d9d9")
CLR_GREY_DARK = colors.HexColor("#666666")
CLR_TABLE_HEADER_BG = colors.HexColor("#e8e8e8")

# ─── Page metrics ─────────────────────────────────────────────────
PAGE_W, PAGE_H = A4
MARGIN_LEFT = 20 * mm
MARGIN_RIGHT = 20 * mm
MARGIN_TOP = 15 * mm
MARGIN_BOTTOM = 30 * mm

CONTENT_W = PAGE_W - MARGIN_LEFT - MARGIN_RIGHT

HEADER_HEIGHT = 60 * mm   # space reserved for issuer, client and meta blocks


# ─── Reusable style factory ──────────────────────────────────────
def _base_styles():
    """Return a dict of ParagraphStyles used by the invoice layout."""
    ss = getSampleStyleSheet()
    base = ParagraphStyle("Base", parent=ss["Normal"], fontName="Helvetica",
                          fontSize=9, leading=11, spaceAfter=0)
    return {
        "base": base,
        "title": ParagraphStyle("DocTitle", parent=base, fontName="Helvetica-Bold",
                                fontSize=16, leading=19, spaceAfter=4),
        "normal": ParagraphStyle("Norm", parent=base, spaceAfter=2),
        "small": ParagraphStyle("Small", parent=base, fontSize=7.5, leading=9.5, spaceAfter=1),
        "bold": ParagraphStyle("Bold", parent=base, fontName="Helvetica-Bold"),
        "right": ParagraphStyle("Right", parent=base, alignment=2),  # TA_RIGHT
        "right_bold": ParagraphStyle("RightBold", parent=base, fontName="Helvetica-Bold", alignment=2),
        "table_header": ParagraphStyle("TH", parent=base, fontName="Helvetica-Bold",
                                        fontSize=8.5, leading=10),
        "table_cell": ParagraphStyle("TC", parent=base, fontSize=8.5, leading=10),
        "table_cell_right": ParagraphStyle("TCR", parent=base, fontSize=8.5, leading=10, alignment=2),
    }


# ─── Helper flowables ────────────────────────────────────────────
class HLine(Flowable):
    """A thin horizontal line with configurable width."""
    def __init__(self, width: float = CONTENT_W, thickness: float = 0.6,
                 color=CLR_BLACK, space_before=4, space_after=4):
        super().__init__()
        self.width = width
        self.thickness = thickness
        self.color = color
        self.height = space_before + thickness + space_after
        self.space_after = space_after

    def draw(self):
        self.canv.saveState()
        self.canv.setStrokeColor(self.color)
        self.canv.setLineWidth(self.thickness)
        self.canv.line(0, self.space_after, self.width, self.space_after)
        self.canv.restoreState()


# ─── Common page callbacks ───────────────────────────────────────
def _draw_header(canvas, doc, *,
                 issuer_name: str,
                 issuer_lines: list[str],
                 recipient_lines: list[str],
                 meta_lines: list[tuple[str, str]]):
    """Issuer block top-left, client block right, invoice meta below it."""
    canvas.saveState()

    # ── Issuer ──
    y = PAGE_H - MARGIN_TOP
    canvas.setFillColor(CLR_BLACK)
    canvas.setFont("Helvetica-Bold", 11)
    canvas.drawString(MARGIN_LEFT, y, issuer_name)
    canvas.setFont("Helvetica", 8.5)
    for i, line in enumerate(issuer_lines[:5], start=1):
        canvas.drawString(MARGIN_LEFT, y - i * 11, line)

    # ── Client ──
    x_client = PAGE_W - MARGIN_RIGHT - 75 * mm
    y_client = y - 10 * mm
    for i, line in enumerate(recipient_lines[:6]):
        canvas.setFont("Helvetica-Bold" if i == 0 else "Helvetica", 10)
        canvas.drawString(x_client, y_client - i * 13, line)

    # ── Meta block ──
    canvas.setFont("Helvetica", 8.5)
    x_label = MARGIN_LEFT
    x_value = MARGIN_LEFT + 35 * mm
    y_meta = y - 40 * mm
    for i, (label, value) in enumerate(meta_lines[:5]):
        canvas.drawString(x_label, y_meta - i * 12, label)
        canvas.drawString(x_value, y_meta - i * 12, value)

    canvas.restoreState()


def _draw_footer(canvas, doc, *,
                 issuer_name: str,
                 legal_lines: list[str],
                 bank_lines: list[str]):
    """Two-column footer (legal identifiers, bank details) and page number."""
    canvas.saveState()

    y_line = MARGIN_BOTTOM - 2 * mm
    canvas.setStrokeColor(CLR_GREY_MID)
    canvas.setLineWidth(0.5)
    canvas.line(MARGIN_LEFT, y_line, PAGE_W - MARGIN_RIGHT, y_line)

    canvas.setFont("Helvetica", 6.5)
    canvas.setFillColor(CLR_GREY_DARK)

    dy = 8.5
    y_start = y_line - 10
    for i, text in enumerate([issuer_name] + legal_lines[:3]):
        canvas.drawString(MARGIN_LEFT, y_start - i * dy, text)
    x_bank = MARGIN_LEFT + CONTENT_W / 2
    for i, text in enumerate(bank_lines[:4]):
        canvas.drawString(x_bank, y_start - i * dy, text)

    canvas.drawRightString(PAGE_W - MARGIN_RIGHT, 8 * mm,
                           f"Page {canvas.getPageNumber()}")

    canvas.restoreState()


# ─── Document builder helper ─────────────────────────────────────
def build_base_doc(buf: BytesIO, title: str, author: str, on_page_callback):
    """Create a BaseDocTemplate with a single-column frame and the given on_page callback.
    Returns (doc, frame_width) so the caller can build the story.
    """
    frame_top = MARGIN_TOP + HEADER_HEIGHT
    frame = Frame(
        MARGIN_LEFT, MARGIN_BOTTOM,
        CONTENT_W, PAGE_H - frame_top - MARGIN_BOTTOM,
        leftPadding=0, rightPadding=0, topPadding=0, bottomPadding=0,
        id="main",
    )
    doc = BaseDocTemplate(
        buf, pagesize=A4,
        leftMargin=MARGIN_LEFT, rightMargin=MARGIN_RIGHT,
        topMargin=MARGIN_TOP, bottomMargin=MARGIN_BOTTOM,
        title=title, author=author,
        pageTemplates=[PageTemplate(id="default", frames=[frame], onPage=on_page_callback)],
    )
    return doc, CONTENT_W


# ─── Formatting helpers ──────────────────────────────────────────
def _group_fr(value, decimals: int = 2) -> str:
    # French typography: no-break space for thousands, comma for decimals
    text = f"{value:,.{decimals}f}"
    return text.replace(",", "\xa0").replace(".", ",")


def fmt_eur(value: float | Decimal) -> str:
    """Format an amount as Euro string (French style): 1 234,50 €."""
    return f"{_group_fr(value)} €"


def fmt_percent(value: float | Decimal) -> str:
    return f"{_group_fr(value)} %"


def fmt_date_fr(value) -> str:
    return value.strftime("%d/%m/%Y") if value else "—"
