"""
PDF generator for the Facture (invoice), the visual half of a Factur-X file.

Layout:
- issuer block, client block and invoice meta in the page header
- one table row per line (description, quantity, unit price HT, VAT, total HT)
- totals block (HT, TVA, TTC)
- payment terms and bank details
- legal identifiers (SIRET, TVA intracommunautaire) in the footer
"""
from __future__ import annotations

from datetime import date
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.platypus import Paragraph, Spacer, Table, TableStyle

from generators.pdf_base import (
    CLR_BLACK,
    CLR_TABLE_HEADER_BG,
    HLine,
    _base_styles,
    _draw_footer,
    _draw_header,
    build_base_doc,
    fmt_date_fr,
    fmt_eur,
    fmt_percent,
)


def _fmt_qty(value) -> str:
    return f"{value:g}".replace(".", ",")


def build_facture_pdf(
    *,
    # Issuer
    issuer_name: str,
    issuer_lines: list[str],
    legal_lines: list[str],
    bank_lines: list[str],

    # Client
    recipient_lines: list[str],

    # Document meta
    invoice_number: str,
    issue_date: date | None = None,
    due_date: date | None = None,

    # Lines: dicts with description, quantity, unit_price, vat_rate, total
    lines: list[dict],

    # Totals as stored on the invoice
    subtotal: float = 0,
    tax_amount: float = 0,
    total: float = 0,

    payment_terms: str | None = None,
    notes: str | None = None,
) -> bytes:
    """Build and return the Facture PDF bytes."""
    buf = BytesIO()
    styles = _base_styles()

    meta_lines = [
        ("Facture n° :", invoice_number),
        ("Date :", fmt_date_fr(issue_date or date.today())),
    ]
    if due_date:
        meta_lines.append(("Échéance :", fmt_date_fr(due_date)))

    def on_page(canvas, doc):
        _draw_header(canvas, doc,
                     issuer_name=issuer_name,
                     issuer_lines=issuer_lines,
                     recipient_lines=recipient_lines,
                     meta_lines=meta_lines)
        _draw_footer(canvas, doc,
                     issuer_name=issuer_name,
                     legal_lines=legal_lines,
                     bank_lines=bank_lines)

    doc, cw = build_base_doc(buf, title=f"Facture {invoice_number}", author=issuer_name,
                             on_page_callback=on_page)

    story: list = []
    story.append(Paragraph(f"Facture {escape(invoice_number)}", styles["title"]))
    story.append(Spacer(1, 10))

    # ── Lines table ──
    col_widths = [cw - 40 - 65 - 40 - 70, 40, 65, 40, 70]
    table_data = [[
        Paragraph("Désignation", styles["table_header"]),
        Paragraph("Qté", styles["table_header"]),
        Paragraph("P.U. HT", styles["table_header"]),
        Paragraph("TVA", styles["table_header"]),
        Paragraph("Total HT", styles["table_header"]),
    ]]
    for item in lines:
        table_data.append([
            Paragraph(escape(item.get("description") or ""), styles["table_cell"]),
            Paragraph(_fmt_qty(item.get("quantity") or 0), styles["table_cell"]),
            Paragraph(fmt_eur(item.get("unit_price") or 0), styles["table_cell_right"]),
            Paragraph(fmt_percent(item.get("vat_rate") or 0), styles["table_cell_right"]),
            Paragraph(fmt_eur(item.get("total") or 0), styles["table_cell_right"]),
        ])

    table = Table(table_data, colWidths=col_widths, hAlign="LEFT", repeatRows=1)
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), CLR_TABLE_HEADER_BG),
        ("LINEBELOW", (0, 0), (-1, 0), 0.8, CLR_BLACK),
        ("LINEBELOW", (0, 1), (-1, -1), 0.3, colors.HexColor("#cccccc")),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
    ]))
    story.append(table)
    story.append(Spacer(1, 8))

    # ── Totals block ──
    summary_data = [
        [Paragraph("Total HT", styles["right"]), Paragraph(fmt_eur(subtotal), styles["right"])],
        [Paragraph("TVA", styles["right"]), Paragraph(fmt_eur(tax_amount), styles["right"])],
        [Paragraph("<b>Total TTC</b>", styles["right"]),
         Paragraph(f"<b>{fmt_eur(total)}</b>", styles["right"])],
    ]
    summary_table = Table(summary_data, colWidths=[cw - 120, 120], hAlign="RIGHT")
    summary_table.setStyle(TableStyle([
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("RIGHTPADDING", (0, 0), (-1, -1), 0),
        ("LINEABOVE", (0, -1), (-1, -1), 0.8, CLR_BLACK),
    ]))
    story.append(summary_table)
    story.append(Spacer(1, 14))

    if notes:
        story.append(Paragraph("<b>Notes :</b>", styles["normal"]))
        for line in notes.strip().split("\n"):
            story.append(Paragraph(escape(line), styles["normal"]))
        story.append(Spacer(1, 8))

    # ── Payment ──
    story.append(HLine(width=cw))
    story.append(Spacer(1, 4))
    story.append(Paragraph(
        escape(payment_terms or "Paiement à réception de facture."),
        styles["normal"],
    ))
    if bank_lines:
        story.append(Spacer(1, 6))
        story.append(Paragraph("<b>Coordonnées bancaires :</b>", styles["normal"]))
        for line in bank_lines[:4]:
            story.append(Paragraph(line, styles["normal"]))

    doc.build(story)
    return buf.getvalue()
