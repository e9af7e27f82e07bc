"""Tests for the reportlab base invoice and its formatting helpers."""

from datetime import date
from decimal import Decimal
from io import BytesIO

from pypdf import PdfReader

from generators.facture import build_facture_pdf
from generators.pdf_base import fmt_date_fr, fmt_eur, fmt_percent


def test_base_pdf_is_a_single_page_pdf(base_pdf) -> None:
    reader = PdfReader(BytesIO(base_pdf))

    assert base_pdf.startswith(b"%PDF-")
    assert len(reader.pages) == 1
    text = reader.pages[0].extract_text()
    assert "Facture INV-2024-001" in text
    assert "Boulangerie Martin" in text
    assert "SIRET : 12345678900012" in text


def test_many_lines_flow_onto_several_pages() -> None:
    lines = [{"description": f"Prestation {n} & fournitures", "quantity": 1, "unit_price": 10.0,
              "vat_rate": 20.0, "total": 10.0} for n in range(80)]

    pdf = build_facture_pdf(
        issuer_name="Atelier Bois",
        issuer_lines=[],
        legal_lines=[],
        bank_lines=[],
        recipient_lines=["Client"],
        invoice_number="F-2024-080",
        issue_date=date(2024, 5, 2),
        lines=lines,
        subtotal=800.0,
        tax_amount=160.0,
        total=960.0,
        notes="Merci pour votre confiance.\nÀ bientôt.",
    )

    reader = PdfReader(BytesIO(pdf))
    assert len(reader.pages) > 1
    assert "Page 2" in reader.pages[1].extract_text()


def test_fmt_eur_french_style() -> None:
    assert fmt_eur(1234.5) == "1\xa0234,50 €"
    assert fmt_eur(Decimal("20")) == "20,00 €"


def test_fmt_percent() -> None:
    assert fmt_percent(5.5) == "5,50 %"


def test_fmt_date_fr() -> None:
    assert fmt_date_fr(date(2024, 3, 1)) == "01/03/2024"
    assert fmt_date_fr(None) == "—"
