"""Unit tests for the structured data mapper.

Tests cover:
- Hard failures (missing invoice number / issue date)
- Ordered default-resolution rules
- Line recomputation and VAT rate defaults
- Stored-totals-win reconciliation
- Profile degradation when the seller has no SIRET
"""

import logging
from datetime import date
from decimal import Decimal

import pytest

from generators.einvoice.base import ComplianceProfile, MonetarySummary
from generators.einvoice.errors import ValidationError
from generators.einvoice.mapper import (
    DEFAULT_BUYER_NAME,
    DEFAULT_SELLER_NAME,
    map_record,
    map_to_canonical,
    parse_address,
    resolve,
    validate_record,
)


def test_maps_reference_scenario(invoice_record, line_items, seller_profile) -> None:
    invoice = map_to_canonical(invoice_record, line_items, seller_profile)

    assert invoice.document_number == "INV-2024-001"
    assert invoice.issue_date == date(2024, 3, 1)
    assert invoice.compliance_profile is ComplianceProfile.EN16931
    assert len(invoice.lines) == 1
    line = invoice.lines[0]
    assert line.line_id == 1
    assert line.description == "Dépannage"
    assert line.line_total_excluding_tax == Decimal("100.0")
    assert invoice.monetary_summary.total_excluding_tax == Decimal("100.00")
    assert invoice.monetary_summary.total_tax_amount == Decimal("20.00")
    assert invoice.monetary_summary.total_including_tax == Decimal("120.00")


@pytest.mark.parametrize("missing, field", [
    ("invoice_number", "invoice_number"),
    ("issue_date", "issue_date"),
])
def test_missing_mandatory_field_raises(invoice_record, line_items, seller_profile,
                                        missing, field) -> None:
    invoice_record[missing] = None

    with pytest.raises(ValidationError) as exc_info:
        map_to_canonical(invoice_record, line_items, seller_profile)

    assert exc_info.value.field == field
    assert exc_info.value.code == "validation_error"


def test_blank_invoice_number_counts_as_missing(invoice_record, line_items, seller_profile) -> None:
    invoice_record["invoice_number"] = "   "

    with pytest.raises(ValidationError, match="missing document number"):
        map_to_canonical(invoice_record, line_items, seller_profile)


def test_validate_record_lists_problems_without_raising() -> None:
    assert validate_record({"invoice_number": "F-1", "issue_date": "2024-01-02"}) == []
    assert validate_record({}) == ["missing document number", "missing issue date"]


def test_seller_name_precedence(invoice_record, line_items, seller_profile) -> None:
    assert map_to_canonical(invoice_record, line_items, seller_profile).seller.legal_name == "Plomberie Dupont"

    seller_profile["company_name"] = ""
    assert map_to_canonical(invoice_record, line_items, seller_profile).seller.legal_name == "Jean Dupont"

    seller_profile["full_name"] = None
    assert map_to_canonical(invoice_record, line_items, seller_profile).seller.legal_name == DEFAULT_SELLER_NAME


def test_seller_email_falls_back_to_account_email(invoice_record, line_items, seller_profile) -> None:
    seller_profile["email"] = None

    invoice = map_to_canonical(invoice_record, line_items, seller_profile)

    assert invoice.seller.contact_email == "jean.dupont@example.com"


def test_buyer_fields_come_from_invoice_when_no_buyer_record(invoice_record, line_items,
                                                             seller_profile) -> None:
    invoice = map_to_canonical(invoice_record, line_items, seller_profile)

    assert invoice.buyer.name == "Boulangerie Martin"
    assert invoice.buyer.contact_email == "contact@boulangerie-martin.fr"
    assert invoice.buyer.address.postcode == "69002"
    assert invoice.buyer.address.city == "Lyon"
    assert invoice.buyer.tax_registration_id is None


def test_buyer_record_takes_precedence(invoice_record, line_items, seller_profile) -> None:
    buyer = {"name": "SARL Martin & Fils", "siret": "98765432100019", "email": None}

    invoice = map_to_canonical(invoice_record, line_items, seller_profile, buyer)

    assert invoice.buyer.name == "SARL Martin & Fils"
    assert invoice.buyer.tax_registration_id == "98765432100019"
    # blank in the buyer record, so the invoice copy is used
    assert invoice.buyer.contact_email == "contact@boulangerie-martin.fr"


def test_buyer_name_default(invoice_record, line_items, seller_profile) -> None:
    invoice_record["client_name"] = None

    assert map_to_canonical(invoice_record, line_items, seller_profile).buyer.name == DEFAULT_BUYER_NAME


def test_blank_optional_fields_are_none(invoice_record, line_items, seller_profile) -> None:
    seller_profile.update({"phone": "", "vat_number": "  ", "address": None})

    seller = map_to_canonical(invoice_record, line_items, seller_profile).seller

    assert seller.phone is None
    assert seller.vat_number is None
    assert seller.address.is_empty


def test_identifiers_are_compacted(invoice_record, line_items, seller_profile) -> None:
    invoice = map_to_canonical(invoice_record, line_items, seller_profile)

    assert invoice.seller.tax_registration_id == "12345678900012"
    assert invoice.payment.iban == "FR7630006000011234567890189"
    assert invoice.payment.bic == "AGRIFRPP"
    assert invoice.payment.terms == "Paiement à 30 jours"


def test_resolve_unknown_rule_is_a_programming_error() -> None:
    with pytest.raises(KeyError):
        resolve("seller.fax", {})


@pytest.mark.parametrize("text, expected", [
    ("10 rue de la Paix, 75002 Paris", ("10 rue de la Paix", "75002", "Paris")),
    ("10 rue de la Paix 75002 Paris", ("10 rue de la Paix", "75002", "Paris")),
    ("10 rue de la Paix\n75002 Paris", ("10 rue de la Paix", "75002", "Paris")),
    ("Lieu-dit Les Granges", ("Lieu-dit Les Granges", None, None)),
])
def test_parse_address(text, expected) -> None:
    address = parse_address(text)

    assert (address.line_one, address.postcode, address.city) == expected
    assert address.country_code == "FR"


def test_line_totals_are_recomputed_not_copied(invoice_record, seller_profile) -> None:
    items = [{"description": "Pose", "quantity": 3, "unit_price": 19.99, "total": 999.0,
              "vat_rate": 20.0}]
    invoice_record.update(subtotal=None, tax_amount=None, total=None)

    invoice = map_to_canonical(invoice_record, items, seller_profile)

    # 19.99 goes through its text form, so no float noise
    assert invoice.lines[0].line_total_excluding_tax == Decimal("59.97")
    assert invoice.monetary_summary.total_excluding_tax == Decimal("59.97")
    assert invoice.monetary_summary.total_tax_amount == Decimal("11.99")
    assert invoice.monetary_summary.total_including_tax == Decimal("71.96")


def test_line_vat_rate_defaults_to_invoice_rate(invoice_record, seller_profile) -> None:
    items = [{"description": "Main d'oeuvre", "quantity": 1, "unit_price": 100.0, "vat_rate": None}]
    invoice_record["tax_rate"] = 10.0

    invoice = map_to_canonical(invoice_record, items, seller_profile)

    assert invoice.lines[0].vat_rate == Decimal("10.0")
    assert invoice.lines[0].vat_category_code == "S"


def test_zero_rate_line_is_category_z(invoice_record, seller_profile) -> None:
    items = [{"description": "Débours", "quantity": 1, "unit_price": 30.0, "vat_rate": 0}]
    invoice_record.update(subtotal=30.0, tax_amount=0.0, total=30.0)

    invoice = map_to_canonical(invoice_record, items, seller_profile)

    assert invoice.lines[0].vat_category_code == "Z"


@pytest.mark.parametrize("item", [
    {"description": "x", "quantity": 1, "unit_price": 10.0, "vat_rate": 120.0},
    {"description": "x", "quantity": 1, "unit_price": 10.0, "vat_rate": -5.0},
    {"description": "x", "quantity": -1, "unit_price": 10.0, "vat_rate": 20.0},
])
def test_line_invariants_rejected(invoice_record, seller_profile, item) -> None:
    with pytest.raises(ValidationError):
        map_to_canonical(invoice_record, [item], seller_profile)


def test_unparseable_number_is_a_validation_error(invoice_record, seller_profile) -> None:
    items = [{"description": "x", "quantity": "beaucoup", "unit_price": 10.0}]

    with pytest.raises(ValidationError) as exc_info:
        map_to_canonical(invoice_record, items, seller_profile)

    assert exc_info.value.field == "quantity"


@pytest.mark.parametrize("bad", [float("nan"), float("inf"), "-Infinity"])
def test_non_finite_number_is_a_validation_error(invoice_record, seller_profile, bad) -> None:
    items = [{"description": "x", "quantity": bad, "unit_price": 10.0, "vat_rate": 20.0}]

    with pytest.raises(ValidationError) as exc_info:
        map_to_canonical(invoice_record, items, seller_profile)

    assert exc_info.value.field == "quantity"


def test_iso_string_dates_are_accepted(invoice_record, line_items, seller_profile) -> None:
    invoice_record.update(issue_date="2024-03-01T09:30:00Z", due_date="2024-03-31")

    invoice = map_to_canonical(invoice_record, line_items, seller_profile)

    assert invoice.issue_date == date(2024, 3, 1)
    assert invoice.due_date == date(2024, 3, 31)


def test_stored_totals_win_with_warning(invoice_record, line_items, seller_profile, caplog) -> None:
    # line says 100.00 HT, the invoice was issued at 95.00 HT
    invoice_record.update(subtotal=95.0, tax_amount=19.0, total=114.0)

    with caplog.at_level(logging.WARNING, logger="generators.einvoice.mapper"):
        result = map_record(invoice_record, line_items, seller_profile)

    summary = result.invoice.monetary_summary
    assert summary.total_excluding_tax == Decimal("95.00")
    assert summary.total_tax_amount == Decimal("19.00")
    assert summary.total_including_tax == Decimal("114.00")
    assert summary.line_total_amount == Decimal("100.00")
    assert [w.field for w in result.warnings] == ["subtotal", "tax_amount"]
    assert result.warnings[0].difference == Decimal("-5.00")
    assert "reconciliation mismatch" in caplog.text


def test_difference_within_tolerance_is_not_reported(invoice_record, line_items, seller_profile) -> None:
    invoice_record.update(subtotal=100.01, tax_amount=20.0, total=120.01)

    assert map_record(invoice_record, line_items, seller_profile).warnings == []


def test_inconsistent_grand_total_is_derived(invoice_record, line_items, seller_profile) -> None:
    invoice_record["total"] = 150.0

    result = map_record(invoice_record, line_items, seller_profile)

    assert result.invoice.monetary_summary.total_including_tax == Decimal("120.00")
    assert [w.field for w in result.warnings] == ["total"]


def test_monetary_summary_invariant() -> None:
    with pytest.raises(ValidationError):
        MonetarySummary(
            total_excluding_tax=Decimal("100.00"),
            total_tax_amount=Decimal("20.00"),
            total_including_tax=Decimal("121.00"),
            line_total_amount=Decimal("100.00"),
        )


def test_missing_siret_degrades_to_basic(invoice_record, line_items, seller_profile, caplog) -> None:
    seller_profile["siret"] = None

    with caplog.at_level(logging.WARNING, logger="generators.einvoice.mapper"):
        result = map_record(invoice_record, line_items, seller_profile, profile="EN16931")

    assert result.invoice.compliance_profile is ComplianceProfile.BASIC
    assert result.requested_profile is ComplianceProfile.EN16931
    assert result.degraded is True
    assert "degrading profile" in caplog.text


def test_basic_can_be_requested(invoice_record, line_items, seller_profile) -> None:
    result = map_record(invoice_record, line_items, seller_profile, profile="basic")

    assert result.invoice.compliance_profile is ComplianceProfile.BASIC
    assert result.degraded is False


def test_unknown_profile_is_rejected(invoice_record, line_items, seller_profile) -> None:
    with pytest.raises(ValidationError) as exc_info:
        map_record(invoice_record, line_items, seller_profile, profile="EXTENDED")

    assert exc_info.value.field == "profile"


def test_profile_parse_is_lenient_on_spelling() -> None:
    assert ComplianceProfile.parse("en 16931") is ComplianceProfile.EN16931
    assert ComplianceProfile.parse("EN-16931") is ComplianceProfile.EN16931
    assert ComplianceProfile.parse(None) is ComplianceProfile.EN16931
    assert ComplianceProfile.parse("", default=ComplianceProfile.BASIC) is ComplianceProfile.BASIC


def test_canonical_invoice_is_immutable(invoice_record, line_items, seller_profile) -> None:
    invoice = map_to_canonical(invoice_record, line_items, seller_profile)

    with pytest.raises(AttributeError):
        invoice.document_number = "other"  # type: ignore[misc]


def test_tax_breakdown_groups_by_rate(invoice_record, seller_profile) -> None:
    items = [
        {"description": "A", "quantity": 1, "unit_price": 100.0, "vat_rate": 20.0},
        {"description": "B", "quantity": 2, "unit_price": 25.0, "vat_rate": 10.0},
        {"description": "C", "quantity": 1, "unit_price": 50.0, "vat_rate": 20},
    ]
    invoice_record.update(subtotal=None, tax_amount=None, total=None)

    breakdown = map_to_canonical(invoice_record, items, seller_profile).tax_breakdown()

    assert [(b.vat_rate, b.taxable_amount, b.tax_amount) for b in breakdown] == [
        (Decimal("10"), Decimal("50.00"), Decimal("5.00")),
        (Decimal("20"), Decimal("150.00"), Decimal("30.00")),
    ]


def test_header_and_vat_basis_add_up_rounded_lines(invoice_record, seller_profile) -> None:
    # 1.5 x 3.33 = 4.995 per line, written as 5.00
    items = [{"description": d, "quantity": 1.5, "unit_price": 3.33, "vat_rate": 20.0}
             for d in ("A", "B")]
    invoice_record.update(subtotal=None, tax_amount=None, total=None)

    invoice = map_to_canonical(invoice_record, items, seller_profile)
    [group] = invoice.tax_breakdown()

    assert [line.net_amount for line in invoice.lines] == [Decimal("5.00"), Decimal("5.00")]
    assert invoice.lines[0].line_total_excluding_tax == Decimal("4.995")
    assert invoice.monetary_summary.line_total_amount == Decimal("10.00")
    assert group.taxable_amount == Decimal("10.00")
    assert group.tax_amount == Decimal("2.00")
    assert invoice.monetary_summary.total_excluding_tax == Decimal("10.00")
