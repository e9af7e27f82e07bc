"""
Structured Data Mapper: application records -> ``CanonicalInvoice``.

The records handed in here are plain mappings as read from the database
(``models.Invoice.to_record()`` and friends): nullable strings, floats for
money, dates that may still be ISO strings. Everything the rest of the
pipeline relies on is decided in this module:

- the two hard failures (missing invoice number, missing issue date);
- the ordered fallback rules for optional identity fields (``DEFAULT_RULES``);
- line totals recomputed from quantity and unit price;
- reconciliation of stored totals against the recomputed ones (stored win);
- degradation of the compliance profile when the seller has no SIRET.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from generators.einvoice.base import (
    HUNDRED,
    Buyer,
    CanonicalInvoice,
    CanonicalLine,
    ComplianceProfile,
    MonetarySummary,
    PaymentInstructions,
    PostalAddress,
    Seller,
    round_money,
    within_tolerance,
)
from generators.einvoice.errors import ReconciliationWarning, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SELLER_NAME = "Mon Entreprise"
DEFAULT_BUYER_NAME = "Client"
DEFAULT_COUNTRY = "FR"

# "10 rue Example, 75001 Paris" or "10 rue Example 75001 Paris"
_ADDRESS_RE = re.compile(r"^(.+?)\s*,?\s*(\d{5})\s+(.+)$")


@dataclass(frozen=True)
class Rule:
    """Ordered candidates for one canonical field.

    Each candidate is ``(record, key)`` where *record* is one of
    ``invoice``, ``seller``, ``buyer``. The first non-blank value wins; if
    none is found the *default* is used (``None`` = field absent).
    """
    candidates: tuple[tuple[str, str], ...]
    default: str | None = None


# Precedence for every optional identity field, in one place.
DEFAULT_RULES: dict[str, Rule] = {
    "seller.name": Rule((("seller", "company_name"), ("seller", "full_name")),
                        default=DEFAULT_SELLER_NAME),
    "seller.address": Rule((("seller", "address"),)),
    "seller.email": Rule((("seller", "email"), ("seller", "account_email"))),
    "seller.phone": Rule((("seller", "phone"),)),
    "seller.siret": Rule((("seller", "siret"),)),
    "seller.vat_number": Rule((("seller", "vat_number"),)),
    "seller.iban": Rule((("seller", "iban"),)),
    "seller.bic": Rule((("seller", "bic"),)),
    "buyer.name": Rule((("buyer", "name"), ("invoice", "client_name")),
                       default=DEFAULT_BUYER_NAME),
    "buyer.address": Rule((("buyer", "address"), ("invoice", "client_address"))),
    "buyer.email": Rule((("buyer", "email"), ("invoice", "client_email"))),
    "buyer.phone": Rule((("buyer", "phone"), ("invoice", "client_phone"))),
    "buyer.siret": Rule((("buyer", "siret"), ("invoice", "client_siret"))),
    "buyer.vat_number": Rule((("buyer", "vat_number"),)),
    "invoice.payment_terms": Rule((("invoice", "payment_terms"),)),
    "invoice.notes": Rule((("invoice", "notes"),)),
    "invoice.buyer_reference": Rule((("invoice", "buyer_reference"),)),
}


@dataclass
class MappingResult:
    """The canonical invoice plus the non-fatal findings made while building it."""
    invoice: CanonicalInvoice
    warnings: list[ReconciliationWarning] = field(default_factory=list)
    requested_profile: ComplianceProfile = ComplianceProfile.EN16931

    @property
    def degraded(self) -> bool:
        return self.invoice.compliance_profile is not self.requested_profile


# ── Value coercion ──────────────────────────────────────────────
def _text(value) -> str | None:
    """Blank strings count as absent."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _decimal(value, field_name: str) -> Decimal | None:
    """Convert a stored number to Decimal via its text form (no float noise)."""
    if value is None or value == "":
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"invalid number for {field_name}: {value!r}",
                              field=field_name) from None
    # NaN / Infinity from float columns
    if not number.is_finite():
        raise ValidationError(f"invalid number for {field_name}: {value!r}",
                              field=field_name)
    return number


def _date(value, field_name: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        # ISO date or ISO timestamp ("2024-03-01" / "2024-03-01T10:00:00Z")
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"invalid date for {field_name}: {value!r}",
                              field=field_name) from None


def _compact(value: str | None) -> str | None:
    """Identifiers (SIRET, IBAN) are often typed with spaces."""
    return value.replace(" ", "") if value else value


def resolve(name: str, records: Mapping[str, Mapping]) -> str | None:
    """Apply the ``DEFAULT_RULES`` entry *name* to the given records."""
    rule = DEFAULT_RULES[name]
    for record_name, key in rule.candidates:
        value = _text((records.get(record_name) or {}).get(key))
        if value is not None:
            return value
    return rule.default


def parse_address(text: str | None, country_code: str = DEFAULT_COUNTRY) -> PostalAddress:
    """Split a free-text French address into street, postcode and city."""
    if not text:
        return PostalAddress(country_code=country_code)
    flat = " ".join(part.strip() for part in text.splitlines() if part.strip())
    m = _ADDRESS_RE.match(flat)
    if m:
        return PostalAddress(
            line_one=m.group(1).rstrip(",").strip() or None,
            postcode=m.group(2),
            city=m.group(3).strip(),
            country_code=country_code,
        )
    return PostalAddress(line_one=flat, country_code=country_code)


# ── Pre-flight ──────────────────────────────────────────────────
# The only two conditions that stop generation before mapping.
REQUIRED_FIELDS = (
    ("invoice_number", "missing document number"),
    ("issue_date", "missing issue date"),
)


def validate_record(invoice_record: Mapping) -> list[str]:
    """Return the blocking problems of an invoice record (empty = OK)."""
    return [message for key, message in REQUIRED_FIELDS
            if not _text(invoice_record.get(key))]


# ── Mapping ─────────────────────────────────────────────────────
def _map_lines(line_items: Sequence[Mapping], default_rate: Decimal) -> tuple[CanonicalLine, ...]:
    lines = []
    for idx, item in enumerate(line_items, start=1):
        rate = _decimal(item.get("vat_rate"), "vat_rate")
        lines.append(CanonicalLine(
            line_id=idx,
            description=_text(item.get("description")) or f"Ligne {idx}",
            quantity=_decimal(item.get("quantity"), "quantity") or Decimal("0"),
            unit_price_excluding_tax=_decimal(item.get("unit_price"), "unit_price") or Decimal("0"),
            vat_rate=default_rate if rate is None else rate,
            unit_code=_text(item.get("unit_code")) or "C62",
        ))
    return tuple(lines)


def _reconcile(invoice_record: Mapping, lines: tuple[CanonicalLine, ...]
               ) -> tuple[MonetarySummary, list[ReconciliationWarning]]:
    """Cross-check stored totals with the lines; stored values win."""
    computed_net = sum((l.net_amount for l in lines), Decimal("0.00"))
    computed_tax = round_money(sum(
        (l.net_amount * l.vat_rate / HUNDRED for l in lines), Decimal("0")
    ))

    stored_net = _decimal(invoice_record.get("subtotal"), "subtotal")
    stored_tax = _decimal(invoice_record.get("tax_amount"), "tax_amount")
    stored_total = _decimal(invoice_record.get("total"), "total")

    warnings = []
    for name, stored, computed in (("subtotal", stored_net, computed_net),
                                   ("tax_amount", stored_tax, computed_tax)):
        if stored is not None and not within_tolerance(stored, computed):
            warnings.append(ReconciliationWarning(name, stored, computed))

    net = round_money(stored_net) if stored_net is not None else computed_net
    tax = round_money(stored_tax) if stored_tax is not None else computed_tax
    total = round_money(stored_total) if stored_total is not None else net + tax
    if not within_tolerance(total, net + tax):
        warnings.append(ReconciliationWarning("total", total, net + tax))
        total = net + tax

    summary = MonetarySummary(
        total_excluding_tax=net,
        total_tax_amount=tax,
        total_including_tax=total,
        line_total_amount=computed_net,
    )
    return summary, warnings


def _effective_profile(requested: ComplianceProfile, seller: Seller,
                       document_number: str) -> ComplianceProfile:
    if requested is ComplianceProfile.EN16931 and not seller.tax_registration_id:
        logger.warning(
            "Invoice %s: seller has no SIRET, degrading profile %s -> %s",
            document_number, requested.value, ComplianceProfile.BASIC.value,
        )
        return ComplianceProfile.BASIC
    return requested


def map_record(
    invoice_record: Mapping,
    line_items: Sequence[Mapping],
    seller_profile: Mapping | None,
    buyer_record: Mapping | None = None,
    profile: str | ComplianceProfile | None = None,
) -> MappingResult:
    """Build the canonical invoice and collect the non-fatal findings.

    Raises:
        ValidationError: if the invoice number or issue date is missing,
            or if a value violates a model invariant (e.g. VAT rate > 100).
    """
    for key, message in REQUIRED_FIELDS:
        if not _text(invoice_record.get(key)):
            raise ValidationError(message, field=key)

    requested = ComplianceProfile.parse(profile)
    records = {
        "invoice": invoice_record,
        "seller": seller_profile or {},
        "buyer": buyer_record or {},
    }
    document_number = _text(invoice_record["invoice_number"])

    seller = Seller(
        legal_name=resolve("seller.name", records),
        address=parse_address(resolve("seller.address", records)),
        tax_registration_id=_compact(resolve("seller.siret", records)),
        vat_number=resolve("seller.vat_number", records),
        contact_email=resolve("seller.email", records),
        phone=resolve("seller.phone", records),
    )
    buyer = Buyer(
        name=resolve("buyer.name", records),
        address=parse_address(resolve("buyer.address", records)),
        contact_email=resolve("buyer.email", records),
        tax_registration_id=_compact(resolve("buyer.siret", records)),
        vat_number=resolve("buyer.vat_number", records),
        phone=resolve("buyer.phone", records),
    )

    default_rate = _decimal(invoice_record.get("tax_rate"), "tax_rate") or Decimal("0")
    lines = _map_lines(line_items, default_rate)
    summary, warnings = _reconcile(invoice_record, lines)
    for warning in warnings:
        logger.warning("Invoice %s: reconciliation mismatch, keeping stored value: %s",
                       document_number, warning)

    payment = PaymentInstructions(
        iban=_compact(resolve("seller.iban", records)),
        bic=resolve("seller.bic", records),
        terms=resolve("invoice.payment_terms", records),
    )

    invoice = CanonicalInvoice(
        document_number=document_number,
        issue_date=_date(invoice_record["issue_date"], "issue_date"),
        due_date=_date(invoice_record.get("due_date"), "due_date"),
        type_code=_text(invoice_record.get("type_code")) or "380",
        currency_code=_text(invoice_record.get("currency_code")) or "EUR",
        seller=seller,
        buyer=buyer,
        lines=lines,
        monetary_summary=summary,
        compliance_profile=_effective_profile(requested, seller, document_number),
        payment=payment,
        notes=resolve("invoice.notes", records),
        buyer_reference=resolve("invoice.buyer_reference", records),
    )
    return MappingResult(invoice=invoice, warnings=warnings, requested_profile=requested)


def map_to_canonical(
    invoice_record: Mapping,
    line_items: Sequence[Mapping],
    seller_profile: Mapping | None,
    buyer_record: Mapping | None = None,
    profile: str | ComplianceProfile | None = None,
) -> CanonicalInvoice:
    """Map application records to the canonical EN 16931 invoice."""
    return map_record(invoice_record, line_items, seller_profile, buyer_record, profile).invoice
