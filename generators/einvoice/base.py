"""
Canonical EN 16931 data model and the abstract e-invoice standard.

The dataclasses below are the strict, immutable counterpart of the loosely
typed database records. ``generators/einvoice/mapper.py`` is the only place
that builds them; every invariant is checked in ``__post_init__`` so that a
``CanonicalInvoice`` that exists is a valid one.

To add a new e-invoice syntax:
1. Subclass ``EInvoiceStandard``
2. Implement ``generate_xml()`` and ``xml_filename`` / ``standard_name``
3. Register it in ``generators/einvoice/__init__.py`` STANDARDS dict
"""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from generators.einvoice.errors import ValidationError

CENT = Decimal("0.01")
TOLERANCE = Decimal("0.01")
HUNDRED = Decimal("100")


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half-up (commercial rounding)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) <= TOLERANCE


class ComplianceProfile(str, enum.Enum):
    """Factur-X profile levels supported by the serializer."""

    BASIC = "BASIC"
    EN16931 = "EN16931"

    @property
    def guideline_id(self) -> str:
        """Value of GuidelineSpecifiedDocumentContextParameter/ID."""
        return _GUIDELINE_IDS[self]

    @property
    def conformance_level(self) -> str:
        """Value of fx:ConformanceLevel in the XMP packet."""
        return _CONFORMANCE_LEVELS[self]

    @property
    def facturx_level(self) -> str:
        """Level name as used by the ``factur-x`` library."""
        return self.value.lower()

    @property
    def includes_contacts(self) -> bool:
        """DefinedTradeContact and the payee BIC only exist from EN16931 up."""
        return self is ComplianceProfile.EN16931

    @classmethod
    def parse(cls, value: "str | ComplianceProfile | None",
              default: "ComplianceProfile | None" = None) -> "ComplianceProfile":
        if isinstance(value, cls):
            return value
        if not value:
            return default or cls.EN16931
        key = value.strip().upper().replace(" ", "").replace("_", "").replace("-", "")
        for profile in cls:
            if profile.value == key:
                return profile
        raise ValidationError(
            f"unknown compliance profile '{value}'. "
            f"Available: {', '.join(p.value for p in cls)}",
            field="profile",
        )


_GUIDELINE_IDS = {
    ComplianceProfile.BASIC: "urn:cen.eu:en16931:2017#compliant#urn:factur-x.eu:1p0:basic",
    ComplianceProfile.EN16931: "urn:cen.eu:en16931:2017",
}

_CONFORMANCE_LEVELS = {
    ComplianceProfile.BASIC: "BASIC",
    ComplianceProfile.EN16931: "EN 16931",
}


@dataclass(frozen=True)
class PostalAddress:
    """Best-effort structured address; every part is optional."""
    line_one: str | None = None
    postcode: str | None = None
    city: str | None = None
    country_code: str = "FR"

    @property
    def is_empty(self) -> bool:
        return not (self.line_one or self.postcode or self.city)


@dataclass(frozen=True)
class Seller:
    legal_name: str
    address: PostalAddress = field(default_factory=PostalAddress)
    tax_registration_id: str | None = None  # SIRET
    vat_number: str | None = None  # n° TVA intracommunautaire
    contact_email: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class Buyer:
    name: str
    address: PostalAddress = field(default_factory=PostalAddress)
    contact_email: str | None = None
    tax_registration_id: str | None = None
    vat_number: str | None = None
    phone: str | None = None


@dataclass(frozen=True)
class CanonicalLine:
    """A single invoice line. The line total is always derived."""
    line_id: int
    description: str
    quantity: Decimal
    unit_price_excluding_tax: Decimal
    vat_rate: Decimal
    unit_code: str = "C62"  # UN/ECE Rec 20: "one" (unit)

    def __post_init__(self):
        if self.quantity < 0:
            raise ValidationError(
                f"line {self.line_id}: quantity must not be negative ({self.quantity})",
                field="quantity",
            )
        if not (0 <= self.vat_rate <= HUNDRED):
            raise ValidationError(
                f"line {self.line_id}: VAT rate must be between 0 and 100 ({self.vat_rate})",
                field="vat_rate",
            )

    @property
    def line_total_excluding_tax(self) -> Decimal:
        return self.quantity * self.unit_price_excluding_tax

    @property
    def net_amount(self) -> Decimal:
        """Line net amount as written to the XML; header and VAT sums add these."""
        return round_money(self.line_total_excluding_tax)

    @property
    def vat_category_code(self) -> str:
        """UNTDID 5305: Z = zero rated, S = standard rate."""
        return "Z" if self.vat_rate == 0 else "S"


@dataclass(frozen=True)
class TaxSubtotal:
    """VAT breakdown for one distinct rate (BG-23)."""
    vat_rate: Decimal
    category_code: str
    taxable_amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class MonetarySummary:
    total_excluding_tax: Decimal
    total_tax_amount: Decimal
    total_including_tax: Decimal
    line_total_amount: Decimal

    def __post_init__(self):
        expected = self.total_excluding_tax + self.total_tax_amount
        if not within_tolerance(self.total_including_tax, expected):
            raise ValidationError(
                f"total including tax {self.total_including_tax} does not equal "
                f"{self.total_excluding_tax} + {self.total_tax_amount}",
                field="total",
            )


@dataclass(frozen=True)
class PaymentInstructions:
    means_code: str = "30"  # UNTDID 4461: 30 = credit transfer
    iban: str | None = None
    bic: str | None = None
    terms: str | None = None


@dataclass(frozen=True)
class CanonicalInvoice:
    """The EN 16931 semantic model of one invoice."""
    document_number: str
    issue_date: date
    seller: Seller
    buyer: Buyer
    lines: tuple[CanonicalLine, ...]
    monetary_summary: MonetarySummary
    compliance_profile: ComplianceProfile = ComplianceProfile.EN16931
    due_date: date | None = None
    type_code: str = "380"  # 380 = commercial invoice, 381 = credit note
    currency_code: str = "EUR"
    payment: PaymentInstructions | None = None
    notes: str | None = None
    buyer_reference: str | None = None

    def __post_init__(self):
        if not self.document_number or not self.document_number.strip():
            raise ValidationError("missing document number", field="invoice_number")
        if self.issue_date is None:
            raise ValidationError("missing issue date", field="issue_date")

    def tax_breakdown(self) -> list[TaxSubtotal]:
        """Group the lines by VAT rate, one subtotal per distinct rate."""
        bases: dict[Decimal, Decimal] = {}
        for line in self.lines:
            rate = line.vat_rate
            bases[rate] = bases.get(rate, Decimal("0")) + line.net_amount

        subtotals = []
        for rate in sorted(bases):
            base = bases[rate]
            subtotals.append(TaxSubtotal(
                vat_rate=rate,
                category_code="Z" if rate == 0 else "S",
                taxable_amount=base,
                tax_amount=round_money(base * rate / HUNDRED),
            ))
        return subtotals


@dataclass(frozen=True)
class ComplianceXmlPayload:
    """Serialized CII XML, produced once and consumed once by embedding."""
    content: bytes
    profile: ComplianceProfile
    document_number: str = ""
    filename: str = "factur-x.xml"

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class CompliantPdfDocument:
    """The final PDF/A-3 bytes with the XML attached."""
    content: bytes
    profile: ComplianceProfile
    document_number: str

    @property
    def filename(self) -> str:
        return f"facture-{self.document_number}-facturx.pdf"

    def __len__(self) -> int:
        return len(self.content)


class EInvoiceStandard(ABC):
    """Abstract base for an e-invoice syntax (Factur-X CII, ...)."""

    @property
    @abstractmethod
    def standard_name(self) -> str:
        """Human-readable name, e.g. 'Factur-X 1.0 / ZUGFeRD 2.x'."""

    @property
    @abstractmethod
    def xml_filename(self) -> str:
        """Filename of the embedded XML (e.g. 'factur-x.xml')."""

    @abstractmethod
    def generate_xml(self, invoice: CanonicalInvoice) -> bytes:
        """Generate the standards-compliant XML from the canonical invoice.

        Returns:
            UTF-8 encoded XML bytes.
        """

    def validate_data(self, invoice: CanonicalInvoice) -> list[str]:
        """Structural problems that make serialization impossible.

        Returns:
            List of error messages (empty = OK).
        """
        problems = []
        if not invoice.seller.legal_name:
            problems.append("Seller name is missing.")
        if not invoice.buyer.name:
            problems.append("Buyer name is missing.")
        return problems
