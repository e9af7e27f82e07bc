"""
Factur-X 1.0 / ZUGFeRD 2.x implementation.

Generates UN/CEFACT Cross Industry Invoice (CII D16B) XML conforming to the
Factur-X EN 16931 (COMFORT) profile, or to the BASIC profile when the seller
cannot be fully identified.

Element order follows the XSDs shipped with Factur-X; the schema is strict
about it, so do not reorder the ``_el`` calls.

References:
- Factur-X: https://fnfe-mpe.org/factur-x/
- EN 16931-1: semantic data model of the core elements of an e-invoice
- CII D16B schema: UN/CEFACT CrossIndustryInvoice
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from lxml import etree

from generators.einvoice.base import (
    Buyer,
    CanonicalInvoice,
    ComplianceProfile,
    ComplianceXmlPayload,
    EInvoiceStandard,
    PostalAddress,
    Seller,
    round_money,
)
from generators.einvoice.errors import SerializationError

logger = logging.getLogger(__name__)

# ── XML Namespaces (CII D16B) ───────────────────────────────────
NS = {
    "rsm": "urn:un:unece:uncefact:data:standard:CrossIndustryInvoice:100",
    "ram": "urn:un:unece:uncefact:data:standard:ReusableAggregateBusinessInformationEntity:100",
    "qdt": "urn:un:unece:uncefact:data:standard:QualifiedDataType:100",
    "udt": "urn:un:unece:uncefact:data:standard:UnqualifiedDataType:100",
}

FACTURX_FILENAME = "factur-x.xml"
SIRET_SCHEME = "0002"  # ISO 6523 ICD for the French SIRENE register

_QUANTITY_STEP = Decimal("0.0001")


def _el(parent: etree._Element, tag: str, text: str | None = None, **attribs) -> etree._Element:
    """Create a sub-element with optional text and attributes."""
    ns_prefix, local = tag.split(":", 1) if ":" in tag else ("ram", tag)
    ns_uri = NS[ns_prefix]
    elem = etree.SubElement(parent, f"{{{ns_uri}}}{local}")
    if text is not None:
        elem.text = str(text)
    for k, v in attribs.items():
        elem.set(k, str(v))
    return elem


def fmt_date(d: date) -> str:
    """Format date as YYYYMMDD (format 102)."""
    return d.strftime("%Y%m%d")


def fmt_amount(value: Decimal) -> str:
    """Format monetary amount: exactly 2 decimals, no thousands separator."""
    return f"{round_money(value):f}"


def fmt_percent(value: Decimal) -> str:
    return fmt_amount(value)


def fmt_quantity(value: Decimal) -> str:
    """Up to 4 decimals; trailing zeros trimmed but never below 2 decimals."""
    text = f"{value.quantize(_QUANTITY_STEP, rounding=ROUND_HALF_UP):f}"
    whole, _, decimals = text.partition(".")
    decimals = decimals.rstrip("0").ljust(2, "0")
    return f"{whole}.{decimals}"


class FacturXStandard(EInvoiceStandard):
    """Factur-X / ZUGFeRD CII syntax for the BASIC and EN 16931 profiles."""

    @property
    def standard_name(self) -> str:
        return "Factur-X 1.0 / ZUGFeRD 2.x"

    @property
    def xml_filename(self) -> str:
        return FACTURX_FILENAME

    # ── Public API ──────────────────────────────────────────────
    def generate_xml(self, invoice: CanonicalInvoice) -> bytes:
        problems = self.validate_data(invoice)
        if problems:
            raise SerializationError(
                f"Invoice {invoice.document_number} cannot be serialized: " + " ".join(problems)
            )
        try:
            root = self._build_root(invoice)
            return etree.tostring(
                root, pretty_print=True, xml_declaration=True, encoding="UTF-8"
            )
        except (ValueError, TypeError) as exc:
            # lxml rejects e.g. control characters in text nodes
            raise SerializationError(f"XML serialization failed: {exc}") from exc

    def serialize(self, invoice: CanonicalInvoice) -> ComplianceXmlPayload:
        xml_bytes = self.generate_xml(invoice)
        logger.info(
            "Serialized invoice %s to %s XML (%s, %d bytes)",
            invoice.document_number, self.standard_name,
            invoice.compliance_profile.value, len(xml_bytes),
        )
        return ComplianceXmlPayload(
            content=xml_bytes,
            profile=invoice.compliance_profile,
            document_number=invoice.document_number,
            filename=self.xml_filename,
        )

    # ── XML tree builders ───────────────────────────────────────
    def _build_root(self, inv: CanonicalInvoice) -> etree._Element:
        root = etree.Element(f"{{{NS['rsm']}}}CrossIndustryInvoice", nsmap=dict(NS))

        self._add_context(root, inv)
        self._add_document(root, inv)
        self._add_transaction(root, inv)

        return root

    def _add_context(self, root: etree._Element, inv: CanonicalInvoice) -> None:
        ctx = _el(root, "rsm:ExchangedDocumentContext")
        param = _el(ctx, "ram:GuidelineSpecifiedDocumentContextParameter")
        _el(param, "ram:ID", inv.compliance_profile.guideline_id)

    def _add_document(self, root: etree._Element, inv: CanonicalInvoice) -> None:
        doc = _el(root, "rsm:ExchangedDocument")
        _el(doc, "ram:ID", inv.document_number)
        _el(doc, "ram:TypeCode", inv.type_code)

        dt = _el(doc, "ram:IssueDateTime")
        _el(dt, "udt:DateTimeString", fmt_date(inv.issue_date), format="102")

        if inv.notes:
            note = _el(doc, "ram:IncludedNote")
            _el(note, "ram:Content", inv.notes)

    def _add_transaction(self, root: etree._Element, inv: CanonicalInvoice) -> None:
        txn = _el(root, "rsm:SupplyChainTradeTransaction")

        for line in inv.lines:
            self._add_line_item(txn, line)

        self._add_agreement(txn, inv)
        # Delivery block is mandatory in the schema, even when empty
        _el(txn, "ram:ApplicableHeaderTradeDelivery")
        self._add_settlement(txn, inv)

    def _add_line_item(self, txn: etree._Element, line) -> None:
        li = _el(txn, "ram:IncludedSupplyChainTradeLineItem")

        line_doc = _el(li, "ram:AssociatedDocumentLineDocument")
        _el(line_doc, "ram:LineID", str(line.line_id))

        product = _el(li, "ram:SpecifiedTradeProduct")
        _el(product, "ram:Name", line.description)

        agreement = _el(li, "ram:SpecifiedLineTradeAgreement")
        net_price = _el(agreement, "ram:NetPriceProductTradePrice")
        _el(net_price, "ram:ChargeAmount", fmt_amount(line.unit_price_excluding_tax))

        delivery = _el(li, "ram:SpecifiedLineTradeDelivery")
        _el(delivery, "ram:BilledQuantity", fmt_quantity(line.quantity), unitCode=line.unit_code)

        settlement = _el(li, "ram:SpecifiedLineTradeSettlement")
        tax = _el(settlement, "ram:ApplicableTradeTax")
        _el(tax, "ram:TypeCode", "VAT")
        _el(tax, "ram:CategoryCode", line.vat_category_code)
        _el(tax, "ram:RateApplicablePercent", fmt_percent(line.vat_rate))

        monetary = _el(settlement, "ram:SpecifiedTradeSettlementLineMonetarySummation")
        _el(monetary, "ram:LineTotalAmount", fmt_amount(line.net_amount))

    def _add_address(self, party: etree._Element, address: PostalAddress) -> None:
        if address.is_empty:
            return
        addr = _el(party, "ram:PostalTradeAddress")
        if address.postcode:
            _el(addr, "ram:PostcodeCode", address.postcode)
        if address.line_one:
            _el(addr, "ram:LineOne", address.line_one)
        if address.city:
            _el(addr, "ram:CityName", address.city)
        _el(addr, "ram:CountryID", address.country_code)

    def _add_party(self, agreement: etree._Element, tag: str, party: Seller | Buyer,
                   name: str, profile: ComplianceProfile) -> None:
        node = _el(agreement, tag)
        _el(node, "ram:Name", name)

        if party.tax_registration_id:
            legal = _el(node, "ram:SpecifiedLegalOrganization")
            _el(legal, "ram:ID", party.tax_registration_id, schemeID=SIRET_SCHEME)

        # Contact details (BG-6 / BG-9) are not part of BASIC
        if profile.includes_contacts and (party.phone or party.contact_email):
            contact = _el(node, "ram:DefinedTradeContact")
            if party.phone:
                phone = _el(contact, "ram:TelephoneUniversalCommunication")
                _el(phone, "ram:CompleteNumber", party.phone)
            if party.contact_email:
                email = _el(contact, "ram:EmailURIUniversalCommunication")
                _el(email, "ram:URIID", party.contact_email)

        self._add_address(node, party.address)

        if party.contact_email:
            uri = _el(node, "ram:URIUniversalCommunication")
            _el(uri, "ram:URIID", party.contact_email, schemeID="EM")

        if party.vat_number:
            tax_reg = _el(node, "ram:SpecifiedTaxRegistration")
            _el(tax_reg, "ram:ID", party.vat_number, schemeID="VA")

    def _add_agreement(self, txn: etree._Element, inv: CanonicalInvoice) -> None:
        agreement = _el(txn, "ram:ApplicableHeaderTradeAgreement")

        if inv.buyer_reference:
            _el(agreement, "ram:BuyerReference", inv.buyer_reference)

        profile = inv.compliance_profile
        self._add_party(agreement, "ram:SellerTradeParty", inv.seller,
                        inv.seller.legal_name, profile)
        self._add_party(agreement, "ram:BuyerTradeParty", inv.buyer,
                        inv.buyer.name, profile)

    def _add_settlement(self, txn: etree._Element, inv: CanonicalInvoice) -> None:
        settlement = _el(txn, "ram:ApplicableHeaderTradeSettlement")
        _el(settlement, "ram:InvoiceCurrencyCode", inv.currency_code)

        payment = inv.payment
        if payment and payment.iban:
            pmeans = _el(settlement, "ram:SpecifiedTradeSettlementPaymentMeans")
            _el(pmeans, "ram:TypeCode", payment.means_code)
            account = _el(pmeans, "ram:PayeePartyCreditorFinancialAccount")
            _el(account, "ram:IBANID", payment.iban)
            # BIC is only allowed in EN16931 and EXTENDED, not in BASIC.
            if payment.bic and inv.compliance_profile.includes_contacts:
                institution = _el(pmeans, "ram:PayeeSpecifiedCreditorFinancialInstitution")
                _el(institution, "ram:BICID", payment.bic)

        # One breakdown per VAT rate (BG-23), never a blended figure
        for subtotal in inv.tax_breakdown():
            tax = _el(settlement, "ram:ApplicableTradeTax")
            _el(tax, "ram:CalculatedAmount", fmt_amount(subtotal.tax_amount))
            _el(tax, "ram:TypeCode", "VAT")
            _el(tax, "ram:BasisAmount", fmt_amount(subtotal.taxable_amount))
            _el(tax, "ram:CategoryCode", subtotal.category_code)
            _el(tax, "ram:RateApplicablePercent", fmt_percent(subtotal.vat_rate))

        terms_text = payment.terms if payment else None
        if terms_text or inv.due_date:
            terms = _el(settlement, "ram:SpecifiedTradePaymentTerms")
            if terms_text:
                _el(terms, "ram:Description", terms_text)
            if inv.due_date:
                due_dt = _el(terms, "ram:DueDateDateTime")
                _el(due_dt, "udt:DateTimeString", fmt_date(inv.due_date), format="102")

        totals = inv.monetary_summary
        summary = _el(settlement, "ram:SpecifiedTradeSettlementHeaderMonetarySummation")
        _el(summary, "ram:LineTotalAmount", fmt_amount(totals.line_total_amount))
        _el(summary, "ram:TaxBasisTotalAmount", fmt_amount(totals.total_excluding_tax))
        _el(summary, "ram:TaxTotalAmount", fmt_amount(totals.total_tax_amount),
            currencyID=inv.currency_code)
        _el(summary, "ram:GrandTotalAmount", fmt_amount(totals.total_including_tax))
        _el(summary, "ram:DuePayableAmount", fmt_amount(totals.total_including_tax))


def check_xsd(payload: ComplianceXmlPayload) -> None:
    """Validate the payload against the Factur-X XSD bundled with ``factur-x``.

    Raises:
        SerializationError: if the XML does not validate.
    """
    from facturx import xml_check_xsd

    try:
        xml_check_xsd(payload.content, flavor="factur-x", level=payload.profile.facturx_level)
    except Exception as exc:
        raise SerializationError(f"Factur-X XSD validation failed: {exc}") from exc


def serialize_to_xml(invoice: CanonicalInvoice, *, validate_xsd: bool = False) -> ComplianceXmlPayload:
    """Serialize the canonical invoice to a Factur-X CII payload."""
    payload = FacturXStandard().serialize(invoice)
    if validate_xsd:
        check_xsd(payload)
    return payload
