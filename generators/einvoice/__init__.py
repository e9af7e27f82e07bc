"""
Modular e-invoice generation package.

Pipeline: application records -> ``CanonicalInvoice`` (mapper) ->
Factur-X CII XML (cii) -> PDF/A-3 with the XML attached (embed).
Every stage either returns its product or raises one of the typed errors
in ``generators.einvoice.errors``; there is no partial output.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime

from generators.einvoice.base import (
    CanonicalInvoice,
    ComplianceProfile,
    ComplianceXmlPayload,
    CompliantPdfDocument,
    EInvoiceStandard,
)
from generators.einvoice.cii import FacturXStandard, check_xsd, serialize_to_xml
from generators.einvoice.embed import DEFAULT_PRODUCER, embed_xml_in_pdf
from generators.einvoice.errors import (
    EInvoiceError,
    EmbeddingError,
    ReconciliationWarning,
    SerializationError,
    ValidationError,
)
from generators.einvoice.mapper import MappingResult, map_record, map_to_canonical, validate_record

logger = logging.getLogger(__name__)

# Registry of available e-invoice standards
STANDARDS: dict[str, type[EInvoiceStandard]] = {
    "facturx": FacturXStandard,
}

# Default standard for France
DEFAULT_STANDARD = "facturx"


def get_standard(name: str | None = None) -> EInvoiceStandard:
    """Get an e-invoice standard instance by name.

    Raises:
        ValueError: If the standard name is not registered.
    """
    name = name or DEFAULT_STANDARD
    cls = STANDARDS.get(name)
    if cls is None:
        raise ValueError(
            f"Unknown e-invoice standard '{name}'. "
            f"Available: {', '.join(STANDARDS.keys())}"
        )
    return cls()


def _serialize(result: MappingResult, validate_xsd: bool) -> ComplianceXmlPayload:
    payload = get_standard().serialize(result.invoice)
    if validate_xsd:
        check_xsd(payload)
    return payload


def generate_facturx_xml(
    invoice_record: Mapping,
    line_items: Sequence[Mapping],
    seller_profile: Mapping | None,
    buyer_record: Mapping | None = None,
    profile: str | ComplianceProfile | None = None,
    *,
    validate_xsd: bool = False,
) -> ComplianceXmlPayload:
    """Records -> Factur-X XML payload (no PDF involved)."""
    result = map_record(invoice_record, line_items, seller_profile, buyer_record, profile)
    return _serialize(result, validate_xsd)


def generate_facturx_pdf(
    base_pdf_bytes: bytes,
    invoice_record: Mapping,
    line_items: Sequence[Mapping],
    seller_profile: Mapping | None,
    buyer_record: Mapping | None = None,
    profile: str | ComplianceProfile | None = None,
    *,
    validate_xsd: bool = False,
    lang: str = "fr-FR",
    producer: str = DEFAULT_PRODUCER,
    pdf_metadata: dict | None = None,
    timestamp: datetime | None = None,
) -> CompliantPdfDocument:
    """Records + base PDF -> Factur-X PDF/A-3.

    The declared level is the effective one, i.e. BASIC when the seller
    has no SIRET even though EN16931 was requested.

    Raises:
        ValidationError, SerializationError, EmbeddingError
    """
    result = map_record(invoice_record, line_items, seller_profile, buyer_record, profile)
    payload = _serialize(result, validate_xsd)
    return embed_xml_in_pdf(
        base_pdf_bytes,
        payload,
        payload.profile,
        lang=lang,
        producer=producer,
        pdf_metadata=pdf_metadata,
        timestamp=timestamp,
    )


__all__ = [
    "CanonicalInvoice",
    "ComplianceProfile",
    "ComplianceXmlPayload",
    "CompliantPdfDocument",
    "EInvoiceError",
    "EInvoiceStandard",
    "EmbeddingError",
    "FacturXStandard",
    "MappingResult",
    "ReconciliationWarning",
    "STANDARDS",
    "SerializationError",
    "ValidationError",
    "embed_xml_in_pdf",
    "generate_facturx_pdf",
    "generate_facturx_xml",
    "get_standard",
    "map_record",
    "map_to_canonical",
    "serialize_to_xml",
    "validate_record",
]
