"""Unit tests for PDF/A-3 embedding of the Factur-X XML.

Tests cover:
- Embedding round-trip (attachment bytes == XML payload)
- Filespec, /AF and output intent structure
- XMP packet and document information
- Malformed input and profile mismatch
"""

from datetime import datetime, timezone
from io import BytesIO

import pytest
from pypdf import PdfReader

from generators.einvoice.base import ComplianceProfile, ComplianceXmlPayload
from generators.einvoice.cii import serialize_to_xml
from generators.einvoice.embed import embed_xml_in_pdf
from generators.einvoice.errors import EmbeddingError
from generators.einvoice.mapper import map_to_canonical

TIMESTAMP = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def payload(invoice_record, line_items, seller_profile) -> ComplianceXmlPayload:
    return serialize_to_xml(map_to_canonical(invoice_record, line_items, seller_profile))


@pytest.fixture
def document(base_pdf, payload):
    return embed_xml_in_pdf(base_pdf, payload, timestamp=TIMESTAMP)


def _catalog(reader: PdfReader):
    return reader.trailer["/Root"]


def test_round_trip_reproduces_xml(document, payload) -> None:
    reader = PdfReader(BytesIO(document.content))

    assert reader.attachments["factur-x.xml"] == [payload.content]


def test_result_metadata(document) -> None:
    assert document.content.startswith(b"%PDF-")
    assert document.profile is ComplianceProfile.EN16931
    assert document.document_number == "INV-2024-001"
    assert document.filename == "facture-INV-2024-001-facturx.pdf"


def test_pages_are_untouched(base_pdf, document) -> None:
    before = PdfReader(BytesIO(base_pdf))
    after = PdfReader(BytesIO(document.content))

    assert len(after.pages) == len(before.pages)
    assert after.pages[0].extract_text() == before.pages[0].extract_text()


def test_input_bytes_are_not_mutated(base_pdf, payload) -> None:
    snapshot = bytes(base_pdf)

    document = embed_xml_in_pdf(base_pdf, payload)

    assert base_pdf == snapshot
    assert document.content != base_pdf


def test_filespec_is_associated_as_data(document, payload) -> None:
    catalog = _catalog(PdfReader(BytesIO(document.content)))

    af = catalog["/AF"]
    assert len(af) == 1
    filespec = af[0].get_object()
    assert filespec["/F"] == "factur-x.xml"
    assert filespec["/UF"] == "factur-x.xml"
    assert filespec["/AFRelationship"] == "/Data"

    embedded = filespec["/EF"]["/F"].get_object()
    assert embedded["/Type"] == "/EmbeddedFile"
    assert embedded["/Subtype"] == "/text/xml"
    assert embedded["/Params"]["/Size"] == len(payload)
    assert "/CheckSum" in embedded["/Params"]
    assert embedded.get_data() == payload.content


def test_output_intent_and_language(document) -> None:
    catalog = _catalog(PdfReader(BytesIO(document.content)))

    intent = catalog["/OutputIntents"][0].get_object()
    assert intent["/S"] == "/GTS_PDFA1"
    assert intent["/OutputConditionIdentifier"] == "sRGB IEC61966-2.1"
    icc = intent["/DestOutputProfile"].get_object()
    assert icc["/N"] == 3
    assert len(icc.get_data()) > 0
    assert catalog["/Lang"] == "fr-FR"


def test_xmp_declares_pdfa3_and_facturx(document) -> None:
    catalog = _catalog(PdfReader(BytesIO(document.content)))
    metadata = catalog["/Metadata"].get_object()

    assert metadata["/Subtype"] == "/XML"
    assert "/Filter" not in metadata
    xmp = metadata.get_data()
    assert xmp.startswith(b'<?xpacket begin="\xef\xbb\xbf"')
    assert xmp.rstrip().endswith(b'<?xpacket end="w"?>')
    assert b"<pdfaid:part>3</pdfaid:part>" in xmp
    assert b"<pdfaid:conformance>B</pdfaid:conformance>" in xmp
    assert b"<fx:DocumentType>INVOICE</fx:DocumentType>" in xmp
    assert b"<fx:DocumentFileName>factur-x.xml</fx:DocumentFileName>" in xmp
    assert b"<fx:Version>1.0</fx:Version>" in xmp
    assert b"<fx:ConformanceLevel>EN 16931</fx:ConformanceLevel>" in xmp
    assert b"<pdfaSchema:prefix>fx</pdfaSchema:prefix>" in xmp
    assert b"<xmp:CreateDate>2024-03-01T12:00:00+00:00</xmp:CreateDate>" in xmp


def test_basic_level_in_xmp(base_pdf, invoice_record, line_items, seller_profile) -> None:
    payload = serialize_to_xml(
        map_to_canonical(invoice_record, line_items, seller_profile, profile="BASIC")
    )

    document = embed_xml_in_pdf(base_pdf, payload)
    xmp = _catalog(PdfReader(BytesIO(document.content)))["/Metadata"].get_object().get_data()

    assert document.profile is ComplianceProfile.BASIC
    assert b"<fx:ConformanceLevel>BASIC</fx:ConformanceLevel>" in xmp


def test_document_info_matches_xmp(document) -> None:
    info = PdfReader(BytesIO(document.content)).metadata

    assert info["/Title"] == "Facture INV-2024-001"
    assert info["/Producer"] == "Factur-X Service"
    assert info["/CreationDate"] == "D:20240301120000+00'00'"


def test_naive_timestamp_is_taken_as_utc(base_pdf, payload) -> None:
    document = embed_xml_in_pdf(base_pdf, payload, timestamp=datetime(2024, 3, 1, 12, 0, 0))
    reader = PdfReader(BytesIO(document.content))
    xmp = _catalog(reader)["/Metadata"].get_object().get_data()

    assert b"<xmp:CreateDate>2024-03-01T12:00:00+00:00</xmp:CreateDate>" in xmp
    assert reader.metadata["/CreationDate"] == "D:20240301120000+00'00'"


def test_custom_metadata_and_producer(base_pdf, payload) -> None:
    document = embed_xml_in_pdf(
        base_pdf, payload,
        producer="Artisan Pro",
        lang="fr-BE",
        pdf_metadata={"author": "Plomberie Dupont", "title": "Plomberie Dupont : facture INV-2024-001"},
    )
    reader = PdfReader(BytesIO(document.content))

    assert reader.metadata["/Author"] == "Plomberie Dupont"
    assert reader.metadata["/Title"] == "Plomberie Dupont : facture INV-2024-001"
    assert reader.metadata["/Producer"] == "Artisan Pro"
    assert _catalog(reader)["/Lang"] == "fr-BE"


def test_embedding_twice_replaces_the_attachment(document, payload) -> None:
    again = embed_xml_in_pdf(document.content, payload)
    reader = PdfReader(BytesIO(again.content))

    assert list(reader.attachments) == ["factur-x.xml"]
    assert len(reader.attachments["factur-x.xml"]) == 1
    assert len(_catalog(reader)["/AF"]) == 1
    assert len(_catalog(reader)["/OutputIntents"]) == 1


@pytest.mark.parametrize("data", [
    b"",
    b"this is not a pdf at all",
    bytes(range(256)) * 8,
])
def test_malformed_base_pdf_raises(payload, data) -> None:
    with pytest.raises(EmbeddingError) as exc_info:
        embed_xml_in_pdf(data, payload)

    assert exc_info.value.code == "embedding_error"


def test_profile_mismatch_raises(base_pdf, payload) -> None:
    with pytest.raises(EmbeddingError, match="does not match"):
        embed_xml_in_pdf(base_pdf, payload, ComplianceProfile.BASIC)


def test_profile_can_be_given_as_string(base_pdf, payload) -> None:
    document = embed_xml_in_pdf(base_pdf, payload, "EN16931")

    assert document.profile is ComplianceProfile.EN16931
