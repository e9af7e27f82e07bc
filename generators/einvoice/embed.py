"""
PDF/A-3 embedding for e-invoice XML.

Uses ``pypdf`` generic objects to add, on top of an existing PDF:
- the XML as an ``/EmbeddedFile`` stream with its ``/Filespec``
  (``/AFRelationship /Data``), listed in the catalog ``/Names`` tree and
  ``/AF`` array;
- an XMP metadata stream declaring PDF/A-3B and the Factur-X level;
- a matching document information dictionary;
- an sRGB output intent when the base PDF has none.

Pages and content streams are cloned untouched, so the visual rendering of
the base PDF never changes.
"""
from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timezone
from functools import lru_cache
from io import BytesIO

from PIL import ImageCms
from pypdf import PdfReader, PdfWriter
from pypdf.generic import (
    ArrayObject,
    ByteStringObject,
    DecodedStreamObject,
    DictionaryObject,
    NameObject,
    NumberObject,
    StreamObject,
    TextStringObject,
)

from generators.einvoice.base import ComplianceProfile, ComplianceXmlPayload, CompliantPdfDocument
from generators.einvoice.errors import EmbeddingError
from generators.einvoice.xmp import DocumentInfo, build_xmp_packet

logger = logging.getLogger(__name__)

AF_RELATIONSHIP = "/Data"
XML_DESCRIPTION = "Factur-X XML invoice"
DEFAULT_PRODUCER = "Factur-X Service"
SRGB_IDENTIFIER = "sRGB IEC61966-2.1"

# The header may be preceded by junk, but only within the first 1024 bytes
_HEADER_WINDOW = 1024


@lru_cache(maxsize=1)
def _srgb_icc_profile() -> bytes:
    """sRGB ICC profile bytes for the PDF/A output intent."""
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


def _open_base_pdf(pdf_bytes: bytes) -> PdfReader:
    """Parse the base PDF, mapping every failure to ``EmbeddingError``."""
    if b"%PDF-" not in pdf_bytes[:_HEADER_WINDOW]:
        raise EmbeddingError("Base PDF is not a PDF document (missing %PDF header)")
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        if reader.is_encrypted:
            raise EmbeddingError("Base PDF is encrypted; PDF/A forbids encryption")
        page_count = len(reader.pages)
    except EmbeddingError:
        raise
    except Exception as exc:
        raise EmbeddingError(f"Base PDF could not be parsed: {exc}") from exc
    if page_count == 0:
        raise EmbeddingError("Base PDF has no pages")
    return reader


def _stream(data: bytes, entries: dict, *, compress: bool) -> StreamObject:
    stream = DecodedStreamObject()
    stream.set_data(data)
    if compress:
        stream = stream.flate_encode()
    for key, value in entries.items():
        stream[NameObject(key)] = value
    return stream


def _collect_name_tree(node: DictionaryObject) -> list[tuple[str, object]]:
    """Flatten a name tree (``/Names`` leaves and ``/Kids``) into (name, value) pairs."""
    pairs = []
    names = node.get("/Names")
    if names is not None:
        names = names.get_object()
        for i in range(0, len(names) - 1, 2):
            # keep the raw (possibly indirect) value, not the resolved one
            pairs.append((str(names[i].get_object()), names[i + 1]))
    kids = node.get("/Kids")
    for kid in (kids.get_object() if kids is not None else []):
        pairs.extend(_collect_name_tree(kid.get_object()))
    return pairs


class _FacturXWriter:
    """Adds the Factur-X / PDF/A-3 objects to a cloned document."""

    def __init__(self, reader: PdfReader):
        self.writer = PdfWriter(clone_from=reader)
        self.catalog = self.writer._root_object

    def attach_xml(self, payload: ComplianceXmlPayload, mod_date: str):
        content = payload.content
        embedded = _stream(content, {
            "/Type": NameObject("/EmbeddedFile"),
            "/Subtype": NameObject("/text/xml"),
            "/Params": DictionaryObject({
                NameObject("/Size"): NumberObject(len(content)),
                NameObject("/ModDate"): TextStringObject(mod_date),
                NameObject("/CheckSum"): ByteStringObject(hashlib.md5(content).digest()),
            }),
        }, compress=True)
        embedded_ref = self.writer._add_object(embedded)

        filespec = DictionaryObject({
            NameObject("/Type"): NameObject("/Filespec"),
            NameObject("/F"): TextStringObject(payload.filename),
            NameObject("/UF"): TextStringObject(payload.filename),
            NameObject("/EF"): DictionaryObject({
                NameObject("/F"): embedded_ref,
                NameObject("/UF"): embedded_ref,
            }),
            NameObject("/Desc"): TextStringObject(XML_DESCRIPTION),
            NameObject("/AFRelationship"): NameObject(AF_RELATIONSHIP),
        })
        filespec_ref = self.writer._add_object(filespec)

        self._register_embedded_file(payload.filename, filespec_ref)
        self._register_associated_file(payload.filename, filespec_ref)
        return filespec_ref

    def _register_embedded_file(self, filename: str, filespec_ref) -> None:
        if "/Names" in self.catalog:
            names = self.catalog["/Names"]
        else:
            names = DictionaryObject()
            self.catalog[NameObject("/Names")] = names

        pairs = []
        if "/EmbeddedFiles" in names:
            pairs = [(name, value) for name, value in _collect_name_tree(names["/EmbeddedFiles"])
                     if name != filename]
        pairs.append((filename, filespec_ref))
        pairs.sort(key=lambda pair: pair[0])  # name tree keys must be sorted

        flat = ArrayObject()
        for name, value in pairs:
            flat.append(TextStringObject(name))
            flat.append(value)
        names[NameObject("/EmbeddedFiles")] = DictionaryObject({NameObject("/Names"): flat})

    def _register_associated_file(self, filename: str, filespec_ref) -> None:
        af = ArrayObject()
        existing = self.catalog.get("/AF")
        for ref in (existing.get_object() if existing is not None else []):
            spec = ref.get_object()
            if str(spec.get("/F", "")) != filename:
                af.append(ref)
        af.append(filespec_ref)
        self.catalog[NameObject("/AF")] = af

    def set_metadata(self, info: DocumentInfo, profile: ComplianceProfile, xml_filename: str) -> None:
        packet = build_xmp_packet(info, profile, xml_filename)
        # XMP must stay unfiltered so that PDF/A readers can sniff it
        metadata = _stream(packet, {
            "/Type": NameObject("/Metadata"),
            "/Subtype": NameObject("/XML"),
        }, compress=False)
        self.catalog[NameObject("/Metadata")] = self.writer._add_object(metadata)

        self.writer.add_metadata({
            "/Title": info.title,
            "/Author": info.author,
            "/Subject": info.subject,
            "/Keywords": info.keywords,
            "/Creator": info.creator_tool,
            "/Producer": info.producer,
            "/CreationDate": info.pdf_date,
            "/ModDate": info.pdf_date,
        })

    def ensure_output_intent(self) -> None:
        if "/OutputIntents" in self.catalog:
            return
        icc = _stream(_srgb_icc_profile(), {
            "/N": NumberObject(3),
            "/Alternate": NameObject("/DeviceRGB"),
        }, compress=True)
        intent = DictionaryObject({
            NameObject("/Type"): NameObject("/OutputIntent"),
            NameObject("/S"): NameObject("/GTS_PDFA1"),
            NameObject("/OutputConditionIdentifier"): TextStringObject(SRGB_IDENTIFIER),
            NameObject("/Info"): TextStringObject(SRGB_IDENTIFIER),
            NameObject("/DestOutputProfile"): self.writer._add_object(icc),
        })
        self.catalog[NameObject("/OutputIntents")] = ArrayObject([self.writer._add_object(intent)])

    def set_language(self, lang: str) -> None:
        if lang:
            self.catalog[NameObject("/Lang")] = TextStringObject(lang)

    def to_bytes(self) -> bytes:
        out = BytesIO()
        self.writer.write(out)
        return out.getvalue()


def _document_info(payload: ComplianceXmlPayload, pdf_metadata: dict | None,
                   producer: str, timestamp: datetime | None) -> DocumentInfo:
    meta = pdf_metadata or {}
    number = payload.document_number
    timestamp = timestamp or datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        # naive values are taken as UTC so XMP and Info dates agree
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return DocumentInfo(
        title=meta.get("title") or f"Facture {number}",
        author=meta.get("author") or producer,
        subject=meta.get("subject") or "Facture électronique Factur-X",
        keywords=meta.get("keywords") or f"facture, factur-x, {payload.profile.facturx_level}, {number}",
        producer=producer,
        creator_tool=meta.get("creator") or producer,
        timestamp=timestamp.replace(microsecond=0),
    )


def embed_xml_in_pdf(
    pdf_bytes: bytes,
    xml_payload: ComplianceXmlPayload,
    profile: ComplianceProfile | str | None = None,
    *,
    lang: str = "fr-FR",
    producer: str = DEFAULT_PRODUCER,
    pdf_metadata: dict | None = None,
    timestamp: datetime | None = None,
) -> CompliantPdfDocument:
    """Embed e-invoice XML into a PDF, producing a PDF/A-3 compliant file.

    Args:
        pdf_bytes: The base (visual) PDF as bytes. Not modified.
        xml_payload: The serialized Factur-X XML.
        profile: Level to declare in the XMP packet. Defaults to the
            payload's profile and must agree with it.
        lang: PDF language tag (BCP 47), e.g. 'fr-FR'.
        producer: Producer / creator tool written to Info and XMP.
        pdf_metadata: Optional dict with keys 'author', 'title', 'subject',
            'keywords', 'creator'.
        timestamp: Creation/modification date; defaults to now (UTC).

    Returns:
        The Factur-X PDF (PDF/A-3 with embedded XML).

    Raises:
        EmbeddingError: If the base PDF is not parseable or assembly fails.
    """
    profile = ComplianceProfile.parse(profile, default=xml_payload.profile)
    if profile is not xml_payload.profile:
        raise EmbeddingError(
            f"Profile {profile.value} does not match the XML payload ({xml_payload.profile.value})"
        )

    reader = _open_base_pdf(bytes(pdf_bytes))
    info = _document_info(xml_payload, pdf_metadata, producer, timestamp)

    logger.info("Embedding %s (level=%s) into PDF/A-3 for invoice %s",
                xml_payload.filename, profile.value, xml_payload.document_number)
    try:
        builder = _FacturXWriter(reader)
        builder.attach_xml(xml_payload, info.pdf_date)
        builder.set_metadata(info, profile, xml_payload.filename)
        builder.ensure_output_intent()
        builder.set_language(lang)
        result_pdf = builder.to_bytes()
    except Exception as exc:
        raise EmbeddingError(f"PDF/A-3 assembly failed: {exc}") from exc

    logger.info("Successfully generated Factur-X PDF/A-3 (%d bytes)", len(result_pdf))
    return CompliantPdfDocument(
        content=result_pdf,
        profile=profile,
        document_number=xml_payload.document_number,
    )
