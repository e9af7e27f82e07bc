"""
XMP metadata packet for Factur-X PDF/A-3 documents.

The packet declares PDF/A-3B conformance, the document identity (Dublin
Core, must match the PDF information dictionary), the Factur-X ``fx``
properties and the PDF/A extension schema that describes ``fx`` to
validators such as veraPDF.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from lxml import etree

from generators.einvoice.base import ComplianceProfile

NS_X = "adobe:ns:meta/"
NS_RDF = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
NS_XML = "http://www.w3.org/XML/1998/namespace"
NS_DC = "http://purl.org/dc/elements/1.1/"
NS_PDF = "http://ns.adobe.com/pdf/1.3/"
NS_XMP = "http://ns.adobe.com/xap/1.0/"
NS_PDFAID = "http://www.aiim.org/pdfa/ns/id/"
NS_PDFA_EXTENSION = "http://www.aiim.org/pdfa/ns/extension/"
NS_PDFA_SCHEMA = "http://www.aiim.org/pdfa/ns/schema#"
NS_PDFA_PROPERTY = "http://www.aiim.org/pdfa/ns/property#"
NS_FX = "urn:factur-x:pdfa:CrossIndustryDocument:invoice:1p0#"

FACTURX_VERSION = "1.0"

_PACKET_HEADER = '<?xpacket begin="\ufeff" id="W5M0MpCehiHzreSzNTczkc9d"?>\n'
_PACKET_TRAILER = '\n<?xpacket end="w"?>'

# (name, description) of every fx property, for the extension schema
_FX_PROPERTIES = (
    ("DocumentFileName", "The name of the embedded XML document"),
    ("DocumentType", "The type of the hybrid document in capital letters, e.g. INVOICE or ORDER"),
    ("Version", "The actual version of the standard applying to the embedded XML document"),
    ("ConformanceLevel", "The conformance level of the embedded XML document"),
)


@dataclass(frozen=True)
class DocumentInfo:
    """Identity of the PDF, shared by the XMP packet and the Info dictionary."""
    title: str
    author: str
    subject: str
    keywords: str
    producer: str
    creator_tool: str
    timestamp: datetime

    @property
    def xmp_date(self) -> str:
        return self.timestamp.isoformat(timespec="seconds")

    @property
    def pdf_date(self) -> str:
        """PDF date string, e.g. D:20240301120000+00'00'."""
        offset = self.timestamp.strftime("%z") or "+0000"
        return f"D:{self.timestamp:%Y%m%d%H%M%S}{offset[:3]}'{offset[3:]}'"


def _q(ns: str, local: str) -> str:
    return f"{{{ns}}}{local}"


def _sub(parent, ns: str, local: str, text: str | None = None, **attribs):
    elem = etree.SubElement(parent, _q(ns, local))
    if text is not None:
        elem.text = text
    for key, value in attribs.items():
        elem.set(key, value)
    return elem


def _description(rdf, nsmap: dict[str, str]):
    desc = etree.SubElement(rdf, _q(NS_RDF, "Description"), nsmap=nsmap)
    desc.set(_q(NS_RDF, "about"), "")
    return desc


def _lang_alt(parent, ns: str, local: str, text: str) -> None:
    alt = _sub(_sub(parent, ns, local), NS_RDF, "Alt")
    li = _sub(alt, NS_RDF, "li", text)
    li.set(_q(NS_XML, "lang"), "x-default")


def _resource_li(parent):
    li = _sub(parent, NS_RDF, "li")
    li.set(_q(NS_RDF, "parseType"), "Resource")
    return li


def _add_extension_schema(rdf) -> None:
    desc = _description(rdf, {
        "pdfaExtension": NS_PDFA_EXTENSION,
        "pdfaSchema": NS_PDFA_SCHEMA,
        "pdfaProperty": NS_PDFA_PROPERTY,
    })
    bag = _sub(_sub(desc, NS_PDFA_EXTENSION, "schemas"), NS_RDF, "Bag")
    schema = _resource_li(bag)
    _sub(schema, NS_PDFA_SCHEMA, "schema", "Factur-X PDFA Extension Schema")
    _sub(schema, NS_PDFA_SCHEMA, "namespaceURI", NS_FX)
    _sub(schema, NS_PDFA_SCHEMA, "prefix", "fx")
    seq = _sub(_sub(schema, NS_PDFA_SCHEMA, "property"), NS_RDF, "Seq")
    for name, description in _FX_PROPERTIES:
        prop = _resource_li(seq)
        _sub(prop, NS_PDFA_PROPERTY, "name", name)
        _sub(prop, NS_PDFA_PROPERTY, "valueType", "Text")
        _sub(prop, NS_PDFA_PROPERTY, "category", "external")
        _sub(prop, NS_PDFA_PROPERTY, "description", description)


def build_xmp_packet(info: DocumentInfo, profile: ComplianceProfile,
                     xml_filename: str = "factur-x.xml") -> bytes:
    """Return the complete ``<?xpacket?>``-wrapped XMP metadata as UTF-8."""
    xmpmeta = etree.Element(_q(NS_X, "xmpmeta"), nsmap={"x": NS_X})
    rdf = etree.SubElement(xmpmeta, _q(NS_RDF, "RDF"), nsmap={"rdf": NS_RDF})

    pdfaid = _description(rdf, {"pdfaid": NS_PDFAID})
    _sub(pdfaid, NS_PDFAID, "part", "3")
    _sub(pdfaid, NS_PDFAID, "conformance", "B")

    dc = _description(rdf, {"dc": NS_DC})
    _lang_alt(dc, NS_DC, "title", info.title)
    creator = _sub(_sub(dc, NS_DC, "creator"), NS_RDF, "Seq")
    _sub(creator, NS_RDF, "li", info.author)
    _lang_alt(dc, NS_DC, "description", info.subject)

    pdf = _description(rdf, {"pdf": NS_PDF})
    _sub(pdf, NS_PDF, "Producer", info.producer)
    _sub(pdf, NS_PDF, "Keywords", info.keywords)

    xmp = _description(rdf, {"xmp": NS_XMP})
    _sub(xmp, NS_XMP, "CreatorTool", info.creator_tool)
    _sub(xmp, NS_XMP, "CreateDate", info.xmp_date)
    _sub(xmp, NS_XMP, "ModifyDate", info.xmp_date)
    _sub(xmp, NS_XMP, "MetadataDate", info.xmp_date)

    _add_extension_schema(rdf)

    fx = _description(rdf, {"fx": NS_FX})
    _sub(fx, NS_FX, "DocumentType", "INVOICE")
    _sub(fx, NS_FX, "DocumentFileName", xml_filename)
    _sub(fx, NS_FX, "Version", FACTURX_VERSION)
    _sub(fx, NS_FX, "ConformanceLevel", profile.conformance_level)

    body = etree.tostring(xmpmeta, pretty_print=True, encoding="unicode")
    return (_PACKET_HEADER + body + _PACKET_TRAILER).encode("utf-8")
