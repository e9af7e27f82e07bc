"""
Error taxonomy for e-invoice generation.

Every stage of the pipeline raises its own subclass of ``EInvoiceError`` so
that the HTTP layer can tell "the invoice data is incomplete" apart from
"the base PDF renderer produced garbage".
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class EInvoiceError(Exception):
    """Base class for all compliance-document generation failures."""

    code = "einvoice_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(EInvoiceError):
    """The canonical invoice could not be built from the stored records."""

    code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class SerializationError(EInvoiceError):
    """The canonical invoice could not be serialized to CII XML."""

    code = "serialization_error"


class EmbeddingError(EInvoiceError):
    """The base PDF is not parseable or the PDF/A-3 assembly failed."""

    code = "embedding_error"


@dataclass(frozen=True)
class ReconciliationWarning:
    """Stored totals disagree with the totals recomputed from the lines.

    Not an exception: the stored (already displayed) totals are kept and
    the discrepancy is only logged.
    """
    field: str
    stored: Decimal
    computed: Decimal

    @property
    def difference(self) -> Decimal:
        return self.stored - self.computed

    def __str__(self) -> str:
        return (
            f"{self.field}: stored {self.stored} differs from computed "
            f"{self.computed} (delta {self.difference})"
        )
