"""
Generatore numeri documento
Progetto: Business Manager (Gestionale Commerciale)

Formato: {PREFISSO}-{ANNO}-{PROGRESSIVO}, es. INV-2024-0001.
Il progressivo è incrementato lato server dalla procedura
`next_document_number` (upsert atomico), quindi due richieste
concorrenti non ottengono mai lo stesso numero.
"""

import logging
import uuid
from datetime import date
from typing import Optional, Protocol

from app.core.config import settings
from app.core.datastore import Database
from app.core.exceptions import BusinessValidationError
from app.schemas.common import DocumentType

logger = logging.getLogger(__name__)

DOCUMENT_PREFIXES: dict[DocumentType, str] = {
    DocumentType.INVOICE: "INV",
    DocumentType.PROFORMA: "PRO",
    DocumentType.QUOTATION: "QT",
    DocumentType.RECEIPT: "REC",
    DocumentType.PAYMENT: "PAY",
    DocumentType.DELIVERY_NOTE: "DN",
    DocumentType.CREDIT_NOTE: "CN",
}


class DocumentNumberGenerator(Protocol):
    """Capability di numerazione usata dai servizi."""

    async def generate(
        self,
        company_id: uuid.UUID,
        document_type: DocumentType,
        on_date: Optional[date] = None,
    ) -> str:
        ...


def format_document_number(prefix: str, year: int, value: int, padding: Optional[int] = None) -> str:
    """Compone il numero documento (es. INV-2024-0001)."""
    width = settings.document_number_padding if padding is None else padding
    return f"{prefix}-{year}-{value:0{width}d}"


class SequenceNumberGenerator:
    """
    Numerazione basata sulla tabella document_sequences.

    Args:
        db: Capability di persistenza
        padding: Cifre del progressivo (default: settings.document_number_padding)
    """

    def __init__(self, db: Database, padding: Optional[int] = None) -> None:
        self._db = db
        self._padding = padding

    async def generate(
        self,
        company_id: uuid.UUID,
        document_type: DocumentType,
        on_date: Optional[date] = None,
    ) -> str:
        """
        Restituisce il prossimo numero per azienda e tipo documento.

        Raises:
            BusinessValidationError: Se il tipo documento non ha prefisso
            DatabaseOperationError: Se la procedura di incremento fallisce
        """
        document_type = DocumentType(document_type)
        prefix = DOCUMENT_PREFIXES.get(document_type)
        if prefix is None:
            raise BusinessValidationError(
                f"Nessuna numerazione definita per {document_type.value}"
            )

        year = (on_date or date.today()).year
        result = await self._db.rpc(
            "next_document_number",
            {
                "company_id": company_id,
                "document_type": prefix,
                "year": year,
            },
        )
        if not result.ok:
            logger.error(
                "Generazione numero %s fallita per azienda %s: %s",
                prefix,
                company_id,
                result.error.message,
            )
        value = int(result.unwrap())

        number = format_document_number(prefix, year, value, self._padding)
        logger.debug("Numero documento generato: %s", number)
        return number
