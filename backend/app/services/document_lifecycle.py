"""
Service Layer per i cambi di stato manuali dei documenti
Progetto: Business Manager (Gestionale Commerciale)
"""

import logging
import uuid
from typing import Optional

from app.core.datastore import Database, Row
from app.core.exceptions import InvalidStateError
from app.schemas.common import DocumentType, InvoiceStatus, OperationResult
from app.schemas.token import CurrentUser
from app.services.document_registry import append_status_note, document_table, load_document
from app.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)

CONVERTED = "converted"


class DocumentLifecycleService:
    """
    Applica le transizioni di stato manuali definite nel registro documenti.

    `converted` è riservato al motore di conversione; l'annullamento
    delle fatture passa da InvoiceService.cancel.
    """

    def __init__(self, db: Database, current_user: Optional[CurrentUser] = None) -> None:
        self.db = db
        self.current_user = current_user

    async def update_status(
        self,
        document_type: DocumentType,
        document_id: uuid.UUID,
        new_status: str,
        notes: Optional[str] = None,
    ) -> OperationResult[Row]:
        """
        Cambia lo stato di un documento.

        La motivazione viene aggiunta alle note con una riga
        "[<timestamp>] Status changed to <stato>: <note>".

        Raises:
            NotFoundError: Documento inesistente
            InvalidStateError: Transizione non ammessa
        """
        document_type = DocumentType(document_type)
        spec = document_table(document_type)

        if new_status == CONVERTED:
            raise InvalidStateError(
                "Lo stato 'converted' viene impostato solo dalla conversione del documento"
            )

        if document_type == DocumentType.INVOICE and new_status == InvoiceStatus.CANCELLED.value:
            return await InvoiceService(self.db, self.current_user).cancel(document_id, notes)

        document, _ = await load_document(
            self.db, document_type, document_id, self.current_user, with_items=False
        )
        current = document["status"]
        allowed = spec.transitions.get(current, frozenset())
        if new_status not in allowed:
            raise InvalidStateError(
                f"{spec.label}: transizione {current} → {new_status} non ammessa",
                extra={"current_status": current, "allowed": sorted(allowed)},
            )

        updated = (
            await self.db.update(
                spec.table,
                document_id,
                {
                    "status": new_status,
                    "notes": append_status_note(document.get("notes"), new_status, notes),
                },
            )
        ).unwrap()
        logger.info(
            "%s %s: stato %s → %s",
            spec.label,
            document.get(spec.number_field),
            current,
            new_status,
        )
        return OperationResult(data=updated)
