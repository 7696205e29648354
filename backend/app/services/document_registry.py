"""
Registro dei tipi documento
Progetto: Business Manager (Gestionale Commerciale)

Per ogni tipo documento: tabelle, colonne di numero/data e macchina
a stati delle transizioni manuali. Le transizioni verso `converted`
e gli stati di pagamento della fattura non sono manuali: li imposta
il motore corrispondente.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from app.core.datastore import Database, Row
from app.core.exceptions import NotFoundError
from app.schemas.common import (
    CreditNoteStatus,
    DocumentType,
    InvoiceStatus,
    PartialFailureWarning,
    ProformaStatus,
    QuotationStatus,
)
from app.schemas.token import CurrentUser

logger = logging.getLogger(__name__)


class DocumentTable(BaseModel):
    """Descrizione delle tabelle di un tipo documento."""

    model_config = ConfigDict(frozen=True)

    document_type: DocumentType
    table: str
    items_table: str
    parent_key: str
    number_field: str
    date_field: str
    label: str
    # Transizioni manuali consentite: stato → stati raggiungibili
    transitions: dict[str, frozenset[str]]


DOCUMENT_TABLES: dict[DocumentType, DocumentTable] = {
    DocumentType.QUOTATION: DocumentTable(
        document_type=DocumentType.QUOTATION,
        table="quotations",
        items_table="quotation_items",
        parent_key="quotation_id",
        number_field="quotation_number",
        date_field="quotation_date",
        label="Preventivo",
        transitions={
            QuotationStatus.DRAFT.value: frozenset({QuotationStatus.SENT.value}),
            QuotationStatus.SENT.value: frozenset(
                {
                    QuotationStatus.ACCEPTED.value,
                    QuotationStatus.REJECTED.value,
                    QuotationStatus.EXPIRED.value,
                }
            ),
        },
    ),
    DocumentType.PROFORMA: DocumentTable(
        document_type=DocumentType.PROFORMA,
        table="proforma_invoices",
        items_table="proforma_items",
        parent_key="proforma_id",
        number_field="proforma_number",
        date_field="proforma_date",
        label="Proforma",
        transitions={
            ProformaStatus.DRAFT.value: frozenset({ProformaStatus.SENT.value}),
            ProformaStatus.SENT.value: frozenset(
                {ProformaStatus.ACCEPTED.value, ProformaStatus.EXPIRED.value}
            ),
        },
    ),
    DocumentType.INVOICE: DocumentTable(
        document_type=DocumentType.INVOICE,
        table="invoices",
        items_table="invoice_items",
        parent_key="invoice_id",
        number_field="invoice_number",
        date_field="invoice_date",
        label="Fattura",
        transitions={
            InvoiceStatus.DRAFT.value: frozenset(
                {InvoiceStatus.SENT.value, InvoiceStatus.CANCELLED.value}
            ),
            InvoiceStatus.SENT.value: frozenset({InvoiceStatus.CANCELLED.value}),
            InvoiceStatus.PARTIAL.value: frozenset({InvoiceStatus.CANCELLED.value}),
            InvoiceStatus.PAID.value: frozenset({InvoiceStatus.CANCELLED.value}),
        },
    ),
    DocumentType.CREDIT_NOTE: DocumentTable(
        document_type=DocumentType.CREDIT_NOTE,
        table="credit_notes",
        items_table="credit_note_items",
        parent_key="credit_note_id",
        number_field="credit_note_number",
        date_field="credit_note_date",
        label="Nota di credito",
        transitions={
            CreditNoteStatus.DRAFT.value: frozenset(
                {
                    CreditNoteStatus.SENT.value,
                    CreditNoteStatus.ISSUED.value,
                    CreditNoteStatus.CANCELLED.value,
                }
            ),
            CreditNoteStatus.SENT.value: frozenset(
                {CreditNoteStatus.ISSUED.value, CreditNoteStatus.CANCELLED.value}
            ),
            CreditNoteStatus.ISSUED.value: frozenset({CreditNoteStatus.CANCELLED.value}),
        },
    ),
    DocumentType.DELIVERY_NOTE: DocumentTable(
        document_type=DocumentType.DELIVERY_NOTE,
        table="delivery_notes",
        items_table="delivery_note_items",
        parent_key="delivery_note_id",
        number_field="delivery_note_number",
        date_field="delivery_date",
        label="Documento di trasporto",
        transitions={
            "draft": frozenset({"dispatched", "cancelled"}),
            "dispatched": frozenset({"delivered"}),
        },
    ),
}


def document_table(document_type: DocumentType) -> DocumentTable:
    """Restituisce la descrizione del tipo documento."""
    try:
        return DOCUMENT_TABLES[DocumentType(document_type)]
    except (KeyError, ValueError):
        raise NotFoundError(f"Tipo documento non gestito: {document_type}") from None


def ensure_company(row: Row, current_user: Optional[CurrentUser], label: str) -> None:
    """
    Verifica che il record appartenga all'azienda dell'utente.

    Un record di un'altra azienda viene trattato come inesistente.

    Raises:
        NotFoundError: Se le aziende non coincidono
    """
    if current_user is None or current_user.company_id is None:
        return
    if row.get("company_id") != current_user.company_id:
        raise NotFoundError(f"{label} {row.get('id')} non trovato")


async def load_document(
    db: Database,
    document_type: DocumentType,
    document_id: uuid.UUID,
    current_user: Optional[CurrentUser] = None,
    with_items: bool = True,
) -> tuple[Row, list[Row]]:
    """
    Carica un documento e le sue righe.

    Returns:
        Tupla (documento, righe ordinate per sort_order)

    Raises:
        NotFoundError: Se il documento non esiste o appartiene a un'altra azienda
        DatabaseOperationError: Se la lettura fallisce
    """
    spec = document_table(document_type)
    document = (await db.select_one(spec.table, document_id)).unwrap()
    if document is None:
        raise NotFoundError(f"{spec.label} {document_id} non trovato")
    ensure_company(document, current_user, spec.label)

    items: list[Row] = []
    if with_items:
        items = (
            await db.select(spec.items_table, {spec.parent_key: document_id}, order_by="sort_order")
        ).unwrap()
    return document, items


async def insert_document(
    db: Database,
    table: str,
    data: Mapping[str, Any],
) -> tuple[Row, list[PartialFailureWarning]]:
    """
    Inserisce la testata di un documento.

    Se l'inserimento fallisce per foreign key su `created_by` (utente
    senza profilo locale) viene ritentato una volta con created_by nullo.

    Returns:
        Tupla (documento inserito, avvisi)

    Raises:
        DatabaseOperationError: Se l'inserimento fallisce
    """
    warnings: list[PartialFailureWarning] = []
    result = await db.insert(table, data)
    if (
        not result.ok
        and result.error.is_foreign_key_on("created_by")
        and data.get("created_by") is not None
    ):
        logger.warning(
            "Utente %s non presente in users: inserimento %s ritentato senza created_by",
            data.get("created_by"),
            table,
        )
        warnings.append(
            PartialFailureWarning(
                step="created_by",
                message="Documento creato senza riferimento all'utente creatore",
                detail={"user_id": str(data.get("created_by"))},
            )
        )
        result = await db.insert(table, {**data, "created_by": None})
    return result.unwrap(), warnings


def append_status_note(current_notes: Optional[str], status: str, notes: Optional[str]) -> str:
    """Aggiunge alle note la riga "[<timestamp>] Status changed to <stato>: <note>"."""
    line = f"[{datetime.now().isoformat(timespec='seconds')}] Status changed to {status}"
    if notes:
        line = f"{line}: {notes}"
    return f"{current_notes}\n{line}" if current_notes else line
