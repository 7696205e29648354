"""
Schemas Pydantic per le Note di Credito
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.common import CreditNoteStatus
from app.schemas.document import DocumentTotals, LineItemInput


class CreditNoteCreate(BaseModel):
    """Testata di una nuova nota di credito."""

    customer_id: uuid.UUID
    company_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Azienda (default: quella dell'utente corrente)",
    )
    invoice_id: Optional[uuid.UUID] = None
    receipt_id: Optional[uuid.UUID] = None
    credit_note_date: Optional[date] = None
    status: CreditNoteStatus = CreditNoteStatus.DRAFT
    reason: Optional[str] = None
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    affects_inventory: bool = False


class CreditNoteUpdate(BaseModel):
    """Modifica parziale della testata di una nota di credito."""

    credit_note_date: Optional[date] = None
    status: Optional[CreditNoteStatus] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    affects_inventory: Optional[bool] = None


class CreditNoteWrite(BaseModel):
    """Corpo delle richieste di creazione/modifica: testata + righe."""

    credit_note: CreditNoteCreate
    items: list[LineItemInput] = Field(default_factory=list)


class CreditNoteEdit(BaseModel):
    """Corpo della richiesta di modifica."""

    patch: CreditNoteUpdate = Field(default_factory=CreditNoteUpdate)
    items: list[LineItemInput] = Field(default_factory=list)


class CreditItemSelection(BaseModel):
    """Riga di fattura da stornare, con quantità opzionale (storno parziale)."""

    invoice_item_id: uuid.UUID
    quantity: Optional[Decimal] = Field(default=None, gt=0)


class CreditNotePlan(BaseModel):
    """
    Bozza di nota di credito calcolata da una fattura.

    Non è persistita: va passata a CreditNoteService.create.
    """

    credit_note: CreditNoteCreate
    items: list[LineItemInput]
    totals: DocumentTotals


class CreditNoteResult(BaseModel):
    """Nota di credito scritta, con righe e movimenti di magazzino."""

    credit_note: dict[str, Any]
    items: list[dict[str, Any]] = Field(default_factory=list)
    stock_movements: list[dict[str, Any]] = Field(default_factory=list)


class CreditApplication(BaseModel):
    """Esito dell'applicazione di una nota di credito a una fattura."""

    allocation: dict[str, Any]
    credit_note: dict[str, Any]
    invoice: dict[str, Any]


class CreditNoteApply(BaseModel):
    """Applicazione di credito a una fattura."""

    invoice_id: uuid.UUID
    amount: Decimal = Field(..., gt=0)


__all__ = [
    "CreditNoteCreate",
    "CreditNoteUpdate",
    "CreditNoteWrite",
    "CreditNoteEdit",
    "CreditItemSelection",
    "CreditNotePlan",
    "CreditNoteResult",
    "CreditApplication",
    "CreditNoteApply",
]
