"""
Schemas Pydantic comuni
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- Enums: DocumentType, stati per tipo documento, MovementType, ExcessHandling
- PartialFailureWarning: avviso per passi best-effort falliti
- OperationResult: risultato principale + avvisi
"""

from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# -------------------------------------------------------------------
# Enum
# -------------------------------------------------------------------

class DocumentType(str, Enum):
    """Tipi di documento gestiti dal motore di conversione."""
    QUOTATION = "quotation"
    PROFORMA = "proforma"
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"
    DELIVERY_NOTE = "delivery_note"
    RECEIPT = "receipt"
    PAYMENT = "payment"


class QuotationStatus(str, Enum):
    """Stati del preventivo."""
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CONVERTING = "converting"
    CONVERTED = "converted"


class ProformaStatus(str, Enum):
    """Stati della proforma."""
    DRAFT = "draft"
    SENT = "sent"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CONVERTING = "converting"
    CONVERTED = "converted"


class InvoiceStatus(str, Enum):
    """Stati della fattura (derivati dai pagamenti, salvo draft/sent/cancelled)."""
    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    CANCELLED = "cancelled"


class CreditNoteStatus(str, Enum):
    """Stati della nota di credito."""
    DRAFT = "draft"
    SENT = "sent"
    ISSUED = "issued"
    APPLIED = "applied"
    CANCELLED = "cancelled"


class MovementType(str, Enum):
    """Direzione del movimento di magazzino."""
    IN = "IN"
    OUT = "OUT"

    def inverted(self) -> "MovementType":
        return MovementType.OUT if self is MovementType.IN else MovementType.IN


class ReferenceType(str, Enum):
    """Documenti che generano movimenti di magazzino."""
    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    DELIVERY_NOTE = "DELIVERY_NOTE"
    RESTOCK = "RESTOCK"
    ADJUSTMENT = "ADJUSTMENT"


class ExcessHandling(str, Enum):
    """Destinazione dell'eccedenza di un pagamento."""
    PENDING = "pending"
    CREDIT_BALANCE = "credit_balance"
    CHANGE_NOTE = "change_note"


class PaymentMethod(str, Enum):
    """Metodi di pagamento supportati."""
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CARD = "card"
    CHEQUE = "cheque"
    OTHER = "other"


# -------------------------------------------------------------------
# Risultati
# -------------------------------------------------------------------

class PartialFailureWarning(BaseModel):
    """
    Avviso restituito insieme a un risultato riuscito.

    Segnala un passo best-effort fallito (movimenti di magazzino,
    aggiornamento stato sorgente, audit, ...) senza annullare
    l'entità principale.

    Attributes:
        step: Nome del passo fallito (es. "stock_movements")
        message: Messaggio leggibile
        detail: Dati aggiuntivi (tipo errore, id coinvolti)
    """

    step: str = Field(..., description="Passo best-effort fallito")
    message: str = Field(..., description="Descrizione dell'avviso")
    detail: Optional[dict[str, Any]] = Field(default=None, description="Dettagli aggiuntivi")


class OperationResult(BaseModel, Generic[T]):
    """Risultato di un'operazione con eventuali avvisi di fallimento parziale."""

    data: T
    warnings: list[PartialFailureWarning] = Field(default_factory=list)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


__all__ = [
    "DocumentType",
    "QuotationStatus",
    "ProformaStatus",
    "InvoiceStatus",
    "CreditNoteStatus",
    "MovementType",
    "ReferenceType",
    "ExcessHandling",
    "PaymentMethod",
    "PartialFailureWarning",
    "OperationResult",
]
