"""
Schemas Pydantic per Pagamenti, Ricevute ed Eccedenze
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.common import ExcessHandling, PaymentMethod
from app.schemas.document import LineItemInput


# -------------------------------------------------------------------
# Pagamenti
# -------------------------------------------------------------------

class PaymentCreate(BaseModel):
    """Registrazione di un pagamento su una fattura."""

    invoice_id: uuid.UUID = Field(..., description="Fattura da saldare")
    amount: Decimal = Field(..., gt=0, description="Importo del pagamento")
    payment_method: PaymentMethod = Field(..., description="Metodo di pagamento")
    payment_date: date = Field(..., description="Data del pagamento")
    reference_number: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class PaymentUpdate(BaseModel):
    """Correzione di un pagamento esistente."""

    amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_method: Optional[PaymentMethod] = None
    payment_date: Optional[date] = None
    reference_number: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = None


class PaymentResult(BaseModel):
    """
    Pagamento registrato o modificato.

    `allocation` è None se l'allocazione non è stata scritta
    (vedi gli avvisi dell'OperationResult).
    """

    payment: dict[str, Any]
    allocation: Optional[dict[str, Any]] = None
    invoices: list[dict[str, Any]] = Field(default_factory=list)


class InvoiceBalance(BaseModel):
    """Saldo fattura ricalcolato dalle allocazioni."""

    paid_amount: Decimal
    balance_due: Decimal
    status: str


class ReconciliationReport(BaseModel):
    """
    Confronto tra valori salvati e valori ricalcolati di una fattura.

    Attributes:
        stored: Valori presenti sul record
        computed: Valori ricalcolati da righe e allocazioni
        mismatches: Campi che differiscono oltre la tolleranza
        fixed: True se i valori ricalcolati sono stati scritti
    """

    invoice_id: uuid.UUID
    stored: dict[str, Any]
    computed: dict[str, Any]
    mismatches: list[str] = Field(default_factory=list)
    fixed: bool = False

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches


# -------------------------------------------------------------------
# Ricevute
# -------------------------------------------------------------------

class DirectReceiptCreate(BaseModel):
    """
    Ricevuta diretta: genera fattura, pagamento, allocazione e ricevuta
    in un'unica transazione.

    Senza righe, la fattura viene generata con un'unica riga di importo
    `invoice_amount` (default: l'importo pagato).
    """

    customer_id: uuid.UUID
    payment_amount: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    payment_date: date
    reference_number: Optional[str] = Field(default=None, max_length=255)
    items: Optional[list[LineItemInput]] = None
    invoice_amount: Optional[Decimal] = Field(default=None, gt=0)
    description: str = Field(default="Vendita diretta", min_length=1)
    notes: Optional[str] = None


class DirectReceiptResult(BaseModel):
    """Entità create da una ricevuta diretta."""

    receipt: dict[str, Any]
    invoice: dict[str, Any]
    payment: dict[str, Any]
    allocation: dict[str, Any]
    invoice_items: list[dict[str, Any]] = Field(default_factory=list)
    receipt_items: list[dict[str, Any]] = Field(default_factory=list)
    excess_amount: Decimal = Decimal("0.00")


# -------------------------------------------------------------------
# Eccedenze
# -------------------------------------------------------------------

class ExcessHandlingRequest(BaseModel):
    """Destinazione dell'eccedenza di una ricevuta."""

    receipt_id: uuid.UUID
    invoice_id: uuid.UUID
    customer_id: uuid.UUID
    excess_amount: Decimal
    handling: ExcessHandling


class ExcessResult(BaseModel):
    """
    Esito della gestione eccedenza.

    `handling` vale "none" quando l'eccedenza non è positiva.
    """

    handling: str
    credit_balance: Optional[dict[str, Any]] = None
    credit_note: Optional[dict[str, Any]] = None


class CustomerCreditSummary(BaseModel):
    """Crediti disponibili di un cliente."""

    customer_id: uuid.UUID
    available_total: Decimal
    balances: list[dict[str, Any]] = Field(default_factory=list)


__all__ = [
    "PaymentCreate",
    "PaymentUpdate",
    "PaymentResult",
    "InvoiceBalance",
    "ReconciliationReport",
    "DirectReceiptCreate",
    "DirectReceiptResult",
    "ExcessHandlingRequest",
    "ExcessResult",
    "CustomerCreditSummary",
]
