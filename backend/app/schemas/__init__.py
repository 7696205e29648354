"""
Schemas Pydantic per il progetto Business Manager

Questo modulo contiene tutti gli schemi Pydantic utilizzati per la validazione
e serializzazione di richieste e risposte API.
"""

from app.schemas.common import (
    CreditNoteStatus,
    DocumentType,
    ExcessHandling,
    InvoiceStatus,
    MovementType,
    OperationResult,
    PartialFailureWarning,
    PaymentMethod,
    ProformaStatus,
    QuotationStatus,
    ReferenceType,
)
from app.schemas.document import (
    ConversionOverrides,
    ConversionRequest,
    ConversionResult,
    DocumentStatusUpdate,
    DocumentTotals,
    InvoiceUpdate,
    LineAmounts,
    LineItemInput,
)
from app.schemas.payment import (
    CustomerCreditSummary,
    DirectReceiptCreate,
    DirectReceiptResult,
    ExcessHandlingRequest,
    ExcessResult,
    InvoiceBalance,
    PaymentCreate,
    PaymentResult,
    PaymentUpdate,
    ReconciliationReport,
)
from app.schemas.credit_note import (
    CreditApplication,
    CreditItemSelection,
    CreditNoteApply,
    CreditNoteCreate,
    CreditNoteEdit,
    CreditNotePlan,
    CreditNoteResult,
    CreditNoteUpdate,
    CreditNoteWrite,
)
from app.schemas.inventory import StockMovementCreate, StockReversalRequest
from app.schemas.token import CurrentUser, TokenPayload

__all__ = [
    "CreditNoteStatus",
    "DocumentType",
    "ExcessHandling",
    "InvoiceStatus",
    "MovementType",
    "OperationResult",
    "PartialFailureWarning",
    "PaymentMethod",
    "ProformaStatus",
    "QuotationStatus",
    "ReferenceType",
    "ConversionOverrides",
    "ConversionRequest",
    "ConversionResult",
    "DocumentStatusUpdate",
    "DocumentTotals",
    "InvoiceUpdate",
    "LineAmounts",
    "LineItemInput",
    "CustomerCreditSummary",
    "DirectReceiptCreate",
    "DirectReceiptResult",
    "ExcessHandlingRequest",
    "ExcessResult",
    "InvoiceBalance",
    "PaymentCreate",
    "PaymentResult",
    "PaymentUpdate",
    "ReconciliationReport",
    "CreditApplication",
    "CreditItemSelection",
    "CreditNoteApply",
    "CreditNoteCreate",
    "CreditNoteEdit",
    "CreditNotePlan",
    "CreditNoteResult",
    "CreditNoteUpdate",
    "CreditNoteWrite",
    "StockMovementCreate",
    "StockReversalRequest",
    "CurrentUser",
    "TokenPayload",
]
