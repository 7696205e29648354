"""
Modelli Database SQLAlchemy
Progetto: Business Manager (Gestionale Commerciale)

Import centralizzato di tutti i modelli: i servizi lavorano sulle
tabelle di Base.metadata tramite app.core.database.SqlAlchemyDatabase.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class per tutti i modelli SQLAlchemy."""
    pass


# Import modelli implementati
from app.models.user import Company, User
from app.models.customer import Customer
from app.models.inventory import Product, StockMovement
from app.models.document import (
    DeliveryNote,
    DeliveryNoteItem,
    Invoice,
    InvoiceItem,
    ProformaInvoice,
    ProformaItem,
    Quotation,
    QuotationItem,
)
from app.models.payment import (
    CustomerCreditBalance,
    Payment,
    PaymentAllocation,
    Receipt,
    ReceiptItem,
)
from app.models.credit_note import CreditNote, CreditNoteAllocation, CreditNoteItem
from app.models.audit import AuditLog, DocumentSequence

__all__ = [
    "Base",
    "Company",
    "User",
    "Customer",
    "Product",
    "StockMovement",
    "Quotation",
    "QuotationItem",
    "ProformaInvoice",
    "ProformaItem",
    "Invoice",
    "InvoiceItem",
    "DeliveryNote",
    "DeliveryNoteItem",
    "Payment",
    "PaymentAllocation",
    "Receipt",
    "ReceiptItem",
    "CustomerCreditBalance",
    "CreditNote",
    "CreditNoteItem",
    "CreditNoteAllocation",
    "AuditLog",
    "DocumentSequence",
]
