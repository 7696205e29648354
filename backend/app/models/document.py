"""
Modelli SQLAlchemy per i Documenti commerciali
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- Quotation / QuotationItem: Preventivi
- ProformaInvoice / ProformaItem: Fatture proforma
- Invoice / InvoiceItem: Fatture
- DeliveryNote / DeliveryNoteItem: Documenti di trasporto (DDT)

Le note di credito sono in app.models.credit_note.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import List

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Numeric, String, Text, Uuid, Integer
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import (
    CompanyScopedMixin,
    DocumentMixin,
    LineItemMixin,
    TimestampMixin,
    UUIDMixin,
)


# ------------------------------------------------------------
# Preventivi
# ------------------------------------------------------------

class Quotation(Base, UUIDMixin, TimestampMixin, DocumentMixin):
    """
    Preventivo.

    Stati: draft → sent → {accepted, rejected, expired}; accepted → converted.
    Un preventivo convertito non può essere convertito di nuovo.
    """

    __tablename__ = "quotations"

    quotation_number: Mapped[str] = mapped_column(String(50), nullable=False)

    quotation_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    valid_until: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)

    items: Mapped[List["QuotationItem"]] = relationship(
        "QuotationItem",
        cascade="all, delete-orphan",
        order_by="QuotationItem.sort_order",
    )

    __table_args__ = (
        Index("ix_quotations_company_number", "company_id", "quotation_number", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Quotation(number={self.quotation_number}, status={self.status})>"


class QuotationItem(Base, UUIDMixin, LineItemMixin):
    """Riga di preventivo."""

    __tablename__ = "quotation_items"

    quotation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("quotations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


# ------------------------------------------------------------
# Proforma
# ------------------------------------------------------------

class ProformaInvoice(Base, UUIDMixin, TimestampMixin, DocumentMixin):
    """
    Fattura proforma.

    Stati: draft → sent → {accepted, expired, converted}.
    """

    __tablename__ = "proforma_invoices"

    proforma_number: Mapped[str] = mapped_column(String(50), nullable=False)

    proforma_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    valid_until: Mapped[datetime.date | None] = mapped_column(Date, nullable=True)

    items: Mapped[List["ProformaItem"]] = relationship(
        "ProformaItem",
        cascade="all, delete-orphan",
        order_by="ProformaItem.sort_order",
    )

    __table_args__ = (
        Index("ix_proforma_company_number", "company_id", "proforma_number", unique=True),
    )

    def __repr__(self) -> str:
        return f"<ProformaInvoice(number={self.proforma_number}, status={self.status})>"


class ProformaItem(Base, UUIDMixin, LineItemMixin):
    """Riga di proforma."""

    __tablename__ = "proforma_items"

    proforma_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("proforma_invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


# ------------------------------------------------------------
# Fatture
# ------------------------------------------------------------

class Invoice(Base, UUIDMixin, TimestampMixin, DocumentMixin):
    """
    Fattura.

    Lo stato è derivato dai pagamenti: paid_amount è la somma delle
    allocazioni, balance_due = max(0, total_amount - paid_amount).
    Stati: draft, sent, partial, paid, cancelled.

    Attributes:
        invoice_number: Numero progressivo (INV-YYYY-NNNN)
        invoice_date: Data emissione
        due_date: Data scadenza
        paid_amount: Totale pagato (somma allocazioni)
        balance_due: Residuo da pagare
        lpo_number: Riferimento ordine d'acquisto del cliente
    """

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)

    invoice_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    due_date: Mapped[datetime.date | None] = mapped_column(Date, nullable=True, index=True)

    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    lpo_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    items: Mapped[List["InvoiceItem"]] = relationship(
        "InvoiceItem",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.sort_order",
    )

    __table_args__ = (
        Index("ix_invoices_company_number", "company_id", "invoice_number", unique=True),
        CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_amount"),
        CheckConstraint("balance_due >= 0", name="ck_invoices_balance_due"),
    )

    def __repr__(self) -> str:
        return f"<Invoice(number={self.invoice_number}, total={self.total_amount}, status={self.status})>"


class InvoiceItem(Base, UUIDMixin, LineItemMixin):
    """Riga di fattura."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


# ------------------------------------------------------------
# Documenti di trasporto
# ------------------------------------------------------------

class DeliveryNote(Base, UUIDMixin, TimestampMixin, CompanyScopedMixin):
    """
    Documento di trasporto.

    Sempre collegato a una fattura dello stesso cliente: ogni articolo
    consegnato deve comparire in fattura con quantità non inferiore.
    """

    __tablename__ = "delivery_notes"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    delivery_note_number: Mapped[str] = mapped_column(String(50), nullable=False)

    delivery_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    delivery_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    source_document_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    source_document_type: Mapped[str | None] = mapped_column(String(30), nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    items: Mapped[List["DeliveryNoteItem"]] = relationship(
        "DeliveryNoteItem",
        cascade="all, delete-orphan",
        order_by="DeliveryNoteItem.sort_order",
    )

    __table_args__ = (
        Index("ix_delivery_notes_company_number", "company_id", "delivery_note_number", unique=True),
    )


class DeliveryNoteItem(Base, UUIDMixin):
    """Riga di documento di trasporto (solo quantità, nessun importo fiscale)."""

    __tablename__ = "delivery_note_items"

    delivery_note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("delivery_notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
    )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    quantity_ordered: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)

    quantity_delivered: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)

    unit_of_measure: Mapped[str] = mapped_column(String(50), nullable=False, default="pcs")

    unit_price: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
