"""
Modelli SQLAlchemy per le Note di Credito
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- CreditNote: Nota di credito
- CreditNoteItem: Righe della nota di credito
- CreditNoteAllocation: Quota di credito applicata a una fattura
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import List

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models import Base
from app.models.mixins import DocumentMixin, LineItemMixin, TimestampMixin, UUIDMixin


class CreditNote(Base, UUIDMixin, TimestampMixin, DocumentMixin):
    """
    Nota di credito.

    Invariante: balance == total_amount - applied_amount.
    Se `affects_inventory` è True, le righe con prodotto generano
    movimenti IN (reso a magazzino).

    Stati: draft, sent, issued, applied, cancelled.

    Attributes:
        invoice_id: Fattura di riferimento (opzionale)
        receipt_id: Ricevuta che ha generato la nota (eccedenze)
        credit_note_number: Numero progressivo (CN-YYYY-NNNN)
        credit_note_date: Data emissione
        reason: Motivazione
        affects_inventory: Se True, le righe movimentano il magazzino
        applied_amount: Credito già applicato a fatture
        balance: Credito residuo
    """

    __tablename__ = "credit_notes"

    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    receipt_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("receipts.id", ondelete="SET NULL"),
        nullable=True,
    )

    credit_note_number: Mapped[str] = mapped_column(String(50), nullable=False)

    credit_note_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    affects_inventory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    applied_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    balance: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    items: Mapped[List["CreditNoteItem"]] = relationship(
        "CreditNoteItem",
        cascade="all, delete-orphan",
        order_by="CreditNoteItem.sort_order",
    )

    allocations: Mapped[List["CreditNoteAllocation"]] = relationship(
        "CreditNoteAllocation",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_credit_notes_company_number", "company_id", "credit_note_number", unique=True),
        CheckConstraint("applied_amount >= 0", name="ck_credit_notes_applied_amount"),
    )

    def __repr__(self) -> str:
        return f"<CreditNote(number={self.credit_note_number}, total={self.total_amount}, status={self.status})>"


class CreditNoteItem(Base, UUIDMixin, TimestampMixin, LineItemMixin):
    """Riga di nota di credito."""

    __tablename__ = "credit_note_items"

    credit_note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credit_notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class CreditNoteAllocation(Base, UUIDMixin, TimestampMixin):
    """
    Applicazione di una nota di credito a una fattura.

    L'importo allocato riduce il balance_due della fattura; alla
    cancellazione della nota viene restituito alla fattura.
    """

    __tablename__ = "credit_note_allocations"

    credit_note_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("credit_notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    allocation_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("allocated_amount > 0", name="ck_credit_note_allocations_amount"),
    )
