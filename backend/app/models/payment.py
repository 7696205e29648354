"""
Modelli SQLAlchemy per Incassi
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- Payment: Pagamento ricevuto dal cliente
- PaymentAllocation: Quota di pagamento allocata su una fattura
- Receipt / ReceiptItem: Ricevuta emessa per un pagamento
- CustomerCreditBalance: Credito cliente generato da eccedenze
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import CompanyScopedMixin, LineItemMixin, TimestampMixin, UUIDMixin


class Payment(Base, UUIDMixin, TimestampMixin, CompanyScopedMixin):
    """
    Pagamento ricevuto.

    Una volta creato è immutabile, salvo correzioni dell'importo che
    ricalcolano il saldo delle fatture coinvolte. Può esistere senza
    allocazioni in attesa di riconciliazione manuale.

    Attributes:
        customer_id: Cliente che ha pagato
        invoice_id: Fattura di riferimento principale (opzionale)
        payment_number: Numero progressivo (PAY-YYYY-NNNN)
        payment_date: Data pagamento
        payment_method: cash, bank_transfer, mobile_money, card, cheque, other
        amount: Importo (> 0)
        reference_number: Riferimento esterno (CRO, numero assegno, ...)
    """

    __tablename__ = "payments"

    customer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    payment_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    payment_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    reference_number: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, amount={self.amount}, method={self.payment_method})>"


class PaymentAllocation(Base, UUIDMixin, TimestampMixin):
    """
    Allocazione di una quota di pagamento su una fattura.

    L'insieme delle allocazioni di una fattura è la fonte di verità
    per il suo paid_amount.
    """

    __tablename__ = "payment_allocations"

    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
    )

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    __table_args__ = (
        Index("idx_payment_invoice_unique", "payment_id", "invoice_id", unique=True),
        Index("idx_allocation_invoice", "invoice_id"),
        CheckConstraint("amount > 0", name="check_allocation_amount_positive"),
    )

    def __repr__(self) -> str:
        return f"<PaymentAllocation(payment={self.payment_id}, invoice={self.invoice_id}, amount={self.amount})>"


class Receipt(Base, UUIDMixin, TimestampMixin, CompanyScopedMixin):
    """
    Ricevuta di pagamento.

    Attributes:
        payment_id: Pagamento ricevuto
        invoice_id: Fattura saldata (generata automaticamente per le ricevute dirette)
        receipt_number: Numero progressivo (REC-YYYY-NNNN)
        receipt_type: direct_receipt | payment_against_invoice
        total_amount: Importo incassato
        excess_amount: Eccedenza rispetto al totale fattura (>= 0)
        excess_handling: pending | credit_balance | change_note
        change_note_id: Nota di credito emessa per l'eccedenza
    """

    __tablename__ = "receipts"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    receipt_number: Mapped[str] = mapped_column(String(50), nullable=False)

    receipt_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    receipt_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="payment_against_invoice"
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    excess_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    excess_handling: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")

    change_note_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("credit_notes.id", ondelete="SET NULL", use_alter=True),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="finalized")

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_receipts_company_number", "company_id", "receipt_number", unique=True),
        CheckConstraint("excess_amount >= 0", name="ck_receipts_excess_amount"),
        CheckConstraint(
            "excess_handling IN ('pending', 'credit_balance', 'change_note')",
            name="ck_receipts_excess_handling",
        ),
    )


class ReceiptItem(Base, UUIDMixin, TimestampMixin, LineItemMixin):
    """Riga di ricevuta: copia delle righe della fattura generata."""

    __tablename__ = "receipt_items"

    receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("receipts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class CustomerCreditBalance(Base, UUIDMixin, TimestampMixin, CompanyScopedMixin):
    """
    Credito del cliente generato da un pagamento eccedente.

    Stati: available | applied | expired.
    """

    __tablename__ = "customer_credit_balances"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    credit_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    source_receipt_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("receipts.id", ondelete="CASCADE"),
        nullable=False,
    )

    source_payment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("payments.id", ondelete="SET NULL"),
        nullable=True,
    )

    applied_invoice_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="SET NULL"),
        nullable=True,
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="available")

    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_credit_balances_company_receipt", "company_id", "source_receipt_id", unique=True),
        CheckConstraint("credit_amount > 0", name="ck_credit_balances_amount"),
    )
