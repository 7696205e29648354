"""
Modelli SQLAlchemy per il Magazzino
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- Product: Articolo di magazzino con giacenza in cache
- StockMovement: Registro append-only dei movimenti
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.models import Base
from app.models.mixins import CompanyScopedMixin, TimestampMixin, UUIDMixin


class Product(Base, UUIDMixin, TimestampMixin, CompanyScopedMixin):
    """
    Articolo di magazzino.

    `stock_quantity` è una proiezione dei movimenti: viene aggiornata
    dalla procedura `update_product_stock` dopo ogni movimento, ma la
    fonte di verità resta la tabella stock_movements.

    Attributes:
        sku: Codice articolo
        name: Descrizione breve
        unit_of_measure: Unità di misura
        unit_price: Prezzo di vendita
        cost_price: Prezzo di acquisto
        stock_quantity: Giacenza corrente (cache)
        reorder_level: Soglia di riordino
        status: active | inactive
    """

    __tablename__ = "products"

    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    unit_of_measure: Mapped[str] = mapped_column(String(50), nullable=False, default="pcs")

    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    cost_price: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    stock_quantity: Mapped[Decimal] = mapped_column(
        Numeric(10, 3), nullable=False, default=Decimal("0")
    )

    reorder_level: Mapped[Decimal] = mapped_column(
        Numeric(10, 3), nullable=False, default=Decimal("0")
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")

    __table_args__ = (
        Index("ix_products_company_sku", "company_id", "sku", unique=True),
        CheckConstraint("unit_price >= 0", name="ck_products_unit_price"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, sku={self.sku}, stock={self.stock_quantity})>"


class StockMovement(Base, UUIDMixin, TimestampMixin, CompanyScopedMixin):
    """
    Movimento di magazzino.

    I movimenti non vengono mai modificati né cancellati: uno storno è
    un nuovo movimento con tipo invertito e reference_type con suffisso
    `_REVERSAL`, sullo stesso reference_id dell'originale.

    Attributes:
        product_id: Articolo movimentato
        movement_type: IN | OUT
        quantity: Quantità (sempre positiva)
        reference_type: INVOICE, CREDIT_NOTE, DELIVERY_NOTE, RESTOCK, ..._REVERSAL
        reference_id: Documento di riferimento
        cost_per_unit: Costo unitario (opzionale)
        movement_date: Data del movimento
        notes: Note
        created_by: Utente che ha registrato il movimento
    """

    __tablename__ = "stock_movements"

    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    movement_type: Mapped[str] = mapped_column(String(10), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)

    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    cost_per_unit: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    movement_date: Mapped[datetime.date] = mapped_column(
        Date,
        nullable=False,
        server_default=func.current_date(),
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        CheckConstraint("movement_type IN ('IN', 'OUT')", name="ck_stock_movements_type"),
        CheckConstraint("quantity > 0", name="ck_stock_movements_quantity"),
    )

    def __repr__(self) -> str:
        return (
            f"StockMovement(product_id={self.product_id}, type={self.movement_type}, "
            f"quantity={self.quantity}, reference={self.reference_type}:{self.reference_id})"
        )
