"""
Modello SQLAlchemy per l'anagrafica clienti
Progetto: Business Manager (Gestionale Commerciale)
"""

from __future__ import annotations

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import CompanyScopedMixin, SoftDeleteMixin, TimestampMixin, UUIDMixin


class Customer(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin, CompanyScopedMixin):
    """
    Cliente di un'azienda.

    Attributes:
        customer_code: Codice cliente interno
        name: Nome o ragione sociale
        email: Email
        phone: Telefono
        address: Indirizzo
        tax_id: Partita IVA / codice fiscale
    """

    __tablename__ = "customers"

    customer_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    address: Mapped[str | None] = mapped_column(Text, nullable=True)

    tax_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    __table_args__ = (
        Index("ix_customers_company_code", "company_id", "customer_code", unique=True),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, name={self.name})>"
