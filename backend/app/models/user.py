"""
Modelli SQLAlchemy per Azienda e Utente
Progetto: Business Manager (Gestionale Commerciale)

L'autenticazione è esterna: la tabella users contiene solo il profilo
degli utenti già autenticati, usato per `created_by` e per l'audit.
"""

from __future__ import annotations

import uuid
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.mixins import TimestampMixin, UUIDMixin


class UserRole(str, Enum):
    """Ruoli utente nel sistema."""
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ACCOUNTANT = "accountant"
    STOCK_MANAGER = "stock_manager"
    USER = "user"


class Company(Base, UUIDMixin, TimestampMixin):
    """
    Azienda (tenant).

    Attributes:
        name: Ragione sociale
        currency: Valuta dei documenti (ISO 4217)
    """

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name={self.name})>"


class User(Base, UUIDMixin, TimestampMixin):
    """
    Profilo di un utente autenticato.

    Attributes:
        email: Email univoca dell'utente
        full_name: Nome completo
        role: Ruolo (admin, accountant, ...)
        company_id: Azienda di appartenenza
        is_active: Indica se l'utente è attivo
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        doc="Email univoca dell'utente",
    )

    full_name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UserRole.USER.value,
    )

    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_users_email", "email"),
        Index("ix_users_company_id", "company_id"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
