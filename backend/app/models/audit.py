"""
Modelli SQLAlchemy per Audit e Numerazione
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- AuditLog: Registro delle operazioni irreversibili
- DocumentSequence: Progressivi documento per azienda/tipo/anno
"""

from __future__ import annotations

import datetime
import uuid
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.models import Base
from app.models.mixins import UUIDMixin


class AuditLog(Base, UUIDMixin):
    """
    Voce di audit.

    Attributes:
        company_id: Azienda coinvolta
        actor_user_id: Utente che ha eseguito l'azione
        action: Azione (es. DELETE)
        entity_type: Tipo entità (es. credit_note)
        record_id: ID del record
        details: Snapshot JSON del record al momento dell'azione
    """

    __tablename__ = "audit_logs"

    company_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="SET NULL"),
        nullable=True,
    )

    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)

    record_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_audit_logs_company_id", "company_id"),
        Index("ix_audit_logs_entity", "entity_type", "record_id"),
    )


class DocumentSequence(Base):
    """
    Progressivo documento.

    Una riga per (azienda, tipo documento, anno). L'incremento avviene
    solo tramite la procedura `next_document_number` (upsert atomico).
    """

    __tablename__ = "document_sequences"

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("companies.id", ondelete="CASCADE"),
        primary_key=True,
    )

    document_type: Mapped[str] = mapped_column(String(10), primary_key=True)

    year: Mapped[int] = mapped_column(Integer, primary_key=True)

    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
