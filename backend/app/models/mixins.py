"""
Mixin SQLAlchemy per modelli
Progetto: Business Manager (Gestionale Commerciale)

Mixin riutilizzabili per aggiungere funzionalità comuni ai modelli:
identificativo, timestamp, appartenenza all'azienda, campi comuni a
tutti i documenti e alle loro righe.
"""

import datetime
import uuid
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.sql import func


class SoftDeleteMixin:
    """
    Mixin per implementare la cancellazione logica (soft delete).

    Aggiunge il campo is_active che, se impostato a False,
    indica che il record è stato "eliminato" ma non rimosso fisicamente.
    """

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        doc="Flag per soft delete: False = eliminato, True = attivo",
    )


class TimestampMixin:
    """
    Mixin per gestione automatica timestamp creazione e aggiornamento.

    I servizi scrivono tramite SQLAlchemy Core, quindi l'aggiornamento
    di updated_at è affidato a `onupdate` e non a eventi di sessione.
    """

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        doc="Data/ora di creazione del record",
    )

    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
        doc="Data/ora ultimo aggiornamento del record",
    )


class UUIDMixin:
    """Mixin per ID UUID come primary key."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        doc="UUID primary key",
    )


class CompanyScopedMixin:
    """
    Mixin per i record di proprietà di un'azienda (multi-tenant).

    Nessuna operazione può coinvolgere record di aziende diverse.
    """

    @declared_attr
    def company_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid,
            ForeignKey("companies.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
            doc="UUID dell'azienda proprietaria",
        )


class DocumentMixin(CompanyScopedMixin):
    """
    Campi comuni ai documenti commerciali.

    Ogni tabella documento definisce in proprio numero e data
    (es. invoice_number / invoice_date).
    """

    @declared_attr
    def customer_id(cls) -> Mapped[uuid.UUID]:
        return mapped_column(
            Uuid,
            ForeignKey("customers.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
            doc="UUID del cliente",
        )

    @declared_attr
    def created_by(cls) -> Mapped[uuid.UUID | None]:
        return mapped_column(
            Uuid,
            ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
            doc="Utente che ha creato il documento",
        )

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default="draft",
        index=True,
        doc="Stato del documento (valori specifici per tipo)",
    )

    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Somma degli imponibili di riga",
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Somma delle imposte di riga",
    )

    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Totale documento (subtotal + tax_amount)",
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    terms_and_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)

    source_document_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        doc="Documento di origine (conversione)",
    )

    source_document_type: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
        doc="Tipo del documento di origine (quotation, proforma, invoice)",
    )


class LineItemMixin:
    """
    Campi comuni alle righe documento.

    tax_amount e line_total sono sempre ricalcolati da
    app.services.tax_calculator, mai inseriti a mano.
    """

    @declared_attr
    def product_id(cls) -> Mapped[uuid.UUID | None]:
        return mapped_column(
            Uuid,
            ForeignKey("products.id", ondelete="SET NULL"),
            nullable=True,
            index=True,
            doc="Prodotto di magazzino (opzionale)",
        )

    description: Mapped[str] = mapped_column(Text, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    discount_before_vat: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Sconto a importo fisso prima dell'IVA",
    )

    discount_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
        doc="Sconto percentuale prima dell'IVA",
    )

    tax_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    tax_inclusive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    line_total: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

