"""
Schemas Pydantic per Documenti e Righe
Progetto: Business Manager (Gestionale Commerciale)

Contiene:
- LineItemInput: riga in ingresso (importi derivati calcolati dal servizio)
- LineAmounts / DocumentTotals: risultati del calcolatore
- ConversionOverrides / ConversionRequest / ConversionResult
- DocumentStatusUpdate
- InvoiceUpdate
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.schemas.common import DocumentType


# -------------------------------------------------------------------
# Righe
# -------------------------------------------------------------------

class LineItemInput(BaseModel):
    """
    Riga documento in ingresso.

    tax_amount e line_total non sono accettati: vengono sempre
    ricalcolati. Quantità e prezzo sono validati dal calcolatore.
    Lo sconto va espresso in UNA sola forma: importo fisso
    (discount_before_vat) oppure percentuale (discount_percentage).
    """

    model_config = ConfigDict(from_attributes=True)

    product_id: Optional[uuid.UUID] = Field(default=None, description="Prodotto di magazzino")
    description: str = Field(..., min_length=1, description="Descrizione della riga")
    quantity: Decimal = Field(..., description="Quantità (> 0)")
    unit_price: Decimal = Field(..., description="Prezzo unitario (>= 0)")
    discount_before_vat: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Sconto a importo fisso prima dell'IVA",
    )
    discount_percentage: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        le=100,
        description="Sconto percentuale prima dell'IVA",
    )
    tax_percentage: Decimal = Field(default=Decimal("0"), ge=0, description="Aliquota IVA")
    tax_inclusive: bool = Field(default=False, description="Prezzo comprensivo di IVA")
    source_item_id: Optional[uuid.UUID] = Field(
        default=None,
        description="Riga del documento di origine (note di credito da fattura)",
    )


class LineAmounts(BaseModel):
    """Importi calcolati per una riga."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    tax_amount: Decimal
    line_total: Decimal


class DocumentTotals(BaseModel):
    """Totali documento (somma delle righe)."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    total_amount: Decimal = Decimal("0.00")


# -------------------------------------------------------------------
# Conversione
# -------------------------------------------------------------------

class ConversionOverrides(BaseModel):
    """
    Modifiche applicate in fase di conversione (anteprima modificabile).

    I totali eventualmente forniti sono confrontati con quelli
    ricalcolati dalle righe: in caso di differenza prevalgono
    quelli ricalcolati.
    """

    items: Optional[list[LineItemInput]] = Field(default=None, description="Righe sostitutive")
    document_date: Optional[date] = None
    due_date: Optional[date] = None
    valid_until: Optional[date] = None
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    lpo_number: Optional[str] = None
    delivery_method: Optional[str] = None
    delivery_address: Optional[str] = None
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None


class ConversionRequest(BaseModel):
    """Richiesta di conversione documento."""

    source_type: DocumentType
    dest_type: DocumentType
    overrides: Optional[ConversionOverrides] = None


class ConversionResult(BaseModel):
    """Documento creato dalla conversione."""

    document_type: DocumentType
    document: dict[str, Any]
    items: list[dict[str, Any]] = Field(default_factory=list)
    stock_movements: list[dict[str, Any]] = Field(default_factory=list)
    source_status_updated: bool = False


# -------------------------------------------------------------------
# Stato e aggiornamenti
# -------------------------------------------------------------------

class DocumentStatusUpdate(BaseModel):
    """Cambio di stato manuale di un documento."""

    status: str = Field(..., min_length=1)
    notes: Optional[str] = Field(default=None, description="Motivazione, aggiunta alle note")


class InvoiceUpdate(BaseModel):
    """Campi modificabili di una fattura insieme alle righe."""

    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    lpo_number: Optional[str] = None
    items: list[LineItemInput] = Field(..., min_length=1)

    @model_validator(mode="after")
    def validate_dates(self) -> "InvoiceUpdate":
        if self.invoice_date and self.due_date and self.due_date < self.invoice_date:
            raise ValueError("La data di scadenza non può precedere la data fattura")
        return self


__all__ = [
    "LineItemInput",
    "LineAmounts",
    "DocumentTotals",
    "ConversionOverrides",
    "ConversionRequest",
    "ConversionResult",
    "DocumentStatusUpdate",
    "InvoiceUpdate",
]
