"""
Schemas Pydantic per il Magazzino
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.common import MovementType


class StockMovementCreate(BaseModel):
    """Registrazione manuale di un movimento (es. carico RESTOCK)."""

    product_id: uuid.UUID
    movement_type: MovementType
    quantity: Decimal = Field(..., description="Quantità (> 0)")
    reference_type: str = Field(..., min_length=1, max_length=50)
    reference_id: uuid.UUID
    notes: Optional[str] = None


class StockReversalRequest(BaseModel):
    """Storno di tutti i movimenti di un documento."""

    reference_type: str = Field(..., min_length=1, max_length=50)
    reference_id: uuid.UUID


__all__ = [
    "StockMovementCreate",
    "StockReversalRequest",
]
