"""
Router FastAPI per le Note di Credito
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid

from fastapi import APIRouter, Depends, Path, status

from app.core.deps import get_credit_note_service
from app.schemas.common import OperationResult
from app.schemas.credit_note import (
    CreditApplication,
    CreditNoteApply,
    CreditNoteEdit,
    CreditNoteResult,
    CreditNoteWrite,
)
from app.services.credit_note_service import CreditNoteService

router = APIRouter(
    prefix="/credit-notes",
    tags=["Note di Credito"],
)


@router.post(
    "/",
    name="nota_credito_crea",
    summary="Crea nota di credito",
    description="Crea una nota di credito; se movimenta il magazzino registra i resi (IN).",
    response_model=OperationResult[CreditNoteResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_credit_note(
    data: CreditNoteWrite,
    service: CreditNoteService = Depends(get_credit_note_service),
) -> OperationResult[CreditNoteResult]:
    return await service.create(data.credit_note, data.items)


@router.put(
    "/{credit_note_id}",
    name="nota_credito_modifica",
    summary="Modifica nota di credito",
    description="Sostituisce righe e totali, stornando e registrando di nuovo i movimenti di magazzino.",
    response_model=OperationResult[CreditNoteResult],
    status_code=status.HTTP_200_OK,
)
async def update_credit_note(
    data: CreditNoteEdit,
    credit_note_id: uuid.UUID = Path(..., description="UUID della nota di credito"),
    service: CreditNoteService = Depends(get_credit_note_service),
) -> OperationResult[CreditNoteResult]:
    return await service.update(credit_note_id, data.patch, data.items)


@router.delete(
    "/{credit_note_id}",
    name="nota_credito_elimina",
    summary="Elimina nota di credito",
    description=(
        "Elimina la nota annullandone gli effetti su magazzino e fatture. "
        "Richiede il permesso delete_credit_note."
    ),
    response_model=OperationResult[None],
    status_code=status.HTTP_200_OK,
)
async def delete_credit_note(
    credit_note_id: uuid.UUID = Path(..., description="UUID della nota di credito"),
    service: CreditNoteService = Depends(get_credit_note_service),
) -> OperationResult[None]:
    return await service.delete(credit_note_id)


@router.post(
    "/{credit_note_id}/apply",
    name="nota_credito_applica",
    summary="Applica credito a fattura",
    description="Riduce il saldo della fattura usando il credito residuo della nota.",
    response_model=OperationResult[CreditApplication],
    status_code=status.HTTP_200_OK,
)
async def apply_credit_note(
    data: CreditNoteApply,
    credit_note_id: uuid.UUID = Path(..., description="UUID della nota di credito"),
    service: CreditNoteService = Depends(get_credit_note_service),
) -> OperationResult[CreditApplication]:
    return await service.apply_to_invoice(credit_note_id, data.invoice_id, data.amount)
