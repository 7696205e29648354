"""
Router FastAPI per la Fatturazione
Progetto: Business Manager (Gestionale Commerciale)

Modifica righe, annullamento, eliminazione, riconciliazione del saldo e
preparazione delle note di credito da fattura.
"""

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from app.core.deps import get_credit_note_service, get_invoice_service, get_payment_service
from app.schemas.common import OperationResult
from app.schemas.credit_note import CreditItemSelection, CreditNotePlan
from app.schemas.document import ConversionResult, InvoiceUpdate
from app.schemas.payment import ReconciliationReport
from app.services.credit_note_service import CreditNoteService
from app.services.invoice_service import InvoiceService
from app.services.payment_service import PaymentService

router = APIRouter(
    prefix="/invoices",
    tags=["Fatturazione"],
)


@router.put(
    "/{invoice_id}",
    name="fattura_modifica",
    summary="Modifica fattura e righe",
    description="Sostituisce le righe della fattura e ricalcola totali, saldo e movimenti di magazzino.",
    response_model=OperationResult[ConversionResult],
    status_code=status.HTTP_200_OK,
)
async def update_invoice(
    data: InvoiceUpdate,
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    service: InvoiceService = Depends(get_invoice_service),
) -> OperationResult[ConversionResult]:
    return await service.update_with_items(invoice_id, data)


@router.post(
    "/{invoice_id}/cancel",
    name="fattura_annulla",
    summary="Annulla fattura",
    description="Annulla una fattura senza pagamenti registrati.",
    response_model=OperationResult[dict[str, Any]],
    status_code=status.HTTP_200_OK,
)
async def cancel_invoice(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    notes: Optional[str] = Query(None, description="Motivazione dell'annullamento"),
    service: InvoiceService = Depends(get_invoice_service),
) -> OperationResult[dict[str, Any]]:
    return await service.cancel(invoice_id, notes)


@router.delete(
    "/{invoice_id}",
    name="fattura_elimina",
    summary="Elimina fattura",
    description=(
        "Elimina la fattura con righe, allocazioni e pagamenti, stornando i movimenti di magazzino. "
        "Richiede il permesso delete_invoice."
    ),
    response_model=OperationResult[None],
    status_code=status.HTTP_200_OK,
)
async def delete_invoice(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    service: InvoiceService = Depends(get_invoice_service),
) -> OperationResult[None]:
    return await service.delete(invoice_id)


@router.get(
    "/{invoice_id}/reconciliation",
    name="fattura_riconciliazione",
    summary="Verifica saldo fattura",
    description=(
        "Confronta totali, pagato, saldo e stato salvati con quelli ricalcolati. "
        "Con fix=true scrive i valori ricalcolati."
    ),
    response_model=ReconciliationReport,
    status_code=status.HTTP_200_OK,
)
async def reconcile_invoice(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    fix: bool = Query(False, description="Riallinea i valori salvati"),
    service: PaymentService = Depends(get_payment_service),
) -> ReconciliationReport:
    return await service.reconcile_invoice(invoice_id, fix=fix)


@router.post(
    "/{invoice_id}/credit-note-plan",
    name="fattura_piano_nota_credito",
    summary="Anteprima nota di credito",
    description="Calcola la nota di credito per tutte o parte delle righe, senza salvarla.",
    response_model=CreditNotePlan,
    status_code=status.HTTP_200_OK,
)
async def plan_credit_note(
    invoice_id: uuid.UUID = Path(..., description="UUID della fattura"),
    items: Optional[list[CreditItemSelection]] = Body(None, description="Righe da stornare"),
    affects_inventory: bool = Query(False, description="La nota riporta la merce a magazzino"),
    service: CreditNoteService = Depends(get_credit_note_service),
) -> CreditNotePlan:
    return await service.convert_invoice_to_credit_note(invoice_id, items, affects_inventory)
