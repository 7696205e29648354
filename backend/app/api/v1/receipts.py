"""
Router FastAPI per Ricevute ed Eccedenze
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Path, status

from app.core.deps import AuthUser, get_excess_service, get_receipt_service
from app.core.exceptions import BusinessValidationError
from app.schemas.common import OperationResult
from app.schemas.payment import (
    CustomerCreditSummary,
    DirectReceiptCreate,
    DirectReceiptResult,
    ExcessHandlingRequest,
    ExcessResult,
)
from app.services.excess_payment_service import ExcessPaymentService
from app.services.receipt_service import ReceiptService

router = APIRouter(
    prefix="/receipts",
    tags=["Ricevute"],
)


@router.post(
    "/direct",
    name="ricevuta_diretta",
    summary="Crea ricevuta diretta",
    description=(
        "Crea in un'unica transazione fattura, pagamento, allocazione e ricevuta. "
        "L'eventuale eccedenza resta in attesa di destinazione."
    ),
    response_model=OperationResult[DirectReceiptResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_direct_receipt(
    data: DirectReceiptCreate,
    service: ReceiptService = Depends(get_receipt_service),
) -> OperationResult[DirectReceiptResult]:
    return await service.create_direct_receipt(data)


@router.post(
    "/excess",
    name="ricevuta_eccedenza",
    summary="Destina eccedenza",
    description="Trasforma l'eccedenza in credito cliente o nota di credito, oppure la lascia in attesa.",
    response_model=OperationResult[ExcessResult],
    status_code=status.HTTP_200_OK,
)
async def handle_excess(
    data: ExcessHandlingRequest,
    service: ExcessPaymentService = Depends(get_excess_service),
) -> OperationResult[ExcessResult]:
    return await service.handle_excess(
        data.receipt_id,
        data.invoice_id,
        data.customer_id,
        data.excess_amount,
        data.handling,
    )


@router.get(
    "/customers/{customer_id}/credit",
    name="cliente_credito_disponibile",
    summary="Credito disponibile cliente",
    description="Elenca i crediti disponibili del cliente e il loro totale.",
    response_model=CustomerCreditSummary,
    status_code=status.HTTP_200_OK,
)
async def get_customer_credit(
    current_user: AuthUser,
    customer_id: uuid.UUID = Path(..., description="UUID del cliente"),
    service: ExcessPaymentService = Depends(get_excess_service),
) -> CustomerCreditSummary:
    if current_user.company_id is None:
        raise BusinessValidationError("Azienda non specificata nel token")
    return await service.available_credit(current_user.company_id, customer_id)


@router.get(
    "/{receipt_id}",
    name="ricevuta_dettaglio",
    summary="Dettaglio ricevuta",
    response_model=dict[str, Any],
    status_code=status.HTTP_200_OK,
)
async def get_receipt(
    receipt_id: uuid.UUID = Path(..., description="UUID della ricevuta"),
    service: ReceiptService = Depends(get_receipt_service),
) -> dict[str, Any]:
    return await service.get_receipt(receipt_id)
