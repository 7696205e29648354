"""
Router FastAPI per i Pagamenti
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid

from fastapi import APIRouter, Depends, Path, status

from app.core.deps import get_payment_service
from app.schemas.common import OperationResult
from app.schemas.payment import PaymentCreate, PaymentResult, PaymentUpdate
from app.services.payment_service import PaymentService

router = APIRouter(
    prefix="/payments",
    tags=["Pagamenti"],
)


@router.post(
    "/",
    name="pagamento_crea",
    summary="Registra pagamento",
    description="Registra un pagamento e lo alloca sulla fattura, ricalcolandone saldo e stato.",
    response_model=OperationResult[PaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def create_payment(
    data: PaymentCreate,
    service: PaymentService = Depends(get_payment_service),
) -> OperationResult[PaymentResult]:
    return await service.create_payment(data)


@router.patch(
    "/{payment_id}",
    name="pagamento_modifica",
    summary="Corregge pagamento",
    description="Modifica un pagamento; una variazione d'importo aggiorna le fatture coinvolte.",
    response_model=OperationResult[PaymentResult],
    status_code=status.HTTP_200_OK,
)
async def update_payment(
    data: PaymentUpdate,
    payment_id: uuid.UUID = Path(..., description="UUID del pagamento"),
    service: PaymentService = Depends(get_payment_service),
) -> OperationResult[PaymentResult]:
    return await service.update_payment(payment_id, data)


@router.delete(
    "/{payment_id}",
    name="pagamento_elimina",
    summary="Elimina pagamento",
    description="Elimina un pagamento e le sue allocazioni, ricalcolando le fatture coinvolte.",
    response_model=OperationResult[PaymentResult],
    status_code=status.HTTP_200_OK,
)
async def delete_payment(
    payment_id: uuid.UUID = Path(..., description="UUID del pagamento"),
    service: PaymentService = Depends(get_payment_service),
) -> OperationResult[PaymentResult]:
    return await service.delete_payment(payment_id)
