"""
Router FastAPI per i Movimenti di Magazzino
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from app.core.deps import get_stock_service, require_role
from app.core.exceptions import BusinessValidationError
from app.schemas.common import OperationResult
from app.schemas.inventory import StockMovementCreate, StockReversalRequest
from app.schemas.token import CurrentUser
from app.services.stock_movement_service import StockMovementService

router = APIRouter(
    prefix="/stock-movements",
    tags=["Magazzino"],
)

StockManager = require_role("stock_manager", "admin", "super_admin")


@router.get(
    "/",
    name="movimenti_per_documento",
    summary="Movimenti di un documento",
    description="Movimenti originali e storni legati a un documento.",
    response_model=list[dict[str, Any]],
    status_code=status.HTTP_200_OK,
)
async def list_movements(
    reference_type: str = Query(..., description="Tipo documento (INVOICE, CREDIT_NOTE, ...)"),
    reference_id: uuid.UUID = Query(..., description="UUID del documento"),
    service: StockMovementService = Depends(get_stock_service),
) -> list[dict[str, Any]]:
    return await service.list_for_reference(reference_type, reference_id)


@router.post(
    "/",
    name="movimento_crea",
    summary="Registra movimento",
    description="Registra un movimento manuale (carico, rettifica).",
    response_model=OperationResult[dict[str, Any]],
    status_code=status.HTTP_201_CREATED,
)
async def create_movement(
    data: StockMovementCreate,
    current_user: CurrentUser = Depends(StockManager),
    service: StockMovementService = Depends(get_stock_service),
) -> OperationResult[dict[str, Any]]:
    if current_user.company_id is None:
        raise BusinessValidationError("Azienda non specificata nel token")
    return await service.record(
        current_user.company_id,
        data.product_id,
        data.movement_type,
        data.quantity,
        data.reference_type,
        data.reference_id,
        data.notes,
    )


@router.post(
    "/reverse",
    name="movimenti_storna",
    summary="Storna movimenti",
    description="Storna i movimenti non ancora stornati di un documento.",
    response_model=OperationResult[list[dict[str, Any]]],
    status_code=status.HTTP_200_OK,
)
async def reverse_movements(
    data: StockReversalRequest,
    current_user: CurrentUser = Depends(StockManager),
    service: StockMovementService = Depends(get_stock_service),
) -> OperationResult[list[dict[str, Any]]]:
    return await service.reverse(data.reference_type, data.reference_id)
