"""
Router FastAPI per lo stato dei Documenti
Progetto: Business Manager (Gestionale Commerciale)
"""

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Path, status

from app.core.deps import get_lifecycle_service
from app.schemas.common import DocumentType, OperationResult
from app.schemas.document import DocumentStatusUpdate
from app.services.document_lifecycle import DocumentLifecycleService

router = APIRouter(
    prefix="/documents",
    tags=["Documenti"],
)


@router.patch(
    "/{document_type}/{document_id}/status",
    name="documento_cambia_stato",
    summary="Cambia stato documento",
    description="Applica una transizione di stato manuale (es. preventivo inviato → accettato).",
    response_model=OperationResult[dict[str, Any]],
    status_code=status.HTTP_200_OK,
)
async def update_document_status(
    data: DocumentStatusUpdate,
    document_type: DocumentType = Path(..., description="Tipo documento"),
    document_id: uuid.UUID = Path(..., description="UUID del documento"),
    service: DocumentLifecycleService = Depends(get_lifecycle_service),
) -> OperationResult[dict[str, Any]]:
    return await service.update_status(document_type, document_id, data.status, data.notes)
