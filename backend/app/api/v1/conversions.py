"""
Router FastAPI per la Conversione Documenti
Progetto: Business Manager (Gestionale Commerciale)
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Path, status

from app.core.deps import get_conversion_service
from app.schemas.common import OperationResult
from app.schemas.document import ConversionRequest, ConversionResult
from app.services.conversion_service import ConversionService

# Logger per questo modulo
logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/conversions",
    tags=["Conversioni"],
)


@router.post(
    "/{source_id}",
    name="converti_documento",
    summary="Converte un documento",
    description=(
        "Crea un documento di destinazione (fattura, proforma, documento di trasporto, "
        "nota di credito) a partire da un documento esistente."
    ),
    response_model=OperationResult[ConversionResult],
    status_code=status.HTTP_201_CREATED,
)
async def convert_document(
    data: ConversionRequest,
    source_id: uuid.UUID = Path(..., description="UUID del documento di origine"),
    service: ConversionService = Depends(get_conversion_service),
) -> OperationResult[ConversionResult]:
    """
    Converte il documento indicato.

    Gli eventuali avvisi (movimenti di magazzino non registrati, stato
    sorgente non aggiornato, totali forniti sostituiti) sono restituiti
    in `warnings` insieme al documento creato.
    """
    return await service.convert(source_id, data.source_type, data.dest_type, data.overrides)
