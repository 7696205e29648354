"""
Limiti di tempo per le operazioni multi-passo
Progetto: Business Manager (Gestionale Commerciale)
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from app.core.exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_with_timeout(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """
    Esegue un'operazione con un limite di tempo.

    Allo scadere il passo in corso viene cancellato; i passi già
    completati restano persistiti.

    Args:
        awaitable: Coroutine da eseguire
        seconds: Tempo massimo in secondi
        operation: Nome dell'operazione (per log e messaggio d'errore)

    Returns:
        Il risultato della coroutine

    Raises:
        OperationTimeoutError: Se il tempo massimo viene superato
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError:
        logger.error("Timeout di %ss superato per l'operazione %s", seconds, operation)
        raise OperationTimeoutError(
            f"L'operazione '{operation}' ha superato il tempo massimo di {seconds:g} secondi",
            extra={"operation": operation, "timeout_seconds": seconds},
        ) from None
