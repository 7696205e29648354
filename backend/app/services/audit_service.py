"""
Service Layer per l'Audit
Progetto: Business Manager (Gestionale Commerciale)
"""

import logging
import uuid
from typing import Any, Mapping, Optional

from pydantic import TypeAdapter

from app.core.datastore import Database, Row
from app.schemas.token import CurrentUser

logger = logging.getLogger(__name__)

_JSON = TypeAdapter(Any)


class AuditService:
    """
    Scrive le voci della tabella audit_logs.

    `record` solleva in caso di errore: è il chiamante a decidere se
    l'audit è obbligatorio (cancellazione note di credito) o best effort.
    """

    def __init__(self, db: Database, current_user: Optional[CurrentUser] = None) -> None:
        self.db = db
        self.current_user = current_user

    async def record(
        self,
        action: str,
        entity_type: str,
        record_id: Optional[uuid.UUID],
        company_id: Optional[uuid.UUID],
        details: Optional[Mapping[str, Any]] = None,
    ) -> Row:
        """
        Registra un'azione.

        Args:
            action: Azione eseguita (es. DELETE)
            entity_type: Tipo entità (es. credit_note)
            record_id: ID del record coinvolto
            company_id: Azienda
            details: Snapshot dei dati (convertito in JSON)

        Returns:
            La voce di audit creata

        Raises:
            DatabaseOperationError: Se la scrittura fallisce
        """
        payload = {
            "action": action,
            "entity_type": entity_type,
            "record_id": record_id,
            "company_id": company_id,
            "actor_user_id": self.current_user.id if self.current_user else None,
            "details": _JSON.dump_python(dict(details or {}), mode="json"),
        }
        result = await self.db.insert("audit_logs", payload)
        if not result.ok:
            logger.error(
                "Scrittura audit fallita (%s %s %s): %s",
                action,
                entity_type,
                record_id,
                result.error.message,
            )
        entry = result.unwrap()
        logger.info("Audit: %s %s %s", action, entity_type, record_id)
        return entry
