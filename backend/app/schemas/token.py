"""
Schemas Pydantic per l'autenticazione JWT
Progetto: Business Manager (Gestionale Commerciale)

I token sono emessi dal servizio di autenticazione esterno:
qui si definiscono solo il payload atteso e l'utente corrente.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

# Ruoli che possiedono implicitamente tutti i permessi
ADMIN_ROLES = frozenset({"admin", "super_admin"})


class TokenPayload(BaseModel):
    """
    Schema per il payload contenuto nei token JWT.

    Attributes:
        sub: Subject - ID dell'utente come stringa
        email: Email dell'utente
        role: Ruolo dell'utente
        company_id: Azienda corrente
        permissions: Permessi espliciti (es. delete_credit_note)
        exp: Expiration - Data/ora di scadenza
        type: Tipo di token ("access")
    """

    sub: str = Field(..., description="ID utente")
    email: Optional[str] = Field(default=None, description="Email utente")
    role: str = Field(..., description="Ruolo dell'utente")
    company_id: Optional[str] = Field(default=None, description="Azienda corrente")
    permissions: list[str] = Field(default_factory=list, description="Permessi espliciti")
    exp: datetime = Field(..., description="Data/ora di scadenza")
    type: str = Field(default="access", description="Tipo di token")


class CurrentUser(BaseModel):
    """
    Utente autenticato che esegue l'operazione.

    Passato esplicitamente ai servizi: usato per `created_by`,
    per i controlli di permesso e per l'audit.
    """

    id: uuid.UUID
    email: Optional[str] = None
    role: str = "user"
    company_id: Optional[uuid.UUID] = None
    permissions: frozenset[str] = Field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    def has_permission(self, permission: str) -> bool:
        """True se l'utente ha il permesso esplicito o un ruolo amministrativo."""
        return self.is_admin or permission in self.permissions


__all__ = [
    "ADMIN_ROLES",
    "TokenPayload",
    "CurrentUser",
]
