"""
Capability di persistenza per i servizi documentali
Progetto: Business Manager (Gestionale Commerciale)

I servizi non parlano direttamente con la sessione SQLAlchemy: ricevono
nel costruttore un oggetto che soddisfa il protocollo `Database`.
Ogni chiamata restituisce un `DbResult` (dati oppure errore strutturato)
invece di sollevare eccezioni, così ogni passo decide se l'errore è
bloccante o solo un avviso.

Implementazioni:
- app.core.database.SqlAlchemyDatabase (PostgreSQL, produzione)
- tests/conftest.py InMemoryDatabase (test)
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from enum import Enum
from typing import Any, Generic, Mapping, Optional, Protocol, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict

from app.core.exceptions import DatabaseOperationError

T = TypeVar("T")

# Una riga di tabella: nome colonna → valore
Row = dict[str, Any]


class DbErrorKind(str, Enum):
    """Categorie di errore riconosciute dal livello di persistenza."""
    NOT_FOUND = "not_found"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    UNIQUE_VIOLATION = "unique_violation"
    CHECK_VIOLATION = "check_violation"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class DbError(BaseModel):
    """
    Errore strutturato restituito dal Database.

    Attributes:
        kind: Categoria dell'errore
        message: Messaggio originale del driver
        column: Colonna coinvolta (vincoli di integrità), se nota
    """

    model_config = ConfigDict(frozen=True)

    kind: DbErrorKind
    message: str
    column: Optional[str] = None

    def is_foreign_key_on(self, column: str) -> bool:
        """True se l'errore è una violazione di foreign key sulla colonna indicata."""
        return self.kind == DbErrorKind.FOREIGN_KEY_VIOLATION and self.column == column


class DbResult(BaseModel, Generic[T]):
    """Coppia risultato/errore di una singola chiamata al Database."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Optional[T] = None
    error: Optional[DbError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """
        Restituisce i dati oppure solleva l'errore.

        Raises:
            DatabaseOperationError: Se la chiamata è fallita
        """
        if self.error is not None:
            raise DatabaseOperationError(self.error)
        return self.data  # type: ignore[return-value]

    @classmethod
    def success(cls, data: Any = None) -> "DbResult":
        return cls(data=data)

    @classmethod
    def failure(
        cls,
        kind: DbErrorKind,
        message: str,
        column: Optional[str] = None,
    ) -> "DbResult":
        return cls(error=DbError(kind=kind, message=message, column=column))


class Database(Protocol):
    """
    Operazioni di persistenza richieste dai servizi.

    I filtri sono mappe colonna → valore in uguaglianza; un valore
    lista/tupla diventa una condizione IN.
    """

    async def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> DbResult[list[Row]]:
        ...

    async def select_one(self, table: str, record_id: Any) -> DbResult[Optional[Row]]:
        ...

    async def insert(self, table: str, data: Mapping[str, Any]) -> DbResult[Row]:
        ...

    async def insert_many(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
    ) -> DbResult[list[Row]]:
        ...

    async def update(
        self,
        table: str,
        record_id: Any,
        patch: Mapping[str, Any],
    ) -> DbResult[Optional[Row]]:
        ...

    async def delete(self, table: str, record_id: Any) -> DbResult[None]:
        ...

    async def delete_many(self, table: str, filters: Mapping[str, Any]) -> DbResult[int]:
        ...

    async def rpc(self, name: str, params: Mapping[str, Any]) -> DbResult[Any]:
        ...

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Raggruppa le chiamate successive in un'unica transazione."""
        ...


__all__ = [
    "Row",
    "DbErrorKind",
    "DbError",
    "DbResult",
    "Database",
]
