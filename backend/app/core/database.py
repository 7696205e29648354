"""
Configurazione Database - SQLAlchemy 2.0 Async
Progetto: Business Manager (Gestionale Commerciale)

Definisce engine, session factory, dependency injection per FastAPI
e l'adapter `SqlAlchemyDatabase` che implementa la capability
`app.core.datastore.Database` sopra una AsyncSession.
"""

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, Awaitable, Callable, Mapping, Optional, Sequence

from sqlalchemy import MetaData, Table, delete, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings
from app.core.datastore import DbError, DbErrorKind, DbResult, Row

# Logger per questo modulo
logger = logging.getLogger(__name__)

# ------------------------------------------------------------
# Engine Async SQLAlchemy 2.0
# ------------------------------------------------------------
engine: AsyncEngine = create_async_engine(
    settings.database_url,
    echo=settings.debug,  # Log query in modalità debug
    pool_pre_ping=True,   # Verifica connessione prima di usarla
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)


# ------------------------------------------------------------
# Session Factory
# ------------------------------------------------------------
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency injection per FastAPI.

    Crea una sessione database per ogni richiesta e la chiude
    automaticamente al termine.

    Yields:
        AsyncSession: Sessione database async
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """
    Inizializza la connessione al database.

    Esegue un test di connessione per verificare
    che il database sia raggiungibile.
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Connessione al database stabilita con successo")
    except Exception as e:
        logger.error("Errore connessione database: %s", e)
        raise


async def close_db() -> None:
    """
    Chiude le connessioni al database.

    Da chiamare durante lo shutdown dell'applicazione.
    """
    await engine.dispose()
    logger.info("Connessioni database chiuse")


# ------------------------------------------------------------
# Traduzione errori driver → DbError
# ------------------------------------------------------------

# SQLSTATE PostgreSQL
_SQLSTATE_KINDS = {
    "23503": DbErrorKind.FOREIGN_KEY_VIOLATION,
    "23505": DbErrorKind.UNIQUE_VIOLATION,
    "23514": DbErrorKind.CHECK_VIOLATION,
    "23502": DbErrorKind.CHECK_VIOLATION,  # not null
    "57014": DbErrorKind.TIMEOUT,          # query_canceled (statement_timeout)
}

_KEY_COLUMN_RE = re.compile(r"Key \((?P<column>[^)=,]+)(?:,[^)]*)?\)=")


def map_db_error(exc: BaseException) -> DbError:
    """
    Converte un'eccezione SQLAlchemy/asyncpg in un DbError strutturato.

    La colonna coinvolta viene letta da `column_name` dell'errore asyncpg
    oppure dal dettaglio PostgreSQL ("Key (created_by)=(...) ...").

    Args:
        exc: Eccezione sollevata durante l'esecuzione

    Returns:
        DbError con kind, messaggio e colonna (se determinabile)
    """
    if isinstance(exc, (asyncio.TimeoutError, PoolTimeoutError)):
        return DbError(kind=DbErrorKind.TIMEOUT, message=str(exc) or "timeout")

    orig = getattr(exc, "orig", None)
    driver_error = getattr(orig, "__cause__", None) or orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is None:
        sqlstate = getattr(driver_error, "sqlstate", None)

    message = str(orig) if orig is not None else str(exc)

    column = getattr(driver_error, "column_name", None)
    if column is None:
        detail = getattr(driver_error, "detail", None) or message
        match = _KEY_COLUMN_RE.search(str(detail))
        if match:
            column = match.group("column").strip()

    if sqlstate in _SQLSTATE_KINDS:
        return DbError(kind=_SQLSTATE_KINDS[sqlstate], message=message, column=column)

    if isinstance(exc, IntegrityError):
        return DbError(kind=DbErrorKind.CHECK_VIOLATION, message=message, column=column)

    if isinstance(exc, (OperationalError, InterfaceError)) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return DbError(kind=DbErrorKind.CONNECTION, message=message)

    return DbError(kind=DbErrorKind.UNKNOWN, message=message, column=column)


# ------------------------------------------------------------
# Adapter Database su AsyncSession
# ------------------------------------------------------------

class SqlAlchemyDatabase:
    """
    Implementazione della capability Database con SQLAlchemy Core.

    Ogni chiamata esegue commit autonomo, tranne all'interno di
    `transaction()`, dove tutte le chiamate condividono la stessa
    transazione (commit in uscita, rollback su eccezione).

    Args:
        session: Sessione async della richiesta corrente
        metadata: Metadata con le tabelle (default: Base.metadata)
    """

    def __init__(self, session: AsyncSession, metadata: Optional[MetaData] = None) -> None:
        if metadata is None:
            from app.models import Base
            metadata = Base.metadata
        self._session = session
        self._tables = metadata.tables
        self._in_transaction = False
        self._procedures: dict[str, Callable[[Mapping[str, Any]], Awaitable[Any]]] = {
            "next_document_number": self._next_document_number,
            "update_product_stock": self._update_product_stock,
            "claim_conversion": self._claim_conversion,
        }

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _table(self, name: str) -> Table:
        try:
            return self._tables[name]
        except KeyError:
            raise LookupError(f"Tabella sconosciuta: {name}") from None

    def _where(self, table: Table, filters: Optional[Mapping[str, Any]]):
        clauses = []
        for column_name, value in (filters or {}).items():
            column = table.c[column_name]
            if isinstance(value, (list, tuple, set)):
                clauses.append(column.in_(list(value)))
            elif value is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == value)
        return clauses

    async def _run(self, operation: Callable[[], Awaitable[Any]]) -> DbResult:
        """
        Esegue l'operazione e traduce gli errori in DbResult.

        Dentro `transaction()` ogni operazione gira in un SAVEPOINT, così un
        errore annulla solo quell'istruzione e la transazione resta usabile
        (es. reinserimento senza created_by).
        """
        try:
            if self._in_transaction:
                async with self._session.begin_nested():
                    data = await operation()
            else:
                data = await operation()
                await self._session.commit()
            return DbResult(data=data)
        except LookupError as exc:
            return DbResult.failure(DbErrorKind.UNKNOWN, str(exc))
        except (SQLAlchemyError, asyncio.TimeoutError) as exc:
            if not self._in_transaction:
                await self._session.rollback()
            error = map_db_error(exc)
            logger.debug("Errore database (%s): %s", error.kind.value, error.message)
            return DbResult(error=error)

    # ------------------------------------------------------------
    # Operazioni CRUD
    # ------------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> DbResult:
        async def operation() -> list[Row]:
            tbl = self._table(table)
            stmt = select(tbl).where(*self._where(tbl, filters))
            if order_by:
                descending = order_by.startswith("-")
                column = tbl.c[order_by.lstrip("-")]
                stmt = stmt.order_by(column.desc() if descending else column.asc())
            result = await self._session.execute(stmt)
            return [dict(row) for row in result.mappings().all()]

        return await self._run(operation)

    async def select_one(self, table: str, record_id: Any) -> DbResult:
        async def operation() -> Optional[Row]:
            tbl = self._table(table)
            result = await self._session.execute(select(tbl).where(tbl.c.id == record_id))
            row = result.mappings().first()
            return dict(row) if row is not None else None

        return await self._run(operation)

    async def insert(self, table: str, data: Mapping[str, Any]) -> DbResult:
        async def operation() -> Row:
            tbl = self._table(table)
            result = await self._session.execute(
                insert(tbl).values(**data).returning(*tbl.c)
            )
            return dict(result.mappings().one())

        return await self._run(operation)

    async def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> DbResult:
        async def operation() -> list[Row]:
            tbl = self._table(table)
            inserted = []
            for data in rows:
                result = await self._session.execute(
                    insert(tbl).values(**data).returning(*tbl.c)
                )
                inserted.append(dict(result.mappings().one()))
            return inserted

        return await self._run(operation)

    async def update(self, table: str, record_id: Any, patch: Mapping[str, Any]) -> DbResult:
        tbl = self._tables.get(table)
        if tbl is None:
            return DbResult.failure(DbErrorKind.UNKNOWN, f"Tabella sconosciuta: {table}")

        async def operation() -> Optional[Row]:
            result = await self._session.execute(
                update(tbl).where(tbl.c.id == record_id).values(**patch).returning(*tbl.c)
            )
            row = result.mappings().first()
            return dict(row) if row is not None else None

        result = await self._run(operation)
        if result.ok and result.data is None:
            return DbResult.failure(DbErrorKind.NOT_FOUND, f"{table} {record_id} non trovato")
        return result

    async def delete(self, table: str, record_id: Any) -> DbResult:
        tbl = self._tables.get(table)
        if tbl is None:
            return DbResult.failure(DbErrorKind.UNKNOWN, f"Tabella sconosciuta: {table}")

        async def operation() -> int:
            result = await self._session.execute(delete(tbl).where(tbl.c.id == record_id))
            return result.rowcount

        result = await self._run(operation)
        if result.ok and not result.data:
            return DbResult.failure(DbErrorKind.NOT_FOUND, f"{table} {record_id} non trovato")
        return DbResult(data=None, error=result.error)

    async def delete_many(self, table: str, filters: Mapping[str, Any]) -> DbResult:
        if not filters:
            return DbResult.failure(
                DbErrorKind.CHECK_VIOLATION, "delete_many richiede almeno un filtro"
            )

        async def operation() -> int:
            tbl = self._table(table)
            result = await self._session.execute(delete(tbl).where(*self._where(tbl, filters)))
            return result.rowcount

        return await self._run(operation)

    # ------------------------------------------------------------
    # Procedure server-side
    # ------------------------------------------------------------

    async def rpc(self, name: str, params: Mapping[str, Any]) -> DbResult:
        procedure = self._procedures.get(name)
        if procedure is None:
            return DbResult.failure(DbErrorKind.UNKNOWN, f"Procedura sconosciuta: {name}")
        result = await self._run(lambda: procedure(params))
        if result.ok and result.data is None:
            return DbResult.failure(DbErrorKind.NOT_FOUND, f"{name}: record non trovato")
        return result

    async def _next_document_number(self, params: Mapping[str, Any]) -> int:
        """
        Incremento atomico del progressivo per azienda/tipo/anno.

        INSERT ... ON CONFLICT DO UPDATE ... RETURNING: PostgreSQL serializza
        le richieste concorrenti sulla stessa riga, quindi ogni chiamante
        riceve un valore distinto.
        """
        seq = self._table("document_sequences")
        stmt = pg_insert(seq).values(
            company_id=params["company_id"],
            document_type=params["document_type"],
            year=params["year"],
            last_value=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[seq.c.company_id, seq.c.document_type, seq.c.year],
            set_={"last_value": seq.c.last_value + 1},
        ).returning(seq.c.last_value)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def _update_product_stock(self, params: Mapping[str, Any]) -> Any:
        """Aggiorna la giacenza in cache del prodotto con un delta (±quantità)."""
        products = self._table("products")
        result = await self._session.execute(
            update(products)
            .where(products.c.id == params["product_id"])
            .values(stock_quantity=products.c.stock_quantity + params["quantity_delta"])
            .returning(products.c.stock_quantity)
        )
        return result.scalar_one_or_none()

    async def _claim_conversion(self, params: Mapping[str, Any]) -> Any:
        """
        Cambio di stato condizionato della sorgente di una conversione.

        UPDATE ... WHERE status IN (...) RETURNING id: una richiesta
        concorrente attende il lock sulla riga e, dopo il commit della
        prima, non trova più uno stato ammesso (nessuna riga, NOT_FOUND).
        """
        tbl = self._table(params["table"])
        result = await self._session.execute(
            update(tbl)
            .where(
                tbl.c.id == params["record_id"],
                tbl.c.company_id == params["company_id"],
                tbl.c.status.in_(list(params["statuses"])),
            )
            .values(status=params["claim_status"])
            .returning(tbl.c.id)
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------
    # Transazioni
    # ------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Raggruppa le chiamate in una transazione unica.

        Le transazioni annidate confluiscono in quella più esterna.
        """
        if self._in_transaction:
            yield
            return

        self._in_transaction = True
        try:
            yield
            await self._session.commit()
        except BaseException:
            await self._session.rollback()
            raise
        finally:
            self._in_transaction = False
