"""
Pytest configuration and fixtures.

I servizi ricevono la capability Database: nei test viene sostituita
da un database in memoria con la stessa interfaccia (DbResult, errori
strutturati, transazioni con rollback, procedure rpc).
"""

import asyncio
import copy
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

import pytest

from app.core.datastore import DbError, DbErrorKind, DbResult, Row
from app.schemas.token import CurrentUser
from app.services.number_generator import SequenceNumberGenerator
from factories import DocumentFactory


# ============================================================
# Database in memoria
# ============================================================


class InMemoryDatabase:
    """
    Implementazione in memoria del protocollo Database.

    - `fail(operation, table, ...)` fa fallire le chiamate successive
      (tutte, oppure solo le prime `times`)
    - `delay` aggiunge un'attesa a ogni chiamata (test dei timeout)
    - `calls` registra (operazione, tabella) in ordine
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[Any, Row]] = defaultdict(dict)
        self.sequences: dict[tuple[Any, str, int], int] = {}
        self.calls: list[tuple[str, str]] = []
        self.delay: float = 0
        self._failures: dict[tuple[str, str], list[Any]] = {}
        self._in_transaction = False
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    # ---------------------------------------------------------
    # Helpers per i test
    # ---------------------------------------------------------

    def fail(
        self,
        operation: str,
        table: str,
        kind: DbErrorKind = DbErrorKind.UNKNOWN,
        message: str = "errore simulato",
        column: Optional[str] = None,
        times: Optional[int] = None,
    ) -> None:
        """Programma un errore per (operazione, tabella o procedura)."""
        error = DbError(kind=kind, message=message, column=column)
        self._failures[(operation, table)] = [error, times]

    def rows(self, table: str, **filters: Any) -> list[Row]:
        """Righe di una tabella che soddisfano i filtri (lettura diretta)."""
        return [dict(row) for row in self.tables[table].values() if self._matches(row, filters)]

    def get(self, table: str, record_id: Any) -> Optional[Row]:
        row = self.tables[table].get(record_id)
        return dict(row) if row is not None else None

    def seed(self, table: str, **data: Any) -> Row:
        """Inserisce una riga senza passare dal protocollo."""
        row = self._new_row(data)
        self.tables[table][row["id"]] = row
        return dict(row)

    # ---------------------------------------------------------
    # Interni
    # ---------------------------------------------------------

    def _new_row(self, data: Mapping[str, Any]) -> Row:
        self._clock += timedelta(milliseconds=1)
        row = dict(data)
        row.setdefault("id", uuid.uuid4())
        row.setdefault("created_at", self._clock)
        return row

    async def _enter(self, operation: str, table: str) -> Optional[DbResult]:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        self.calls.append((operation, table))

        entry = self._failures.get((operation, table))
        if entry is None:
            return None
        error, remaining = entry
        if remaining is not None:
            if remaining <= 1:
                del self._failures[(operation, table)]
            else:
                entry[1] = remaining - 1
        return DbResult(error=error)

    @staticmethod
    def _matches(row: Row, filters: Optional[Mapping[str, Any]]) -> bool:
        for column, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if row.get(column) not in value:
                    return False
            elif value is None:
                if row.get(column) is not None:
                    return False
            elif row.get(column) != value:
                return False
        return True

    # ---------------------------------------------------------
    # Protocollo Database
    # ---------------------------------------------------------

    async def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
    ) -> DbResult:
        failure = await self._enter("select", table)
        if failure is not None:
            return failure
        rows = [dict(row) for row in self.tables[table].values() if self._matches(row, filters)]
        if order_by:
            column = order_by.lstrip("-")
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=order_by.startswith("-"))
        return DbResult(data=rows)

    async def select_one(self, table: str, record_id: Any) -> DbResult:
        failure = await self._enter("select_one", table)
        if failure is not None:
            return failure
        return DbResult(data=self.get(table, record_id))

    async def insert(self, table: str, data: Mapping[str, Any]) -> DbResult:
        failure = await self._enter("insert", table)
        if failure is not None:
            return failure
        row = self._new_row(data)
        self.tables[table][row["id"]] = row
        return DbResult(data=dict(row))

    async def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> DbResult:
        failure = await self._enter("insert_many", table)
        if failure is not None:
            return failure
        created = []
        for data in rows:
            row = self._new_row(data)
            self.tables[table][row["id"]] = row
            created.append(dict(row))
        return DbResult(data=created)

    async def update(self, table: str, record_id: Any, patch: Mapping[str, Any]) -> DbResult:
        failure = await self._enter("update", table)
        if failure is not None:
            return failure
        row = self.tables[table].get(record_id)
        if row is None:
            return DbResult.failure(DbErrorKind.NOT_FOUND, f"{table} {record_id} non trovato")
        row.update(patch)
        return DbResult(data=dict(row))

    async def delete(self, table: str, record_id: Any) -> DbResult:
        failure = await self._enter("delete", table)
        if failure is not None:
            return failure
        if self.tables[table].pop(record_id, None) is None:
            return DbResult.failure(DbErrorKind.NOT_FOUND, f"{table} {record_id} non trovato")
        return DbResult(data=None)

    async def delete_many(self, table: str, filters: Mapping[str, Any]) -> DbResult:
        failure = await self._enter("delete_many", table)
        if failure is not None:
            return failure
        doomed = [key for key, row in self.tables[table].items() if self._matches(row, filters)]
        for key in doomed:
            del self.tables[table][key]
        return DbResult(data=len(doomed))

    async def rpc(self, name: str, params: Mapping[str, Any]) -> DbResult:
        failure = await self._enter("rpc", name)
        if failure is not None:
            return failure

        if name == "next_document_number":
            key = (params["company_id"], params["document_type"], params["year"])
            self.sequences[key] = self.sequences.get(key, 0) + 1
            return DbResult(data=self.sequences[key])

        if name == "update_product_stock":
            product = self.tables["products"].get(params["product_id"])
            if product is None:
                return DbResult.failure(DbErrorKind.NOT_FOUND, "update_product_stock: record non trovato")
            product["stock_quantity"] = Decimal(product.get("stock_quantity") or 0) + params["quantity_delta"]
            return DbResult(data=product["stock_quantity"])

        if name == "claim_conversion":
            row = self.tables[params["table"]].get(params["record_id"])
            if (
                row is None
                or row.get("company_id") != params["company_id"]
                or row.get("status") not in params["statuses"]
            ):
                return DbResult.failure(DbErrorKind.NOT_FOUND, "claim_conversion: record non trovato")
            row["status"] = params["claim_status"]
            return DbResult(data=row["id"])

        return DbResult.failure(DbErrorKind.UNKNOWN, f"Procedura sconosciuta: {name}")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._in_transaction:
            yield
            return

        snapshot = copy.deepcopy(self.tables)
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self.tables = snapshot
            raise
        finally:
            self._in_transaction = False


# ============================================================
# Fixtures
# ============================================================


@pytest.fixture
def company_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def db() -> InMemoryDatabase:
    """Database in memoria vuoto."""
    return InMemoryDatabase()


@pytest.fixture
def numbers(db: InMemoryDatabase) -> SequenceNumberGenerator:
    """Generatore numeri sul database in memoria."""
    return SequenceNumberGenerator(db)


@pytest.fixture
def user(company_id: uuid.UUID) -> CurrentUser:
    """Utente operativo senza permessi speciali."""
    return CurrentUser(id=uuid.uuid4(), email="operatore@example.com", role="user", company_id=company_id)


@pytest.fixture
def admin(company_id: uuid.UUID) -> CurrentUser:
    """Amministratore dell'azienda."""
    return CurrentUser(id=uuid.uuid4(), email="admin@example.com", role="admin", company_id=company_id)


@pytest.fixture
def factory(db: InMemoryDatabase, company_id: uuid.UUID) -> DocumentFactory:
    return DocumentFactory(db, company_id)


@pytest.fixture
def customer(factory: DocumentFactory) -> Row:
    return factory.customer(name="Acme Ltd")
