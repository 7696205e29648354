"""
Unit tests per l'adapter SqlAlchemyDatabase e la traduzione degli errori.

La sessione è un mock di AsyncSession: si verificano commit, rollback
e DbResult restituiti, non l'SQL generato.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import SqlAlchemyDatabase, map_db_error
from app.core.datastore import DbError, DbErrorKind, DbResult
from app.core.exceptions import DatabaseOperationError


class FakeDriverError(Exception):
    """Errore driver con gli attributi esposti da asyncpg."""

    def __init__(self, message, sqlstate=None, column_name=None, detail=None):
        super().__init__(message)
        self.sqlstate = sqlstate
        self.column_name = column_name
        self.detail = detail


def integrity_error(**kwargs) -> IntegrityError:
    return IntegrityError("INSERT INTO invoices ...", {}, FakeDriverError("violazione", **kwargs))


# ============================================================
# map_db_error
# ============================================================


class TestMapDbError:
    """Tests per la traduzione eccezione → DbError."""

    def test_foreign_key_with_column_name(self):
        error = map_db_error(integrity_error(sqlstate="23503", column_name="created_by"))

        assert error.kind == DbErrorKind.FOREIGN_KEY_VIOLATION
        assert error.column == "created_by"
        assert error.is_foreign_key_on("created_by")

    def test_foreign_key_column_from_detail(self):
        error = map_db_error(
            integrity_error(
                sqlstate="23503",
                detail='Key (created_by)=(7f1c) is not present in table "users".',
            )
        )

        assert error.column == "created_by"

    def test_unique_violation(self):
        error = map_db_error(integrity_error(sqlstate="23505"))

        assert error.kind == DbErrorKind.UNIQUE_VIOLATION

    def test_integrity_without_sqlstate(self):
        error = map_db_error(integrity_error())

        assert error.kind == DbErrorKind.CHECK_VIOLATION

    def test_connection_error(self):
        error = map_db_error(OperationalError("SELECT 1", {}, Exception("connection refused")))

        assert error.kind == DbErrorKind.CONNECTION

    def test_timeout(self):
        assert map_db_error(asyncio.TimeoutError()).kind == DbErrorKind.TIMEOUT

    def test_statement_timeout(self):
        error = map_db_error(OperationalError("SELECT 1", {}, FakeDriverError("canceled", sqlstate="57014")))

        assert error.kind == DbErrorKind.TIMEOUT

    def test_unknown(self):
        assert map_db_error(RuntimeError("boom")).kind == DbErrorKind.UNKNOWN


class TestDbResult:
    """Tests per DbResult.unwrap."""

    def test_unwrap_data(self):
        assert DbResult(data=[1, 2]).unwrap() == [1, 2]

    def test_unwrap_error_raises(self):
        result = DbResult(
            error=DbError(kind=DbErrorKind.FOREIGN_KEY_VIOLATION, message="fk", column="customer_id")
        )

        with pytest.raises(DatabaseOperationError) as exc_info:
            result.unwrap()

        assert exc_info.value.extra == {"kind": "foreign_key_violation", "column": "customer_id"}
        assert exc_info.value.status_code == 502


# ============================================================
# SqlAlchemyDatabase
# ============================================================


@pytest.fixture
def metadata():
    metadata = MetaData()
    Table(
        "items",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(50)),
    )
    return metadata


@pytest.fixture
def session():
    """Mock di AsyncSession con SAVEPOINT simulato."""
    session = AsyncMock(spec=AsyncSession)
    nested = MagicMock()
    nested.__aenter__ = AsyncMock(return_value=None)
    nested.__aexit__ = AsyncMock(return_value=False)
    session.begin_nested = MagicMock(return_value=nested)
    return session


def execute_result(rows=None, first=None):
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows or []
    result.mappings.return_value.first.return_value = first
    result.mappings.return_value.one.return_value = first
    return result


class TestSqlAlchemyDatabase:
    """Tests per l'adapter su AsyncSession."""

    @pytest.mark.asyncio
    async def test_select_commits(self, session, metadata):
        session.execute.return_value = execute_result(rows=[{"id": 1, "name": "a"}])
        db = SqlAlchemyDatabase(session, metadata)

        result = await db.select("items", {"name": "a"}, order_by="-id")

        assert result.ok
        assert result.data == [{"id": 1, "name": "a"}]
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_error_rolls_back_and_maps(self, session, metadata):
        session.execute.side_effect = integrity_error(sqlstate="23503", column_name="created_by")
        db = SqlAlchemyDatabase(session, metadata)

        result = await db.insert("items", {"name": "a"})

        assert not result.ok
        assert result.error.is_foreign_key_on("created_by")
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_table(self, session, metadata):
        db = SqlAlchemyDatabase(session, metadata)

        result = await db.select("missing")

        assert result.error.kind == DbErrorKind.UNKNOWN
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_missing_row(self, session, metadata):
        session.execute.return_value = execute_result(first=None)
        db = SqlAlchemyDatabase(session, metadata)

        result = await db.update("items", 42, {"name": "b"})

        assert result.error.kind == DbErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_delete_many_requires_filters(self, session, metadata):
        db = SqlAlchemyDatabase(session, metadata)

        result = await db.delete_many("items", {})

        assert result.error.kind == DbErrorKind.CHECK_VIOLATION
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_procedure(self, session, metadata):
        db = SqlAlchemyDatabase(session, metadata)

        result = await db.rpc("missing_procedure", {})

        assert result.error.kind == DbErrorKind.UNKNOWN

    @pytest.mark.asyncio
    async def test_transaction_commits_once(self, session, metadata):
        """Test transazione: SAVEPOINT per chiamata, un solo commit finale."""
        session.execute.return_value = execute_result(first={"id": 1, "name": "a"})
        db = SqlAlchemyDatabase(session, metadata)

        async with db.transaction():
            await db.insert("items", {"name": "a"})
            async with db.transaction():
                await db.insert("items", {"name": "b"})
            session.commit.assert_not_awaited()

        assert session.begin_nested.call_count == 2
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, session, metadata):
        session.execute.return_value = execute_result(first={"id": 1, "name": "a"})
        db = SqlAlchemyDatabase(session, metadata)

        with pytest.raises(RuntimeError):
            async with db.transaction():
                await db.insert("items", {"name": "a"})
                raise RuntimeError("passo successivo fallito")

        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()


class TestClaimConversion:
    """Tests per la procedura claim_conversion."""

    @pytest.fixture
    def documents(self):
        metadata = MetaData()
        Table(
            "quotations",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("company_id", Integer),
            Column("status", String(30)),
        )
        return metadata

    @staticmethod
    def params():
        return {
            "table": "quotations",
            "record_id": 7,
            "company_id": 1,
            "statuses": ["accepted"],
            "claim_status": "converting",
        }

    @pytest.mark.asyncio
    async def test_claimed(self, session, documents):
        result = MagicMock()
        result.scalar_one_or_none.return_value = 7
        session.execute.return_value = result
        db = SqlAlchemyDatabase(session, documents)

        claimed = await db.rpc("claim_conversion", self.params())

        assert claimed.ok
        assert claimed.data == 7
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_already_claimed_is_not_found(self, session, documents):
        """Test nessuna riga nello stato atteso: NOT_FOUND."""
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        session.execute.return_value = result
        db = SqlAlchemyDatabase(session, documents)

        claimed = await db.rpc("claim_conversion", self.params())

        assert claimed.error.kind == DbErrorKind.NOT_FOUND
