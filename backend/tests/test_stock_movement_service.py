"""
Unit tests per StockMovementService e best_effort.
"""

import uuid
from decimal import Decimal

import pytest

from app.core.datastore import DbErrorKind
from app.core.exceptions import BusinessValidationError, DatabaseOperationError, NotFoundError
from app.schemas.common import MovementType
from app.services.stock_movement_service import (
    StockMovementService,
    best_effort,
    reversal_reference,
    signed_quantity,
)
from factories import DocumentFactory


@pytest.fixture
def service(db, user):
    return StockMovementService(db, user)


def net_quantity(db, product_id, reference_id) -> Decimal:
    """Somma con segno dei movimenti di un prodotto per un documento."""
    return sum(
        (signed_quantity(m) for m in db.rows("stock_movements", product_id=product_id, reference_id=reference_id)),
        Decimal("0"),
    )


class TestRecord:
    """Tests per la registrazione dei movimenti."""

    @pytest.mark.asyncio
    async def test_record_out_updates_cached_stock(self, service, db, factory, company_id):
        """Test movimento OUT: giacenza in cache ridotta."""
        product = factory.product(stock=10)
        reference_id = uuid.uuid4()

        result = await service.record(
            company_id, product["id"], MovementType.OUT, 3, "INVOICE", reference_id
        )

        assert result.warnings == []
        assert result.data["movement_type"] == "OUT"
        assert result.data["quantity"] == Decimal("3")
        assert db.get("products", product["id"])["stock_quantity"] == Decimal("7")

    @pytest.mark.asyncio
    async def test_record_many_skips_lines_without_product(self, service, db, factory, company_id):
        """Test righe di servizio (senza prodotto) ignorate."""
        product = factory.product()

        result = await service.record_many(
            company_id,
            [{"product_id": product["id"], "quantity": 2}, {"product_id": None, "quantity": 1}],
            MovementType.OUT,
            "INVOICE",
            uuid.uuid4(),
        )

        assert len(result.data) == 1
        assert len(db.rows("stock_movements")) == 1

    @pytest.mark.asyncio
    async def test_record_many_without_products_writes_nothing(self, service, db, company_id):
        result = await service.record_many(
            company_id, [{"quantity": 1}], MovementType.OUT, "INVOICE", uuid.uuid4()
        )

        assert result.data == []
        assert ("insert_many", "stock_movements") not in db.calls

    @pytest.mark.asyncio
    async def test_non_positive_quantity_rejected(self, service, factory, company_id):
        """Test quantità zero o negativa."""
        product = factory.product()

        with pytest.raises(BusinessValidationError):
            await service.record(company_id, product["id"], MovementType.IN, 0, "RESTOCK", uuid.uuid4())

    @pytest.mark.asyncio
    async def test_cached_stock_failure_is_warning(self, service, db, factory, company_id):
        """Test errore sulla giacenza: movimento registrato e avviso restituito."""
        product = factory.product(stock=5)
        db.fail("rpc", "update_product_stock", kind=DbErrorKind.CONNECTION)

        result = await service.record(
            company_id, product["id"], MovementType.IN, 2, "RESTOCK", uuid.uuid4()
        )

        assert len(db.rows("stock_movements")) == 1
        assert [w.step for w in result.warnings] == ["stock_quantity"]
        assert result.warnings[0].detail["error_kind"] == "connection"
        assert db.get("products", product["id"])["stock_quantity"] == Decimal("5")

    @pytest.mark.asyncio
    async def test_insert_failure_raises(self, service, db, factory, company_id):
        """Test errore sull'inserimento: passo obbligatorio, eccezione."""
        product = factory.product()
        db.fail("insert_many", "stock_movements")

        with pytest.raises(DatabaseOperationError):
            await service.record(company_id, product["id"], MovementType.IN, 1, "RESTOCK", uuid.uuid4())


class TestReverse:
    """Tests per lo storno dei movimenti."""

    @pytest.mark.asyncio
    async def test_reverse_restores_net_quantity(self, service, db, factory, company_id):
        """Test storno: quantità netta del documento torna a zero."""
        first = factory.product(stock=20)
        second = factory.product(stock=20)
        reference_id = uuid.uuid4()
        await service.record_many(
            company_id,
            [{"product_id": first["id"], "quantity": 2}, {"product_id": second["id"], "quantity": 5}],
            MovementType.OUT,
            "INVOICE",
            reference_id,
        )

        result = await service.reverse("INVOICE", reference_id)

        assert len(result.data) == 2
        assert all(m["reference_type"] == "INVOICE_REVERSAL" for m in result.data)
        assert all(m["movement_type"] == "IN" for m in result.data)
        assert net_quantity(db, first["id"], reference_id) == 0
        assert net_quantity(db, second["id"], reference_id) == 0
        assert db.get("products", first["id"])["stock_quantity"] == Decimal("20")
        assert db.get("products", second["id"])["stock_quantity"] == Decimal("20")

    @pytest.mark.asyncio
    async def test_reverse_twice_is_noop(self, service, db, factory, company_id):
        """Test secondo storno: nessun movimento aggiuntivo."""
        product = factory.product()
        reference_id = uuid.uuid4()
        await service.record(company_id, product["id"], MovementType.IN, 4, "CREDIT_NOTE", reference_id)

        await service.reverse("CREDIT_NOTE", reference_id)
        again = await service.reverse("CREDIT_NOTE", reference_id)

        assert again.data == []
        assert len(db.rows("stock_movements", reference_id=reference_id)) == 2

    @pytest.mark.asyncio
    async def test_reverse_after_new_movements(self, service, db, factory, company_id):
        """Test modifica documento: storno, nuovi movimenti, nuovo storno."""
        product = factory.product(stock=50)
        reference_id = uuid.uuid4()
        await service.record(company_id, product["id"], MovementType.OUT, 3, "INVOICE", reference_id)
        await service.reverse("INVOICE", reference_id)
        await service.record(company_id, product["id"], MovementType.OUT, 7, "INVOICE", reference_id)

        result = await service.reverse("INVOICE", reference_id)

        assert [m["quantity"] for m in result.data] == [Decimal("7")]
        assert net_quantity(db, product["id"], reference_id) == 0
        assert db.get("products", product["id"])["stock_quantity"] == Decimal("50")

    @pytest.mark.asyncio
    async def test_reverse_without_movements(self, service, db):
        result = await service.reverse("INVOICE", uuid.uuid4())

        assert result.data == []

    @pytest.mark.asyncio
    async def test_list_for_reference_includes_reversals(self, service, factory, company_id):
        product = factory.product()
        reference_id = uuid.uuid4()
        await service.record(company_id, product["id"], MovementType.OUT, 1, "INVOICE", reference_id)
        await service.reverse("INVOICE", reference_id)

        movements = await service.list_for_reference("INVOICE", reference_id)

        assert [m["reference_type"] for m in movements] == ["INVOICE", "INVOICE_REVERSAL"]

    def test_reversal_reference(self):
        assert reversal_reference("CREDIT_NOTE") == "CREDIT_NOTE_REVERSAL"


class TestBestEffort:
    """Tests per best_effort."""

    @pytest.mark.asyncio
    async def test_database_error_becomes_warning(self, service, db, factory, company_id):
        """Test errore di persistenza convertito in avviso."""
        product = factory.product()
        reference_id = uuid.uuid4()
        db.fail("insert_many", "stock_movements", kind=DbErrorKind.TIMEOUT)

        result = await best_effort(
            service.record(company_id, product["id"], MovementType.OUT, 1, "INVOICE", reference_id),
            step="stock_movements",
            reference_id=reference_id,
        )

        assert result.data == []
        assert result.warnings[0].step == "stock_movements"
        assert result.warnings[0].detail["reference_id"] == str(reference_id)
        assert result.warnings[0].detail["kind"] == "timeout"

    @pytest.mark.asyncio
    async def test_validation_error_propagates(self, service, factory, company_id):
        """Test errori di validazione non assorbiti."""
        product = factory.product()

        with pytest.raises(BusinessValidationError):
            await best_effort(
                service.record(company_id, product["id"], MovementType.OUT, -1, "INVOICE", uuid.uuid4()),
                step="stock_movements",
            )


class TestCompanyScope:
    """Tests per l'isolamento dei movimenti tra aziende."""

    @pytest.mark.asyncio
    async def test_reverse_ignores_other_company_movements(self, service, db):
        """Test storno richiesto da un'altra azienda: nessun movimento, giacenza invariata."""
        other_company = uuid.uuid4()
        product = DocumentFactory(db, other_company).product(stock=10)
        reference_id = uuid.uuid4()
        await StockMovementService(db).record(
            other_company, product["id"], MovementType.OUT, 3, "INVOICE", reference_id
        )

        result = await service.reverse("INVOICE", reference_id)

        assert result.data == []
        assert len(db.rows("stock_movements")) == 1
        assert db.get("products", product["id"])["stock_quantity"] == Decimal("7")

    @pytest.mark.asyncio
    async def test_list_for_reference_scoped(self, service, db):
        other_company = uuid.uuid4()
        product = DocumentFactory(db, other_company).product()
        reference_id = uuid.uuid4()
        await StockMovementService(db).record(
            other_company, product["id"], MovementType.OUT, 1, "INVOICE", reference_id
        )

        assert await service.list_for_reference("INVOICE", reference_id) == []
        assert len(await service.list_for_reference("INVOICE", reference_id, other_company)) == 1

    @pytest.mark.asyncio
    async def test_record_other_company_product_rejected(self, service, db, company_id):
        """Test prodotto di un'altra azienda: nessun movimento registrato."""
        product = DocumentFactory(db, uuid.uuid4()).product(stock=10)

        with pytest.raises(NotFoundError) as exc_info:
            await service.record(company_id, product["id"], MovementType.OUT, 2, "INVOICE", uuid.uuid4())

        assert exc_info.value.extra["product_ids"] == [str(product["id"])]
        assert db.rows("stock_movements") == []
        assert db.get("products", product["id"])["stock_quantity"] == Decimal("10")

    @pytest.mark.asyncio
    async def test_record_many_unknown_product_rejected(self, service, db, factory, company_id):
        own = factory.product()

        with pytest.raises(NotFoundError):
            await service.record_many(
                company_id,
                [{"product_id": own["id"], "quantity": 1}, {"product_id": uuid.uuid4(), "quantity": 1}],
                MovementType.OUT,
                "INVOICE",
                uuid.uuid4(),
            )

        assert db.rows("stock_movements") == []

    @pytest.mark.asyncio
    async def test_foreign_product_in_best_effort_is_warning(self, service, db, company_id):
        product = DocumentFactory(db, uuid.uuid4()).product()

        result = await best_effort(
            service.record(company_id, product["id"], MovementType.OUT, 1, "INVOICE", uuid.uuid4()),
            step="stock_movements",
        )

        assert result.data == []
        assert result.warnings[0].step == "stock_movements"

    @pytest.mark.asyncio
    async def test_reverse_without_company_rejected(self, db):
        with pytest.raises(BusinessValidationError):
            await StockMovementService(db).reverse("INVOICE", uuid.uuid4())
