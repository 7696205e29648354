"""
Unit tests per ConversionService.

Copre le conversioni supportate, i passi best effort (magazzino,
stato della sorgente) e la numerazione concorrente.
"""

import asyncio
import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.core.config import settings
from app.core.datastore import DbErrorKind
from app.core.exceptions import (
    BusinessValidationError,
    DatabaseOperationError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
)
from app.schemas.common import DocumentType
from app.schemas.document import ConversionOverrides
from app.services import conversion_service as conversion_module
from app.services.conversion_service import ConversionService
from factories import DocumentFactory, line


@pytest.fixture
def service(db, numbers, user):
    return ConversionService(db, numbers, user)


@pytest.fixture
def products(factory):
    return factory.product(stock=10, name="Filtro olio"), factory.product(stock=10, name="Kit")


@pytest.fixture
def quotation(factory, customer, products):
    """Preventivo accettato: 2 × 100 al 16% + 1 × 50 esente."""
    filter_, kit = products
    document, _ = factory.quotation(
        customer,
        [
            line("Filtro olio", quantity=2, unit_price=100, tax=16, product=filter_),
            line("Kit", quantity=1, unit_price=50, tax=0, product=kit),
        ],
    )
    return document


class TestQuotationToInvoice:
    """Tests per la conversione preventivo → fattura."""

    @pytest.mark.asyncio
    async def test_convert_creates_invoice_with_computed_totals(self, service, db, quotation, products):
        """Test conversione completa: totali, stato sorgente, movimenti."""
        result = await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        invoice = result.data.document
        assert result.warnings == []
        assert invoice["subtotal"] == Decimal("250.00")
        assert invoice["tax_amount"] == Decimal("32.00")
        assert invoice["total_amount"] == Decimal("282.00")
        assert invoice["paid_amount"] == Decimal("0.00")
        assert invoice["balance_due"] == Decimal("282.00")
        assert invoice["status"] == "sent"
        assert invoice["invoice_number"] == f"INV-{date.today().year}-0001"
        assert invoice["due_date"] == date.today() + timedelta(days=settings.invoice_due_days)
        assert invoice["source_document_id"] == quotation["id"]
        assert len(result.data.items) == 2

        assert result.data.source_status_updated is True
        assert db.get("quotations", quotation["id"])["status"] == "converted"

        movements = result.data.stock_movements
        assert len(movements) == 2
        assert {m["movement_type"] for m in movements} == {"OUT"}
        assert {m["reference_type"] for m in movements} == {"INVOICE"}
        assert {m["reference_id"] for m in movements} == {invoice["id"]}

        filter_, kit = products
        assert db.get("products", filter_["id"])["stock_quantity"] == Decimal("8")
        assert db.get("products", kit["id"])["stock_quantity"] == Decimal("9")

    @pytest.mark.asyncio
    async def test_convert_twice_rejected(self, service, db, quotation):
        """Test preventivo già convertito: seconda conversione rifiutata."""
        await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        with pytest.raises(InvalidStateError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert len(db.rows("invoices")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_conversions_of_same_quotation(self, service, db, quotation, products):
        """Test due conversioni parallele dello stesso preventivo: una sola fattura."""
        results = await asyncio.gather(
            service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE),
            service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateError)
        assert len(db.rows("invoices")) == 1
        assert db.get("quotations", quotation["id"])["status"] == "converted"
        assert db.get("products", products[0]["id"])["stock_quantity"] == Decimal("8")

    @pytest.mark.asyncio
    async def test_quotation_being_converted_rejected(self, service, db, quotation):
        """Test sorgente già prenotata da un'altra conversione."""
        db.tables["quotations"][quotation["id"]]["status"] = "converting"

        with pytest.raises(InvalidStateError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert db.rows("invoices") == []

    @pytest.mark.asyncio
    async def test_lost_claim_rolls_back_insert(self, service, db, quotation):
        """Test stato cambiato dopo la lettura: prenotazione fallita, nessuna fattura."""
        db.fail("rpc", "claim_conversion", kind=DbErrorKind.NOT_FOUND)

        with pytest.raises(InvalidStateError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert db.rows("invoices") == []
        assert db.get("quotations", quotation["id"])["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_rejected_quotation_not_convertible(self, service, factory, customer):
        quotation, _ = factory.quotation(customer, [line()], status="rejected")

        with pytest.raises(InvalidStateError) as exc_info:
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert exc_info.value.extra["status"] == "rejected"

    @pytest.mark.asyncio
    async def test_draft_quotation_convertible_by_default(self, service, factory, customer):
        quotation, _ = factory.quotation(customer, [line()], status="draft")

        result = await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert result.data.document["total_amount"] == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_strict_mode_requires_accepted(self, service, factory, customer, monkeypatch):
        """Test modalità rigida: solo preventivi accettati."""
        monkeypatch.setattr(
            conversion_module,
            "settings",
            settings.model_copy(update={"require_accepted_quotation": True}),
        )
        quotation, _ = factory.quotation(customer, [line()], status="sent")

        with pytest.raises(InvalidStateError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

    @pytest.mark.asyncio
    async def test_source_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.convert(uuid.uuid4(), DocumentType.QUOTATION, DocumentType.INVOICE)

    @pytest.mark.asyncio
    async def test_source_of_other_company_not_found(self, service, db):
        """Test documento di un'altra azienda trattato come inesistente."""
        other = DocumentFactory(db, uuid.uuid4())
        quotation, _ = other.quotation(other.customer(), [line()])

        with pytest.raises(NotFoundError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

    @pytest.mark.asyncio
    async def test_unsupported_conversion(self, service, quotation):
        with pytest.raises(BusinessValidationError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.DELIVERY_NOTE)

    @pytest.mark.asyncio
    async def test_quotation_without_items_rejected(self, service, factory, customer):
        quotation, _ = factory.quotation(customer, [])

        with pytest.raises(BusinessValidationError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)


class TestOverrides:
    """Tests per le modifiche applicate in conversione."""

    @pytest.mark.asyncio
    async def test_override_items_replace_source_items(self, service, quotation):
        overrides = ConversionOverrides(
            items=[line("Riga modificata", quantity=3, unit_price=10, tax=0)],
            due_date=date(2030, 1, 31),
            lpo_number="LPO-77",
        )

        result = await service.convert(
            quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE, overrides
        )

        invoice = result.data.document
        assert invoice["total_amount"] == Decimal("30.00")
        assert invoice["due_date"] == date(2030, 1, 31)
        assert invoice["lpo_number"] == "LPO-77"
        assert result.data.stock_movements == []

    @pytest.mark.asyncio
    async def test_supplied_totals_replaced_by_computed(self, service, quotation):
        """Test totali forniti diversi: prevalgono i ricalcolati, con avviso."""
        overrides = ConversionOverrides(total_amount=Decimal("300.00"), tax_amount=Decimal("32.00"))

        result = await service.convert(
            quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE, overrides
        )

        assert result.data.document["total_amount"] == Decimal("282.00")
        warning = result.warnings[0]
        assert warning.step == "totals_override"
        assert set(warning.detail) == {"total_amount"}

    @pytest.mark.asyncio
    async def test_matching_totals_no_warning(self, service, quotation):
        overrides = ConversionOverrides(total_amount=Decimal("282.004"))

        result = await service.convert(
            quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE, overrides
        )

        assert result.warnings == []


class TestPartialFailures:
    """Tests per i passi best effort e per quelli obbligatori."""

    @pytest.mark.asyncio
    async def test_stock_failure_keeps_invoice(self, service, db, quotation):
        """Test movimenti non registrati: fattura creata e avviso."""
        db.fail("insert_many", "stock_movements", kind=DbErrorKind.CONNECTION)

        result = await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert len(db.rows("invoices")) == 1
        assert result.data.stock_movements == []
        assert [w.step for w in result.warnings] == ["stock_movements"]
        assert db.get("quotations", quotation["id"])["status"] == "converted"

    @pytest.mark.asyncio
    async def test_source_status_failure_is_warning(self, service, db, quotation):
        """Test stato sorgente non aggiornato: fattura valida e avviso."""
        db.fail("update", "quotations")

        result = await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert result.data.source_status_updated is False
        assert [w.step for w in result.warnings] == ["source_status"]
        assert db.get("quotations", quotation["id"])["status"] == "converting"
        assert len(db.rows("invoices")) == 1

    @pytest.mark.asyncio
    async def test_missing_user_profile_retries_without_created_by(self, service, db, quotation):
        """Test foreign key su created_by: reinserimento con created_by nullo."""
        db.fail(
            "insert",
            "invoices",
            kind=DbErrorKind.FOREIGN_KEY_VIOLATION,
            column="created_by",
            times=1,
        )

        result = await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert result.data.document["created_by"] is None
        assert [w.step for w in result.warnings] == ["created_by"]

    @pytest.mark.asyncio
    async def test_other_foreign_key_error_raises(self, service, db, quotation):
        db.fail("insert", "invoices", kind=DbErrorKind.FOREIGN_KEY_VIOLATION, column="customer_id")

        with pytest.raises(DatabaseOperationError) as exc_info:
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert exc_info.value.extra == {"kind": "foreign_key_violation", "column": "customer_id"}
        assert db.get("quotations", quotation["id"])["status"] == "accepted"

    @pytest.mark.asyncio
    async def test_items_failure_rolls_back_header(self, service, db, quotation, products):
        """Test errore sulle righe: nessuna fattura, nessun movimento."""
        db.fail("insert_many", "invoice_items")

        with pytest.raises(DatabaseOperationError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert db.rows("invoices") == []
        assert db.rows("stock_movements") == []
        assert db.get("products", products[0]["id"])["stock_quantity"] == Decimal("10")

    @pytest.mark.asyncio
    async def test_numbering_failure_raises(self, service, db, quotation):
        db.fail("rpc", "next_document_number", kind=DbErrorKind.CONNECTION)

        with pytest.raises(DatabaseOperationError):
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert db.rows("invoices") == []

    @pytest.mark.asyncio
    async def test_timeout(self, service, db, quotation, monkeypatch):
        """Test conversione oltre il tempo massimo."""
        monkeypatch.setattr(
            conversion_module,
            "settings",
            settings.model_copy(update={"conversion_timeout_seconds": 0.05}),
        )
        db.delay = 0.02

        with pytest.raises(OperationTimeoutError) as exc_info:
            await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.INVOICE)

        assert exc_info.value.extra["timeout_seconds"] == 0.05


class TestOtherConversions:
    """Tests per proforma, documento di trasporto e nota di credito."""

    @pytest.mark.asyncio
    async def test_quotation_to_proforma(self, service, db, quotation):
        result = await service.convert(quotation["id"], DocumentType.QUOTATION, DocumentType.PROFORMA)

        proforma = result.data.document
        assert proforma["proforma_number"].startswith("PRO-")
        assert proforma["status"] == "draft"
        assert proforma["total_amount"] == Decimal("282.00")
        assert proforma["valid_until"] == quotation["valid_until"]
        assert result.data.stock_movements == []
        assert db.get("quotations", quotation["id"])["status"] == "converted"

    @pytest.mark.asyncio
    async def test_proforma_to_invoice(self, service, db, factory, customer, products):
        proforma, _ = factory.proforma(
            customer, [line(quantity=4, unit_price=25, tax=16, product=products[0])]
        )

        result = await service.convert(proforma["id"], DocumentType.PROFORMA, DocumentType.INVOICE)

        assert result.data.document["total_amount"] == Decimal("116.00")
        assert len(result.data.stock_movements) == 1
        assert db.get("proforma_invoices", proforma["id"])["status"] == "converted"

    @pytest.mark.asyncio
    async def test_invoice_to_delivery_note(self, service, db, factory, customer, products):
        """Test documento di trasporto: quantità ordinate/consegnate e scarico."""
        invoice, invoice_items = factory.invoice(
            customer, [line(quantity=5, unit_price=10, product=products[0]), line("Servizio")]
        )
        overrides = ConversionOverrides(
            items=[
                line(
                    quantity=3,
                    unit_price=10,
                    product=products[0],
                    source_item_id=invoice_items[0]["id"],
                )
            ],
            delivery_address="Via Roma 1",
        )

        result = await service.convert(
            invoice["id"], DocumentType.INVOICE, DocumentType.DELIVERY_NOTE, overrides
        )

        note = result.data.document
        assert note["delivery_note_number"].startswith("DN-")
        assert note["invoice_id"] == invoice["id"]
        assert note["delivery_address"] == "Via Roma 1"
        item = result.data.items[0]
        assert item["quantity_ordered"] == Decimal("5")
        assert item["quantity_delivered"] == Decimal("3")
        assert [m["reference_type"] for m in result.data.stock_movements] == ["DELIVERY_NOTE"]
        assert db.get("invoices", invoice["id"])["status"] == "sent"

    @pytest.mark.asyncio
    async def test_delivery_note_exceeding_invoice_rejected(self, service, db, factory, customer, products):
        invoice, _ = factory.invoice(customer, [line(quantity=2, product=products[0])])
        overrides = ConversionOverrides(items=[line(quantity=3, product=products[0])])

        with pytest.raises(BusinessValidationError):
            await service.convert(
                invoice["id"], DocumentType.INVOICE, DocumentType.DELIVERY_NOTE, overrides
            )

        assert db.rows("delivery_notes") == []

    @pytest.mark.asyncio
    async def test_delivery_note_unknown_product_rejected(self, service, factory, customer, products):
        invoice, _ = factory.invoice(customer, [line(quantity=2, product=products[0])])
        overrides = ConversionOverrides(items=[line(quantity=1, product=products[1])])

        with pytest.raises(BusinessValidationError):
            await service.convert(
                invoice["id"], DocumentType.INVOICE, DocumentType.DELIVERY_NOTE, overrides
            )

    @pytest.mark.asyncio
    async def test_invoice_to_credit_note(self, service, db, factory, customer):
        invoice, _ = factory.invoice(customer, [line(quantity=2, unit_price=100, tax=16)])

        result = await service.convert(invoice["id"], DocumentType.INVOICE, DocumentType.CREDIT_NOTE)

        note = result.data.document
        assert result.data.document_type == DocumentType.CREDIT_NOTE
        assert note["total_amount"] == Decimal("232.00")
        assert note["balance"] == Decimal("232.00")
        assert note["invoice_id"] == invoice["id"]
        assert note["reason"] == "Invoice conversion"
        assert note["status"] == "draft"
        assert db.get("invoices", invoice["id"])["status"] == "sent"

    @pytest.mark.asyncio
    async def test_cancelled_invoice_not_convertible(self, service, factory, customer):
        invoice, _ = factory.invoice(customer, [line()], status="cancelled")

        with pytest.raises(InvalidStateError):
            await service.convert(invoice["id"], DocumentType.INVOICE, DocumentType.DELIVERY_NOTE)


class TestConcurrentNumbering:
    """Tests per la numerazione con conversioni concorrenti."""

    @pytest.mark.asyncio
    async def test_concurrent_conversions_get_distinct_numbers(self, service, factory, customer):
        """Test conversioni parallele: numeri documento tutti diversi."""
        quotations = [factory.quotation(customer, [line()])[0] for _ in range(5)]

        results = await asyncio.gather(
            *(
                service.convert(q["id"], DocumentType.QUOTATION, DocumentType.INVOICE)
                for q in quotations
            )
        )

        numbers = [r.data.document["invoice_number"] for r in results]
        assert len(set(numbers)) == 5
        year = date.today().year
        assert sorted(numbers) == [f"INV-{year}-{n:04d}" for n in range(1, 6)]
