"""
Unit tests per ReceiptService (ricevute dirette).
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from app.core.exceptions import (
    BusinessValidationError,
    DatabaseOperationError,
    NotFoundError,
    PermissionDeniedError,
)
from app.schemas.common import PaymentMethod
from app.schemas.payment import DirectReceiptCreate
from app.services.receipt_service import ReceiptService
from factories import DocumentFactory, line


@pytest.fixture
def service(db, numbers, user):
    return ReceiptService(db, numbers, user)


def receipt_request(customer, amount, items=None, **fields) -> DirectReceiptCreate:
    return DirectReceiptCreate(
        customer_id=customer["id"],
        payment_amount=Decimal(str(amount)),
        payment_method=PaymentMethod.CASH,
        payment_date=date(2024, 5, 2),
        items=items,
        **fields,
    )


class TestDirectReceipt:
    """Tests per la creazione di ricevute dirette."""

    @pytest.mark.asyncio
    async def test_overpayment_records_excess(self, service, db, customer):
        """Test 300 pagati su 282: allocati 282, eccedenza 18 in attesa."""
        items = [line(quantity=2, unit_price=100, tax=16), line(quantity=1, unit_price=50)]

        result = await service.create_direct_receipt(receipt_request(customer, 300, items))

        data = result.data
        assert data.excess_amount == Decimal("18.00")
        assert data.invoice["total_amount"] == Decimal("282.00")
        assert data.invoice["status"] == "paid"
        assert data.invoice["balance_due"] == Decimal("0.00")
        assert data.allocation["amount"] == Decimal("282.00")
        assert data.payment["amount"] == Decimal("300.00")
        assert data.receipt["excess_amount"] == Decimal("18.00")
        assert data.receipt["excess_handling"] == "pending"
        assert data.receipt["receipt_type"] == "direct"
        assert data.receipt["receipt_number"] == "REC-2024-0001"
        assert data.invoice["invoice_number"] == "INV-2024-0001"
        assert data.payment["payment_number"] == "PAY-2024-0001"
        assert len(data.receipt_items) == 2
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_default_single_line(self, service, customer):
        """Test senza righe: riga unica pari all'importo pagato."""
        result = await service.create_direct_receipt(receipt_request(customer, 150))

        data = result.data
        assert data.invoice["total_amount"] == Decimal("150.00")
        assert data.excess_amount == Decimal("0.00")
        assert data.invoice_items[0]["description"] == "Vendita diretta"

    @pytest.mark.asyncio
    async def test_invoice_amount_lower_than_payment(self, service, customer):
        result = await service.create_direct_receipt(
            receipt_request(customer, 150, invoice_amount=Decimal("100"))
        )

        assert result.data.excess_amount == Decimal("50.00")
        assert result.data.allocation["amount"] == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_underpayment_leaves_partial_invoice(self, service, customer):
        result = await service.create_direct_receipt(
            receipt_request(customer, 40, invoice_amount=Decimal("100"))
        )

        assert result.data.invoice["status"] == "partial"
        assert result.data.invoice["balance_due"] == Decimal("60.00")
        assert result.data.excess_amount == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_products_generate_stock_movements(self, service, db, factory, customer):
        product = factory.product(stock=10)

        result = await service.create_direct_receipt(
            receipt_request(customer, 30, [line(quantity=3, unit_price=10, product=product)])
        )

        movements = db.rows("stock_movements", reference_id=result.data.invoice["id"])
        assert [m["movement_type"] for m in movements] == ["OUT"]
        assert db.get("products", product["id"])["stock_quantity"] == Decimal("7")

    @pytest.mark.asyncio
    async def test_failure_rolls_back_everything(self, service, db, customer):
        """Test errore sulla ricevuta: nessuna entità scritta."""
        db.fail("insert", "receipts")

        with pytest.raises(DatabaseOperationError):
            await service.create_direct_receipt(receipt_request(customer, 100))

        for table in ("invoices", "invoice_items", "payments", "payment_allocations", "receipts"):
            assert db.rows(table) == []

    @pytest.mark.asyncio
    async def test_free_invoice_rejected(self, service, customer):
        with pytest.raises(BusinessValidationError):
            await service.create_direct_receipt(
                receipt_request(customer, 10, [line(unit_price=0)])
            )

    @pytest.mark.asyncio
    async def test_customer_of_other_company(self, service, db):
        stranger = DocumentFactory(db, uuid.uuid4()).customer()

        with pytest.raises(NotFoundError):
            await service.create_direct_receipt(receipt_request(stranger, 10))

    @pytest.mark.asyncio
    async def test_other_company_rejected(self, service, customer):
        with pytest.raises(PermissionDeniedError):
            await service.create_direct_receipt(receipt_request(customer, 10), company_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_get_receipt(self, service, customer):
        created = await service.create_direct_receipt(receipt_request(customer, 10))

        receipt = await service.get_receipt(created.data.receipt["id"])

        assert receipt["receipt_number"] == created.data.receipt["receipt_number"]

    @pytest.mark.asyncio
    async def test_get_unknown_receipt(self, service):
        with pytest.raises(NotFoundError):
            await service.get_receipt(uuid.uuid4())
