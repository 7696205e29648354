"""
Unit tests per DocumentLifecycleService e append_status_note.
"""

import uuid

import pytest

from app.core.exceptions import InvalidStateError, NotFoundError
from app.schemas.common import DocumentType
from app.services.document_lifecycle import DocumentLifecycleService
from app.services.document_registry import append_status_note
from factories import line


@pytest.fixture
def service(db, user):
    return DocumentLifecycleService(db, user)


class TestUpdateStatus:
    """Tests per le transizioni manuali."""

    @pytest.mark.asyncio
    async def test_quotation_sent_then_accepted(self, service, db, factory, customer):
        quotation, _ = factory.quotation(customer, [line()], status="draft")

        await service.update_status(DocumentType.QUOTATION, quotation["id"], "sent")
        result = await service.update_status(
            DocumentType.QUOTATION, quotation["id"], "accepted", notes="Confermato via email"
        )

        assert result.data["status"] == "accepted"
        lines = result.data["notes"].splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("Status changed to sent")
        assert lines[1].endswith("Status changed to accepted: Confermato via email")

    @pytest.mark.asyncio
    async def test_transition_not_allowed(self, service, factory, customer):
        quotation, _ = factory.quotation(customer, [line()], status="draft")

        with pytest.raises(InvalidStateError) as exc_info:
            await service.update_status(DocumentType.QUOTATION, quotation["id"], "accepted")

        assert exc_info.value.extra["allowed"] == ["sent"]

    @pytest.mark.asyncio
    async def test_converted_reserved(self, service, factory, customer):
        """Test stato converted impostabile solo dalla conversione."""
        quotation, _ = factory.quotation(customer, [line()])

        with pytest.raises(InvalidStateError):
            await service.update_status(DocumentType.QUOTATION, quotation["id"], "converted")

    @pytest.mark.asyncio
    async def test_invoice_cancel_goes_through_invoice_rules(self, service, db, factory, customer):
        invoice, _ = factory.invoice(customer, [line()])

        result = await service.update_status(DocumentType.INVOICE, invoice["id"], "cancelled", "Duplicata")

        assert result.data["status"] == "cancelled"
        assert db.get("invoices", invoice["id"])["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_payment_states_not_manual(self, service, factory, customer):
        invoice, _ = factory.invoice(customer, [line()])

        with pytest.raises(InvalidStateError):
            await service.update_status(DocumentType.INVOICE, invoice["id"], "paid")

    @pytest.mark.asyncio
    async def test_delivery_note_dispatched(self, service, db, company_id, customer):
        note = db.seed(
            "delivery_notes",
            company_id=company_id,
            customer_id=customer["id"],
            delivery_note_number="DN-2024-0001",
            status="draft",
        )

        result = await service.update_status(DocumentType.DELIVERY_NOTE, note["id"], "dispatched")

        assert result.data["status"] == "dispatched"

    @pytest.mark.asyncio
    async def test_unknown_document(self, service):
        with pytest.raises(NotFoundError):
            await service.update_status(DocumentType.PROFORMA, uuid.uuid4(), "sent")


class TestAppendStatusNote:
    """Tests per la riga di storico nelle note."""

    def test_first_line(self):
        note = append_status_note(None, "sent", None)

        assert note.startswith("[")
        assert note.endswith("] Status changed to sent")

    def test_appends_on_new_line(self):
        note = append_status_note("Nota iniziale", "expired", "Scaduto")

        first, second = note.split("\n")
        assert first == "Nota iniziale"
        assert second.endswith("Status changed to expired: Scaduto")
