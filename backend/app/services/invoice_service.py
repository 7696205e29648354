import logging
import uuid
from decimal import Decimal
from typing import Optional

from app.core.config import settings
from app.core.datastore import Database, Row
from app.core.exceptions import BusinessValidationError, InvalidStateError, PermissionDeniedError
from app.schemas.common import (
    DocumentType,
    InvoiceStatus,
    MovementType,
    OperationResult,
    PartialFailureWarning,
    ReferenceType,
)
from app.schemas.document import ConversionResult, InvoiceUpdate
from app.schemas.token import CurrentUser
from app.services.audit_service import AuditService
from app.services.document_registry import append_status_note, load_document
from app.services.invoice_balance import derive_invoice_balance, invoice_patch
from app.services.stock_movement_service import StockMovementService, best_effort
from app.services.tax_calculator import ZERO, aggregate_items, item_row, round_money, to_decimal

logger = logging.getLogger(__name__)

DELETE_PERMISSION = "delete_invoice"


async def credited_total(db: Database, invoice_id: uuid.UUID) -> Decimal:
    """Somma dei crediti (note di credito) applicati alla fattura."""
    allocations = (
        await db.select("credit_note_allocations", {"invoice_id": invoice_id})
    ).unwrap()
    return round_money(sum((to_decimal(a["allocated_amount"]) for a in allocations), ZERO))


class InvoiceService:
    """
    Service per le modifiche dirette alle fatture.

    Args:
        db: Capability di persistenza
        current_user: Utente della richiesta
        audit: Service di audit (default: su `db`)
    """

    def __init__(
        self,
        db: Database,
        current_user: Optional[CurrentUser] = None,
        audit: Optional[AuditService] = None,
    ) -> None:
        self.db = db
        self.current_user = current_user
        self.stock = StockMovementService(db, current_user)
        self.audit = audit or AuditService(db, current_user)

    async def update_with_items(
        self,
        invoice_id: uuid.UUID,
        data: InvoiceUpdate,
    ) -> OperationResult[ConversionResult]:
        """
        Aggiorna una fattura sostituendone le righe.

        Storna i movimenti INVOICE esistenti, riscrive righe e totali,
        ricalcola saldo e stato e registra i nuovi movimenti OUT.
        Storni e nuovi movimenti sono best effort.

        Raises:
            NotFoundError: Fattura inesistente
            InvalidStateError: Fattura annullata
            BusinessValidationError: Nuovo totale inferiore a quanto già incassato
        """
        invoice, _ = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user, with_items=False
        )
        if invoice["status"] == InvoiceStatus.CANCELLED.value:
            raise InvalidStateError(f"La fattura {invoice['invoice_number']} è annullata")

        rows = [item_row(item, index) for index, item in enumerate(data.items)]
        totals = aggregate_items(data.items)

        paid = round_money(invoice.get("paid_amount") or ZERO)
        credited = await credited_total(self.db, invoice_id)
        if totals.total_amount < paid + credited - settings.money_tolerance:
            raise BusinessValidationError(
                "Il nuovo totale è inferiore a quanto già pagato o accreditato",
                extra={
                    "total_amount": str(totals.total_amount),
                    "paid_amount": str(paid),
                    "credited_amount": str(credited),
                },
            )

        invoice_date = data.invoice_date or invoice["invoice_date"]
        due_date = data.due_date or invoice.get("due_date")
        if due_date and due_date < invoice_date:
            raise BusinessValidationError("La data di scadenza non può precedere la data fattura")

        warnings = []
        reversal = await best_effort(
            self.stock.reverse(ReferenceType.INVOICE.value, invoice_id, invoice["company_id"]),
            step="stock_reversal",
            reference_id=invoice_id,
        )
        warnings.extend(reversal.warnings)

        balance = derive_invoice_balance(totals.total_amount, paid, invoice["status"], credited)
        header = data.model_dump(exclude_none=True, exclude={"items"})
        async with self.db.transaction():
            (await self.db.delete_many("invoice_items", {"invoice_id": invoice_id})).unwrap()
            items = (
                await self.db.insert_many(
                    "invoice_items",
                    [{**row, "invoice_id": invoice_id} for row in rows],
                )
            ).unwrap()
            updated = (
                await self.db.update(
                    "invoices",
                    invoice_id,
                    {
                        **header,
                        "subtotal": totals.subtotal,
                        "tax_amount": totals.tax_amount,
                        "total_amount": totals.total_amount,
                        **invoice_patch(balance),
                    },
                )
            ).unwrap()

        logger.info(
            "Fattura %s aggiornata: totale %s, stato %s",
            invoice["invoice_number"],
            totals.total_amount,
            balance.status,
        )

        stock_result = await best_effort(
            self.stock.record_many(
                invoice["company_id"],
                items,
                MovementType.OUT,
                ReferenceType.INVOICE.value,
                invoice_id,
                notes=f"Scarico per fattura {invoice['invoice_number']}",
            ),
            step="stock_movements",
            reference_id=invoice_id,
        )
        warnings.extend(stock_result.warnings)

        return OperationResult(
            data=ConversionResult(
                document_type=DocumentType.INVOICE,
                document=updated,
                items=items,
                stock_movements=stock_result.data,
            ),
            warnings=warnings,
        )

    async def cancel(self, invoice_id: uuid.UUID, notes: Optional[str] = None) -> OperationResult[Row]:
        """
        Annulla una fattura.

        Rifiutato se la fattura ha pagamenti allocati. I movimenti di
        magazzino della fattura e dei documenti di trasporto emessi
        su di essa vengono stornati (best effort).

        Raises:
            NotFoundError: Fattura inesistente
            InvalidStateError: Fattura già annullata o con pagamenti
        """
        invoice, _ = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user, with_items=False
        )
        if invoice["status"] == InvoiceStatus.CANCELLED.value:
            raise InvalidStateError(f"La fattura {invoice['invoice_number']} è già annullata")

        allocations = (
            await self.db.select("payment_allocations", {"invoice_id": invoice_id})
        ).unwrap()
        allocated = sum((to_decimal(a["amount"]) for a in allocations), ZERO)
        if allocated > settings.money_tolerance:
            raise InvalidStateError(
                "Impossibile annullare una fattura con pagamenti registrati",
                extra={"allocated_amount": str(round_money(allocated))},
            )

        updated = (
            await self.db.update(
                "invoices",
                invoice_id,
                {
                    "status": InvoiceStatus.CANCELLED.value,
                    "notes": append_status_note(
                        invoice.get("notes"), InvoiceStatus.CANCELLED.value, notes
                    ),
                },
            )
        ).unwrap()
        logger.info("Fattura %s annullata", invoice["invoice_number"])

        _, warnings = await self._reverse_stock(invoice)
        return OperationResult(data=updated, warnings=warnings)

    async def delete(self, invoice_id: uuid.UUID) -> OperationResult[None]:
        """
        Elimina una fattura annullandone gli effetti.

        Richiede il permesso `delete_invoice` (o un ruolo admin).
        Rifiutata se sulla fattura ci sono note di credito o se un suo
        pagamento ha una ricevuta emessa.

        In una transazione: storno dei movimenti della fattura e dei
        suoi documenti di trasporto, eliminazione di allocazioni, dei
        pagamenti rimasti senza allocazioni, delle righe e della
        fattura, voce di audit. Se l'audit non può essere scritto la
        cancellazione viene annullata.

        Raises:
            PermissionDeniedError: Utente senza permesso
            NotFoundError: Fattura inesistente
            InvalidStateError: Note di credito o ricevute collegate
            DatabaseOperationError: Se una scrittura obbligatoria fallisce
        """
        if self.current_user is None or not self.current_user.has_permission(DELETE_PERMISSION):
            logger.warning(
                "Cancellazione fattura %s negata all'utente %s",
                invoice_id,
                self.current_user.id if self.current_user else None,
            )
            raise PermissionDeniedError("Permesso delete_invoice richiesto per eliminare una fattura")

        invoice, items = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user
        )

        credit_notes = (await self.db.select("credit_notes", {"invoice_id": invoice_id})).unwrap()
        if credit_notes:
            raise InvalidStateError(
                "La fattura ha note di credito collegate e non può essere eliminata",
                extra={"credit_note_number": credit_notes[0].get("credit_note_number")},
            )

        allocations = (
            await self.db.select("payment_allocations", {"invoice_id": invoice_id})
        ).unwrap()
        payment_ids = list(dict.fromkeys(a["payment_id"] for a in allocations))
        if payment_ids:
            receipts = (await self.db.select("receipts", {"payment_id": payment_ids})).unwrap()
            if receipts:
                raise InvalidStateError(
                    "Un pagamento della fattura ha una ricevuta emessa: eliminare prima la ricevuta",
                    extra={"receipt_number": receipts[0].get("receipt_number")},
                )

        async with self.db.transaction():
            reversals, warnings = await self._reverse_stock(invoice)

            (await self.db.delete_many("payment_allocations", {"invoice_id": invoice_id})).unwrap()
            deleted_payments = []
            for payment_id in payment_ids:
                remaining = (
                    await self.db.select("payment_allocations", {"payment_id": payment_id})
                ).unwrap()
                if not remaining:
                    (await self.db.delete("payments", payment_id)).unwrap()
                    deleted_payments.append(payment_id)

            (await self.db.delete_many("invoice_items", {"invoice_id": invoice_id})).unwrap()
            (await self.db.delete("invoices", invoice_id)).unwrap()

            await self.audit.record(
                "DELETE",
                "invoice",
                invoice_id,
                invoice["company_id"],
                {
                    "invoice_number": invoice["invoice_number"],
                    "customer_id": invoice["customer_id"],
                    "status": invoice["status"],
                    "total_amount": invoice["total_amount"],
                    "paid_amount": invoice.get("paid_amount"),
                    "items_count": len(items),
                    "allocations_count": len(allocations),
                    "deleted_payments": deleted_payments,
                    "stock_movements_reversed": reversals,
                },
            )

        logger.info(
            "Fattura %s eliminata (%d pagamenti rimossi)",
            invoice["invoice_number"],
            len(deleted_payments),
        )
        return OperationResult(data=None, warnings=warnings)

    async def _reverse_stock(self, invoice: Row) -> tuple[int, list[PartialFailureWarning]]:
        """Storna (best effort) i movimenti della fattura e dei suoi documenti di trasporto."""
        company_id = invoice["company_id"]
        result = await best_effort(
            self.stock.reverse(ReferenceType.INVOICE.value, invoice["id"], company_id),
            step="stock_reversal",
            reference_id=invoice["id"],
        )
        reversed_count = len(result.data)
        warnings = list(result.warnings)

        delivery_notes = (
            await self.db.select(
                "delivery_notes", {"invoice_id": invoice["id"], "company_id": company_id}
            )
        ).unwrap()
        for note in delivery_notes:
            result = await best_effort(
                self.stock.reverse(ReferenceType.DELIVERY_NOTE.value, note["id"], company_id),
                step="delivery_note_stock_reversal",
                reference_id=note["id"],
            )
            reversed_count += len(result.data)
            warnings.extend(result.warnings)
        return reversed_count, warnings
