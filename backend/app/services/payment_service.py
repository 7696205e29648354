"""
Service Layer per Pagamenti e Allocazioni
Progetto: Business Manager (Gestionale Commerciale)

Le allocazioni (payment_allocations) sono la fonte di verità per
paid_amount delle fatture; saldo e stato sono derivati con la regola
di app.services.invoice_balance.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from app.core.config import settings
from app.core.datastore import Database, Row
from app.core.exceptions import AppException, BusinessValidationError, InvalidStateError, NotFoundError
from app.core.timeouts import run_with_timeout
from app.schemas.common import DocumentType, InvoiceStatus, OperationResult, PartialFailureWarning
from app.schemas.payment import (
    PaymentCreate,
    PaymentResult,
    PaymentUpdate,
    ReconciliationReport,
)
from app.schemas.token import CurrentUser
from app.services.document_registry import ensure_company, insert_document, load_document
from app.services.invoice_balance import derive_invoice_balance, invoice_patch
from app.services.invoice_service import credited_total
from app.services.number_generator import DocumentNumberGenerator
from app.services.tax_calculator import ZERO, aggregate_items, round_money, to_decimal

logger = logging.getLogger(__name__)

_MONEY_FIELDS = ("subtotal", "tax_amount", "total_amount", "paid_amount", "balance_due")


async def allocated_total(db: Database, invoice_id: uuid.UUID) -> Decimal:
    """Somma delle allocazioni di pagamento sulla fattura."""
    allocations = (await db.select("payment_allocations", {"invoice_id": invoice_id})).unwrap()
    return round_money(sum((to_decimal(a["amount"]) for a in allocations), ZERO))


async def recompute_invoice_balance(
    db: Database,
    invoice_id: uuid.UUID,
    reset_unpaid: bool = False,
) -> Row:
    """
    Ricalcola paid_amount, balance_due e stato di una fattura da
    allocazioni di pagamento e crediti applicati, e li salva.

    Raises:
        NotFoundError: Fattura inesistente
        DatabaseOperationError: Se lettura o scrittura falliscono
    """
    invoice = (await db.select_one("invoices", invoice_id)).unwrap()
    if invoice is None:
        raise NotFoundError(f"Fattura {invoice_id} non trovata")

    balance = derive_invoice_balance(
        invoice["total_amount"],
        await allocated_total(db, invoice_id),
        invoice["status"],
        await credited_total(db, invoice_id),
        reset_unpaid=reset_unpaid,
    )
    updated = (await db.update("invoices", invoice_id, invoice_patch(balance))).unwrap()
    logger.debug(
        "Fattura %s ricalcolata: pagato %s, saldo %s, stato %s",
        invoice.get("invoice_number"),
        balance.paid_amount,
        balance.balance_due,
        balance.status,
    )
    return updated


class PaymentService:
    """
    Service per la registrazione dei pagamenti.

    Args:
        db: Capability di persistenza
        numbers: Generatore numeri documento
        current_user: Utente della richiesta
    """

    def __init__(
        self,
        db: Database,
        numbers: DocumentNumberGenerator,
        current_user: Optional[CurrentUser] = None,
    ) -> None:
        self.db = db
        self.numbers = numbers
        self.current_user = current_user

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create_payment(self, data: PaymentCreate) -> OperationResult[PaymentResult]:
        """
        Registra un pagamento e lo alloca interamente sulla fattura.

        Il pagamento è il passo obbligatorio. Se l'allocazione o il
        ricalcolo della fattura falliscono il pagamento resta registrato
        (da riconciliare) e l'errore viene restituito come avviso.

        Raises:
            NotFoundError: Fattura inesistente
            InvalidStateError: Fattura annullata
            OperationTimeoutError: Tempo massimo superato
        """
        return await run_with_timeout(
            self._create_payment(data),
            settings.payment_timeout_seconds,
            "create_payment",
        )

    async def _create_payment(self, data: PaymentCreate) -> OperationResult[PaymentResult]:
        invoice, _ = await load_document(
            self.db, DocumentType.INVOICE, data.invoice_id, self.current_user, with_items=False
        )
        if invoice["status"] == InvoiceStatus.CANCELLED.value:
            raise InvalidStateError(
                f"Impossibile registrare pagamenti sulla fattura annullata {invoice['invoice_number']}"
            )

        amount = round_money(data.amount)
        number = await self.numbers.generate(
            invoice["company_id"], DocumentType.PAYMENT, data.payment_date
        )
        payment, warnings = await insert_document(
            self.db,
            "payments",
            {
                "company_id": invoice["company_id"],
                "customer_id": invoice["customer_id"],
                "invoice_id": invoice["id"],
                "payment_number": number,
                "payment_date": data.payment_date,
                "payment_method": data.payment_method.value,
                "amount": amount,
                "reference_number": data.reference_number,
                "notes": data.notes,
                "created_by": self.current_user.id if self.current_user else None,
            },
        )
        logger.info(
            "Pagamento %s di %s registrato sulla fattura %s",
            number,
            amount,
            invoice["invoice_number"],
        )

        result = await self.db.insert(
            "payment_allocations",
            {"payment_id": payment["id"], "invoice_id": invoice["id"], "amount": amount},
        )
        if not result.ok:
            logger.warning(
                "Allocazione del pagamento %s fallita: %s", number, result.error.message
            )
            warnings.append(
                PartialFailureWarning(
                    step="allocation",
                    message="Pagamento registrato ma non allocato: riconciliare manualmente",
                    detail={"payment_id": str(payment["id"]), "error_kind": result.error.kind.value},
                )
            )
            return OperationResult(data=PaymentResult(payment=payment), warnings=warnings)

        invoices = []
        try:
            invoices.append(await recompute_invoice_balance(self.db, invoice["id"]))
        except AppException as exc:
            logger.warning(
                "Ricalcolo saldo fattura %s fallito: %s", invoice["invoice_number"], exc.detail
            )
            warnings.append(
                PartialFailureWarning(
                    step="invoice_balance",
                    message="Saldo fattura non aggiornato: eseguire la riconciliazione",
                    detail={"invoice_id": str(invoice["id"]), **exc.extra},
                )
            )

        return OperationResult(
            data=PaymentResult(payment=payment, allocation=result.data, invoices=invoices),
            warnings=warnings,
        )

    # ------------------------------------------------------------
    # Modifica
    # ------------------------------------------------------------

    async def update_payment(
        self, payment_id: uuid.UUID, data: PaymentUpdate
    ) -> OperationResult[PaymentResult]:
        """
        Corregge un pagamento.

        Se l'importo cambia oltre la tolleranza, la differenza viene
        sommata al paid_amount di ogni fattura coinvolta (le allocazioni
        degli altri pagamenti restano invariate) e saldo/stato vengono
        ricalcolati.

        Raises:
            NotFoundError: Pagamento inesistente
            InvalidStateError: Importo modificato su un pagamento con ricevuta emessa
            BusinessValidationError: Se un'allocazione diventerebbe negativa
            OperationTimeoutError: Tempo massimo superato
        """
        return await run_with_timeout(
            self._update_payment(payment_id, data),
            settings.payment_timeout_seconds,
            "update_payment",
        )

    async def _update_payment(
        self, payment_id: uuid.UUID, data: PaymentUpdate
    ) -> OperationResult[PaymentResult]:
        payment = await self._load_payment(payment_id)
        old_amount = round_money(payment["amount"])
        new_amount = round_money(data.amount) if data.amount is not None else old_amount
        delta = new_amount - old_amount

        patch: dict[str, Any] = data.model_dump(exclude_none=True)
        if "payment_method" in patch:
            patch["payment_method"] = data.payment_method.value
        patch["amount"] = new_amount

        allocations: list[Row] = []
        if abs(delta) > settings.money_tolerance:
            receipts = (await self.db.select("receipts", {"payment_id": payment_id})).unwrap()
            if receipts:
                raise InvalidStateError(
                    "Il pagamento ha una ricevuta emessa: l'importo non può essere modificato",
                    extra={"receipt_number": receipts[0].get("receipt_number")},
                )
            allocations = (
                await self.db.select("payment_allocations", {"payment_id": payment_id})
            ).unwrap()
            for allocation in allocations:
                if to_decimal(allocation["amount"]) + delta < ZERO:
                    raise BusinessValidationError(
                        "La riduzione supera l'importo allocato sulla fattura",
                        extra={
                            "invoice_id": str(allocation["invoice_id"]),
                            "allocated": str(allocation["amount"]),
                            "delta": str(delta),
                        },
                    )

        async with self.db.transaction():
            updated = (await self.db.update("payments", payment_id, patch)).unwrap()
            if abs(delta) <= settings.money_tolerance:
                return OperationResult(data=PaymentResult(payment=updated))

            invoices = []
            new_allocations = []
            for allocation in allocations:
                new_allocations.append(
                    (
                        await self.db.update(
                            "payment_allocations",
                            allocation["id"],
                            {"amount": round_money(to_decimal(allocation["amount"]) + delta)},
                        )
                    ).unwrap()
                )
                invoices.append(await self._apply_delta(allocation["invoice_id"], delta))

        logger.info(
            "Pagamento %s modificato: %s → %s (%d fatture ricalcolate)",
            payment.get("payment_number"),
            old_amount,
            new_amount,
            len(invoices),
        )
        return OperationResult(
            data=PaymentResult(
                payment=updated,
                allocation=new_allocations[0] if new_allocations else None,
                invoices=invoices,
            )
        )

    async def _apply_delta(self, invoice_id: uuid.UUID, delta: Decimal) -> Row:
        invoice = (await self.db.select_one("invoices", invoice_id)).unwrap()
        if invoice is None:
            raise NotFoundError(f"Fattura {invoice_id} non trovata")
        balance = derive_invoice_balance(
            invoice["total_amount"],
            max(to_decimal(invoice.get("paid_amount") or 0) + delta, ZERO),
            invoice["status"],
            await credited_total(self.db, invoice_id),
            reset_unpaid=True,
        )
        return (await self.db.update("invoices", invoice_id, invoice_patch(balance))).unwrap()

    # ------------------------------------------------------------
    # Cancellazione
    # ------------------------------------------------------------

    async def delete_payment(self, payment_id: uuid.UUID) -> OperationResult[PaymentResult]:
        """
        Elimina un pagamento e le sue allocazioni.

        Le fatture coinvolte vengono ricalcolate dalle allocazioni
        rimanenti; se non resta nulla di pagato tornano a `sent`.

        Raises:
            NotFoundError: Pagamento inesistente
            InvalidStateError: Pagamento con ricevuta emessa
        """
        payment = await self._load_payment(payment_id)
        receipts = (await self.db.select("receipts", {"payment_id": payment_id})).unwrap()
        if receipts:
            raise InvalidStateError(
                "Il pagamento ha una ricevuta emessa e non può essere eliminato",
                extra={"receipt_number": receipts[0].get("receipt_number")},
            )

        allocations = (
            await self.db.select("payment_allocations", {"payment_id": payment_id})
        ).unwrap()
        invoice_ids = list(dict.fromkeys(a["invoice_id"] for a in allocations))

        async with self.db.transaction():
            (await self.db.delete_many("payment_allocations", {"payment_id": payment_id})).unwrap()
            (await self.db.delete("payments", payment_id)).unwrap()
            invoices = [
                await recompute_invoice_balance(self.db, invoice_id, reset_unpaid=True)
                for invoice_id in invoice_ids
            ]

        logger.info(
            "Pagamento %s eliminato, %d fatture ricalcolate",
            payment.get("payment_number"),
            len(invoices),
        )
        return OperationResult(data=PaymentResult(payment=payment, invoices=invoices))

    # ------------------------------------------------------------
    # Riconciliazione
    # ------------------------------------------------------------

    async def reconcile_invoice(self, invoice_id: uuid.UUID, fix: bool = False) -> ReconciliationReport:
        """
        Confronta i valori salvati di una fattura con quelli ricalcolati
        da righe, allocazioni e crediti.

        Args:
            invoice_id: Fattura da verificare
            fix: Se True scrive i valori ricalcolati quando differiscono

        Returns:
            ReconciliationReport con valori salvati, ricalcolati e differenze
        """
        invoice, items = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user
        )
        totals = aggregate_items(items)
        balance = derive_invoice_balance(
            totals.total_amount,
            await allocated_total(self.db, invoice_id),
            invoice["status"],
            await credited_total(self.db, invoice_id),
            reset_unpaid=True,
        )
        computed: dict[str, Any] = {
            "subtotal": totals.subtotal,
            "tax_amount": totals.tax_amount,
            "total_amount": totals.total_amount,
            **invoice_patch(balance),
        }
        stored = {field: invoice.get(field) for field in computed}

        mismatches = [
            field
            for field in _MONEY_FIELDS
            if abs(to_decimal(stored[field] or 0) - computed[field]) > settings.money_tolerance
        ]
        if stored["status"] != computed["status"]:
            mismatches.append("status")

        report = ReconciliationReport(
            invoice_id=invoice_id,
            stored=stored,
            computed=computed,
            mismatches=mismatches,
        )
        if mismatches:
            logger.warning(
                "Fattura %s non coerente: %s", invoice["invoice_number"], ", ".join(mismatches)
            )
            if fix:
                (await self.db.update("invoices", invoice_id, computed)).unwrap()
                report.fixed = True
                logger.info("Fattura %s riallineata", invoice["invoice_number"])
        return report

    async def _load_payment(self, payment_id: uuid.UUID) -> Row:
        payment = (await self.db.select_one("payments", payment_id)).unwrap()
        if payment is None:
            raise NotFoundError(f"Pagamento {payment_id} non trovato")
        ensure_company(payment, self.current_user, "Pagamento")
        return payment
