"""
Service Layer per le Eccedenze di pagamento
Progetto: Business Manager (Gestionale Commerciale)

L'eccedenza di una ricevuta può diventare:
- credit_balance: credito del cliente (customer_credit_balances)
- change_note: nota di credito emessa con motivo "Overpayment"
- pending: nessuna azione, da risolvere manualmente
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from app.core.config import settings
from app.core.datastore import Database, Row
from app.core.exceptions import BusinessValidationError, InvalidStateError, NotFoundError
from app.core.timeouts import run_with_timeout
from app.schemas.common import (
    CreditNoteStatus,
    DocumentType,
    ExcessHandling,
    InvoiceStatus,
    OperationResult,
    PartialFailureWarning,
)
from app.schemas.document import LineItemInput
from app.schemas.payment import CustomerCreditSummary, ExcessResult
from app.schemas.token import CurrentUser
from app.services.document_registry import ensure_company, insert_document, load_document
from app.services.number_generator import DocumentNumberGenerator
from app.services.tax_calculator import ZERO, item_row, round_money, to_decimal

logger = logging.getLogger(__name__)

OVERPAYMENT_REASON = "Overpayment"
CREDIT_AVAILABLE = "available"
NO_EXCESS = "none"


class ExcessPaymentService:
    """
    Service per la gestione delle eccedenze sulle ricevute.

    Args:
        db: Capability di persistenza
        numbers: Generatore numeri documento (per le note di credito)
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

    async def handle_excess(
        self,
        receipt_id: uuid.UUID,
        invoice_id: uuid.UUID,
        customer_id: uuid.UUID,
        excess_amount: Any,
        handling: ExcessHandling,
    ) -> OperationResult[ExcessResult]:
        """
        Destina l'eccedenza di una ricevuta.

        Un'eccedenza non positiva non produce alcuna azione
        (handling "none"). L'aggiornamento di excess_handling sulla
        ricevuta è best effort: se fallisce il credito o la nota già
        creati restano validi e viene restituito un avviso.

        Raises:
            NotFoundError: Ricevuta o fattura inesistenti
            BusinessValidationError: Dati incoerenti con la ricevuta
            InvalidStateError: Eccedenza già destinata
            OperationTimeoutError: Tempo massimo superato
        """
        return await run_with_timeout(
            self._handle_excess(receipt_id, invoice_id, customer_id, excess_amount, handling),
            settings.payment_timeout_seconds,
            "handle_excess",
        )

    async def _handle_excess(
        self,
        receipt_id: uuid.UUID,
        invoice_id: uuid.UUID,
        customer_id: uuid.UUID,
        excess_amount: Any,
        handling: ExcessHandling,
    ) -> OperationResult[ExcessResult]:
        excess = round_money(excess_amount)
        if excess <= 0:
            logger.debug("Nessuna eccedenza da gestire per la ricevuta %s", receipt_id)
            return OperationResult(data=ExcessResult(handling=NO_EXCESS))

        handling = ExcessHandling(handling)
        receipt = (await self.db.select_one("receipts", receipt_id)).unwrap()
        if receipt is None:
            raise NotFoundError(f"Ricevuta {receipt_id} non trovata")
        ensure_company(receipt, self.current_user, "Ricevuta")
        invoice, _ = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user, with_items=False
        )
        self._check_consistency(receipt, invoice, customer_id, excess)

        result = ExcessResult(handling=handling.value)
        receipt_patch: dict[str, Any] = {"excess_handling": handling.value}
        warnings: list[PartialFailureWarning] = []

        if handling == ExcessHandling.CREDIT_BALANCE:
            result.credit_balance = await self._create_credit_balance(receipt, invoice, excess)
        elif handling == ExcessHandling.CHANGE_NOTE:
            credit_note, warnings = await self._create_change_note(receipt, invoice, excess)
            result.credit_note = credit_note
            receipt_patch["change_note_id"] = credit_note["id"]

        warnings.extend(await self._update_receipt(receipt, receipt_patch))

        logger.info(
            "Eccedenza %s della ricevuta %s destinata a %s",
            excess,
            receipt.get("receipt_number"),
            handling.value,
        )
        return OperationResult(data=result, warnings=warnings)

    async def available_credit(
        self, company_id: uuid.UUID, customer_id: uuid.UUID
    ) -> CustomerCreditSummary:
        """Crediti disponibili del cliente e loro totale."""
        balances = (
            await self.db.select(
                "customer_credit_balances",
                {"company_id": company_id, "customer_id": customer_id, "status": CREDIT_AVAILABLE},
                order_by="created_at",
            )
        ).unwrap()
        total = round_money(sum((to_decimal(b["credit_amount"]) for b in balances), ZERO))
        return CustomerCreditSummary(customer_id=customer_id, available_total=total, balances=balances)

    # ------------------------------------------------------------
    # Destinazioni
    # ------------------------------------------------------------

    async def _create_credit_balance(self, receipt: Row, invoice: Row, excess: Decimal) -> Row:
        async with self.db.transaction():
            credit = (
                await self.db.insert(
                    "customer_credit_balances",
                    {
                        "company_id": receipt["company_id"],
                        "customer_id": receipt["customer_id"],
                        "credit_amount": excess,
                        "source_receipt_id": receipt["id"],
                        "source_payment_id": receipt.get("payment_id"),
                        "status": CREDIT_AVAILABLE,
                        "notes": f"Eccedenza ricevuta {receipt.get('receipt_number')}",
                    },
                )
            ).unwrap()
            if invoice["status"] not in (InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value):
                (
                    await self.db.update(
                        "invoices",
                        invoice["id"],
                        {"status": InvoiceStatus.PAID.value, "balance_due": ZERO},
                    )
                ).unwrap()
        return credit

    async def _create_change_note(
        self, receipt: Row, invoice: Row, excess: Decimal
    ) -> tuple[Row, list[PartialFailureWarning]]:
        note_date = date.today()
        number = await self.numbers.generate(receipt["company_id"], DocumentType.CREDIT_NOTE, note_date)
        line = item_row(
            LineItemInput(
                description=f"Eccedenza pagamento ricevuta {receipt.get('receipt_number')}",
                quantity=Decimal("1"),
                unit_price=excess,
            ),
            0,
        )
        async with self.db.transaction():
            credit_note, warnings = await insert_document(
                self.db,
                "credit_notes",
                {
                    "company_id": receipt["company_id"],
                    "customer_id": receipt["customer_id"],
                    "invoice_id": invoice["id"],
                    "receipt_id": receipt["id"],
                    "credit_note_number": number,
                    "credit_note_date": note_date,
                    "status": CreditNoteStatus.ISSUED.value,
                    "reason": OVERPAYMENT_REASON,
                    "affects_inventory": False,
                    "subtotal": excess,
                    "tax_amount": ZERO,
                    "total_amount": excess,
                    "applied_amount": ZERO,
                    "balance": excess,
                    "source_document_id": receipt["id"],
                    "source_document_type": DocumentType.RECEIPT.value,
                    "created_by": self.current_user.id if self.current_user else None,
                },
            )
            (
                await self.db.insert("credit_note_items", {**line, "credit_note_id": credit_note["id"]})
            ).unwrap()
        return credit_note, warnings

    async def _update_receipt(
        self, receipt: Row, patch: dict[str, Any]
    ) -> list[PartialFailureWarning]:
        result = await self.db.update("receipts", receipt["id"], patch)
        if result.ok:
            return []
        logger.warning(
            "excess_handling non aggiornato sulla ricevuta %s: %s",
            receipt.get("receipt_number"),
            result.error.message,
        )
        return [
            PartialFailureWarning(
                step="receipt_excess_handling",
                message="Eccedenza gestita ma ricevuta non aggiornata",
                detail={
                    "receipt_id": str(receipt["id"]),
                    "excess_handling": patch["excess_handling"],
                    "error_kind": result.error.kind.value,
                },
            )
        ]

    @staticmethod
    def _check_consistency(receipt: Row, invoice: Row, customer_id: uuid.UUID, excess: Decimal) -> None:
        if receipt.get("invoice_id") not in (None, invoice["id"]):
            raise BusinessValidationError("La ricevuta non si riferisce a questa fattura")
        if receipt["customer_id"] != customer_id or invoice["customer_id"] != customer_id:
            raise BusinessValidationError("Cliente non coerente con ricevuta e fattura")
        if receipt["company_id"] != invoice["company_id"]:
            raise BusinessValidationError("Ricevuta e fattura appartengono ad aziende diverse")
        recorded = round_money(receipt.get("excess_amount") or 0)
        if excess > recorded + settings.money_tolerance:
            raise BusinessValidationError(
                f"Eccedenza richiesta ({excess}) superiore a quella della ricevuta ({recorded})",
                extra={"excess_amount": str(recorded)},
            )
        if receipt.get("excess_handling") in (
            ExcessHandling.CREDIT_BALANCE.value,
            ExcessHandling.CHANGE_NOTE.value,
        ):
            raise InvalidStateError(
                f"Eccedenza già destinata a {receipt['excess_handling']}",
                extra={"excess_handling": receipt["excess_handling"]},
            )
