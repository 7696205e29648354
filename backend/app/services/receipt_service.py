"""
Service Layer per le Ricevute dirette
Progetto: Business Manager (Gestionale Commerciale)

Una ricevuta diretta genera in un'unica transazione fattura, righe,
pagamento, allocazione, ricevuta e copia delle righe sulla ricevuta.
"""

import logging
import uuid
from decimal import Decimal
from typing import Optional

from app.core.config import settings
from app.core.datastore import Database, Row
from app.core.exceptions import BusinessValidationError, NotFoundError, PermissionDeniedError
from app.core.timeouts import run_with_timeout
from app.schemas.common import (
    DocumentType,
    ExcessHandling,
    InvoiceStatus,
    MovementType,
    OperationResult,
    ReferenceType,
)
from app.schemas.document import LineItemInput
from app.schemas.payment import DirectReceiptCreate, DirectReceiptResult
from app.schemas.token import CurrentUser
from app.services.document_registry import insert_document
from app.services.invoice_balance import derive_invoice_balance
from app.services.number_generator import DocumentNumberGenerator
from app.services.stock_movement_service import StockMovementService, best_effort
from app.services.tax_calculator import ZERO, aggregate_items, item_row, round_money

logger = logging.getLogger(__name__)

RECEIPT_TYPE_DIRECT = "direct"


class ReceiptService:
    """
    Service per le ricevute.

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
        self.stock = StockMovementService(db, current_user)

    async def create_direct_receipt(
        self,
        data: DirectReceiptCreate,
        company_id: Optional[uuid.UUID] = None,
    ) -> OperationResult[DirectReceiptResult]:
        """
        Crea una ricevuta di vendita diretta.

        L'allocazione è pari al minimo tra pagamento e totale fattura;
        l'eventuale eccedenza resta sulla ricevuta con excess_handling
        `pending`. I movimenti OUT per le righe con prodotto sono
        registrati dopo il commit, in best effort.

        Raises:
            BusinessValidationError: Righe non valide o totale nullo
            NotFoundError: Cliente inesistente
            OperationTimeoutError: Tempo massimo superato
            DatabaseOperationError: Se la transazione fallisce (nulla viene scritto)
        """
        return await run_with_timeout(
            self._create_direct_receipt(data, company_id),
            settings.payment_timeout_seconds,
            "create_direct_receipt",
        )

    async def _create_direct_receipt(
        self,
        data: DirectReceiptCreate,
        company_id: Optional[uuid.UUID],
    ) -> OperationResult[DirectReceiptResult]:
        company_id = self._resolve_company(company_id)
        customer = (await self.db.select_one("customers", data.customer_id)).unwrap()
        if customer is None or customer.get("company_id") != company_id:
            raise NotFoundError(f"Cliente {data.customer_id} non trovato")

        items = data.items or [
            LineItemInput(
                description=data.description,
                quantity=Decimal("1"),
                unit_price=data.invoice_amount or data.payment_amount,
            )
        ]
        rows = [item_row(item, index) for index, item in enumerate(items)]
        totals = aggregate_items(items)
        if totals.total_amount <= 0:
            raise BusinessValidationError("Il totale della fattura deve essere maggiore di zero")

        payment_amount = round_money(data.payment_amount)
        allocated = min(payment_amount, totals.total_amount)
        excess = max(round_money(payment_amount - totals.total_amount), ZERO)
        balance = derive_invoice_balance(totals.total_amount, allocated, InvoiceStatus.SENT.value)

        invoice_number = await self.numbers.generate(company_id, DocumentType.INVOICE, data.payment_date)
        payment_number = await self.numbers.generate(company_id, DocumentType.PAYMENT, data.payment_date)
        receipt_number = await self.numbers.generate(company_id, DocumentType.RECEIPT, data.payment_date)
        user_id = self.current_user.id if self.current_user else None

        async with self.db.transaction():
            invoice, warnings = await insert_document(
                self.db,
                "invoices",
                {
                    "company_id": company_id,
                    "customer_id": data.customer_id,
                    "invoice_number": invoice_number,
                    "invoice_date": data.payment_date,
                    "due_date": data.payment_date,
                    "status": balance.status,
                    "subtotal": totals.subtotal,
                    "tax_amount": totals.tax_amount,
                    "total_amount": totals.total_amount,
                    "paid_amount": balance.paid_amount,
                    "balance_due": balance.balance_due,
                    "notes": data.notes,
                    "created_by": user_id,
                },
            )
            invoice_items = (
                await self.db.insert_many(
                    "invoice_items", [{**row, "invoice_id": invoice["id"]} for row in rows]
                )
            ).unwrap()

            payment, payment_warnings = await insert_document(
                self.db,
                "payments",
                {
                    "company_id": company_id,
                    "customer_id": data.customer_id,
                    "invoice_id": invoice["id"],
                    "payment_number": payment_number,
                    "payment_date": data.payment_date,
                    "payment_method": data.payment_method.value,
                    "amount": payment_amount,
                    "reference_number": data.reference_number,
                    "created_by": invoice.get("created_by"),
                },
            )
            warnings.extend(payment_warnings)
            allocation = (
                await self.db.insert(
                    "payment_allocations",
                    {"payment_id": payment["id"], "invoice_id": invoice["id"], "amount": allocated},
                )
            ).unwrap()

            receipt, receipt_warnings = await insert_document(
                self.db,
                "receipts",
                {
                    "company_id": company_id,
                    "customer_id": data.customer_id,
                    "payment_id": payment["id"],
                    "invoice_id": invoice["id"],
                    "receipt_number": receipt_number,
                    "receipt_date": data.payment_date,
                    "receipt_type": RECEIPT_TYPE_DIRECT,
                    "total_amount": payment_amount,
                    "excess_amount": excess,
                    "excess_handling": ExcessHandling.PENDING.value,
                    "notes": data.notes,
                    "created_by": invoice.get("created_by"),
                },
            )
            warnings.extend(receipt_warnings)
            receipt_items = (
                await self.db.insert_many(
                    "receipt_items", [{**row, "receipt_id": receipt["id"]} for row in rows]
                )
            ).unwrap()

        logger.info(
            "Ricevuta %s creata: fattura %s (%s), pagamento %s, eccedenza %s",
            receipt_number,
            invoice_number,
            totals.total_amount,
            payment_amount,
            excess,
        )

        stock_result = await best_effort(
            self.stock.record_many(
                company_id,
                invoice_items,
                MovementType.OUT,
                ReferenceType.INVOICE.value,
                invoice["id"],
                notes=f"Scarico per ricevuta {receipt_number}",
            ),
            step="stock_movements",
            reference_id=invoice["id"],
        )
        warnings.extend(stock_result.warnings)

        return OperationResult(
            data=DirectReceiptResult(
                receipt=receipt,
                invoice=invoice,
                payment=payment,
                allocation=allocation,
                invoice_items=invoice_items,
                receipt_items=receipt_items,
                excess_amount=excess,
            ),
            warnings=warnings,
        )

    async def get_receipt(self, receipt_id: uuid.UUID) -> Row:
        """Restituisce una ricevuta dell'azienda corrente."""
        receipt = (await self.db.select_one("receipts", receipt_id)).unwrap()
        user_company = self.current_user.company_id if self.current_user else None
        if receipt is None or (user_company is not None and receipt["company_id"] != user_company):
            raise NotFoundError(f"Ricevuta {receipt_id} non trovata")
        return receipt

    def _resolve_company(self, company_id: Optional[uuid.UUID]) -> uuid.UUID:
        user_company = self.current_user.company_id if self.current_user else None
        company_id = company_id or user_company
        if company_id is None:
            raise BusinessValidationError("Azienda non specificata")
        if user_company is not None and company_id != user_company:
            raise PermissionDeniedError("Non è possibile operare su un'altra azienda")
        return company_id
