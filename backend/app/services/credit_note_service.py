import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from app.core.config import settings
from app.core.datastore import Database, Row
from app.core.exceptions import (
    BusinessValidationError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from app.schemas.common import (
    CreditNoteStatus,
    DocumentType,
    InvoiceStatus,
    MovementType,
    OperationResult,
    ReferenceType,
)
from app.schemas.credit_note import (
    CreditApplication,
    CreditItemSelection,
    CreditNoteCreate,
    CreditNotePlan,
    CreditNoteResult,
    CreditNoteUpdate,
)
from app.schemas.document import LineItemInput
from app.schemas.token import CurrentUser
from app.services.audit_service import AuditService
from app.services.document_registry import (
    DOCUMENT_TABLES,
    insert_document,
    load_document,
)
from app.services.invoice_balance import derive_status
from app.services.number_generator import DocumentNumberGenerator
from app.services.stock_movement_service import StockMovementService, best_effort
from app.services.tax_calculator import ZERO, aggregate_items, item_row, round_money, to_decimal

logger = logging.getLogger(__name__)

DELETE_PERMISSION = "delete_credit_note"
CONVERSION_REASON = "Invoice conversion"


class CreditNoteService:
    """
    Service per le note di credito.

    Le note con `affects_inventory` riportano la merce a magazzino
    (movimenti IN con reference_type CREDIT_NOTE); modifica e
    cancellazione stornano prima i movimenti esistenti.

    Args:
        db: Capability di persistenza
        numbers: Generatore numeri documento
        current_user: Utente della richiesta
        stock: Registro movimenti (default: costruito su db)
        audit: Servizio audit (default: costruito su db)
    """

    def __init__(
        self,
        db: Database,
        numbers: DocumentNumberGenerator,
        current_user: Optional[CurrentUser] = None,
        stock: Optional[StockMovementService] = None,
        audit: Optional[AuditService] = None,
    ) -> None:
        self.db = db
        self.numbers = numbers
        self.current_user = current_user
        self.stock = stock or StockMovementService(db, current_user)
        self.audit = audit or AuditService(db, current_user)

    @property
    def _user_id(self) -> Optional[uuid.UUID]:
        return self.current_user.id if self.current_user else None

    # ------------------------------------------------------------
    # Creazione
    # ------------------------------------------------------------

    async def create(
        self,
        credit_note: CreditNoteCreate,
        items: list[LineItemInput],
    ) -> OperationResult[CreditNoteResult]:
        """
        Crea una nota di credito con le sue righe.

        Testata e righe sono scritte in un'unica transazione; i movimenti
        IN (se `affects_inventory`) sono registrati dopo, in best effort.

        Raises:
            BusinessValidationError: Righe non valide o documenti incoerenti
            NotFoundError: Cliente o fattura inesistenti
            DatabaseOperationError: Se la scrittura fallisce
        """
        if not items:
            raise BusinessValidationError("La nota di credito deve avere almeno una riga")

        company_id = self._resolve_company(credit_note.company_id)
        await self._check_customer(company_id, credit_note.customer_id)
        if credit_note.invoice_id is not None:
            invoice = (await self.db.select_one("invoices", credit_note.invoice_id)).unwrap()
            if invoice is None:
                raise NotFoundError(f"Fattura {credit_note.invoice_id} non trovata")
            self._check_same_parties(invoice, company_id, credit_note.customer_id)

        # Calcolo righe prima di qualsiasi scrittura
        rows = [item_row(item, index) for index, item in enumerate(items)]
        totals = aggregate_items(items)

        note_date = credit_note.credit_note_date or date.today()
        number = await self.numbers.generate(company_id, DocumentType.CREDIT_NOTE, note_date)

        async with self.db.transaction():
            created, warnings = await insert_document(
                self.db,
                "credit_notes",
                {
                    "company_id": company_id,
                    "customer_id": credit_note.customer_id,
                    "invoice_id": credit_note.invoice_id,
                    "receipt_id": credit_note.receipt_id,
                    "credit_note_number": number,
                    "credit_note_date": note_date,
                    "status": CreditNoteStatus(credit_note.status).value,
                    "reason": credit_note.reason,
                    "notes": credit_note.notes,
                    "terms_and_conditions": credit_note.terms_and_conditions,
                    "affects_inventory": credit_note.affects_inventory,
                    "subtotal": totals.subtotal,
                    "tax_amount": totals.tax_amount,
                    "total_amount": totals.total_amount,
                    "applied_amount": ZERO,
                    "balance": totals.total_amount,
                    "source_document_id": credit_note.invoice_id,
                    "source_document_type": (
                        DocumentType.INVOICE.value if credit_note.invoice_id else None
                    ),
                    "created_by": self._user_id,
                },
            )
            created_items = (
                await self.db.insert_many(
                    "credit_note_items",
                    [{**row, "credit_note_id": created["id"]} for row in rows],
                )
            ).unwrap()

        logger.info(
            "Nota di credito %s creata (totale %s, %d righe)",
            number,
            totals.total_amount,
            len(created_items),
        )

        movements: list[Row] = []
        if credit_note.affects_inventory:
            stock_result = await best_effort(
                self.stock.record_many(
                    company_id,
                    created_items,
                    MovementType.IN,
                    ReferenceType.CREDIT_NOTE.value,
                    created["id"],
                    notes=f"Reso da nota di credito {number}",
                ),
                step="stock_movements",
                reference_id=created["id"],
            )
            movements = stock_result.data
            warnings.extend(stock_result.warnings)

        return OperationResult(
            data=CreditNoteResult(
                credit_note=created,
                items=created_items,
                stock_movements=movements,
            ),
            warnings=warnings,
        )

    # ------------------------------------------------------------
    # Modifica
    # ------------------------------------------------------------

    async def update(
        self,
        credit_note_id: uuid.UUID,
        patch: CreditNoteUpdate,
        items: list[LineItemInput],
    ) -> OperationResult[CreditNoteResult]:
        """
        Modifica testata e righe di una nota di credito.

        Sequenza: storno dei movimenti esistenti (se la nota movimentava
        il magazzino), sostituzione completa delle righe, nuovi movimenti
        IN se la nota (eventualmente modificata) movimenta ancora il
        magazzino.

        Raises:
            NotFoundError: Nota inesistente
            InvalidStateError: Nota annullata o transizione di stato non ammessa
            BusinessValidationError: Righe non valide o totale inferiore al già applicato
        """
        if not items:
            raise BusinessValidationError("La nota di credito deve avere almeno una riga")

        existing, _ = await load_document(
            self.db, DocumentType.CREDIT_NOTE, credit_note_id, self.current_user, with_items=False
        )
        if existing["status"] == CreditNoteStatus.CANCELLED.value:
            raise InvalidStateError(
                f"La nota di credito {existing['credit_note_number']} è annullata"
            )

        changes: dict[str, Any] = patch.model_dump(exclude_none=True)
        if "status" in changes:
            new_status = CreditNoteStatus(changes["status"]).value
            allowed = DOCUMENT_TABLES[DocumentType.CREDIT_NOTE].transitions.get(
                existing["status"], frozenset()
            )
            if new_status != existing["status"] and new_status not in allowed:
                raise InvalidStateError(
                    f"Transizione non ammessa: {existing['status']} → {new_status}"
                )
            changes["status"] = new_status

        rows = [item_row(item, index) for index, item in enumerate(items)]
        totals = aggregate_items(items)
        applied = round_money(existing.get("applied_amount") or ZERO)
        if totals.total_amount < applied - settings.money_tolerance:
            raise BusinessValidationError(
                "Il nuovo totale è inferiore all'importo già applicato alle fatture",
                extra={"total_amount": str(totals.total_amount), "applied_amount": str(applied)},
            )

        warnings = []
        if existing.get("affects_inventory"):
            reversal = await best_effort(
                self.stock.reverse(
                    ReferenceType.CREDIT_NOTE.value, credit_note_id, existing["company_id"]
                ),
                step="stock_reversal",
                reference_id=credit_note_id,
            )
            warnings.extend(reversal.warnings)

        async with self.db.transaction():
            (await self.db.delete_many("credit_note_items", {"credit_note_id": credit_note_id})).unwrap()
            new_items = (
                await self.db.insert_many(
                    "credit_note_items",
                    [{**row, "credit_note_id": credit_note_id} for row in rows],
                )
            ).unwrap()
            updated = (
                await self.db.update(
                    "credit_notes",
                    credit_note_id,
                    {
                        **changes,
                        "subtotal": totals.subtotal,
                        "tax_amount": totals.tax_amount,
                        "total_amount": totals.total_amount,
                        "balance": round_money(totals.total_amount - applied),
                    },
                )
            ).unwrap()

        logger.info("Nota di credito %s aggiornata", existing["credit_note_number"])

        movements: list[Row] = []
        if updated.get("affects_inventory"):
            stock_result = await best_effort(
                self.stock.record_many(
                    updated["company_id"],
                    new_items,
                    MovementType.IN,
                    ReferenceType.CREDIT_NOTE.value,
                    credit_note_id,
                    notes=f"Reso da nota di credito {updated['credit_note_number']}",
                ),
                step="stock_movements",
                reference_id=credit_note_id,
            )
            movements = stock_result.data
            warnings.extend(stock_result.warnings)

        return OperationResult(
            data=CreditNoteResult(credit_note=updated, items=new_items, stock_movements=movements),
            warnings=warnings,
        )

    # ------------------------------------------------------------
    # Cancellazione
    # ------------------------------------------------------------

    async def delete(self, credit_note_id: uuid.UUID) -> OperationResult[None]:
        """
        Elimina una nota di credito annullandone gli effetti.

        Richiede il permesso `delete_credit_note` (o un ruolo admin).
        Tutto avviene in una transazione: storno movimenti, ripristino
        del balance_due delle fatture a cui era stata applicata,
        eliminazione di righe/allocazioni/nota e voce di audit. Se
        l'audit non può essere scritto la cancellazione viene annullata.

        Raises:
            PermissionDeniedError: Utente senza permesso
            NotFoundError: Nota inesistente
            DatabaseOperationError: Se una scrittura obbligatoria fallisce
        """
        if self.current_user is None or not self.current_user.has_permission(DELETE_PERMISSION):
            logger.warning(
                "Cancellazione nota di credito %s negata all'utente %s",
                credit_note_id,
                self._user_id,
            )
            raise PermissionDeniedError(
                "Permesso delete_credit_note richiesto per eliminare una nota di credito"
            )

        credit_note, items = await load_document(
            self.db, DocumentType.CREDIT_NOTE, credit_note_id, self.current_user
        )
        allocations = (
            await self.db.select("credit_note_allocations", {"credit_note_id": credit_note_id})
        ).unwrap()

        warnings = []
        reversed_count = 0
        async with self.db.transaction():
            if credit_note.get("affects_inventory"):
                reversal = await best_effort(
                    self.stock.reverse(
                        ReferenceType.CREDIT_NOTE.value, credit_note_id, credit_note["company_id"]
                    ),
                    step="stock_reversal",
                    reference_id=credit_note_id,
                )
                reversed_count = len(reversal.data)
                warnings.extend(reversal.warnings)

            affected_invoices = []
            for allocation in allocations:
                await self._restore_invoice_balance(
                    allocation["invoice_id"], allocation["allocated_amount"]
                )
                affected_invoices.append(allocation["invoice_id"])

            (await self.db.delete_many("credit_note_allocations", {"credit_note_id": credit_note_id})).unwrap()
            (await self.db.delete_many("credit_note_items", {"credit_note_id": credit_note_id})).unwrap()
            (await self.db.delete("credit_notes", credit_note_id)).unwrap()

            await self.audit.record(
                "DELETE",
                "credit_note",
                credit_note_id,
                credit_note["company_id"],
                {
                    "credit_note_number": credit_note["credit_note_number"],
                    "customer_id": credit_note["customer_id"],
                    "invoice_id": credit_note.get("invoice_id"),
                    "status": credit_note["status"],
                    "total_amount": credit_note["total_amount"],
                    "applied_amount": credit_note.get("applied_amount"),
                    "items_count": len(items),
                    "allocations_count": len(allocations),
                    "affected_invoices": affected_invoices,
                    "inventory_reversed": bool(credit_note.get("affects_inventory")),
                    "stock_movements_reversed": reversed_count,
                },
            )

        logger.info(
            "Nota di credito %s eliminata da %s",
            credit_note["credit_note_number"],
            self._user_id,
        )
        return OperationResult(data=None, warnings=warnings)

    async def _restore_invoice_balance(self, invoice_id: uuid.UUID, amount: Any) -> Row:
        """Riaggiunge al balance_due della fattura un credito annullato."""
        invoice = (await self.db.select_one("invoices", invoice_id)).unwrap()
        if invoice is None:
            raise NotFoundError(f"Fattura {invoice_id} non trovata")

        total = round_money(invoice["total_amount"])
        balance_due = min(round_money(to_decimal(invoice["balance_due"]) + to_decimal(amount)), total)
        status = derive_status(
            balance_due,
            total - balance_due,
            invoice["status"],
            reset_unpaid=True,
        )
        return (
            await self.db.update("invoices", invoice_id, {"balance_due": balance_due, "status": status})
        ).unwrap()

    # ------------------------------------------------------------
    # Da fattura
    # ------------------------------------------------------------

    async def convert_invoice_to_credit_note(
        self,
        invoice_id: uuid.UUID,
        items_to_credit: Optional[list[CreditItemSelection]] = None,
        affects_inventory: bool = False,
    ) -> CreditNotePlan:
        """
        Prepara una nota di credito a storno di una fattura.

        Senza selezione vengono stornate tutte le righe; con selezione solo
        le righe indicate, con quantità eventualmente ridotta. Non scrive
        nulla: il piano restituito va passato a `create`.

        Raises:
            NotFoundError: Fattura inesistente
            InvalidStateError: Fattura annullata
            BusinessValidationError: Riga non appartenente alla fattura o quantità eccessiva
        """
        invoice, invoice_items = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user
        )
        if invoice["status"] == InvoiceStatus.CANCELLED.value:
            raise InvalidStateError(f"La fattura {invoice['invoice_number']} è annullata")

        by_id = {item["id"]: item for item in invoice_items}
        if items_to_credit is None:
            selected = [(item, to_decimal(item["quantity"])) for item in invoice_items]
        else:
            selected = []
            for selection in items_to_credit:
                item = by_id.get(selection.invoice_item_id)
                if item is None:
                    raise BusinessValidationError(
                        f"La riga {selection.invoice_item_id} non appartiene alla fattura",
                        extra={"invoice_item_id": str(selection.invoice_item_id)},
                    )
                original = to_decimal(item["quantity"])
                quantity = original if selection.quantity is None else to_decimal(selection.quantity)
                if quantity > original:
                    raise BusinessValidationError(
                        f"Quantità da stornare ({quantity}) superiore a quella fatturata ({original})",
                        extra={"invoice_item_id": str(item["id"])},
                    )
                selected.append((item, quantity))

        if not selected:
            raise BusinessValidationError("Nessuna riga da stornare")

        lines = [self._credit_line(item, quantity) for item, quantity in selected]
        plan = CreditNotePlan(
            credit_note=CreditNoteCreate(
                company_id=invoice["company_id"],
                customer_id=invoice["customer_id"],
                invoice_id=invoice["id"],
                status=CreditNoteStatus.DRAFT,
                reason=CONVERSION_REASON,
                notes=f"Storno fattura {invoice['invoice_number']}",
                affects_inventory=affects_inventory,
            ),
            items=lines,
            totals=aggregate_items(lines),
        )
        logger.debug(
            "Piano nota di credito per fattura %s: %d righe, totale %s",
            invoice["invoice_number"],
            len(lines),
            plan.totals.total_amount,
        )
        return plan

    @staticmethod
    def _credit_line(item: Row, quantity: Decimal) -> LineItemInput:
        original = to_decimal(item["quantity"])
        discount = to_decimal(item.get("discount_before_vat") or 0)
        # Sconto a importo fisso ripartito sulla quantità stornata
        if discount and quantity != original:
            discount = round_money(discount * quantity / original)
        return LineItemInput(
            product_id=item.get("product_id"),
            description=item["description"],
            quantity=quantity,
            unit_price=to_decimal(item["unit_price"]),
            discount_before_vat=discount,
            discount_percentage=to_decimal(item.get("discount_percentage") or 0),
            tax_percentage=to_decimal(item.get("tax_percentage") or 0),
            tax_inclusive=bool(item.get("tax_inclusive")),
            source_item_id=item["id"],
        )

    # ------------------------------------------------------------
    # Applicazione a fattura
    # ------------------------------------------------------------

    async def apply_to_invoice(
        self,
        credit_note_id: uuid.UUID,
        invoice_id: uuid.UUID,
        amount: Any,
    ) -> OperationResult[CreditApplication]:
        """
        Applica parte del credito di una nota a una fattura.

        Raises:
            BusinessValidationError: Importo non valido o documenti di parti diverse
            InvalidStateError: Nota non emessa/annullata o fattura annullata
            NotFoundError: Nota o fattura inesistenti
        """
        amount = round_money(amount)
        tol = settings.money_tolerance
        if amount <= 0:
            raise BusinessValidationError("L'importo da applicare deve essere maggiore di zero")

        credit_note, _ = await load_document(
            self.db, DocumentType.CREDIT_NOTE, credit_note_id, self.current_user, with_items=False
        )
        invoice, _ = await load_document(
            self.db, DocumentType.INVOICE, invoice_id, self.current_user, with_items=False
        )
        self._check_same_parties(invoice, credit_note["company_id"], credit_note["customer_id"])

        if credit_note["status"] in (CreditNoteStatus.DRAFT.value, CreditNoteStatus.CANCELLED.value):
            raise InvalidStateError(
                f"La nota di credito {credit_note['credit_note_number']} "
                f"non è applicabile nello stato {credit_note['status']}"
            )
        if invoice["status"] == InvoiceStatus.CANCELLED.value:
            raise InvalidStateError(f"La fattura {invoice['invoice_number']} è annullata")

        available = round_money(credit_note["balance"])
        balance_due = round_money(invoice["balance_due"])
        if amount > available + tol:
            raise BusinessValidationError(
                f"Credito disponibile insufficiente ({available})",
                extra={"available": str(available)},
            )
        if amount > balance_due + tol:
            raise BusinessValidationError(
                f"Importo superiore al saldo della fattura ({balance_due})",
                extra={"balance_due": str(balance_due)},
            )

        new_credit_balance = max(round_money(available - amount), ZERO)
        new_balance_due = max(round_money(balance_due - amount), ZERO)
        total = round_money(invoice["total_amount"])

        async with self.db.transaction():
            allocation = (
                await self.db.insert(
                    "credit_note_allocations",
                    {
                        "credit_note_id": credit_note_id,
                        "invoice_id": invoice_id,
                        "allocated_amount": amount,
                        "allocation_date": date.today(),
                        "created_by": self._user_id,
                    },
                )
            ).unwrap()
            updated_note = (
                await self.db.update(
                    "credit_notes",
                    credit_note_id,
                    {
                        "applied_amount": round_money(
                            to_decimal(credit_note.get("applied_amount") or 0) + amount
                        ),
                        "balance": new_credit_balance,
                        "status": (
                            CreditNoteStatus.APPLIED.value
                            if new_credit_balance < tol
                            else credit_note["status"]
                        ),
                    },
                )
            ).unwrap()
            updated_invoice = (
                await self.db.update(
                    "invoices",
                    invoice_id,
                    {
                        "balance_due": new_balance_due,
                        "status": derive_status(
                            new_balance_due, total - new_balance_due, invoice["status"]
                        ),
                    },
                )
            ).unwrap()

        logger.info(
            "Nota di credito %s applicata alla fattura %s per %s",
            credit_note["credit_note_number"],
            invoice["invoice_number"],
            amount,
        )
        return OperationResult(
            data=CreditApplication(
                allocation=allocation,
                credit_note=updated_note,
                invoice=updated_invoice,
            )
        )

    # ------------------------------------------------------------
    # Controlli
    # ------------------------------------------------------------

    def _resolve_company(self, company_id: Optional[uuid.UUID]) -> uuid.UUID:
        user_company = self.current_user.company_id if self.current_user else None
        if company_id is None:
            company_id = user_company
        if company_id is None:
            raise BusinessValidationError("Azienda non specificata")
        if user_company is not None and company_id != user_company:
            raise PermissionDeniedError("Non è possibile operare su un'altra azienda")
        return company_id

    async def _check_customer(self, company_id: uuid.UUID, customer_id: uuid.UUID) -> Row:
        customer = (await self.db.select_one("customers", customer_id)).unwrap()
        if customer is None or customer.get("company_id") != company_id:
            raise NotFoundError(f"Cliente {customer_id} non trovato")
        return customer

    @staticmethod
    def _check_same_parties(invoice: Row, company_id: uuid.UUID, customer_id: uuid.UUID) -> None:
        if invoice["company_id"] != company_id:
            raise BusinessValidationError("La fattura appartiene a un'altra azienda")
        if invoice["customer_id"] != customer_id:
            raise BusinessValidationError(
                "La fattura è intestata a un altro cliente",
                extra={"invoice_id": str(invoice["id"])},
            )
