"""
Service Layer per la Conversione Documenti
Progetto: Business Manager (Gestionale Commerciale)

Conversioni supportate:
- preventivo → fattura / proforma
- proforma → fattura
- fattura → documento di trasporto / nota di credito

Passi obbligatori: lettura sorgente, ricalcolo totali, numerazione,
prenotazione della sorgente (`converting`) e inserimento testata e
righe (in transazione). Movimenti di magazzino
e aggiornamento dello stato sorgente sono best effort e producono
avvisi senza annullare il documento creato.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional

from app.core.config import settings
from app.core.datastore import Database, DbErrorKind, Row
from app.core.exceptions import BusinessValidationError, InvalidStateError
from app.core.timeouts import run_with_timeout
from app.schemas.common import (
    DocumentType,
    InvoiceStatus,
    MovementType,
    OperationResult,
    PartialFailureWarning,
    ProformaStatus,
    QuotationStatus,
    ReferenceType,
)
from app.schemas.document import (
    ConversionOverrides,
    ConversionResult,
    DocumentTotals,
    LineItemInput,
)
from app.schemas.token import CurrentUser
from app.services.credit_note_service import CreditNoteService
from app.services.document_registry import document_table, insert_document, load_document
from app.services.number_generator import DocumentNumberGenerator
from app.services.stock_movement_service import StockMovementService, best_effort
from app.services.tax_calculator import ZERO, aggregate_items, item_row, round_money, to_decimal

logger = logging.getLogger(__name__)

SUPPORTED_CONVERSIONS = frozenset(
    {
        (DocumentType.QUOTATION, DocumentType.INVOICE),
        (DocumentType.QUOTATION, DocumentType.PROFORMA),
        (DocumentType.PROFORMA, DocumentType.INVOICE),
        (DocumentType.INVOICE, DocumentType.DELIVERY_NOTE),
        (DocumentType.INVOICE, DocumentType.CREDIT_NOTE),
    }
)

# Stati da cui la sorgente può essere convertita
CONVERTIBLE_STATES: dict[DocumentType, frozenset[str]] = {
    DocumentType.QUOTATION: frozenset(
        {QuotationStatus.DRAFT.value, QuotationStatus.SENT.value, QuotationStatus.ACCEPTED.value}
    ),
    DocumentType.PROFORMA: frozenset(
        {ProformaStatus.DRAFT.value, ProformaStatus.SENT.value, ProformaStatus.ACCEPTED.value}
    ),
    DocumentType.INVOICE: frozenset(
        {
            InvoiceStatus.DRAFT.value,
            InvoiceStatus.SENT.value,
            InvoiceStatus.PARTIAL.value,
            InvoiceStatus.PAID.value,
        }
    ),
}

# Solo queste sorgenti passano a `converted`: lo stato della fattura dipende dai pagamenti
MARK_CONVERTED = frozenset({DocumentType.QUOTATION, DocumentType.PROFORMA})

STOCK_REFERENCES = {
    DocumentType.INVOICE: ReferenceType.INVOICE,
    DocumentType.DELIVERY_NOTE: ReferenceType.DELIVERY_NOTE,
}

_TOTAL_FIELDS = ("subtotal", "tax_amount", "total_amount")


class ConversionService:
    """
    Motore di conversione tra documenti.

    Args:
        db: Capability di persistenza
        numbers: Generatore numeri documento
        current_user: Utente della richiesta (created_by)
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
        self.credit_notes = CreditNoteService(db, numbers, current_user, stock=self.stock)

    async def convert(
        self,
        source_id: uuid.UUID,
        source_type: DocumentType,
        dest_type: DocumentType,
        overrides: Optional[ConversionOverrides] = None,
    ) -> OperationResult[ConversionResult]:
        """
        Crea un documento di tipo `dest_type` a partire dalla sorgente.

        L'intera operazione è limitata a settings.conversion_timeout_seconds;
        allo scadere i passi già completati restano persistiti.

        Raises:
            NotFoundError: Sorgente inesistente
            InvalidStateError: Sorgente già convertita o in stato non convertibile
            BusinessValidationError: Conversione non supportata o righe non valide
            OperationTimeoutError: Tempo massimo superato
            DatabaseOperationError: Se un passo obbligatorio fallisce
        """
        return await run_with_timeout(
            self._convert(source_id, DocumentType(source_type), DocumentType(dest_type), overrides),
            settings.conversion_timeout_seconds,
            f"convert {source_type}→{dest_type}",
        )

    async def _convert(
        self,
        source_id: uuid.UUID,
        source_type: DocumentType,
        dest_type: DocumentType,
        overrides: Optional[ConversionOverrides],
    ) -> OperationResult[ConversionResult]:
        if (source_type, dest_type) not in SUPPORTED_CONVERSIONS:
            raise BusinessValidationError(
                f"Conversione {source_type.value} → {dest_type.value} non supportata"
            )
        overrides = overrides or ConversionOverrides()

        source, source_items = await load_document(
            self.db, source_type, source_id, self.current_user
        )
        self._check_convertible(source_type, source)

        if dest_type == DocumentType.CREDIT_NOTE:
            return await self._to_credit_note(source, overrides)

        items = overrides.items if overrides.items is not None else [
            self._copy_item(item) for item in source_items
        ]
        if not items:
            raise BusinessValidationError("Il documento da creare non ha righe")

        # Totali sempre ricalcolati dalle righe effettive
        totals = aggregate_items(items)
        warnings = self._compare_override_totals(overrides, totals)

        if dest_type == DocumentType.DELIVERY_NOTE:
            self._check_delivery_quantities(source_items, items)

        document_date = overrides.document_date or date.today()
        number = await self.numbers.generate(source["company_id"], dest_type, document_date)
        spec = document_table(dest_type)

        header = self._header(source, source_type, dest_type, number, document_date, totals, overrides)
        async with self.db.transaction():
            if source_type in MARK_CONVERTED:
                await self._claim_source(source_type, source)
            document, insert_warnings = await insert_document(self.db, spec.table, header)
            warnings.extend(insert_warnings)
            rows = self._item_rows(dest_type, items, source_items)
            created_items = (
                await self.db.insert_many(
                    spec.items_table,
                    [{**row, spec.parent_key: document["id"]} for row in rows],
                )
            ).unwrap()

        logger.info(
            "%s %s convertito in %s %s",
            source_type.value,
            source.get(document_table(source_type).number_field),
            dest_type.value,
            number,
        )

        movements: list[Row] = []
        reference = STOCK_REFERENCES.get(dest_type)
        if reference is not None:
            stock_lines = [
                {"product_id": item.product_id, "quantity": item.quantity} for item in items
            ]
            stock_result = await best_effort(
                self.stock.record_many(
                    source["company_id"],
                    stock_lines,
                    MovementType.OUT,
                    reference.value,
                    document["id"],
                    notes=f"Scarico per {spec.label.lower()} {number}",
                ),
                step="stock_movements",
                reference_id=document["id"],
            )
            movements = stock_result.data
            warnings.extend(stock_result.warnings)

        source_updated = False
        if source_type in MARK_CONVERTED:
            source_updated = await self._mark_converted(source_type, source, warnings)

        return OperationResult(
            data=ConversionResult(
                document_type=dest_type,
                document=document,
                items=created_items,
                stock_movements=movements,
                source_status_updated=source_updated,
            ),
            warnings=warnings,
        )

    # ------------------------------------------------------------
    # Controlli
    # ------------------------------------------------------------

    @staticmethod
    def _convertible_states(source_type: DocumentType) -> frozenset[str]:
        if source_type == DocumentType.QUOTATION and settings.require_accepted_quotation:
            return frozenset({QuotationStatus.ACCEPTED.value})
        return CONVERTIBLE_STATES[source_type]

    def _check_convertible(self, source_type: DocumentType, source: Row) -> None:
        status = source["status"]
        label = document_table(source_type).label
        if status in (QuotationStatus.CONVERTED.value, QuotationStatus.CONVERTING.value):
            raise InvalidStateError(f"{label} già convertito", extra={"status": status})

        allowed = self._convertible_states(source_type)
        if status not in allowed:
            raise InvalidStateError(
                f"{label} nello stato '{status}' non può essere convertito",
                extra={"status": status, "allowed": sorted(allowed)},
            )

    @staticmethod
    def _compare_override_totals(
        overrides: ConversionOverrides, totals: DocumentTotals
    ) -> list[PartialFailureWarning]:
        mismatches = {}
        for field in _TOTAL_FIELDS:
            supplied = getattr(overrides, field)
            if supplied is None:
                continue
            computed = getattr(totals, field)
            if abs(round_money(supplied) - computed) > settings.money_tolerance:
                mismatches[field] = {"supplied": str(supplied), "computed": str(computed)}
        if not mismatches:
            return []

        logger.warning("Totali forniti diversi da quelli ricalcolati: %s", mismatches)
        return [
            PartialFailureWarning(
                step="totals_override",
                message="I totali forniti sono stati sostituiti da quelli calcolati dalle righe",
                detail=mismatches,
            )
        ]

    @staticmethod
    def _check_delivery_quantities(invoice_items: list[Row], items: list[LineItemInput]) -> None:
        """Ogni prodotto consegnato deve essere fatturato in quantità sufficiente."""
        invoiced: dict[Any, Decimal] = defaultdict(Decimal)
        for item in invoice_items:
            if item.get("product_id"):
                invoiced[item["product_id"]] += to_decimal(item["quantity"])

        delivered: dict[Any, Decimal] = defaultdict(Decimal)
        for item in items:
            if item.product_id:
                delivered[item.product_id] += to_decimal(item.quantity)

        for product_id, quantity in delivered.items():
            if product_id not in invoiced:
                raise BusinessValidationError(
                    "Prodotto non presente in fattura",
                    extra={"product_id": str(product_id)},
                )
            if quantity > invoiced[product_id]:
                raise BusinessValidationError(
                    f"Quantità consegnata ({quantity}) superiore a quella fatturata "
                    f"({invoiced[product_id]})",
                    extra={"product_id": str(product_id)},
                )

    # ------------------------------------------------------------
    # Costruzione destinazione
    # ------------------------------------------------------------

    @staticmethod
    def _copy_item(item: Row) -> LineItemInput:
        return LineItemInput(
            product_id=item.get("product_id"),
            description=item["description"],
            quantity=to_decimal(item["quantity"]),
            unit_price=to_decimal(item["unit_price"]),
            discount_before_vat=to_decimal(item.get("discount_before_vat") or 0),
            discount_percentage=to_decimal(item.get("discount_percentage") or 0),
            tax_percentage=to_decimal(item.get("tax_percentage") or 0),
            tax_inclusive=bool(item.get("tax_inclusive")),
            source_item_id=item.get("id"),
        )

    def _header(
        self,
        source: Row,
        source_type: DocumentType,
        dest_type: DocumentType,
        number: str,
        document_date: date,
        totals: DocumentTotals,
        overrides: ConversionOverrides,
    ) -> dict[str, Any]:
        spec = document_table(dest_type)
        header: dict[str, Any] = {
            "company_id": source["company_id"],
            "customer_id": source["customer_id"],
            spec.number_field: number,
            spec.date_field: document_date,
            "notes": overrides.notes if overrides.notes is not None else source.get("notes"),
            "source_document_id": source["id"],
            "source_document_type": source_type.value,
            "created_by": self.current_user.id if self.current_user else None,
        }

        if dest_type == DocumentType.DELIVERY_NOTE:
            header.update(
                {
                    "invoice_id": source["id"],
                    "status": "draft",
                    "delivery_method": overrides.delivery_method,
                    "delivery_address": overrides.delivery_address,
                }
            )
            return header

        header.update(
            {
                "subtotal": totals.subtotal,
                "tax_amount": totals.tax_amount,
                "total_amount": totals.total_amount,
                "terms_and_conditions": (
                    overrides.terms_and_conditions
                    if overrides.terms_and_conditions is not None
                    else source.get("terms_and_conditions")
                ),
            }
        )
        if dest_type == DocumentType.INVOICE:
            header.update(
                {
                    "status": InvoiceStatus.SENT.value,
                    "due_date": overrides.due_date
                    or document_date + timedelta(days=settings.invoice_due_days),
                    "paid_amount": ZERO,
                    "balance_due": totals.total_amount,
                    "lpo_number": overrides.lpo_number,
                }
            )
        elif dest_type == DocumentType.PROFORMA:
            header.update(
                {
                    "status": ProformaStatus.DRAFT.value,
                    "valid_until": overrides.valid_until or source.get("valid_until"),
                }
            )
        return header

    @staticmethod
    def _item_rows(
        dest_type: DocumentType,
        items: list[LineItemInput],
        source_items: list[Row],
    ) -> list[dict[str, Any]]:
        if dest_type != DocumentType.DELIVERY_NOTE:
            return [item_row(item, index) for index, item in enumerate(items)]

        ordered = {row["id"]: to_decimal(row["quantity"]) for row in source_items}
        return [
            {
                "product_id": item.product_id,
                "description": item.description,
                "quantity_ordered": ordered.get(item.source_item_id, to_decimal(item.quantity)),
                "quantity_delivered": to_decimal(item.quantity),
                "unit_price": round_money(item.unit_price),
                "sort_order": index,
            }
            for index, item in enumerate(items)
        ]

    async def _to_credit_note(
        self, invoice: Row, overrides: ConversionOverrides
    ) -> OperationResult[ConversionResult]:
        plan = await self.credit_notes.convert_invoice_to_credit_note(invoice["id"])
        credit_note = plan.credit_note.model_copy(
            update={
                key: value
                for key, value in {
                    "credit_note_date": overrides.document_date,
                    "notes": overrides.notes,
                    "terms_and_conditions": overrides.terms_and_conditions,
                }.items()
                if value is not None
            }
        )
        items = overrides.items if overrides.items is not None else plan.items
        totals = aggregate_items(items)
        warnings = self._compare_override_totals(overrides, totals)

        created = await self.credit_notes.create(credit_note, items)
        return OperationResult(
            data=ConversionResult(
                document_type=DocumentType.CREDIT_NOTE,
                document=created.data.credit_note,
                items=created.data.items,
                stock_movements=created.data.stock_movements,
            ),
            warnings=warnings + created.warnings,
        )

    async def _claim_source(self, source_type: DocumentType, source: Row) -> None:
        """
        Prenota la sorgente portandola a `converting` con un confronto atomico.

        Va eseguito nella stessa transazione dell'inserimento del documento
        di destinazione: se l'inserimento fallisce la prenotazione viene
        annullata. Una conversione concorrente della stessa sorgente trova
        lo stato già cambiato e fallisce.

        Raises:
            InvalidStateError: Se la sorgente non è più in uno stato convertibile
        """
        spec = document_table(source_type)
        result = await self.db.rpc(
            "claim_conversion",
            {
                "table": spec.table,
                "record_id": source["id"],
                "company_id": source["company_id"],
                "statuses": sorted(self._convertible_states(source_type)),
                "claim_status": QuotationStatus.CONVERTING.value,
            },
        )
        if result.error is not None and result.error.kind == DbErrorKind.NOT_FOUND:
            logger.warning(
                "%s %s già in conversione o convertito da un'altra richiesta",
                spec.label,
                source.get(spec.number_field),
            )
            raise InvalidStateError(
                f"{spec.label} già convertito",
                extra={"status": QuotationStatus.CONVERTING.value},
            )
        result.unwrap()

    async def _mark_converted(
        self,
        source_type: DocumentType,
        source: Row,
        warnings: list[PartialFailureWarning],
    ) -> bool:
        """Porta la sorgente a `converted` (best effort)."""
        spec = document_table(source_type)
        result = await self.db.update(spec.table, source["id"], {"status": "converted"})
        if result.ok:
            return True

        logger.warning(
            "Stato %s %s non aggiornato a converted: %s",
            spec.label.lower(),
            source["id"],
            result.error.message,
        )
        warnings.append(
            PartialFailureWarning(
                step="source_status",
                message=f"{spec.label} non marcato come convertito: aggiornarlo manualmente",
                detail={"source_id": str(source["id"]), "error_kind": result.error.kind.value},
            )
        )
        return False
