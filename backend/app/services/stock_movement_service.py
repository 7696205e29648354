"""
Service Layer per i Movimenti di Magazzino
Progetto: Business Manager (Gestionale Commerciale)

Registro append-only dei movimenti IN/OUT legati a un documento.
Gli storni sono nuovi movimenti con tipo invertito e reference_type
con suffisso `_REVERSAL`, sullo stesso reference_id.

La giacenza in cache del prodotto (products.stock_quantity) viene
aggiornata dopo ogni movimento; un errore in questo aggiornamento
viene registrato come avviso e non annulla il movimento.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Awaitable, Iterable, Mapping, Optional, Union

from app.core.datastore import Database, Row
from app.core.exceptions import BusinessValidationError, DatabaseOperationError, NotFoundError
from app.schemas.common import MovementType, OperationResult, PartialFailureWarning
from app.schemas.token import CurrentUser
from app.services.tax_calculator import to_decimal

logger = logging.getLogger(__name__)

REVERSAL_SUFFIX = "_REVERSAL"


def reversal_reference(reference_type: str) -> str:
    """Tipo di riferimento degli storni (es. CREDIT_NOTE → CREDIT_NOTE_REVERSAL)."""
    return f"{reference_type}{REVERSAL_SUFFIX}"


def signed_quantity(movement: Mapping[str, Any]) -> Decimal:
    """Quantità con segno: positiva per IN, negativa per OUT."""
    quantity = to_decimal(movement["quantity"])
    return quantity if movement["movement_type"] == MovementType.IN.value else -quantity


async def best_effort(
    operation: Awaitable[OperationResult],
    step: str,
    **detail: Any,
) -> OperationResult:
    """
    Esegue un'operazione di magazzino senza propagarne gli errori.

    Un errore di persistenza, o un prodotto che non appartiene
    all'azienda, diventa un PartialFailureWarning e il risultato
    contiene una lista vuota di movimenti.
    """
    try:
        return await operation
    except (DatabaseOperationError, NotFoundError) as exc:
        logger.warning("Operazione di magazzino '%s' fallita: %s", step, exc.detail)
        return OperationResult(
            data=[],
            warnings=[
                PartialFailureWarning(
                    step=step,
                    message="Movimenti di magazzino non registrati: correggere manualmente",
                    detail={
                        **{key: str(value) for key, value in detail.items()},
                        **exc.extra,
                    },
                )
            ],
        )


class StockMovementService:
    """
    Service per il registro dei movimenti di magazzino.

    Args:
        db: Capability di persistenza
        current_user: Utente che registra i movimenti (opzionale)
    """

    def __init__(self, db: Database, current_user: Optional[CurrentUser] = None) -> None:
        self.db = db
        self.current_user = current_user

    # ------------------------------------------------------------
    # Registrazione
    # ------------------------------------------------------------

    async def record(
        self,
        company_id: uuid.UUID,
        product_id: uuid.UUID,
        movement_type: Union[MovementType, str],
        quantity: Any,
        reference_type: str,
        reference_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        Registra un movimento di magazzino.

        Args:
            company_id: Azienda
            product_id: Prodotto movimentato
            movement_type: IN o OUT
            quantity: Quantità (> 0)
            reference_type: Tipo documento di riferimento (INVOICE, CREDIT_NOTE, ...)
            reference_id: ID documento di riferimento
            notes: Note

        Returns:
            OperationResult con il movimento creato e gli eventuali avvisi
            sull'aggiornamento della giacenza

        Raises:
            BusinessValidationError: Se la quantità non è positiva
            DatabaseOperationError: Se l'inserimento del movimento fallisce
        """
        result = await self.record_many(
            company_id,
            [{"product_id": product_id, "quantity": quantity}],
            movement_type,
            reference_type,
            reference_id,
            notes,
        )
        return OperationResult(data=result.data[0], warnings=result.warnings)

    async def record_many(
        self,
        company_id: uuid.UUID,
        lines: Iterable[Mapping[str, Any]],
        movement_type: Union[MovementType, str],
        reference_type: str,
        reference_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        Registra un movimento per ogni riga con prodotto.

        Le righe senza product_id vengono ignorate.

        Returns:
            OperationResult con la lista dei movimenti creati (anche vuota)

        Raises:
            BusinessValidationError: Se una quantità non è positiva
            NotFoundError: Se un prodotto non esiste o appartiene a un'altra azienda
            DatabaseOperationError: Se l'inserimento dei movimenti fallisce
        """
        movement_type = MovementType(movement_type)
        rows = []
        for line in lines:
            if not line.get("product_id"):
                continue
            quantity = to_decimal(line.get("quantity"))
            if quantity <= 0:
                raise BusinessValidationError(
                    f"La quantità del movimento deve essere maggiore di zero (ricevuto {quantity})",
                    extra={"product_id": str(line.get("product_id"))},
                )
            rows.append(
                {
                    "company_id": company_id,
                    "product_id": line["product_id"],
                    "movement_type": movement_type.value,
                    "quantity": quantity,
                    "reference_type": reference_type,
                    "reference_id": reference_id,
                    "movement_date": date.today(),
                    "notes": notes,
                    "created_by": self.current_user.id if self.current_user else None,
                }
            )

        if not rows:
            return OperationResult(data=[])

        await self._check_products(company_id, {row["product_id"] for row in rows})
        movements = (await self.db.insert_many("stock_movements", rows)).unwrap()
        logger.info(
            "Registrati %d movimenti %s per %s %s",
            len(movements),
            movement_type.value,
            reference_type,
            reference_id,
        )
        warnings = await self._update_cached_stock(movements)
        return OperationResult(data=movements, warnings=warnings)

    # ------------------------------------------------------------
    # Storno
    # ------------------------------------------------------------

    async def reverse(
        self,
        reference_type: str,
        reference_id: uuid.UUID,
        company_id: Optional[uuid.UUID] = None,
    ) -> OperationResult:
        """
        Storna i movimenti di un documento.

        Emette un movimento compensativo per ogni movimento originale
        non ancora stornato, con tipo invertito e reference_type
        `<originale>_REVERSAL` sullo stesso reference_id. Le quantità
        già stornate in precedenza vengono scalate, quindi chiamate
        ripetute non stornano due volte lo stesso movimento.

        Solo i movimenti dell'azienda indicata (default: quella
        dell'utente corrente) vengono letti e stornati.

        Returns:
            OperationResult con i movimenti di storno creati
            (lista vuota se non c'è nulla da stornare)

        Raises:
            BusinessValidationError: Se l'azienda non è determinabile
            DatabaseOperationError: Se lettura o inserimento falliscono
        """
        company_id = self._company(company_id)
        originals = (
            await self.db.select(
                "stock_movements",
                {
                    "company_id": company_id,
                    "reference_type": reference_type,
                    "reference_id": reference_id,
                },
                order_by="created_at",
            )
        ).unwrap()
        if not originals:
            return OperationResult(data=[])

        previous = (
            await self.db.select(
                "stock_movements",
                {
                    "company_id": company_id,
                    "reference_type": reversal_reference(reference_type),
                    "reference_id": reference_id,
                },
            )
        ).unwrap()

        # Quantità già stornata per (prodotto, tipo del movimento originale)
        already_reversed: dict[tuple[Any, str], Decimal] = defaultdict(Decimal)
        for movement in previous:
            original_type = MovementType(movement["movement_type"]).inverted().value
            already_reversed[(movement["product_id"], original_type)] += to_decimal(movement["quantity"])

        rows = []
        for movement in originals:
            key = (movement["product_id"], movement["movement_type"])
            quantity = to_decimal(movement["quantity"])
            covered = min(already_reversed[key], quantity)
            already_reversed[key] -= covered
            outstanding = quantity - covered
            if outstanding <= 0:
                continue
            rows.append(
                {
                    "company_id": movement["company_id"],
                    "product_id": movement["product_id"],
                    "movement_type": MovementType(movement["movement_type"]).inverted().value,
                    "quantity": outstanding,
                    "reference_type": reversal_reference(reference_type),
                    "reference_id": reference_id,
                    "cost_per_unit": movement.get("cost_per_unit"),
                    "movement_date": date.today(),
                    "notes": f"Storno {reference_type}: {movement.get('notes') or ''}".strip(),
                    "created_by": self.current_user.id if self.current_user else None,
                }
            )

        if not rows:
            logger.info("Nessun movimento da stornare per %s %s", reference_type, reference_id)
            return OperationResult(data=[])

        reversals = (await self.db.insert_many("stock_movements", rows)).unwrap()
        logger.info(
            "Stornati %d movimenti per %s %s",
            len(reversals),
            reference_type,
            reference_id,
        )
        warnings = await self._update_cached_stock(reversals)
        return OperationResult(data=reversals, warnings=warnings)

    async def list_for_reference(
        self,
        reference_type: str,
        reference_id: uuid.UUID,
        company_id: Optional[uuid.UUID] = None,
    ) -> list[Row]:
        """Movimenti originali e storni di un documento dell'azienda."""
        rows = (
            await self.db.select(
                "stock_movements",
                {
                    "company_id": self._company(company_id),
                    "reference_type": [reference_type, reversal_reference(reference_type)],
                    "reference_id": reference_id,
                },
                order_by="created_at",
            )
        ).unwrap()
        return rows

    # ------------------------------------------------------------
    # Ambito aziendale
    # ------------------------------------------------------------

    def _company(self, company_id: Optional[uuid.UUID]) -> uuid.UUID:
        if company_id is None and self.current_user is not None:
            company_id = self.current_user.company_id
        if company_id is None:
            raise BusinessValidationError("Azienda non specificata per i movimenti di magazzino")
        return company_id

    async def _check_products(self, company_id: uuid.UUID, product_ids: set[Any]) -> None:
        """Verifica che tutti i prodotti appartengano all'azienda."""
        found = (
            await self.db.select("products", {"id": list(product_ids), "company_id": company_id})
        ).unwrap()
        missing = product_ids - {product["id"] for product in found}
        if missing:
            logger.warning(
                "Movimento rifiutato: prodotti %s non presenti nell'azienda %s",
                sorted(str(product_id) for product_id in missing),
                company_id,
            )
            raise NotFoundError(
                "Prodotto non trovato",
                extra={"product_ids": sorted(str(product_id) for product_id in missing)},
            )

    # ------------------------------------------------------------
    # Giacenza in cache
    # ------------------------------------------------------------

    async def _update_cached_stock(self, movements: list[Row]) -> list[PartialFailureWarning]:
        """Applica i movimenti alla giacenza dei prodotti (best effort)."""
        warnings = []
        for movement in movements:
            result = await self.db.rpc(
                "update_product_stock",
                {
                    "product_id": movement["product_id"],
                    "quantity_delta": signed_quantity(movement),
                },
            )
            if not result.ok:
                logger.warning(
                    "Aggiornamento giacenza fallito per prodotto %s: %s",
                    movement["product_id"],
                    result.error.message,
                )
                warnings.append(
                    PartialFailureWarning(
                        step="stock_quantity",
                        message="Giacenza prodotto non aggiornata: il movimento è stato registrato",
                        detail={
                            "product_id": str(movement["product_id"]),
                            "movement_id": str(movement.get("id")),
                            "error_kind": result.error.kind.value,
                        },
                    )
                )
        return warnings
