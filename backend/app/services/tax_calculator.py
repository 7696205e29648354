"""
Calcolatore Imposte e Totali Documento
Progetto: Business Manager (Gestionale Commerciale)

Funzioni pure, senza accesso al database:
- compute_line: imponibile, imposta e totale di una riga
- aggregate: totali documento dalla somma delle righe

Tutti gli importi sono Decimal arrotondati a 2 decimali con
ROUND_HALF_UP (metà lontano da zero).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Union

from app.core.exceptions import BusinessValidationError
from app.schemas.document import DocumentTotals, LineAmounts, LineItemInput

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Any) -> Decimal:
    """
    Converte un valore in Decimal.

    I float passano da str() per non ereditare l'errore binario.
    None vale zero.
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        value = value.replace(",", ".")
    return Decimal(str(value))


def round_money(value: Any) -> Decimal:
    """Arrotonda un importo a 2 decimali (ROUND_HALF_UP)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_line(
    quantity: Number,
    unit_price: Number,
    tax_percentage: Number = 0,
    tax_inclusive: bool = False,
    *,
    discount_amount: Number = 0,
    discount_percentage: Number = 0,
) -> LineAmounts:
    """
    Calcola gli importi di una riga.

    Lo sconto si esprime in una sola delle due forme: importo fisso
    prima dell'IVA (`discount_amount`) oppure percentuale
    (`discount_percentage`). Uno sconto superiore all'importo lordo
    porta la riga a zero, mai in negativo.

    Con `tax_inclusive` il prezzo comprende già l'imposta, che viene
    scorporata; altrimenti l'imposta si aggiunge.

    Args:
        quantity: Quantità (> 0)
        unit_price: Prezzo unitario (>= 0)
        tax_percentage: Aliquota (>= 0)
        tax_inclusive: Prezzo IVA inclusa
        discount_amount: Sconto a importo fisso
        discount_percentage: Sconto percentuale

    Returns:
        LineAmounts con subtotal (imponibile), tax_amount, line_total

    Raises:
        BusinessValidationError: Se quantità, prezzo, aliquota o sconti non sono validi
    """
    qty = to_decimal(quantity)
    price = to_decimal(unit_price)
    rate = to_decimal(tax_percentage)
    flat_discount = to_decimal(discount_amount)
    pct_discount = to_decimal(discount_percentage)

    if qty <= 0:
        raise BusinessValidationError(
            f"La quantità deve essere maggiore di zero (ricevuto {qty})",
            extra={"field": "quantity"},
        )
    if price < 0:
        raise BusinessValidationError(
            f"Il prezzo unitario non può essere negativo (ricevuto {price})",
            extra={"field": "unit_price"},
        )
    if rate < 0:
        raise BusinessValidationError(
            "L'aliquota IVA non può essere negativa",
            extra={"field": "tax_percentage"},
        )
    if flat_discount < 0 or pct_discount < 0:
        raise BusinessValidationError(
            "Lo sconto non può essere negativo",
            extra={"field": "discount"},
        )
    if flat_discount > 0 and pct_discount > 0:
        raise BusinessValidationError(
            "Indicare lo sconto come importo oppure come percentuale, non entrambi",
            extra={"field": "discount"},
        )

    base = qty * price
    if pct_discount > 0:
        discount = base * pct_discount / HUNDRED
    else:
        discount = flat_discount
    after_discount = max(base - discount, Decimal("0"))

    if rate == 0:
        tax = Decimal("0")
        total = after_discount
    elif tax_inclusive:
        tax = after_discount - after_discount / (1 + rate / HUNDRED)
        total = after_discount
    else:
        tax = after_discount * rate / HUNDRED
        total = after_discount + tax

    tax_amount = round_money(tax)
    line_total = round_money(total)
    return LineAmounts(
        subtotal=line_total - tax_amount,
        tax_amount=tax_amount,
        line_total=line_total,
    )


def compute_item(item: Union[LineItemInput, Mapping[str, Any]]) -> LineAmounts:
    """Calcola gli importi di una riga schema o di una riga letta dal database."""
    if isinstance(item, LineItemInput):
        item = item.model_dump()
    return compute_line(
        item.get("quantity"),
        item.get("unit_price"),
        item.get("tax_percentage") or 0,
        bool(item.get("tax_inclusive")),
        discount_amount=item.get("discount_before_vat") or 0,
        discount_percentage=item.get("discount_percentage") or 0,
    )


def aggregate(lines: Iterable[LineAmounts]) -> DocumentTotals:
    """
    Somma le righe in totali documento.

    Lista vuota → tutti zero. Il risultato dipende solo dagli importi
    di riga, quindi ricalcolare su righe invariate dà gli stessi totali.
    """
    subtotal = ZERO
    tax_amount = ZERO
    total_amount = ZERO
    for line in lines:
        subtotal += line.subtotal
        tax_amount += line.tax_amount
        total_amount += line.line_total
    return DocumentTotals(
        subtotal=round_money(subtotal),
        tax_amount=round_money(tax_amount),
        total_amount=round_money(total_amount),
    )


def aggregate_items(items: Iterable[Union[LineItemInput, Mapping[str, Any]]]) -> DocumentTotals:
    """Calcola e somma le righe in un passo solo."""
    return aggregate(compute_item(item) for item in items)


def item_row(item: LineItemInput, sort_order: int) -> dict[str, Any]:
    """
    Prepara i campi di una riga documento con importi ricalcolati.

    La chiave del documento padre (invoice_id, quotation_id, ...) va
    aggiunta dal chiamante.
    """
    amounts = compute_item(item)
    return {
        "product_id": item.product_id,
        "description": item.description,
        "quantity": to_decimal(item.quantity),
        "unit_price": round_money(item.unit_price),
        "discount_before_vat": round_money(item.discount_before_vat),
        "discount_percentage": to_decimal(item.discount_percentage),
        "tax_percentage": to_decimal(item.tax_percentage),
        "tax_inclusive": item.tax_inclusive,
        "tax_amount": amounts.tax_amount,
        "line_total": amounts.line_total,
        "sort_order": sort_order,
    }


__all__ = [
    "to_decimal",
    "round_money",
    "compute_line",
    "compute_item",
    "aggregate",
    "aggregate_items",
    "item_row",
]
