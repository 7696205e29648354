"""
Regola di saldo e stato fattura
Progetto: Business Manager (Gestionale Commerciale)

Unico punto in cui si deriva lo stato di pagamento di una fattura.
Usata da pagamenti, ricevute, note di credito e riconciliazione.
"""

from decimal import Decimal
from typing import Any, Optional

from app.core.config import settings
from app.schemas.common import InvoiceStatus
from app.schemas.payment import InvoiceBalance
from app.services.tax_calculator import ZERO, round_money

# Stati che non vengono mai modificati dai ricalcoli di saldo
FROZEN_STATUSES = frozenset({InvoiceStatus.CANCELLED.value})


def derive_invoice_balance(
    total_amount: Any,
    paid_amount: Any,
    current_status: str,
    credited_amount: Any = ZERO,
    *,
    reset_unpaid: bool = False,
    tolerance: Optional[Decimal] = None,
) -> InvoiceBalance:
    """
    Calcola paid_amount, balance_due e stato di una fattura.

    - balance_due = max(0, total - paid - credited)
    - paid se balance_due < tolleranza e incassato (pagato + accreditato) > tolleranza
    - partial se incassato > tolleranza
    - altrimenti lo stato resta invariato; con `reset_unpaid` una fattura
      paid/partial senza più incassi torna a `sent`

    Args:
        total_amount: Totale fattura
        paid_amount: Somma dei pagamenti allocati
        current_status: Stato attuale
        credited_amount: Somma dei crediti (note di credito) applicati
        reset_unpaid: Riporta a `sent` le fatture rimaste senza incassi
        tolerance: Tolleranza (default: settings.money_tolerance)

    Returns:
        InvoiceBalance con i valori ricalcolati
    """
    tol = settings.money_tolerance if tolerance is None else tolerance
    total = round_money(total_amount)
    paid = round_money(paid_amount)
    credited = round_money(credited_amount)

    balance_due = max(round_money(total - paid - credited), ZERO)
    status = derive_status(
        balance_due,
        paid + credited,
        current_status,
        reset_unpaid=reset_unpaid,
        tolerance=tol,
    )
    return InvoiceBalance(paid_amount=paid, balance_due=balance_due, status=status)


def derive_status(
    balance_due: Decimal,
    settled: Decimal,
    current_status: str,
    *,
    reset_unpaid: bool = False,
    tolerance: Optional[Decimal] = None,
) -> str:
    """Stato fattura dato il saldo residuo e l'importo incassato o accreditato."""
    tol = settings.money_tolerance if tolerance is None else tolerance
    if current_status in FROZEN_STATUSES:
        return current_status
    if balance_due < tol and settled > tol:
        return InvoiceStatus.PAID.value
    if settled > tol:
        return InvoiceStatus.PARTIAL.value
    if reset_unpaid and current_status in (InvoiceStatus.PAID.value, InvoiceStatus.PARTIAL.value):
        return InvoiceStatus.SENT.value
    return current_status


def invoice_patch(balance: InvoiceBalance) -> dict[str, Any]:
    """Campi da scrivere sulla fattura per un saldo ricalcolato."""
    return {
        "paid_amount": balance.paid_amount,
        "balance_due": balance.balance_due,
        "status": balance.status,
    }
