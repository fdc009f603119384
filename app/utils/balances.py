"""
Balance arithmetic shared by the budget, expense and fund routes.

Amounts are summed as Decimal so that values such as 0.1 + 0.2 compare
exactly against a principal of 0.3, then returned as floats rounded to cents.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, localcontext
from typing import Any, Dict, Iterable, Optional

STATUS_OPEN = "OPEN"
STATUS_PAID = "PAID"

_CENTS = Decimal("0.01")
# Enough digits to quantize any amount the request models accept
_PRECISION = 40


class BalanceError(ValueError):
    """A mutation would break a fund or budget balance rule."""


@dataclass
class FundBalance:
    """Computed view of how much of a fund has been repaid."""

    total_paid: float
    outstanding: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _dec(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _money(value: Decimal) -> float:
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return float(value.quantize(_CENTS))


def _sum_amounts(items: Iterable[Dict[str, Any]]) -> Decimal:
    return sum((_dec(item.get("amount")) for item in items), Decimal("0"))


def total_expenses(expenses: Iterable[Dict[str, Any]]) -> float:
    return _money(_sum_amounts(expenses))


def calculate_remaining(
    base_income: Optional[float],
    expenses: Iterable[Dict[str, Any]],
) -> Optional[float]:
    """Base income minus every expense; None until an income is set. Can go negative."""
    if base_income is None:
        return None
    return _money(_dec(base_income) - _sum_amounts(expenses))


def total_paid(transactions: Iterable[Dict[str, Any]]) -> float:
    return _money(_sum_amounts(transactions))


def outstanding(principal: float, paid: float) -> float:
    remaining = _dec(principal) - _dec(paid)
    if remaining < 0:
        remaining = Decimal("0")
    return _money(remaining)


def fund_status(outstanding_amount: float) -> str:
    return STATUS_OPEN if outstanding_amount > 0 else STATUS_PAID


def summarize_fund(fund: Dict[str, Any], transactions: Iterable[Dict[str, Any]]) -> FundBalance:
    paid = total_paid(transactions)
    left = outstanding(fund["principal_amount"], paid)
    return FundBalance(total_paid=paid, outstanding=left, status=fund_status(left))


def check_transaction_allowed(
    principal: float,
    paid: float,
    amount: float,
    replaced_amount: float = 0.0,
) -> float:
    """
    Ensure adding ``amount`` (optionally in place of an existing transaction of
    ``replaced_amount``) keeps the cumulative paid total within the principal.
    Returns the paid total after the change.
    """
    if _dec(amount) <= 0:
        raise BalanceError("transaction amount must be greater than 0")

    paid_without = _dec(paid) - _dec(replaced_amount)
    if paid_without + _dec(amount) > _dec(principal):
        max_allowed = _dec(principal) - paid_without
        raise BalanceError(
            f"transaction amount would exceed principal amount. Maximum allowed: {max_allowed:.2f}"
        )
    return paid_after(paid, amount, replaced_amount)


def paid_after(paid: float, amount: float = 0.0, replaced_amount: float = 0.0) -> float:
    return _money(_dec(paid) - _dec(replaced_amount) + _dec(amount))


def check_principal_allowed(principal: float, paid: float) -> None:
    if _dec(principal) <= 0:
        raise BalanceError("principal amount must be greater than 0")
    if _dec(principal) < _dec(paid):
        raise BalanceError(f"principal amount cannot be less than total paid ({_dec(paid):.2f})")
