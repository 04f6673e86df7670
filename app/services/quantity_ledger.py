"""
Quantity Ledger - shared arithmetic for purchases, orders and remitos.

Pure functions, no I/O. Every total in the workflow services goes through
these helpers so that money is computed once, in Decimal, with the same
rounding everywhere.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional, Tuple, Union

Number = Union[Decimal, int, str, float]

MONEY_QUANT = Decimal('0.01')
QTY_QUANT = Decimal('0.001')
ZERO = Decimal('0')


def to_decimal(value: Optional[Number], field: str = 'valor') -> Decimal:
    """
    Coerce a numeric input to Decimal.

    Floats go through str() so 0.1 stays 0.1. None is treated as zero.

    Raises:
        ValueError: If the value is not numeric
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool):
        raise ValueError(f'{field} inválido: {value!r}')
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f'{field} inválido: {value!r}')
    if not result.is_finite():
        raise ValueError(f'{field} inválido: {value!r}')
    return result


def quantize_money(amount: Number) -> Decimal:
    return to_decimal(amount).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def quantize_qty(quantity: Number) -> Decimal:
    return to_decimal(quantity).quantize(QTY_QUANT, rounding=ROUND_HALF_UP)


def pending_quantity(ordered: Number, received: Number) -> Decimal:
    """Ordered minus received, floored at zero."""
    pending = to_decimal(ordered) - to_decimal(received)
    return pending if pending > ZERO else ZERO


def line_total(quantity: Number, unit_price: Number) -> Decimal:
    """quantity * unit_price rounded to cents."""
    return quantize_money(to_decimal(quantity) * to_decimal(unit_price))


def aggregate_total(lines: Iterable[Tuple[Number, Number]], ancillary_costs: Number = 0) -> Decimal:
    """
    Sum of line totals plus ancillary costs (transport, etc.).

    Args:
        lines: iterable of (quantity, unit_price) pairs
        ancillary_costs: added once to the sum
    """
    total = sum((line_total(qty, price) for qty, price in lines), ZERO)
    return quantize_money(total + to_decimal(ancillary_costs))


def total_quantity(quantities: Iterable[Number]) -> Decimal:
    return sum((to_decimal(q) for q in quantities), ZERO)
