"""
Money and tax math for line items.

Pure functions over Decimal. Nothing here rounds. Amounts are kept exact
so document totals always reconcile with their items. Rounding is a
presentation concern (see format_money).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple

from core.exceptions import InvalidArgumentError
from core.models.line_item import TaxType

# Rates are percentages. Persisted alongside each item, so changing this
# table never rewrites existing documents.
TAX_RATES: dict[TaxType, Decimal] = {
    TaxType.STANDARD: Decimal("21"),
    TaxType.REDUCED: Decimal("9"),
    TaxType.ZERO: Decimal("0"),
    TaxType.EXEMPT: Decimal("0"),
    TaxType.REVERSE_CHARGE: Decimal("0"),
}

_HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


class LineAmounts(NamedTuple):
    """Computed amounts for one line (or a sum of lines)."""

    subtotal: Decimal
    tax_amount: Decimal
    total: Decimal


ZERO_AMOUNTS = LineAmounts(Decimal("0"), Decimal("0"), Decimal("0"))


def to_decimal(value: Decimal | int | float | str) -> Decimal:
    """Coerce a numeric input to Decimal without binary float drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def resolve_tax_rate(tax_type: TaxType, explicit_rate: Decimal | None = None) -> Decimal:
    """
    Effective tax rate for an item.

    An explicit rate always wins over the tax type's table rate.
    """
    if explicit_rate is not None:
        if explicit_rate < 0:
            raise InvalidArgumentError(f"Tax rate must be >= 0, got {explicit_rate}")
        return to_decimal(explicit_rate)
    return TAX_RATES[TaxType(tax_type)]


def validate_line_inputs(quantity: Decimal, unit_price: Decimal) -> None:
    """
    Check line preconditions.

    Raises:
        InvalidArgumentError: If quantity <= 0 or unit_price < 0
    """
    if quantity is None or to_decimal(quantity) <= 0:
        raise InvalidArgumentError(f"Quantity must be greater than 0, got {quantity}")
    if unit_price is None or to_decimal(unit_price) < 0:
        raise InvalidArgumentError(f"Unit price must be >= 0, got {unit_price}")


def compute_line(
    quantity: Decimal | int | float | str,
    unit_price: Decimal | int | float | str,
    tax_rate: Decimal | int | float | str,
) -> LineAmounts:
    """
    Compute subtotal, tax and total for one line.

    Args:
        quantity: Units (> 0)
        unit_price: Price per unit (>= 0)
        tax_rate: Percentage, e.g. 21 for 21%

    Returns:
        LineAmounts(subtotal, tax_amount, total), unrounded

    Raises:
        InvalidArgumentError: If quantity <= 0 or unit_price < 0
    """
    quantity = to_decimal(quantity)
    unit_price = to_decimal(unit_price)
    validate_line_inputs(quantity, unit_price)

    subtotal = quantity * unit_price
    tax_amount = subtotal * to_decimal(tax_rate) / _HUNDRED
    return LineAmounts(subtotal, tax_amount, subtotal + tax_amount)


def sum_amounts(lines: Iterable[LineAmounts]) -> LineAmounts:
    """Sum line amounts component-wise."""
    subtotal, tax_amount, total = ZERO_AMOUNTS
    for line in lines:
        subtotal += line.subtotal
        tax_amount += line.tax_amount
        total += line.total
    return LineAmounts(subtotal, tax_amount, total)


def format_money(amount: Decimal, currency: str) -> str:
    """Display form, rounded half-up to cents: 'EUR 1,234.50'."""
    rounded = to_decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP)
    return f"{currency} {rounded:,.2f}"
