"""
Cart and order totals.

Amounts keep full precision; only ``round_money`` (used when serialising)
quantizes to two decimal places.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from cafeteria.errors import InvalidArgumentError

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class PricedLine:
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def compute_totals(lines: Iterable[PricedLine], tax_rate: Decimal) -> Totals:
    subtotal = Decimal("0")
    for line in lines:
        if line.quantity < 1:
            raise InvalidArgumentError(f"Quantity must be at least 1, got {line.quantity}")
        if line.unit_price < 0:
            raise InvalidArgumentError(f"Unit price must be non-negative, got {line.unit_price}")
        subtotal += line.subtotal
    tax = subtotal * tax_rate
    return Totals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
