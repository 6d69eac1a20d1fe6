"""Partition validated cart lines into one order group per seller.

Pure functions only: no database access. Money is carried as integer cents
so the sum of line subtotals always equals the group total exactly.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Tuple

CENT = Decimal("0.01")


def to_cents(amount) -> int:
    """Convert a money amount to integer cents, rounding half up."""
    return int(Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


@dataclass(frozen=True)
class ValidatedLine:
    """A cart line re-priced against live inventory at validation time."""

    product_id: int
    seller_id: int
    title: str
    quantity: int
    unit_price_cents: int
    is_available: bool = True

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    @property
    def unit_price(self) -> Decimal:
        return from_cents(self.unit_price_cents)

    @property
    def line_total(self) -> Decimal:
        return from_cents(self.line_total_cents)


@dataclass(frozen=True)
class OrderGroup:
    """Everything needed to persist one seller's order."""

    seller_id: int
    buyer_id: int
    lines: Tuple[ValidatedLine, ...]
    total_cents: int
    delivery_address: str
    payment_method: str
    notes: str = ""

    @property
    def total(self) -> Decimal:
        return from_cents(self.total_cents)


def split_by_seller(
    lines: Iterable[ValidatedLine],
    *,
    buyer_id: int,
    delivery_address: str,
    payment_method: str,
    notes: str = "",
) -> Tuple[OrderGroup, ...]:
    """Group lines by seller.

    Groups come out in ascending seller id and lines inside a group in
    ascending product id; checkout decrements stock in exactly this order.
    """

    by_seller: Dict[int, List[ValidatedLine]] = {}
    for line in lines:
        by_seller.setdefault(line.seller_id, []).append(line)

    groups = []
    for seller_id in sorted(by_seller):
        ordered = tuple(sorted(by_seller[seller_id], key=lambda ln: ln.product_id))
        groups.append(
            OrderGroup(
                seller_id=seller_id,
                buyer_id=buyer_id,
                lines=ordered,
                total_cents=sum(ln.line_total_cents for ln in ordered),
                delivery_address=delivery_address,
                payment_method=payment_method,
                notes=notes,
            )
        )
    return tuple(groups)
