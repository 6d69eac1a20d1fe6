"""Advisory cart validation against live inventory.

The result tells the client what is wrong with its cart; it is never the
gate against concurrent stock changes, which checkout enforces at commit.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Tuple

from inventory.gateway import InventoryGateway, get_inventory_gateway
from orders.splitting import ValidatedLine, from_cents, to_cents

from .models import Cart
from .services import get_cart_lines


@dataclass(frozen=True)
class CartValidation:
    valid: bool
    errors: Tuple[str, ...]
    warnings: Tuple[str, ...]
    lines: Tuple[ValidatedLine, ...]
    cart_version: int = 0

    @property
    def total_cents(self) -> int:
        return sum(line.line_total_cents for line in self.lines)

    @property
    def total(self) -> Decimal:
        return from_cents(self.total_cents)

    @property
    def is_empty(self) -> bool:
        return not self.lines and self.errors == ("cart is empty",)


def validate_cart(
    *,
    user,
    inventory: Optional[InventoryGateway] = None,
    known_prices: Optional[Mapping[int, Decimal]] = None,
) -> CartValidation:
    """Reconcile the user's cart with current price, stock and availability.

    ``known_prices`` maps product id to the price the client last saw; when
    absent the price cached on the cart line is compared instead. A price
    difference is a warning, never an error, and the current price wins.
    """

    inventory = inventory or get_inventory_gateway()
    version = Cart.objects.filter(user=user).values_list("version", flat=True).first() or 0
    cart_lines = get_cart_lines(user=user)
    if not cart_lines:
        return CartValidation(valid=False, errors=("cart is empty",), warnings=(), lines=(), cart_version=version)

    snapshots = inventory.get_snapshots(line.product_id for line in cart_lines)
    errors, warnings, validated = [], [], []
    for line in cart_lines:
        snap = snapshots.get(line.product_id)
        if snap is None:
            errors.append(f"product {line.product_id} was not found")
            continue
        if snap.stock <= 0:
            errors.append(f"product {snap.title} is out of stock")
            continue
        if snap.stock < line.quantity:
            errors.append(f"only {snap.stock} units available for {snap.title}")
            continue
        if not snap.is_available:
            errors.append(f"product {snap.title} is not available")
            continue

        if known_prices is not None and line.product_id in known_prices:
            seen = known_prices[line.product_id]
        else:
            seen = line.unit_price
        current_cents = to_cents(snap.unit_price)
        if seen is not None and to_cents(seen) != current_cents:
            warnings.append(
                f"price of {snap.title} changed from {from_cents(to_cents(seen))} to {from_cents(current_cents)}"
            )

        validated.append(
            ValidatedLine(
                product_id=snap.product_id,
                seller_id=snap.seller_id,
                title=snap.title,
                quantity=int(line.quantity),
                unit_price_cents=current_cents,
                is_available=snap.is_available,
            )
        )

    return CartValidation(
        valid=not errors,
        errors=tuple(errors),
        warnings=tuple(warnings),
        lines=tuple(validated),
        cart_version=version,
    )
