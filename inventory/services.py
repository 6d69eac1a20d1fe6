"""Inventory services (single-location): transactional stock movements."""

import logging

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .models import StockItem, StockMovement

logger = logging.getLogger("marketplace.inventory")


class MovementError(Exception):
    pass


@transaction.atomic
def decrement_stock(*, product_id: int, quantity: int, reason: str = "checkout", reference: str = "") -> bool:
    """Take ``quantity`` units off a product's stock if at least that many remain.

    The check and the write are one conditional ``UPDATE ... WHERE quantity >= n``
    so concurrent callers can never drive stock negative. Zero affected rows
    always means the decrement was refused (insufficient stock or no stock
    row); it is never reported as a successful no-op.

    Callers that need all-or-nothing semantics across several products must
    wrap the calls in their own ``transaction.atomic`` block.
    """

    if quantity <= 0:
        raise MovementError("Decrement quantity must be positive")
    updated = StockItem.objects.filter(product_id=product_id, quantity__gte=quantity).update(
        quantity=F("quantity") - quantity,
        updated_at=timezone.now(),
    )
    if updated == 0:
        logger.info(
            "inventory.decrement_refused",
            extra={
                "event": "inventory.decrement_refused",
                "product_id": product_id,
                "quantity": quantity,
                "reference": reference,
            },
        )
        return False
    stock_item_id = StockItem.objects.values_list("id", flat=True).get(product_id=product_id)
    StockMovement.objects.create(
        stock_item_id=stock_item_id,
        movement_type=StockMovement.TYPE_OUTBOUND,
        quantity=-int(quantity),
        reason=reason,
        reference=reference,
    )
    return True
