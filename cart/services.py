"""Cart services: per-user cart mutations.

Every mutation locks the user's ``Cart`` row first, so concurrent requests of
the same user serialize, and bumps ``Cart.version`` so a checkout in flight
can tell the cart changed underneath it. Stock checks made here are advisory;
checkout re-checks authoritatively at commit.
"""

import logging
from datetime import timedelta
from typing import List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from inventory.gateway import InventoryGateway, get_inventory_gateway

from .errors import CartLineNotFound, InsufficientStock, ProductNotFound, QuantityOutOfRange
from .models import Cart, CartItem

logger = logging.getLogger("marketplace.cart")


def _max_quantity() -> int:
    return int(getattr(settings, "CART_MAX_LINE_QUANTITY", 100))


def _lock_cart(user) -> Cart:
    Cart.objects.get_or_create(user=user)
    cart = Cart.objects.select_for_update().get(user=user)
    if cart.is_checked_out:
        _discard_checked_out_lines(cart)
    return cart


def _bump_version(cart: Cart) -> None:
    cart.version += 1
    cart.save(update_fields=["version", "updated_at"])


def _discard_checked_out_lines(cart: Cart) -> int:
    # Caller holds the cart lock; every line left on a checked-out cart was ordered
    deleted, _ = CartItem.objects.filter(cart=cart).delete()
    cart.checked_out_version = None
    cart.version += 1
    cart.save(update_fields=["version", "checked_out_version", "updated_at"])
    return deleted


def _check_quantity(quantity: int) -> None:
    limit = _max_quantity()
    if quantity < 1 or quantity > limit:
        raise QuantityOutOfRange(f"quantity must be between 1 and {limit}")


def _check_stock(inventory: InventoryGateway, product_id: int, quantity: int):
    snapshot = inventory.get_snapshot(product_id)
    if snapshot is None:
        raise ProductNotFound(product_id)
    if not snapshot.is_available:
        raise InsufficientStock(f"product {snapshot.title} is not available", product_id=product_id)
    if snapshot.stock <= 0:
        raise InsufficientStock(f"product {snapshot.title} is out of stock", product_id=product_id)
    if snapshot.stock < quantity:
        raise InsufficientStock(
            f"only {snapshot.stock} units available for {snapshot.title}",
            product_id=product_id,
            available=snapshot.stock,
        )
    return snapshot


def get_cart_lines(*, user) -> List[CartItem]:
    """Return the user's cart lines, most recently added first.

    A cart whose lines were already checked out reads as empty, even while
    the post-checkout clear has not run yet.
    """

    cart = Cart.objects.filter(user=user).first()
    if cart is None or cart.is_checked_out:
        return []
    return list(CartItem.objects.select_related("product").filter(cart=cart).order_by("-added_at", "-id"))


@transaction.atomic
def add_item(*, user, product_id: int, quantity: int, inventory: Optional[InventoryGateway] = None) -> CartItem:
    """Add a product to the user's cart.

    Adding a product already in the cart sums the quantities; the resulting
    quantity must stay within the per-line maximum and the current stock.
    """

    _check_quantity(quantity)
    inventory = inventory or get_inventory_gateway()
    cart = _lock_cart(user)
    item = CartItem.objects.filter(cart=cart, product_id=product_id).first()
    new_quantity = quantity + (item.quantity if item else 0)
    _check_quantity(new_quantity)
    snapshot = _check_stock(inventory, product_id, new_quantity)

    now = timezone.now()
    if item is None:
        item = CartItem.objects.create(
            cart=cart,
            product_id=product_id,
            quantity=new_quantity,
            unit_price=snapshot.unit_price,
            added_at=now,
        )
        event = "cart.item_added"
    else:
        item.quantity = new_quantity
        item.unit_price = snapshot.unit_price
        item.added_at = now
        item.save(update_fields=["quantity", "unit_price", "added_at", "updated_at"])
        event = "cart.item_updated"
    _bump_version(cart)
    logger.info(
        event,
        extra={
            "event": event,
            "cart_id": cart.id,
            "user_id": getattr(user, "id", None),
            "product_id": product_id,
            "quantity": new_quantity,
        },
    )
    return item


@transaction.atomic
def update_item_quantity(
    *, user, product_id: int, quantity: int, inventory: Optional[InventoryGateway] = None
) -> Optional[CartItem]:
    """Overwrite a line's quantity; a quantity of zero or less removes the line."""

    if quantity <= 0:
        remove_item(user=user, product_id=product_id)
        return None
    _check_quantity(quantity)
    inventory = inventory or get_inventory_gateway()
    cart = _lock_cart(user)
    try:
        item = CartItem.objects.get(cart=cart, product_id=product_id)
    except CartItem.DoesNotExist:
        raise CartLineNotFound(product_id)
    snapshot = _check_stock(inventory, product_id, quantity)

    item.quantity = quantity
    item.unit_price = snapshot.unit_price
    item.added_at = timezone.now()
    item.save(update_fields=["quantity", "unit_price", "added_at", "updated_at"])
    _bump_version(cart)
    logger.info(
        "cart.item_updated",
        extra={
            "event": "cart.item_updated",
            "cart_id": cart.id,
            "user_id": getattr(user, "id", None),
            "product_id": product_id,
            "quantity": quantity,
        },
    )
    return item


@transaction.atomic
def remove_item(*, user, product_id: int) -> bool:
    """Remove a product from the cart; returns whether a line was removed."""

    cart = _lock_cart(user)
    deleted, _ = CartItem.objects.filter(cart=cart, product_id=product_id).delete()
    if not deleted:
        return False
    _bump_version(cart)
    logger.info(
        "cart.item_removed",
        extra={
            "event": "cart.item_removed",
            "cart_id": cart.id,
            "user_id": getattr(user, "id", None),
            "product_id": product_id,
        },
    )
    return True


@transaction.atomic
def clear_cart(*, user) -> int:
    """Delete every line of the user's cart and return how many were removed."""

    cart = _lock_cart(user)
    deleted, _ = CartItem.objects.filter(cart=cart).delete()
    _bump_version(cart)
    logger.info(
        "cart.cleared",
        extra={"event": "cart.cleared", "cart_id": cart.id, "user_id": getattr(user, "id", None), "removed": deleted},
    )
    return deleted


@transaction.atomic
def clear_checked_out_lines(*, user, version: int) -> int:
    """Delete the lines a checkout committed at cart ``version``.

    Does nothing when the cart moved past that version, since any later
    mutation already discarded the ordered lines and what remains is new.
    """

    cart = Cart.objects.select_for_update().filter(user=user).first()
    if cart is None or not cart.is_checked_out or cart.version != version:
        logger.info(
            "cart.checkout_clear_skipped",
            extra={"event": "cart.checkout_clear_skipped", "user_id": getattr(user, "id", None), "version": version},
        )
        return 0
    deleted = _discard_checked_out_lines(cart)
    logger.info(
        "cart.cleared",
        extra={
            "event": "cart.cleared",
            "cart_id": cart.id,
            "user_id": getattr(user, "id", None),
            "removed": deleted,
            "reason": "checkout",
        },
    )
    return deleted


@transaction.atomic
def expire_stale_items(*, max_age: Optional[timedelta] = None) -> int:
    """Delete cart lines not touched for longer than ``max_age``.

    Defaults to ``CART_TTL_HOURS``. Affected carts get their version bumped so
    a checkout that validated an expired line fails cleanly.
    """

    if max_age is None:
        max_age = timedelta(hours=int(getattr(settings, "CART_TTL_HOURS", 24)))
    cutoff = timezone.now() - max_age
    stale = CartItem.objects.filter(added_at__lt=cutoff)
    cart_ids = sorted(set(stale.values_list("cart_id", flat=True)))
    if not cart_ids:
        return 0
    # Lock in id order so the sweep cannot deadlock with checkouts
    carts = list(Cart.objects.select_for_update().filter(id__in=cart_ids).order_by("id"))
    deleted = 0
    for cart in carts:
        if cart.is_checked_out:
            deleted += _discard_checked_out_lines(cart)
            continue
        removed, _ = CartItem.objects.filter(cart=cart, added_at__lt=cutoff).delete()
        deleted += removed
        _bump_version(cart)
    logger.info(
        "cart.expired",
        extra={"event": "cart.expired", "removed": deleted, "carts": len(carts), "cutoff": cutoff.isoformat()},
    )
    return deleted
