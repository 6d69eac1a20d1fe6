"""Selectors for read-only cart queries."""

from decimal import Decimal
from typing import Optional

from inventory.gateway import InventoryGateway, get_inventory_gateway

from .models import Cart
from .services import get_cart_lines


def get_cart_version(*, user) -> int:
    return Cart.objects.filter(user=user).values_list("version", flat=True).first() or 0


def cart_summary(*, user, inventory: Optional[InventoryGateway] = None) -> dict:
    """Cart lines joined with live price, stock and availability.

    Totals use the current price; lines whose product disappeared are listed
    as unavailable and excluded from the total price.
    """

    inventory = inventory or get_inventory_gateway()
    lines = get_cart_lines(user=user)
    snapshots = inventory.get_snapshots(line.product_id for line in lines)
    items = []
    total_price = Decimal("0.00")
    for line in lines:
        snap = snapshots.get(line.product_id)
        available = bool(snap and snap.is_available and snap.stock >= line.quantity)
        unit_price = snap.unit_price if snap else line.unit_price
        line_total = unit_price * line.quantity
        if snap is not None:
            total_price += line_total
        items.append(
            {
                "product_id": line.product_id,
                "title": snap.title if snap else "",
                "seller_id": snap.seller_id if snap else None,
                "quantity": line.quantity,
                "unit_price": unit_price,
                "cart_price": line.unit_price,
                "line_total": line_total,
                "stock": snap.stock if snap else 0,
                "is_available": available,
                "added_at": line.added_at,
            }
        )
    return {
        "items": items,
        "total_items": sum(line.quantity for line in lines),
        "total_price": total_price,
        "version": get_cart_version(user=user),
    }


def cart_stats(*, user, inventory: Optional[InventoryGateway] = None) -> dict:
    summary = cart_summary(user=user, inventory=inventory)
    items = summary["items"]
    available = sum(1 for item in items if item["is_available"])
    unique = len(items)
    return {
        "unique_products": unique,
        "total_items": summary["total_items"],
        "total_price": summary["total_price"],
        "available_products": available,
        "unavailable_products": unique - available,
        "availability_percentage": round(available * 100 / unique) if unique else 0,
        "last_updated": max((item["added_at"] for item in items), default=None),
    }
