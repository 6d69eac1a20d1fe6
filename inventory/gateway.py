"""Inventory gateway consumed by the cart store and the checkout engine.

Callers receive the gateway as an argument rather than importing the ORM
helpers directly, which lets tests substitute doubles that simulate
concurrent stock depletion.
"""

from typing import Dict, Iterable, List, Optional

from . import selectors, services
from .selectors import ProductSnapshot

__all__ = ["InventoryGateway", "ProductSnapshot", "get_inventory_gateway"]


class InventoryGateway:
    """ORM-backed access to product price, stock and availability."""

    def get_snapshot(self, product_id: int) -> Optional[ProductSnapshot]:
        return selectors.get_product_snapshot(product_id)

    def get_snapshots(self, product_ids: Iterable[int]) -> Dict[int, ProductSnapshot]:
        return selectors.get_product_snapshots(product_ids)

    def conditional_decrement(self, product_id: int, quantity: int, *, reference: str = "") -> bool:
        """Return True only if the decrement was applied."""
        return services.decrement_stock(product_id=product_id, quantity=quantity, reference=reference)

    def low_stock(self, product_ids: Iterable[int]) -> List[ProductSnapshot]:
        return selectors.list_low_stock(product_ids)


def get_inventory_gateway() -> InventoryGateway:
    return InventoryGateway()
