"""Selectors for inventory reads (single-location)."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from catalog.models import Product
from django.db.models import F


@dataclass(frozen=True)
class ProductSnapshot:
    """Point-in-time read of a product's seller, price, stock and availability."""

    product_id: int
    seller_id: int
    title: str
    unit_price: Decimal
    stock: int
    is_available: bool
    min_stock: int = 0

    @property
    def is_low(self) -> bool:
        return self.stock <= self.min_stock


def _snapshot(product: Product) -> ProductSnapshot:
    # Products without a stock row have nothing to sell
    stock = getattr(product, "stock", None)
    return ProductSnapshot(
        product_id=product.id,
        seller_id=product.seller_id,
        title=product.title,
        unit_price=product.price or Decimal("0.00"),
        stock=int(stock.quantity) if stock is not None else 0,
        is_available=bool(product.is_available),
        min_stock=int(stock.min_quantity) if stock is not None else 0,
    )


def get_product_snapshot(product_id: int) -> Optional[ProductSnapshot]:
    try:
        product = Product.objects.select_related("stock").get(id=product_id)
    except Product.DoesNotExist:
        return None
    return _snapshot(product)


def get_product_snapshots(product_ids: Iterable[int]) -> Dict[int, ProductSnapshot]:
    """Batch read; ids with no product are simply absent from the result."""
    ids = set(product_ids)
    if not ids:
        return {}
    return {p.id: _snapshot(p) for p in Product.objects.select_related("stock").filter(id__in=ids)}


def list_low_stock(product_ids: Iterable[int]) -> List[ProductSnapshot]:
    ids = set(product_ids)
    if not ids:
        return []
    qs = (
        Product.objects.select_related("stock")
        .filter(id__in=ids, stock__quantity__lte=F("stock__min_quantity"))
        .order_by("seller_id", "id")
    )
    return [_snapshot(p) for p in qs]

