from decimal import Decimal

import pytest
from cart.services import add_item
from cart.tests.factories import StockItemFactory, UserFactory
from cart.validation import validate_cart
from catalog.models import Product
from inventory.gateway import InventoryGateway
from inventory.models import StockItem


@pytest.mark.django_db
def test_empty_cart_is_invalid():
    result = validate_cart(user=UserFactory())

    assert result.valid is False
    assert result.errors == ("cart is empty",)
    assert result.lines == ()
    assert result.is_empty


@pytest.mark.django_db
def test_valid_cart_reprices_from_inventory():
    user = UserFactory()
    stock = StockItemFactory(quantity=10, product__price=Decimal("10.00"))
    add_item(user=user, product_id=stock.product_id, quantity=2)

    result = validate_cart(user=user)

    assert result.valid is True
    assert result.errors == ()
    (line,) = result.lines
    assert line.product_id == stock.product_id
    assert line.seller_id == stock.product.seller_id
    assert line.quantity == 2
    assert line.unit_price_cents == 1000
    assert line.line_total == Decimal("20.00")
    assert result.total == Decimal("20.00")


@pytest.mark.django_db
def test_short_stock_is_an_error_and_line_is_excluded():
    user = UserFactory()
    stock = StockItemFactory(quantity=10, product__title="productA")
    add_item(user=user, product_id=stock.product_id, quantity=5)
    StockItem.objects.filter(id=stock.id).update(quantity=3)

    result = validate_cart(user=user)

    assert result.valid is False
    assert result.errors == ("only 3 units available for productA",)
    assert result.lines == ()


class CatalogWithoutProducts(InventoryGateway):
    """Gateway double that reports some products as missing from the catalog."""

    def __init__(self, missing_ids):
        self.missing_ids = set(missing_ids)

    def get_snapshots(self, product_ids):
        snapshots = super().get_snapshots(product_ids)
        return {pid: snap for pid, snap in snapshots.items() if pid not in self.missing_ids}


@pytest.mark.django_db
def test_out_of_stock_missing_and_unavailable_products():
    user = UserFactory()
    gone = StockItemFactory(quantity=5)
    empty = StockItemFactory(quantity=5, product__title="Beans")
    hidden = StockItemFactory(quantity=5, product__title="Corn")
    ok = StockItemFactory(quantity=5)
    for stock in (gone, empty, hidden, ok):
        add_item(user=user, product_id=stock.product_id, quantity=1)
    StockItem.objects.filter(id=empty.id).update(quantity=0)
    Product.objects.filter(id=hidden.product_id).update(is_available=False)

    result = validate_cart(user=user, inventory=CatalogWithoutProducts([gone.product_id]))

    assert result.valid is False
    assert set(result.errors) == {
        f"product {gone.product_id} was not found",
        "product Beans is out of stock",
        "product Corn is not available",
    }
    assert [line.product_id for line in result.lines] == [ok.product_id]


@pytest.mark.django_db
def test_price_change_is_a_warning_not_an_error():
    user = UserFactory()
    stock = StockItemFactory(quantity=5, product__price=Decimal("10.00"), product__title="Milk")
    add_item(user=user, product_id=stock.product_id, quantity=1)
    Product.objects.filter(id=stock.product_id).update(price=Decimal("12.50"))

    result = validate_cart(user=user)

    assert result.valid is True
    assert result.warnings == ("price of Milk changed from 10.00 to 12.50",)
    assert result.lines[0].unit_price == Decimal("12.50")


@pytest.mark.django_db
def test_known_prices_override_cart_price():
    user = UserFactory()
    stock = StockItemFactory(quantity=5, product__price=Decimal("10.00"), product__title="Milk")
    add_item(user=user, product_id=stock.product_id, quantity=1)

    unchanged = validate_cart(user=user, known_prices={stock.product_id: Decimal("10.00")})
    stale = validate_cart(user=user, known_prices={stock.product_id: Decimal("9.00")})

    assert unchanged.warnings == ()
    assert stale.warnings == ("price of Milk changed from 9.00 to 10.00",)


@pytest.mark.django_db
def test_validation_does_not_mutate_anything():
    user = UserFactory()
    stock = StockItemFactory(quantity=5)
    add_item(user=user, product_id=stock.product_id, quantity=2)

    validate_cart(user=user)

    stock.refresh_from_db()
    assert stock.quantity == 5
