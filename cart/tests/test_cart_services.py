from datetime import timedelta
from decimal import Decimal

import pytest
from cart.errors import CartLineNotFound, InsufficientStock, ProductNotFound, QuantityOutOfRange
from cart.models import Cart, CartItem
from cart.services import (
    add_item,
    clear_cart,
    clear_checked_out_lines,
    expire_stale_items,
    get_cart_lines,
    remove_item,
    update_item_quantity,
)
from cart.tests.factories import CartItemFactory, StockItemFactory, UserFactory
from django.utils import timezone


@pytest.mark.django_db
def test_add_item_creates_line_with_current_price():
    user = UserFactory()
    stock = StockItemFactory(quantity=10, product__price=Decimal("4.50"))

    item = add_item(user=user, product_id=stock.product_id, quantity=2)

    assert item.quantity == 2
    assert item.unit_price == Decimal("4.50")
    assert item.cart.user_id == user.id
    assert Cart.objects.get(user=user).version == 1


@pytest.mark.django_db
def test_add_same_product_sums_quantities():
    user = UserFactory()
    stock = StockItemFactory(quantity=10)

    add_item(user=user, product_id=stock.product_id, quantity=2)
    item = add_item(user=user, product_id=stock.product_id, quantity=3)

    assert item.quantity == 5
    assert CartItem.objects.filter(cart__user=user).count() == 1


@pytest.mark.django_db
@pytest.mark.parametrize("quantity", [0, -1, 101])
def test_add_item_rejects_quantity_out_of_range(quantity):
    user = UserFactory()
    stock = StockItemFactory(quantity=500)

    with pytest.raises(QuantityOutOfRange):
        add_item(user=user, product_id=stock.product_id, quantity=quantity)


@pytest.mark.django_db
def test_add_item_summed_quantity_is_bounded(settings):
    settings.CART_MAX_LINE_QUANTITY = 5
    user = UserFactory()
    stock = StockItemFactory(quantity=50)
    add_item(user=user, product_id=stock.product_id, quantity=4)

    with pytest.raises(QuantityOutOfRange):
        add_item(user=user, product_id=stock.product_id, quantity=2)

    assert CartItem.objects.get(cart__user=user).quantity == 4


@pytest.mark.django_db
def test_add_item_unknown_product():
    user = UserFactory()

    with pytest.raises(ProductNotFound):
        add_item(user=user, product_id=999999, quantity=1)


@pytest.mark.django_db
def test_add_item_more_than_stock_is_refused_and_cart_unchanged():
    user = UserFactory()
    stock = StockItemFactory(quantity=3, product__title="Tomatoes")

    with pytest.raises(InsufficientStock) as exc:
        add_item(user=user, product_id=stock.product_id, quantity=5)

    assert str(exc.value) == "only 3 units available for Tomatoes"
    assert exc.value.available == 3
    assert not CartItem.objects.filter(cart__user=user).exists()


@pytest.mark.django_db
def test_add_item_unavailable_product_is_refused():
    user = UserFactory()
    stock = StockItemFactory(quantity=10, product__is_available=False)

    with pytest.raises(InsufficientStock):
        add_item(user=user, product_id=stock.product_id, quantity=1)


@pytest.mark.django_db
def test_get_cart_lines_newest_first_and_empty_is_not_error():
    user = UserFactory()
    assert get_cart_lines(user=user) == []

    first = StockItemFactory()
    second = StockItemFactory()
    add_item(user=user, product_id=first.product_id, quantity=1)
    add_item(user=user, product_id=second.product_id, quantity=1)

    lines = get_cart_lines(user=user)
    assert [line.product_id for line in lines] == [second.product_id, first.product_id]


@pytest.mark.django_db
def test_update_item_quantity_overwrites():
    user = UserFactory()
    stock = StockItemFactory(quantity=10)
    add_item(user=user, product_id=stock.product_id, quantity=2)

    item = update_item_quantity(user=user, product_id=stock.product_id, quantity=7)

    assert item.quantity == 7


@pytest.mark.django_db
@pytest.mark.parametrize("quantity", [0, -3])
def test_update_to_zero_or_less_removes_line(quantity):
    user = UserFactory()
    stock = StockItemFactory(quantity=10)
    add_item(user=user, product_id=stock.product_id, quantity=2)

    assert update_item_quantity(user=user, product_id=stock.product_id, quantity=quantity) is None
    assert get_cart_lines(user=user) == []


@pytest.mark.django_db
def test_update_rechecks_stock():
    user = UserFactory()
    stock = StockItemFactory(quantity=4)
    add_item(user=user, product_id=stock.product_id, quantity=2)

    with pytest.raises(InsufficientStock):
        update_item_quantity(user=user, product_id=stock.product_id, quantity=6)

    assert CartItem.objects.get(cart__user=user).quantity == 2


@pytest.mark.django_db
def test_update_missing_line():
    user = UserFactory()
    stock = StockItemFactory()

    with pytest.raises(CartLineNotFound):
        update_item_quantity(user=user, product_id=stock.product_id, quantity=1)


@pytest.mark.django_db
def test_remove_item_is_idempotent():
    user = UserFactory()
    stock = StockItemFactory()
    add_item(user=user, product_id=stock.product_id, quantity=1)

    assert remove_item(user=user, product_id=stock.product_id) is True
    assert remove_item(user=user, product_id=stock.product_id) is False


@pytest.mark.django_db
def test_clear_cart_only_touches_own_lines():
    user = UserFactory()
    other = UserFactory()
    stock = StockItemFactory()
    add_item(user=user, product_id=stock.product_id, quantity=1)
    add_item(user=other, product_id=stock.product_id, quantity=1)

    assert clear_cart(user=user) == 1
    assert get_cart_lines(user=user) == []
    assert len(get_cart_lines(user=other)) == 1


@pytest.mark.django_db
def test_every_mutation_bumps_cart_version():
    user = UserFactory()
    stock = StockItemFactory(quantity=10)

    add_item(user=user, product_id=stock.product_id, quantity=1)
    update_item_quantity(user=user, product_id=stock.product_id, quantity=2)
    remove_item(user=user, product_id=stock.product_id)
    clear_cart(user=user)

    assert Cart.objects.get(user=user).version == 4


@pytest.mark.django_db
def test_expire_stale_items_removes_only_old_lines():
    old = CartItemFactory()
    fresh = CartItemFactory()
    CartItem.objects.filter(id=old.id).update(added_at=timezone.now() - timedelta(hours=25))
    version_before = Cart.objects.get(id=old.cart_id).version

    removed = expire_stale_items()

    assert removed == 1
    assert not CartItem.objects.filter(id=old.id).exists()
    assert CartItem.objects.filter(id=fresh.id).exists()
    assert Cart.objects.get(id=old.cart_id).version == version_before + 1


@pytest.mark.django_db
def test_expire_stale_items_custom_age():
    item = CartItemFactory()
    CartItem.objects.filter(id=item.id).update(added_at=timezone.now() - timedelta(hours=2))

    assert expire_stale_items(max_age=timedelta(hours=3)) == 0
    assert expire_stale_items(max_age=timedelta(hours=1)) == 1


def _mark_checked_out(cart):
    Cart.objects.filter(id=cart.id).update(version=cart.version + 1, checked_out_version=cart.version + 1)
    cart.refresh_from_db()
    return cart


@pytest.mark.django_db
def test_checked_out_cart_reads_as_empty():
    item = CartItemFactory()
    cart = _mark_checked_out(item.cart)

    assert get_cart_lines(user=cart.user) == []
    assert CartItem.objects.filter(cart=cart).count() == 1


@pytest.mark.django_db
def test_mutating_checked_out_cart_discards_ordered_lines():
    ordered = CartItemFactory()
    cart = _mark_checked_out(ordered.cart)
    stock = StockItemFactory(quantity=10)

    add_item(user=cart.user, product_id=stock.product_id, quantity=1)

    assert [line.product_id for line in get_cart_lines(user=cart.user)] == [stock.product_id]
    cart.refresh_from_db()
    assert cart.checked_out_version is None
    assert not cart.is_checked_out


@pytest.mark.django_db
def test_clear_checked_out_lines_requires_matching_version():
    item = CartItemFactory()
    cart = _mark_checked_out(item.cart)

    assert clear_checked_out_lines(user=cart.user, version=cart.version - 1) == 0
    assert CartItem.objects.filter(cart=cart).exists()

    assert clear_checked_out_lines(user=cart.user, version=cart.version) == 1
    assert not CartItem.objects.filter(cart=cart).exists()


@pytest.mark.django_db
def test_clear_checked_out_lines_ignores_active_cart():
    item = CartItemFactory()

    assert clear_checked_out_lines(user=item.cart.user, version=item.cart.version) == 0
    assert CartItem.objects.filter(id=item.id).exists()


@pytest.mark.django_db
def test_expire_discards_every_line_of_checked_out_cart():
    old = CartItemFactory()
    fresh = CartItemFactory(cart=old.cart)
    CartItem.objects.filter(id=old.id).update(added_at=timezone.now() - timedelta(hours=25))
    cart = _mark_checked_out(old.cart)

    assert expire_stale_items() == 2
    assert not CartItem.objects.filter(id__in=[old.id, fresh.id]).exists()
    cart.refresh_from_db()
    assert not cart.is_checked_out
