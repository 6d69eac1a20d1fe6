from decimal import Decimal

import pytest
from cart.tests.factories import UserFactory
from catalog.tests.factories import ProductFactory
from common.choices import OrderStatus, PaymentStatus, UserRole
from django.core import mail
from orders.models import ImmutableRecordError, Order, OrderItem
from orders.services import (
    OrderPersistence,
    OrderStateError,
    compute_request_hash,
    mark_order_paid,
    mark_order_refunded,
    record_payment_failure,
    with_idempotency,
)
from orders.splitting import OrderGroup, ValidatedLine
from orders.tests.factories import OrderFactory, OrderItemFactory


def _group(buyer, seller, products):
    lines = tuple(
        ValidatedLine(
            product_id=p.id,
            seller_id=seller.id,
            title=p.title,
            quantity=qty,
            unit_price_cents=cents,
        )
        for p, qty, cents in products
    )
    return OrderGroup(
        seller_id=seller.id,
        buyer_id=buyer.id,
        lines=lines,
        total_cents=sum(ln.line_total_cents for ln in lines),
        delivery_address="Carrera 7 # 12-30",
        payment_method="card",
        notes="leave at door",
    )


@pytest.mark.django_db
def test_create_order_persists_order_and_items():
    buyer = UserFactory()
    seller = UserFactory(role=UserRole.PRODUCER)
    p1 = ProductFactory(seller=seller, title="Apples")
    p2 = ProductFactory(seller=seller, title="Pears")

    order_id = OrderPersistence().create_order(_group(buyer, seller, [(p1, 2, 350), (p2, 1, 1299)]))

    order = Order.objects.get(id=order_id)
    assert order.number == f"ORD-{order_id:06d}"
    assert order.total == Decimal("19.99")
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.notes == "leave at door"
    items = list(order.items.order_by("product_id"))
    assert [(i.product_title, i.quantity, i.unit_price, i.subtotal) for i in items] == [
        ("Apples", 2, Decimal("3.50"), Decimal("7.00")),
        ("Pears", 1, Decimal("12.99"), Decimal("12.99")),
    ]


@pytest.mark.django_db
def test_order_item_is_immutable():
    item = OrderItemFactory()

    item.quantity = 5
    with pytest.raises(ImmutableRecordError):
        item.save()

    assert OrderItem.objects.get(id=item.id).quantity == 2


@pytest.mark.django_db
def test_mark_order_paid_sets_payment_status_and_emails_buyer(django_capture_on_commit_callbacks):
    order = OrderFactory()
    mail.outbox.clear()

    with django_capture_on_commit_callbacks(execute=True):
        updated = mark_order_paid(order)

    assert updated.payment_status == PaymentStatus.PAID
    assert updated.status == OrderStatus.PENDING
    assert [m.to for m in mail.outbox] == [[order.buyer.email]]


@pytest.mark.django_db
def test_mark_order_paid_is_idempotent():
    order = OrderFactory(payment_status=PaymentStatus.PAID)

    assert mark_order_paid(order).payment_status == PaymentStatus.PAID


@pytest.mark.django_db
@pytest.mark.parametrize(
    "fields",
    [{"status": OrderStatus.CANCELED}, {"payment_status": PaymentStatus.REFUNDED}],
)
def test_mark_order_paid_refuses_canceled_or_refunded(fields):
    order = OrderFactory(**fields)

    with pytest.raises(OrderStateError):
        mark_order_paid(order)


@pytest.mark.django_db
def test_mark_order_refunded_only_from_paid():
    paid = OrderFactory(payment_status=PaymentStatus.PAID)
    pending = OrderFactory()

    assert mark_order_refunded(paid).payment_status == PaymentStatus.REFUNDED
    assert mark_order_refunded(paid).payment_status == PaymentStatus.REFUNDED
    with pytest.raises(OrderStateError):
        mark_order_refunded(pending)
    pending.refresh_from_db()
    assert pending.payment_status == PaymentStatus.PENDING


@pytest.mark.django_db
def test_record_payment_failure_keeps_order_payable(caplog):
    order = OrderFactory()

    with caplog.at_level("WARNING", logger="marketplace.orders"):
        result = record_payment_failure(order, reason="card declined")

    assert result.payment_status == PaymentStatus.PENDING
    assert any(getattr(r, "event", None) == "order.payment_failed" for r in caplog.records)
    assert mark_order_paid(order).payment_status == PaymentStatus.PAID


@pytest.mark.django_db
@pytest.mark.parametrize("payment_status", [PaymentStatus.PAID, PaymentStatus.REFUNDED])
def test_record_payment_failure_refuses_settled_orders(payment_status):
    order = OrderFactory(payment_status=payment_status)

    with pytest.raises(OrderStateError):
        record_payment_failure(order)



def test_compute_request_hash_is_order_insensitive():
    assert compute_request_hash({"a": 1, "b": 2}) == compute_request_hash({"b": 2, "a": 1})
    assert compute_request_hash({"a": 1}) != compute_request_hash({"a": 2})
    assert compute_request_hash({}) is None
    assert compute_request_hash({"a": object()}) is None


@pytest.mark.django_db
def test_with_idempotency_replays_stored_response():
    user = UserFactory()
    calls = []

    def handler():
        calls.append(1)
        return {"total": Decimal("1.50")}, 201

    first = with_idempotency(key="k", user=user, path="/x/", method="post", handler=handler)
    second = with_idempotency(key="k", user=user, path="/x/", method="POST", handler=handler)

    assert first == ({"total": Decimal("1.50")}, 201)
    assert second == ({"total": "1.50"}, 201)
    assert len(calls) == 1


@pytest.mark.django_db
def test_with_idempotency_does_not_store_retryable_failures():
    user = UserFactory()
    codes = iter([409, 201])

    def handler():
        return {}, next(codes)

    assert with_idempotency(key="k", user=user, path="/x/", method="POST", handler=handler)[1] == 409
    assert with_idempotency(key="k", user=user, path="/x/", method="POST", handler=handler)[1] == 201
