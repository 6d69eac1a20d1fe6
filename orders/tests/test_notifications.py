import pytest
from django.core import mail
from inventory.selectors import get_product_snapshots
from orders.notifications import EmailNotificationDispatcher, NotificationDispatcher, OrderCreatedEvent, dispatch
from orders.tests.factories import OrderItemFactory


class Recorder(NotificationDispatcher):
    def __init__(self):
        self.seen = []

    def order_created(self, event):
        self.seen.append(("order", event.order_id))

    def stock_low(self, *, seller_id, products):
        self.seen.append(("stock", seller_id))


class Broken(NotificationDispatcher):
    def order_created(self, event):
        raise RuntimeError("boom")

    def stock_low(self, *, seller_id, products):
        raise RuntimeError("boom")


def _event(order):
    return OrderCreatedEvent(order_id=order.id, seller_id=order.seller_id, buyer_id=order.buyer_id, line_items=())


@pytest.mark.django_db
def test_email_dispatcher_notifies_seller_and_buyer(settings):
    settings.FRONTEND_URL = "https://market.example.com"
    order = OrderItemFactory().order
    mail.outbox.clear()

    EmailNotificationDispatcher().order_created(_event(order))

    by_recipient = {m.to[0]: m for m in mail.outbox}
    assert set(by_recipient) == {order.seller.email, order.buyer.email}
    assert by_recipient[order.seller.email].subject == f"New order {order.number}"
    assert f"https://market.example.com/orders/{order.id}" in by_recipient[order.buyer.email].body


@pytest.mark.django_db
def test_email_dispatcher_low_stock_alert():
    item = OrderItemFactory()
    product = item.product
    snapshots = list(get_product_snapshots([product.id]).values())
    mail.outbox.clear()

    EmailNotificationDispatcher().stock_low(seller_id=product.seller_id, products=snapshots)

    assert len(mail.outbox) == 1
    assert mail.outbox[0].to == [product.seller.email]
    assert product.title in mail.outbox[0].body


@pytest.mark.django_db
def test_dispatch_delivers_orders_then_low_stock():
    order = OrderItemFactory().order
    recorder = Recorder()

    dispatch(recorder, [_event(order)], {order.seller_id: []})

    assert recorder.seen == [("order", order.id), ("stock", order.seller_id)]


@pytest.mark.django_db
def test_dispatch_swallows_and_logs_failures(caplog):
    order = OrderItemFactory().order

    dispatch(Broken(), [_event(order)], {order.seller_id: []})

    assert [r.getMessage() for r in caplog.records if r.name == "marketplace.tasks"] == ["task.failed", "task.failed"]
