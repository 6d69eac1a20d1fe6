from datetime import timedelta
from io import StringIO

import pytest
from cart.tests.factories import UserFactory
from common.choices import OrderStatus, PaymentStatus
from django.core.management import call_command
from django.utils import timezone
from orders.models import IdempotencyKey
from orders.tests.factories import OrderFactory, OrderItemFactory
from rest_framework.test import APIClient


def _client(user=None):
    client = APIClient()
    if user is not None:
        client.force_authenticate(user=user)
    return client


@pytest.mark.django_db
def test_order_list_shows_buyer_orders_by_default_and_seller_orders_on_request():
    user = UserFactory()
    placed = OrderFactory(buyer=user)
    received = OrderFactory(seller=user)
    OrderFactory()

    as_buyer = _client(user).get("/api/v1/orders/")
    as_seller = _client(user).get("/api/v1/orders/?as=seller")

    assert [o["id"] for o in as_buyer.json()["results"]] == [placed.id]
    assert [o["id"] for o in as_seller.json()["results"]] == [received.id]


@pytest.mark.django_db
def test_order_list_filters():
    user = UserFactory()
    pending = OrderFactory(buyer=user)
    delivered = OrderFactory(buyer=user, status=OrderStatus.DELIVERED)
    paid = OrderFactory(buyer=user, payment_status=PaymentStatus.PAID)
    client = _client(user)

    by_status = client.get("/api/v1/orders/?status=delivered").json()["results"]
    by_payment = client.get("/api/v1/orders/?payment_status=paid").json()["results"]
    by_number = client.get(f"/api/v1/orders/?number={pending.number}").json()["results"]

    assert [o["id"] for o in by_status] == [delivered.id]
    assert [o["id"] for o in by_payment] == [paid.id]
    assert [o["id"] for o in by_number] == [pending.id]


@pytest.mark.django_db
def test_order_list_paginates():
    user = UserFactory()
    for _ in range(3):
        OrderFactory(buyer=user)

    body = _client(user).get("/api/v1/orders/?page_size=2").json()

    assert body["count"] == 3
    assert len(body["results"]) == 2
    assert body["next"] is not None


@pytest.mark.django_db
def test_order_detail_visible_to_buyer_and_seller_only():
    item = OrderItemFactory()
    order = item.order

    buyer_view = _client(order.buyer).get(f"/api/v1/orders/{order.id}/")
    seller_view = _client(order.seller).get(f"/api/v1/orders/{order.id}/")
    stranger_view = _client(UserFactory()).get(f"/api/v1/orders/{order.id}/")

    assert buyer_view.status_code == 200
    assert seller_view.status_code == 200
    assert stranger_view.status_code == 404
    body = buyer_view.json()
    assert body["number"] == order.number
    assert body["items"][0]["subtotal"] == "20.00"
    assert body["payment_status"] == "pending"


@pytest.mark.django_db
def test_orders_require_authentication():
    assert _client().get("/api/v1/orders/").status_code in (401, 403)


@pytest.mark.django_db
def test_payment_webhook_marks_order_paid():
    order = OrderFactory()

    resp = _client().post(
        "/api/v1/orders/webhooks/payment/", {"order_id": order.id, "event": "payment_succeeded"}, format="json"
    )

    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "paid"
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.PAID


@pytest.mark.django_db
def test_payment_webhook_validation():
    order = OrderFactory(status=OrderStatus.CANCELED)
    client = _client()
    url = "/api/v1/orders/webhooks/payment/"

    assert client.post(url, {"event": "payment_succeeded"}, format="json").status_code == 400
    assert client.post(url, {"order_id": order.id, "event": "refund"}, format="json").status_code == 400
    assert client.post(url, {"order_id": 999999, "event": "payment_succeeded"}, format="json").status_code == 404
    assert client.post(url, {"order_id": order.id, "event": "payment_succeeded"}, format="json").status_code == 400


@pytest.mark.django_db
def test_payment_webhook_records_rejected_payment():
    order = OrderFactory()
    url = "/api/v1/orders/webhooks/payment/"

    resp = _client().post(
        url, {"order_id": order.id, "event": "payment_failed", "reason": "card declined"}, format="json"
    )

    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "pending"
    paid = _client().post(url, {"order_id": order.id, "event": "payment_succeeded"}, format="json")
    assert paid.status_code == 200
    assert _client().post(url, {"order_id": order.id, "event": "payment.failed"}, format="json").status_code == 400


@pytest.mark.django_db
def test_payment_webhook_refunds_paid_order():
    order = OrderFactory()
    url = "/api/v1/orders/webhooks/payment/"

    assert _client().post(url, {"order_id": order.id, "event": "payment_refunded"}, format="json").status_code == 400
    _client().post(url, {"order_id": order.id, "event": "payment_succeeded"}, format="json")
    resp = _client().post(url, {"order_id": order.id, "event": "payment_refunded"}, format="json")

    assert resp.status_code == 200
    order.refresh_from_db()
    assert order.payment_status == PaymentStatus.REFUNDED


@pytest.mark.django_db
def test_payment_webhook_secret(settings):
    settings.PAYMENT_WEBHOOK_SECRET = "s3cret"
    order = OrderFactory()
    url = "/api/v1/orders/webhooks/payment/"
    payload = {"order_id": order.id, "event": "payment_succeeded"}

    assert _client().post(url, payload, format="json").status_code == 403
    assert _client().post(url, payload, format="json", HTTP_X_WEBHOOK_SECRET="s3cret").status_code == 200


@pytest.mark.django_db
def test_payment_webhook_idempotency_key():
    order = OrderFactory()
    url = "/api/v1/orders/webhooks/payment/"
    payload = {"order_id": order.id, "event": "payment_succeeded"}

    first = _client().post(url, payload, format="json", HTTP_IDEMPOTENCY_KEY="evt-1")
    second = _client().post(url, payload, format="json", HTTP_IDEMPOTENCY_KEY="evt-1")

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert IdempotencyKey.objects.filter(key="evt-1").count() == 1


@pytest.mark.django_db
def test_cleanup_idempotency_command():
    IdempotencyKey.objects.create(
        key="old", scope="anon", path="/x/", method="POST", expires_at=timezone.now() - timedelta(hours=1)
    )
    IdempotencyKey.objects.create(
        key="new", scope="anon", path="/x/", method="POST", expires_at=timezone.now() + timedelta(hours=1)
    )
    out = StringIO()

    call_command("cleanup_idempotency", stdout=out)

    assert "Deleted 1 expired idempotency keys." in out.getvalue()
    assert list(IdempotencyKey.objects.values_list("key", flat=True)) == ["new"]
