import hashlib
import json
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional, Tuple

from common.choices import PaymentStatus
from common.tasks import run_in_background
from django.db import IntegrityError, transaction
from django.utils import timezone

from .emails import send_order_paid_email
from .models import IdempotencyKey, Order, OrderItem
from .splitting import OrderGroup, from_cents

logger = logging.getLogger("marketplace.orders")


class OrderIntegrityError(Exception):
    """Raised when an order's items do not add up to its total."""


class OrderStateError(ValueError):
    """Raised for order transitions that are not allowed."""


class OrderPersistence:
    """Writes an order group as an Order and its OrderItems.

    Runs inside the caller's transaction; nothing here commits on its own.
    """

    def create_order(self, group: OrderGroup) -> int:
        with transaction.atomic():
            order = Order.objects.create(
                buyer_id=group.buyer_id,
                seller_id=group.seller_id,
                total=group.total,
                payment_method=group.payment_method,
                delivery_address=group.delivery_address,
                notes=group.notes or "",
            )
            items = [
                OrderItem(
                    order=order,
                    product_id=line.product_id,
                    product_title=line.title,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.line_total,
                )
                for line in group.lines
            ]
            OrderItem.objects.bulk_create(items)
            subtotal = from_cents(sum(line.line_total_cents for line in group.lines))
            if subtotal != order.total:
                raise OrderIntegrityError(f"items add up to {subtotal} but order total is {order.total}")
            # User-facing order number (unique)
            order.number = f"ORD-{int(order.id):06d}"
            order.save(update_fields=["number"])
        logger.info(
            "order.created",
            extra={
                "event": "order.created",
                "order_id": order.id,
                "buyer_id": group.buyer_id,
                "seller_id": group.seller_id,
                "total": str(order.total),
                "items": len(items),
            },
        )
        return int(order.id)


def get_order_persistence() -> OrderPersistence:
    return OrderPersistence()


@transaction.atomic
def mark_order_paid(order: Order) -> Order:
    """Record a payment confirmation from the payment collaborator.

    Idempotent for orders already paid; canceled or refunded orders are refused.
    """

    order = Order.objects.select_for_update().get(pk=order.pk)
    if order.status == Order.STATUS_CANCELED:
        raise OrderStateError("Cannot pay a canceled order")
    if order.payment_status == PaymentStatus.PAID:
        return order
    if order.payment_status == PaymentStatus.REFUNDED:
        raise OrderStateError("Cannot pay a refunded order")
    prev = order.payment_status
    order.payment_status = PaymentStatus.PAID
    order.save(update_fields=["payment_status", "updated_at"])
    logger.info(
        "order.payment_status_changed",
        extra={
            "event": "order.payment_status_changed",
            "order_id": order.id,
            "buyer_id": order.buyer_id,
            "payment_status_from": prev,
            "payment_status_to": order.payment_status,
        },
    )
    order_id = order.id
    transaction.on_commit(lambda: run_in_background(send_order_paid_email, order_id, name="orders.paid_email"))
    return order


@transaction.atomic
def mark_order_refunded(order: Order) -> Order:
    """Record that the payment collaborator refunded a paid order."""

    order = Order.objects.select_for_update().get(pk=order.pk)
    if order.payment_status == PaymentStatus.REFUNDED:
        return order
    if order.payment_status != PaymentStatus.PAID:
        raise OrderStateError("Only paid orders can be refunded")
    order.payment_status = PaymentStatus.REFUNDED
    order.save(update_fields=["payment_status", "updated_at"])
    logger.info(
        "order.payment_status_changed",
        extra={
            "event": "order.payment_status_changed",
            "order_id": order.id,
            "buyer_id": order.buyer_id,
            "payment_status_from": PaymentStatus.PAID,
            "payment_status_to": order.payment_status,
        },
    )
    return order


@transaction.atomic
def record_payment_failure(order: Order, reason: str = "") -> Order:
    """Record a rejected payment attempt.

    The order keeps ``payment_status`` pending so the buyer can pay again;
    settled (paid or refunded) orders refuse the event.
    """

    order = Order.objects.select_for_update().get(pk=order.pk)
    if order.payment_status != PaymentStatus.PENDING:
        raise OrderStateError("Payment for this order is already settled")
    logger.warning(
        "order.payment_failed",
        extra={"event": "order.payment_failed", "order_id": order.id, "buyer_id": order.buyer_id, "reason": reason},
    )
    return order


def with_idempotency(
    *,
    key: str,
    user,
    path: str,
    method: str,
    handler: Callable[[], Tuple[dict, int]],
    request_hash: Optional[str] = None,
) -> Tuple[dict, int]:
    """Run handler idempotently and persist its response for the given key and scope.

    - Scope is derived from the caller: for authenticated users, "user:<id>"; otherwise "anon".
    - If a record exists and the stored `request_hash` differs from the provided one, returns 409.
    - If a record exists but response is not yet stored, returns 409 to indicate in-progress.
    - Retryable failures (status 409 or 5xx from the handler) are not stored, so
      the client can retry with the same key after re-validating.
    """

    scope = f"user:{getattr(user, 'id', None)}" if getattr(user, "id", None) else "anon"
    method = str(method).upper()
    path = str(path)

    try:
        with transaction.atomic():
            idem = IdempotencyKey.objects.create(
                key=key,
                user=user if getattr(user, "id", None) else None,
                scope=scope,
                path=path,
                method=method,
                request_hash=request_hash,
                expires_at=timezone.now() + timedelta(hours=24),
            )
    except IntegrityError:
        idem = IdempotencyKey.objects.get(key=key, scope=scope, path=path, method=method)
        # Guard against key reuse with different fingerprints
        if idem.request_hash and request_hash and idem.request_hash != request_hash:
            return {"detail": "Idempotency key reused with different request payload"}, 409
        if idem.response_json is not None and idem.response_code is not None:
            return idem.response_json, int(idem.response_code)
        # If another process is currently handling it, return a safe 409
        return {"detail": "Request in progress"}, 409

    try:
        body, code = handler()
    except Exception:
        IdempotencyKey.objects.filter(id=idem.id).delete()
        raise

    if code == 409 or code >= 500:
        IdempotencyKey.objects.filter(id=idem.id).delete()
        return body, code

    def _json_safe(value):
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, dict):
            return {k: _json_safe(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_json_safe(v) for v in value]
        return value

    IdempotencyKey.objects.filter(id=idem.id).update(response_json=_json_safe(body), response_code=code)
    return body, code


def compute_request_hash(data: Optional[dict]) -> Optional[str]:
    """Compute a canonical SHA256 hash of the request body.

    Uses sorted keys JSON representation to stabilize the hash across equivalent payloads.
    Returns None when data is falsy or not JSON-serializable.
    """
    if not data:
        return None
    try:
        payload = json.dumps(data, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return None
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
