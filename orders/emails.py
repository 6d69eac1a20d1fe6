"""Email utilities for the orders app.

Uses Django's email backend, with links composed from FRONTEND_URL. Every
sender loads what it needs by id so it can run on a background thread.
"""

from typing import Iterable

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail

from .models import Order


def _order_url(order: Order) -> str:
    frontend = getattr(settings, "FRONTEND_URL", "")
    if not frontend:
        return ""
    return f"{frontend.rstrip('/')}/orders/{order.id}"


def _lines(order: Order) -> str:
    return "".join(
        f"  - {item.product_title} x{item.quantity} @ {item.unit_price} = {item.subtotal}\n"
        for item in order.items.all()
    )


def _send(subject: str, body: str, to_email) -> None:
    if not to_email:
        return
    send_mail(subject, body, getattr(settings, "DEFAULT_FROM_EMAIL", None), [to_email], fail_silently=True)


def send_new_order_email(order_id: int) -> None:
    """Tell the seller a new order came in."""
    order = Order.objects.select_related("seller", "buyer").prefetch_related("items").get(id=order_id)
    buyer_name = order.buyer.get_full_name() or order.buyer.username
    body = (
        f"You received a new order from {buyer_name}.\n\n"
        f"Order: {order.number or order.id}\n"
        f"Total: {order.total}\n"
        f"Items:\n{_lines(order)}\n"
        f"Delivery address: {order.delivery_address}\n"
    )
    if order.notes:
        body += f"Notes: {order.notes}\n"
    url = _order_url(order)
    if url:
        body += f"\nManage the order here: {url}\n"
    _send(f"New order {order.number or order.id}", body, order.seller.email)


def send_order_placed_email(order_id: int) -> None:
    """Confirm to the buyer that the order was placed."""
    order = Order.objects.select_related("seller", "buyer").prefetch_related("items").get(id=order_id)
    seller_name = order.seller.get_full_name() or order.seller.username
    body = (
        "Thank you for your purchase!\n\n"
        f"Order: {order.number or order.id}\n"
        f"Seller: {seller_name}\n"
        f"Total: {order.total}\n"
        f"Items:\n{_lines(order)}"
    )
    url = _order_url(order)
    if url:
        body += f"\nYou can follow your order here: {url}\n"
    _send(f"Your order {order.number or order.id} was placed", body, order.buyer.email)


def send_order_paid_email(order_id: int) -> None:
    """Send a payment confirmation to the buyer."""
    order = Order.objects.select_related("buyer").get(id=order_id)
    body = f"We received the payment for order {order.number or order.id}.\n\nTotal: {order.total}\n"
    url = _order_url(order)
    if url:
        body += f"\nYou can view your order here: {url}\n"
    _send(f"Payment received for order {order.number or order.id}", body, order.buyer.email)


def send_low_stock_email(seller_id: int, products: Iterable) -> None:
    """Warn a seller that some products are at or below their minimum stock."""
    seller = get_user_model().objects.get(id=seller_id)
    rows = "".join(f"  - {p.title}: {p.stock} left (minimum {p.min_stock})\n" for p in products)
    if not rows:
        return
    body = f"The following products are running low:\n\n{rows}\nRestock them to keep selling.\n"
    _send("Low stock alert", body, seller.email)
