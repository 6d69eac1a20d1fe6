"""Post-commit notifications about new orders and low stock.

Checkout hands events to a ``NotificationDispatcher``; delivery happens off
the request path and can never change the checkout outcome.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Sequence, Tuple

from common.tasks import run_in_background

from . import emails
from .splitting import ValidatedLine

logger = logging.getLogger("marketplace.orders")


@dataclass(frozen=True)
class OrderCreatedEvent:
    order_id: int
    seller_id: int
    buyer_id: int
    line_items: Tuple[ValidatedLine, ...]


class NotificationDispatcher:
    """Receives checkout events. The base implementation only logs them."""

    def order_created(self, event: OrderCreatedEvent) -> None:
        logger.info(
            "notify.order_created",
            extra={
                "event": "notify.order_created",
                "order_id": event.order_id,
                "seller_id": event.seller_id,
                "buyer_id": event.buyer_id,
                "items": len(event.line_items),
            },
        )

    def stock_low(self, *, seller_id: int, products: Sequence) -> None:
        logger.info(
            "notify.stock_low",
            extra={
                "event": "notify.stock_low",
                "seller_id": seller_id,
                "product_ids": [p.product_id for p in products],
            },
        )


class EmailNotificationDispatcher(NotificationDispatcher):
    """Emails the seller and the buyer about each order, and sellers about low stock."""

    def order_created(self, event: OrderCreatedEvent) -> None:
        super().order_created(event)
        emails.send_new_order_email(event.order_id)
        emails.send_order_placed_email(event.order_id)

    def stock_low(self, *, seller_id: int, products: Sequence) -> None:
        super().stock_low(seller_id=seller_id, products=products)
        emails.send_low_stock_email(seller_id, products)


def get_notification_dispatcher() -> NotificationDispatcher:
    return EmailNotificationDispatcher()


def dispatch(
    notifier: NotificationDispatcher,
    events: Iterable[OrderCreatedEvent],
    low_stock: Optional[Mapping[int, Sequence]] = None,
) -> None:
    """Hand every event to the background runner; failures are logged there."""

    for event in events:
        run_in_background(notifier.order_created, event, name="notify.order_created")
    for seller_id, products in sorted((low_stock or {}).items()):
        run_in_background(notifier.stock_low, seller_id=seller_id, products=products, name="notify.stock_low")
