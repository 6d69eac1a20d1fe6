"""Cart checkout: turn a validated cart into one pending order per seller.

Validation and splitting are read-only. All stock decrements and order
inserts for every seller then happen inside one ``transaction.atomic`` block,
so a checkout either commits every order or leaves stock, orders and the
cart exactly as they were. The conditional decrement inside that block is
the only guard against concurrent checkouts; validation results are never
trusted for that.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from common.choices import PaymentMethod
from common.tasks import run_in_background
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, connection, transaction
from inventory.gateway import InventoryGateway, get_inventory_gateway
from orders.notifications import NotificationDispatcher, OrderCreatedEvent, dispatch, get_notification_dispatcher
from orders.services import OrderIntegrityError, OrderPersistence, get_order_persistence
from orders.splitting import OrderGroup, split_by_seller

from .errors import (
    CartChanged,
    CartEmpty,
    CartInvalid,
    CheckoutError,
    CheckoutTimeout,
    InvalidInput,
    PersistenceFailure,
    StockRaceLost,
)
from .models import Cart
from .services import clear_checked_out_lines
from .validation import validate_cart

logger = logging.getLogger("marketplace.checkout")

ADDRESS_MIN_LENGTH = 5
ADDRESS_MAX_LENGTH = 500
NOTES_MAX_LENGTH = 1000

# PostgreSQL SQLSTATEs for statement_timeout and lock_timeout
_TIMEOUT_SQLSTATES = {"57014", "55P03"}


@dataclass(frozen=True)
class CheckoutResult:
    order_ids: Tuple[int, ...]
    warnings: Tuple[str, ...] = ()


def _clean_input(delivery_address, payment_method, notes) -> Tuple[str, str, str]:
    address = delivery_address.strip() if isinstance(delivery_address, str) else ""
    if len(address) < ADDRESS_MIN_LENGTH:
        raise InvalidInput(f"delivery address must be at least {ADDRESS_MIN_LENGTH} characters")
    if len(address) > ADDRESS_MAX_LENGTH:
        raise InvalidInput(f"delivery address must be at most {ADDRESS_MAX_LENGTH} characters")
    if notes is None:
        notes = ""
    if not isinstance(notes, str):
        raise InvalidInput("notes must be text")
    notes = notes.strip()
    if len(notes) > NOTES_MAX_LENGTH:
        raise InvalidInput(f"notes must be at most {NOTES_MAX_LENGTH} characters")
    if payment_method not in PaymentMethod.values:
        raise InvalidInput(f"payment method must be one of: {', '.join(PaymentMethod.values)}")
    return address, payment_method, notes


def _check_deadline(deadline: float) -> None:
    if time.monotonic() > deadline:
        raise CheckoutTimeout()


def _apply_db_timeouts(seconds: float) -> None:
    """Bound server-side work for the current transaction (PostgreSQL only)."""
    if connection.vendor != "postgresql":
        return
    ms = max(1, int(seconds * 1000))
    with connection.cursor() as cursor:
        cursor.execute(f"SET LOCAL statement_timeout = {ms}")
        cursor.execute(f"SET LOCAL lock_timeout = {ms}")


def _is_db_timeout(exc: DatabaseError) -> bool:
    cause = exc.__cause__
    code = getattr(cause, "sqlstate", None) or getattr(cause, "pgcode", None)
    return code in _TIMEOUT_SQLSTATES


def _commit_groups(
    *,
    user,
    groups: Sequence[OrderGroup],
    cart_version: int,
    inventory: InventoryGateway,
    persistence: OrderPersistence,
    seconds: float,
    deadline: float,
) -> Tuple[List[int], int]:
    order_ids: List[int] = []
    with transaction.atomic():
        _apply_db_timeouts(seconds)
        cart = Cart.objects.select_for_update().filter(user=user).first()
        if cart is None or cart.is_checked_out:
            raise CartEmpty()
        if cart.version != cart_version:
            raise CartChanged()
        # Marks the current lines as ordered; any later mutation bumps the version past it
        cart.version += 1
        cart.checked_out_version = cart.version
        cart.save(update_fields=["version", "checked_out_version", "updated_at"])

        reference = f"checkout:user:{user.id}:v{cart.version}"
        for group in groups:
            _check_deadline(deadline)
            for line in group.lines:
                _check_deadline(deadline)
                if not inventory.conditional_decrement(line.product_id, line.quantity, reference=reference):
                    raise StockRaceLost(line.product_id, line.title)
            order_ids.append(persistence.create_order(group))
    return order_ids, cart.version


def _retry_clear_cart(user_id: int, version: int, attempts: int) -> None:
    user = get_user_model().objects.get(id=user_id)
    for attempt in range(1, attempts + 1):
        try:
            clear_checked_out_lines(user=user, version=version)
            logger.info(
                "checkout.cart_clear_retried",
                extra={"event": "checkout.cart_clear_retried", "user_id": user_id, "attempt": attempt},
            )
            return
        except DatabaseError:
            logger.warning(
                "checkout.cart_clear_failed",
                exc_info=True,
                extra={"event": "checkout.cart_clear_failed", "user_id": user_id, "attempt": attempt},
            )
            if attempt < attempts:
                time.sleep(min(0.5 * 2 ** (attempt - 1), 5.0))
    logger.error(
        "checkout.cart_clear_gave_up",
        extra={"event": "checkout.cart_clear_gave_up", "user_id": user_id, "attempts": attempts},
    )


def _clear_cart_after_commit(user, version: int, order_ids: Sequence[int]) -> None:
    # Orders are committed at this point; a failure here must not surface to the caller
    try:
        clear_checked_out_lines(user=user, version=version)
    except Exception:
        logger.exception(
            "checkout.cart_clear_failed",
            extra={"event": "checkout.cart_clear_failed", "user_id": user.id, "order_ids": list(order_ids)},
        )
        attempts = int(getattr(settings, "CART_CLEAR_RETRY_ATTEMPTS", 3))
        if attempts > 0:
            run_in_background(_retry_clear_cart, user.id, version, attempts, name="checkout.cart_clear_retry")


def _low_stock_by_seller(inventory: InventoryGateway, groups: Sequence[OrderGroup]) -> Dict[int, list]:
    product_ids = [line.product_id for group in groups for line in group.lines]
    try:
        low = inventory.low_stock(product_ids)
    except DatabaseError:
        logger.exception("checkout.low_stock_check_failed", extra={"event": "checkout.low_stock_check_failed"})
        return {}
    by_seller: Dict[int, list] = defaultdict(list)
    for snapshot in low:
        by_seller[snapshot.seller_id].append(snapshot)
    return dict(by_seller)


def checkout_cart(
    *,
    user,
    delivery_address: str,
    payment_method: str,
    notes: str = "",
    coupon_code: Optional[str] = None,
    inventory: Optional[InventoryGateway] = None,
    persistence: Optional[OrderPersistence] = None,
    notifier: Optional[NotificationDispatcher] = None,
    timeout: Optional[float] = None,
) -> CheckoutResult:
    """Check out the user's cart.

    Returns the created order ids (ascending seller id) and any price-change
    warnings. Raises a ``CheckoutError`` subclass on failure, in which case no
    order, stock or cart change is left behind.
    """

    address, method, notes = _clean_input(delivery_address, payment_method, notes)
    inventory = inventory or get_inventory_gateway()
    persistence = persistence or get_order_persistence()
    notifier = notifier or get_notification_dispatcher()
    seconds = float(timeout if timeout is not None else getattr(settings, "CHECKOUT_TIMEOUT_SECONDS", 10))
    deadline = time.monotonic() + seconds
    log_ctx = {"user_id": user.id, "payment_method": method}

    logger.info("checkout.started", extra={"event": "checkout.started", **log_ctx})
    if coupon_code:
        # Discounts are not supported; the code is recorded and otherwise ignored
        logger.info(
            "checkout.coupon_ignored",
            extra={"event": "checkout.coupon_ignored", "coupon_code": coupon_code, **log_ctx},
        )

    try:
        validation = validate_cart(user=user, inventory=inventory)
        if validation.is_empty:
            raise CartEmpty()
        if not validation.valid:
            raise CartInvalid(validation.errors, validation.warnings)
        groups = split_by_seller(
            validation.lines,
            buyer_id=user.id,
            delivery_address=address,
            payment_method=method,
            notes=notes,
        )
        _check_deadline(deadline)
        order_ids, committed_version = _commit_groups(
            user=user,
            groups=groups,
            cart_version=validation.cart_version,
            inventory=inventory,
            persistence=persistence,
            seconds=seconds,
            deadline=deadline,
        )
    except StockRaceLost as exc:
        logger.info(
            "checkout.race_lost", extra={"event": "checkout.race_lost", "product_id": exc.product_id, **log_ctx}
        )
        raise
    except CheckoutTimeout:
        logger.warning("checkout.failed", extra={"event": "checkout.failed", "code": CheckoutTimeout.code, **log_ctx})
        raise
    except CheckoutError as exc:
        logger.info(
            "checkout.rejected", extra={"event": "checkout.rejected", "code": exc.code, "errors": exc.errors, **log_ctx}
        )
        raise
    except OrderIntegrityError as exc:
        logger.error("checkout.failed", extra={"event": "checkout.failed", "code": PersistenceFailure.code, **log_ctx})
        raise PersistenceFailure(str(exc)) from exc
    except DatabaseError as exc:
        if _is_db_timeout(exc):
            logger.warning(
                "checkout.failed", extra={"event": "checkout.failed", "code": CheckoutTimeout.code, **log_ctx}
            )
            raise CheckoutTimeout() from exc
        logger.exception(
            "checkout.failed", extra={"event": "checkout.failed", "code": PersistenceFailure.code, **log_ctx}
        )
        raise PersistenceFailure() from exc

    logger.info(
        "checkout.committed",
        extra={
            "event": "checkout.committed",
            "order_ids": order_ids,
            "sellers": [g.seller_id for g in groups],
            "total": str(validation.total),
            **log_ctx,
        },
    )

    _clear_cart_after_commit(user, committed_version, order_ids)
    events = [
        OrderCreatedEvent(order_id=order_id, seller_id=group.seller_id, buyer_id=user.id, line_items=group.lines)
        for order_id, group in zip(order_ids, groups)
    ]
    dispatch(notifier, events, _low_stock_by_seller(inventory, groups))
    return CheckoutResult(order_ids=tuple(order_ids), warnings=tuple(validation.warnings))
