"""Exceptions raised by the cart store and the checkout engine."""

from typing import List, Optional, Sequence


class CartError(Exception):
    """Raised for cart mutation failures."""


class ProductNotFound(CartError):
    def __init__(self, product_id: int):
        super().__init__(f"product {product_id} was not found")
        self.product_id = product_id


class InsufficientStock(CartError):
    def __init__(self, message: str, *, product_id: int, available: int = 0):
        super().__init__(message)
        self.product_id = product_id
        self.available = available


class QuantityOutOfRange(CartError):
    pass


class CartLineNotFound(CartError):
    def __init__(self, product_id: int):
        super().__init__(f"product {product_id} is not in the cart")
        self.product_id = product_id


class CheckoutError(Exception):
    """Base for checkout failures.

    Carries the HTTP status the API answers with and whether the client may
    simply retry (after re-validating the cart).
    """

    code = "checkout_failed"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", *, errors: Optional[Sequence[str]] = None):
        super().__init__(message or self.default_message())
        self.errors: List[str] = list(errors) if errors else [str(self)]

    @classmethod
    def default_message(cls) -> str:
        return cls.code.replace("_", " ")


class InvalidInput(CheckoutError):
    code = "invalid_input"
    status_code = 400


class CartEmpty(CheckoutError):
    code = "cart_empty"
    status_code = 400

    def __init__(self):
        super().__init__("cart is empty")


class CartInvalid(CheckoutError):
    code = "cart_invalid"
    status_code = 400

    def __init__(self, errors: Sequence[str], warnings: Sequence[str] = ()):
        super().__init__("cart is not valid for checkout", errors=errors)
        self.warnings: List[str] = list(warnings)


class StockRaceLost(CheckoutError):
    """Stock for a product ran out between validation and commit."""

    code = "stock_race_lost"
    status_code = 409
    retryable = True

    def __init__(self, product_id: int, title: str = ""):
        label = title or f"product {product_id}"
        super().__init__(f"stock for {label} changed during checkout, please review your cart")
        self.product_id = product_id


class CartChanged(CheckoutError):
    code = "cart_changed"
    status_code = 409
    retryable = True

    def __init__(self):
        super().__init__("cart changed during checkout, please review your cart")


class CheckoutTimeout(CheckoutError):
    code = "checkout_timeout"
    status_code = 503
    retryable = True

    def __init__(self):
        super().__init__("checkout took too long, please try again")


class PersistenceFailure(CheckoutError):
    code = "persistence_failure"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or "orders could not be saved")
