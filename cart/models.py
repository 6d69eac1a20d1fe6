"""Cart app models.

One ``Cart`` row per user anchors row-level locking for that user's cart
mutations; ``CartItem`` rows are the cart lines.
"""

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.utils import timezone


class TimeStampedModel(models.Model):
    """Abstract base model adding created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Cart(TimeStampedModel):
    """Shopping cart owned by a single user.

    ``version`` increases on every mutation and on every committed checkout so
    a checkout can detect that the cart it validated has since changed.
    ``checked_out_version`` is the version a committed checkout left behind:
    while the two match, the remaining lines were already ordered and are
    waiting to be cleared.
    """

    user = models.OneToOneField(settings.AUTH_USER_MODEL, related_name="cart", on_delete=models.CASCADE)
    version = models.PositiveIntegerField(default=0)
    checked_out_version = models.PositiveIntegerField(null=True, blank=True)

    def __str__(self) -> str:  # pragma: no cover
        return f"Cart#{self.id} ({self.user_id}) v{self.version}"

    @property
    def is_checked_out(self) -> bool:
        return self.checked_out_version is not None and self.checked_out_version == self.version


class CartItem(TimeStampedModel):
    """A cart line: one product and the quantity the user wants."""

    cart = models.ForeignKey(Cart, related_name="items", on_delete=models.CASCADE)
    product = models.ForeignKey("catalog.Product", related_name="cart_items", on_delete=models.CASCADE)
    quantity = models.PositiveIntegerField(default=1)
    # Price the user saw when adding; checkout always re-reads the live price
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    added_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        ordering = ["-added_at", "-id"]
        constraints = [
            models.UniqueConstraint(fields=["cart", "product"], name="unique_product_per_cart"),
            models.CheckConstraint(name="cart_item_quantity_positive", condition=models.Q(quantity__gte=1)),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"CartItem#{self.id} cart={self.cart_id} product={self.product_id} qty={self.quantity}"

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price or Decimal("0.00")) * Decimal(int(self.quantity))
