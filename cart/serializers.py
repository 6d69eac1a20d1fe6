"""Cart serializers for read and write operations."""

from decimal import Decimal, InvalidOperation

from common.choices import PaymentMethod
from django.conf import settings
from rest_framework import serializers

from .checkout import ADDRESS_MAX_LENGTH, ADDRESS_MIN_LENGTH, NOTES_MAX_LENGTH
from .services import add_item


def _max_quantity() -> int:
    return int(getattr(settings, "CART_MAX_LINE_QUANTITY", 100))


class CartLineReadSerializer(serializers.Serializer):
    """A cart line with its live price and availability."""

    product_id = serializers.IntegerField()
    title = serializers.CharField()
    seller_id = serializers.IntegerField(allow_null=True)
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    cart_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2)
    stock = serializers.IntegerField()
    is_available = serializers.BooleanField()
    added_at = serializers.DateTimeField()


class CartReadSerializer(serializers.Serializer):
    """Read serializer for the cart summary and items."""

    items = CartLineReadSerializer(many=True)
    total_items = serializers.IntegerField()
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    version = serializers.IntegerField()


class CartStatsSerializer(serializers.Serializer):
    unique_products = serializers.IntegerField()
    total_items = serializers.IntegerField()
    total_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    available_products = serializers.IntegerField()
    unavailable_products = serializers.IntegerField()
    availability_percentage = serializers.IntegerField()
    last_updated = serializers.DateTimeField(allow_null=True)


class CartValidationSerializer(serializers.Serializer):
    valid = serializers.BooleanField()
    errors = serializers.ListField(child=serializers.CharField())
    warnings = serializers.ListField(child=serializers.CharField())
    total = serializers.DecimalField(max_digits=12, decimal_places=2)

    @classmethod
    def from_validation(cls, validation):
        return cls(
            {
                "valid": validation.valid,
                "errors": list(validation.errors),
                "warnings": list(validation.warnings),
                "total": validation.total,
            }
        )


class AddItemSerializer(serializers.Serializer):
    """Write serializer for adding an item to the cart."""

    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)

    def validate_quantity(self, value):
        limit = _max_quantity()
        if value > limit:
            raise serializers.ValidationError(f"Ensure this value is less than or equal to {limit}.")
        return value

    def create(self, validated_data):  # type: ignore[override]
        user = self.context["request"].user
        return add_item(user=user, **validated_data)


class UpdateItemQuantitySerializer(serializers.Serializer):
    """Write serializer for updating a cart line; zero removes the line."""

    quantity = serializers.IntegerField(min_value=0)

    def validate_quantity(self, value):
        limit = _max_quantity()
        if value > limit:
            raise serializers.ValidationError(f"Ensure this value is less than or equal to {limit}.")
        return value


class SeenPricesQuerySerializer(serializers.Serializer):
    """Query parameters for cart validation.

    ``seen_prices`` lists the prices the client displayed as comma-separated
    ``product_id:price`` pairs, e.g. ``12:10.00,15:4.50``.
    """

    seen_prices = serializers.CharField(required=False, allow_blank=True)

    def validate_seen_prices(self, value):
        prices = {}
        for pair in filter(None, (p.strip() for p in value.split(","))):
            product_id, sep, price = pair.partition(":")
            if not sep:
                raise serializers.ValidationError(f"Expected product_id:price, got \"{pair}\".")
            try:
                key, amount = int(product_id), Decimal(price.strip())
            except (ValueError, InvalidOperation):
                raise serializers.ValidationError(f"Invalid product id or price in \"{pair}\".")
            if not amount.is_finite() or amount < 0:
                raise serializers.ValidationError(f"Invalid price in \"{pair}\".")
            prices[key] = amount
        return prices


class CheckoutRequestSerializer(serializers.Serializer):
    """Checkout payload; field names follow the storefront's camelCase JSON."""

    deliveryAddress = serializers.CharField(
        source="delivery_address", min_length=ADDRESS_MIN_LENGTH, max_length=ADDRESS_MAX_LENGTH
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=NOTES_MAX_LENGTH)
    paymentMethod = serializers.ChoiceField(source="payment_method", choices=PaymentMethod.choices)
    couponCode = serializers.CharField(source="coupon_code", required=False, allow_blank=True, allow_null=True)


class CheckoutResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    orderIds = serializers.ListField(child=serializers.IntegerField())
    warnings = serializers.ListField(child=serializers.CharField())
    errors = serializers.ListField(child=serializers.CharField(), required=False)
