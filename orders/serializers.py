"""DRF serializers for Orders."""

from rest_framework import serializers

from .models import Order, OrderItem


class OrderItemSerializer(serializers.ModelSerializer):
    """API representation of an order line item."""

    product_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = OrderItem
        fields = ["id", "product_id", "product_title", "quantity", "unit_price", "subtotal"]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """API representation for an order and its line items."""

    items = OrderItemSerializer(many=True, read_only=True)
    buyer_id = serializers.IntegerField(read_only=True)
    seller_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "number",
            "buyer_id",
            "seller_id",
            "status",
            "payment_status",
            "payment_method",
            "delivery_address",
            "notes",
            "total",
            "created_at",
            "delivered_at",
            "items",
        ]
        read_only_fields = fields
