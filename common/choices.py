"""Shared enumerations and choices used across apps."""

from django.db import models


class UserRole(models.TextChoices):
    """Marketplace roles; producers sell, consumers buy."""

    CONSUMER = "consumer", "Consumer"
    PRODUCER = "producer", "Producer"
    ADMIN = "admin", "Admin"


class MovementType(models.TextChoices):
    INBOUND = "in", "Inbound"
    OUTBOUND = "out", "Outbound"
    ADJUST = "adjust", "Adjust"


class OrderStatus(models.TextChoices):
    """Lifecycle statuses for orders.

    Only ``pending`` is set by checkout; later transitions belong to fulfillment.
    """

    PENDING = "pending", "Pending"
    CONFIRMED = "confirmed", "Confirmed"
    IN_PREPARATION = "in_preparation", "In preparation"
    IN_TRANSIT = "in_transit", "In transit"
    DELIVERED = "delivered", "Delivered"
    CANCELED = "canceled", "Canceled"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    """Payment methods accepted at checkout."""

    CASH = "cash", "Cash"
    TRANSFER = "transfer", "Bank transfer"
    CARD = "card", "Card"
    NEQUI = "nequi", "Nequi"
    DAVIPLATA = "daviplata", "Daviplata"
    PSE = "pse", "PSE"
