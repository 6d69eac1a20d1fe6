"""Orders API endpoints.

Buyers see the orders they placed, sellers the orders they received. Orders
are created only by cart checkout; the payment webhook is the one write.
"""

import hmac

from django.conf import settings
from django.db.models import Q
from django.http import Http404
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import generics
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .filters import OrderFilter
from .models import Order
from .serializers import OrderSerializer
from .services import (
    OrderStateError,
    compute_request_hash,
    mark_order_paid,
    mark_order_refunded,
    record_payment_failure,
    with_idempotency,
)


class OrderDetailView(generics.RetrieveAPIView):
    """Retrieve a single order visible to its buyer or its seller."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "orders"
    serializer_class = OrderSerializer

    def get_queryset(self):
        user_id = self.request.user.id
        return Order.objects.filter(Q(buyer_id=user_id) | Q(seller_id=user_id)).prefetch_related("items")

    def get_object(self):
        try:
            return self.get_queryset().get(id=int(self.kwargs["order_id"]))
        except (Order.DoesNotExist, ValueError):
            raise Http404("Not found.")

    @extend_schema(
        tags=["Orders"],
        summary="Get order detail",
        examples=[
            OpenApiExample(
                "Order",
                value={
                    "id": 123,
                    "number": "ORD-000123",
                    "buyer_id": 5,
                    "seller_id": 7,
                    "status": "pending",
                    "payment_status": "pending",
                    "payment_method": "nequi",
                    "delivery_address": "Calle 10 # 5-20, Bogota",
                    "notes": "",
                    "total": "20.00",
                    "created_at": "2025-01-01T12:00:00Z",
                    "delivered_at": None,
                    "items": [
                        {
                            "id": 10,
                            "product_id": 555,
                            "product_title": "Tomatoes",
                            "quantity": 2,
                            "unit_price": "10.00",
                            "subtotal": "20.00",
                        }
                    ],
                },
            )
        ],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class DefaultPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100


class OrderListView(generics.ListAPIView):
    """List the authenticated user's orders.

    `as=seller` lists orders received as seller instead of orders placed.
    Filters: `status`, `payment_status`, `number`, `start`, `end`.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = OrderSerializer
    pagination_class = DefaultPagination
    throttle_scope = "orders"
    filter_backends = [DjangoFilterBackend]
    filterset_class = OrderFilter

    def get_queryset(self):
        user_id = self.request.user.id
        if self.request.query_params.get("as") == "seller":
            qs = Order.objects.filter(seller_id=user_id)
        else:
            qs = Order.objects.filter(buyer_id=user_id)
        return qs.order_by("-id").prefetch_related("items")

    @extend_schema(
        tags=["Orders"],
        summary="List orders",
        description="List orders placed by the current user, or received as seller with `as=seller`.",
        parameters=[
            OpenApiParameter(name="as", description="`buyer` (default) or `seller`", required=False, type=str),
            OpenApiParameter(name="page", description="Page number", required=False, type=int),
            OpenApiParameter(name="page_size", description="Items per page", required=False, type=int),
        ],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


# Accepted event names, dotted or underscored, mapped to the payment outcome
WEBHOOK_EVENTS = {
    "payment_succeeded": "succeeded",
    "payment.succeeded": "succeeded",
    "payment_failed": "failed",
    "payment.failed": "failed",
    "payment_refunded": "refunded",
    "payment.refunded": "refunded",
}


class OrderPaymentWebhookView(APIView):
    """Payment collaborator callback confirming, rejecting or refunding a payment.

    When ``PAYMENT_WEBHOOK_SECRET`` is configured the request must carry it in
    ``X-Webhook-Secret``. Idempotent when ``Idempotency-Key`` is provided.
    """

    permission_classes = [AllowAny]
    authentication_classes = []
    throttle_scope = "orders_write"

    @extend_schema(
        tags=["Orders"],
        summary="Payment webhook",
        description=(
            "Consumes a payment outcome for an order. Expects JSON with `order_id` and `event`:\n"
            "- `payment_succeeded` marks the order paid.\n"
            "- `payment_failed` records the rejection (optional `reason`); the order stays payable.\n"
            "- `payment_refunded` marks a paid order refunded.\n"
            "Events that do not fit the order's payment status return 400."
        ),
        parameters=[
            OpenApiParameter(
                name="Idempotency-Key",
                location=OpenApiParameter.HEADER,
                required=False,
                description="Makes the request idempotent within scope+path+method",
                type=str,
            ),
            OpenApiParameter(
                name="X-Webhook-Secret",
                location=OpenApiParameter.HEADER,
                required=False,
                description="Shared secret, required when the server configures one",
                type=str,
            ),
        ],
        examples=[
            OpenApiExample(
                "Webhook Success",
                value={"order_id": 123, "event": "payment_succeeded"},
                request_only=True,
            ),
            OpenApiExample(
                "Webhook Rejected",
                value={"order_id": 123, "event": "payment_failed", "reason": "card declined"},
                request_only=True,
            ),
            OpenApiExample(
                "Paid",
                value={"id": 123, "payment_status": "paid"},
                response_only=True,
            ),
        ],
    )
    def post(self, request):
        secret = getattr(settings, "PAYMENT_WEBHOOK_SECRET", "")
        if secret and not hmac.compare_digest(request.headers.get("X-Webhook-Secret", ""), secret):
            return Response({"detail": "Invalid webhook secret"}, status=403)

        data = getattr(request, "data", {}) or {}
        order_id = data.get("order_id")
        event = data.get("event")
        if not order_id or not event:
            return Response({"detail": "Missing order_id or event"}, status=400)
        outcome = WEBHOOK_EVENTS.get(str(event).lower())
        if outcome is None:
            return Response({"detail": "Unsupported event"}, status=400)

        try:
            order = Order.objects.get(pk=int(order_id))
        except (Order.DoesNotExist, ValueError, TypeError):
            raise Http404

        def _handler():
            try:
                if outcome == "succeeded":
                    updated = mark_order_paid(order)
                elif outcome == "refunded":
                    updated = mark_order_refunded(order)
                else:
                    updated = record_payment_failure(order, reason=str(data.get("reason") or ""))
            except OrderStateError as exc:
                return {"detail": str(exc)}, 400
            return OrderSerializer(updated, context={"request": request}).data, 200

        idem_key = request.headers.get("Idempotency-Key")
        if idem_key:
            body, code = with_idempotency(
                key=idem_key,
                user=None,
                path=str(request.path),
                method=str(request.method),
                request_hash=compute_request_hash(dict(data)),
                handler=_handler,
            )
            return Response(body, status=code)

        body, code = _handler()
        return Response(body, status=code)
