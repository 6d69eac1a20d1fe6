"""DRF views for cart operations and checkout."""

from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, inline_serializer
from orders.services import compute_request_hash, with_idempotency
from rest_framework import serializers as rf_serializers
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .checkout import checkout_cart
from .errors import CartError, CartLineNotFound, CheckoutError, ProductNotFound
from .selectors import cart_stats, cart_summary
from .serializers import (
    AddItemSerializer,
    CartReadSerializer,
    CartStatsSerializer,
    CartValidationSerializer,
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    SeenPricesQuerySerializer,
    UpdateItemQuantitySerializer,
)
from .services import clear_cart, remove_item, update_item_quantity
from .validation import validate_cart

CartMutationError = inline_serializer(name="CartMutationError", fields={"detail": rf_serializers.CharField()})
NotFoundError = inline_serializer(name="NotFoundError", fields={"detail": rf_serializers.CharField()})
CartLineResponse = inline_serializer(
    name="CartLineResponse",
    fields={"product_id": rf_serializers.IntegerField(), "quantity": rf_serializers.IntegerField()},
)


def _cart_error_response(exc: CartError) -> Response:
    if isinstance(exc, (ProductNotFound, CartLineNotFound)):
        return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


class CartDetailView(APIView):
    """Return the authenticated user's cart with live prices."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "cart"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Get cart",
        description="Returns the cart lines newest first, joined with current price, stock and availability.",
        responses={200: CartReadSerializer},
        examples=[
            OpenApiExample(
                "Cart",
                value={
                    "items": [
                        {
                            "product_id": 100,
                            "title": "Tomatoes",
                            "seller_id": 7,
                            "quantity": 2,
                            "unit_price": "10.00",
                            "cart_price": "10.00",
                            "line_total": "20.00",
                            "stock": 40,
                            "is_available": True,
                            "added_at": "2024-05-01T10:00:00Z",
                        }
                    ],
                    "total_items": 2,
                    "total_price": "20.00",
                    "version": 3,
                },
            )
        ],
    )
    def get(self, request):
        data = CartReadSerializer(cart_summary(user=request.user)).data
        return Response(data, status=status.HTTP_200_OK)


class CartValidateView(APIView):
    """Check the cart against live stock and prices without changing anything."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "cart"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Validate cart",
        description=(
            "Advisory check; problems are reported as errors, price changes as warnings.\n"
            "Pass `seen_prices` to compare against the prices the client displayed "
            "instead of the prices captured when the items were added."
        ),
        parameters=[
            OpenApiParameter(
                name="seen_prices",
                description="Comma-separated `product_id:price` pairs, e.g. `12:10.00,15:4.50`",
                required=False,
                type=str,
            ),
        ],
        responses={200: CartValidationSerializer},
        examples=[
            OpenApiExample(
                "Invalid",
                value={
                    "valid": False,
                    "errors": ["only 3 units available for Tomatoes"],
                    "warnings": [],
                    "total": "0.00",
                },
            )
        ],
    )
    def get(self, request):
        params = SeenPricesQuerySerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        validation = validate_cart(user=request.user, known_prices=params.validated_data.get("seen_prices"))
        return Response(CartValidationSerializer.from_validation(validation).data, status=status.HTTP_200_OK)


class CartStatsView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_scope = "cart"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Cart statistics",
        responses={200: CartStatsSerializer},
        examples=[
            OpenApiExample(
                "Stats",
                value={
                    "unique_products": 2,
                    "total_items": 3,
                    "total_price": "25.00",
                    "available_products": 1,
                    "unavailable_products": 1,
                    "availability_percentage": 50,
                    "last_updated": "2024-05-01T10:00:00Z",
                },
            )
        ],
    )
    def get(self, request):
        return Response(CartStatsSerializer(cart_stats(user=request.user)).data, status=status.HTTP_200_OK)


class CartAddItemView(APIView):
    """Add a product to the cart; adding it again sums the quantities."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "cart_write"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Add item to cart",
        description="Adds a product to the user's cart after an early stock check.",
        request=AddItemSerializer,
        responses={201: CartLineResponse, 400: CartMutationError, 404: NotFoundError},
        examples=[
            OpenApiExample("Add", value={"product_id": 100, "quantity": 2}, request_only=True),
            OpenApiExample("Added", value={"product_id": 100, "quantity": 2}, response_only=True),
            OpenApiExample(
                "Insufficient stock",
                value={"detail": "only 1 units available for Tomatoes"},
                response_only=True,
                status_codes=["400"],
            ),
        ],
    )
    def post(self, request):
        serializer = AddItemSerializer(data=request.data, context={"request": request})
        serializer.is_valid(raise_exception=True)
        try:
            item = serializer.save()
        except CartError as exc:
            return _cart_error_response(exc)
        return Response({"product_id": item.product_id, "quantity": item.quantity}, status=status.HTTP_201_CREATED)


class CartItemView(APIView):
    """Update or remove a cart line, addressed by product id."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "cart_write"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Update cart item quantity",
        description="Overwrites the line quantity. A quantity of 0 removes the line.",
        request=UpdateItemQuantitySerializer,
        responses={200: CartLineResponse, 400: CartMutationError, 404: NotFoundError},
        examples=[OpenApiExample("Updated", value={"product_id": 100, "quantity": 3})],
    )
    def patch(self, request, product_id: int):
        serializer = UpdateItemQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        quantity = serializer.validated_data["quantity"]
        try:
            item = update_item_quantity(user=request.user, product_id=product_id, quantity=quantity)
        except CartError as exc:
            return _cart_error_response(exc)
        if item is None:
            return Response({"product_id": product_id, "quantity": 0}, status=status.HTTP_200_OK)
        return Response({"product_id": item.product_id, "quantity": item.quantity}, status=status.HTTP_200_OK)

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Delete cart item",
        description="Removes the line for this product.",
        responses={204: None, 404: NotFoundError},
    )
    def delete(self, request, product_id: int):
        if not remove_item(user=request.user, product_id=product_id):
            return Response({"detail": "Not found."}, status=status.HTTP_404_NOT_FOUND)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CartClearView(APIView):
    """Delete every line in the cart."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "cart_write"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Clear cart",
        responses={
            200: inline_serializer(
                name="CartCleared",
                fields={"status": rf_serializers.CharField(), "removed": rf_serializers.IntegerField()},
            )
        },
        examples=[OpenApiExample("Cleared", value={"status": "cleared", "removed": 3})],
    )
    def post(self, request):
        removed = clear_cart(user=request.user)
        return Response({"status": "cleared", "removed": removed}, status=status.HTTP_200_OK)


class CartCheckoutView(APIView):
    """Turn the cart into one pending order per seller."""

    permission_classes = [IsAuthenticated]
    throttle_scope = "checkout"

    @extend_schema(
        tags=["Cart Endpoints"],
        summary="Checkout cart",
        description=(
            "Validates the cart, then atomically decrements stock and creates one order per seller. "
            "On any failure nothing is written and the cart is left untouched."
        ),
        request=CheckoutRequestSerializer,
        parameters=[
            OpenApiParameter(
                name="Idempotency-Key",
                location=OpenApiParameter.HEADER,
                required=False,
                description="When provided, checkout becomes idempotent for this user+path+method",
                type=str,
            )
        ],
        responses={
            201: CheckoutResponseSerializer,
            400: CheckoutResponseSerializer,
            409: CheckoutResponseSerializer,
            500: CheckoutResponseSerializer,
            503: CheckoutResponseSerializer,
        },
        examples=[
            OpenApiExample(
                "Checkout",
                value={"deliveryAddress": "Calle 10 # 5-20, Bogota", "paymentMethod": "nequi", "notes": ""},
                request_only=True,
            ),
            OpenApiExample(
                "Created",
                value={"success": True, "orderIds": [41, 42], "warnings": []},
                response_only=True,
                status_codes=["201"],
            ),
            OpenApiExample(
                "Cart invalid",
                value={
                    "success": False,
                    "orderIds": [],
                    "warnings": [],
                    "errors": ["only 3 units available for Tomatoes"],
                },
                response_only=True,
                status_codes=["400"],
            ),
            OpenApiExample(
                "Stock race lost",
                value={
                    "success": False,
                    "orderIds": [],
                    "warnings": [],
                    "errors": ["stock for Tomatoes changed during checkout, please review your cart"],
                },
                response_only=True,
                status_codes=["409"],
            ),
        ],
    )
    def post(self, request):
        serializer = CheckoutRequestSerializer(data=request.data)
        if not serializer.is_valid():
            errors = [f"{field}: {msg}" for field, msgs in serializer.errors.items() for msg in msgs]
            body = {"success": False, "orderIds": [], "warnings": [], "errors": errors}
            return Response(body, status=status.HTTP_400_BAD_REQUEST)
        data = serializer.validated_data

        def _checkout_handler():
            try:
                result = checkout_cart(user=request.user, **data)
            except CheckoutError as exc:
                body = {
                    "success": False,
                    "orderIds": [],
                    "warnings": list(getattr(exc, "warnings", [])),
                    "errors": exc.errors,
                    "code": exc.code,
                    "retryable": exc.retryable,
                }
                return body, exc.status_code
            body = {"success": True, "orderIds": list(result.order_ids), "warnings": list(result.warnings)}
            return body, status.HTTP_201_CREATED

        idem_key = request.headers.get("Idempotency-Key")
        if idem_key:
            body, code = with_idempotency(
                key=idem_key,
                user=request.user,
                path=str(request.path),
                method=str(request.method),
                handler=_checkout_handler,
                request_hash=compute_request_hash(dict(request.data)),
            )
            return Response(body, status=code)
        body, code = _checkout_handler()
        return Response(body, status=code)
