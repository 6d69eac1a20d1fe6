"""Cart URL routes (v1)."""

from django.urls import path

from .views import (
    CartAddItemView,
    CartCheckoutView,
    CartClearView,
    CartDetailView,
    CartItemView,
    CartStatsView,
    CartValidateView,
)

app_name = "cart"

urlpatterns = [
    path("", CartDetailView.as_view(), name="cart-detail"),
    path("validate/", CartValidateView.as_view(), name="cart-validate"),
    path("stats/", CartStatsView.as_view(), name="cart-stats"),
    path("items/", CartAddItemView.as_view(), name="cart-add-item"),
    path("items/<int:product_id>/", CartItemView.as_view(), name="cart-item"),
    path("clear/", CartClearView.as_view(), name="cart-clear"),
    path("checkout/", CartCheckoutView.as_view(), name="cart-checkout"),
]
