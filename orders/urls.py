"""URL routes for the orders app (v1)."""

from django.urls import path

from .views import OrderDetailView, OrderListView, OrderPaymentWebhookView

app_name = "orders"

urlpatterns = [
    path("", OrderListView.as_view(), name="order-list"),
    path("<int:order_id>/", OrderDetailView.as_view(), name="order-detail"),
    path("webhooks/payment/", OrderPaymentWebhookView.as_view(), name="order-webhook-payment"),
]
