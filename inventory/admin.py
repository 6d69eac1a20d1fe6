"""Admin registrations for inventory app."""

from django.contrib import admin

from .models import StockItem, StockMovement


@admin.register(StockItem)
class StockItemAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "quantity", "min_quantity", "updated_at")
    search_fields = ("product__title",)
    raw_id_fields = ("product",)


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = ("id", "stock_item", "movement_type", "quantity", "reason", "reference", "created_at")
    list_filter = ("movement_type",)
    search_fields = ("stock_item__product__title", "reference")
    # Movements are an audit trail
    readonly_fields = ("stock_item", "movement_type", "quantity", "reason", "reference", "created_at")
