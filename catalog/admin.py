from django.contrib import admin

from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "seller", "price", "unit", "is_available", "updated_at")
    list_filter = ("is_available",)
    search_fields = ("title", "seller__username", "seller__email")
    raw_id_fields = ("seller",)
