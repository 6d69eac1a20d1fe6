"""Admin registration for cart models.

Carts show their lines inline; support staff can clear a cart or sweep lines
past the configured TTL.
"""

from django.contrib import admin, messages

from .errors import CartError
from .models import Cart, CartItem
from .services import clear_cart, expire_stale_items


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0
    fields = ("product", "quantity", "unit_price", "added_at", "updated_at")
    readonly_fields = ("added_at", "updated_at")
    raw_id_fields = ("product",)


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "version", "checked_out_version", "updated_at", "created_at")
    search_fields = ("user__username", "user__email")
    ordering = ("-updated_at",)
    readonly_fields = ("version", "checked_out_version", "created_at", "updated_at")
    inlines = [CartItemInline]
    list_select_related = ("user",)

    @admin.action(description="Clear cart")
    def action_clear_cart(self, request, queryset):
        successes = 0
        failures = 0
        for cart in queryset.select_related("user"):
            try:
                clear_cart(user=cart.user)
                successes += 1
            except CartError:
                failures += 1
        if successes:
            messages.success(request, f"Cleared {successes} cart(s).")
        if failures:
            messages.error(request, f"Failed to clear {failures} cart(s).")

    @admin.action(description="Remove expired lines from all carts")
    def action_expire_stale_items(self, request, queryset):
        removed = expire_stale_items()
        messages.info(request, f"Removed {removed} expired cart line(s).")

    actions = ["action_clear_cart", "action_expire_stale_items"]


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ("id", "cart", "product", "quantity", "unit_price", "added_at")
    search_fields = ("product__title", "cart__user__email")
    list_filter = ("added_at",)
    ordering = ("-added_at",)
    readonly_fields = ("created_at", "updated_at")
    raw_id_fields = ("cart", "product")
