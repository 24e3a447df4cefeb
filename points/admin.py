from django.contrib import admin
from django.db import models
from django.utils.html import format_html
from django_json_widget.widgets import JSONEditorWidget

from .models import (
    PointAccount,
    PointSetting,
    PointTransaction,
    VirtualCardProduct,
    VirtualCardPurchase,
)


@admin.register(PointSetting)
class PointSettingAdmin(admin.ModelAdmin):
    list_display = ("setting_key", "setting_value", "setting_type", "description", "is_active")
    list_editable = ("setting_value", "is_active")
    list_filter = ("setting_type", "is_active")
    search_fields = ("setting_key", "description")


@admin.register(PointAccount)
class PointAccountAdmin(admin.ModelAdmin):
    list_select_related = ("customer",)
    list_display = (
        "customer",
        "available",
        "total_earned",
        "total_used",
        "expired",
        "last_earned_at",
        "last_used_at",
    )
    search_fields = ("customer__name", "customer__display_name", "customer__phone", "customer__line_id")
    # 餘額只能透過點數異動調整
    readonly_fields = (
        "total_earned",
        "total_used",
        "available",
        "pending",
        "expired",
        "last_earned_at",
        "last_used_at",
    )


@admin.register(PointTransaction)
class PointTransactionAdmin(admin.ModelAdmin):
    list_select_related = ("account__customer", "order")
    list_display = (
        "id",
        "account",
        "transaction_type",
        "display_points",
        "points_before",
        "points_after",
        "remaining",
        "expires_at",
        "status",
        "created_by",
        "created_at",
    )
    list_filter = ("transaction_type", "status", "created_at")
    search_fields = ("account__customer__name", "account__customer__line_id", "description")
    ordering = ("-created_at",)
    formfield_overrides = {models.JSONField: {"widget": JSONEditorWidget}}

    def display_points(self, obj):
        color = "#27ae60" if obj.points > 0 else "#d63031"
        return format_html('<span style="color: {}; font-weight: bold;">{}</span>', color, f"{obj.points:+d}")

    display_points.short_description = "點數"

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(VirtualCardProduct)
class VirtualCardProductAdmin(admin.ModelAdmin):
    list_display = ("name", "price", "points_value", "status", "display_order")
    list_editable = ("status", "display_order")
    list_filter = ("status",)
    search_fields = ("name",)


@admin.register(VirtualCardPurchase)
class VirtualCardPurchaseAdmin(admin.ModelAdmin):
    list_select_related = ("customer", "product")
    list_display = (
        "id",
        "customer",
        "product",
        "payment_method",
        "display_payment_badge",
        "purchase_price",
        "points_redeemed",
        "created_at",
    )
    list_filter = ("payment_method", "payment_status", "created_at")
    search_fields = ("customer__name", "customer__line_id", "transaction_id")
    readonly_fields = ("points_redeemed", "created_at", "updated_at")
    formfield_overrides = {models.JSONField: {"widget": JSONEditorWidget}}

    def display_payment_badge(self, obj):
        colors = {
            "pending": "#f39c12",
            "paid": "#2ecc71",
            "failed": "#d63031",
            "cancelled": "#636e72",
        }
        return format_html(
            '<span style="background: {}; color: white; padding: 2px 10px; border-radius: 12px; font-size: 11px; font-weight: bold;">{}</span>',
            colors.get(obj.payment_status, "#eee"),
            obj.get_payment_status_display(),
        )

    display_payment_badge.short_description = "付款狀態"
