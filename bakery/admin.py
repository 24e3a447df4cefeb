from django.contrib import admin
from django.utils.html import format_html

from .models import Category, Customer, Order, OrderItem, Product


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    """分類管理：可直接在列表頁調整排序"""

    list_display = ("name", "slug", "sort_order", "product_count", "is_active")
    list_editable = ("sort_order", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "slug")
    prepopulated_fields = {"slug": ("name",)}
    ordering = ("sort_order",)

    def product_count(self, obj):
        return f"{obj.products.count()} 項商品"

    product_count.short_description = "商品數量"


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_select_related = ("category",)
    list_display = (
        "name",
        "category",
        "price",
        "discount_price",
        "stock",
        "status",
        "display_inventory_status",
    )
    list_display_links = ("name",)
    list_editable = ("price", "discount_price", "stock", "status")
    list_filter = ("category", "status")
    search_fields = ("name", "category__name")
    ordering = ("category__sort_order", "id")

    def display_inventory_status(self, obj):
        if obj.is_sold_out:
            return format_html(
                '<span style="color: #d63031; font-weight: bold;">{}</span>',
                "🚫 已售完",
            )
        elif obj.stock <= 5:
            return format_html(
                '<span style="color: #e17055; font-weight: bold;">⚠️ 剩餘 {}</span>',
                obj.stock,
            )
        return format_html('<span style="color: #27ae60;">{}</span>', "OK")

    display_inventory_status.short_description = "庫存狀態"


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_select_related = ("salesperson",)
    list_display = ("__str__", "role", "phone", "email", "store_name", "salesperson", "created_at")
    list_filter = ("role", "salesperson")
    search_fields = ("name", "display_name", "phone", "email", "store_name", "line_id")


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    fields = ("product", "product_name", "price", "quantity")
    raw_id_fields = ("product",)


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_select_related = ("salesperson",)
    list_display = (
        "order_number",
        "customer_name",
        "customer_phone",
        "payment_method",
        "display_status_badge",
        "payment_status",
        "total_amount",
        "display_refund_badge",
        "display_linepay_transaction_copy",
        "created_at",
    )
    list_display_links = ("order_number",)
    list_filter = ("status", "payment_method", "payment_status", "salesperson", "created_at")
    search_fields = ("order_number", "customer_name", "customer_phone", "customer_email")
    ordering = ("-created_at",)
    inlines = [OrderItemInline]

    fieldsets = (
        (
            "基本資訊",
            {
                "fields": (
                    "order_number",
                    "customer",
                    "salesperson",
                    "status",
                    "customer_name",
                    "customer_phone",
                    "customer_email",
                    "address",
                )
            },
        ),
        (
            "付款與配送",
            {
                "fields": (
                    "payment_method",
                    "payment_status",
                    "shipping_method",
                    "shipping_status",
                    "shipping_fee",
                    "carrier",
                    "tax_id",
                )
            },
        ),
        (
            "金額",
            {"fields": ("subtotal", "points_used", "points_discount", "total_amount", "points_awarded")},
        ),
        (
            "LINE Pay / 退款資訊",
            {
                "fields": (
                    "linepay_transaction_id",
                    "linepay_refunded",
                    "linepay_refund_transaction_id",
                ),
                "classes": ("collapse",),
            },
        ),
        ("備註與時間", {"fields": ("notes", "created_at", "completed_at"), "classes": ("collapse",)}),
    )

    readonly_fields = (
        "order_number",
        "subtotal",
        "total_amount",
        "points_awarded",
        "created_at",
        "completed_at",
        "linepay_transaction_id",
        "linepay_refunded",
        "linepay_refund_transaction_id",
    )

    def display_status_badge(self, obj):
        colors = {
            "pending": "#ff4d4d",  # 紅
            "processing": "#f39c12",  # 橘
            "shipped": "#007bff",  # 藍
            "delivered": "#2ecc71",  # 綠
            "cancelled": "#2d3436",  # 黑
        }
        return format_html(
            '<span style="background: {}; color: white; padding: 2px 10px; border-radius: 12px; font-size: 11px; font-weight: bold;">{}</span>',
            colors.get(obj.status, "#eee"),
            obj.get_status_display(),
        )

    display_status_badge.short_description = "狀態"

    def display_refund_badge(self, obj):
        if obj.payment_method != "line_pay":
            return "—"
        if obj.linepay_refunded:
            return "✅ 已退款"
        if obj.linepay_transaction_id:
            return "⚠️ 未退款"
        return "（未付款資訊）"

    display_refund_badge.short_description = "退款狀態"

    def display_linepay_transaction_copy(self, obj):
        if not obj.linepay_transaction_id:
            return "—"
        return format_html(
            '<input type="text" value="{}" readonly onclick="this.select();" '
            'style="font-family: ui-monospace, monospace; font-size: 12px; width: 180px;" />',
            obj.linepay_transaction_id,
        )

    display_linepay_transaction_copy.short_description = "LINE Pay 交易號"
