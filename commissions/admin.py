from django.contrib import admin
from django.core.files.storage import default_storage
from django.db import models
from django.utils.html import format_html
from django_json_widget.widgets import JSONEditorWidget

from .models import CommissionPlan, CommissionRecord, ContractApplication, Salesperson


@admin.register(CommissionPlan)
class CommissionPlanAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "rule_type",
        "fixed_rate",
        "status",
        "effective_date",
        "expiry_date",
        "salesperson_count",
    )
    list_filter = ("rule_type", "status")
    search_fields = ("name",)
    formfield_overrides = {models.JSONField: {"widget": JSONEditorWidget}}

    def salesperson_count(self, obj):
        return f"{obj.salespersons.count()} 位業務"

    salesperson_count.short_description = "使用業務"


@admin.register(Salesperson)
class SalespersonAdmin(admin.ModelAdmin):
    list_select_related = ("user", "commission_plan")
    list_display = (
        "__str__",
        "user",
        "phone",
        "commission_plan",
        "contract_start_date",
        "contract_end_date",
        "display_contract_badge",
    )
    list_filter = ("status", "commission_plan")
    search_fields = ("name", "company_name", "phone", "email", "user__username")
    raw_id_fields = ("user",)

    def display_contract_badge(self, obj):
        if obj.has_active_contract():
            return format_html('<span style="color: #27ae60; font-weight: bold;">{}</span>', "合約生效")
        return format_html('<span style="color: #d63031;">{}</span>', "未啟用")

    display_contract_badge.short_description = "分潤狀態"


@admin.register(CommissionRecord)
class CommissionRecordAdmin(admin.ModelAdmin):
    list_select_related = ("order", "salesperson")
    list_display = (
        "id",
        "order",
        "salesperson",
        "order_amount",
        "commission_rate",
        "commission_amount",
        "display_status_badge",
        "batch_id",
        "paid_at",
    )
    list_filter = ("status", "salesperson", "rule_type")
    search_fields = ("order__order_number", "batch_id", "payment_reference")
    readonly_fields = (
        "order",
        "salesperson",
        "plan",
        "order_amount",
        "commission_rate",
        "commission_amount",
        "rule_name",
        "rule_type",
        "batch_id",
        "created_at",
    )

    def display_status_badge(self, obj):
        colors = {
            "calculated": "#f39c12",
            "paid": "#2ecc71",
            "cancelled": "#2d3436",
        }
        return format_html(
            '<span style="background: {}; color: white; padding: 2px 10px; border-radius: 12px; font-size: 11px; font-weight: bold;">{}</span>',
            colors.get(obj.status, "#eee"),
            obj.get_status_display(),
        )

    display_status_badge.short_description = "狀態"


@admin.register(ContractApplication)
class ContractApplicationAdmin(admin.ModelAdmin):
    list_display = (
        "store_name",
        "company_name",
        "contract_type",
        "representative_name",
        "sign_date",
        "status",
        "display_contract_link",
    )
    list_filter = ("contract_type", "status")
    search_fields = ("store_name", "company_name", "tax_id", "representative_name")
    readonly_fields = ("signature_image", "contract_image", "created_at")

    def display_contract_link(self, obj):
        if not obj.contract_image:
            return "—"
        return format_html('<a href="{}" target="_blank">查看合約</a>', default_storage.url(obj.contract_image))

    display_contract_link.short_description = "合約圖片"
