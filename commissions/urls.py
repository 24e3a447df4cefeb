from django.urls import include, path

from bakery.api import OptionalSlashRouter

from . import views

router = OptionalSlashRouter()
router.register(r"admin/commission-plans", views.CommissionPlanViewSet, basename="commission-plan")

urlpatterns = [
    # 後台：業務與分潤
    path(
        "admin/customers/salespersons",
        views.SalespersonListView.as_view(),
        name="salesperson_list",
    ),
    path(
        "admin/customers/<int:pk>/commission-plan",
        views.PlanAssignmentView.as_view(),
        name="plan_assignment",
    ),
    path(
        "admin/commission/calculate",
        views.CommissionCalculateView.as_view(),
        name="commission_calculate",
    ),
    path(
        "admin/commissions/history",
        views.CommissionHistoryView.as_view(),
        name="commission_history",
    ),
    path(
        "admin/commission/records/<int:pk>/status",
        views.RecordStatusView.as_view(),
        name="commission_record_status",
    ),
    path("admin/commissions/stats", views.CommissionStatsView.as_view(), name="commission_stats"),
    path("admin/commissions/export", views.CommissionExportView.as_view(), name="commission_export"),
    # 業務入口
    path("salesperson/login", views.SalespersonLoginView.as_view(), name="salesperson_login"),
    path("salesperson/profile", views.SalespersonProfileView.as_view(), name="salesperson_profile"),
    path(
        "salesperson/dashboard",
        views.SalespersonDashboardView.as_view(),
        name="salesperson_dashboard",
    ),
    path("salesperson/orders", views.SalespersonOrdersView.as_view(), name="salesperson_orders"),
    path(
        "salesperson/commissions",
        views.SalespersonCommissionsView.as_view(),
        name="salesperson_commissions",
    ),
    path(
        "salesperson/commission-rules",
        views.SalespersonCommissionRulesView.as_view(),
        name="salesperson_commission_rules",
    ),
    path("salesperson/qrcode", views.SalespersonQRCodeView.as_view(), name="salesperson_qrcode"),
    # 加盟合約
    path("contracts/store-info", views.StoreInfoView.as_view(), name="contract_store_info"),
    path("contracts", views.ContractSignView.as_view(), name="contract_sign"),
    path("", include(router.urls)),
]
