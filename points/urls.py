from django.urls import include, path

from bakery.api import OptionalSlashRouter

from . import views

router = OptionalSlashRouter()
router.register(r"admin", views.PointsAdminViewSet, basename="points-admin")
router.register(
    r"admin/virtual-cards/products",
    views.VirtualCardProductAdminViewSet,
    basename="virtual-card-product",
)
router.register(
    r"admin/virtual-cards/purchases",
    views.VirtualCardPurchaseAdminViewSet,
    basename="virtual-card-purchase",
)

urlpatterns = [
    # 後台
    path(
        "admin/virtual-cards/purchase/<int:pk>/payment",
        views.PurchasePaymentView.as_view(),
        name="virtual_card_payment",
    ),
    path("admin/virtual-cards/stats", views.VirtualCardStatsView.as_view(), name="virtual_card_stats"),
    # 前台
    path("balance/<str:line_id>", views.BalanceView.as_view(), name="points_balance"),
    path(
        "transactions/<str:line_id>",
        views.CustomerTransactionsView.as_view(),
        name="points_transactions",
    ),
    path("virtual-cards", views.VirtualCardListView.as_view(), name="virtual_cards"),
    path(
        "virtual-cards/purchase",
        views.VirtualCardPurchaseView.as_view(),
        name="virtual_card_purchase",
    ),
    path(
        "virtual-cards/purchases/<str:line_id>",
        views.CustomerPurchasesView.as_view(),
        name="virtual_card_purchases",
    ),
    path(
        "virtual-cards/line_confirm",
        views.VirtualCardLinePayConfirmView.as_view(),
        name="virtual_card_line_confirm",
    ),
    path(
        "virtual-cards/line_cancel",
        views.VirtualCardLinePayCancelView.as_view(),
        name="virtual_card_line_cancel",
    ),
    path("", include(router.urls)),
]
