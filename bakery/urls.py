from django.urls import include, path

from . import views, views_auth, views_customer
from .api import OptionalSlashRouter

router = OptionalSlashRouter()
router.register(r"categories", views.CategoryViewSet, basename="category")
router.register(r"products", views.ProductViewSet, basename="product")
router.register(r"customers", views.CustomerViewSet, basename="customer")
router.register(r"orders", views.OrderViewSet, basename="order")

urlpatterns = [
    # 後台 / 業務登入
    path("auth/login", views_auth.LoginView.as_view(), name="auth_login"),
    path("auth/logout", views_auth.LogoutView.as_view(), name="auth_logout"),
    path("auth/me", views_auth.MeView.as_view(), name="auth_me"),
    path("auth/refresh-token", views_auth.RefreshTokenView.as_view(), name="auth_refresh"),
    # LINE 會員
    path("customer/liff/login", views_customer.LiffLoginView.as_view(), name="liff_login"),
    path(
        "customer/liff/saveUserData",
        views_customer.SaveUserDataView.as_view(),
        name="liff_save_user_data",
    ),
    path("customer/line/customer", views_customer.LineCustomerView.as_view(), name="line_customer"),
    path("customer/line/activate", views_customer.ActivateView.as_view(), name="line_activate"),
    # 上傳與通知
    path("upload", views.UploadView.as_view(), name="upload"),
    path(
        "line-message/send/contract-notification",
        views.ContractNotificationView.as_view(),
        name="contract_notification",
    ),
    path("", include(router.urls)),
]
