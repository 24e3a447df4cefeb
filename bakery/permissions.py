from rest_framework import permissions
from rest_framework.authentication import SessionAuthentication


class CookieSessionAuthentication(SessionAuthentication):
    """Session (HttpOnly Cookie) 驗證；未登入時回 401 讓前端導向登入頁"""

    def authenticate_header(self, request):
        return "Cookie"


class IsLineCustomer(permissions.BasePermission):
    """LIFF 登入後 session 內會有 customer_id"""

    message = "請先透過 LINE 登入"

    def has_permission(self, request, view):
        return bool(request.session.get("customer_id"))


class HasNotifyApiKey(permissions.BasePermission):
    message = "API 金鑰錯誤"

    def has_permission(self, request, view):
        from django.conf import settings

        expected = settings.NOTIFY_API_KEY
        return bool(expected) and request.headers.get("x-api-key") == expected
