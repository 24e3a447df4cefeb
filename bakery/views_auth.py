"""後台與業務共用的 Session 登入 (HttpOnly Cookie)"""
import logging

from django.conf import settings
from django.contrib.auth import authenticate, login, logout
from rest_framework import permissions, serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .api import success

logger = logging.getLogger(__name__)


def user_role(user):
    if user.is_staff:
        return "admin"
    if hasattr(user, "salesperson_profile"):
        return "salesperson"
    return "user"


def user_payload(user):
    return {
        "id": user.pk,
        "username": user.username,
        "name": user.get_full_name() or user.username,
        "email": user.email,
        "role": user_role(user),
    }


class LoginSerializer(serializers.Serializer):
    username = serializers.CharField()
    password = serializers.CharField(trim_whitespace=False)


def session_login(request, allowed_roles=None):
    """驗證帳密並建立 session；失敗回傳 None"""
    serializer = LoginSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    user = authenticate(
        request,
        username=serializer.validated_data["username"],
        password=serializer.validated_data["password"],
    )
    if user is None or (allowed_roles and user_role(user) not in allowed_roles):
        logger.info("Login failed for %s", serializer.validated_data["username"])
        return None
    login(request, user)
    request.session.set_expiry(settings.SESSION_COOKIE_AGE)
    logger.info("User %s logged in", user.username)
    return user


class LoginView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        user = session_login(request)
        if user is None:
            return Response(
                {"success": False, "message": "帳號或密碼錯誤"},
                status=status.HTTP_401_UNAUTHORIZED,
            )
        return success(user_payload(user), message="登入成功")


class LogoutView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        logout(request)
        return success(message="已登出")


class MeView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        return success(user_payload(request.user))


class RefreshTokenView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        request.session.set_expiry(settings.SESSION_COOKIE_AGE)
        request.session.modified = True
        data = user_payload(request.user)
        data["expires_in"] = settings.SESSION_COOKIE_AGE
        return success(data)
