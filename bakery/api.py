"""
Shared REST helpers: response envelope, pagination and error rendering.

Every endpoint answers ``{"success": true, "data": ...}``; list endpoints add a
``pagination`` block and errors come back as ``{"success": false, "message": ...}``.
"""
import logging

from django.core.exceptions import PermissionDenied
from django.http import Http404
from rest_framework import exceptions, status, viewsets
from rest_framework.response import Response
from rest_framework.routers import DefaultRouter
from rest_framework.views import exception_handler as drf_exception_handler

from .exceptions import BakeryError
from .pagination import StandardPagination

logger = logging.getLogger(__name__)


def success(data=None, message=None, status_code=status.HTTP_200_OK):
    payload = {"success": True, "data": data}
    if message:
        payload["message"] = message
    return Response(payload, status=status_code)


def paginate(view, queryset, serializer_class, **serializer_kwargs):
    """APIView 用的分頁工具 (ViewSet 直接用 self.paginate_queryset)"""
    paginator = StandardPagination()
    page = paginator.paginate_queryset(queryset, view.request, view=view)
    serializer = serializer_class(page, many=True, **serializer_kwargs)
    return paginator.get_paginated_response(serializer.data)


def _first_message(detail):
    if isinstance(detail, dict):
        for value in detail.values():
            return _first_message(value)
    if isinstance(detail, list) and detail:
        return _first_message(detail[0])
    return str(detail)


def exception_handler(exc, context):
    if isinstance(exc, BakeryError):
        body = {"success": False, "message": exc.message}
        body.update(exc.extra)
        return Response(body, status=exc.status_code)

    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, PermissionDenied):
        exc = exceptions.PermissionDenied()

    response = drf_exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("Unhandled API error in %s", view.__class__.__name__ if view else "?")
        return None

    detail = response.data
    body = {"success": False, "message": _first_message(detail)}
    if isinstance(exc, exceptions.ValidationError):
        body["message"] = "資料格式錯誤"
        body["errors"] = detail
    response.data = body
    return response


class EnvelopeModelViewSet(viewsets.ModelViewSet):
    """ModelViewSet 的 CRUD 回應統一包成 success 格式"""

    paginate_list = True
    deleted_message = "資料已刪除"

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        if not self.paginate_list:
            return success(self.get_serializer(queryset, many=True).data)
        page = self.paginate_queryset(queryset)
        return self.get_paginated_response(self.get_serializer(page, many=True).data)

    def retrieve(self, request, *args, **kwargs):
        return success(self.get_serializer(self.get_object()).data)

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.perform_create(serializer)
        return success(serializer.data, status_code=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        serializer = self.get_serializer(
            self.get_object(), data=request.data, partial=kwargs.pop("partial", False)
        )
        serializer.is_valid(raise_exception=True)
        self.perform_update(serializer)
        return success(serializer.data)

    def destroy(self, request, *args, **kwargs):
        self.perform_destroy(self.get_object())
        return success(message=self.deleted_message)


class OptionalSlashRouter(DefaultRouter):
    """同時接受有無結尾斜線的網址，不產生 API root 頁"""

    include_root_view = False

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.trailing_slash = "/?"
