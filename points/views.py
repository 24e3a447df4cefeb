import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.http import HttpResponse
from django.shortcuts import get_object_or_404, redirect
from django.utils.dateparse import parse_date
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import NotFound
from rest_framework.views import APIView

from bakery.api import EnvelopeModelViewSet, paginate, success
from bakery.exceptions import BakeryError
from bakery.models import Customer
from bakery.permissions import IsLineCustomer
from bakery.services import date_range_for, local_now

from . import cards, conf, reports, services
from .models import (
    PointAccount,
    PointSetting,
    PointTransaction,
    VirtualCardProduct,
    VirtualCardPurchase,
)
from .serializers import (
    ExportRequestSerializer,
    PaymentStatusSerializer,
    PointAdjustSerializer,
    PointSettingSerializer,
    PointTransactionSerializer,
    ProductStatusSerializer,
    PurchaseRequestSerializer,
    SettingsUpdateSerializer,
    UserPointsSerializer,
    VirtualCardProductSerializer,
    VirtualCardPurchaseSerializer,
)

logger = logging.getLogger(__name__)

# LINE Pay 付款完成後導回的點數卡頁面
PURCHASE_RESULT_PATH = "/client/bakery/points/purchase/confirmation"

USER_SORT_FIELDS = {
    "availablePoints": "available",
    "totalEarnedPoints": "total_earned",
    "totalUsedPoints": "total_used",
    "expiredPoints": "expired",
    "lastEarnedAt": "last_earned_at",
    "lastUsedAt": "last_used_at",
    "createdAt": "created_at",
}


def resolve_customer(identifier):
    """數字視為顧客 id，其餘視為 LINE User ID"""
    value = str(identifier or "").strip()
    if not value:
        raise BakeryError("缺少 lineUserId")
    lookup = {"pk": int(value)} if value.isdigit() else {"line_id": value}
    customer = Customer.objects.filter(**lookup).first()
    if customer is None:
        raise NotFound("找不到會員資料")
    return customer


def _date_bounds(params):
    return date_range_for(
        "custom",
        parse_date(str(params.get("startDate") or "")),
        parse_date(str(params.get("endDate") or "")),
    )


class IsOwnLineIdOrAdmin(permissions.BasePermission):
    """只能查詢自己 LINE 帳號的點數 (管理員不限)"""

    message = "無權限查詢此帳號"

    def has_permission(self, request, view):
        if request.user and request.user.is_staff:
            return True
        line_id = view.kwargs.get("line_id")
        return bool(line_id) and request.session.get("line_user_id") == line_id


# ==========================================
# 1. 後台：點數管理
# ==========================================
class PointsAdminViewSet(viewsets.ViewSet):
    permission_classes = [permissions.IsAdminUser]

    @action(detail=False, methods=["get"], url_path="users/points")
    def users(self, request):
        params = request.query_params
        qs = PointAccount.objects.select_related("customer")
        search = params.get("search")
        if search:
            qs = qs.filter(
                Q(customer__name__icontains=search)
                | Q(customer__display_name__icontains=search)
                | Q(customer__phone__icontains=search)
                | Q(customer__email__icontains=search)
                | Q(customer__line_id__icontains=search)
            )
        field = USER_SORT_FIELDS.get(params.get("sortBy"), "available")
        prefix = "" if params.get("sortOrder") == "asc" else "-"
        return paginate(self, qs.order_by(f"{prefix}{field}", "id"), UserPointsSerializer)

    def _adjust(self, request, sign):
        serializer = PointAdjustSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        customer = resolve_customer(data["lineUserId"])
        tx = services.admin_adjust(
            customer,
            sign * data["points"],
            description=data["description"],
            admin_note=data["adminNote"],
            created_by=request.user.username,
        )
        return success(PointTransactionSerializer(tx).data, status_code=status.HTTP_201_CREATED)

    @action(detail=False, methods=["post"])
    def earn(self, request):
        return self._adjust(request, 1)

    @action(detail=False, methods=["post"])
    def deduct(self, request):
        return self._adjust(request, -1)

    @action(detail=False, methods=["get"])
    def transactions(self, request):
        params = request.query_params
        qs = PointTransaction.objects.select_related("account__customer", "order")
        if params.get("transactionType"):
            qs = qs.filter(transaction_type=params["transactionType"])
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("lineUserId"):
            qs = qs.filter(account__customer=resolve_customer(params["lineUserId"]))
        lower, upper = _date_bounds(params)
        if lower:
            qs = qs.filter(created_at__gte=lower)
        if upper:
            qs = qs.filter(created_at__lt=upper)
        return paginate(self, qs, PointTransactionSerializer)

    @action(detail=False, methods=["get"], url_path="stats/overview")
    def stats(self, request):
        lower, upper = _date_bounds(request.query_params)
        return success(reports.system_stats(lower, upper))

    @action(detail=False, methods=["get"], url_path="stats/daily")
    def daily(self, request):
        try:
            days = max(1, min(int(request.query_params.get("days", 30)), 365))
        except ValueError:
            raise BakeryError("days 必須是數字")
        return success(reports.daily_stats(days))

    @action(detail=False, methods=["get", "put"], url_path="settings")
    def point_settings(self, request):
        if request.method == "GET":
            conf.ensure_defaults()
            return success(PointSettingSerializer(PointSetting.objects.all(), many=True).data)

        serializer = SettingsUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            for item in serializer.validated_data["settings"]:
                if item.get("id"):
                    row = PointSetting.objects.filter(pk=item["id"]).first()
                else:
                    row = PointSetting.objects.filter(setting_key=item.get("settingKey")).first()
                if row is None:
                    raise NotFound(f"找不到設定 {item.get('id') or item.get('settingKey')}")
                row_serializer = PointSettingSerializer(
                    row, data={"settingValue": item["settingValue"]}, partial=True
                )
                row_serializer.is_valid(raise_exception=True)
                row_serializer.save()
        logger.info("Point settings updated by %s", request.user.username)
        return success(
            PointSettingSerializer(PointSetting.objects.all(), many=True).data,
            message="設定已更新",
        )

    @action(detail=False, methods=["get", "post"])
    def export(self, request):
        source = request.data if request.method == "POST" else request.query_params
        serializer = ExportRequestSerializer(data=source)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        lower, upper = date_range_for("custom", data.get("startDate"), data.get("endDate"))
        rows = reports.export_rows(data["type"], lower, upper)
        stamp = local_now().strftime("%Y%m%d%H%M")

        if data["format"] == "csv":
            response = HttpResponse(reports.to_csv(rows), content_type="text/csv; charset=utf-8")
            response["Content-Disposition"] = f'attachment; filename="{data["type"]}_{stamp}.csv"'
            return response
        return success({"type": data["type"], "count": len(rows), "rows": rows})


class VirtualCardProductAdminViewSet(EnvelopeModelViewSet):
    permission_classes = [permissions.IsAdminUser]
    serializer_class = VirtualCardProductSerializer
    paginate_list = False
    http_method_names = ["get", "post", "put", "patch", "head", "options"]

    def get_queryset(self):
        qs = VirtualCardProduct.objects.all()
        if self.action == "list" and self.request.query_params.get("includeInactive") == "false":
            qs = qs.filter(status="active")
        return qs

    @action(detail=True, methods=["patch"], url_path="status")
    def set_status(self, request, pk=None):
        product = self.get_object()
        serializer = ProductStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        product.status = serializer.validated_data["status"]
        product.save(update_fields=["status", "updated_at"])
        return success(VirtualCardProductSerializer(product).data)


class VirtualCardPurchaseAdminViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    permission_classes = [permissions.IsAdminUser]
    serializer_class = VirtualCardPurchaseSerializer

    def get_queryset(self):
        params = self.request.query_params
        qs = VirtualCardPurchase.objects.select_related("customer", "product")
        if params.get("paymentStatus"):
            qs = qs.filter(payment_status=params["paymentStatus"])
        lower, upper = _date_bounds(params)
        if lower:
            qs = qs.filter(created_at__gte=lower)
        if upper:
            qs = qs.filter(created_at__lt=upper)
        return qs


class PurchasePaymentView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def put(self, request, pk):
        purchase = get_object_or_404(VirtualCardPurchase, pk=pk)
        serializer = PaymentStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        note = f"[{request.user.username}] {data['adminNote']}" if data["adminNote"] else ""
        purchase = cards.update_payment_status(
            purchase,
            data["paymentStatus"],
            transaction_id=data["transactionId"] or None,
            details=data["paymentDetails"],
            admin_note=note,
        )
        return success(VirtualCardPurchaseSerializer(purchase).data, message="付款狀態已更新")


class VirtualCardStatsView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        return success(cards.sales_stats())


# ==========================================
# 2. 前台：會員點數與點數卡
# ==========================================
class BalanceView(APIView):
    permission_classes = [IsOwnLineIdOrAdmin]

    def get(self, request, line_id):
        customer = resolve_customer(line_id)
        account = PointAccount.objects.filter(customer=customer).first()
        return success(
            {
                "lineUserId": customer.line_id,
                "availablePoints": account.available if account else 0,
                "totalEarnedPoints": account.total_earned if account else 0,
                "totalUsedPoints": account.total_used if account else 0,
                "expiredPoints": account.expired if account else 0,
                "pointsSystemEnabled": conf.system_enabled(),
                "pointUsageEnabled": conf.get_bool("point_usage_enabled"),
                "pointsToCurrencyRate": conf.get_number("points_to_currency_rate"),
                "maxPointsUsagePercentage": conf.get_number("max_points_usage_percentage"),
            }
        )


class CustomerTransactionsView(APIView):
    permission_classes = [IsOwnLineIdOrAdmin]

    def get(self, request, line_id):
        customer = resolve_customer(line_id)
        qs = PointTransaction.objects.select_related("account__customer", "order").filter(
            account__customer=customer
        )
        return paginate(self, qs, PointTransactionSerializer)


class VirtualCardListView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        return success(VirtualCardProductSerializer(cards.active_products(), many=True).data)


class VirtualCardPurchaseView(APIView):
    permission_classes = [IsLineCustomer]

    def post(self, request):
        serializer = PurchaseRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        customer = get_object_or_404(Customer, pk=request.session["customer_id"])
        product = get_object_or_404(VirtualCardProduct, pk=data["productId"])

        purchase = cards.create_purchase(
            customer,
            product,
            data["paymentMethod"],
            ip_address=request.META.get("REMOTE_ADDR"),
            user_agent=request.META.get("HTTP_USER_AGENT", ""),
        )
        body = VirtualCardPurchaseSerializer(purchase).data
        if purchase.payment_method == "line_pay":
            base = settings.PUBLIC_BASE_URL
            body["paymentUrl"] = cards.request_line_pay(
                purchase,
                f"{base}/api/points/virtual-cards/line_confirm?pid={purchase.pk}",
                f"{base}/api/points/virtual-cards/line_cancel?pid={purchase.pk}",
            )
        return success(body, message="訂購成功", status_code=status.HTTP_201_CREATED)


class CustomerPurchasesView(APIView):
    permission_classes = [IsOwnLineIdOrAdmin]

    def get(self, request, line_id):
        customer = resolve_customer(line_id)
        qs = VirtualCardPurchase.objects.select_related("customer", "product").filter(
            customer=customer
        )
        return paginate(self, qs, VirtualCardPurchaseSerializer)


class VirtualCardLinePayConfirmView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        purchase = VirtualCardPurchase.objects.filter(pk=request.GET.get("pid")).first()
        if purchase is None:
            return redirect(f"{PURCHASE_RESULT_PATH}?error=not_found")
        back = f"{PURCHASE_RESULT_PATH}?purchase={purchase.pk}"
        if purchase.payment_status == "paid":
            return redirect(back)
        transaction_id = request.GET.get("transactionId")
        if not transaction_id or purchase.payment_status != "pending":
            return redirect(f"{back}&error=invalid_state")
        purchase = cards.confirm_line_pay(purchase, transaction_id)
        if purchase.payment_status != "paid":
            return redirect(f"{back}&error=payment_failed")
        return redirect(back)


class VirtualCardLinePayCancelView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        purchase = VirtualCardPurchase.objects.filter(pk=request.GET.get("pid")).first()
        if purchase is None:
            return redirect(f"{PURCHASE_RESULT_PATH}?error=not_found")
        if purchase.payment_status == "pending":
            cards.update_payment_status(purchase, "cancelled")
        return redirect(f"{PURCHASE_RESULT_PATH}?purchase={purchase.pk}&error=cancelled")
