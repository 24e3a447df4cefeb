import logging

from django.conf import settings
from django.db import transaction
from django.db.models import Count, ProtectedError, Q, Sum
from django.http import HttpResponse
from django.shortcuts import get_object_or_404, redirect
from django.utils.dateparse import parse_date
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from . import status as order_status
from .api import EnvelopeModelViewSet, success
from .exceptions import BakeryError, InvalidStatusTransition, OrderNotEditable, ResourceInUse
from .exports import build_orders_workbook
from .line_messaging import LineMessenger
from .linepay import LinePayHandler, is_success, payment_url
from .models import Category, Customer, Order, OrderItem, Product
from .permissions import HasNotifyApiKey, IsLineCustomer
from .serializers import (
    CategorySerializer,
    CategorySortSerializer,
    CustomerDetailSerializer,
    CustomerSerializer,
    OrderCreateSerializer,
    OrderItemInputSerializer,
    OrderItemSerializer,
    OrderSerializer,
    OrderStatusSerializer,
    OrderUpdateSerializer,
    ProductSerializer,
)
from .uploads import absolute_url, handle_uploaded_file

logger = logging.getLogger(__name__)

# LINE Pay 付款完成/取消後導回的前台頁面
ORDER_RESULT_PATH = "/client/bakery/orders"


def _is_admin(request):
    return bool(request.user and request.user.is_staff)


def _session_customer(request):
    customer_id = request.session.get("customer_id")
    if not customer_id:
        return None
    return Customer.objects.filter(pk=customer_id).first()


# ==========================================
# 1. 分類與商品
# ==========================================
class CategoryViewSet(EnvelopeModelViewSet):
    serializer_class = CategorySerializer
    paginate_list = False
    deleted_message = "分類已刪除"

    def get_queryset(self):
        qs = Category.objects.all()
        if not _is_admin(self.request):
            qs = qs.filter(is_active=True)
        return qs

    def get_permissions(self):
        if self.action in ["list", "retrieve"]:
            return [permissions.AllowAny()]
        return [permissions.IsAdminUser()]

    @action(detail=False, methods=["post"])
    def sort(self, request):
        """依傳入的 id 順序重寫 sort_order (0..n-1)"""
        serializer = CategorySortSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        ids = serializer.validated_data["ids"]
        with transaction.atomic():
            found = set(Category.objects.filter(id__in=ids).values_list("id", flat=True))
            missing = [pk for pk in ids if pk not in found]
            if missing:
                raise BakeryError(f"找不到分類: {missing}")
            for index, pk in enumerate(ids):
                Category.objects.filter(pk=pk).update(sort_order=index)
        logger.info("Categories re-sorted: %s", ids)
        return success(CategorySerializer(Category.objects.all(), many=True).data)


class ProductViewSet(EnvelopeModelViewSet):
    serializer_class = ProductSerializer
    deleted_message = "商品已刪除"

    def get_queryset(self):
        qs = Product.objects.select_related("category")
        if not _is_admin(self.request):
            qs = qs.filter(status="active")
        category = self.request.query_params.get("category")
        if category:
            qs = qs.filter(category__slug=category)
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(description__icontains=search))
        return qs

    def get_permissions(self):
        if self.action in ["list", "retrieve"]:
            return [permissions.AllowAny()]
        return [permissions.IsAdminUser()]

    def perform_destroy(self, instance):
        try:
            instance.delete()
        except ProtectedError:
            raise ResourceInUse("商品已有訂單紀錄，請改為下架")


# ==========================================
# 2. 顧客
# ==========================================
class CustomerViewSet(EnvelopeModelViewSet):
    permission_classes = [permissions.IsAdminUser]
    deleted_message = "顧客已刪除"

    def get_serializer_class(self):
        if self.action == "retrieve":
            return CustomerDetailSerializer
        return CustomerSerializer

    def get_queryset(self):
        qs = Customer.objects.select_related("salesperson", "point_account")
        search = self.request.query_params.get("search")
        if search:
            qs = qs.filter(
                Q(name__icontains=search)
                | Q(display_name__icontains=search)
                | Q(phone__icontains=search)
                | Q(email__icontains=search)
                | Q(store_name__icontains=search)
                | Q(company_name__icontains=search)
            )
        role = self.request.query_params.get("role")
        if role:
            qs = qs.filter(role=role)
        return qs

    def perform_destroy(self, instance):
        if instance.orders.exists() or instance.card_purchases.exists():
            raise ResourceInUse("顧客已有消費紀錄，無法刪除")
        instance.delete()


# ==========================================
# 3. 訂單
# ==========================================
class OrderViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    下單、後台管理、LINE Pay 回調與統計

    後台取消 LINE Pay 已付款訂單時會自動退款。
    """

    serializer_class = OrderSerializer

    def get_permissions(self):
        # 前台允許：下單、LINE Pay 回調
        if self.action in ["create", "line_confirm", "line_cancel"]:
            return [permissions.AllowAny()]
        # LINE 會員：查單、取消自己的待處理訂單
        if self.action in ["query", "cancel_by_number"]:
            return [IsLineCustomer()]
        return [permissions.IsAdminUser()]

    def get_queryset(self):
        qs = Order.objects.select_related("salesperson").prefetch_related("items")
        if self.action != "list" and self.action != "export":
            return qs
        return self.filter_orders(qs, self.request.query_params)

    @staticmethod
    def filter_orders(qs, params):
        search = params.get("search")
        if search:
            qs = qs.filter(
                Q(order_number__icontains=search)
                | Q(customer_name__icontains=search)
                | Q(customer_phone__icontains=search)
                | Q(customer_email__icontains=search)
            )
        for field in ["order_number", "customer_name", "customer_phone", "customer_email"]:
            value = params.get(field)
            if value:
                qs = qs.filter(**{f"{field}__icontains": value})

        value = params.get("status")
        if value and value != "all":
            qs = qs.filter(status=order_status.normalize_status(value))

        company = params.get("companyName")
        if company:
            qs = qs.filter(salesperson__company_name__icontains=company)

        preset = params.get("date_range")
        if preset:
            lower, upper = services.date_range_for(
                preset,
                parse_date(params.get("startDate") or ""),
                parse_date(params.get("endDate") or ""),
            )
            if lower:
                qs = qs.filter(created_at__gte=lower)
            if upper:
                qs = qs.filter(created_at__lt=upper)
        return qs

    def retrieve(self, request, pk=None):
        return success(OrderSerializer(self.get_object()).data)

    def create(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        items = data.pop("items")
        points_to_use = data.pop("points_to_use", 0)
        customer = _session_customer(request)

        order = services.create_order(data, items, customer=customer, points_to_use=points_to_use)
        body = OrderSerializer(order).data

        # 付款分流
        if order.payment_method == "line_pay":
            base = settings.PUBLIC_BASE_URL
            result = LinePayHandler().request_order_payment(
                order,
                f"{base}/api/orders/line_confirm/?oid={order.id}",
                f"{base}/api/orders/line_cancel/?oid={order.id}",
            )
            if not is_success(result):
                logger.error("LINE Pay request failed for %s: %s", order.order_number, result)
                services.cancel_order(order, actor="linepay", refund=False)
                return Response(
                    {
                        "success": False,
                        "message": f"LINE Pay 請求失敗 (Code: {result.get('returnCode') if result else 'Unknown'})",
                    },
                    status=status.HTTP_502_BAD_GATEWAY,
                )
            body["payment_url"] = payment_url(result)

        return success(body, message="訂單建立成功", status_code=status.HTTP_201_CREATED)

    def update(self, request, pk=None, partial=False):
        order = self.get_object()
        if not order_status.can_edit(order.status):
            raise OrderNotEditable()
        serializer = OrderUpdateSerializer(order, data=request.data, partial=partial)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            order = serializer.save()
            order.recalculate_totals()
            order.save()
        return success(OrderSerializer(order).data)

    def partial_update(self, request, pk=None):
        return self.update(request, pk, partial=True)

    @action(detail=True, methods=["put", "patch"], url_path="status")
    def set_status(self, request, pk=None):
        serializer = OrderStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = services.change_status(
            self.get_object(), serializer.validated_data["status"], actor=request.user.username
        )
        return success(OrderSerializer(order).data, message="訂單狀態已更新")

    # 後台取消 (LINE Pay 已付款會自動退款)
    @action(detail=True, methods=["post"])
    def cancel(self, request, pk=None):
        order = self.get_object()
        if order.status == "cancelled":
            return success(OrderSerializer(order).data, message="訂單已取消")
        if not order_status.can_cancel(order.status):
            raise InvalidStatusTransition("此訂單狀態無法取消")
        order = services.cancel_order(order, actor=request.user.username)
        return success(OrderSerializer(order).data, message="訂單已取消")

    @action(detail=True, methods=["post"], url_path="items")
    def add_item(self, request, pk=None):
        order = self.get_object()
        serializer = OrderItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if "product_id" not in data:
            raise BakeryError("缺少商品")
        product = get_object_or_404(Product, pk=data["product_id"])
        item = services.add_item(order, product, data.get("quantity", 1), data.get("price"))
        return success(
            {"item": OrderItemSerializer(item).data, "order": OrderSerializer(item.order).data},
            status_code=status.HTTP_201_CREATED,
        )

    @action(detail=True, methods=["put", "patch", "delete"], url_path=r"items/(?P<item_id>\d+)")
    def item_detail(self, request, pk=None, item_id=None):
        order = self.get_object()
        item = get_object_or_404(OrderItem, pk=item_id, order=order)
        if request.method == "DELETE":
            order = services.remove_item(item)
            return success({"order": OrderSerializer(order).data}, message="品項已刪除")

        serializer = OrderItemInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = services.update_item(
            item,
            quantity=serializer.validated_data.get("quantity"),
            price=serializer.validated_data.get("price"),
        )
        return success(
            {"item": OrderItemSerializer(item).data, "order": OrderSerializer(item.order).data}
        )

    @action(detail=False, methods=["get"])
    def query(self, request):
        """LINE 會員查詢自己的訂單 (依手機或訂單編號)"""
        customer = get_object_or_404(Customer, pk=request.session["customer_id"])
        phone = request.query_params.get("phone")
        number = request.query_params.get("order_number")
        qs = Order.objects.prefetch_related("items").filter(customer=customer)
        if phone:
            qs = qs.filter(customer_phone=phone)
        if number:
            qs = qs.filter(order_number=number)
        return success(OrderSerializer(qs[:50], many=True).data)

    @action(detail=False, methods=["post"], url_path="cancel-by-number")
    def cancel_by_number(self, request):
        customer = get_object_or_404(Customer, pk=request.session["customer_id"])
        number = request.data.get("order_number")
        order = get_object_or_404(Order, order_number=number, customer=customer)
        if order.status != "pending":
            raise InvalidStatusTransition("訂單已開始處理，無法取消，請聯繫客服")
        order = services.cancel_order(order, actor="customer")
        return success(OrderSerializer(order).data, message="訂單已取消")

    @action(detail=False, methods=["get"])
    def export(self, request):
        qs = self.get_queryset().order_by("created_at", "id")
        content = build_orders_workbook(qs)
        stamp = services.local_now().strftime("%Y%m%d%H%M")
        response = HttpResponse(
            content,
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        response["Content-Disposition"] = f'attachment; filename="orders_{stamp}.xlsx"'
        return response

    @action(detail=False, methods=["get"])
    def dashboard_stats(self, request):
        now_tw = services.local_now()
        today_start, today_end = services.date_range_for("today")
        month_start, month_end = services.date_range_for("this_month")

        def calculate_metrics(queryset):
            done = queryset.filter(status="delivered")
            agg = done.aggregate(revenue=Sum("total_amount"), orders=Count("id"))
            return {"revenue": agg["revenue"] or 0, "orders": agg["orders"] or 0}

        base_qs = Order.objects.all()
        pending = base_qs.filter(status__in=["pending", "processing"]).count()
        return success(
            {
                "today": calculate_metrics(
                    base_qs.filter(created_at__gte=today_start, created_at__lt=today_end)
                ),
                "monthly": calculate_metrics(
                    base_qs.filter(created_at__gte=month_start, created_at__lt=month_end)
                ),
                "pending_orders": pending,
                "update_time": now_tw.strftime("%Y-%m-%d %H:%M:%S"),
            }
        )

    # LINE Pay Confirm：付款成功回來會帶 transactionId
    @action(detail=False, methods=["get"])
    def line_confirm(self, request):
        transaction_id = request.GET.get("transactionId")
        order = Order.objects.filter(id=request.GET.get("oid")).first()
        if order is None:
            return redirect(f"{ORDER_RESULT_PATH}?error=not_found")
        back = f"{ORDER_RESULT_PATH}?order_number={order.order_number}"

        # 已確認就直接回客人頁
        if order.payment_status == "paid":
            return redirect(back)
        if not transaction_id:
            return redirect(f"{back}&error=missing_transaction")

        result = LinePayHandler().confirm_payment(transaction_id, order.total_amount)
        if is_success(result):
            services.mark_paid(order, transaction_id)
            return redirect(back)

        # confirm 失敗：回補庫存與點數、取消訂單
        logger.warning("LINE Pay confirm failed for %s: %s", order.order_number, result)
        if order.status == "pending":
            services.cancel_order(order, actor="linepay", refund=False)
            Order.objects.filter(pk=order.pk).update(payment_status="failed")
        return redirect(f"{back}&error=payment_failed")

    # LINE Pay Cancel：使用者在 LINE Pay 頁面取消付款
    @action(detail=False, methods=["get"])
    def line_cancel(self, request):
        order = Order.objects.filter(id=request.GET.get("oid")).first()
        if order is None:
            return redirect(f"{ORDER_RESULT_PATH}?error=not_found")
        back = f"{ORDER_RESULT_PATH}?order_number={order.order_number}"

        # 已付款不動 (取消應走退款流程)
        if order.payment_status != "paid" and order.status == "pending":
            services.cancel_order(order, actor="linepay", refund=False)
        return redirect(f"{back}&error=cancelled")


# ==========================================
# 4. 圖片上傳與 LINE 通知
# ==========================================
class UploadView(APIView):
    permission_classes = [permissions.IsAdminUser | IsLineCustomer]

    def post(self, request):
        file_path, url = handle_uploaded_file(
            request.FILES.get("file"), request.data.get("destination")
        )
        return Response(
            {"success": True, "filePath": url, "url": absolute_url(url), "name": file_path}
        )


class ContractNotificationView(APIView):
    """合約簽署後通知管理員 (以 x-api-key 驗證)"""

    authentication_classes = []
    permission_classes = [HasNotifyApiKey]

    def post(self, request):
        from commissions.contracts import admin_notification_text

        store_name = request.data.get("storeName")
        representative_name = request.data.get("representativeName")
        if not store_name or not representative_name:
            raise BakeryError("缺少門市名稱或負責人姓名")
        result = LineMessenger().notify_admins(
            admin_notification_text(
                store_name, representative_name, request.data.get("contractType") or "合作協議"
            )
        )
        if not result["success"]:
            return Response(
                {"success": False, "message": "通知發送失敗", "data": result},
                status=status.HTTP_502_BAD_GATEWAY,
            )
        return success(result, message="通知已發送")
