import base64
import io
import logging

import qrcode
from django.conf import settings
from django.db.models import Count
from django.http import HttpResponse
from django.shortcuts import get_object_or_404
from rest_framework import permissions, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from bakery.api import EnvelopeModelViewSet, paginate, success
from bakery.exceptions import CommissionNotActivated, ResourceInUse
from bakery.models import Customer, Order
from bakery.serializers import OrderSerializer
from bakery.services import local_now
from bakery.views_auth import session_login, user_payload
from points import reports

from . import contracts, services
from .models import CommissionPlan, CommissionRecord, Salesperson
from .serializers import (
    CalculateSerializer,
    CommissionPlanSerializer,
    CommissionRecordSerializer,
    ContractSignSerializer,
    PlanAssignmentSerializer,
    RecordStatusSerializer,
    SalespersonSerializer,
    StoreInfoRequestSerializer,
)

logger = logging.getLogger(__name__)

# 業務推薦連結，顧客從這裡進入商店會綁定業務
REFERRAL_PATH = "/client/bakery"


class IsSalesperson(permissions.BasePermission):
    message = "僅限業務人員使用"

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and hasattr(user, "salesperson_profile"))


def active_salesperson(request):
    """分潤相關端點：合約未生效時回 403"""
    salesperson = request.user.salesperson_profile
    if not salesperson.has_active_contract():
        raise CommissionNotActivated()
    return salesperson


# ==========================================
# 1. 後台：分潤方案
# ==========================================
class CommissionPlanViewSet(EnvelopeModelViewSet):
    serializer_class = CommissionPlanSerializer
    permission_classes = [permissions.IsAdminUser]
    deleted_message = "分潤方案已刪除"

    def get_queryset(self):
        qs = CommissionPlan.objects.annotate(salesperson_total=Count("salespersons"))
        plan_status = self.request.query_params.get("status")
        if plan_status:
            qs = qs.filter(status=plan_status)
        return qs

    def perform_destroy(self, instance):
        if instance.salespersons.exists():
            raise ResourceInUse("此方案仍有業務使用中，無法刪除")
        logger.info("Commission plan #%s deleted", instance.pk)
        instance.delete()

    @action(detail=False, methods=["get"], url_path="list")
    def active_list(self, request):
        """下拉選單用：只列出啟用中的方案"""
        qs = self.get_queryset().filter(status="active")
        return success(self.get_serializer(qs, many=True).data)


# ==========================================
# 2. 後台：業務與方案指派
# ==========================================
class SalespersonListView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        qs = Salesperson.objects.select_related("user", "commission_plan")
        params = request.query_params
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("plan_id"):
            qs = qs.filter(commission_plan_id=params["plan_id"])
        return paginate(self, qs.order_by("company_name", "name"), SalespersonSerializer)


class PlanAssignmentView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def put(self, request, pk):
        salesperson = get_object_or_404(Salesperson, pk=pk)
        serializer = PlanAssignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        salesperson.commission_plan_id = data["commission_plan_id"]
        fields = ["commission_plan"]
        for key in ("contract_start_date", "contract_end_date"):
            if key in data:
                setattr(salesperson, key, data[key])
                fields.append(key)
        salesperson.save(update_fields=fields)
        logger.info(
            "Salesperson #%s assigned plan %s", salesperson.pk, data["commission_plan_id"]
        )
        message = "已設定分潤方案" if data["commission_plan_id"] else "已清除分潤方案"
        return success(SalespersonSerializer(salesperson).data, message=message)


# ==========================================
# 3. 後台：分潤計算與紀錄
# ==========================================
class CommissionCalculateView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def post(self, request):
        serializer = CalculateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        salesperson = None
        if data.get("salesperson_id"):
            salesperson = get_object_or_404(Salesperson, pk=data["salesperson_id"])
        result = services.calculate_commissions(
            data.get("start_date"), data.get("end_date"), salesperson
        )
        return success(result, message=f"已建立 {result['created_count']} 筆分潤紀錄")


class CommissionHistoryView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        qs = services.filter_records(
            CommissionRecord.objects.select_related("order", "salesperson"),
            request.query_params,
        )
        return paginate(self, qs.order_by("-created_at", "-id"), CommissionRecordSerializer)


class RecordStatusView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def put(self, request, pk):
        record = get_object_or_404(CommissionRecord, pk=pk)
        serializer = RecordStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        record = services.update_record_status(record, **serializer.validated_data)
        return success(CommissionRecordSerializer(record).data, message="分潤狀態已更新")


class CommissionStatsView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        return success(services.stats(request.query_params.get("period", "1month")))


class CommissionExportView(APIView):
    permission_classes = [permissions.IsAdminUser]

    def get(self, request):
        qs = services.filter_records(CommissionRecord.objects.all(), request.query_params)
        headers = dict(services.EXPORT_COLUMNS)
        rows = [
            {headers[key]: row[key] for key, _ in services.EXPORT_COLUMNS}
            for row in services.export_rows(qs.order_by("created_at", "id"))
        ]
        response = HttpResponse(reports.to_csv(rows), content_type="text/csv; charset=utf-8")
        response["Content-Disposition"] = (
            f'attachment; filename="commissions_{local_now():%Y%m%d%H%M%S}.csv"'
        )
        return response


# ==========================================
# 4. 業務入口
# ==========================================
class SalespersonLoginView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        user = session_login(request, allowed_roles=["salesperson"])
        if user is None:
            return Response(
                {"success": False, "message": "帳號或密碼錯誤"},
                status=status.HTTP_401_UNAUTHORIZED,
            )
        data = user_payload(user)
        data["salesperson"] = SalespersonSerializer(user.salesperson_profile).data
        return success(data, message="登入成功")


class SalespersonProfileView(APIView):
    permission_classes = [IsSalesperson]

    def get(self, request):
        return success(SalespersonSerializer(request.user.salesperson_profile).data)


class SalespersonDashboardView(APIView):
    permission_classes = [IsSalesperson]

    def get(self, request):
        return success(services.dashboard(request.user.salesperson_profile))


class SalespersonOrdersView(APIView):
    permission_classes = [IsSalesperson]

    def get(self, request):
        qs = Order.objects.filter(salesperson=request.user.salesperson_profile).prefetch_related(
            "items"
        )
        order_status = request.query_params.get("status")
        if order_status:
            qs = qs.filter(status=order_status.lower())
        return paginate(self, qs.order_by("-created_at"), OrderSerializer)


class SalespersonCommissionsView(APIView):
    permission_classes = [IsSalesperson]

    def get(self, request):
        salesperson = active_salesperson(request)
        qs = services.filter_records(
            CommissionRecord.objects.filter(salesperson=salesperson).select_related(
                "order", "salesperson"
            ),
            request.query_params,
        )
        return paginate(self, qs.order_by("-created_at", "-id"), CommissionRecordSerializer)


class SalespersonCommissionRulesView(APIView):
    permission_classes = [IsSalesperson]

    def get(self, request):
        salesperson = active_salesperson(request)
        return success(
            {
                "plan": CommissionPlanSerializer(salesperson.commission_plan).data,
                "contract": {
                    "start_date": salesperson.contract_start_date,
                    "end_date": salesperson.contract_end_date,
                    "status": salesperson.status,
                },
            }
        )


def referral_link(salesperson):
    return f"{settings.PUBLIC_BASE_URL}{REFERRAL_PATH}?ref={salesperson.pk}"


class SalespersonQRCodeView(APIView):
    """?format=png 直接回圖片，預設回 data URL"""

    permission_classes = [IsSalesperson]

    def get(self, request):
        link = referral_link(request.user.salesperson_profile)
        buffer = io.BytesIO()
        qrcode.make(link).save(buffer, format="PNG")
        png = buffer.getvalue()
        if request.query_params.get("format") == "png":
            return HttpResponse(png, content_type="image/png")
        encoded = base64.b64encode(png).decode("ascii")
        return success({"link": link, "qrcode": f"data:image/png;base64,{encoded}"})


# ==========================================
# 5. 加盟合約簽署
# ==========================================
class StoreInfoView(APIView):
    authentication_classes = []
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = StoreInfoRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        owner = Customer.objects.filter(
            line_id=serializer.validated_data["userId"], role="owner"
        ).first()
        if owner is None:
            return Response({"isValid": False, "data": None})
        return Response(
            {
                "isValid": True,
                "data": {
                    "companyName": owner.company_name,
                    "storeName": owner.store_name,
                    "address": owner.address,
                    "taxId": owner.tax_id,
                },
            }
        )


class ContractSignView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = ContractSignSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        customer = None
        if request.session.get("customer_id"):
            customer = Customer.objects.filter(pk=request.session["customer_id"]).first()
        elif data.get("line_user_id"):
            customer = Customer.objects.filter(line_id=data["line_user_id"]).first()

        application, image_url, signer_notified = contracts.sign_contract(data, customer=customer)
        return success(
            {
                "id": application.pk,
                "imageUrl": image_url,
                "status": application.status,
                "signerNotified": signer_notified,
            },
            message="合約簽署完成",
            status_code=status.HTTP_201_CREATED,
        )
