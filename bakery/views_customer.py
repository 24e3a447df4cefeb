"""LINE 會員 (LIFF) 登入與個人資料"""
import logging

from django.db import transaction
from rest_framework import permissions, status
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from .api import success
from .exceptions import ResourceInUse
from .liff import LiffAuthError, verify_id_token
from .models import Customer
from .permissions import IsLineCustomer
from .serializers import CustomerProfileSerializer, CustomerSerializer

logger = logging.getLogger(__name__)


def current_customer(request):
    customer = Customer.objects.filter(pk=request.session.get("customer_id")).first()
    if customer is None:
        raise NotFound("找不到會員資料")
    return customer


def _apply_referral(customer, ref):
    """首次透過業務 QR Code 進站時綁定負責業務"""
    from commissions.models import Salesperson

    if customer.salesperson_id or not ref:
        return
    salesperson = Salesperson.objects.filter(pk=ref, status="active").first()
    if salesperson:
        customer.salesperson = salesperson
        customer.save(update_fields=["salesperson", "updated_at"])


class LiffLoginView(APIView):
    permission_classes = [permissions.AllowAny]

    def post(self, request):
        try:
            profile = verify_id_token(request.data.get("idToken"))
        except LiffAuthError as exc:
            return Response(
                {"success": False, "message": str(exc)}, status=status.HTTP_401_UNAUTHORIZED
            )

        customer, created = Customer.objects.get_or_create(
            line_id=profile["userId"],
            defaults={"display_name": profile["displayName"], "email": profile["email"] or ""},
        )
        if not created and profile["displayName"] and customer.display_name != profile["displayName"]:
            customer.display_name = profile["displayName"]
            customer.save(update_fields=["display_name", "updated_at"])
        _apply_referral(customer, request.data.get("ref"))

        request.session["customer_id"] = customer.pk
        request.session["line_user_id"] = customer.line_id
        logger.info("LINE customer %s logged in (new=%s)", customer.pk, created)

        data = CustomerSerializer(customer).data
        data["is_new"] = created
        data["picture_url"] = profile["pictureUrl"]
        data["profile_completed"] = bool(customer.name and customer.phone)
        return success(data)


class SaveUserDataView(APIView):
    permission_classes = [IsLineCustomer]

    def post(self, request):
        customer = current_customer(request)
        serializer = CustomerProfileSerializer(customer, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return success(CustomerSerializer(customer).data, message="資料已儲存")


class LineCustomerView(APIView):
    permission_classes = [IsLineCustomer]

    def get(self, request):
        return success(CustomerSerializer(current_customer(request)).data)


class ActivateView(APIView):
    """以手機號碼把 LINE 帳號綁到後台預先建立的顧客資料 (加盟門市)"""

    permission_classes = [IsLineCustomer]

    def post(self, request):
        phone = (request.data.get("phone") or "").strip()
        current = current_customer(request)
        target = (
            Customer.objects.filter(phone=phone, line_id__isnull=True)
            .exclude(pk=current.pk)
            .first()
            if phone
            else None
        )
        if target is None:
            raise NotFound("查無此手機號碼的門市資料")

        account = getattr(current, "point_account", None)
        if (
            current.orders.exists()
            or current.card_purchases.exists()
            or (account and account.available)
        ):
            raise ResourceInUse("此 LINE 帳號已有消費紀錄，請聯繫客服協助綁定")

        with transaction.atomic():
            line_id, display_name = current.line_id, current.display_name
            current.delete()
            target.line_id = line_id
            target.display_name = target.display_name or display_name
            target.save()

        request.session["customer_id"] = target.pk
        logger.info("LINE account %s linked to customer %s", line_id, target.pk)
        return success(CustomerSerializer(target).data, message="帳號綁定成功")
