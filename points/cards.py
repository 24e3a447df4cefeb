import logging

from django.db import transaction
from django.db.models import Count, Sum

from bakery.exceptions import BakeryError, FeatureDisabled, PaymentError
from bakery.linepay import LinePayHandler, is_success, payment_url

from . import conf, services
from .models import PointTransaction, VirtualCardProduct, VirtualCardPurchase

logger = logging.getLogger(__name__)

PAYMENT_TRANSITIONS = {
    "pending": ("paid", "failed", "cancelled"),
    "paid": (),
    "failed": (),
    "cancelled": (),
}


def ensure_cards_enabled():
    if not (conf.system_enabled() and conf.get_bool("virtual_card_enabled")):
        raise FeatureDisabled("虛擬點數卡目前未開放購買")


def create_purchase(customer, product, payment_method, ip_address=None, user_agent=""):
    ensure_cards_enabled()
    if product.status != "active":
        raise BakeryError("此點數卡已停售")
    minimum = conf.get_int("VIRTUAL_CARD_MIN_AMOUNT")
    if product.price < minimum:
        raise BakeryError(f"點數卡最低購買金額為 {minimum} 元")
    purchase = VirtualCardPurchase.objects.create(
        customer=customer,
        product=product,
        payment_method=payment_method,
        purchase_price=product.price,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255],
    )
    logger.info("Virtual card purchase #%s created for customer %s", purchase.pk, customer.pk)
    return purchase


def request_line_pay(purchase, confirm_url, cancel_url):
    packages = [
        {
            "id": f"CARD_{purchase.pk}",
            "amount": purchase.purchase_price,
            "products": [
                {
                    "name": purchase.product.name,
                    "quantity": 1,
                    "price": purchase.purchase_price,
                }
            ],
        }
    ]
    result = LinePayHandler().request_payment(
        f"CARD_{purchase.pk}_{int(purchase.created_at.timestamp())}",
        purchase.purchase_price,
        packages,
        confirm_url,
        cancel_url,
    )
    if not is_success(result):
        update_payment_status(purchase, "failed", details=result)
        raise PaymentError(
            f"LINE Pay 請求失敗 (Code: {result.get('returnCode') if result else 'Unknown'})"
        )
    return payment_url(result)


def confirm_line_pay(purchase, transaction_id):
    result = LinePayHandler().confirm_payment(transaction_id, purchase.purchase_price)
    if is_success(result):
        return update_payment_status(
            purchase, "paid", transaction_id=transaction_id, details=result
        )
    logger.warning("LINE Pay confirm failed for card purchase #%s: %s", purchase.pk, result)
    return update_payment_status(purchase, "failed", details=result)


def update_payment_status(purchase, new_status, transaction_id=None, details=None, admin_note=""):
    """更新付款狀態；轉為已付款時儲值點數 (僅一次)"""
    with transaction.atomic():
        purchase = VirtualCardPurchase.objects.select_for_update().get(pk=purchase.pk)
        if new_status == purchase.payment_status:
            return purchase
        if new_status not in PAYMENT_TRANSITIONS.get(purchase.payment_status, ()):
            raise BakeryError(
                f"付款狀態無法從 {purchase.payment_status} 變更為 {new_status}"
            )
        purchase.payment_status = new_status
        if transaction_id:
            purchase.transaction_id = str(transaction_id)
        if details is not None:
            purchase.payment_details = details
        if admin_note:
            purchase.notes = f"{purchase.notes}\n{admin_note}".strip()

        if new_status == "paid":
            already = PointTransaction.objects.filter(
                virtual_card_purchase=purchase, transaction_type="virtual_card_redeem"
            ).exists()
            if not already and purchase.product.points_value > 0:
                services.credit(
                    purchase.customer,
                    purchase.product.points_value,
                    "virtual_card_redeem",
                    description=f"購買點數卡「{purchase.product.name}」",
                    purchase=purchase,
                )
                purchase.points_redeemed = purchase.product.points_value
        purchase.save()

    logger.info("Virtual card purchase #%s -> %s", purchase.pk, new_status)
    return purchase


def sales_stats():
    rows = (
        VirtualCardPurchase.objects.filter(payment_status="paid")
        .values("product__name")
        .annotate(
            purchase_count=Count("id"),
            total_revenue=Sum("purchase_price"),
            total_points=Sum("points_redeemed"),
        )
        .order_by("-total_revenue")
    )
    return [
        {
            "name": row["product__name"],
            "purchase_count": row["purchase_count"],
            "total_revenue": row["total_revenue"] or 0,
            "total_points": row["total_points"] or 0,
        }
        for row in rows
    ]


def active_products():
    return VirtualCardProduct.objects.filter(status="active")
