"""
點數帳本

所有異動都在交易內鎖定帳戶列後進行，並記錄異動前後餘額。
入帳批次以 ``remaining`` 追蹤尚未使用的點數，扣點時依到期日先到先扣，
因此 ``available`` 永遠等於未過期入帳批次的 ``remaining`` 總和。
"""
import logging
from datetime import timedelta
from decimal import ROUND_FLOOR, Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from bakery.exceptions import BakeryError, FeatureDisabled, InsufficientPoints

from . import conf
from .models import PointAccount, PointTransaction

logger = logging.getLogger(__name__)

CREDIT_TYPES_COUNTED_AS_EARNED = ("earn_purchase", "virtual_card_redeem", "admin_adjust")


def get_account(customer, lock=False):
    account, _ = PointAccount.objects.get_or_create(customer=customer)
    if lock:
        account = PointAccount.objects.select_for_update().get(pk=account.pk)
    return account


def balance_for(customer):
    account = PointAccount.objects.filter(customer=customer).first()
    return account.available if account else 0


def _expiry(now):
    days = conf.get_int("points_expire_days")
    if days <= 0:
        return None
    return now + timedelta(days=days)


def credit(
    customer,
    points,
    transaction_type,
    description="",
    created_by="system",
    order=None,
    purchase=None,
    reference_data=None,
):
    if points <= 0:
        raise BakeryError("點數必須大於 0")
    now = timezone.now()
    with transaction.atomic():
        account = get_account(customer, lock=True)
        before = account.available
        account.available = before + points
        if transaction_type in CREDIT_TYPES_COUNTED_AS_EARNED:
            account.total_earned += points
            account.last_earned_at = now
        elif transaction_type == "refund":
            account.total_used = max(account.total_used - points, 0)
        account.save()
        tx = PointTransaction.objects.create(
            account=account,
            order=order,
            virtual_card_purchase=purchase,
            transaction_type=transaction_type,
            points=points,
            points_before=before,
            points_after=account.available,
            remaining=points,
            expires_at=_expiry(now),
            description=description,
            created_by=created_by,
            reference_data=reference_data,
            created_at=now,
        )
    logger.info(
        "Credited %s points (%s) to customer %s: %s -> %s",
        points,
        transaction_type,
        customer.pk,
        before,
        account.available,
    )
    return tx


def _consume_credits(account, points):
    """依到期日 (永不過期排最後) 扣除入帳批次的 remaining"""
    left = points
    batches = (
        PointTransaction.objects.select_for_update()
        .filter(account=account, status="completed", remaining__gt=0)
        .order_by(F("expires_at").asc(nulls_last=True), "created_at", "id")
    )
    for batch in batches:
        if left <= 0:
            break
        take = min(batch.remaining, left)
        batch.remaining -= take
        batch.save(update_fields=["remaining"])
        left -= take
    return points - left


def debit(
    customer,
    points,
    transaction_type,
    description="",
    created_by="system",
    order=None,
    reference_data=None,
):
    if points <= 0:
        raise BakeryError("點數必須大於 0")
    now = timezone.now()
    with transaction.atomic():
        account = get_account(customer, lock=True)
        before = account.available
        if points > before:
            raise InsufficientPoints(f"點數餘額不足 (可用 {before} 點)")
        _consume_credits(account, points)
        account.available = before - points
        account.total_used += points
        account.last_used_at = now
        account.save()
        tx = PointTransaction.objects.create(
            account=account,
            order=order,
            transaction_type=transaction_type,
            points=-points,
            points_before=before,
            points_after=account.available,
            description=description,
            created_by=created_by,
            reference_data=reference_data,
            created_at=now,
        )
    logger.info(
        "Debited %s points (%s) from customer %s: %s -> %s",
        points,
        transaction_type,
        customer.pk,
        before,
        account.available,
    )
    return tx


def points_for_amount(amount):
    """消費金額換算回饋點數 (無條件捨去)，未達門檻回 0，超過上限截斷"""
    amount = Decimal(amount)
    if amount < conf.get_number("min_order_amount_for_points"):
        return 0
    rate = conf.get_number("earn_rate_percentage")
    points = int((amount * rate / Decimal(100)).to_integral_value(rounding=ROUND_FLOOR))
    cap = conf.get_int("max_points_per_order")
    if cap > 0:
        points = min(points, cap)
    return max(points, 0)


def earn_for_order(order):
    if order.points_awarded or order.customer_id is None:
        return None
    if not (conf.system_enabled() and conf.get_bool("purchase_reward_enabled")):
        return None
    points = points_for_amount(order.total_amount)
    if points <= 0:
        return None
    tx = credit(
        order.customer,
        points,
        "earn_purchase",
        description=f"訂單 {order.order_number} 購物回饋",
        order=order,
        reference_data={"order_amount": order.total_amount},
    )
    order.points_awarded = True
    order.save(update_fields=["points_awarded"])
    return tx


def max_discount_for(subtotal):
    pct = conf.get_number("max_points_usage_percentage")
    return int((Decimal(subtotal) * pct / Decimal(100)).to_integral_value(rounding=ROUND_FLOOR))


def discount_for_points(points):
    rate = conf.get_number("points_to_currency_rate")
    return int((Decimal(points) * rate).to_integral_value(rounding=ROUND_FLOOR))


def redeem_for_order(order, points):
    """以點數折抵訂單 (需在呼叫端的交易內)，回傳扣點紀錄並更新訂單折抵欄位"""
    if not (conf.system_enabled() and conf.get_bool("point_usage_enabled")):
        raise FeatureDisabled("目前無法使用點數折抵")
    min_use = conf.get_int("POINTS_MIN_USE")
    if points < max(min_use, 1):
        raise BakeryError(f"最低使用 {min_use} 點")
    discount = discount_for_points(points)
    limit = max_discount_for(order.subtotal)
    if discount > limit:
        raise BakeryError(f"點數折抵上限為 {limit} 元")
    tx = debit(
        order.customer,
        points,
        "use_payment",
        description=f"訂單 {order.order_number} 點數折抵",
        order=order,
        reference_data={"discount": discount},
    )
    order.points_used = points
    order.points_discount = discount
    return tx


def refund_for_order(order):
    """訂單取消時退還折抵點數 (同一訂單只退一次)"""
    if not order.points_used or order.customer_id is None:
        return None
    if PointTransaction.objects.filter(order=order, transaction_type="refund").exists():
        return None
    return credit(
        order.customer,
        order.points_used,
        "refund",
        description=f"訂單 {order.order_number} 取消退還點數",
        order=order,
    )


def admin_adjust(customer, points, description="", admin_note="", created_by="admin"):
    """管理員手動加點 (正數) 或扣點 (負數)"""
    reference = {"admin_note": admin_note} if admin_note else None
    if points > 0:
        return credit(
            customer,
            points,
            "admin_adjust",
            description=description or "管理員手動加點",
            created_by=created_by,
            reference_data=reference,
        )
    return debit(
        customer,
        -points,
        "admin_adjust",
        description=description or "管理員手動扣點",
        created_by=created_by,
        reference_data=reference,
    )


def expire_points(now=None):
    """將已過期入帳批次的剩餘點數轉為過期，回傳過期的總點數"""
    now = now or timezone.now()
    total = 0
    batch_ids = list(
        PointTransaction.objects.filter(
            status="completed", remaining__gt=0, expires_at__lte=now
        ).values_list("id", flat=True)
    )
    for batch_id in batch_ids:
        with transaction.atomic():
            batch = PointTransaction.objects.select_for_update().get(pk=batch_id)
            if batch.remaining <= 0:
                continue
            account = PointAccount.objects.select_for_update().get(pk=batch.account_id)
            amount = min(batch.remaining, account.available)
            before = account.available
            account.available = before - amount
            account.expired += batch.remaining
            account.save()
            PointTransaction.objects.create(
                account=account,
                transaction_type="expire",
                points=-amount,
                points_before=before,
                points_after=account.available,
                description="點數到期",
                reference_data={"batch_id": batch.pk, "expired_at": now.isoformat()},
                created_at=now,
            )
            batch.remaining = 0
            batch.save(update_fields=["remaining"])
            total += amount
    if total:
        logger.info("Expired %s points across %s batches", total, len(batch_ids))
    return total
