import logging
from datetime import datetime, time, timedelta

import pytz
from django.db import models, transaction
from django.utils import timezone

from . import status as order_status
from .exceptions import (
    BakeryError,
    InsufficientStock,
    OrderNotEditable,
    PaymentError,
    ProductNotFound,
)
from .linepay import LinePayHandler, is_success
from .models import Order, OrderItem, OrderSequence, Product

logger = logging.getLogger(__name__)

TAIPEI = pytz.timezone("Asia/Taipei")


def local_now():
    return timezone.now().astimezone(TAIPEI)


def next_order_number():
    """SH + 台灣日期 + 4 碼當日流水號"""
    today = local_now().date()
    with transaction.atomic():
        seq, _ = OrderSequence.objects.select_for_update().get_or_create(day=today)
        seq.last_value = models.F("last_value") + 1
        seq.save(update_fields=["last_value"])
        seq.refresh_from_db()
    return f"SH{today:%Y%m%d}{seq.last_value:04d}"


def date_range_for(preset, start=None, end=None):
    """日期篩選預設值轉成 [start, end) 的 aware datetime"""
    now = local_now()
    today = TAIPEI.localize(datetime.combine(now.date(), time.min))
    if preset == "today":
        return today, today + timedelta(days=1)
    if preset == "yesterday":
        return today - timedelta(days=1), today
    if preset == "this_week":
        monday = today - timedelta(days=today.weekday())
        return monday, monday + timedelta(days=7)
    if preset == "this_month":
        first = today.replace(day=1)
        return first, _next_month(first)
    if preset == "last_month":
        first = today.replace(day=1)
        previous = TAIPEI.localize(
            datetime.combine((first - timedelta(days=1)).replace(day=1), time.min)
        )
        return previous, first
    if preset == "custom":
        lower = TAIPEI.localize(datetime.combine(start, time.min)) if start else None
        upper = (
            TAIPEI.localize(datetime.combine(end + timedelta(days=1), time.min))
            if end
            else None
        )
        return lower, upper
    return None, None


def _next_month(first):
    naive = datetime.combine(first.date(), time.min)
    if naive.month == 12:
        naive = naive.replace(year=naive.year + 1, month=1)
    else:
        naive = naive.replace(month=naive.month + 1)
    return TAIPEI.localize(naive)


def _reserve_stock(product_id, quantity):
    try:
        product = Product.objects.select_for_update().get(id=product_id)
    except Product.DoesNotExist:
        raise ProductNotFound(f"找不到商品資料 (#{product_id})")
    if product.status != "active":
        raise InsufficientStock(f"{product.name} 目前不供應")
    if product.stock < quantity:
        raise InsufficientStock(f"{product.name} 庫存不足 (剩餘 {product.stock})")
    product.stock -= quantity
    product.save(update_fields=["stock"])
    return product


def create_order(data, items, customer=None, points_to_use=0):
    """
    建立訂單：鎖定商品扣庫存、以目前售價建立品項、折抵點數。

    ``items`` 為 ``[{"product_id": 1, "quantity": 2}, ...]``；
    任一步驟失敗整筆交易回滾。
    """
    from points import services as points_services

    with transaction.atomic():
        order = Order(customer=customer, **data)
        if customer is not None:
            order.customer_name = order.customer_name or customer.name or customer.display_name
            order.customer_phone = order.customer_phone or customer.phone
            order.customer_email = order.customer_email or customer.email
            if order.salesperson_id is None and customer.salesperson_id:
                order.salesperson_id = customer.salesperson_id
        order.save()

        for entry in items:
            quantity = int(entry.get("quantity") or 0)
            if quantity <= 0:
                continue
            product = _reserve_stock(entry["product_id"], quantity)
            OrderItem.objects.create(
                order=order,
                product=product,
                product_name=product.name,
                price=product.effective_price,
                quantity=quantity,
            )

        order.recalculate_totals()
        if points_to_use:
            if customer is None:
                raise BakeryError("需登入 LINE 會員才能使用點數")
            points_services.redeem_for_order(order, int(points_to_use))
            order.recalculate_totals()
        order.save()

    logger.info("Order %s created (total=%s)", order.order_number, order.total_amount)
    return order


def change_status(order, new_status, actor="admin"):
    """依狀態轉換規則更新訂單；取消與送達會觸發庫存、點數、分潤的後續處理"""
    target = order_status.ensure_transition(order.status, new_status)
    if target == "cancelled":
        return cancel_order(order, actor=actor)

    from points import services as points_services

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        order_status.ensure_transition(order.status, target)
        order.status = target
        order.shipping_status = order_status.SHIPPING_STATUS_FOR[target]
        order.save()
        if target == "delivered" and order.payment_status == "paid":
            points_services.earn_for_order(order)

    logger.info("Order %s status -> %s by %s", order.order_number, target, actor)
    return order


def mark_paid(order, transaction_id=None):
    from points import services as points_services

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        order.payment_status = "paid"
        if transaction_id:
            order.linepay_transaction_id = str(transaction_id)
        order.save()
        if order.status == "delivered":
            points_services.earn_for_order(order)
    return order


def cancel_order(order, actor="admin", refund=True):
    """
    取消訂單：LINE Pay 已付款者先退款，再回補庫存、退還折抵點數、
    取消尚未支付的分潤紀錄。
    """
    from commissions import services as commission_services
    from points import services as points_services

    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        if order.status == "cancelled":
            return order
        order_status.ensure_transition(order.status, "cancelled")

        if (
            refund
            and order.payment_method == "line_pay"
            and order.payment_status == "paid"
            and not order.linepay_refunded
        ):
            if not order.linepay_transaction_id:
                raise PaymentError("缺少 LINE Pay 交易編號，無法退款")
            result = LinePayHandler().refund_payment(order.linepay_transaction_id)
            if not is_success(result):
                logger.error("LINE Pay refund failed for %s: %s", order.order_number, result)
                raise PaymentError("LINE Pay 退款失敗", linepay=result)
            order.linepay_refunded = True
            order.linepay_refund_transaction_id = str(
                result.get("info", {}).get("refundTransactionId", "")
            )
            order.payment_status = "refunded"

        order.restore_stock()
        points_services.refund_for_order(order)
        commission_services.cancel_for_order(order)

        order.status = "cancelled"
        order.shipping_status = "cancelled"
        order.save()

    logger.info("Order %s cancelled by %s", order.order_number, actor)
    return order


def _ensure_editable(order):
    if not order_status.can_edit(order.status):
        raise OrderNotEditable()


def add_item(order, product, quantity, price=None):
    with transaction.atomic():
        _ensure_editable(order)
        _reserve_stock(product.id, quantity)
        item = OrderItem.objects.create(
            order=order,
            product=product,
            product_name=product.name,
            price=product.effective_price if price is None else price,
            quantity=quantity,
        )
        order.recalculate_totals()
        order.save()
    return item


def update_item(item, quantity=None, price=None):
    order = item.order
    with transaction.atomic():
        _ensure_editable(order)
        if quantity is not None and quantity != item.quantity:
            delta = quantity - item.quantity
            if item.product_id:
                if delta > 0:
                    _reserve_stock(item.product_id, delta)
                else:
                    Product.objects.filter(id=item.product_id).update(
                        stock=models.F("stock") - delta
                    )
            item.quantity = quantity
        if price is not None:
            item.price = price
        item.save()
        order.recalculate_totals()
        order.save()
    return item


def remove_item(item):
    order = item.order
    with transaction.atomic():
        _ensure_editable(order)
        if item.product_id:
            Product.objects.filter(id=item.product_id).update(
                stock=models.F("stock") + item.quantity
            )
        item.delete()
        order.recalculate_totals()
        order.save()
    return order
