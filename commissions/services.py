import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncMonth
from django.utils import timezone
from django.utils.dateparse import parse_date

from bakery.exceptions import BakeryError
from bakery.models import Order
from bakery.services import TAIPEI, date_range_for, local_now

from . import rules
from .models import CommissionRecord, Salesperson

logger = logging.getLogger(__name__)

RECORD_TRANSITIONS = {
    "calculated": ("paid", "cancelled"),
    "paid": (),
    "cancelled": (),
}

PERIOD_MONTHS = {
    "1month": 1,
    "3months": 3,
    "6months": 6,
    "1year": 12,
}


def new_batch_id():
    return f"B{local_now():%Y%m%d%H%M%S}{uuid.uuid4().hex[:6].upper()}"


def eligible_orders(start=None, end=None, salesperson=None):
    lower, upper = date_range_for("custom", start, end)
    qs = Order.objects.filter(
        status="delivered", salesperson__isnull=False, commission_record__isnull=True
    ).select_related("salesperson__commission_plan")
    if lower:
        qs = qs.filter(created_at__gte=lower)
    if upper:
        qs = qs.filter(created_at__lt=upper)
    if salesperson is not None:
        qs = qs.filter(salesperson=salesperson)
    return qs.order_by("created_at", "id")


def calculate_commissions(start=None, end=None, salesperson=None):
    """
    為期間內已送達、且業務方案與合約在下單日有效的訂單建立分潤紀錄。

    已有紀錄的訂單不會重算；同一次計算共用一個 batch_id。
    """
    batch_id = new_batch_id()
    created = []
    skipped = 0

    with transaction.atomic():
        for order in eligible_orders(start, end, salesperson):
            person = order.salesperson
            plan = person.commission_plan
            day = order.created_at.astimezone(TAIPEI).date()
            if plan is None or not plan.is_effective_on(day) or not person.has_active_contract(day):
                skipped += 1
                continue
            amount = Decimal(order.total_amount)
            rate = rules.rate_for(plan, amount)
            created.append(
                CommissionRecord.objects.create(
                    order=order,
                    salesperson=person,
                    plan=plan,
                    order_amount=amount,
                    commission_rate=rate,
                    commission_amount=rules.commission_for(amount, rate),
                    rule_name=plan.name,
                    rule_type=plan.rule_type,
                    batch_id=batch_id,
                )
            )

    summary = {}
    for record in created:
        row = summary.setdefault(
            record.salesperson_id,
            {
                "salesperson_id": record.salesperson_id,
                "salesperson_name": str(record.salesperson),
                "order_count": 0,
                "total_sales": Decimal("0"),
                "total_commission": Decimal("0"),
            },
        )
        row["order_count"] += 1
        row["total_sales"] += record.order_amount
        row["total_commission"] += record.commission_amount

    result = {
        "batch_id": batch_id,
        "created_count": len(created),
        "skipped_count": skipped,
        "total_sales": sum((r.order_amount for r in created), Decimal("0")),
        "total_commission": sum((r.commission_amount for r in created), Decimal("0")),
        "salespersons": list(summary.values()),
    }
    logger.info(
        "Commission batch %s: %s records, %s skipped, total %s",
        batch_id,
        len(created),
        skipped,
        result["total_commission"],
    )
    return result


def cancel_for_order(order):
    """訂單取消時作廢尚未支付的分潤"""
    updated = CommissionRecord.objects.filter(order=order, status="calculated").update(
        status="cancelled", updated_at=timezone.now()
    )
    if updated:
        logger.info("Commission for order %s cancelled", order.order_number)
    return updated


def update_record_status(record, new_status, payment_reference="", payment_method="", notes=""):
    if new_status == record.status:
        return record
    if new_status not in RECORD_TRANSITIONS.get(record.status, ()):
        raise BakeryError(f"分潤狀態無法從 {record.status} 變更為 {new_status}")
    record.status = new_status
    if new_status == "paid":
        record.paid_at = timezone.now()
        record.payment_reference = payment_reference or record.payment_reference
        record.payment_method = payment_method or record.payment_method
    if notes:
        record.notes = notes
    record.save()
    logger.info("Commission record #%s -> %s", record.pk, new_status)
    return record


def filter_records(qs, params):
    salesperson_id = params.get("salesperson_id")
    if salesperson_id:
        qs = qs.filter(salesperson_id=salesperson_id)
    record_status = params.get("status")
    if record_status:
        qs = qs.filter(status=record_status)
    batch_id = params.get("batch_id")
    if batch_id:
        qs = qs.filter(batch_id=batch_id)
    lower, upper = date_range_for(
        "custom",
        parse_date(params.get("start_date") or ""),
        parse_date(params.get("end_date") or ""),
    )
    if lower:
        qs = qs.filter(order__created_at__gte=lower)
    if upper:
        qs = qs.filter(order__created_at__lt=upper)
    return qs


def _totals(qs):
    agg = qs.aggregate(
        count=Count("id"),
        sales=Sum("order_amount"),
        calculated=Sum("commission_amount", filter=Q(status="calculated")),
        paid=Sum("commission_amount", filter=Q(status="paid")),
    )
    calculated = agg["calculated"] or Decimal("0")
    paid = agg["paid"] or Decimal("0")
    return {
        "record_count": agg["count"] or 0,
        "total_sales": agg["sales"] or Decimal("0"),
        "calculated_commission": calculated,
        "paid_commission": paid,
        "total_commission": calculated + paid,
    }


def stats(period="1month", now=None):
    months = PERIOD_MONTHS.get(period)
    if months is None:
        raise BakeryError("period 必須是 1month、3months、6months 或 1year")
    now = now or timezone.now()
    since = now - timedelta(days=30 * months)
    qs = CommissionRecord.objects.filter(created_at__gte=since).exclude(status="cancelled")

    monthly = [
        {
            "month": row["month"].strftime("%Y-%m"),
            "record_count": row["count"],
            "total_commission": row["total"] or Decimal("0"),
        }
        for row in qs.annotate(month=TruncMonth("created_at"))
        .values("month")
        .annotate(count=Count("id"), total=Sum("commission_amount"))
        .order_by("month")
    ]
    top = [
        {
            "salesperson_id": row["salesperson_id"],
            "company_name": row["salesperson__company_name"] or row["salesperson__name"],
            "record_count": row["count"],
            "total_commission": row["total"] or Decimal("0"),
        }
        for row in qs.values("salesperson_id", "salesperson__company_name", "salesperson__name")
        .annotate(count=Count("id"), total=Sum("commission_amount"))
        .order_by("-total")[:10]
    ]
    return {
        "period": period,
        "summary": _totals(qs),
        "monthly": monthly,
        "top_salespersons": top,
        "active_salespersons": Salesperson.objects.filter(status="active").count(),
    }


def dashboard(salesperson):
    """業務儀表板：訂單狀態統計、已付/未付業績、分潤與本月數字"""
    orders = Order.objects.filter(salesperson=salesperson)
    by_status = {
        row["status"]: row["count"]
        for row in orders.values("status").annotate(count=Count("id"))
    }
    sales = orders.exclude(status="cancelled").aggregate(
        paid=Sum("total_amount", filter=Q(payment_status="paid")),
        pending=Sum("total_amount", filter=~Q(payment_status="paid")),
    )
    month_start, month_end = date_range_for("this_month")
    month_orders = orders.filter(created_at__gte=month_start, created_at__lt=month_end)
    records = CommissionRecord.objects.filter(salesperson=salesperson)
    month_records = records.filter(
        order__created_at__gte=month_start, order__created_at__lt=month_end
    )
    return {
        "orders": {
            "total": sum(by_status.values()),
            "by_status": by_status,
        },
        "sales": {
            "paid": sales["paid"] or 0,
            "pending": sales["pending"] or 0,
        },
        "commissions": _totals(records.exclude(status="cancelled")),
        "current_month": {
            "order_count": month_orders.exclude(status="cancelled").count(),
            "sales": month_orders.exclude(status="cancelled").aggregate(
                total=Sum("total_amount")
            )["total"]
            or 0,
            "commission": month_records.exclude(status="cancelled").aggregate(
                total=Sum("commission_amount")
            )["total"]
            or Decimal("0"),
        },
    }


EXPORT_COLUMNS = [
    ("id", "紀錄編號"),
    ("batch_id", "批次"),
    ("order_number", "訂單編號"),
    ("order_date", "訂單日期"),
    ("company_name", "業務公司"),
    ("order_amount", "訂單金額"),
    ("commission_rate", "分潤比例(%)"),
    ("commission_amount", "分潤金額"),
    ("rule_name", "方案"),
    ("status", "狀態"),
    ("paid_at", "支付時間"),
    ("payment_reference", "支付參考"),
]


def export_rows(qs):
    for record in qs.select_related("order", "salesperson"):
        yield {
            "id": record.pk,
            "batch_id": record.batch_id,
            "order_number": record.order.order_number,
            "order_date": record.order.created_at.astimezone(TAIPEI).strftime("%Y-%m-%d"),
            "company_name": str(record.salesperson),
            "order_amount": record.order_amount,
            "commission_rate": record.commission_rate,
            "commission_amount": record.commission_amount,
            "rule_name": record.rule_name,
            "status": record.get_status_display(),
            "paid_at": record.paid_at.astimezone(TAIPEI).strftime("%Y-%m-%d %H:%M")
            if record.paid_at
            else "",
            "payment_reference": record.payment_reference,
        }
