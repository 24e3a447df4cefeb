import csv
import io
from datetime import timedelta

from django.db.models import Count, Q, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from .models import PointAccount, PointTransaction, VirtualCardPurchase

EARN_TYPES = ("earn_purchase", "virtual_card_redeem", "admin_adjust", "refund")


def system_stats(start=None, end=None):
    txs = PointTransaction.objects.filter(status="completed")
    if start:
        txs = txs.filter(created_at__gte=start)
    if end:
        txs = txs.filter(created_at__lt=end)
    agg = txs.aggregate(
        total=Count("id"),
        earned=Sum("points", filter=Q(points__gt=0)),
        used=Sum("points", filter=Q(transaction_type__in=("use_payment", "admin_adjust"), points__lt=0)),
        users=Count("account", distinct=True),
    )
    available = PointAccount.objects.aggregate(total=Sum("available"))["total"] or 0
    return {
        "totalTransactions": agg["total"] or 0,
        "totalPointsEarned": agg["earned"] or 0,
        "totalPointsUsed": abs(agg["used"] or 0),
        "activeUsers": agg["users"] or 0,
        "totalAvailablePoints": available,
    }


def daily_stats(days=30, now=None):
    now = now or timezone.now()
    since = now - timedelta(days=days)
    rows = (
        PointTransaction.objects.filter(status="completed", created_at__gte=since)
        .annotate(day=TruncDate("created_at"))
        .values("day")
        .annotate(
            transaction_count=Count("id"),
            earned=Sum("points", filter=Q(points__gt=0)),
            used=Sum("points", filter=Q(transaction_type="use_payment")),
            users=Count("account", distinct=True),
        )
        .order_by("day")
    )
    return [
        {
            "date": row["day"].isoformat(),
            "transactionCount": row["transaction_count"],
            "pointsEarned": row["earned"] or 0,
            "pointsUsed": abs(row["used"] or 0),
            "activeUsers": row["users"],
        }
        for row in rows
    ]


def _transaction_rows(start, end):
    qs = PointTransaction.objects.select_related("account__customer", "order")
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lt=end)
    for tx in qs.order_by("created_at", "id"):
        customer = tx.account.customer
        yield {
            "id": tx.pk,
            "lineUserId": customer.line_id or "",
            "name": customer.name or customer.display_name,
            "transactionType": tx.transaction_type,
            "points": tx.points,
            "pointsBefore": tx.points_before,
            "pointsAfter": tx.points_after,
            "orderNumber": tx.order.order_number if tx.order else "",
            "description": tx.description,
            "status": tx.status,
            "createdAt": tx.created_at.isoformat(),
        }


def _user_point_rows(start, end):
    for account in PointAccount.objects.select_related("customer").order_by("id"):
        customer = account.customer
        yield {
            "lineUserId": customer.line_id or "",
            "name": customer.name or customer.display_name,
            "phone": customer.phone,
            "totalEarnedPoints": account.total_earned,
            "totalUsedPoints": account.total_used,
            "availablePoints": account.available,
            "expiredPoints": account.expired,
        }


def _purchase_rows(start, end):
    qs = VirtualCardPurchase.objects.select_related("customer", "product")
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lt=end)
    for purchase in qs.order_by("created_at", "id"):
        yield {
            "id": purchase.pk,
            "lineUserId": purchase.customer.line_id or "",
            "product": purchase.product.name,
            "paymentMethod": purchase.payment_method,
            "paymentStatus": purchase.payment_status,
            "purchasePrice": purchase.purchase_price,
            "pointsRedeemed": purchase.points_redeemed,
            "createdAt": purchase.created_at.isoformat(),
        }


EXPORTERS = {
    "transactions": _transaction_rows,
    "user_points": _user_point_rows,
    "virtual_card_purchases": _purchase_rows,
}


def export_rows(export_type, start=None, end=None):
    return list(EXPORTERS[export_type](start, end))


def to_csv(rows):
    output = io.StringIO()
    if rows:
        writer = csv.DictWriter(output, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        writer.writerows(rows)
    # Excel 開啟中文 CSV 需要 BOM
    return output.getvalue().encode("utf-8-sig")
