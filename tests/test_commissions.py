import csv
import io
from datetime import date, timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from bakery import services as order_services
from bakery.exceptions import BakeryError
from commissions import rules, services
from commissions.models import CommissionPlan, CommissionRecord

TIERS = [
    {"min_amount": 10000, "max_amount": None, "rate": 8},
    {"min_amount": 0, "max_amount": 5000, "rate": 3},
    {"min_amount": 5000, "max_amount": 10000, "rate": 5},
]


def delivered_order(product, salesperson, quantity=1):
    order = order_services.create_order(
        {"customer_name": "門市", "customer_phone": "0900", "salesperson_id": salesperson.pk},
        [{"product_id": product.id, "quantity": quantity}],
    )
    return order_services.change_status(order, "delivered")


# --- 規則 ---
def test_tiers_are_sorted_and_stored_as_floats():
    fixed, stored = rules.validate_plan("tiered", tiered_rules=TIERS)
    assert fixed is None
    assert [t["min_amount"] for t in stored] == [0.0, 5000.0, 10000.0]
    assert stored[-1]["max_amount"] is None


@pytest.mark.parametrize(
    "tiers",
    [
        [],
        [{"min_amount": 0, "max_amount": 5000, "rate": 3}, {"min_amount": 4000, "max_amount": None, "rate": 5}],
        [{"min_amount": 0, "max_amount": None, "rate": 3}, {"min_amount": 5000, "max_amount": None, "rate": 5}],
        [{"min_amount": 100, "max_amount": 100, "rate": 3}],
        [{"min_amount": -1, "max_amount": 100, "rate": 3}],
        [{"min_amount": 0, "max_amount": None, "rate": 120}],
    ],
)
def test_invalid_tiers_are_rejected(tiers):
    with pytest.raises(BakeryError):
        rules.validate_plan("tiered", tiered_rules=tiers)


@pytest.mark.parametrize("rate", [None, "", "-1", "100.5", "abc"])
def test_invalid_fixed_rate_is_rejected(rate):
    with pytest.raises(BakeryError):
        rules.validate_plan("fixed", fixed_rate=rate)


@pytest.mark.parametrize(
    "amount, expected",
    [(0, "3"), (4999, "3"), (5000, "5"), (9999.99, "5"), (10000, "8"), (250000, "8")],
)
def test_whole_amount_uses_matching_bracket_rate(amount, expected):
    plan = CommissionPlan(rule_type="tiered", tiered_rules=TIERS)
    assert rules.rate_for(plan, amount) == Decimal(expected)


def test_amount_outside_every_bracket_earns_nothing():
    plan = CommissionPlan(
        rule_type="tiered", tiered_rules=[{"min_amount": 1000, "max_amount": 2000, "rate": 4}]
    )
    assert rules.rate_for(plan, 500) == 0
    assert rules.rate_for(plan, 2000) == 0


def test_commission_rounds_half_up():
    assert rules.commission_for(Decimal("333"), Decimal("2.5")) == Decimal("8.33")
    assert rules.commission_for(Decimal("1"), Decimal("0.5")) == Decimal("0.01")
    assert rules.commission_for(Decimal("0.9"), Decimal("5")) == Decimal("0.05")


# --- 計算 ---
@pytest.mark.django_db
def test_calculate_creates_one_record_per_delivered_order(toast, salesperson):
    delivered_order(toast, salesperson, quantity=2)
    delivered_order(toast, salesperson, quantity=1)
    order_services.create_order(
        {"customer_name": "未送達", "customer_phone": "0900", "salesperson_id": salesperson.pk},
        [{"product_id": toast.id, "quantity": 1}],
    )

    result = services.calculate_commissions()

    assert result["created_count"] == 2
    assert result["total_sales"] == Decimal("360")
    assert result["total_commission"] == Decimal("18.00")
    assert result["salespersons"][0]["order_count"] == 2
    assert {r.batch_id for r in CommissionRecord.objects.all()} == {result["batch_id"]}

    again = services.calculate_commissions()
    assert again["created_count"] == 0
    assert CommissionRecord.objects.count() == 2


@pytest.mark.django_db
def test_calculate_skips_inactive_contract_or_plan(toast, salesperson, plan):
    delivered_order(toast, salesperson)
    salesperson.contract_start_date = timezone.localdate() + timedelta(days=1)
    salesperson.save()

    result = services.calculate_commissions()
    assert result["created_count"] == 0
    assert result["skipped_count"] == 1

    salesperson.contract_start_date = date(2024, 1, 1)
    salesperson.save()
    CommissionPlan.objects.filter(pk=plan.pk).update(status="inactive")
    assert services.calculate_commissions()["created_count"] == 0


@pytest.mark.django_db
def test_calculate_respects_date_range(toast, salesperson):
    delivered_order(toast, salesperson)
    yesterday = timezone.localdate() - timedelta(days=1)
    assert services.calculate_commissions(end=yesterday)["created_count"] == 0
    assert services.calculate_commissions(start=yesterday)["created_count"] == 1


@pytest.mark.django_db
def test_record_status_transitions(toast, salesperson):
    delivered_order(toast, salesperson)
    services.calculate_commissions()
    record = CommissionRecord.objects.get()

    record = services.update_record_status(record, "paid", payment_reference="TX-1", payment_method="匯款")
    assert record.paid_at is not None
    assert record.payment_reference == "TX-1"

    with pytest.raises(BakeryError):
        services.update_record_status(record, "cancelled")


@pytest.mark.django_db
def test_cancelling_order_cancels_unpaid_commission(toast, salesperson):
    order = order_services.create_order(
        {"customer_name": "門市", "customer_phone": "0900", "salesperson_id": salesperson.pk},
        [{"product_id": toast.id, "quantity": 1}],
    )
    order = order_services.change_status(order, "shipped")
    CommissionRecord.objects.create(
        order=order,
        salesperson=salesperson,
        order_amount=120,
        commission_rate=5,
        commission_amount=Decimal("6.00"),
    )
    order_services.cancel_order(order)
    assert CommissionRecord.objects.get().status == "cancelled"


# --- 後台 API ---
@pytest.mark.django_db
def test_plan_crud_and_delete_guard(admin_client, salesperson, plan):
    res = admin_client.post(
        "/api/admin/commission-plans",
        {"name": "階梯方案", "rule_type": "tiered", "tiered_rules": TIERS},
        format="json",
    )
    assert res.status_code == 201
    tiered_id = res.json()["data"]["id"]

    res = admin_client.post(
        "/api/admin/commission-plans",
        {"name": "錯誤方案", "rule_type": "fixed", "fixed_rate": "150"},
        format="json",
    )
    assert res.status_code == 400

    listed = admin_client.get("/api/admin/commission-plans/list").json()["data"]
    counts = {p["name"]: p["salesperson_count"] for p in listed}
    assert counts == {"標準方案": 1, "階梯方案": 0}

    assert admin_client.delete(f"/api/admin/commission-plans/{plan.id}").status_code == 409
    assert admin_client.delete(f"/api/admin/commission-plans/{tiered_id}").status_code == 200


@pytest.mark.django_db
def test_assign_and_clear_plan(admin_client, salesperson, plan):
    res = admin_client.put(
        f"/api/admin/customers/{salesperson.pk}/commission-plan",
        {"commission_plan_id": None},
        format="json",
    )
    assert res.status_code == 200
    assert res.json()["data"]["has_active_contract"] is False

    res = admin_client.put(
        f"/api/admin/customers/{salesperson.pk}/commission-plan",
        {"commission_plan_id": plan.pk, "contract_end_date": "2099-12-31"},
        format="json",
    )
    salesperson.refresh_from_db()
    assert salesperson.commission_plan == plan
    assert salesperson.contract_end_date == date(2099, 12, 31)

    people = admin_client.get("/api/admin/customers/salespersons").json()["data"]
    assert people[0]["commission_plan_name"] == "標準方案"


@pytest.mark.django_db
def test_calculate_history_status_stats_export(admin_client, toast, salesperson):
    delivered_order(toast, salesperson, quantity=2)

    res = admin_client.post("/api/admin/commission/calculate", {}, format="json")
    assert res.json()["data"]["created_count"] == 1

    history = admin_client.get(
        "/api/admin/commissions/history", {"salesperson_id": salesperson.pk, "status": "calculated"}
    ).json()
    assert history["pagination"]["total"] == 1
    record_id = history["data"][0]["id"]
    assert history["data"][0]["commission_amount"] == "12.00"

    res = admin_client.put(
        f"/api/admin/commission/records/{record_id}/status",
        {"status": "paid", "payment_reference": "TX-9"},
        format="json",
    )
    assert res.json()["data"]["status"] == "paid"
    res = admin_client.put(
        f"/api/admin/commission/records/{record_id}/status", {"status": "calculated"}, format="json"
    )
    assert res.status_code == 400

    stats = admin_client.get("/api/admin/commissions/stats", {"period": "3months"}).json()["data"]
    assert stats["summary"]["paid_commission"] == 12
    assert stats["top_salespersons"][0]["company_name"] == "晴光行銷"
    assert admin_client.get("/api/admin/commissions/stats", {"period": "2weeks"}).status_code == 400

    res = admin_client.get("/api/admin/commissions/export")
    rows = list(csv.reader(io.StringIO(res.content.decode("utf-8-sig"))))
    assert rows[0][:3] == ["紀錄編號", "批次", "訂單編號"]
    assert rows[1][4] == "晴光行銷"
    assert rows[1][9] == "已支付"


@pytest.mark.django_db
def test_commission_admin_requires_staff(sales_client):
    assert sales_client.get("/api/admin/commissions/history").status_code == 403


# --- 業務入口 ---
@pytest.mark.django_db
def test_salesperson_login_only_for_salespersons(api_client, salesperson, admin_user):
    res = api_client.post(
        "/api/salesperson/login", {"username": "sales1", "password": "pass1234"}, format="json"
    )
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["role"] == "salesperson"
    assert data["salesperson"]["company_name"] == "晴光行銷"

    res = api_client.post(
        "/api/salesperson/login", {"username": "admin", "password": "pass1234"}, format="json"
    )
    assert res.status_code == 401


@pytest.mark.django_db
def test_salesperson_portal_requires_profile(admin_client, api_client):
    assert admin_client.get("/api/salesperson/profile").status_code == 403
    assert api_client.get("/api/salesperson/profile").status_code == 401


@pytest.mark.django_db
def test_salesperson_profile_dashboard_and_orders(sales_client, toast, salesperson):
    delivered_order(toast, salesperson, quantity=2)
    order_services.create_order(
        {"customer_name": "門市", "customer_phone": "0900", "salesperson_id": salesperson.pk},
        [{"product_id": toast.id, "quantity": 1}],
    )
    services.calculate_commissions()

    profile = sales_client.get("/api/salesperson/profile").json()["data"]
    assert profile["has_active_contract"] is True

    dashboard = sales_client.get("/api/salesperson/dashboard").json()["data"]
    assert dashboard["orders"]["total"] == 2
    assert dashboard["orders"]["by_status"] == {"delivered": 1, "pending": 1}
    assert dashboard["commissions"]["calculated_commission"] == 12

    orders = sales_client.get("/api/salesperson/orders", {"status": "DELIVERED"}).json()
    assert orders["pagination"]["total"] == 1

    records = sales_client.get("/api/salesperson/commissions").json()
    assert records["data"][0]["commission_amount"] == "12.00"

    rules_res = sales_client.get("/api/salesperson/commission-rules").json()["data"]
    assert rules_res["plan"]["fixed_rate"] == "5.00"
    assert rules_res["contract"]["start_date"] == "2024-01-01"


@pytest.mark.django_db
def test_commissions_locked_until_contract_active(sales_client, salesperson):
    salesperson.contract_start_date = timezone.localdate() + timedelta(days=7)
    salesperson.save()

    res = sales_client.get("/api/salesperson/commissions")
    assert res.status_code == 403
    assert res.json()["code"] == "commission_not_activated"
    assert sales_client.get("/api/salesperson/commission-rules").status_code == 403
    assert sales_client.get("/api/salesperson/dashboard").status_code == 200


@pytest.mark.django_db
def test_referral_qrcode(sales_client, salesperson):
    data = sales_client.get("/api/salesperson/qrcode").json()["data"]
    assert data["link"] == f"https://shop.example.com/client/bakery?ref={salesperson.pk}"
    assert data["qrcode"].startswith("data:image/png;base64,")

    res = sales_client.get("/api/salesperson/qrcode", {"format": "png"})
    assert res["Content-Type"] == "image/png"
    assert res.content[:8] == b"\x89PNG\r\n\x1a\n"
