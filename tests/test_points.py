from datetime import timedelta

import pytest
from django.core.management import call_command
from django.utils import timezone

from bakery.exceptions import FeatureDisabled, InsufficientPoints
from points import conf, services
from points.models import PointAccount, PointSetting, PointTransaction


def set_setting(key, value):
    default, setting_type, description = conf.DEFAULTS[key]
    PointSetting.objects.update_or_create(
        setting_key=key,
        defaults={"setting_value": value, "setting_type": setting_type, "description": description},
    )


@pytest.mark.django_db
def test_settings_fall_back_to_defaults_when_missing_or_inactive():
    assert conf.get_int("points_expire_days") == 365
    set_setting("earn_rate_percentage", "3")
    assert conf.get_int("earn_rate_percentage") == 3
    PointSetting.objects.filter(setting_key="earn_rate_percentage").update(is_active=False)
    assert conf.get_int("earn_rate_percentage") == 1


@pytest.mark.django_db
def test_seed_command_does_not_overwrite():
    set_setting("earn_rate_percentage", "5")
    call_command("seed_point_settings")
    assert PointSetting.objects.count() == len(conf.DEFAULTS)
    assert conf.get_int("earn_rate_percentage") == 5


@pytest.mark.parametrize(
    "setting_type, value, ok",
    [
        ("boolean", "TRUE", True),
        ("boolean", "maybe", False),
        ("number", "-1", False),
        ("number", "2.5", True),
        ("number", "Infinity", False),
        ("number", "NaN", False),
        ("number", "1e999", False),
        ("number", "abc", False),
    ],
)
def test_validate_value(setting_type, value, ok):
    assert conf.validate_value(setting_type, value) is ok


@pytest.mark.django_db
def test_non_finite_stored_number_falls_back_to_default(customer):
    set_setting("points_expire_days", "Infinity")
    assert conf.get_int("points_expire_days") == 365

    tx = services.credit(customer, 10, "admin_adjust")
    assert tx.expires_at is not None


@pytest.mark.django_db
def test_admin_settings_reject_infinite_number(admin_client):
    res = admin_client.put(
        "/api/points/admin/settings",
        {"settings": [{"settingKey": "points_expire_days", "settingValue": "Infinity"}]},
        format="json",
    )
    assert res.status_code == 400
    assert conf.get_int("points_expire_days") == 365


@pytest.mark.django_db
def test_credit_and_debit_record_balances(customer):
    services.credit(customer, 30, "admin_adjust")
    tx = services.debit(customer, 12, "use_payment")

    assert (tx.points, tx.points_before, tx.points_after) == (-12, 30, 18)
    account = PointAccount.objects.get(customer=customer)
    assert (account.available, account.total_earned, account.total_used) == (18, 30, 12)


@pytest.mark.django_db
def test_debit_more_than_available_is_refused(customer):
    services.credit(customer, 5, "admin_adjust")
    with pytest.raises(InsufficientPoints):
        services.debit(customer, 6, "use_payment")
    assert services.balance_for(customer) == 5


@pytest.mark.django_db
def test_debit_consumes_earliest_expiry_first(customer):
    set_setting("points_expire_days", "0")
    forever = services.credit(customer, 10, "admin_adjust")
    set_setting("points_expire_days", "30")
    soon = services.credit(customer, 10, "admin_adjust")
    set_setting("points_expire_days", "90")
    later = services.credit(customer, 10, "admin_adjust")

    services.debit(customer, 15, "use_payment")

    remaining = {
        tx.pk: tx.remaining
        for tx in PointTransaction.objects.filter(pk__in=[forever.pk, soon.pk, later.pk])
    }
    assert remaining == {soon.pk: 0, later.pk: 5, forever.pk: 10}


@pytest.mark.django_db
def test_expire_points_only_touches_past_due_credits(customer):
    old = services.credit(customer, 20, "admin_adjust")
    services.credit(customer, 7, "admin_adjust")
    services.debit(customer, 5, "use_payment")
    PointTransaction.objects.filter(pk=old.pk).update(
        expires_at=timezone.now() - timedelta(days=1)
    )

    expired = services.expire_points()

    assert expired == 15
    account = PointAccount.objects.get(customer=customer)
    assert account.available == 7
    assert account.expired == 15
    assert services.expire_points() == 0


@pytest.mark.django_db
def test_expire_points_command(customer):
    tx = services.credit(customer, 4, "admin_adjust")
    PointTransaction.objects.filter(pk=tx.pk).update(expires_at=timezone.now() - timedelta(days=1))
    call_command("expire_points")
    assert services.balance_for(customer) == 0


@pytest.mark.parametrize(
    "amount, settings_values, expected",
    [
        (250, {}, 2),
        (250, {"earn_rate_percentage": "10"}, 25),
        (250, {"earn_rate_percentage": "10", "max_points_per_order": "20"}, 20),
        (250, {"min_order_amount_for_points": "300"}, 0),
    ],
)
@pytest.mark.django_db
def test_points_for_amount(amount, settings_values, expected):
    for key, value in settings_values.items():
        set_setting(key, value)
    assert services.points_for_amount(amount) == expected


@pytest.mark.django_db
def test_earning_switched_off(customer, toast):
    from bakery import services as order_services

    set_setting("purchase_reward_enabled", "false")
    order = order_services.create_order(
        {"customer_name": "A", "customer_phone": "0900"},
        [{"product_id": toast.id, "quantity": 2}],
        customer=customer,
    )
    assert services.earn_for_order(order) is None
    assert not order.points_awarded


@pytest.mark.django_db
def test_redeem_limits(customer, toast):
    from bakery import services as order_services
    from bakery.exceptions import BakeryError

    services.credit(customer, 500, "admin_adjust")
    items = [{"product_id": toast.id, "quantity": 1}]
    data = {"customer_name": "A", "customer_phone": "0900"}

    with pytest.raises(BakeryError):
        # 120 元訂單最多折抵 50% = 60 元
        order_services.create_order(data, items, customer=customer, points_to_use=61)

    set_setting("point_usage_enabled", "false")
    with pytest.raises(FeatureDisabled):
        order_services.create_order(data, items, customer=customer, points_to_use=10)
    assert services.balance_for(customer) == 500


@pytest.mark.django_db
def test_admin_earn_deduct_and_transactions(admin_client, customer):
    res = admin_client.post(
        "/api/points/admin/earn",
        {"lineUserId": customer.line_id, "points": 50, "adminNote": "活動贈點"},
        format="json",
    )
    assert res.status_code == 201
    assert res.json()["data"]["pointsAfter"] == 50

    res = admin_client.post(
        "/api/points/admin/deduct", {"lineUserId": str(customer.pk), "amount": 80}, format="json"
    )
    assert res.status_code == 400

    admin_client.post(
        "/api/points/admin/deduct", {"lineUserId": str(customer.pk), "points": 20}, format="json"
    )
    res = admin_client.get("/api/points/admin/transactions", {"lineUserId": customer.line_id})
    body = res.json()
    assert body["pagination"]["total"] == 2
    assert {tx["points"] for tx in body["data"]} == {50, -20}
    assert body["data"][0]["lineUser"]["name"] == "林小晴"


@pytest.mark.django_db
def test_admin_users_stats_and_overview(admin_client, customer):
    services.credit(customer, 40, "admin_adjust")
    services.debit(customer, 10, "use_payment")

    users = admin_client.get("/api/points/admin/users/points", {"search": "林"}).json()["data"]
    assert users[0]["availablePoints"] == 30

    overview = admin_client.get("/api/points/admin/stats/overview").json()["data"]
    assert overview["totalPointsEarned"] == 40
    assert overview["totalPointsUsed"] == 10
    assert overview["totalAvailablePoints"] == 30

    daily = admin_client.get("/api/points/admin/stats/daily", {"days": 7}).json()["data"]
    assert daily[0]["transactionCount"] == 2


@pytest.mark.django_db
def test_admin_settings_get_and_update(admin_client):
    rows = admin_client.get("/api/points/admin/settings").json()["data"]
    assert {row["settingKey"] for row in rows} == set(conf.DEFAULTS)

    res = admin_client.put(
        "/api/points/admin/settings",
        {"settings": [{"settingKey": "earn_rate_percentage", "settingValue": "2"}]},
        format="json",
    )
    assert res.status_code == 200
    assert conf.get_int("earn_rate_percentage") == 2

    res = admin_client.put(
        "/api/points/admin/settings",
        {"settings": [{"settingKey": "points_system_enabled", "settingValue": "perhaps"}]},
        format="json",
    )
    assert res.status_code == 400


@pytest.mark.django_db
def test_admin_export_csv(admin_client, customer):
    services.credit(customer, 40, "admin_adjust")
    res = admin_client.get("/api/points/admin/export", {"type": "transactions", "format": "csv"})

    assert res["Content-Type"].startswith("text/csv")
    text = res.content.decode("utf-8-sig")
    assert text.splitlines()[0].startswith("id,lineUserId,name,transactionType")
    assert "U1234567890" in text


@pytest.mark.django_db
def test_customer_balance_is_private(line_client, api_client, customer):
    services.credit(customer, 9, "admin_adjust")
    res = line_client.get(f"/api/points/balance/{customer.line_id}")
    assert res.json()["data"]["availablePoints"] == 9

    assert line_client.get("/api/points/balance/Usomeoneelse").status_code == 401
    assert api_client.get(f"/api/points/transactions/{customer.line_id}").status_code == 401
