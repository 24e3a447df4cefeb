from datetime import date
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bakery.models import Category, Customer, Product
from commissions.models import CommissionPlan, Salesperson

User = get_user_model()


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def admin_user(db):
    return User.objects.create_user("admin", password="pass1234", is_staff=True)


@pytest.fixture
def admin_client(admin_user):
    client = APIClient()
    client.force_authenticate(admin_user)
    return client


@pytest.fixture
def customer(db):
    return Customer.objects.create(
        line_id="U1234567890",
        display_name="小晴",
        name="林小晴",
        phone="0912345678",
        email="sunny@example.com",
    )


@pytest.fixture
def line_client(customer):
    """已透過 LIFF 登入的顧客"""
    client = APIClient()
    session = client.session
    session["customer_id"] = customer.pk
    session["line_user_id"] = customer.line_id
    session.save()
    return client


@pytest.fixture
def category(db):
    return Category.objects.create(name="吐司", slug="toast", sort_order=0)


@pytest.fixture
def toast(category):
    return Product.objects.create(category=category, name="生吐司", price=120, stock=10)


@pytest.fixture
def bagel(category):
    return Product.objects.create(
        category=category, name="貝果", price=60, discount_price=50, stock=5
    )


@pytest.fixture
def plan(db):
    return CommissionPlan.objects.create(
        name="標準方案",
        rule_type="fixed",
        fixed_rate=Decimal("5.00"),
        effective_date=date(2024, 1, 1),
    )


@pytest.fixture
def sales_user(db):
    return User.objects.create_user("sales1", password="pass1234")


@pytest.fixture
def salesperson(sales_user, plan):
    return Salesperson.objects.create(
        user=sales_user,
        name="王小明",
        company_name="晴光行銷",
        phone="0922000111",
        commission_plan=plan,
        contract_start_date=date(2024, 1, 1),
    )


@pytest.fixture
def sales_client(salesperson):
    client = APIClient()
    client.force_authenticate(salesperson.user)
    return client
