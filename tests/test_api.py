import os
import subprocess
import sys
from pathlib import Path

import pytest
from rest_framework.generics import GenericAPIView
from rest_framework.settings import api_settings

from bakery.models import Customer
from bakery.pagination import StandardPagination

ROOT = Path(__file__).resolve().parent.parent


def test_default_pagination_class_is_standard():
    assert api_settings.DEFAULT_PAGINATION_CLASS is StandardPagination
    assert GenericAPIView.pagination_class is StandardPagination


def test_urlconf_loads_in_fresh_interpreter():
    # URLconf 先載入時 rest_framework.generics 才第一次讀取分頁設定
    env = dict(os.environ, DJANGO_SETTINGS_MODULE="sunnyhaus.settings_test")
    code = (
        "import django; django.setup(); "
        "from django.urls import resolve; "
        "resolve('/api/customers'); resolve('/api/points/admin/settings')"
    )
    result = subprocess.run(
        [sys.executable, "-c", code], cwd=ROOT, env=env, capture_output=True, text=True
    )
    assert result.returncode == 0, result.stderr


@pytest.mark.django_db
def test_router_list_uses_envelope_pagination(admin_client):
    for n in range(3):
        Customer.objects.create(line_id=f"U{n:04d}", display_name=f"客人{n}")

    res = admin_client.get("/api/customers?limit=2&page=2")

    assert res.status_code == 200
    body = res.json()
    assert body["success"] is True
    assert len(body["data"]) == 1
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "totalPages": 2}
