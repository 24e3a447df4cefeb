import base64
import io
from unittest import mock

import pytest
import requests
from django.core.files.storage import default_storage
from PIL import Image, ImageFont
from urllib3.exceptions import ProtocolError

from bakery.exceptions import BakeryError, ServiceMisconfigured
from bakery.models import Customer
from commissions import contracts
from commissions.models import ContractApplication

resolve_font = contracts._font


@pytest.fixture(autouse=True)
def contract_font(monkeypatch):
    # 測試環境不一定有中文字型
    monkeypatch.setattr(contracts, "_font", lambda size: ImageFont.load_default(size=size))


def signature_data_url():
    img = Image.new("RGBA", (300, 120), (0, 0, 0, 0))
    img.paste((20, 20, 20, 255), (40, 50, 260, 70))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


def application_data(**overrides):
    data = {
        "line_user_id": "U1234567890",
        "contract_type": "bread",
        "store_name": "晴日麵包 信義店",
        "company_name": "晴日食品有限公司",
        "tax_id": "12345678",
        "representative_name": "林小晴",
        "representative_id": "a123456789",
        "address": "台北市信義區松仁路 100 號",
        "signature": signature_data_url(),
    }
    data.update(overrides)
    return data


def ok_head():
    return mock.Mock(ok=True, status_code=200)


def test_validate_application_collects_field_errors():
    with pytest.raises(BakeryError) as excinfo:
        contracts.validate_application(
            application_data(tax_id="1234", representative_id="123", store_name=" ")
        )
    assert set(excinfo.value.extra["errors"]) == {"tax_id", "representative_id", "store_name"}

    contracts.validate_application(application_data())


@pytest.mark.parametrize(
    "value",
    ["", "data:image/gif;base64,R0lGODlh", "data:image/png;base64,bm90IGFuIGltYWdl"],
)
def test_decode_signature_rejects_bad_input(value):
    with pytest.raises(BakeryError):
        contracts.decode_signature(value)


def test_flatten_puts_transparent_signature_on_white():
    signature = contracts.decode_signature(signature_data_url())
    flat = contracts.flatten(signature)
    assert flat.mode == "RGB"
    assert flat.getpixel((0, 0)) == (255, 255, 255)
    assert flat.getpixel((100, 60)) == (20, 20, 20)


def test_render_contract_is_a4_jpeg():
    application = ContractApplication(
        contract_type="commission",
        store_name="晴日麵包",
        company_name="晴日食品",
        tax_id="12345678",
        representative_name="林小晴",
        representative_id="A123456789",
        address="台北市",
    )
    jpeg = contracts.render_contract(application, contracts.decode_signature(signature_data_url()))
    with Image.open(io.BytesIO(jpeg)) as img:
        assert img.format == "JPEG"
        assert img.size == (794, 1123)


def test_contract_font_prefers_configured_path(settings, tmp_path, monkeypatch):
    font = tmp_path / "NotoSansTC-Regular.ttf"
    font.write_bytes(b"")
    fallback = tmp_path / "wqy-microhei.ttc"
    fallback.write_bytes(b"")
    monkeypatch.setattr(contracts, "CJK_FONT_CANDIDATES", (str(fallback),))

    settings.CONTRACT_FONT_PATH = str(font)
    assert contracts.contract_font_path() == str(font)

    settings.CONTRACT_FONT_PATH = ""
    assert contracts.contract_font_path() == str(fallback)

    settings.CONTRACT_FONT_PATH = str(tmp_path / "missing.ttf")
    assert contracts.contract_font_path() is None


def test_missing_cjk_font_refuses_to_render(settings, monkeypatch):
    settings.CONTRACT_FONT_PATH = ""
    monkeypatch.setattr(contracts, "CJK_FONT_CANDIDATES", ())

    with pytest.raises(ServiceMisconfigured):
        resolve_font(14)


@pytest.mark.django_db
def test_sign_contract_endpoint_without_font_saves_nothing(settings, monkeypatch, api_client):
    settings.CONTRACT_FONT_PATH = ""
    monkeypatch.setattr(contracts, "CJK_FONT_CANDIDATES", ())
    monkeypatch.setattr(contracts, "_font", resolve_font)
    messenger = mock.Mock()
    monkeypatch.setattr(contracts.line_messaging, "LineMessenger", messenger)

    res = api_client.post(
        "/api/contracts",
        {
            "contractType": "bread",
            "storeName": "晴日麵包 信義店",
            "companyName": "晴日食品有限公司",
            "taxId": "12345678",
            "representativeName": "林小晴",
            "representativeId": "A123456789",
            "address": "台北市信義區",
            "signature": signature_data_url(),
        },
        format="json",
    )

    assert res.status_code == 503
    assert res.json()["success"] is False
    assert not ContractApplication.objects.exists()
    messenger.assert_not_called()


@mock.patch("commissions.contracts.requests.head")
def test_verify_image_retries_with_growing_wait(head):
    head.side_effect = [
        mock.Mock(ok=False, status_code=404),
        requests.ConnectionError("reset"),
        ok_head(),
    ]
    sleep = mock.Mock()
    assert contracts.verify_image_available("https://cdn/x.jpg", sleep=sleep) is True
    assert [c.args[0] for c in sleep.call_args_list] == [1, 2]


@mock.patch("commissions.contracts.requests.head")
def test_verify_image_gives_up(head):
    head.return_value = mock.Mock(ok=False, status_code=404)
    sleep = mock.Mock()
    assert contracts.verify_image_available("https://cdn/x.jpg", sleep=sleep) is False
    assert head.call_count == 3
    assert sleep.call_count == 2


@pytest.mark.django_db
@mock.patch("commissions.contracts.requests.head")
def test_sign_contract_stores_images_and_notifies(head, customer):
    head.return_value = ok_head()
    messenger = mock.Mock()
    messenger.push.return_value = {"success": True}

    application, image_url, notified = contracts.sign_contract(
        application_data(), customer=customer, messenger=messenger, sleep=mock.Mock()
    )

    assert notified is True
    assert application.status == "notified"
    assert application.representative_id == "A123456789"
    assert application.customer == customer
    assert image_url.startswith("https://shop.example.com/media/uploads/contracts/")
    assert default_storage.exists(application.signature_image)
    with default_storage.open(application.contract_image) as fh:
        assert Image.open(fh).size == (794, 1123)

    to, messages = messenger.push.call_args.args
    assert to == "U1234567890"
    assert messages[1] == {
        "type": "image",
        "originalContentUrl": image_url,
        "previewImageUrl": image_url,
    }
    assert "晴日麵包 信義店" in messenger.notify_admins.call_args.args[0]


@pytest.mark.django_db
@mock.patch("commissions.contracts.requests.head")
def test_notification_failure_does_not_undo_signing(head):
    head.return_value = ok_head()
    messenger = mock.Mock()
    messenger.push.side_effect = RuntimeError("LINE down")

    application, _, notified = contracts.sign_contract(
        application_data(), messenger=messenger, sleep=mock.Mock()
    )

    assert notified is False
    assert ContractApplication.objects.get(pk=application.pk).status == "failed"


@pytest.mark.django_db
def test_sign_contract_without_line_user_only_notifies_admins():
    messenger = mock.Mock()
    application, _, notified = contracts.sign_contract(
        application_data(line_user_id=""), messenger=messenger, sleep=mock.Mock()
    )
    assert notified is False
    messenger.push.assert_not_called()
    messenger.notify_admins.assert_called_once()


@pytest.mark.django_db
def test_invalid_application_is_not_saved():
    with pytest.raises(BakeryError):
        contracts.sign_contract(application_data(tax_id="abc"), messenger=mock.Mock())
    assert not ContractApplication.objects.exists()


# --- API ---
@pytest.mark.django_db
def test_store_info(api_client):
    Customer.objects.create(
        line_id="Uowner01",
        name="張店長",
        role="owner",
        company_name="晴日食品有限公司",
        store_name="晴日麵包 台中店",
        address="台中市西屯區",
        tax_id="87654321",
    )

    res = api_client.post("/api/contracts/store-info", {"userId": "Uowner01"}, format="json")
    assert res.json() == {
        "isValid": True,
        "data": {
            "companyName": "晴日食品有限公司",
            "storeName": "晴日麵包 台中店",
            "address": "台中市西屯區",
            "taxId": "87654321",
        },
    }

    res = api_client.post("/api/contracts/store-info", {"userId": "Unobody"}, format="json")
    assert res.json() == {"isValid": False, "data": None}


@pytest.mark.django_db
@mock.patch("commissions.contracts.requests.head")
@mock.patch("commissions.contracts.line_messaging.LineMessenger")
def test_sign_contract_endpoint(messenger_cls, head, api_client, customer):
    head.return_value = ok_head()
    messenger_cls.return_value.push.return_value = {"success": True}

    res = api_client.post(
        "/api/contracts",
        {
            "userId": customer.line_id,
            "contractType": "bread",
            "storeName": "晴日麵包 信義店",
            "companyName": "晴日食品有限公司",
            "taxId": "12345678",
            "representativeName": "林小晴",
            "representativeId": "A123456789",
            "address": "台北市信義區",
            "signature": signature_data_url(),
        },
        format="json",
    )

    assert res.status_code == 201
    body = res.json()
    assert body["message"] == "合約簽署完成"
    assert body["data"]["signerNotified"] is True
    assert body["data"]["status"] == "notified"
    assert ContractApplication.objects.get().customer == customer


@pytest.mark.django_db
def test_sign_contract_endpoint_reports_field_errors(api_client):
    res = api_client.post(
        "/api/contracts",
        {
            "storeName": "",
            "companyName": "晴日食品",
            "taxId": "12",
            "representativeName": "林小晴",
            "representativeId": "A123456789",
            "address": "台北市",
            "signature": signature_data_url(),
        },
        format="json",
    )
    assert res.status_code == 400
    body = res.json()
    assert body["message"] == "資料格式錯誤"
    assert set(body["errors"]) == {"store_name", "tax_id"}


@pytest.mark.django_db
@mock.patch("bakery.views.LineMessenger")
def test_contract_notification_requires_api_key(messenger_cls, api_client):
    messenger_cls.return_value.notify_admins.return_value = {"success": True, "sent": 1, "total": 1}
    payload = {"storeName": "晴日麵包", "representativeName": "林小晴"}

    res = api_client.post(
        "/api/line-message/send/contract-notification", payload, format="json"
    )
    assert res.status_code == 403

    res = api_client.post(
        "/api/line-message/send/contract-notification",
        payload,
        format="json",
        HTTP_X_API_KEY="test-notify-key",
    )
    assert res.status_code == 200
    assert res.json()["data"]["sent"] == 1

    messenger_cls.return_value.notify_admins.return_value = {"success": False, "sent": 0, "total": 1}
    res = api_client.post(
        "/api/line-message/send/contract-notification",
        payload,
        format="json",
        HTTP_X_API_KEY="test-notify-key",
    )
    assert res.status_code == 502


@pytest.mark.django_db
@mock.patch("bakery.line_messaging.MessagingApi")
def test_contract_notification_connection_error_is_bad_gateway(messaging_api, api_client):
    messaging_api.return_value.push_message.side_effect = ProtocolError("Connection reset")

    res = api_client.post(
        "/api/line-message/send/contract-notification",
        {"storeName": "晴日麵包", "representativeName": "林小晴"},
        format="json",
        HTTP_X_API_KEY="test-notify-key",
    )

    assert res.status_code == 502
    assert res.json()["data"] == {"success": False, "sent": 0, "total": 1}


def test_font_system_check_warns_when_missing(settings, monkeypatch):
    from commissions.checks import contract_font_check

    settings.CONTRACT_FONT_PATH = ""
    monkeypatch.setattr(contracts, "CJK_FONT_CANDIDATES", ())

    assert [w.id for w in contract_font_check(None)] == ["commissions.W001"]
