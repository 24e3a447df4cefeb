import base64
import hashlib
import hmac
import json
from unittest import mock

import pytest
import requests
from linebot.v3.messaging import ApiException, TemplateMessage, TextMessage
from urllib3.exceptions import ProtocolError

from bakery import line_messaging
from bakery.line_messaging import LineMessenger
from bakery.linepay import LinePayHandler, is_success, payment_url


# --- LINE Pay ---
@mock.patch("bakery.linepay.requests.post")
def test_request_is_signed_with_channel_secret(post):
    post.return_value.json.return_value = {"returnCode": "0000"}
    handler = LinePayHandler(channel_id="1650000001", channel_secret="secret")

    result = handler.request_payment(
        "ORDER_SH202401010001", 240, [], "https://shop/confirm", "https://shop/cancel"
    )

    assert is_success(result)
    url = post.call_args.args[0]
    headers = post.call_args.kwargs["headers"]
    body = post.call_args.kwargs["data"]
    assert url == "https://sandbox-api-pay.line.me/v3/payments/request"
    assert headers["X-LINE-ChannelId"] == "1650000001"

    nonce = headers["X-LINE-Authorization-Nonce"]
    expected = base64.b64encode(
        hmac.new(
            b"secret",
            ("secret" + "/v3/payments/request" + body + nonce).encode("utf-8"),
            hashlib.sha256,
        ).digest()
    ).decode("utf-8")
    assert headers["X-LINE-Authorization"] == expected

    payload = json.loads(body)
    assert payload["amount"] == 240
    assert payload["currency"] == "TWD"
    assert payload["redirectUrls"]["cancelUrl"] == "https://shop/cancel"


@mock.patch("bakery.linepay.requests.post")
def test_production_url_and_refund_payload(post, settings):
    settings.LINE_PAY_SANDBOX = False
    post.return_value.json.return_value = {"returnCode": "0000"}

    LinePayHandler().refund_payment("T123", refund_amount=80)

    assert post.call_args.args[0] == "https://api-pay.line.me/v3/payments/T123/refund"
    assert json.loads(post.call_args.kwargs["data"]) == {"refundAmount": 80}


@mock.patch("bakery.linepay.requests.post")
def test_network_errors_become_failed_results(post):
    post.side_effect = requests.Timeout("slow")
    result = LinePayHandler().confirm_payment("T1", 100)
    assert result["returnCode"] == "HTTP_ERROR"
    assert not is_success(result)


def test_payment_url():
    assert payment_url({"info": {"paymentUrl": {"web": "https://pay"}}}) == "https://pay"


@pytest.mark.django_db
@mock.patch("bakery.linepay.requests.post")
def test_order_packages_balance_with_points_discount(post, customer, toast):
    from bakery import services
    from points import services as points_services

    post.return_value.json.return_value = {"returnCode": "0000"}
    points_services.credit(customer, 30, "admin_adjust")
    order = services.create_order(
        {"customer_name": "林小晴", "customer_phone": "0912345678", "payment_method": "line_pay"},
        [{"product_id": toast.id, "quantity": 2}],
        customer=customer,
        points_to_use=30,
    )

    LinePayHandler().request_order_payment(order, "https://c", "https://x")

    payload = json.loads(post.call_args.kwargs["data"])
    package = payload["packages"][0]
    assert payload["amount"] == 210
    assert package["amount"] == 210
    assert sum(p["price"] * p["quantity"] for p in package["products"]) == 210


# --- Messaging API ---
def test_templates_convert_to_sdk_messages():
    message = line_messaging.to_send_message(
        line_messaging.create_confirm_template_message("確認", "確定取消?", "是", "否", "yes", "no")
    )
    assert isinstance(message, TemplateMessage)
    assert message.template.actions[0].label == "是"
    assert message.template.actions[1].data == "no"


def test_buttons_template_with_uri_action():
    message = line_messaging.to_send_message(
        line_messaging.create_button_template_message(
            "合約已簽署",
            "晴日麵包",
            "點擊查看合約",
            [line_messaging.uri_action("查看", "https://shop.example.com/c.jpg")],
        )
    )
    assert message.alt_text == "合約已簽署"
    assert message.template.thumbnail_image_url is None
    assert message.template.actions[0].uri == "https://shop.example.com/c.jpg"


def test_push_sends_sdk_objects():
    api = mock.Mock()
    result = LineMessenger(api=api).push("U1", [line_messaging.create_text_message("哈囉")])

    assert result["success"] is True
    (request,) = api.push_message.call_args.args
    assert request.to == "U1"
    assert isinstance(request.messages[0], TextMessage)
    assert request.messages[0].text == "哈囉"


def test_push_api_error_is_reported_not_raised():
    api = mock.Mock()
    api.push_message.side_effect = ApiException(status=400, reason="Invalid to")

    result = LineMessenger(api=api).push("U1", [line_messaging.create_text_message("x")])

    assert result["success"] is False
    assert "Invalid to" in result["error"]


def test_push_connection_error_is_reported_not_raised():
    api = mock.Mock()
    api.push_message.side_effect = ProtocolError("Connection aborted.")

    result = LineMessenger(api=api).push("U1", [line_messaging.create_text_message("x")])

    assert result == {
        "success": False,
        "message": "訊息發送失敗",
        "error": "Connection aborted.",
    }


def test_push_skipped_without_token_or_recipient(settings):
    api = mock.Mock()
    assert LineMessenger(api=api).push("", [line_messaging.create_text_message("x")])["success"] is False
    settings.LINE_CHANNEL_ACCESS_TOKEN = ""
    assert LineMessenger(api=api).push("U1", [line_messaging.create_text_message("x")])["success"] is False
    api.push_message.assert_not_called()


def test_notify_admins_counts_deliveries(settings):
    settings.LINE_ADMIN_USER_IDS = ["Ua", "Ub"]
    api = mock.Mock()
    api.push_message.side_effect = [None, ApiException(status=500, reason="boom")]

    assert LineMessenger(api=api).notify_admins("新訂單") == {"success": False, "sent": 1, "total": 2}


def test_real_client_is_built_from_channel_token():
    messenger = LineMessenger(channel_token="token-abc")
    assert messenger.api.api_client.configuration.access_token == "token-abc"
