import base64
import hashlib
import hmac
import json
import logging
import uuid

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

SUCCESS_CODE = "0000"


def api_base_url():
    if settings.LINE_PAY_SANDBOX:
        return "https://sandbox-api-pay.line.me"
    return "https://api-pay.line.me"


def is_success(result):
    return bool(result) and result.get("returnCode") == SUCCESS_CODE


class LinePayHandler:
    """處理 LINE Pay API 簽章與請求的工具類（V3）"""

    def __init__(self, channel_id=None, channel_secret=None, timeout=10):
        self.channel_id = channel_id or settings.LINE_PAY_CHANNEL_ID
        self.channel_secret = channel_secret or settings.LINE_PAY_CHANNEL_SECRET
        self.timeout = timeout
        self.base_headers = {
            "Content-Type": "application/json",
            "X-LINE-ChannelId": self.channel_id,
        }

    def _get_auth_headers(self, uri, body_json: str):
        nonce = str(uuid.uuid4())
        message = self.channel_secret + uri + body_json + nonce
        signature = base64.b64encode(
            hmac.new(
                self.channel_secret.encode("utf-8"),
                message.encode("utf-8"),
                hashlib.sha256,
            ).digest()
        ).decode("utf-8")

        headers = self.base_headers.copy()
        headers.update(
            {"X-LINE-Authorization-Nonce": nonce, "X-LINE-Authorization": signature}
        )
        return headers

    def _post(self, uri, payload):
        body_json = json.dumps(payload)
        headers = self._get_auth_headers(uri, body_json)
        try:
            res = requests.post(
                f"{api_base_url()}{uri}",
                headers=headers,
                data=body_json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error("LINE Pay request %s failed: %s", uri, exc)
            return {"returnCode": "HTTP_ERROR", "returnMessage": str(exc)}
        try:
            return res.json()
        except ValueError:
            return {"returnCode": "HTTP_ERROR", "returnMessage": res.text}

    def request_payment(self, order_id, amount, packages, confirm_url, cancel_url):
        """LINE Pay Request API (V3)"""
        payload = {
            "amount": int(amount),
            "currency": "TWD",
            "orderId": order_id,
            "packages": packages,
            "redirectUrls": {"confirmUrl": confirm_url, "cancelUrl": cancel_url},
        }
        return self._post("/v3/payments/request", payload)

    def request_order_payment(self, order, confirm_url, cancel_url):
        products = [
            {"name": item.product_name, "quantity": item.quantity, "price": item.price}
            for item in order.items.all()
        ]
        if order.points_discount or order.shipping_fee:
            # LINE Pay 要求 packages 金額等於商品總和，運費與折抵併入一筆調整項
            adjustment = order.shipping_fee - order.points_discount
            products.append({"name": "運費/點數折抵", "quantity": 1, "price": adjustment})
        packages = [
            {"id": f"PKG_{order.id}", "amount": int(order.total_amount), "products": products}
        ]
        return self.request_payment(
            f"ORDER_{order.order_number}",
            order.total_amount,
            packages,
            confirm_url,
            cancel_url,
        )

    def confirm_payment(self, transaction_id, amount):
        """LINE Pay Confirm API (V3)"""
        uri = f"/v3/payments/{transaction_id}/confirm"
        return self._post(uri, {"amount": int(amount), "currency": "TWD"})

    def refund_payment(self, transaction_id, refund_amount=None):
        """
        LINE Pay Refund API (V3)
        - refund_amount=None：全額退
        - refund_amount=int：部分退
        """
        uri = f"/v3/payments/{transaction_id}/refund"
        payload = {}
        if refund_amount is not None:
            payload["refundAmount"] = int(refund_amount)
        return self._post(uri, payload)


def payment_url(result):
    return result["info"]["paymentUrl"]["web"]
