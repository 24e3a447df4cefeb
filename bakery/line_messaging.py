"""
LINE 訊息模板與推播

模板函式回傳 Messaging API 的 dict 格式，`LineMessenger` 負責轉成
line-bot-sdk v3 的 Message 物件並推播。
"""
import logging

from django.conf import settings
from linebot.v3.messaging import (
    ApiClient,
    ApiException,
    Configuration,
    Message,
    MessagingApi,
    PushMessageRequest,
)
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)


def create_text_message(text):
    return {"type": "text", "text": text}


def create_image_message(image_url, preview_url=None):
    return {
        "type": "image",
        "originalContentUrl": image_url,
        "previewImageUrl": preview_url or image_url,
    }


def create_button_template_message(alt_text, title, text, actions, thumbnail_url=None):
    template = {"type": "buttons", "title": title, "text": text, "actions": actions}
    if thumbnail_url:
        template["thumbnailImageUrl"] = thumbnail_url
    return {"type": "template", "altText": alt_text, "template": template}


def create_confirm_template_message(alt_text, text, yes_label, no_label, yes_data, no_data):
    return {
        "type": "template",
        "altText": alt_text,
        "template": {
            "type": "confirm",
            "text": text,
            "actions": [
                {"type": "postback", "label": yes_label, "data": yes_data},
                {"type": "postback", "label": no_label, "data": no_data},
            ],
        },
    }


def to_send_message(message):
    """依 type 轉成 TextMessage / ImageMessage / TemplateMessage"""
    return Message.from_dict(message)


def uri_action(label, uri):
    return {"type": "uri", "label": label, "uri": uri}


class LineMessenger:
    def __init__(self, channel_token=None, api=None):
        self.channel_token = channel_token or settings.LINE_CHANNEL_ACCESS_TOKEN
        self._api = api

    @property
    def api(self):
        if self._api is None:
            configuration = Configuration(access_token=self.channel_token)
            self._api = MessagingApi(ApiClient(configuration))
        return self._api

    @property
    def enabled(self):
        return bool(self.channel_token)

    def push(self, to, messages):
        """推播訊息給單一 LINE 使用者；API 或連線錯誤不往外丟，回傳結果 dict"""
        if not self.enabled:
            logger.warning("LINE push skipped: channel access token not configured")
            return {"success": False, "message": "LINE 推播未設定"}
        if not to:
            return {"success": False, "message": "缺少 LINE User ID"}

        request = PushMessageRequest(to=to, messages=[to_send_message(m) for m in messages])
        try:
            self.api.push_message(request)
        except (ApiException, HTTPError) as exc:
            logger.warning("Failed to push LINE message to %s: %s", to, exc)
            return {"success": False, "message": "訊息發送失敗", "error": str(exc)}
        return {"success": True, "message": "訊息發送成功"}

    def notify_admins(self, text):
        results = [
            self.push(admin_id, [create_text_message(text)])
            for admin_id in settings.LINE_ADMIN_USER_IDS
        ]
        return {
            "success": bool(results) and all(r["success"] for r in results),
            "sent": sum(1 for r in results if r["success"]),
            "total": len(results),
        }
