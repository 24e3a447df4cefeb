import logging

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

VERIFY_URL = "https://api.line.me/oauth2/v2.1/verify"


class LiffAuthError(Exception):
    pass


def verify_id_token(id_token):
    """向 LINE 驗證 LIFF ID Token，回傳使用者資料 (userId / displayName / pictureUrl / email)"""
    if not id_token:
        raise LiffAuthError("缺少 idToken")
    try:
        res = requests.post(
            VERIFY_URL,
            data={"id_token": id_token, "client_id": settings.LINE_LOGIN_CHANNEL_ID},
            timeout=10,
        )
    except requests.RequestException as exc:
        logger.error("LINE id token verification failed: %s", exc)
        raise LiffAuthError("LINE 驗證服務無法連線") from exc

    if res.status_code != 200:
        logger.info("LINE rejected id token: %s %s", res.status_code, res.text[:200])
        raise LiffAuthError("LINE 登入已失效，請重新登入")

    payload = res.json()
    return {
        "userId": payload.get("sub"),
        "displayName": payload.get("name", ""),
        "pictureUrl": payload.get("picture", ""),
        "email": payload.get("email", ""),
    }
