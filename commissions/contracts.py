"""
加盟門市合約簽署

流程：產生合約圖片 → 經上傳流程存檔 → 確認圖片網址可讀取 → LINE 通知簽署人與管理員。
通知失敗不影響簽署結果，只記錄狀態。
"""
import base64
import binascii
import io
import logging
import os
import re
import time

import requests
from django.conf import settings
from django.utils import timezone
from PIL import Image, ImageDraw, ImageFont

from bakery import line_messaging
from bakery.exceptions import BakeryError, ServiceMisconfigured
from bakery.uploads import absolute_url, store_image

from .models import ContractApplication

logger = logging.getLogger(__name__)

A4_SIZE = (794, 1123)
MARGIN = 60
CONTRACT_DESTINATION = "uploads/contracts"
VERIFY_ATTEMPTS = 3

# 未設定 CONTRACT_FONT_PATH 時依序尋找的中文字型
CJK_FONT_CANDIDATES = (
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/google-noto-cjk/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansTC-Regular.ttf",
    "/usr/share/fonts/truetype/wqy/wqy-microhei.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/Library/Fonts/Arial Unicode.ttf",
    "/System/Library/Fonts/PingFang.ttc",
)

TAX_ID_PATTERN = re.compile(r"^\d{8}$")
NATIONAL_ID_PATTERN = re.compile(r"^[A-Z][12]\d{8}$")
DATA_URL_PATTERN = re.compile(r"^data:image/(png|jpe?g);base64,(.+)$", re.DOTALL)

HEADQUARTERS = "屹澧股份有限公司"

CONTRACT_TITLES = {
    "bread": "麵包販售合作協議",
    "commission": "業務分潤合作協議",
}

CONTRACT_TERMS = {
    "bread": [
        ("第一條｜合作目的", "乙方同意依本協議於門市內販售由甲方提供之麵包產品，並遵守甲方所訂定之各項規範。"),
        ("第二條｜供應與銷售方式", "麵包商品須全數由甲方指定之供應商提供，並依甲方公告之建議售價販售，不得擅自調降售價或於其他通路販售。"),
        ("第三條｜品質與保存規範", "乙方須依甲方提供之保存條件落實先進先出，不得販售過期、變質或不新鮮之商品。"),
        ("第四條｜品牌與宣傳規範", "相關包裝、社群貼文與宣傳物料須經甲方審核授權後方可發布。"),
        ("第五條｜責任歸屬與違約處理", "商品自乙方簽收後風險轉移至乙方；乙方違約經通知限期未改善者，甲方得終止合作。"),
        ("第六條｜協議期間與終止", "本協議有效期間與原加盟合約相同，加盟合約終止時本協議亦自動終止。"),
        ("第七條｜其他約定", "本協議為加盟合約之延伸條款，甲方得於公告後更新協議內容。"),
    ],
    "commission": [
        ("第一條｜合作目的", "乙方協助推廣甲方商品，並依甲方指定之分潤方案取得業務分潤。"),
        ("第二條｜分潤計算", "分潤以已送達之訂單金額為基礎，依分潤方案之比例或級距計算，取至小數點後兩位。"),
        ("第三條｜支付方式", "甲方於每期結算後支付分潤，已取消之訂單不列入分潤。"),
        ("第四條｜協議期間與終止", "合約期間依甲方核定之起訖日期，任一方違約時他方得終止本協議。"),
    ],
}


def validate_application(data):
    errors = {}
    for field in ("store_name", "company_name", "representative_name", "address"):
        if not str(data.get(field) or "").strip():
            errors[field] = "此欄位為必填"
    if not TAX_ID_PATTERN.match(str(data.get("tax_id") or "")):
        errors["tax_id"] = "統一編號須為 8 碼數字"
    if not NATIONAL_ID_PATTERN.match(str(data.get("representative_id") or "").upper()):
        errors["representative_id"] = "身分證字號格式錯誤"
    if data.get("contract_type", "bread") not in CONTRACT_TITLES:
        errors["contract_type"] = "未知的合約類型"
    if errors:
        raise BakeryError("資料格式錯誤", errors=errors)


def decode_signature(data_url):
    """data:image/png;base64,... 轉成 PIL Image"""
    match = DATA_URL_PATTERN.match(data_url or "")
    if not match:
        raise BakeryError("簽名格式錯誤")
    try:
        raw = base64.b64decode(match.group(2), validate=False)
        image = Image.open(io.BytesIO(raw))
        image.load()
    except (binascii.Error, OSError) as exc:
        raise BakeryError("簽名圖片無法解析") from exc
    return image


def flatten(signature):
    """透明背景的簽名貼到白底"""
    rgba = signature.convert("RGBA")
    canvas = Image.new("RGB", rgba.size, "white")
    canvas.paste(rgba, mask=rgba)
    return canvas


def contract_font_path():
    """合約字型路徑：CONTRACT_FONT_PATH 優先，其次系統中文字型；都沒有時回傳 None"""
    configured = getattr(settings, "CONTRACT_FONT_PATH", "")
    candidates = [configured] if configured else CJK_FONT_CANDIDATES
    for path in candidates:
        if os.path.isfile(path):
            return path
    return None


def _font(size):
    # PIL 內建字型沒有中文字，找不到字型時不產生合約
    path = contract_font_path()
    if path is None:
        logger.error(
            "No CJK font for contracts (CONTRACT_FONT_PATH=%r)",
            getattr(settings, "CONTRACT_FONT_PATH", ""),
        )
        raise ServiceMisconfigured("合約字型未設定，暫時無法產生合約")
    return ImageFont.truetype(path, size)


def _wrap(draw, text, font, width):
    lines, current = [], ""
    for char in text:
        trial = current + char
        if draw.textlength(trial, font=font) > width and current:
            lines.append(current)
            current = char
        else:
            current = trial
    if current:
        lines.append(current)
    return lines


def render_contract(application, signature):
    """以 A4 (794x1123) 畫出合約，回傳 JPEG bytes"""
    page = Image.new("RGB", A4_SIZE, "white")
    draw = ImageDraw.Draw(page)
    title_font, heading_font, body_font = _font(28), _font(16), _font(14)
    text_width = A4_SIZE[0] - MARGIN * 2

    title = CONTRACT_TITLES[application.contract_type]
    draw.text((A4_SIZE[0] / 2, 60), title, font=title_font, fill="black", anchor="mm")

    y = 110
    parties = [
        f"甲方：{HEADQUARTERS}（以下簡稱「總部」）",
        f"乙方：{application.company_name}（以下簡稱「加盟主」）",
        f"門市名稱：{application.store_name}　統一編號：{application.tax_id}",
        f"地址：{application.address}",
    ]
    for line in parties:
        draw.text((MARGIN, y), line, font=body_font, fill="black")
        y += 24

    y += 12
    for heading, body in CONTRACT_TERMS[application.contract_type]:
        draw.text((MARGIN, y), heading, font=heading_font, fill="black")
        y += 24
        for line in _wrap(draw, body, body_font, text_width - 16):
            draw.text((MARGIN + 16, y), line, font=body_font, fill="black")
            y += 20
        y += 10

    # 簽名區
    sign_top = A4_SIZE[1] - 260
    draw.line((MARGIN, sign_top, A4_SIZE[0] - MARGIN, sign_top), fill="#999999")
    draw.text((MARGIN, sign_top + 16), f"甲方：{HEADQUARTERS}", font=body_font, fill="black")
    draw.text((A4_SIZE[0] / 2, sign_top + 16), "乙方代表人簽名：", font=body_font, fill="black")

    sig = signature.convert("RGBA")
    sig.thumbnail((260, 110))
    page.paste(sig, (int(A4_SIZE[0] / 2), sign_top + 44), sig)

    draw.text(
        (A4_SIZE[0] / 2, sign_top + 166),
        f"負責人：{application.representative_name}",
        font=body_font,
        fill="black",
    )
    draw.text(
        (A4_SIZE[0] / 2, sign_top + 190),
        f"簽署日期：{application.sign_date:%Y/%m/%d}",
        font=body_font,
        fill="black",
    )

    out = io.BytesIO()
    page.save(out, format="JPEG", quality=90)
    return out.getvalue()


def verify_image_available(url, attempts=VERIFY_ATTEMPTS, sleep=time.sleep):
    """HEAD 檢查圖片網址，失敗時等待 attempt 秒後重試"""
    for attempt in range(1, attempts + 1):
        try:
            res = requests.head(url, timeout=10, allow_redirects=True)
            if res.ok:
                return True
            logger.warning("Image check %s/%s failed (%s): %s", attempt, attempts, res.status_code, url)
        except requests.RequestException as exc:
            logger.warning("Image check %s/%s error: %s", attempt, attempts, exc)
        if attempt < attempts:
            sleep(attempt * 1)
    return False


def admin_notification_text(store_name, representative_name, contract_type):
    return (
        "📝 新合約簽署通知\n\n"
        f"門市：{store_name}\n"
        f"負責人：{representative_name}\n"
        f"合約類型：{contract_type}\n"
        f"簽署日期：{timezone.localdate():%Y/%m/%d}"
    )


def notify(application, image_url, messenger=None, sleep=time.sleep):
    """推播合約給簽署人並通知管理員，回傳簽署人是否收到"""
    messenger = messenger or line_messaging.LineMessenger()
    signer_notified = False

    if application.line_user_id:
        if verify_image_available(image_url, sleep=sleep):
            title = CONTRACT_TITLES[application.contract_type]
            result = messenger.push(
                application.line_user_id,
                [
                    line_messaging.create_text_message(
                        f"您的{title}已成功簽署！\n\n感謝您的加入，後續將有專人與您聯繫相關細節。"
                    ),
                    line_messaging.create_image_message(image_url),
                ],
            )
            signer_notified = result["success"]
        else:
            logger.error("Contract image never became available: %s", image_url)

    messenger.notify_admins(
        admin_notification_text(
            application.store_name,
            application.representative_name,
            application.get_contract_type_display(),
        )
    )
    return signer_notified


def sign_contract(data, customer=None, messenger=None, sleep=time.sleep):
    """建立合約紀錄、產生圖片並通知；回傳 (application, image_url, signer_notified)"""
    validate_application(data)
    signature = decode_signature(data.get("signature"))

    application = ContractApplication(
        customer=customer,
        line_user_id=data.get("line_user_id") or (customer.line_id if customer else "") or "",
        contract_type=data.get("contract_type", "bread"),
        store_name=data["store_name"].strip(),
        company_name=data["company_name"].strip(),
        tax_id=data["tax_id"],
        representative_name=data["representative_name"].strip(),
        representative_id=data["representative_id"].upper(),
        address=data["address"].strip(),
    )
    contract_jpeg = render_contract(application, signature)
    sig_buffer = io.BytesIO()
    flatten(signature).save(sig_buffer, format="JPEG", quality=90)
    sig_path, _ = store_image(sig_buffer.getvalue(), CONTRACT_DESTINATION, "signature.jpg")
    contract_path, contract_url = store_image(contract_jpeg, CONTRACT_DESTINATION, "contract.jpg")
    application.signature_image = sig_path
    application.contract_image = contract_path
    application.save()
    logger.info("Contract #%s signed by %s", application.pk, application.store_name)

    image_url = absolute_url(contract_url)
    try:
        signer_notified = notify(application, image_url, messenger=messenger, sleep=sleep)
    except Exception:
        # 通知屬於附帶流程，失敗只留紀錄
        logger.exception("Contract #%s notification failed", application.pk)
        signer_notified = False

    application.status = "notified" if signer_notified else "failed"
    application.save(update_fields=["status"])
    return application, image_url, signer_notified
