"""點數系統設定值 (資料庫優先，缺漏或停用時回到預設值)"""
from decimal import Decimal, InvalidOperation

from .models import PointSetting

DEFAULTS = {
    "points_system_enabled": ("true", "boolean", "控制整個點數系統的開關，關閉後用戶無法獲得或使用點數"),
    "purchase_reward_enabled": ("true", "boolean", "是否啟用購買商品後的點數回饋功能"),
    "virtual_card_enabled": ("true", "boolean", "是否啟用虛擬點數卡功能，允許販售和購買點數卡"),
    "point_usage_enabled": ("true", "boolean", "是否允許用戶使用點數抵扣訂單金額"),
    "earn_rate_percentage": ("1", "number", "每消費 100 元可獲得多少點數"),
    "min_order_amount_for_points": ("0", "number", "訂單金額需達到此金額才能獲得點數回饋"),
    "max_points_per_order": ("0", "number", "單筆訂單最多可獲得的點數上限，0 表示不限制"),
    "points_to_currency_rate": ("1", "number", "點數兌換成現金的比例，1點等於多少新台幣"),
    "max_points_usage_percentage": ("50", "number", "點數最多可以抵扣訂單金額的百分比"),
    "points_expire_days": ("365", "number", "點數從獲得日期開始的有效天數，設為 0 表示永不過期"),
    "POINTS_MIN_USE": ("1", "number", "每次使用點數的最低點數"),
    "VIRTUAL_CARD_MIN_AMOUNT": ("0", "number", "虛擬點數卡的最低購買金額"),
}

TRUE_VALUES = {"true", "1", "yes", "on"}

# 點數有效天數換算日期時不可超出 datetime 範圍
MAX_NUMBER = Decimal("1000000")


def ensure_defaults():
    """建立缺少的設定列，不覆寫既有值"""
    created = 0
    for key, (value, setting_type, description) in DEFAULTS.items():
        _, was_created = PointSetting.objects.get_or_create(
            setting_key=key,
            defaults={
                "setting_value": value,
                "setting_type": setting_type,
                "description": description,
            },
        )
        created += int(was_created)
    return created


def get_raw(key):
    row = PointSetting.objects.filter(setting_key=key, is_active=True).first()
    if row is not None:
        return row.setting_value
    return DEFAULTS[key][0] if key in DEFAULTS else None


def get_bool(key):
    return str(get_raw(key)).strip().lower() in TRUE_VALUES


def _parse_number(raw):
    """非負且有限的數值，上限 MAX_NUMBER；不合法回傳 None"""
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value < 0 or value > MAX_NUMBER:
        return None
    return value


def get_number(key):
    value = _parse_number(get_raw(key))
    if value is None:
        return Decimal(DEFAULTS[key][0])
    return value


def get_int(key):
    return int(get_number(key))


def system_enabled():
    return get_bool("points_system_enabled")


def validate_value(setting_type, value):
    text = str(value).strip()
    if setting_type == "boolean":
        return text.lower() in TRUE_VALUES | {"false", "0", "no", "off"}
    if setting_type == "number":
        return _parse_number(text) is not None
    return True
