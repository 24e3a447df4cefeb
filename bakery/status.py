"""訂單狀態轉換規則"""
from .exceptions import InvalidStatusTransition

STATUS_LABELS = {
    "pending": "待處理",
    "processing": "處理中",
    "shipped": "已出貨",
    "delivered": "已送達",
    "cancelled": "已取消",
}

TRANSITIONS = {
    "pending": ("processing", "shipped", "delivered", "cancelled"),
    "processing": ("shipped", "delivered", "cancelled"),
    "shipped": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}

# 訂單狀態改變時，配送狀態跟著同步
SHIPPING_STATUS_FOR = {
    "pending": "pending",
    "processing": "processing",
    "shipped": "shipped",
    "delivered": "delivered",
    "cancelled": "cancelled",
}


def normalize_status(value):
    """接受大小寫或中文標籤，回傳小寫狀態代碼"""
    if not value:
        raise InvalidStatusTransition("缺少訂單狀態")
    text = str(value).strip()
    lowered = text.lower()
    if lowered in STATUS_LABELS:
        return lowered
    for code, label in STATUS_LABELS.items():
        if label == text:
            return code
    raise InvalidStatusTransition(f"未知的訂單狀態: {value}")


def get_status_display(value):
    try:
        return STATUS_LABELS[normalize_status(value)]
    except InvalidStatusTransition:
        return str(value)


def available_transitions(current):
    return list(TRANSITIONS.get(normalize_status(current), ()))


def can_transition(current, target):
    return normalize_status(target) in available_transitions(current)


def can_cancel(current):
    return normalize_status(current) in ("pending", "processing")


def can_edit(current):
    return normalize_status(current) not in ("cancelled", "delivered")


def ensure_transition(current, target):
    target = normalize_status(target)
    if target not in available_transitions(current):
        raise InvalidStatusTransition(
            f"訂單無法從「{get_status_display(current)}」變更為「{STATUS_LABELS[target]}」"
        )
    return target
