"""分潤方案規則：驗證與費率計算"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from bakery.exceptions import BakeryError

CENT = Decimal("0.01")


def _to_decimal(value, field):
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise BakeryError(f"{field} 必須是數字")


def normalize_tiers(tiers):
    """檢查階梯規則並依下限排序；上限為 None 代表無上限 (只能是最後一階)"""
    if not tiers:
        raise BakeryError("階梯式方案至少需要一個級距")

    normalized = []
    for tier in tiers:
        low = _to_decimal(tier.get("min_amount", 0), "級距下限")
        raw_high = tier.get("max_amount")
        high = None if raw_high in (None, "") else _to_decimal(raw_high, "級距上限")
        rate = _to_decimal(tier.get("rate"), "分潤比例")
        if low < 0 or (high is not None and high < 0):
            raise BakeryError("級距金額不可為負數")
        if high is not None and high <= low:
            raise BakeryError("級距上限必須大於下限")
        if not (0 <= rate <= 100):
            raise BakeryError("分潤比例必須介於 0 到 100")
        normalized.append({"min_amount": low, "max_amount": high, "rate": rate})

    normalized.sort(key=lambda t: t["min_amount"])
    for current, following in zip(normalized, normalized[1:]):
        if current["max_amount"] is None or current["max_amount"] > following["min_amount"]:
            raise BakeryError("級距範圍不可重疊")
    return normalized


def validate_plan(rule_type, fixed_rate=None, tiered_rules=None):
    """回傳可直接寫入模型的 (fixed_rate, tiered_rules)"""
    if rule_type == "fixed":
        if fixed_rate in (None, ""):
            raise BakeryError("固定比例方案需要設定分潤比例")
        rate = _to_decimal(fixed_rate, "分潤比例")
        if not (0 <= rate <= 100):
            raise BakeryError("分潤比例必須介於 0 到 100")
        return rate, None
    if rule_type == "tiered":
        tiers = normalize_tiers(tiered_rules)
        # JSONField 不接受 Decimal
        stored = [
            {
                "min_amount": float(t["min_amount"]),
                "max_amount": None if t["max_amount"] is None else float(t["max_amount"]),
                "rate": float(t["rate"]),
            }
            for t in tiers
        ]
        return None, stored
    raise BakeryError("未知的分潤規則類型")


def rate_for(plan, amount):
    """依方案取得適用費率 (百分比)"""
    amount = Decimal(str(amount))
    if plan.rule_type == "fixed":
        return Decimal(str(plan.fixed_rate or 0))
    for tier in sorted(plan.tiered_rules or [], key=lambda t: Decimal(str(t["min_amount"]))):
        low = Decimal(str(tier["min_amount"]))
        high = tier.get("max_amount")
        if amount >= low and (high is None or amount < Decimal(str(high))):
            return Decimal(str(tier["rate"]))
    return Decimal("0")


def commission_for(amount, rate):
    value = Decimal(str(amount)) * Decimal(str(rate)) / Decimal(100)
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
