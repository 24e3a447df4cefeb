from rest_framework import status


class BakeryError(Exception):
    """業務規則錯誤，由 API 統一轉成 JSON 回應"""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "請求無法處理"

    def __init__(self, message=None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)


class InvalidStatusTransition(BakeryError):
    default_message = "訂單狀態無法變更"


class OrderNotEditable(BakeryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "訂單已結案，無法修改"


class InsufficientStock(BakeryError):
    default_message = "庫存不足"


class InsufficientPoints(BakeryError):
    default_message = "點數餘額不足"


class FeatureDisabled(BakeryError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "此功能目前未開放"


class PaymentError(BakeryError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "付款服務異常"


class UploadRejected(BakeryError):
    default_message = "檔案上傳失敗"


class ResourceInUse(BakeryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "資料仍被使用中，無法刪除"


class ProductNotFound(BakeryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "找不到商品資料"


class CommissionNotActivated(BakeryError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "分潤合約尚未生效"

    def __init__(self, message=None, **extra):
        extra.setdefault("code", "commission_not_activated")
        super().__init__(message, **extra)


class ServiceMisconfigured(BakeryError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "服務設定不完整，請聯繫管理員"
