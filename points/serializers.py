from rest_framework import serializers

from . import conf
from .models import (
    PointAccount,
    PointSetting,
    PointTransaction,
    VirtualCardProduct,
    VirtualCardPurchase,
)


class UserPointsSerializer(serializers.ModelSerializer):
    lineUserId = serializers.IntegerField(source="customer.id", read_only=True)
    lineId = serializers.CharField(source="customer.line_id", read_only=True, default="")
    displayName = serializers.CharField(source="customer.display_name", read_only=True)
    name = serializers.CharField(source="customer.name", read_only=True)
    email = serializers.CharField(source="customer.email", read_only=True)
    phone = serializers.CharField(source="customer.phone", read_only=True)
    totalEarnedPoints = serializers.IntegerField(source="total_earned")
    totalUsedPoints = serializers.IntegerField(source="total_used")
    availablePoints = serializers.IntegerField(source="available")
    pendingPoints = serializers.IntegerField(source="pending")
    expiredPoints = serializers.IntegerField(source="expired")
    lastEarnedAt = serializers.DateTimeField(source="last_earned_at")
    lastUsedAt = serializers.DateTimeField(source="last_used_at")
    createdAt = serializers.DateTimeField(source="created_at")
    updatedAt = serializers.DateTimeField(source="updated_at")

    class Meta:
        model = PointAccount
        fields = [
            "lineUserId",
            "lineId",
            "displayName",
            "name",
            "email",
            "phone",
            "totalEarnedPoints",
            "totalUsedPoints",
            "availablePoints",
            "pendingPoints",
            "expiredPoints",
            "lastEarnedAt",
            "lastUsedAt",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = fields


class PointTransactionSerializer(serializers.ModelSerializer):
    lineUserId = serializers.IntegerField(source="account.customer_id", read_only=True)
    orderId = serializers.IntegerField(source="order_id", read_only=True)
    virtualCardPurchaseId = serializers.IntegerField(
        source="virtual_card_purchase_id", read_only=True
    )
    transactionType = serializers.CharField(source="transaction_type")
    pointsBefore = serializers.IntegerField(source="points_before")
    pointsAfter = serializers.IntegerField(source="points_after")
    expiresAt = serializers.DateTimeField(source="expires_at")
    createdBy = serializers.CharField(source="created_by")
    createdAt = serializers.DateTimeField(source="created_at")
    referenceData = serializers.JSONField(source="reference_data")
    lineUser = serializers.SerializerMethodField()
    order = serializers.SerializerMethodField()

    class Meta:
        model = PointTransaction
        fields = [
            "id",
            "lineUserId",
            "orderId",
            "virtualCardPurchaseId",
            "transactionType",
            "points",
            "pointsBefore",
            "pointsAfter",
            "remaining",
            "expiresAt",
            "description",
            "status",
            "createdBy",
            "createdAt",
            "referenceData",
            "lineUser",
            "order",
        ]
        read_only_fields = fields

    def get_lineUser(self, obj):
        customer = obj.account.customer
        return {"id": customer.pk, "displayName": customer.display_name, "name": customer.name}

    def get_order(self, obj):
        if obj.order_id is None:
            return None
        return {"id": obj.order_id, "orderNumber": obj.order.order_number}


class PointAdjustSerializer(serializers.Serializer):
    lineUserId = serializers.CharField()
    points = serializers.IntegerField(min_value=1, required=False)
    # 舊版後台以 amount 傳點數
    amount = serializers.IntegerField(min_value=1, required=False)
    description = serializers.CharField(required=False, allow_blank=True, default="")
    adminNote = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        points = attrs.get("points") or attrs.get("amount")
        if not points:
            raise serializers.ValidationError({"points": "請輸入點數"})
        attrs["points"] = points
        return attrs


class PointSettingSerializer(serializers.ModelSerializer):
    settingKey = serializers.CharField(source="setting_key", read_only=True)
    settingValue = serializers.CharField(source="setting_value")
    settingType = serializers.CharField(source="setting_type", read_only=True)
    isActive = serializers.BooleanField(source="is_active", required=False)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = PointSetting
        fields = [
            "id",
            "settingKey",
            "settingValue",
            "settingType",
            "description",
            "isActive",
            "createdAt",
            "updatedAt",
        ]
        read_only_fields = ["id", "description"]

    def validate(self, attrs):
        setting_type = self.instance.setting_type if self.instance else "string"
        value = attrs.get("setting_value")
        if value is not None and not conf.validate_value(setting_type, value):
            raise serializers.ValidationError({"settingValue": f"{value} 不是有效的 {setting_type} 值"})
        return attrs


class SettingUpdateItemSerializer(serializers.Serializer):
    id = serializers.IntegerField(required=False)
    settingKey = serializers.CharField(required=False)
    settingValue = serializers.CharField()


class SettingsUpdateSerializer(serializers.Serializer):
    settings = SettingUpdateItemSerializer(many=True, allow_empty=False)


class ExportRequestSerializer(serializers.Serializer):
    type = serializers.ChoiceField(choices=["transactions", "user_points", "virtual_card_purchases"])
    startDate = serializers.DateField(required=False)
    endDate = serializers.DateField(required=False)
    format = serializers.ChoiceField(choices=["json", "csv"], default="json")


class VirtualCardProductSerializer(serializers.ModelSerializer):
    pointsValue = serializers.IntegerField(source="points_value", min_value=1)
    imageUrl = serializers.CharField(
        source="image_url", required=False, allow_blank=True, default=""
    )
    displayOrder = serializers.IntegerField(source="display_order", required=False, default=0)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    updatedAt = serializers.DateTimeField(source="updated_at", read_only=True)

    class Meta:
        model = VirtualCardProduct
        fields = [
            "id",
            "name",
            "description",
            "price",
            "pointsValue",
            "imageUrl",
            "status",
            "displayOrder",
            "createdAt",
            "updatedAt",
        ]


class ProductStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=VirtualCardProduct.STATUS_CHOICES)


class VirtualCardPurchaseSerializer(serializers.ModelSerializer):
    lineUserId = serializers.IntegerField(source="customer_id", read_only=True)
    virtualCardProductId = serializers.IntegerField(source="product_id", read_only=True)
    paymentMethod = serializers.CharField(source="payment_method")
    paymentStatus = serializers.CharField(source="payment_status")
    pointsRedeemed = serializers.IntegerField(source="points_redeemed")
    purchasePrice = serializers.IntegerField(source="purchase_price")
    transactionId = serializers.CharField(source="transaction_id")
    ipAddress = serializers.CharField(source="ip_address", default=None)
    userAgent = serializers.CharField(source="user_agent")
    paymentDetails = serializers.JSONField(source="payment_details")
    createdAt = serializers.DateTimeField(source="created_at")
    updatedAt = serializers.DateTimeField(source="updated_at")
    virtualCardProduct = VirtualCardProductSerializer(source="product", read_only=True)
    lineUser = serializers.SerializerMethodField()

    class Meta:
        model = VirtualCardPurchase
        fields = [
            "id",
            "lineUserId",
            "virtualCardProductId",
            "paymentMethod",
            "paymentStatus",
            "pointsRedeemed",
            "purchasePrice",
            "transactionId",
            "ipAddress",
            "userAgent",
            "notes",
            "paymentDetails",
            "createdAt",
            "updatedAt",
            "virtualCardProduct",
            "lineUser",
        ]
        read_only_fields = fields

    def get_lineUser(self, obj):
        return {
            "id": obj.customer_id,
            "displayName": obj.customer.display_name,
            "name": obj.customer.name,
        }


class PurchaseRequestSerializer(serializers.Serializer):
    productId = serializers.IntegerField()
    paymentMethod = serializers.ChoiceField(choices=VirtualCardPurchase.PAYMENT_METHOD_CHOICES)


class PaymentStatusSerializer(serializers.Serializer):
    paymentStatus = serializers.ChoiceField(choices=VirtualCardPurchase.PAYMENT_STATUS_CHOICES)
    transactionId = serializers.CharField(required=False, allow_blank=True, default="")
    paymentDetails = serializers.JSONField(required=False, default=None)
    adminNote = serializers.CharField(required=False, allow_blank=True, default="")
