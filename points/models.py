from django.db import models
from django.utils import timezone


class PointSetting(models.Model):
    """點數系統設定 (key / value)"""

    TYPE_CHOICES = [
        ("boolean", "開關"),
        ("number", "數值"),
        ("string", "文字"),
    ]

    setting_key = models.CharField(max_length=64, unique=True, verbose_name="設定鍵")
    setting_value = models.CharField(max_length=255, verbose_name="設定值")
    setting_type = models.CharField(
        max_length=10, choices=TYPE_CHOICES, default="string", verbose_name="型別"
    )
    description = models.CharField(max_length=255, blank=True, verbose_name="說明")
    is_active = models.BooleanField(default=True, verbose_name="啟用")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "點數設定"
        verbose_name_plural = "點數設定"
        ordering = ["id"]

    def __str__(self):
        return f"{self.setting_key}={self.setting_value}"


class PointAccount(models.Model):
    """顧客點數帳戶 (餘額快照，明細以 PointTransaction 為準)"""

    customer = models.OneToOneField(
        "bakery.Customer", on_delete=models.CASCADE, related_name="point_account"
    )
    total_earned = models.PositiveIntegerField(default=0, verbose_name="累計獲得")
    total_used = models.PositiveIntegerField(default=0, verbose_name="累計使用")
    available = models.PositiveIntegerField(default=0, verbose_name="可用點數")
    pending = models.PositiveIntegerField(default=0, verbose_name="待入帳")
    expired = models.PositiveIntegerField(default=0, verbose_name="已過期")
    last_earned_at = models.DateTimeField(null=True, blank=True)
    last_used_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "點數帳戶"
        verbose_name_plural = "點數帳戶"

    def __str__(self):
        return f"{self.customer} ({self.available} 點)"


class PointTransaction(models.Model):
    TYPE_CHOICES = [
        ("earn_purchase", "購物回饋"),
        ("use_payment", "消費折抵"),
        ("virtual_card_redeem", "點數卡儲值"),
        ("admin_adjust", "管理員調整"),
        ("refund", "取消退還"),
        ("expire", "點數過期"),
    ]

    STATUS_CHOICES = [
        ("pending", "處理中"),
        ("completed", "已完成"),
        ("failed", "失敗"),
        ("cancelled", "已取消"),
    ]

    account = models.ForeignKey(
        PointAccount, on_delete=models.CASCADE, related_name="transactions"
    )
    order = models.ForeignKey(
        "bakery.Order",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="point_transactions",
    )
    virtual_card_purchase = models.ForeignKey(
        "points.VirtualCardPurchase",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="point_transactions",
    )
    transaction_type = models.CharField(max_length=24, choices=TYPE_CHOICES)
    # 入帳為正、扣點為負
    points = models.IntegerField()
    points_before = models.PositiveIntegerField()
    points_after = models.PositiveIntegerField()
    # 入帳批次尚未被使用或過期的點數
    remaining = models.PositiveIntegerField(default=0)
    expires_at = models.DateTimeField(null=True, blank=True)
    description = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default="completed")
    created_by = models.CharField(max_length=64, default="system")
    reference_data = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        verbose_name = "點數交易"
        verbose_name_plural = "點數交易"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.get_transaction_type_display()} {self.points:+d}"

    @property
    def is_credit(self):
        return self.points > 0


class VirtualCardProduct(models.Model):
    STATUS_CHOICES = [
        ("active", "販售中"),
        ("inactive", "停售"),
    ]

    name = models.CharField(max_length=100, verbose_name="名稱")
    description = models.TextField(blank=True, verbose_name="說明")
    price = models.PositiveIntegerField(verbose_name="售價")
    points_value = models.PositiveIntegerField(verbose_name="儲值點數")
    image_url = models.CharField(max_length=255, blank=True, verbose_name="圖片")
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="active")
    display_order = models.PositiveIntegerField(default=0, verbose_name="排序")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "虛擬點數卡"
        verbose_name_plural = "虛擬點數卡"
        ordering = ["display_order", "id"]

    def __str__(self):
        return f"{self.name} (${self.price} → {self.points_value} 點)"


class VirtualCardPurchase(models.Model):
    PAYMENT_METHOD_CHOICES = [
        ("credit_card", "信用卡"),
        ("line_pay", "LINE Pay"),
        ("bank_transfer", "銀行轉帳"),
        ("cash", "現金"),
    ]

    PAYMENT_STATUS_CHOICES = [
        ("pending", "待付款"),
        ("paid", "已付款"),
        ("failed", "付款失敗"),
        ("cancelled", "已取消"),
    ]

    customer = models.ForeignKey(
        "bakery.Customer", on_delete=models.PROTECT, related_name="card_purchases"
    )
    product = models.ForeignKey(
        VirtualCardProduct, on_delete=models.PROTECT, related_name="purchases"
    )
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES)
    payment_status = models.CharField(
        max_length=12, choices=PAYMENT_STATUS_CHOICES, default="pending"
    )
    points_redeemed = models.PositiveIntegerField(default=0)
    purchase_price = models.PositiveIntegerField()
    transaction_id = models.CharField(max_length=64, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    payment_details = models.JSONField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "點數卡購買紀錄"
        verbose_name_plural = "點數卡購買紀錄"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"#{self.pk} {self.product.name} - {self.get_payment_status_display()}"
