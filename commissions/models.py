from django.conf import settings
from django.db import models
from django.utils import timezone


class CommissionPlan(models.Model):
    """分潤方案：固定比例或階梯式"""

    RULE_TYPE_CHOICES = [
        ("fixed", "固定比例"),
        ("tiered", "階梯式"),
    ]

    STATUS_CHOICES = [
        ("active", "啟用"),
        ("inactive", "停用"),
    ]

    name = models.CharField(max_length=100, verbose_name="方案名稱")
    description = models.TextField(blank=True, verbose_name="說明")
    rule_type = models.CharField(max_length=10, choices=RULE_TYPE_CHOICES, default="fixed")
    # 百分比，例如 5.5 代表 5.5%
    fixed_rate = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    # [{"min_amount": 0, "max_amount": 10000, "rate": 3}, {"min_amount": 10000, "max_amount": null, "rate": 5}]
    tiered_rules = models.JSONField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="active")
    effective_date = models.DateField(default=timezone.localdate)
    expiry_date = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "分潤方案"
        verbose_name_plural = "分潤方案"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.name

    def is_effective_on(self, day):
        if self.status != "active":
            return False
        if self.effective_date and day < self.effective_date:
            return False
        if self.expiry_date and day > self.expiry_date:
            return False
        return True


class Salesperson(models.Model):
    STATUS_CHOICES = [
        ("active", "在職"),
        ("inactive", "停用"),
    ]

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="salesperson_profile",
    )
    name = models.CharField(max_length=100, verbose_name="姓名")
    company_name = models.CharField(max_length=100, blank=True, verbose_name="公司名稱")
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    line_id = models.CharField(max_length=64, blank=True, verbose_name="LINE User ID")
    commission_plan = models.ForeignKey(
        CommissionPlan,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="salespersons",
        verbose_name="分潤方案",
    )
    contract_start_date = models.DateField(null=True, blank=True, verbose_name="合約開始")
    contract_end_date = models.DateField(null=True, blank=True, verbose_name="合約結束")
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="active")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "業務"
        verbose_name_plural = "業務"
        ordering = ["id"]

    def __str__(self):
        return self.company_name or self.name

    def has_active_contract(self, day=None):
        day = day or timezone.localdate()
        if self.status != "active" or self.commission_plan_id is None:
            return False
        if self.contract_start_date is None or day < self.contract_start_date:
            return False
        if self.contract_end_date and day > self.contract_end_date:
            return False
        return True


class CommissionRecord(models.Model):
    STATUS_CHOICES = [
        ("calculated", "已計算"),
        ("paid", "已支付"),
        ("cancelled", "已取消"),
    ]

    order = models.OneToOneField(
        "bakery.Order", on_delete=models.PROTECT, related_name="commission_record"
    )
    salesperson = models.ForeignKey(
        Salesperson, on_delete=models.PROTECT, related_name="commission_records"
    )
    plan = models.ForeignKey(
        CommissionPlan,
        on_delete=models.SET_NULL,
        null=True,
        related_name="commission_records",
    )
    order_amount = models.DecimalField(max_digits=12, decimal_places=2)
    commission_rate = models.DecimalField(max_digits=5, decimal_places=2)
    commission_amount = models.DecimalField(max_digits=12, decimal_places=2)
    rule_name = models.CharField(max_length=100, blank=True)
    rule_type = models.CharField(max_length=10, blank=True)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default="calculated")
    batch_id = models.CharField(max_length=40, blank=True, db_index=True)
    payment_reference = models.CharField(max_length=100, blank=True)
    payment_method = models.CharField(max_length=30, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "分潤紀錄"
        verbose_name_plural = "分潤紀錄"
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.salesperson} {self.order.order_number} ${self.commission_amount}"


class ContractApplication(models.Model):
    """加盟門市透過 LINE 簽署的合作協議"""

    TYPE_CHOICES = [
        ("bread", "麵包販售合作協議"),
        ("commission", "業務分潤合作協議"),
    ]

    STATUS_CHOICES = [
        ("signed", "已簽署"),
        ("notified", "已通知"),
        ("failed", "通知失敗"),
    ]

    customer = models.ForeignKey(
        "bakery.Customer",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="contracts",
    )
    line_user_id = models.CharField(max_length=64, blank=True)
    contract_type = models.CharField(max_length=12, choices=TYPE_CHOICES, default="bread")
    store_name = models.CharField(max_length=100, verbose_name="門市名稱")
    company_name = models.CharField(max_length=100, verbose_name="公司名稱")
    tax_id = models.CharField(max_length=8, verbose_name="統一編號")
    representative_name = models.CharField(max_length=50, verbose_name="負責人姓名")
    representative_id = models.CharField(max_length=10, verbose_name="負責人身分證號")
    address = models.CharField(max_length=255, verbose_name="地址")
    sign_date = models.DateField(default=timezone.localdate)
    signature_image = models.CharField(max_length=255, blank=True)
    contract_image = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=10, choices=STATUS_CHOICES, default="signed")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "合約簽署"
        verbose_name_plural = "合約簽署"
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.store_name} - {self.get_contract_type_display()}"
