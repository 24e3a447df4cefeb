from django.db import models, transaction
from django.utils import timezone


class Category(models.Model):
    """商品分類"""

    name = models.CharField(max_length=50, verbose_name="分類名稱")
    slug = models.SlugField(unique=True, verbose_name="網址辨識碼")
    sort_order = models.PositiveIntegerField(default=0, verbose_name="排序")
    is_active = models.BooleanField(default=True, verbose_name="是否顯示")

    class Meta:
        verbose_name = "商品分類"
        verbose_name_plural = "商品分類"
        ordering = ["sort_order", "id"]

    def __str__(self):
        return self.name


class Product(models.Model):
    """商品資訊"""

    STATUS_CHOICES = [
        ("active", "上架"),
        ("inactive", "下架"),
    ]

    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="products",
        verbose_name="分類",
    )
    name = models.CharField(max_length=100, verbose_name="商品名稱")
    price = models.PositiveIntegerField(verbose_name="單價(元)")
    discount_price = models.PositiveIntegerField(
        null=True, blank=True, verbose_name="優惠價(元)"
    )
    specification = models.CharField(max_length=100, blank=True, verbose_name="規格")
    description = models.TextField(blank=True, verbose_name="商品描述")
    image = models.CharField(max_length=255, blank=True, verbose_name="圖片路徑")
    stock = models.IntegerField(default=99, verbose_name="剩餘庫存")
    status = models.CharField(
        max_length=10, choices=STATUS_CHOICES, default="active", verbose_name="狀態"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "商品"
        verbose_name_plural = "商品"
        ordering = ["category__sort_order", "id"]

    def __str__(self):
        return self.name

    @property
    def is_sold_out(self):
        """判斷是否售完或手動停售"""
        return self.status != "active" or self.stock <= 0

    @property
    def effective_price(self):
        if self.discount_price is not None:
            return self.discount_price
        return self.price


class Customer(models.Model):
    """顧客 (LINE 會員) 與加盟門市"""

    ROLE_CHOICES = [
        ("customer", "一般顧客"),
        ("owner", "加盟門市"),
    ]

    line_id = models.CharField(
        max_length=64, unique=True, null=True, blank=True, verbose_name="LINE User ID"
    )
    display_name = models.CharField(max_length=100, blank=True, verbose_name="LINE 暱稱")
    name = models.CharField(max_length=100, blank=True, verbose_name="姓名")
    email = models.EmailField(blank=True, verbose_name="Email")
    phone = models.CharField(max_length=20, blank=True, verbose_name="手機")
    address = models.CharField(max_length=255, blank=True, verbose_name="地址")
    role = models.CharField(
        max_length=10, choices=ROLE_CHOICES, default="customer", verbose_name="身分"
    )
    company_name = models.CharField(max_length=100, blank=True, verbose_name="公司名稱")
    store_name = models.CharField(max_length=100, blank=True, verbose_name="門市名稱")
    tax_id = models.CharField(max_length=8, blank=True, verbose_name="統一編號")
    salesperson = models.ForeignKey(
        "commissions.Salesperson",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="customers",
        verbose_name="負責業務",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "顧客"
        verbose_name_plural = "顧客"
        ordering = ["-created_at"]

    def __str__(self):
        return self.name or self.display_name or f"顧客 #{self.pk}"


class Order(models.Model):
    STATUS_CHOICES = [
        ("pending", "待處理"),
        ("processing", "處理中"),
        ("shipped", "已出貨"),
        ("delivered", "已送達"),
        ("cancelled", "已取消"),
    ]

    PAYMENT_CHOICES = [
        ("cash", "現金"),
        ("credit_card", "信用卡"),
        ("bank_transfer", "銀行轉帳"),
        ("line_pay", "LINE Pay"),
    ]

    PAYMENT_STATUS_CHOICES = [
        ("pending", "未付款"),
        ("paid", "已付款"),
        ("refunded", "已退款"),
        ("failed", "付款失敗"),
    ]

    SHIPPING_CHOICES = [
        ("takkyubin_payment", "黑貓宅急便-匯款"),
        ("takkyubin_cod", "黑貓宅急便-貨到付款"),
        ("pickup", "自取"),
    ]

    SHIPPING_STATUS_CHOICES = [
        ("pending", "待出貨"),
        ("processing", "準備中"),
        ("shipped", "已出貨"),
        ("delivered", "已送達"),
        ("cancelled", "已取消"),
    ]

    order_number = models.CharField(max_length=20, unique=True, verbose_name="訂單編號")
    customer = models.ForeignKey(
        Customer,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="orders",
        verbose_name="顧客",
    )
    salesperson = models.ForeignKey(
        "commissions.Salesperson",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
        verbose_name="業務",
    )
    customer_name = models.CharField(max_length=100, verbose_name="訂購人")
    customer_email = models.EmailField(blank=True, verbose_name="Email")
    customer_phone = models.CharField(max_length=20, verbose_name="手機")
    address = models.CharField(max_length=255, blank=True, verbose_name="收件地址")

    status = models.CharField(
        max_length=20, choices=STATUS_CHOICES, default="pending", verbose_name="訂單狀態"
    )
    payment_method = models.CharField(
        max_length=20, choices=PAYMENT_CHOICES, default="cash", verbose_name="付款方式"
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PAYMENT_STATUS_CHOICES,
        default="pending",
        verbose_name="付款狀態",
    )
    shipping_method = models.CharField(
        max_length=30, choices=SHIPPING_CHOICES, default="pickup", verbose_name="配送方式"
    )
    shipping_status = models.CharField(
        max_length=20,
        choices=SHIPPING_STATUS_CHOICES,
        default="pending",
        verbose_name="配送狀態",
    )
    shipping_fee = models.PositiveIntegerField(default=0, verbose_name="運費")
    carrier = models.CharField(max_length=50, blank=True, verbose_name="載具")
    tax_id = models.CharField(max_length=8, blank=True, verbose_name="統一編號")
    notes = models.TextField(blank=True, verbose_name="備註")

    subtotal = models.PositiveIntegerField(default=0, verbose_name="小計")
    points_used = models.PositiveIntegerField(default=0, verbose_name="使用點數")
    points_discount = models.PositiveIntegerField(default=0, verbose_name="點數折抵")
    total_amount = models.PositiveIntegerField(default=0, verbose_name="總額")
    points_awarded = models.BooleanField(default=False, verbose_name="已發放回饋點數")

    # LINE Pay 相關欄位
    linepay_transaction_id = models.CharField(max_length=50, blank=True, null=True)
    linepay_refunded = models.BooleanField(default=False)
    linepay_refund_transaction_id = models.CharField(
        max_length=50, blank=True, null=True
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = "訂單"
        verbose_name_plural = "訂單"
        ordering = ["-created_at"]

    def __str__(self):
        return f"訂單 {self.order_number} - {self.customer_name}"

    def recalculate_totals(self):
        """從訂單品項重新計算小計與總額"""
        subtotal = 0
        if self.pk:
            for item in self.items.all():
                subtotal += item.price * item.quantity
        self.subtotal = subtotal
        self.total_amount = max(
            subtotal + self.shipping_fee - self.points_discount, 0
        )

    def restore_stock(self):
        """將該訂單所有商品數量歸還給庫存"""
        with transaction.atomic():
            for item in self.items.all():
                if item.product_id:
                    # 使用 F 表達式避免 Race Condition
                    Product.objects.filter(id=item.product_id).update(
                        stock=models.F("stock") + item.quantity
                    )

    def save(self, *args, **kwargs):
        if not self.order_number:
            from .services import next_order_number

            self.order_number = next_order_number()

        # 自動處理送達時間
        if self.status == "delivered" and not self.completed_at:
            self.completed_at = timezone.now()

        super().save(*args, **kwargs)


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="order_items",
    )
    product_name = models.CharField(max_length=100, verbose_name="品名")
    price = models.PositiveIntegerField(verbose_name="單價")
    quantity = models.PositiveIntegerField(default=1, verbose_name="數量")

    class Meta:
        verbose_name = "訂單品項"
        verbose_name_plural = "訂單品項"
        ordering = ["id"]

    def __str__(self):
        return f"{self.product_name} x {self.quantity}"

    @property
    def line_total(self):
        return self.price * self.quantity


class OrderSequence(models.Model):
    """每日訂單流水號"""

    day = models.DateField(unique=True)
    last_value = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.day}: {self.last_value}"
