from django.db.models import Sum
from rest_framework import serializers

from . import status as order_status
from .models import Category, Customer, Order, OrderItem, Product


# --- 分類 ---
class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "slug", "sort_order", "is_active"]


class CategorySortSerializer(serializers.Serializer):
    ids = serializers.ListField(child=serializers.IntegerField(), allow_empty=False)


# --- 商品 ---
class ProductSerializer(serializers.ModelSerializer):
    # 讓 API 回傳 category 的 slug
    category = serializers.SlugRelatedField(
        slug_field="slug",
        queryset=Category.objects.all(),
        allow_null=True,
        required=False,
    )
    category_name = serializers.CharField(source="category.name", read_only=True, default="")
    is_sold_out = serializers.BooleanField(read_only=True)
    effective_price = serializers.IntegerField(read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "category",
            "category_name",
            "name",
            "price",
            "discount_price",
            "effective_price",
            "specification",
            "description",
            "image",
            "stock",
            "status",
            "is_sold_out",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate(self, attrs):
        price = attrs.get("price", getattr(self.instance, "price", None))
        discount = attrs.get("discount_price", getattr(self.instance, "discount_price", None))
        if price is not None and discount is not None and discount > price:
            raise serializers.ValidationError({"discount_price": "優惠價不可高於原價"})
        return attrs


# --- 顧客 ---
class CustomerSerializer(serializers.ModelSerializer):
    salesperson_name = serializers.SerializerMethodField()
    point_balance = serializers.SerializerMethodField()

    class Meta:
        model = Customer
        fields = [
            "id",
            "line_id",
            "display_name",
            "name",
            "email",
            "phone",
            "address",
            "role",
            "company_name",
            "store_name",
            "tax_id",
            "salesperson",
            "salesperson_name",
            "point_balance",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def get_salesperson_name(self, obj):
        return str(obj.salesperson) if obj.salesperson_id else ""

    def get_point_balance(self, obj):
        account = getattr(obj, "point_account", None)
        return account.available if account else 0

    def validate_line_id(self, value):
        return value or None


class CustomerDetailSerializer(CustomerSerializer):
    order_count = serializers.SerializerMethodField()
    total_spent = serializers.SerializerMethodField()

    class Meta(CustomerSerializer.Meta):
        fields = CustomerSerializer.Meta.fields + ["order_count", "total_spent"]

    def get_order_count(self, obj):
        return obj.orders.count()

    def get_total_spent(self, obj):
        return (
            obj.orders.exclude(status="cancelled").aggregate(total=Sum("total_amount"))["total"]
            or 0
        )


class CustomerProfileSerializer(serializers.ModelSerializer):
    """LINE 會員自行填寫的資料"""

    class Meta:
        model = Customer
        fields = ["name", "phone", "email", "address"]


# --- 訂單 ---
class OrderItemSerializer(serializers.ModelSerializer):
    product_id = serializers.IntegerField(read_only=True)
    line_total = serializers.IntegerField(read_only=True)

    class Meta:
        model = OrderItem
        fields = ["id", "product_id", "product_name", "price", "quantity", "line_total"]


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)
    payment_method_display = serializers.CharField(
        source="get_payment_method_display", read_only=True
    )
    salesperson_company = serializers.SerializerMethodField()
    can_cancel = serializers.SerializerMethodField()
    can_edit = serializers.SerializerMethodField()
    available_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer",
            "salesperson",
            "salesperson_company",
            "customer_name",
            "customer_email",
            "customer_phone",
            "address",
            "status",
            "status_display",
            "payment_method",
            "payment_method_display",
            "payment_status",
            "shipping_method",
            "shipping_status",
            "shipping_fee",
            "carrier",
            "tax_id",
            "notes",
            "subtotal",
            "points_used",
            "points_discount",
            "total_amount",
            "points_awarded",
            "linepay_transaction_id",
            "linepay_refunded",
            "linepay_refund_transaction_id",
            "items",
            "can_cancel",
            "can_edit",
            "available_transitions",
            "created_at",
            "updated_at",
            "completed_at",
        ]
        read_only_fields = fields

    def get_salesperson_company(self, obj):
        return str(obj.salesperson) if obj.salesperson_id else ""

    def get_can_cancel(self, obj):
        return order_status.can_cancel(obj.status)

    def get_can_edit(self, obj):
        return order_status.can_edit(obj.status)

    def get_available_transitions(self, obj):
        return order_status.available_transitions(obj.status)


class OrderLineInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)


class OrderCreateSerializer(serializers.Serializer):
    customer_name = serializers.CharField(max_length=100)
    customer_phone = serializers.CharField(max_length=20)
    customer_email = serializers.EmailField(required=False, allow_blank=True, default="")
    address = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    payment_method = serializers.ChoiceField(choices=Order.PAYMENT_CHOICES, default="cash")
    shipping_method = serializers.ChoiceField(choices=Order.SHIPPING_CHOICES, default="pickup")
    shipping_fee = serializers.IntegerField(min_value=0, default=0)
    carrier = serializers.CharField(max_length=50, required=False, allow_blank=True, default="")
    tax_id = serializers.RegexField(r"^(\d{8})?$", required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    salesperson_id = serializers.IntegerField(required=False, allow_null=True)
    items = OrderLineInputSerializer(many=True, allow_empty=False)
    points_to_use = serializers.IntegerField(min_value=0, default=0)

    def validate_salesperson_id(self, value):
        from commissions.models import Salesperson

        if value and not Salesperson.objects.filter(pk=value, status="active").exists():
            raise serializers.ValidationError("推薦業務不存在")
        return value


class OrderUpdateSerializer(serializers.ModelSerializer):
    class Meta:
        model = Order
        fields = [
            "customer_name",
            "customer_email",
            "customer_phone",
            "address",
            "payment_method",
            "payment_status",
            "shipping_method",
            "shipping_fee",
            "carrier",
            "tax_id",
            "notes",
        ]


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.CharField()


class OrderItemInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(required=False)
    quantity = serializers.IntegerField(min_value=1, required=False)
    price = serializers.IntegerField(min_value=0, required=False)
