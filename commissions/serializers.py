from rest_framework import serializers

from bakery.exceptions import BakeryError

from . import rules
from .models import CommissionPlan, CommissionRecord, Salesperson


class CommissionPlanSerializer(serializers.ModelSerializer):
    salesperson_count = serializers.SerializerMethodField()

    class Meta:
        model = CommissionPlan
        fields = [
            "id",
            "name",
            "description",
            "rule_type",
            "fixed_rate",
            "tiered_rules",
            "status",
            "effective_date",
            "expiry_date",
            "salesperson_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def get_salesperson_count(self, obj):
        count = getattr(obj, "salesperson_total", None)
        return obj.salespersons.count() if count is None else count

    def validate(self, attrs):
        rule_type = attrs.get("rule_type", getattr(self.instance, "rule_type", "fixed"))
        fixed_rate = attrs.get("fixed_rate", getattr(self.instance, "fixed_rate", None))
        tiered_rules = attrs.get("tiered_rules", getattr(self.instance, "tiered_rules", None))
        try:
            attrs["fixed_rate"], attrs["tiered_rules"] = rules.validate_plan(
                rule_type, fixed_rate, tiered_rules
            )
        except BakeryError as exc:
            raise serializers.ValidationError({"rule": exc.message})

        effective = attrs.get("effective_date", getattr(self.instance, "effective_date", None))
        expiry = attrs.get("expiry_date", getattr(self.instance, "expiry_date", None))
        if effective and expiry and expiry < effective:
            raise serializers.ValidationError({"expiry_date": "結束日期不可早於生效日期"})
        return attrs


class SalespersonSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True)
    commission_plan_name = serializers.CharField(
        source="commission_plan.name", read_only=True, default=""
    )
    has_active_contract = serializers.SerializerMethodField()
    customer_count = serializers.SerializerMethodField()

    class Meta:
        model = Salesperson
        fields = [
            "id",
            "username",
            "name",
            "company_name",
            "email",
            "phone",
            "line_id",
            "commission_plan",
            "commission_plan_name",
            "contract_start_date",
            "contract_end_date",
            "status",
            "has_active_contract",
            "customer_count",
        ]
        read_only_fields = fields

    def get_has_active_contract(self, obj):
        return obj.has_active_contract()

    def get_customer_count(self, obj):
        return obj.customers.count()


class PlanAssignmentSerializer(serializers.Serializer):
    commission_plan_id = serializers.IntegerField(allow_null=True)
    contract_start_date = serializers.DateField(required=False, allow_null=True)
    contract_end_date = serializers.DateField(required=False, allow_null=True)

    def validate_commission_plan_id(self, value):
        if value is not None and not CommissionPlan.objects.filter(pk=value).exists():
            raise serializers.ValidationError("分潤方案不存在")
        return value

    def validate(self, attrs):
        start, end = attrs.get("contract_start_date"), attrs.get("contract_end_date")
        if start and end and end < start:
            raise serializers.ValidationError({"contract_end_date": "合約結束日不可早於開始日"})
        return attrs


class CommissionRecordSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)
    order_date = serializers.DateTimeField(source="order.created_at", read_only=True)
    customer_name = serializers.CharField(source="order.customer_name", read_only=True)
    salesperson_name = serializers.SerializerMethodField()
    status_display = serializers.CharField(source="get_status_display", read_only=True)

    class Meta:
        model = CommissionRecord
        fields = [
            "id",
            "order",
            "order_number",
            "order_date",
            "customer_name",
            "salesperson",
            "salesperson_name",
            "plan",
            "order_amount",
            "commission_rate",
            "commission_amount",
            "rule_name",
            "rule_type",
            "status",
            "status_display",
            "batch_id",
            "payment_reference",
            "payment_method",
            "paid_at",
            "notes",
            "created_at",
        ]
        read_only_fields = fields

    def get_salesperson_name(self, obj):
        return str(obj.salesperson)


class CalculateSerializer(serializers.Serializer):
    start_date = serializers.DateField(required=False, allow_null=True)
    end_date = serializers.DateField(required=False, allow_null=True)
    salesperson_id = serializers.IntegerField(required=False, allow_null=True)


class RecordStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=CommissionRecord.STATUS_CHOICES)
    payment_reference = serializers.CharField(required=False, allow_blank=True, default="")
    payment_method = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class StoreInfoRequestSerializer(serializers.Serializer):
    userId = serializers.CharField()


class ContractSignSerializer(serializers.Serializer):
    userId = serializers.CharField(source="line_user_id", required=False, allow_blank=True, default="")
    contractType = serializers.CharField(source="contract_type", required=False, default="bread")
    storeName = serializers.CharField(source="store_name", allow_blank=True)
    companyName = serializers.CharField(source="company_name", allow_blank=True)
    taxId = serializers.CharField(source="tax_id", allow_blank=True)
    representativeName = serializers.CharField(source="representative_name", allow_blank=True)
    representativeId = serializers.CharField(source="representative_id", allow_blank=True)
    address = serializers.CharField(allow_blank=True)
    signature = serializers.CharField()

