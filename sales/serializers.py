from rest_framework import serializers

from sales.models import Customer, DiningTable, Order, Payment, Receivable, Sale


class SaleSerializer(serializers.ModelSerializer):
    item_id = serializers.UUIDField(source="item.id", read_only=True)
    item_name = serializers.CharField(source="item.name", read_only=True)
    order_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = Sale
        fields = [
            "id",
            "order_id",
            "date",
            "item_id",
            "item_name",
            "quantity",
            "unit_price",
            "total",
            "cogs",
            "labels",
            "settled_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class SaleWriteSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.IntegerField(min_value=0, required=False)
    total = serializers.IntegerField(min_value=0, required=False)
    date = serializers.CharField(required=False, allow_blank=True)
    labels = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)


class DiningTableSerializer(serializers.ModelSerializer):
    class Meta:
        model = DiningTable
        fields = ["id", "number", "capacity", "status", "created_at", "updated_at"]
        read_only_fields = ["id", "status", "created_at", "updated_at"]


class OrderSerializer(serializers.ModelSerializer):
    table_id = serializers.UUIDField(source="table.id", read_only=True)
    table_number = serializers.IntegerField(source="table.number", read_only=True)
    lines = SaleSerializer(many=True, read_only=True)

    class Meta:
        model = Order
        fields = [
            "id",
            "table_id",
            "table_number",
            "status",
            "total",
            "payment_type",
            "created_at",
            "closed_at",
            "lines",
        ]
        read_only_fields = fields


class OrderCreateSerializer(serializers.Serializer):
    table_id = serializers.UUIDField()


class OrderItemSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.IntegerField(min_value=0, required=False)
    labels = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)


class OrderCloseSerializer(serializers.Serializer):
    payment_type = serializers.ChoiceField(choices=Order.PaymentType.choices)
    customer_id = serializers.UUIDField(required=False, allow_null=True)


class CustomerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Customer
        fields = ["id", "name", "phone", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class PaymentSerializer(serializers.ModelSerializer):
    receivable_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Payment
        fields = ["id", "receivable_id", "amount", "method", "paid_at"]
        read_only_fields = fields


class PaymentCreateSerializer(serializers.Serializer):
    amount = serializers.IntegerField()
    method = serializers.ChoiceField(choices=Payment.Method.choices)


class ReceivableSerializer(serializers.ModelSerializer):
    order_id = serializers.UUIDField(read_only=True)
    customer_id = serializers.UUIDField(read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)

    class Meta:
        model = Receivable
        fields = [
            "id",
            "order_id",
            "customer_id",
            "customer_name",
            "amount",
            "outstanding",
            "status",
            "created_at",
            "settled_at",
            "payments",
        ]
        read_only_fields = fields


class SaleUpdateSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1, required=False)
    unit_price = serializers.IntegerField(min_value=0, required=False)
    total = serializers.IntegerField(min_value=0, required=False)
    date = serializers.CharField(required=False)
    labels = serializers.ListField(child=serializers.CharField(allow_blank=True), required=False)
