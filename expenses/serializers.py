from rest_framework import serializers

from expenses.models import Expense
from expenses.services import allocated_daily


class ExpenseSerializer(serializers.ModelSerializer):
    allocated_daily = serializers.SerializerMethodField()
    amount_in_range = serializers.SerializerMethodField()

    class Meta:
        model = Expense
        fields = [
            "id",
            "date",
            "category",
            "description",
            "amount",
            "is_recurring",
            "frequency",
            "allocated_daily",
            "amount_in_range",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]
        extra_kwargs = {"amount": {"min_value": 0}}

    def get_allocated_daily(self, obj):
        return allocated_daily(obj)

    def get_amount_in_range(self, obj):
        return getattr(obj, "amount_in_range", obj.amount)

    def validate_category(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Category is required.")
        return value
