from rest_framework import serializers

from core.models import AuditLog


class AuditLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditLog
        fields = [
            "id",
            "action",
            "entity",
            "entity_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields


class CafeSettingsSerializer(serializers.Serializer):
    allow_sale_without_stock = serializers.BooleanField()


class NameSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=64)


class SalesTargetsSerializer(serializers.Serializer):
    weekly = serializers.IntegerField(min_value=0)
    monthly = serializers.IntegerField(min_value=0)
    quarterly = serializers.IntegerField(min_value=0)
