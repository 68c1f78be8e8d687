from rest_framework import serializers

from inventory.ledger import TRANSACTION_TYPES
from inventory.models import DailyStockRecord, Item, Recipe, RecipeComponent


class ItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = Item
        fields = [
            "id",
            "name",
            "category",
            "unit",
            "is_ingredient",
            "cost_price",
            "selling_price",
            "min_stock",
            "is_active",
            "cost_is_derived",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "cost_is_derived", "created_at", "updated_at"]

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Name is required.")
        return value


class RecipeComponentSerializer(serializers.ModelSerializer):
    ingredient_id = serializers.UUIDField(source="ingredient.id", read_only=True)
    ingredient_name = serializers.CharField(source="ingredient.name", read_only=True)

    class Meta:
        model = RecipeComponent
        fields = ["ingredient_id", "ingredient_name", "quantity_per_unit", "unit"]


class RecipeSerializer(serializers.ModelSerializer):
    menu_item_id = serializers.UUIDField(source="menu_item.id", read_only=True)
    menu_item_name = serializers.CharField(source="menu_item.name", read_only=True)
    cost_price = serializers.IntegerField(source="menu_item.cost_price", read_only=True)
    components = RecipeComponentSerializer(many=True, read_only=True)

    class Meta:
        model = Recipe
        fields = ["id", "menu_item_id", "menu_item_name", "cost_price", "components", "created_at", "updated_at"]


class RecipeComponentInputSerializer(serializers.Serializer):
    ingredient_id = serializers.UUIDField()
    quantity_per_unit = serializers.DecimalField(max_digits=12, decimal_places=4)
    unit = serializers.ChoiceField(choices=Item.Unit.choices, required=False)


class RecipeUpsertSerializer(serializers.Serializer):
    components = RecipeComponentInputSerializer(many=True, allow_empty=False)


class DailyStockRecordSerializer(serializers.ModelSerializer):
    item_id = serializers.UUIDField(source="item.id", read_only=True)
    item_name = serializers.CharField(source="item.name", read_only=True)
    unit = serializers.CharField(source="item.unit", read_only=True)
    min_stock = serializers.IntegerField(source="item.min_stock", read_only=True)

    class Meta:
        model = DailyStockRecord
        fields = [
            "id",
            "item_id",
            "item_name",
            "unit",
            "business_date",
            "opening_stock",
            "purchased",
            "sold",
            "wastage",
            "closing_stock",
            "min_stock",
            "opening_overridden",
            "version",
            "updated_at",
        ]
        read_only_fields = fields


class StockTransactionSerializer(serializers.Serializer):
    item_id = serializers.UUIDField()
    type = serializers.ChoiceField(choices=TRANSACTION_TYPES)
    quantity = serializers.IntegerField(min_value=0)
    date = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class StockReconcileSerializer(serializers.Serializer):
    item_ids = serializers.ListField(child=serializers.UUIDField(), required=False, allow_empty=True)
