from rest_framework import status, viewsets
from rest_framework.exceptions import NotFound
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.utils import UUID_LOOKUP_REGEX
from inventory import ledger
from inventory.serializers import (
    DailyStockRecordSerializer,
    ItemSerializer,
    RecipeSerializer,
    RecipeUpsertSerializer,
    StockReconcileSerializer,
    StockTransactionSerializer,
)
from inventory.services import (
    create_item,
    delete_item,
    delete_recipe,
    get_item,
    get_recipe_by_menu_item,
    list_items,
    update_item,
    upsert_recipe,
)


class ItemViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    serializer_class = ItemSerializer
    audit_entity = "item"

    def get_queryset(self):
        params = self.request.query_params
        return list_items(
            is_ingredient=params.get("is_ingredient"),
            is_active=params.get("is_active"),
            category=params.get("category"),
        )

    def create_instance(self, serializer):
        return create_item(**serializer.validated_data)

    def update_instance(self, serializer):
        return update_item(serializer.instance, **serializer.validated_data)

    def destroy_instance(self, instance):
        delete_item(instance)


class RecipeView(APIView):
    def get(self, request, item_id):
        get_item(item_id)
        recipe = get_recipe_by_menu_item(item_id)
        if recipe is None:
            raise NotFound("Recipe was not found.")
        return Response(RecipeSerializer(recipe).data)

    def put(self, request, item_id):
        serializer = RecipeUpsertSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before = get_recipe_by_menu_item(item_id)
        before_snapshot = RecipeSerializer(before).data if before else None

        recipe = upsert_recipe(item_id, [dict(component) for component in serializer.validated_data["components"]])
        payload = RecipeSerializer(recipe).data
        create_audit_log_from_request(
            request,
            action="recipe.upsert",
            entity="recipe",
            entity_id=recipe.menu_item_id,
            before_snapshot=before_snapshot,
            after_snapshot=payload,
        )
        return Response(payload)

    def delete(self, request, item_id):
        recipe = get_recipe_by_menu_item(item_id)
        before_snapshot = RecipeSerializer(recipe).data if recipe else None
        delete_recipe(item_id)
        create_audit_log_from_request(
            request,
            action="recipe.delete",
            entity="recipe",
            entity_id=item_id,
            before_snapshot=before_snapshot,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class StockView(APIView):
    def get(self, request):
        records = ledger.get_stock(request.query_params.get("date"))
        return Response(DailyStockRecordSerializer(records, many=True).data)


class StockTransactionView(APIView):
    def post(self, request):
        serializer = StockTransactionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        record = ledger.apply_transaction(data["item_id"], data["type"], data["quantity"], data.get("date"))
        payload = DailyStockRecordSerializer(record).data
        create_audit_log_from_request(
            request,
            action=f"stock.{data['type']}",
            entity="daily_stock_record",
            entity_id=record.id,
            after_snapshot={**payload, "quantity": data["quantity"]},
        )
        return Response(payload, status=status.HTTP_201_CREATED)


class StockReconcileView(APIView):
    def post(self, request):
        serializer = StockReconcileSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item_ids = serializer.validated_data.get("item_ids") or None

        repaired = ledger.reconcile_ledger(item_ids)
        create_audit_log_from_request(
            request,
            action="stock.reconcile",
            entity="daily_stock_record",
            after_snapshot={"item_ids": item_ids, "repaired": repaired},
        )
        return Response({"repaired": repaired})
