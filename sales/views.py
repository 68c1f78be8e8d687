from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from common.audit import AuditedMutationMixin, create_audit_log_from_request
from common.exceptions import ConflictError
from common.utils import UUID_LOOKUP_REGEX
from sales.models import DiningTable
from sales.serializers import (
    CustomerSerializer,
    DiningTableSerializer,
    OrderCloseSerializer,
    OrderCreateSerializer,
    OrderItemSerializer,
    OrderSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    ReceivableSerializer,
    SaleSerializer,
    SaleUpdateSerializer,
    SaleWriteSerializer,
)
from sales.services import (
    add_item_to_order,
    cancel_order,
    close_order,
    create_customer,
    create_order,
    create_sale,
    get_order,
    get_sale,
    list_customers,
    list_orders,
    list_receivables,
    list_sales,
    record_payment,
    remove_item_from_order,
    update_sale,
)


class SaleViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    serializer_class = SaleSerializer

    def get_queryset(self):
        params = self.request.query_params
        limit = params.get("limit")
        return list_sales(
            date=params.get("date"),
            date_from=params.get("date_from"),
            date_to=params.get("date_to"),
            limit=int(limit) if limit and limit.isdigit() else None,
        )

    def get_object(self):
        return get_sale(self.kwargs["pk"])

    def create(self, request):
        serializer = SaleWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        sale = create_sale(
            data["item_id"],
            data["quantity"],
            unit_price=data.get("unit_price"),
            total=data.get("total"),
            date=data.get("date") or None,
            labels=data.get("labels", ()),
        )
        payload = SaleSerializer(sale).data
        create_audit_log_from_request(request, action="sale.create", entity="sale", entity_id=sale.id, after_snapshot=payload)
        return Response(payload, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = SaleUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = SaleSerializer(get_sale(pk)).data

        sale = update_sale(pk, **serializer.validated_data)
        payload = SaleSerializer(get_sale(sale.id)).data
        create_audit_log_from_request(
            request,
            action="sale.update",
            entity="sale",
            entity_id=sale.id,
            before_snapshot=before_snapshot,
            after_snapshot=payload,
        )
        return Response(payload)


class DiningTableViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    queryset = DiningTable.objects.all()
    serializer_class = DiningTableSerializer
    audit_entity = "table"

    def destroy_instance(self, instance):
        if instance.orders.exists():
            raise ConflictError("Table has order history and cannot be deleted.")
        instance.delete()


class OrderViewSet(mixins.ListModelMixin, viewsets.GenericViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    serializer_class = OrderSerializer

    def get_queryset(self):
        params = self.request.query_params
        return list_orders(status=params.get("status"), table_id=params.get("table_id"))

    def _respond(self, order, status_code=status.HTTP_200_OK):
        return Response(OrderSerializer(get_order(order.id)).data, status=status_code)

    def _audit(self, request, action, order, before_snapshot=None):
        create_audit_log_from_request(
            request,
            action=f"order.{action}",
            entity="order",
            entity_id=order.id,
            before_snapshot=before_snapshot,
            after_snapshot=OrderSerializer(get_order(order.id)).data,
        )

    def retrieve(self, request, pk=None):
        return Response(OrderSerializer(get_order(pk)).data)

    def create(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = create_order(serializer.validated_data["table_id"])
        self._audit(request, "open", order)
        return self._respond(order, status.HTTP_201_CREATED)

    @action(detail=True, methods=["post"], url_path="items")
    def add_item(self, request, pk=None):
        serializer = OrderItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        add_item_to_order(
            pk,
            data["item_id"],
            data["quantity"],
            unit_price=data.get("unit_price"),
            labels=data.get("labels", ()),
        )
        return Response(OrderSerializer(get_order(pk)).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["delete"], url_path=r"items/(?P<sale_id>[0-9a-f-]+)")
    def remove_item(self, request, pk=None, sale_id=None):
        order = remove_item_from_order(sale_id, order_id=pk)
        return self._respond(order)

    @action(detail=True, methods=["post"], url_path="close")
    def close(self, request, pk=None):
        serializer = OrderCloseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        before_snapshot = OrderSerializer(get_order(pk)).data

        order = close_order(
            pk,
            serializer.validated_data["payment_type"],
            customer_id=serializer.validated_data.get("customer_id"),
        )
        self._audit(request, "close", order, before_snapshot=before_snapshot)
        return self._respond(order)

    @action(detail=True, methods=["post"], url_path="cancel")
    def cancel(self, request, pk=None):
        before_snapshot = OrderSerializer(get_order(pk)).data
        order = cancel_order(pk)
        self._audit(request, "cancel", order, before_snapshot=before_snapshot)
        return self._respond(order)


class CustomerViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.CreateModelMixin, viewsets.GenericViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    serializer_class = CustomerSerializer

    def get_queryset(self):
        return list_customers()

    def perform_create(self, serializer):
        serializer.instance = create_customer(**serializer.validated_data)


class ReceivableViewSet(viewsets.ReadOnlyModelViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    serializer_class = ReceivableSerializer

    def get_queryset(self):
        params = self.request.query_params
        return list_receivables(status=params.get("status"), customer_id=params.get("customer_id"))

    @action(detail=True, methods=["post"], url_path="payments")
    def payments(self, request, pk=None):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        payment = record_payment(pk, serializer.validated_data["amount"], serializer.validated_data["method"])
        receivable = list_receivables().get(pk=payment.receivable_id)
        payload = {"payment": PaymentSerializer(payment).data, "receivable": ReceivableSerializer(receivable).data}
        create_audit_log_from_request(
            request,
            action="receivable.payment",
            entity="receivable",
            entity_id=receivable.id,
            after_snapshot=payload,
        )
        return Response(payload, status=status.HTTP_201_CREATED)
