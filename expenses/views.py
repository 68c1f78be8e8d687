from rest_framework import viewsets
from rest_framework.response import Response

from common.audit import AuditedMutationMixin
from common.utils import UUID_LOOKUP_REGEX
from expenses.models import Expense
from expenses.serializers import ExpenseSerializer
from expenses.services import create_expense, delete_expense, list_expenses, update_expense


class ExpenseViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    lookup_value_regex = UUID_LOOKUP_REGEX
    queryset = Expense.objects.all()
    serializer_class = ExpenseSerializer
    audit_entity = "expense"

    def list(self, request):
        params = request.query_params
        summary = list_expenses(date_from=params.get("date_from"), date_to=params.get("date_to"))
        return Response(
            {
                "date_from": summary["date_from"].isoformat() if summary["date_from"] else None,
                "date_to": summary["date_to"].isoformat() if summary["date_to"] else None,
                "total": summary["total"],
                "by_category": summary["by_category"],
                "items": ExpenseSerializer(summary["items"], many=True).data,
            }
        )

    def create_instance(self, serializer):
        return create_expense(**serializer.validated_data)

    def update_instance(self, serializer):
        return update_expense(serializer.instance, **serializer.validated_data)

    def destroy_instance(self, instance):
        delete_expense(instance)
