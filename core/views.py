import csv
import logging

from django.db import connections
from django.http import HttpResponse
from rest_framework import status, viewsets
from rest_framework.decorators import action, api_view
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from common.utils import UUID_LOOKUP_REGEX, to_aware_datetime
from core.models import AuditLog
from core.serializers import AuditLogSerializer, CafeSettingsSerializer, NameSerializer, SalesTargetsSerializer
from core.services import get_cafe_settings
from sales.services import merged_labels

logger = logging.getLogger(__name__)


class AuditLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = AuditLog.objects.all()
    serializer_class = AuditLogSerializer
    lookup_value_regex = UUID_LOOKUP_REGEX

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")
        params = self.request.query_params

        start_date = params.get("start_date")
        end_date = params.get("end_date")
        if start_date:
            qs = qs.filter(created_at__gte=to_aware_datetime(start_date, field="start_date"))
        if end_date:
            qs = qs.filter(created_at__lte=to_aware_datetime(end_date, field="end_date"))
        for field in ("action", "entity", "entity_id", "request_id"):
            value = params.get(field)
            if value:
                qs = qs.filter(**{field: value})
        return qs

    @action(detail=False, methods=["get"], url_path="export")
    def export(self, request):
        logs = self.get_queryset()
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = 'attachment; filename="audit-logs.csv"'

        writer = csv.writer(response)
        writer.writerow(["id", "created_at", "action", "entity", "entity_id", "request_id"])
        for log in logs:
            writer.writerow([log.id, log.created_at.isoformat(), log.action, log.entity, log.entity_id, log.request_id])
        return response


class SettingsView(APIView):
    def get(self, request):
        return Response(get_cafe_settings().snapshot())

    def patch(self, request):
        serializer = CafeSettingsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cafe_settings = get_cafe_settings()
        before_snapshot = cafe_settings.snapshot()

        cafe_settings.set_allow_sale_without_stock(serializer.validated_data["allow_sale_without_stock"])
        payload = cafe_settings.snapshot()
        create_audit_log_from_request(
            request,
            action="settings.update",
            entity="setting",
            entity_id="allow_sale_without_stock",
            before_snapshot=before_snapshot,
            after_snapshot=payload,
        )
        return Response(payload)


class _NamedListView(APIView):
    """GET lists, POST adds ``{"name": ...}``, DELETE removes ``?name=``."""

    def _list_payload(self, cafe_settings):
        raise NotImplementedError

    def _add(self, cafe_settings, name):
        raise NotImplementedError

    def _remove(self, cafe_settings, name):
        raise NotImplementedError

    def get(self, request):
        return Response(self._list_payload(get_cafe_settings()))

    def post(self, request):
        serializer = NameSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cafe_settings = get_cafe_settings()
        self._add(cafe_settings, serializer.validated_data["name"])
        return Response(self._list_payload(cafe_settings), status=status.HTTP_201_CREATED)

    def delete(self, request):
        name = request.query_params.get("name") or request.data.get("name")
        if not name:
            raise ValidationError({"name": "Name is required."})
        cafe_settings = get_cafe_settings()
        self._remove(cafe_settings, name)
        return Response(self._list_payload(cafe_settings))


class LabelsView(_NamedListView):
    def _list_payload(self, cafe_settings):
        return {"configured": cafe_settings.configured_labels, "labels": merged_labels(cafe_settings)}

    def _add(self, cafe_settings, name):
        cafe_settings.add_label(name)

    def _remove(self, cafe_settings, name):
        cafe_settings.remove_label(name)


class CategoriesView(_NamedListView):
    def _list_payload(self, cafe_settings):
        return {"categories": cafe_settings.configured_categories}

    def _add(self, cafe_settings, name):
        cafe_settings.add_category(name)

    def _remove(self, cafe_settings, name):
        cafe_settings.remove_category(name)


class ExpenseCategoriesView(_NamedListView):
    def _list_payload(self, cafe_settings):
        return {"categories": cafe_settings.expense_categories}

    def _add(self, cafe_settings, name):
        cafe_settings.add_expense_category(name)

    def _remove(self, cafe_settings, name):
        cafe_settings.remove_expense_category(name)


class SalesTargetsView(APIView):
    def get(self, request):
        return Response(get_cafe_settings().sales_targets)

    def put(self, request):
        serializer = SalesTargetsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        cafe_settings = get_cafe_settings()
        before_snapshot = cafe_settings.sales_targets

        targets = cafe_settings.update_sales_targets(**serializer.validated_data)
        create_audit_log_from_request(
            request,
            action="settings.targets",
            entity="setting",
            entity_id="sales_targets",
            before_snapshot=before_snapshot,
            after_snapshot=targets,
        )
        return Response(targets)


@api_view(["GET"])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=status.HTTP_503_SERVICE_UNAVAILABLE,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
