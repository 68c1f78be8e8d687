import csv
from collections import OrderedDict
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.core.cache import cache
from django.db.models import DecimalField, IntegerField, Q, Sum, Value
from django.db.models.functions import Coalesce
from django.http import HttpResponse
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from common.utils import local_day_bounds, to_business_date, to_json_compatible, to_money
from core.services import get_cafe_settings
from expenses.services import expenses_total
from inventory.ledger import low_stock
from inventory.models import DailyStockRecord
from sales.models import Order, Payment, Sale

PERIODS = ("daily", "weekly", "monthly", "quarterly", "yearly")
# Walk-in sales carry no payment method.
DIRECT = "DIRECT"


def period_bounds(period, today=None):
    """First and last calendar day of the ``period`` containing ``today``. Weeks start on Sunday."""
    today = today or timezone.localdate()
    if period == "daily":
        return today, today
    if period == "weekly":
        start = today - timedelta(days=(today.weekday() + 1) % 7)
        return start, start + timedelta(days=6)
    if period == "monthly":
        start = today.replace(day=1)
    elif period == "quarterly":
        start = today.replace(month=3 * ((today.month - 1) // 3) + 1, day=1)
    elif period == "yearly":
        return today.replace(month=1, day=1), today.replace(month=12, day=31)
    else:
        raise ValidationError({"range": f"Range must be one of: {', '.join(PERIODS)}."})

    months = 1 if period == "monthly" else 3
    month_index = start.month - 1 + months
    next_start = start.replace(year=start.year + month_index // 12, month=month_index % 12 + 1)
    return start, next_start - timedelta(days=1)


def revenue_sales():
    """Sales that count as revenue: walk-in sales and lines of closed orders."""
    return Sale.objects.filter(Q(order__isnull=True) | Q(order__status=Order.Status.CLOSED))


def sales_between(first_day, last_day):
    start, _ = local_day_bounds(first_day)
    _, end = local_day_bounds(last_day)
    return revenue_sales().filter(date__gte=start, date__lte=end)


def sales_total(first_day, last_day):
    return sales_between(first_day, last_day).aggregate(total=Coalesce(Sum("total"), Value(0), output_field=IntegerField()))["total"]


def major_units(value):
    return to_money(Decimal(value) / 100)


def revenue_by_item(first_day, last_day, descending=True):
    rows = (
        sales_between(first_day, last_day)
        .values("item_id", "item__name", "item__category")
        .annotate(quantity=Sum("quantity"), revenue=Sum("total"))
        .order_by("-revenue" if descending else "revenue", "item__name")
    )
    return [
        {
            "item_id": row["item_id"],
            "name": row["item__name"],
            "category": row["item__category"],
            "quantity": row["quantity"],
            "revenue": row["revenue"],
        }
        for row in rows
    ]


def revenue_by_label(first_day, last_day):
    stats = {}
    for labels, quantity, total in sales_between(first_day, last_day).values_list("labels", "quantity", "total"):
        for label in labels or []:
            row = stats.setdefault(label, {"label": label, "quantity": 0, "revenue": 0})
            row["quantity"] += quantity
            row["revenue"] += total
    return sorted(stats.values(), key=lambda row: (-row["revenue"], row["label"]))


def revenue_by_payment(first_day, last_day):
    """Revenue per order payment type; walk-in sales are reported as ``DIRECT``."""
    rows = (
        sales_between(first_day, last_day)
        .values("order__payment_type")
        .annotate(revenue=Sum("total"))
        .order_by("-revenue", "order__payment_type")
    )
    return [{"method": row["order__payment_type"] or DIRECT, "revenue": row["revenue"]} for row in rows]


def revenue_summary(first_day, last_day):
    """Revenue split by how it was paid.

    Cash and card received include receivable payments made in the range;
    credit sales are closed CREDIT orders whatever their repayment state.
    """
    by_method = {row["method"]: row["revenue"] for row in revenue_by_payment(first_day, last_day)}
    start, _ = local_day_bounds(first_day)
    _, end = local_day_bounds(last_day)
    received = {
        row["method"]: row["amount"]
        for row in Payment.objects.filter(paid_at__gte=start, paid_at__lte=end)
        .values("method")
        .annotate(amount=Sum("amount"))
        .order_by()
    }
    return OrderedDict(
        date_from=first_day,
        date_to=last_day,
        total_revenue=sum(by_method.values()),
        direct_sales=by_method.get(DIRECT, 0),
        cash_received=by_method.get(Order.PaymentType.CASH.value, 0) + received.get(Payment.Method.CASH.value, 0),
        card_received=by_method.get(Order.PaymentType.CARD.value, 0) + received.get(Payment.Method.CARD.value, 0),
        credit_sales=by_method.get(Order.PaymentType.CREDIT.value, 0),
        receivable_payments=sum(received.values()),
    )


def executive_summary(first_day, last_day):
    sales = sales_between(first_day, last_day)
    totals = sales.aggregate(
        revenue=Coalesce(Sum("total"), Value(0), output_field=IntegerField()),
        items_sold=Coalesce(Sum("quantity"), Value(0), output_field=IntegerField()),
    )
    # A walk-in sale is its own ticket; order lines share their order's.
    tickets = sales.filter(order__isnull=True).count() + (
        sales.filter(order__isnull=False).order_by().values("order_id").distinct().count()
    )
    top_category = (
        sales.values("item__category").annotate(revenue=Sum("total")).order_by("-revenue", "item__category").first()
    )
    wastage = DailyStockRecord.objects.filter(business_date__gte=first_day, business_date__lte=last_day).aggregate(
        total=Coalesce(Sum("wastage"), Value(0), output_field=IntegerField())
    )["total"]
    return OrderedDict(
        date_from=first_day,
        date_to=last_day,
        currency=settings.CURRENCY_CODE,
        total_revenue=totals["revenue"],
        total_items_sold=totals["items_sold"],
        tickets=tickets,
        average_order_value=to_money(Decimal(totals["revenue"]) / tickets) if tickets else Decimal("0.00"),
        top_category=top_category["item__category"] if top_category else None,
        wastage_total=wastage,
        expenses=expenses_total(first_day, last_day),
        by_item=revenue_by_item(first_day, last_day),
        by_label=revenue_by_label(first_day, last_day),
    )


class BaseReportView(APIView):
    cache_timeout = 60

    def _parse_limit(self, request, default=10, minimum=1, maximum=1000):
        raw_limit = request.query_params.get("limit")
        if raw_limit is None:
            return default

        try:
            limit = int(raw_limit)
        except (TypeError, ValueError):
            raise ValidationError({"limit": f"Limit must be an integer between {minimum} and {maximum}."})

        if not minimum <= limit <= maximum:
            raise ValidationError({"limit": f"Limit must be between {minimum} and {maximum}."})
        return limit

    def _date_range(self, request, default_period="monthly"):
        raw_from = request.query_params.get("date_from")
        raw_to = request.query_params.get("date_to")
        if raw_from or raw_to:
            if not raw_from or not raw_to:
                raise ValidationError({"date_range": "Both date_from and date_to are required."})
            date_from = to_business_date(raw_from, field="date_from")
            date_to = to_business_date(raw_to, field="date_to")
            if date_from > date_to:
                raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
            return "custom", date_from, date_to

        period = request.query_params.get("range") or default_period
        date_from, date_to = period_bounds(period)
        return period, date_from, date_to

    def _wants_csv(self, request):
        return request.query_params.get("format") == "csv"

    def _csv_response(self, filename, rows):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _cached(self, request, key, callback):
        cache_key = f"reports:{key}:{request.get_full_path()}"
        payload = cache.get(cache_key)
        if payload is None:
            payload = callback()
            cache.set(cache_key, payload, self.cache_timeout)
        return payload


class DashboardReportView(BaseReportView):
    def get(self, request):
        def run():
            today = timezone.localdate()
            month_start, month_end = period_bounds("monthly", today)
            top_items = list(
                sales_between(month_start, month_end)
                .values("item_id", "item__name")
                .annotate(quantity=Sum("quantity"), total=Sum("total"))
                .order_by("-total")[:5]
            )
            totals = OrderedDict(
                (period, sales_total(*period_bounds(period, today))) for period in ("daily", "weekly", "monthly", "quarterly")
            )
            targets = get_cafe_settings().sales_targets
            progress = OrderedDict()
            for period in ("weekly", "monthly", "quarterly"):
                target = targets[period]
                progress[period] = Decimal("0.00") if not target else round(Decimal(totals[period]) / target * 100, 2)
            return to_json_compatible(
                OrderedDict(
                    currency=settings.CURRENCY_CODE,
                    business_date=today,
                    sales=totals,
                    top_items=[
                        {"item_id": row["item_id"], "name": row["item__name"], "quantity": row["quantity"], "total": row["total"]}
                        for row in top_items
                    ],
                    targets=targets,
                    target_progress=progress,
                )
            )

        payload = self._cached(request, "dashboard", run)
        if self._wants_csv(request):
            rows = [
                {"period": period, "sales": total, "target": payload["targets"].get(period, "")}
                for period, total in payload["sales"].items()
            ]
            return self._csv_response("dashboard.csv", rows)
        return Response(payload)


class ProfitReportView(BaseReportView):
    def get(self, request):
        period, date_from, date_to = self._date_range(request)

        def run():
            totals = sales_between(date_from, date_to).aggregate(
                revenue=Coalesce(Sum("total"), Value(0), output_field=IntegerField()),
                cogs=Coalesce(Sum("cogs"), Value(Decimal("0.00")), output_field=DecimalField(max_digits=16, decimal_places=2)),
            )
            revenue = Decimal(totals["revenue"])
            cogs = to_money(totals["cogs"])
            gross_profit = revenue - cogs
            margin = Decimal("0.00") if revenue == 0 else round(gross_profit / revenue * Decimal("100"), 2)
            expenses = expenses_total(date_from, date_to)
            return to_json_compatible(
                OrderedDict(
                    range=period,
                    date_from=date_from,
                    date_to=date_to,
                    revenue=totals["revenue"],
                    cogs=cogs,
                    gross_profit=to_money(gross_profit),
                    margin_pct=margin,
                    expenses=expenses,
                    net_profit=to_money(gross_profit - expenses),
                )
            )

        payload = self._cached(request, "profit", run)
        if self._wants_csv(request):
            return self._csv_response("profit.csv", [payload])
        return Response(payload)


class SalesByLabelReportView(BaseReportView):
    def get(self, request):
        period, date_from, date_to = self._date_range(request)

        rows = self._cached(request, "sales-by-label", lambda: revenue_by_label(date_from, date_to))
        if self._wants_csv(request):
            return self._csv_response("sales_by_label.csv", rows)
        return Response(
            {"range": period, "date_from": date_from.isoformat(), "date_to": date_to.isoformat(), "results": rows}
        )


class LowStockReportView(BaseReportView):
    def get(self, request):
        day = to_business_date(request.query_params.get("date"))
        rows = to_json_compatible(low_stock(day))
        if self._wants_csv(request):
            return self._csv_response(f"low_stock_{day.isoformat()}.csv", rows)
        return Response({"business_date": day.isoformat(), "results": rows})


class RevenueByItemReportView(BaseReportView):
    def get(self, request):
        period, date_from, date_to = self._date_range(request)
        sort = request.query_params.get("sort") or "desc"
        if sort not in ("asc", "desc"):
            raise ValidationError({"sort": "Sort must be asc or desc."})

        rows = self._cached(
            request,
            "revenue-by-item",
            lambda: to_json_compatible(revenue_by_item(date_from, date_to, descending=sort == "desc")),
        )
        if self._wants_csv(request):
            return self._csv_response("revenue_by_item.csv", rows)
        return Response(
            {"range": period, "date_from": date_from.isoformat(), "date_to": date_to.isoformat(), "results": rows}
        )


class RevenueByPaymentReportView(BaseReportView):
    def get(self, request):
        period, date_from, date_to = self._date_range(request)
        rows = self._cached(request, "revenue-by-payment", lambda: revenue_by_payment(date_from, date_to))
        if self._wants_csv(request):
            return self._csv_response("revenue_by_payment.csv", rows)
        return Response(
            {"range": period, "date_from": date_from.isoformat(), "date_to": date_to.isoformat(), "results": rows}
        )


class RevenueSummaryReportView(BaseReportView):
    def get(self, request):
        _, date_from, date_to = self._date_range(request)
        payload = self._cached(request, "revenue-summary", lambda: to_json_compatible(revenue_summary(date_from, date_to)))
        if self._wants_csv(request):
            return self._csv_response("revenue_summary.csv", [payload])
        return Response(payload)


class ExecutiveSummaryReportView(BaseReportView):
    """Period summary; ``?format=csv`` downloads it with every sale of the period."""

    def get(self, request):
        _, date_from, date_to = self._date_range(request)
        summary = executive_summary(date_from, date_to)
        if self._wants_csv(request):
            return self._summary_csv(summary, sales_between(date_from, date_to).select_related("item").order_by("date"))
        return Response(to_json_compatible(summary))

    def _summary_csv(self, summary, sales):
        currency = summary["currency"]
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="cafe_report_{summary["date_from"].isoformat()}.csv"'
        writer = csv.writer(response)

        writer.writerow(["EXECUTIVE SUMMARY"])
        writer.writerow(["Report Period", f'{summary["date_from"].isoformat()} to {summary["date_to"].isoformat()}'])
        writer.writerow(["Total Revenue", f'{currency} {major_units(summary["total_revenue"])}'])
        writer.writerow(["Total Items Sold", summary["total_items_sold"]])
        writer.writerow(["Average Order Value", f'{currency} {major_units(summary["average_order_value"])}'])
        writer.writerow(["Top Performing Category", summary["top_category"] or ""])
        writer.writerow(["Total Stock Wastage", f'{summary["wastage_total"]} units'])
        writer.writerow(["Total Expenses", f'{currency} {major_units(summary["expenses"])}'])
        writer.writerow([])

        writer.writerow(["SALES BY ITEM SUMMARY"])
        writer.writerow(["Item", "Total Quantity", f"Total Revenue ({currency})"])
        for row in summary["by_item"]:
            writer.writerow([row["name"], row["quantity"], major_units(row["revenue"])])
        writer.writerow([])

        writer.writerow(["SALES BY LABEL SUMMARY"])
        writer.writerow(["Label", "Total Quantity", f"Total Revenue ({currency})"])
        for row in summary["by_label"]:
            writer.writerow([row["label"], row["quantity"], major_units(row["revenue"])])
        writer.writerow([])

        writer.writerow(["DETAILED SALES REPORT"])
        writer.writerow(
            [
                "ID",
                "Date",
                "Item",
                "Category",
                "Quantity",
                f"COGS ({currency})",
                f"Selling Price ({currency})",
                "Labels",
                f"Total ({currency})",
            ]
        )
        for sale in sales:
            writer.writerow(
                [
                    sale.id,
                    timezone.localtime(sale.date).date().isoformat(),
                    sale.item.name,
                    sale.item.category,
                    sale.quantity,
                    major_units(sale.cogs),
                    major_units(sale.unit_price),
                    ", ".join(sale.labels or []),
                    major_units(sale.total),
                ]
            )
        return response
