from django.urls import path
from rest_framework.routers import DefaultRouter

from sales.reports import (
    DashboardReportView,
    ExecutiveSummaryReportView,
    ProfitReportView,
    RevenueByItemReportView,
    RevenueByPaymentReportView,
    RevenueSummaryReportView,
    SalesByLabelReportView,
)
from sales.views import CustomerViewSet, DiningTableViewSet, OrderViewSet, ReceivableViewSet, SaleViewSet

router = DefaultRouter()
router.register(r"sales", SaleViewSet, basename="sale")
router.register(r"tables", DiningTableViewSet, basename="table")
router.register(r"orders", OrderViewSet, basename="order")
router.register(r"customers", CustomerViewSet, basename="customer")
router.register(r"receivables", ReceivableViewSet, basename="receivable")

urlpatterns = router.urls + [
    path("reports/dashboard/", DashboardReportView.as_view(), name="report-dashboard"),
    path("reports/profit/", ProfitReportView.as_view(), name="report-profit"),
    path("reports/sales-by-label/", SalesByLabelReportView.as_view(), name="report-sales-by-label"),
    path("reports/revenue-by-item/", RevenueByItemReportView.as_view(), name="report-revenue-by-item"),
    path("reports/revenue-by-payment/", RevenueByPaymentReportView.as_view(), name="report-revenue-by-payment"),
    path("reports/revenue-summary/", RevenueSummaryReportView.as_view(), name="report-revenue-summary"),
    path("reports/summary/", ExecutiveSummaryReportView.as_view(), name="report-summary"),
]
