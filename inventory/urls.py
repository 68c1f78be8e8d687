from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import ItemViewSet, RecipeView, StockReconcileView, StockTransactionView, StockView
from sales.reports import LowStockReportView

router = DefaultRouter()
router.register(r"items", ItemViewSet, basename="item")

urlpatterns = router.urls + [
    path("recipes/<uuid:item_id>/", RecipeView.as_view(), name="recipe"),
    path("stock/", StockView.as_view(), name="stock"),
    path("stock/transaction/", StockTransactionView.as_view(), name="stock-transaction"),
    path("stock/reconcile/", StockReconcileView.as_view(), name="stock-reconcile"),
    path("stock/low/", LowStockReportView.as_view(), name="stock-low"),
]
