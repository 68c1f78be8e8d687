from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import (
    AuditLogViewSet,
    CategoriesView,
    ExpenseCategoriesView,
    LabelsView,
    SalesTargetsView,
    SettingsView,
    healthz,
    readyz,
)

router = DefaultRouter()
router.register(r"audit-logs", AuditLogViewSet, basename="audit-log")

urlpatterns = router.urls + [
    path("settings/", SettingsView.as_view(), name="settings"),
    path("settings/labels/", LabelsView.as_view(), name="settings-labels"),
    path("settings/categories/", CategoriesView.as_view(), name="settings-categories"),
    path("settings/expense-categories/", ExpenseCategoriesView.as_view(), name="settings-expense-categories"),
    path("settings/targets/", SalesTargetsView.as_view(), name="settings-targets"),
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
