from io import StringIO
from unittest.mock import patch

from django.core.management import call_command
from django.test import TestCase, override_settings
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from common.audit import create_audit_log
from common.exceptions import custom_exception_handler
from core.models import AuditLog, Setting
from core.services import CafeSettings, DatabaseSettingsBackend, InMemorySettingsBackend
from inventory.models import Item, Recipe
from sales.models import DiningTable


class CafeSettingsServiceTests(TestCase):
    def test_defaults(self):
        cafe_settings = CafeSettings(InMemorySettingsBackend())

        self.assertFalse(cafe_settings.allow_sale_without_stock)
        self.assertEqual((cafe_settings.cash_balance, cafe_settings.bank_balance), (0, 0))
        self.assertEqual(cafe_settings.configured_labels, [])
        self.assertEqual(cafe_settings.configured_categories, ["Snacks", "Drinks", "Main"])
        self.assertEqual(cafe_settings.sales_targets, {"weekly": 1550000, "monthly": 6670000, "quarterly": 20000000})

    @override_settings(ALLOW_SALE_WITHOUT_STOCK=True)
    def test_flag_default_follows_environment(self):
        self.assertTrue(CafeSettings(InMemorySettingsBackend()).allow_sale_without_stock)

    def test_flag_accepts_stored_strings(self):
        cafe_settings = CafeSettings(InMemorySettingsBackend({"allow_sale_without_stock": "true"}))

        self.assertTrue(cafe_settings.allow_sale_without_stock)

    def test_balances_by_payment_method(self):
        cafe_settings = CafeSettings(DatabaseSettingsBackend())

        cafe_settings.add_to_balance("CASH", 500)
        cafe_settings.add_to_balance("CASH", 250)
        cafe_settings.add_to_balance("CARD", 100)

        self.assertEqual(cafe_settings.cash_balance, 750)
        self.assertEqual(cafe_settings.bank_balance, 100)
        self.assertEqual(Setting.objects.get(key="cash_balance").value, 750)
        with self.assertRaises(ValidationError):
            cafe_settings.add_to_balance("CREDIT", 10)

    def test_labels_and_categories(self):
        cafe_settings = CafeSettings(DatabaseSettingsBackend())

        cafe_settings.add_label("promo")
        cafe_settings.add_label(" promo ")
        cafe_settings.add_category("Desserts")
        cafe_settings.remove_category("Main")

        self.assertEqual(cafe_settings.configured_labels, ["promo"])
        self.assertEqual(cafe_settings.configured_categories, ["Snacks", "Drinks", "Desserts"])
        self.assertEqual(cafe_settings.remove_label("promo"), [])
        with self.assertRaises(ValidationError):
            cafe_settings.add_label("  ")

    def test_expense_categories(self):
        cafe_settings = CafeSettings(InMemorySettingsBackend())
        self.assertEqual(
            cafe_settings.expense_categories,
            ["Rent", "Salary", "Utilities", "Supplies", "Maintenance", "Misc"],
        )

        cafe_settings.add_expense_category("Marketing")
        cafe_settings.remove_expense_category("Misc")

        self.assertEqual(cafe_settings.expense_categories[-1], "Marketing")
        self.assertNotIn("Misc", cafe_settings.expense_categories)
        # Menu categories are a separate list.
        self.assertEqual(cafe_settings.configured_categories, ["Snacks", "Drinks", "Main"])

    def test_sales_targets(self):
        cafe_settings = CafeSettings(InMemorySettingsBackend())

        targets = cafe_settings.update_sales_targets(weekly=100, monthly=400, quarterly=1200)

        self.assertEqual(targets, {"weekly": 100, "monthly": 400, "quarterly": 1200})
        with self.assertRaises(ValidationError):
            cafe_settings.update_sales_targets(weekly=-1, monthly=400, quarterly=1200)


class SettingsApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_get_and_patch_settings(self):
        response = self.client.get("/api/v1/settings/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["allow_sale_without_stock"], False)
        self.assertEqual(response.json()["currency"], "NPR")

        response = self.client.patch("/api/v1/settings/", {"allow_sale_without_stock": True}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["allow_sale_without_stock"])
        log = AuditLog.objects.get(action="settings.update")
        self.assertEqual(log.before_snapshot["allow_sale_without_stock"], False)

    def test_labels_endpoint(self):
        response = self.client.post("/api/v1/settings/labels/", {"name": "happy-hour"}, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["configured"], ["happy-hour"])

        response = self.client.delete("/api/v1/settings/labels/?name=happy-hour")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"configured": [], "labels": []})

        self.assertEqual(self.client.delete("/api/v1/settings/labels/").status_code, 400)

    def test_categories_endpoint(self):
        response = self.client.post("/api/v1/settings/categories/", {"name": "Desserts"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertIn("Desserts", response.json()["categories"])

    def test_expense_categories_endpoint(self):
        response = self.client.post("/api/v1/settings/expense-categories/", {"name": "Marketing"}, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertIn("Marketing", response.json()["categories"])

        response = self.client.delete("/api/v1/settings/expense-categories/?name=Rent")
        self.assertNotIn("Rent", response.json()["categories"])

    def test_targets_endpoint(self):
        response = self.client.put(
            "/api/v1/settings/targets/",
            {"weekly": 1000, "monthly": 4000, "quarterly": 12000},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/v1/settings/targets/").json()["monthly"], 4000)

        response = self.client.put("/api/v1/settings/targets/", {"weekly": -5, "monthly": 1, "quarterly": 1}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertIn("weekly", response.json()["errors"])


class AuditLogApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        create_audit_log(action="stock.purchase", entity="daily_stock_record", entity_id="a", request_id="req-1")
        create_audit_log(action="order.close", entity="order", entity_id="b", request_id="req-2")

    def test_mutations_are_audited_with_request_id(self):
        response = self.client.post(
            "/api/v1/tables/",
            {"number": 9, "capacity": 4},
            format="json",
            HTTP_X_REQUEST_ID="req-table",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response["X-Request-ID"], "req-table")
        log = AuditLog.objects.get(action="table.create")
        self.assertEqual(log.request_id, "req-table")
        self.assertEqual(log.after_snapshot["number"], 9)
        self.assertEqual(log.entity_id, str(DiningTable.objects.get(number=9).id))

    def test_filter_and_export(self):
        response = self.client.get("/api/v1/audit-logs/", {"entity": "order"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual([row["action"] for row in results], ["order.close"])

        response = self.client.get("/api/v1/audit-logs/export/", {"action": "stock.purchase"})
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn("req-1", lines[1])

    def test_invalid_date_filter(self):
        response = self.client.get("/api/v1/audit-logs/", {"start_date": "yesterday"})

        self.assertEqual(response.status_code, 400)


class HealthAndErrorTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_health_checks(self):
        self.assertEqual(self.client.get("/api/v1/healthz/").json()["status"], "ok")
        self.assertEqual(self.client.get("/api/v1/readyz/").json()["status"], "ready")

    def test_readiness_reports_database_failure(self):
        with patch("core.views.connections") as connections:
            connections.__getitem__.return_value.cursor.side_effect = RuntimeError("db down")
            response = self.client.get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["status"], "error")

    def test_unhandled_errors_use_envelope(self):
        with self.assertLogs("common.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {"view": None})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(
            response.data,
            {"code": "internal_server_error", "message": "An unexpected error occurred.", "errors": None, "status": 500},
        )

    def test_validation_errors_use_envelope(self):
        response = self.client.post("/api/v1/orders/", {}, format="json")

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertEqual(payload["message"], "Validation failed.")
        self.assertIn("table_id", payload["errors"])


class SeedDemoDataCommandTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        self.assertEqual(Item.objects.filter(is_ingredient=True).count(), 4)
        self.assertEqual(Recipe.objects.count(), 3)
        self.assertEqual(DiningTable.objects.count(), 6)
        latte = Item.objects.get(name="Cafe Latte")
        self.assertTrue(latte.cost_is_derived)
