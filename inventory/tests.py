import threading
import uuid
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from unittest import skipUnless
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.db import connection
from django.db.models import F
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIClient

from common.exceptions import ConflictError
from core.models import AuditLog
from inventory import ledger
from inventory.models import DailyStockRecord, Item, Recipe
from inventory.services import (
    create_item,
    delete_item,
    delete_recipe,
    update_item,
    upsert_recipe,
)

DAY1 = date(2024, 3, 1)
DAY2 = DAY1 + timedelta(days=1)
DAY3 = DAY1 + timedelta(days=2)


def make_ingredient(name="Milk", unit=Item.Unit.MILLILITRE, cost_price=12, min_stock=0):
    return Item.objects.create(
        name=name,
        category="Ingredients",
        unit=unit,
        is_ingredient=True,
        cost_price=cost_price,
        min_stock=min_stock,
    )


def make_menu_item(name="Cafe Latte", selling_price=25000):
    return Item.objects.create(name=name, category="Drinks", unit=Item.Unit.PIECE, selling_price=selling_price)


class StockLedgerTests(TestCase):
    def setUp(self):
        self.milk = make_ingredient()

    def record(self, day):
        return DailyStockRecord.objects.get(item=self.milk, business_date=day)

    def assertBalanced(self):
        for record in DailyStockRecord.objects.filter(item=self.milk):
            self.assertEqual(
                record.closing_stock,
                record.opening_stock + record.purchased - record.sold - record.wastage,
            )

    def assertContinuous(self):
        previous_closing = 0
        for record in DailyStockRecord.objects.filter(item=self.milk).order_by("business_date"):
            self.assertEqual(record.opening_stock, previous_closing, record.business_date)
            previous_closing = record.closing_stock

    def test_first_access_creates_empty_record(self):
        record = ledger.get_or_init(self.milk.id, DAY1)

        self.assertEqual((record.opening_stock, record.closing_stock), (0, 0))
        self.assertEqual(DailyStockRecord.objects.filter(item=self.milk).count(), 1)

    def test_next_recorded_day_opens_at_previous_closing(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.consume(self.milk.id, DAY3, 3)

        day3 = self.record(DAY3)
        self.assertEqual(day3.opening_stock, 10)
        self.assertEqual(day3.closing_stock, 7)
        # Idle days get no row.
        self.assertFalse(DailyStockRecord.objects.filter(item=self.milk, business_date=DAY2).exists())
        self.assertBalanced()

    def test_repeated_reads_are_idempotent(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)

        first = ledger.get_or_init(self.milk.id, DAY2)
        second = ledger.get_or_init(self.milk.id, DAY2)

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(
            (first.opening_stock, first.closing_stock, first.version),
            (second.opening_stock, second.closing_stock, second.version),
        )

    def test_late_purchase_propagates_through_later_days(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.get_or_init(self.milk.id, DAY2)
        ledger.consume(self.milk.id, DAY3, 3)
        self.assertEqual((self.record(DAY2).opening_stock, self.record(DAY2).closing_stock), (10, 10))
        self.assertEqual((self.record(DAY3).opening_stock, self.record(DAY3).closing_stock), (10, 7))

        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 5, DAY1)

        self.assertEqual(self.record(DAY1).closing_stock, 15)
        self.assertEqual((self.record(DAY2).opening_stock, self.record(DAY2).closing_stock), (15, 15))
        self.assertEqual((self.record(DAY3).opening_stock, self.record(DAY3).closing_stock), (15, 12))
        self.assertBalanced()

    def test_read_heals_drifted_opening_and_pushes_forward(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.apply_transaction(self.milk.id, ledger.WASTAGE, 2, DAY2)
        ledger.consume(self.milk.id, DAY3, 1)
        DailyStockRecord.objects.filter(item=self.milk, business_date=DAY2).update(opening_stock=99, closing_stock=97)
        DailyStockRecord.objects.filter(item=self.milk, business_date=DAY3).update(opening_stock=97, closing_stock=96)

        healed = ledger.get_or_init(self.milk.id, DAY2)

        self.assertEqual((healed.opening_stock, healed.closing_stock), (10, 8))
        self.assertEqual((self.record(DAY3).opening_stock, self.record(DAY3).closing_stock), (8, 7))
        self.assertBalanced()

    def test_wastage_and_release(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 20, DAY1)
        ledger.apply_transaction(self.milk.id, ledger.WASTAGE, 4, DAY1)
        ledger.consume(self.milk.id, DAY1, 6)
        ledger.release(self.milk.id, DAY1, 6)

        record = self.record(DAY1)
        self.assertEqual((record.purchased, record.wastage, record.sold, record.closing_stock), (20, 4, 0, 16))

    def test_opening_transaction_is_a_checkpoint(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.consume(self.milk.id, DAY3, 3)

        ledger.apply_transaction(self.milk.id, ledger.OPENING, 50, DAY2)

        day2 = self.record(DAY2)
        self.assertTrue(day2.opening_overridden)
        self.assertEqual((day2.opening_stock, day2.closing_stock), (50, 50))
        self.assertEqual((self.record(DAY3).opening_stock, self.record(DAY3).closing_stock), (50, 47))

        # Reads and the repair job keep the counted opening.
        self.assertEqual(ledger.get_or_init(self.milk.id, DAY2).opening_stock, 50)
        self.assertEqual(ledger.reconcile_item(self.milk.id), 0)
        self.assertEqual(ledger.reconcile_forward(self.milk.id, DAY1), 0)
        self.assertEqual(self.record(DAY3).closing_stock, 47)

    def test_earlier_change_rechains_a_counted_day(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 1000, DAY1)
        ledger.apply_transaction(self.milk.id, ledger.OPENING, 50, DAY2)
        ledger.consume(self.milk.id, DAY3, 3)

        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 5, DAY1)

        day2 = ledger.get_or_init(self.milk.id, DAY2)
        self.assertFalse(day2.opening_overridden)
        self.assertEqual(day2.opening_stock, self.record(DAY1).closing_stock)
        self.assertEqual((day2.opening_stock, day2.closing_stock), (1005, 1005))
        self.assertEqual((self.record(DAY3).opening_stock, self.record(DAY3).closing_stock), (1005, 1002))
        self.assertContinuous()
        self.assertBalanced()

    def test_mixed_sequence_keeps_every_day_chained(self):
        day4 = DAY1 + timedelta(days=3)
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 40, DAY2)
        ledger.consume(self.milk.id, day4, 7)
        ledger.apply_transaction(self.milk.id, ledger.OPENING, 30, DAY3)
        ledger.apply_transaction(self.milk.id, ledger.WASTAGE, 2, DAY3)
        ledger.get_or_init(self.milk.id, DAY1)
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 12, DAY1)
        ledger.release(self.milk.id, day4, 2)

        closings = DailyStockRecord.objects.filter(item=self.milk).order_by("business_date")
        self.assertEqual([record.closing_stock for record in closings], [12, 52, 50, 45])
        self.assertContinuous()
        self.assertBalanced()

    def test_available_stock_is_closing_of_the_day(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.consume(self.milk.id, DAY3, 4)

        self.assertEqual(ledger.available_stock(self.milk.id, DAY1), 10)
        self.assertEqual(ledger.available_stock(self.milk.id, DAY2), 10)
        self.assertEqual(ledger.available_stock(self.milk.id, DAY3), 6)

    def test_reconcile_item_repairs_whole_chain(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.consume(self.milk.id, DAY2, 2)
        ledger.consume(self.milk.id, DAY3, 3)
        DailyStockRecord.objects.filter(item=self.milk, business_date=DAY1).update(closing_stock=4)
        DailyStockRecord.objects.filter(item=self.milk, business_date=DAY3).update(opening_stock=0, closing_stock=0)

        repaired = ledger.reconcile_item(self.milk.id)

        self.assertEqual(repaired, 2)
        self.assertEqual(self.record(DAY1).closing_stock, 10)
        self.assertEqual((self.record(DAY2).opening_stock, self.record(DAY2).closing_stock), (10, 8))
        self.assertEqual((self.record(DAY3).opening_stock, self.record(DAY3).closing_stock), (8, 5))
        self.assertEqual(ledger.reconcile_item(self.milk.id), 0)

    def test_reconcile_command_reports_repaired_records(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.get_or_init(self.milk.id, DAY2)
        DailyStockRecord.objects.filter(item=self.milk, business_date=DAY2).update(opening_stock=3, closing_stock=3)

        out = StringIO()
        call_command("reconcile_stock_ledger", item_ids=[str(self.milk.id)], stdout=out)

        self.assertIn("Repaired records: 1", out.getvalue())

        self.assertEqual(self.record(DAY2).opening_stock, 10)

    def test_write_with_stale_version_is_rejected(self):
        record = ledger.get_or_init(self.milk.id, DAY1)
        DailyStockRecord.objects.filter(pk=record.pk).update(version=F("version") + 1)
        record.purchased = 3
        record.recompute()

        with self.assertRaises(ledger.StaleLedgerRecord):
            ledger._write_record(record)

        self.assertEqual(self.record(DAY1).purchased, 0)

    def test_lost_race_is_retried_once(self):
        write_record = ledger._write_record
        calls = []

        def stale_once(record):
            calls.append(record.pk)
            if len(calls) == 1:
                raise ledger.StaleLedgerRecord(record)
            return write_record(record)

        with patch("inventory.ledger._write_record", side_effect=stale_once):
            ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 5, DAY1)

        self.assertEqual(len(calls), 2)
        record = self.record(DAY1)
        self.assertEqual((record.purchased, record.closing_stock), (5, 5))

    @override_settings(STOCK_LEDGER_MAX_RETRIES=2)
    def test_retries_exhausted_surface_conflict(self):
        calls = []

        def always_stale(record):
            calls.append(record.pk)
            raise ledger.StaleLedgerRecord(record)

        with patch("inventory.ledger._write_record", side_effect=always_stale):
            with self.assertRaises(ConflictError):
                ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 5, DAY1)

        self.assertEqual(len(calls), 2)
        self.assertFalse(DailyStockRecord.objects.filter(item=self.milk, purchased__gt=0).exists())

    def test_transaction_validation(self):
        with self.assertRaises(ValidationError):
            ledger.apply_transaction(self.milk.id, ledger.PURCHASE, -1, DAY1)
        with self.assertRaises(ValidationError):
            ledger.apply_transaction(self.milk.id, "theft", 1, DAY1)
        with self.assertRaises(ValidationError):
            ledger.apply_transaction("not-a-uuid", ledger.PURCHASE, 1, DAY1)
        with self.assertRaises(ValidationError):
            ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 1, "31/12/2024")
        with self.assertRaises(NotFound):
            ledger.apply_transaction(uuid.uuid4(), ledger.PURCHASE, 1, DAY1)

    def test_get_stock_materializes_active_ingredients_only(self):
        inactive = make_ingredient(name="Old Syrup", unit=Item.Unit.MILLILITRE)
        inactive.is_active = False
        inactive.save()
        make_menu_item()

        records = list(ledger.get_stock(DAY1))

        self.assertEqual([record.item_id for record in records], [self.milk.id])

    def test_low_stock_lists_ingredients_below_minimum(self):
        beans = make_ingredient(name="Coffee Beans", unit=Item.Unit.GRAM, min_stock=500)
        self.milk.min_stock = 100
        self.milk.save()
        ledger.apply_transaction(beans.id, ledger.PURCHASE, 200, DAY1)
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 1000, DAY1)

        rows = ledger.low_stock(DAY1)

        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["item_id"], beans.id)
        self.assertEqual(rows[0]["shortfall"], 300)


@pytest.mark.postgres
@skipUnless(connection.vendor == "postgresql", "Row locks need PostgreSQL.")
class StockLedgerConcurrencyTests(TransactionTestCase):
    """Run against PostgreSQL: DATABASE_URL=postgres://... pytest -m postgres"""

    def test_parallel_consumes_lose_no_updates(self):
        milk = make_ingredient()
        ledger.apply_transaction(milk.id, ledger.PURCHASE, 1000, DAY1)
        errors = []

        def worker():
            try:
                for _ in range(5):
                    ledger.consume(milk.id, DAY1, 1)
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        record = DailyStockRecord.objects.get(item=milk, business_date=DAY1)
        self.assertEqual(record.sold, 40)
        self.assertEqual(record.closing_stock, 960)


class ItemAndRecipeServiceTests(TestCase):
    def setUp(self):
        self.milk = make_ingredient(cost_price=12)
        self.beans = make_ingredient(name="Coffee Beans", unit=Item.Unit.GRAM, cost_price=300)
        self.latte = make_menu_item()

    def components(self, milk="200", beans="18"):
        return [
            {"ingredient_id": str(self.milk.id), "quantity_per_unit": milk},
            {"ingredient_id": str(self.beans.id), "quantity_per_unit": beans, "unit": Item.Unit.GRAM},
        ]

    def test_upsert_recipe_derives_cost(self):
        recipe = upsert_recipe(self.latte.id, self.components())

        self.latte.refresh_from_db()
        self.assertEqual(self.latte.cost_price, 200 * 12 + 18 * 300)
        self.assertTrue(self.latte.cost_is_derived)
        units = {component.ingredient_id: component.unit for component in recipe.components.all()}
        self.assertEqual(units[self.milk.id], Item.Unit.MILLILITRE)

    def test_upsert_recipe_replaces_components(self):
        upsert_recipe(self.latte.id, self.components())
        upsert_recipe(self.latte.id, [{"ingredient_id": str(self.beans.id), "quantity_per_unit": "0.5"}])

        recipe = Recipe.objects.get(menu_item=self.latte)
        self.assertEqual(recipe.components.count(), 1)
        self.latte.refresh_from_db()
        self.assertEqual(self.latte.cost_price, 150)

    def test_derived_cost_rounds_half_up(self):
        upsert_recipe(self.latte.id, [{"ingredient_id": str(self.milk.id), "quantity_per_unit": "0.125"}])

        self.latte.refresh_from_db()
        self.assertEqual(self.latte.cost_price, 2)

    def test_upsert_recipe_rejects_invalid_components(self):
        invalid = [
            [],
            [{"ingredient_id": str(self.milk.id), "quantity_per_unit": "0"}],
            [{"ingredient_id": str(self.milk.id), "quantity_per_unit": "-1"}],
            [{"ingredient_id": str(self.latte.id), "quantity_per_unit": "1"}],
            self.components() + [{"ingredient_id": str(self.milk.id), "quantity_per_unit": "5"}],
            [{"ingredient_id": str(self.milk.id), "quantity_per_unit": "1", "unit": "cups"}],
        ]
        for components in invalid:
            with self.subTest(components=components):
                with self.assertRaises(ValidationError):
                    upsert_recipe(self.latte.id, components)

        self.assertFalse(Recipe.objects.filter(menu_item=self.latte).exists())

    def test_upsert_recipe_rejects_non_ingredient_component_and_ingredient_target(self):
        espresso = make_menu_item(name="Espresso")
        with self.assertRaises(ValidationError):
            upsert_recipe(self.latte.id, [{"ingredient_id": str(espresso.id), "quantity_per_unit": "1"}])
        with self.assertRaises(ValidationError):
            upsert_recipe(self.milk.id, [{"ingredient_id": str(self.beans.id), "quantity_per_unit": "1"}])

    def test_upsert_recipe_unknown_ids(self):
        with self.assertRaises(NotFound):
            upsert_recipe(uuid.uuid4(), self.components())
        with self.assertRaises(NotFound):
            upsert_recipe(self.latte.id, [{"ingredient_id": str(uuid.uuid4()), "quantity_per_unit": "1"}])

    def test_ingredient_cost_change_updates_menu_costs(self):
        upsert_recipe(self.latte.id, self.components())

        update_item(self.milk, cost_price=20)

        self.latte.refresh_from_db()
        self.assertEqual(self.latte.cost_price, 200 * 20 + 18 * 300)

    def test_manual_menu_cost_is_flagged_until_next_recipe_save(self):
        upsert_recipe(self.latte.id, self.components())

        update_item(self.latte, cost_price=1)
        self.latte.refresh_from_db()
        self.assertEqual(self.latte.cost_price, 1)
        self.assertFalse(self.latte.cost_is_derived)

        upsert_recipe(self.latte.id, self.components())
        self.latte.refresh_from_db()
        self.assertTrue(self.latte.cost_is_derived)
        self.assertEqual(self.latte.cost_price, 7800)

    def test_item_prices_must_be_non_negative_integers(self):
        with self.assertRaises(ValidationError):
            create_item(name="Tea", category="Drinks", selling_price=-5)
        with self.assertRaises(ValidationError):
            update_item(self.latte, min_stock=Decimal("1.5"))

    def test_delete_item_with_history_conflicts(self):
        upsert_recipe(self.latte.id, self.components())
        with self.assertRaises(ConflictError):
            delete_item(self.milk)

        unused = make_ingredient(name="Cinnamon", unit=Item.Unit.GRAM)
        delete_item(unused)
        self.assertFalse(Item.objects.filter(id=unused.id).exists())

    def test_delete_missing_recipe_not_found(self):
        with self.assertRaises(NotFound):
            delete_recipe(self.latte.id)

    def test_delete_recipe_without_sales(self):
        upsert_recipe(self.latte.id, self.components())

        delete_recipe(self.latte.id)

        self.assertFalse(Recipe.objects.filter(menu_item=self.latte).exists())


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.milk = make_ingredient(min_stock=500)
        self.latte = make_menu_item()

    def test_create_and_filter_items(self):
        response = self.client.post(
            "/api/v1/items/",
            {"name": " Sugar ", "category": "Ingredients", "unit": "g", "is_ingredient": True, "cost_price": 2},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["name"], "Sugar")
        self.assertTrue(AuditLog.objects.filter(action="item.create", entity_id=response.json()["id"]).exists())

        response = self.client.get("/api/v1/items/", {"is_ingredient": "true"})
        names = {row["name"] for row in response.json()["results"]}
        self.assertEqual(names, {"Milk", "Sugar"})

    def test_negative_price_is_rejected(self):
        response = self.client.post(
            "/api/v1/items/",
            {"name": "Tea", "category": "Drinks", "selling_price": -1},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertEqual(payload["code"], "validation_error")
        self.assertIn("selling_price", payload["errors"])

    def test_delete_item_with_history_returns_conflict(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)

        response = self.client.delete(f"/api/v1/items/{self.milk.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "conflict")

    def test_recipe_round_trip(self):
        url = f"/api/v1/recipes/{self.latte.id}/"
        self.assertEqual(self.client.get(url).status_code, 404)

        response = self.client.put(
            url,
            {"components": [{"ingredient_id": str(self.milk.id), "quantity_per_unit": "200"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["cost_price"], 2400)
        self.assertEqual(self.client.get(url).json()["components"][0]["ingredient_name"], "Milk")
        self.assertTrue(AuditLog.objects.filter(action="recipe.upsert", entity_id=str(self.latte.id)).exists())

        self.assertEqual(self.client.delete(url).status_code, 204)
        self.assertFalse(Recipe.objects.filter(menu_item=self.latte).exists())

    def test_empty_recipe_is_rejected(self):
        response = self.client.put(f"/api/v1/recipes/{self.latte.id}/", {"components": []}, format="json")

        self.assertEqual(response.status_code, 400)

    def test_stock_transaction_and_daily_view(self):
        response = self.client.post(
            "/api/v1/stock/transaction/",
            {"item_id": str(self.milk.id), "type": "purchase", "quantity": 300, "date": "2024-03-01"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["closing_stock"], 300)
        self.assertTrue(AuditLog.objects.filter(action="stock.purchase").exists())

        response = self.client.get("/api/v1/stock/", {"date": "2024-03-02"})
        self.assertEqual(response.status_code, 200)
        rows = response.json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["item_name"], "Milk")
        self.assertEqual((rows[0]["opening_stock"], rows[0]["closing_stock"]), (300, 300))

    def test_stock_transaction_validation(self):
        response = self.client.post(
            "/api/v1/stock/transaction/",
            {"item_id": str(self.milk.id), "type": "purchase", "quantity": -3},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/v1/stock/transaction/",
            {"item_id": str(uuid.uuid4()), "type": "purchase", "quantity": 3},
            format="json",
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_reconcile_endpoint(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 10, DAY1)
        ledger.get_or_init(self.milk.id, DAY2)
        DailyStockRecord.objects.filter(item=self.milk, business_date=DAY2).update(opening_stock=0, closing_stock=0)

        response = self.client.post("/api/v1/stock/reconcile/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"repaired": 1})

    def test_low_stock_json_and_csv(self):
        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 100, DAY1)

        response = self.client.get("/api/v1/stock/low/", {"date": "2024-03-01"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["results"][0]["shortfall"], 400)

        response = self.client.get("/api/v1/stock/low/", {"date": "2024-03-01", "format": "csv"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        self.assertIn("Milk", response.content.decode())

    def test_malformed_identifier_is_not_routed(self):
        response = self.client.get("/api/v1/items/not-a-uuid/")

        self.assertEqual(response.status_code, 404)
