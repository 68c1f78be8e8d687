import uuid
from datetime import date
from decimal import Decimal

from django.test import TestCase
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIClient

from common.exceptions import ConflictError, InsufficientStockError
from core.models import AuditLog
from core.services import CafeSettings, InMemorySettingsBackend, get_cafe_settings
from expenses.services import create_expense
from inventory import ledger
from inventory.models import Item, Recipe
from inventory.services import delete_recipe, upsert_recipe
from sales.models import Customer, DiningTable, Order, Receivable, Sale, SaleConsumption
from sales.reports import period_bounds
from sales.services import (
    add_item_to_order,
    cancel_order,
    close_order,
    create_order,
    create_sale,
    merged_labels,
    record_payment,
    remove_item_from_order,
    update_sale,
)

STOCK_DAY = date(2024, 3, 1)


class CafeFixtureMixin:
    """Milk, beans and bread in stock; latte, espresso and toast on the menu."""

    def setUp(self):
        self.milk = Item.objects.create(name="Milk", category="Ingredients", unit="ml", is_ingredient=True, cost_price=12)
        self.beans = Item.objects.create(name="Coffee Beans", category="Ingredients", unit="g", is_ingredient=True, cost_price=300)
        self.bread = Item.objects.create(name="Bread", category="Ingredients", unit="pcs", is_ingredient=True, cost_price=2500)
        self.latte = Item.objects.create(name="Cafe Latte", category="Drinks", selling_price=25000)
        self.espresso = Item.objects.create(name="Espresso", category="Drinks", selling_price=18000)
        self.toast = Item.objects.create(name="Toast", category="Snacks", selling_price=15000)

        upsert_recipe(
            self.latte.id,
            [
                {"ingredient_id": str(self.milk.id), "quantity_per_unit": "200"},
                {"ingredient_id": str(self.beans.id), "quantity_per_unit": "18"},
            ],
        )
        upsert_recipe(self.espresso.id, [{"ingredient_id": str(self.beans.id), "quantity_per_unit": "18"}])
        upsert_recipe(self.toast.id, [{"ingredient_id": str(self.bread.id), "quantity_per_unit": "1"}])

        ledger.apply_transaction(self.milk.id, ledger.PURCHASE, 1000, STOCK_DAY)
        ledger.apply_transaction(self.beans.id, ledger.PURCHASE, 100, STOCK_DAY)
        ledger.apply_transaction(self.bread.id, ledger.PURCHASE, 5, STOCK_DAY)

        self.table = DiningTable.objects.create(number=1)
        self.customer = Customer.objects.create(name="Asha", phone="9800000000")

    def stock_today(self, item):
        return ledger.available_stock(item.id, timezone.localdate())


class DirectSaleTests(CafeFixtureMixin, TestCase):
    def test_sale_consumes_recipe_and_snapshots_cogs(self):
        sale = create_sale(self.latte.id, 2, date="2024-03-02T10:00:00")

        self.assertEqual(sale.total, 50000)
        self.assertEqual(sale.cogs, Decimal("15600.00"))
        self.assertIsNotNone(sale.settled_at)
        self.assertEqual(SaleConsumption.objects.filter(sale=sale).count(), 2)
        self.assertEqual(ledger.available_stock(self.milk.id, date(2024, 3, 2)), 600)
        self.assertEqual(ledger.available_stock(self.beans.id, date(2024, 3, 2)), 64)
        # Earlier days are untouched.
        self.assertEqual(ledger.available_stock(self.milk.id, STOCK_DAY), 1000)

    def test_explicit_price_and_total(self):
        sale = create_sale(self.espresso.id, 2, unit_price=17000, total=30000, date="2024-03-02")

        self.assertEqual((sale.unit_price, sale.total), (17000, 30000))

    def test_sale_needing_one_more_unit_than_stock_is_rejected(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            create_sale(self.toast.id, 6, date="2024-03-02")

        self.assertEqual(
            ctx.exception.shortages,
            [{"ingredient_id": str(self.bread.id), "ingredient_name": "Bread", "available": 5, "required": 6}],
        )
        self.assertFalse(Sale.objects.exists())
        self.assertEqual(ledger.available_stock(self.bread.id, date(2024, 3, 2)), 5)

        create_sale(self.toast.id, 5, date="2024-03-02")
        self.assertEqual(ledger.available_stock(self.bread.id, date(2024, 3, 2)), 0)

    def test_override_flag_allows_selling_into_negative_stock(self):
        cafe_settings = CafeSettings(InMemorySettingsBackend({"allow_sale_without_stock": True}))

        create_sale(self.espresso.id, 6, date="2024-03-02", cafe_settings=cafe_settings)

        self.assertEqual(ledger.available_stock(self.beans.id, date(2024, 3, 2)), -8)

    def test_recipe_is_required(self):
        tea = Item.objects.create(name="Tea", category="Drinks", selling_price=8000)

        with self.assertRaises(ValidationError):
            create_sale(tea.id, 1)

    def test_only_active_menu_items_can_be_sold(self):
        with self.assertRaises(ValidationError):
            create_sale(self.milk.id, 1)

        self.latte.is_active = False
        self.latte.save()
        with self.assertRaises(ValidationError):
            create_sale(self.latte.id, 1)

    def test_quantity_must_be_positive(self):
        with self.assertRaises(ValidationError):
            create_sale(self.latte.id, 0)

    def test_labels_are_cleaned_and_merged(self):
        create_sale(self.espresso.id, 1, labels=[" promo ", "promo", "vip", ""])
        cafe_settings = CafeSettings(InMemorySettingsBackend({"configured_labels": ["breakfast", "vip"]}))

        self.assertEqual(Sale.objects.get().labels, ["promo", "vip"])
        self.assertEqual(merged_labels(cafe_settings), ["breakfast", "promo", "vip"])

    def test_recipe_with_sales_history_cannot_be_deleted(self):
        create_sale(self.espresso.id, 1)

        with self.assertRaises(ConflictError):
            delete_recipe(self.espresso.id)

        recipe = Recipe.objects.get(menu_item=self.espresso)
        self.assertEqual(recipe.components.count(), 1)


class SaleUpdateTests(CafeFixtureMixin, TestCase):
    def test_direct_sale_is_resettled(self):
        sale = create_sale(self.latte.id, 2, date="2024-03-02")

        sale = update_sale(sale.id, quantity=1)

        self.assertEqual(sale.total, 25000)
        self.assertEqual(sale.cogs, Decimal("7800.00"))
        self.assertEqual(ledger.available_stock(self.milk.id, date(2024, 3, 2)), 800)
        self.assertEqual(SaleConsumption.objects.get(sale=sale, ingredient=self.milk).quantity, 200)

    def test_moving_a_direct_sale_to_another_day(self):
        sale = create_sale(self.toast.id, 2, date="2024-03-02")

        update_sale(sale.id, date="2024-03-04")

        self.assertEqual(ledger.available_stock(self.bread.id, date(2024, 3, 2)), 5)
        self.assertEqual(ledger.available_stock(self.bread.id, date(2024, 3, 4)), 3)

    def test_label_and_price_edits_leave_stock_alone(self):
        lenient = CafeSettings(InMemorySettingsBackend({"allow_sale_without_stock": True}))
        sale = create_sale(self.toast.id, 8, date="2024-03-02", cafe_settings=lenient)
        settled_at = sale.settled_at

        sale = update_sale(sale.id, labels=["vip"], unit_price=16000)

        self.assertEqual(sale.labels, ["vip"])
        self.assertEqual(sale.total, 128000)
        self.assertEqual(sale.settled_at, settled_at)
        self.assertEqual(sale.cogs, Decimal("20000.00"))
        self.assertEqual(SaleConsumption.objects.get(sale=sale).quantity, 8)
        self.assertEqual(ledger.available_stock(self.bread.id, date(2024, 3, 2)), -3)

    def test_failed_resettlement_leaves_sale_untouched(self):
        sale = create_sale(self.toast.id, 2, date="2024-03-02")

        with self.assertRaises(InsufficientStockError):
            update_sale(sale.id, quantity=9)

        sale.refresh_from_db()
        self.assertEqual(sale.quantity, 2)
        self.assertIsNotNone(sale.settled_at)
        self.assertEqual(ledger.available_stock(self.bread.id, date(2024, 3, 2)), 3)

    def test_open_order_line_edit_moves_order_total(self):
        order = create_order(self.table.id)
        line = add_item_to_order(order.id, self.latte.id, 1)

        update_sale(line.id, quantity=3)

        order.refresh_from_db()
        self.assertEqual(order.total, 75000)
        self.assertFalse(SaleConsumption.objects.exists())

    def test_closed_order_line_accepts_labels_only(self):
        order = create_order(self.table.id)
        line = add_item_to_order(order.id, self.espresso.id, 1)
        close_order(order.id, Order.PaymentType.CASH)

        update_sale(line.id, labels=["late"])
        self.assertEqual(Sale.objects.get(id=line.id).labels, ["late"])

        with self.assertRaises(ConflictError):
            update_sale(line.id, quantity=2)

    def test_cancelled_order_line_is_frozen(self):
        order = create_order(self.table.id)
        line = add_item_to_order(order.id, self.espresso.id, 1)
        cancel_order(order.id)

        with self.assertRaises(ConflictError):
            update_sale(line.id, labels=["x"])

    def test_unknown_sale(self):
        with self.assertRaises(NotFound):
            update_sale(uuid.uuid4(), quantity=1)


class OrderWorkflowTests(CafeFixtureMixin, TestCase):
    def test_open_add_and_close_settles_every_line(self):
        order = create_order(self.table.id)
        self.assertEqual(DiningTable.objects.get(id=self.table.id).status, DiningTable.Status.OCCUPIED)
        milk_before = self.stock_today(self.milk)

        add_item_to_order(order.id, self.latte.id, 2)
        add_item_to_order(order.id, self.toast.id, 1, unit_price=14000)
        order.refresh_from_db()
        self.assertEqual(order.total, 64000)
        # Adding lines has no stock effect.
        self.assertEqual(self.stock_today(self.milk), milk_before)

        order = close_order(order.id, Order.PaymentType.CASH)

        self.assertEqual(order.status, Order.Status.CLOSED)
        self.assertEqual(order.payment_type, Order.PaymentType.CASH)
        self.assertIsNotNone(order.closed_at)
        self.assertEqual(DiningTable.objects.get(id=self.table.id).status, DiningTable.Status.EMPTY)
        self.assertEqual(self.stock_today(self.milk), milk_before - 400)
        self.assertEqual(self.stock_today(self.bread), 4)
        cogs = {line.item_id: line.cogs for line in order.lines.all()}
        self.assertEqual(cogs[self.latte.id], Decimal("15600.00"))
        self.assertEqual(cogs[self.toast.id], Decimal("2500.00"))
        self.assertFalse(Receivable.objects.exists())

    def test_close_is_all_or_nothing(self):
        order = create_order(self.table.id)
        add_item_to_order(order.id, self.latte.id, 1)
        add_item_to_order(order.id, self.toast.id, 6)
        milk_before = self.stock_today(self.milk)

        with self.assertRaises(InsufficientStockError):
            close_order(order.id, Order.PaymentType.CARD)

        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.OPEN)
        self.assertEqual(self.stock_today(self.milk), milk_before)
        self.assertFalse(SaleConsumption.objects.exists())
        self.assertFalse(Sale.objects.filter(settled_at__isnull=False).exists())
        self.assertEqual(DiningTable.objects.get(id=self.table.id).status, DiningTable.Status.OCCUPIED)

    def test_needs_are_summed_across_lines(self):
        order = create_order(self.table.id)
        add_item_to_order(order.id, self.latte.id, 3)
        add_item_to_order(order.id, self.espresso.id, 3)

        with self.assertRaises(InsufficientStockError) as ctx:
            close_order(order.id, Order.PaymentType.CASH)

        self.assertEqual(ctx.exception.shortages[0]["required"], 108)
        self.assertEqual(ctx.exception.shortages[0]["available"], 100)

    def test_second_open_order_for_table_is_rejected(self):
        create_order(self.table.id)

        with self.assertRaises(ConflictError):
            create_order(self.table.id)

        self.assertEqual(Order.objects.filter(table=self.table, status=Order.Status.OPEN).count(), 1)

    def test_table_can_reopen_after_cancel(self):
        order = create_order(self.table.id)
        cancel_order(order.id)

        self.assertEqual(Order.objects.get(id=order.id).status, Order.Status.CANCELLED)
        self.assertEqual(DiningTable.objects.get(id=self.table.id).status, DiningTable.Status.EMPTY)
        create_order(self.table.id)

    def test_lines_can_only_change_while_open(self):
        order = create_order(self.table.id)
        first = add_item_to_order(order.id, self.espresso.id, 1)
        second = add_item_to_order(order.id, self.toast.id, 1)

        order = remove_item_from_order(second.id, order_id=order.id)
        self.assertEqual(order.total, 18000)

        close_order(order.id, Order.PaymentType.CASH)
        with self.assertRaises(ConflictError):
            add_item_to_order(order.id, self.toast.id, 1)
        with self.assertRaises(ConflictError):
            remove_item_from_order(first.id)
        with self.assertRaises(ConflictError):
            close_order(order.id, Order.PaymentType.CASH)
        with self.assertRaises(ConflictError):
            cancel_order(order.id)

    def test_direct_sale_is_not_an_order_line(self):
        sale = create_sale(self.espresso.id, 1)

        with self.assertRaises(NotFound):
            remove_item_from_order(sale.id)

    def test_close_validation(self):
        order = create_order(self.table.id)

        with self.assertRaises(ValidationError):
            close_order(order.id, Order.PaymentType.CASH)

        add_item_to_order(order.id, self.espresso.id, 1)
        with self.assertRaises(ValidationError):
            close_order(order.id, Order.PaymentType.CREDIT)
        with self.assertRaises(ValidationError):
            close_order(order.id, "CHEQUE")
        with self.assertRaises(NotFound):
            close_order(order.id, Order.PaymentType.CREDIT, customer_id=uuid.uuid4())

        self.assertEqual(Order.objects.get(id=order.id).status, Order.Status.OPEN)


class ReceivableTests(CafeFixtureMixin, TestCase):
    def credit_order(self, amount=500):
        order = create_order(self.table.id)
        add_item_to_order(order.id, self.espresso.id, 1, unit_price=amount)
        close_order(order.id, Order.PaymentType.CREDIT, customer_id=self.customer.id)
        return Receivable.objects.get(order=order)

    def test_credit_close_opens_receivable(self):
        receivable = self.credit_order()

        self.assertEqual((receivable.amount, receivable.outstanding), (500, 500))
        self.assertEqual(receivable.status, Receivable.Status.OPEN)
        self.assertEqual(receivable.customer_id, self.customer.id)

    def test_zero_total_credit_order_is_settled_at_once(self):
        receivable = self.credit_order(amount=0)

        self.assertEqual((receivable.amount, receivable.outstanding), (0, 0))
        self.assertEqual(receivable.status, Receivable.Status.SETTLED)
        self.assertEqual(receivable.settled_at, receivable.order.closed_at)

    def test_payments_settle_receivable_and_feed_balances(self):
        receivable = self.credit_order()

        record_payment(receivable.id, 200, "CASH")
        receivable.refresh_from_db()
        self.assertEqual((receivable.outstanding, receivable.status), (300, Receivable.Status.OPEN))

        record_payment(receivable.id, 300, "CARD")
        receivable.refresh_from_db()
        self.assertEqual((receivable.outstanding, receivable.status), (0, Receivable.Status.SETTLED))
        self.assertIsNotNone(receivable.settled_at)
        self.assertEqual(receivable.payments.count(), 2)

        cafe_settings = get_cafe_settings()
        self.assertEqual(cafe_settings.cash_balance, 200)
        self.assertEqual(cafe_settings.bank_balance, 300)

        with self.assertRaises(ConflictError):
            record_payment(receivable.id, 1, "CASH")

    def test_overpayment_is_clamped(self):
        receivable = self.credit_order()

        record_payment(receivable.id, 600, "CASH")

        receivable.refresh_from_db()
        self.assertEqual((receivable.outstanding, receivable.status), (0, Receivable.Status.SETTLED))
        self.assertEqual(get_cafe_settings().cash_balance, 600)

    def test_payment_validation(self):
        receivable = self.credit_order()

        with self.assertRaises(ValidationError):
            record_payment(receivable.id, 0, "CASH")
        with self.assertRaises(ValidationError):
            record_payment(receivable.id, 100, "CREDIT")
        with self.assertRaises(NotFound):
            record_payment(uuid.uuid4(), 100, "CASH")

        receivable.refresh_from_db()
        self.assertEqual(receivable.outstanding, 500)
        self.assertFalse(receivable.payments.exists())


class PeriodBoundsTests(TestCase):
    def test_weeks_start_on_sunday(self):
        self.assertEqual(period_bounds("weekly", date(2024, 3, 6)), (date(2024, 3, 3), date(2024, 3, 9)))
        self.assertEqual(period_bounds("weekly", date(2024, 3, 3)), (date(2024, 3, 3), date(2024, 3, 9)))

    def test_month_quarter_and_year(self):
        self.assertEqual(period_bounds("monthly", date(2024, 2, 10)), (date(2024, 2, 1), date(2024, 2, 29)))
        self.assertEqual(period_bounds("quarterly", date(2024, 11, 5)), (date(2024, 10, 1), date(2024, 12, 31)))
        self.assertEqual(period_bounds("yearly", date(2024, 11, 5)), (date(2024, 1, 1), date(2024, 12, 31)))

    def test_unknown_period(self):
        with self.assertRaises(ValidationError):
            period_bounds("hourly", date(2024, 3, 6))


class ReportApiTests(CafeFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

        create_sale(self.latte.id, 1, labels=["promo"])

        closed = create_order(self.table.id)
        add_item_to_order(closed.id, self.espresso.id, 1, labels=["promo", "vip"])
        close_order(closed.id, Order.PaymentType.CASH)

        table_2 = DiningTable.objects.create(number=2)
        still_open = create_order(table_2.id)
        add_item_to_order(still_open.id, self.toast.id, 1)
        table_3 = DiningTable.objects.create(number=3)
        cancelled = create_order(table_3.id)
        add_item_to_order(cancelled.id, self.toast.id, 1)
        cancel_order(cancelled.id)

    def test_profit_counts_direct_sales_and_closed_orders(self):
        response = self.client.get("/api/v1/reports/profit/", {"range": "daily"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["revenue"], 43000)
        self.assertEqual(payload["cogs"], "13200.00")
        self.assertEqual(payload["gross_profit"], "29800.00")
        self.assertEqual(payload["margin_pct"], "69.30")

    def test_profit_csv(self):
        response = self.client.get("/api/v1/reports/profit/", {"range": "monthly", "format": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        header = response.content.decode().splitlines()[0]
        self.assertIn("gross_profit", header)

    def test_dashboard(self):
        response = self.client.get("/api/v1/reports/dashboard/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["sales"]["daily"], 43000)
        self.assertEqual(payload["top_items"][0]["name"], "Cafe Latte")
        self.assertEqual(payload["targets"]["weekly"], 1550000)

    def test_sales_by_label(self):
        response = self.client.get("/api/v1/reports/sales-by-label/", {"range": "daily"})

        rows = {row["label"]: row for row in response.json()["results"]}
        self.assertEqual(rows["promo"]["revenue"], 43000)
        self.assertEqual(rows["promo"]["quantity"], 2)
        self.assertEqual(rows["vip"]["revenue"], 18000)

    def test_profit_subtracts_expenses(self):
        create_expense(category="Supplies", amount=5000, date=timezone.localdate())

        payload = self.client.get("/api/v1/reports/profit/", {"range": "daily"}).json()

        self.assertEqual(payload["gross_profit"], "29800.00")
        self.assertEqual(payload["expenses"], 5000)
        self.assertEqual(payload["net_profit"], "24800.00")

    def test_revenue_by_item_is_sortable(self):
        response = self.client.get("/api/v1/reports/revenue-by-item/", {"range": "daily"})
        self.assertEqual(
            [(row["name"], row["quantity"], row["revenue"]) for row in response.json()["results"]],
            [("Cafe Latte", 1, 25000), ("Espresso", 1, 18000)],
        )

        response = self.client.get("/api/v1/reports/revenue-by-item/", {"range": "daily", "sort": "asc"})
        self.assertEqual([row["name"] for row in response.json()["results"]], ["Espresso", "Cafe Latte"])

        self.assertEqual(self.client.get("/api/v1/reports/revenue-by-item/", {"sort": "up"}).status_code, 400)

    def test_revenue_by_payment_and_summary(self):
        table_4 = DiningTable.objects.create(number=4)
        credit = create_order(table_4.id)
        add_item_to_order(credit.id, self.espresso.id, 1)
        close_order(credit.id, Order.PaymentType.CREDIT, customer_id=self.customer.id)
        record_payment(Receivable.objects.get(order=credit).id, 5000, "CARD")

        response = self.client.get("/api/v1/reports/revenue-by-payment/", {"range": "daily"})
        self.assertEqual(
            {row["method"]: row["revenue"] for row in response.json()["results"]},
            {"DIRECT": 25000, "CASH": 18000, "CREDIT": 18000},
        )

        summary = self.client.get("/api/v1/reports/revenue-summary/", {"range": "daily"}).json()
        self.assertEqual(summary["total_revenue"], 61000)
        self.assertEqual(summary["direct_sales"], 25000)
        self.assertEqual(summary["cash_received"], 18000)
        self.assertEqual(summary["card_received"], 5000)
        self.assertEqual(summary["credit_sales"], 18000)
        self.assertEqual(summary["receivable_payments"], 5000)

    def test_executive_summary(self):
        ledger.apply_transaction(self.milk.id, ledger.WASTAGE, 30, timezone.localdate())

        payload = self.client.get("/api/v1/reports/summary/", {"range": "daily"}).json()

        self.assertEqual(payload["total_revenue"], 43000)
        self.assertEqual(payload["total_items_sold"], 2)
        self.assertEqual(payload["tickets"], 2)
        self.assertEqual(payload["average_order_value"], "21500.00")
        self.assertEqual(payload["top_category"], "Drinks")
        self.assertEqual(payload["wastage_total"], 30)
        self.assertEqual(payload["by_item"][0]["name"], "Cafe Latte")

    def test_executive_summary_csv(self):
        response = self.client.get("/api/v1/reports/summary/", {"range": "daily", "format": "csv"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().splitlines()
        self.assertEqual(lines[0], "EXECUTIVE SUMMARY")
        self.assertIn("Total Revenue,NPR 430.00", lines)
        self.assertIn("Average Order Value,NPR 215.00", lines)
        self.assertIn("Cafe Latte,1,250.00", lines)
        self.assertIn('promo,2,430.00', lines)
        detail_header = lines.index("DETAILED SALES REPORT") + 1
        self.assertEqual(len(lines) - detail_header - 1, 2)

    def test_range_validation(self):
        self.assertEqual(self.client.get("/api/v1/reports/profit/", {"range": "hourly"}).status_code, 400)
        response = self.client.get("/api/v1/reports/profit/", {"date_from": "2024-03-01"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")


class SalesApiTests(CafeFixtureMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_create_sale(self):
        response = self.client.post(
            "/api/v1/sales/",
            {"item_id": str(self.latte.id), "quantity": 1, "labels": ["promo"]},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["total"], 25000)
        self.assertEqual(payload["cogs"], "7800.00")
        self.assertTrue(AuditLog.objects.filter(action="sale.create", entity_id=payload["id"]).exists())

        listed = self.client.get("/api/v1/sales/").json()
        self.assertEqual(listed["count"], 1)

    def test_insufficient_stock_envelope(self):
        response = self.client.post(
            "/api/v1/sales/",
            {"item_id": str(self.toast.id), "quantity": 6},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertEqual(payload["status"], 409)
        self.assertEqual(payload["errors"]["shortages"][0]["ingredient_name"], "Bread")

    def test_patch_sale_labels(self):
        sale = create_sale(self.espresso.id, 1)

        response = self.client.patch(f"/api/v1/sales/{sale.id}/", {"labels": ["staff"]}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["labels"], ["staff"])

    def test_order_flow_with_credit_and_payment(self):
        response = self.client.post("/api/v1/tables/", {"number": 7, "capacity": 2}, format="json")
        self.assertEqual(response.status_code, 201)
        table_id = response.json()["id"]

        response = self.client.post("/api/v1/orders/", {"table_id": table_id}, format="json")
        self.assertEqual(response.status_code, 201)
        order_id = response.json()["id"]
        self.assertEqual(self.client.post("/api/v1/orders/", {"table_id": table_id}, format="json").status_code, 409)

        response = self.client.post(
            f"/api/v1/orders/{order_id}/items/",
            {"item_id": str(self.espresso.id), "quantity": 2},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["total"], 36000)

        response = self.client.post(
            f"/api/v1/orders/{order_id}/items/",
            {"item_id": str(self.toast.id), "quantity": 1},
            format="json",
        )
        toast_line = next(line for line in response.json()["lines"] if line["item_name"] == "Toast")
        response = self.client.delete(f"/api/v1/orders/{order_id}/items/{toast_line['id']}/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["total"], 36000)

        response = self.client.post(
            f"/api/v1/orders/{order_id}/close/",
            {"payment_type": "CREDIT", "customer_id": str(self.customer.id)},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "CLOSED")
        self.assertTrue(AuditLog.objects.filter(action="order.close", entity_id=order_id).exists())

        receivables = self.client.get("/api/v1/receivables/", {"status": "OPEN"}).json()["results"]
        self.assertEqual(len(receivables), 1)
        receivable_id = receivables[0]["id"]

        response = self.client.post(
            f"/api/v1/receivables/{receivable_id}/payments/",
            {"amount": 36000, "method": "CARD"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["receivable"]["status"], "SETTLED")
        self.assertEqual(get_cafe_settings().bank_balance, 36000)

        response = self.client.post(
            f"/api/v1/receivables/{receivable_id}/payments/",
            {"amount": 0, "method": "CASH"},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_table_with_orders_cannot_be_deleted(self):
        create_order(self.table.id)

        response = self.client.delete(f"/api/v1/tables/{self.table.id}/")

        self.assertEqual(response.status_code, 409)

    def test_unknown_order(self):
        response = self.client.post(f"/api/v1/orders/{uuid.uuid4()}/cancel/", {}, format="json")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_customers(self):
        response = self.client.post("/api/v1/customers/", {"name": "Ravi", "phone": ""}, format="json")

        self.assertEqual(response.status_code, 201)
        names = [row["name"] for row in self.client.get("/api/v1/customers/").json()["results"]]
        self.assertEqual(names, ["Asha", "Ravi"])
