from datetime import date

from django.test import TestCase
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from core.models import AuditLog
from expenses.models import Expense
from expenses.services import allocated_daily, amount_in_range, create_expense, list_expenses, update_expense


class ExpenseServiceTests(TestCase):
    def test_daily_share_of_recurring_expenses(self):
        rent = Expense(amount=300000, is_recurring=True, frequency=Expense.Frequency.MONTHLY, date=date(2024, 3, 1))
        licence = Expense(amount=36500, is_recurring=True, frequency=Expense.Frequency.YEARLY, date=date(2024, 1, 1))
        cleaning = Expense(amount=500, is_recurring=True, frequency=Expense.Frequency.DAILY, date=date(2024, 1, 1))
        one_off = Expense(amount=7000, date=date(2024, 3, 5))

        self.assertEqual(allocated_daily(rent), 10000)
        self.assertEqual(allocated_daily(licence), 100)
        self.assertEqual(allocated_daily(cleaning), 500)
        self.assertIsNone(allocated_daily(one_off))

    def test_recurring_expense_costs_from_its_start_date(self):
        rent = Expense(amount=300000, is_recurring=True, frequency=Expense.Frequency.MONTHLY, date=date(2024, 3, 5))

        self.assertEqual(amount_in_range(rent, date(2024, 3, 1), date(2024, 3, 7)), 30000)
        self.assertEqual(amount_in_range(rent, date(2024, 3, 10), date(2024, 3, 11)), 20000)
        self.assertEqual(amount_in_range(rent, date(2024, 2, 1), date(2024, 2, 29)), 0)
        self.assertEqual(amount_in_range(rent), 300000)

    def test_list_totals_by_category(self):
        create_expense(category="Supplies", amount=4000, date=date(2024, 3, 2))
        create_expense(category="Supplies", amount=1500, date="2024-03-03")
        create_expense(category="Misc", amount=900, date=date(2024, 2, 20))
        create_expense(category="Rent", amount=300000, is_recurring=True, frequency="monthly", date=date(2024, 1, 1))

        summary = list_expenses("2024-03-01", "2024-03-03")

        self.assertEqual(summary["by_category"], {"Rent": 30000, "Supplies": 5500})
        self.assertEqual(summary["total"], 35500)
        self.assertEqual(len(summary["items"]), 3)
        self.assertEqual(list_expenses()["total"], 306400)

    def test_validation(self):
        with self.assertRaises(ValidationError):
            create_expense(category="Rent", amount=-1)
        with self.assertRaises(ValidationError):
            create_expense(category="  ", amount=10)
        with self.assertRaises(ValidationError):
            create_expense(category="Rent", amount=10, frequency="weekly")
        with self.assertRaises(ValidationError):
            create_expense(category="Rent")
        with self.assertRaises(ValidationError):
            list_expenses(date_from="2024-03-01")
        with self.assertRaises(ValidationError):
            list_expenses("2024-03-05", "2024-03-01")
        self.assertFalse(Expense.objects.exists())

    def test_update_expense(self):
        expense = create_expense(category="Supplies", amount=4000, date=date(2024, 3, 2))

        update_expense(expense, amount=4500, description=" milk crates ")

        expense.refresh_from_db()
        self.assertEqual(expense.amount, 4500)
        self.assertEqual(expense.description, " milk crates ")


class ExpenseApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()

    def test_crud_is_audited(self):
        response = self.client.post(
            "/api/v1/expenses/",
            {"category": "Utilities", "amount": 12000, "date": "2024-03-04", "description": "Power"},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        expense_id = response.json()["id"]
        self.assertIsNone(response.json()["allocated_daily"])

        response = self.client.patch(f"/api/v1/expenses/{expense_id}/", {"amount": 13000}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["amount"], 13000)

        self.assertEqual(self.client.delete(f"/api/v1/expenses/{expense_id}/").status_code, 204)
        self.assertFalse(Expense.objects.exists())
        self.assertEqual(
            list(AuditLog.objects.filter(entity="expense").order_by("created_at").values_list("action", flat=True)),
            ["expense.create", "expense.update", "expense.delete"],
        )

    def test_list_with_range(self):
        create_expense(category="Salary", amount=60000, is_recurring=True, frequency="monthly", date=date(2024, 3, 1))

        response = self.client.get("/api/v1/expenses/", {"date_from": "2024-03-01", "date_to": "2024-03-10"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["total"], 20000)
        self.assertEqual(payload["by_category"], {"Salary": 20000})
        self.assertEqual(payload["items"][0]["allocated_daily"], 2000)
        self.assertEqual(payload["items"][0]["amount_in_range"], 20000)

    def test_invalid_payload(self):
        response = self.client.post("/api/v1/expenses/", {"category": "Rent", "amount": -5}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("amount", response.json()["errors"])
