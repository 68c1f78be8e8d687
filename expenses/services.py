"""Operating expenses.

A one-off expense counts in full on its own date. A recurring expense is
entered once with its amount per ``frequency`` and, from its start date on,
costs a daily share on every day of a reporting range:

* daily: the amount itself
* monthly: amount / 30
* yearly: amount / 365

Shares are rounded half-up to whole minor units.
"""

import logging
from decimal import Decimal

from django.db.models import Q
from rest_framework.exceptions import ValidationError

from common.utils import round_half_up, to_business_date
from expenses.models import Expense

logger = logging.getLogger(__name__)

DAYS_PER_PERIOD = {
    Expense.Frequency.DAILY.value: 1,
    Expense.Frequency.MONTHLY.value: 30,
    Expense.Frequency.YEARLY.value: 365,
}


def allocated_daily(expense):
    if not expense.is_recurring:
        return None
    return round_half_up(Decimal(expense.amount) / DAYS_PER_PERIOD[str(expense.frequency)])


def amount_in_range(expense, date_from=None, date_to=None):
    if not expense.is_recurring or date_from is None:
        return expense.amount
    start = max(expense.date, date_from)
    if start > date_to:
        return 0
    return allocated_daily(expense) * ((date_to - start).days + 1)


def _parse_range(date_from, date_to):
    if not date_from and not date_to:
        return None, None
    if not date_from or not date_to:
        raise ValidationError({"date_range": "Both date_from and date_to are required."})
    date_from = to_business_date(date_from, field="date_from")
    date_to = to_business_date(date_to, field="date_to")
    if date_from > date_to:
        raise ValidationError({"date_range": "date_from must be before or equal to date_to."})
    return date_from, date_to


def list_expenses(date_from=None, date_to=None):
    """Expenses that cost something in the range, with totals.

    Each returned expense carries ``amount_in_range``. Without a range every
    expense is listed at its full amount.
    """
    date_from, date_to = _parse_range(date_from, date_to)
    qs = Expense.objects.all()
    if date_from is not None:
        qs = qs.filter(
            Q(is_recurring=False, date__gte=date_from, date__lte=date_to) | Q(is_recurring=True, date__lte=date_to)
        )

    expenses = []
    by_category = {}
    for expense in qs:
        expense.amount_in_range = amount_in_range(expense, date_from, date_to)
        by_category[expense.category] = by_category.get(expense.category, 0) + expense.amount_in_range
        expenses.append(expense)

    return {
        "date_from": date_from,
        "date_to": date_to,
        "total": sum(by_category.values()),
        "by_category": dict(sorted(by_category.items())),
        "items": expenses,
    }


def expenses_total(date_from, date_to):
    return list_expenses(date_from, date_to)["total"]


def validate_expense_values(values):
    errors = {}
    amount = values.get("amount")
    if "amount" in values and (isinstance(amount, bool) or not isinstance(amount, int) or amount < 0):
        errors["amount"] = "amount must be a non-negative integer."
    if "category" in values:
        values["category"] = str(values["category"] or "").strip()
        if not values["category"]:
            errors["category"] = "Category is required."
    if "frequency" in values and values["frequency"] not in Expense.Frequency.values:
        errors["frequency"] = f"Frequency must be one of: {', '.join(Expense.Frequency.values)}."
    if errors:
        raise ValidationError(errors)
    if values.get("date") is not None:
        values["date"] = to_business_date(values["date"])
    return values


def create_expense(**values):
    for field in ("category", "amount"):
        if field not in values:
            raise ValidationError({field: "This field is required."})
    validate_expense_values(values)
    expense = Expense.objects.create(**values)
    logger.info(
        "expense_recorded category=%s recurring=%s",
        expense.category,
        expense.is_recurring,
        extra={"expense_id": str(expense.id), "amount": expense.amount},
    )
    return expense


def update_expense(expense, **values):
    validate_expense_values(values)
    for field, value in values.items():
        setattr(expense, field, value)
    expense.save()
    return expense


def delete_expense(expense):
    expense.delete()
