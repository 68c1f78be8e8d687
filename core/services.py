"""Typed access to process-wide café settings.

Flags, running till balances, label and category lists (menu and expense) and
sales targets live in the ``core.Setting`` key/value table. Nothing else
reads that table directly: callers go through :class:`CafeSettings`, which
owns key names, defaults and value coercion. The storage backend is
injectable so tests can run the services against
:class:`InMemorySettingsBackend`.
"""

import threading

from django.conf import settings as django_settings
from django.db import transaction
from rest_framework.exceptions import ValidationError

from core.models import Setting

ALLOW_SALE_WITHOUT_STOCK = "allow_sale_without_stock"
CASH_BALANCE = "cash_balance"
BANK_BALANCE = "bank_balance"
CONFIGURED_LABELS = "configured_labels"
CONFIGURED_CATEGORIES = "configured_categories"
CONFIGURED_EXPENSE_CATEGORIES = "configured_expense_categories"
TARGET_WEEKLY = "target_weekly"
TARGET_MONTHLY = "target_monthly"
TARGET_QUARTERLY = "target_quarterly"

DEFAULT_CATEGORIES = ["Snacks", "Drinks", "Main"]
DEFAULT_EXPENSE_CATEGORIES = ["Rent", "Salary", "Utilities", "Supplies", "Maintenance", "Misc"]
DEFAULT_TARGETS = {"weekly": 1550000, "monthly": 6670000, "quarterly": 20000000}

BALANCE_KEY_BY_METHOD = {
    "CASH": CASH_BALANCE,
    "CARD": BANK_BALANCE,
}


class DatabaseSettingsBackend:
    def get(self, key, default=None):
        setting = Setting.objects.filter(key=key).first()
        if setting is None or setting.value is None:
            return default
        return setting.value

    def set(self, key, value):
        Setting.objects.update_or_create(key=key, defaults={"value": value})

    def increment(self, key, delta):
        with transaction.atomic():
            setting, _ = Setting.objects.select_for_update().get_or_create(key=key, defaults={"value": 0})
            setting.value = int(setting.value or 0) + int(delta)
            setting.save(update_fields=["value", "updated_at"])
            return setting.value


class InMemorySettingsBackend:
    def __init__(self, initial=None):
        self._values = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key, default=None):
        value = self._values.get(key)
        return default if value is None else value

    def set(self, key, value):
        self._values[key] = value

    def increment(self, key, delta):
        with self._lock:
            self._values[key] = int(self._values.get(key) or 0) + int(delta)
            return self._values[key]


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}
    return bool(value)


def _as_int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _clean_name(value, field):
    name = str(value or "").strip()
    if not name:
        raise ValidationError({field: f"{field.capitalize()} is required."})
    return name


class CafeSettings:
    def __init__(self, backend=None):
        self.backend = backend or DatabaseSettingsBackend()

    # Flags

    @property
    def allow_sale_without_stock(self):
        default = getattr(django_settings, "ALLOW_SALE_WITHOUT_STOCK", False)
        return _as_bool(self.backend.get(ALLOW_SALE_WITHOUT_STOCK, default))

    def set_allow_sale_without_stock(self, enabled):
        self.backend.set(ALLOW_SALE_WITHOUT_STOCK, bool(enabled))

    # Till balances

    @property
    def cash_balance(self):
        return _as_int(self.backend.get(CASH_BALANCE, 0))

    @property
    def bank_balance(self):
        return _as_int(self.backend.get(BANK_BALANCE, 0))

    def add_to_balance(self, method, amount):
        key = BALANCE_KEY_BY_METHOD.get(method)
        if key is None:
            raise ValidationError({"method": f"Unsupported payment method: {method}."})
        return self.backend.increment(key, amount)

    # Labels and categories

    def _names(self, key, default):
        return list(self.backend.get(key, default))

    def _add_name(self, key, default, value, field):
        value = _clean_name(value, field)
        names = self._names(key, default)
        if value not in names:
            names.append(value)
            self.backend.set(key, names)
        return names

    def _remove_name(self, key, default, value):
        names = [existing for existing in self._names(key, default) if existing != value]
        self.backend.set(key, names)
        return names

    @property
    def configured_labels(self):
        return self._names(CONFIGURED_LABELS, [])

    def add_label(self, label):
        return self._add_name(CONFIGURED_LABELS, [], label, "label")

    def remove_label(self, label):
        return self._remove_name(CONFIGURED_LABELS, [], label)

    @property
    def configured_categories(self):
        return self._names(CONFIGURED_CATEGORIES, DEFAULT_CATEGORIES)

    def add_category(self, category):
        return self._add_name(CONFIGURED_CATEGORIES, DEFAULT_CATEGORIES, category, "category")

    def remove_category(self, category):
        return self._remove_name(CONFIGURED_CATEGORIES, DEFAULT_CATEGORIES, category)

    @property
    def expense_categories(self):
        return self._names(CONFIGURED_EXPENSE_CATEGORIES, DEFAULT_EXPENSE_CATEGORIES)

    def add_expense_category(self, category):
        return self._add_name(CONFIGURED_EXPENSE_CATEGORIES, DEFAULT_EXPENSE_CATEGORIES, category, "category")

    def remove_expense_category(self, category):
        return self._remove_name(CONFIGURED_EXPENSE_CATEGORIES, DEFAULT_EXPENSE_CATEGORIES, category)

    # Sales targets (minor currency units)

    @property
    def sales_targets(self):
        return {
            "weekly": _as_int(self.backend.get(TARGET_WEEKLY), DEFAULT_TARGETS["weekly"]) or DEFAULT_TARGETS["weekly"],
            "monthly": _as_int(self.backend.get(TARGET_MONTHLY), DEFAULT_TARGETS["monthly"]) or DEFAULT_TARGETS["monthly"],
            "quarterly": _as_int(self.backend.get(TARGET_QUARTERLY), DEFAULT_TARGETS["quarterly"]) or DEFAULT_TARGETS["quarterly"],
        }

    def update_sales_targets(self, *, weekly, monthly, quarterly):
        for field, value in (("weekly", weekly), ("monthly", monthly), ("quarterly", quarterly)):
            if _as_int(value, -1) < 0:
                raise ValidationError({field: "Target must be a non-negative integer."})
        self.backend.set(TARGET_WEEKLY, int(weekly))
        self.backend.set(TARGET_MONTHLY, int(monthly))
        self.backend.set(TARGET_QUARTERLY, int(quarterly))
        return self.sales_targets

    def snapshot(self):
        return {
            "allow_sale_without_stock": self.allow_sale_without_stock,
            "cash_balance": self.cash_balance,
            "bank_balance": self.bank_balance,
            "currency": getattr(django_settings, "CURRENCY_CODE", "NPR"),
        }


def get_cafe_settings():
    return CafeSettings()
