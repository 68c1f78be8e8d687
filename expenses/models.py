import uuid

from django.db import models
from django.utils import timezone


class Expense(models.Model):
    class Frequency(models.TextChoices):
        DAILY = "daily", "Daily"
        MONTHLY = "monthly", "Monthly"
        YEARLY = "yearly", "Yearly"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # Start date for recurring expenses.
    date = models.DateField(default=timezone.localdate)
    category = models.CharField(max_length=64)
    description = models.CharField(max_length=255, blank=True, default="")
    amount = models.IntegerField()
    is_recurring = models.BooleanField(default=False)
    frequency = models.CharField(max_length=16, choices=Frequency.choices, default=Frequency.DAILY)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["is_recurring", "date"], name="expense_recurring_date_idx"),
            models.Index(fields=["category"], name="expense_category_idx"),
        ]

    def __str__(self):
        return f"{self.category} {self.amount} on {self.date}"
