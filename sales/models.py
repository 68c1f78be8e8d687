import uuid

from django.db import models

from inventory.models import Item


class DiningTable(models.Model):
    class Status(models.TextChoices):
        EMPTY = "empty", "Empty"
        OCCUPIED = "occupied", "Occupied"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    number = models.PositiveIntegerField(unique=True)
    capacity = models.PositiveIntegerField(default=4)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.EMPTY)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["number"]

    def __str__(self):
        return f"Table {self.number}"


class Order(models.Model):
    class Status(models.TextChoices):
        OPEN = "OPEN", "Open"
        CLOSED = "CLOSED", "Closed"
        CANCELLED = "CANCELLED", "Cancelled"

    class PaymentType(models.TextChoices):
        CASH = "CASH", "Cash"
        CARD = "CARD", "Card"
        CREDIT = "CREDIT", "Credit"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    table = models.ForeignKey(DiningTable, on_delete=models.PROTECT, related_name="orders")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    total = models.IntegerField(default=0)
    payment_type = models.CharField(max_length=16, choices=PaymentType.choices, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    closed_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["table"],
                condition=models.Q(status="OPEN"),
                name="uniq_open_order_per_table",
            ),
        ]


class Sale(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # Null for walk-in sales; set for lines of a table order.
    order = models.ForeignKey(Order, on_delete=models.CASCADE, null=True, blank=True, related_name="lines")
    date = models.DateTimeField()
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name="sales")
    quantity = models.PositiveIntegerField()
    unit_price = models.IntegerField()
    total = models.IntegerField()
    cogs = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    labels = models.JSONField(default=list, blank=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-date", "-created_at"]
        indexes = [
            models.Index(fields=["date"], name="sale_date_idx"),
            models.Index(fields=["item", "date"], name="sale_item_date_idx"),
        ]

    @property
    def is_direct(self):
        return self.order_id is None


class SaleConsumption(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sale = models.ForeignKey(Sale, on_delete=models.CASCADE, related_name="consumptions")
    ingredient = models.ForeignKey(Item, on_delete=models.PROTECT, related_name="consumptions")
    business_date = models.DateField()
    quantity = models.IntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["ingredient", "business_date"], name="consumption_item_day_idx"),
        ]
        constraints = [
            models.UniqueConstraint(fields=["sale", "ingredient"], name="uniq_sale_consumption"),
        ]


class Customer(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    phone = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["phone"], name="customer_phone_idx"),
        ]


class Receivable(models.Model):
    class Status(models.TextChoices):
        OPEN = "OPEN", "Open"
        SETTLED = "SETTLED", "Settled"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(Order, on_delete=models.PROTECT, related_name="receivable")
    customer = models.ForeignKey(Customer, on_delete=models.PROTECT, related_name="receivables")
    amount = models.IntegerField()
    outstanding = models.IntegerField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.OPEN)
    created_at = models.DateTimeField(auto_now_add=True)
    settled_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="receivable_status_idx"),
            models.Index(fields=["customer", "status"], name="receivable_customer_idx"),
        ]


class Payment(models.Model):
    class Method(models.TextChoices):
        CASH = "CASH", "Cash"
        CARD = "CARD", "Card"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    receivable = models.ForeignKey(Receivable, on_delete=models.PROTECT, related_name="payments")
    amount = models.IntegerField()
    method = models.CharField(max_length=16, choices=Method.choices)
    paid_at = models.DateTimeField()

    class Meta:
        ordering = ["paid_at"]
        indexes = [
            models.Index(fields=["receivable", "paid_at"], name="payment_receivable_idx"),
        ]
