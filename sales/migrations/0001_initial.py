import uuid

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="DiningTable",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("number", models.PositiveIntegerField(unique=True)),
                ("capacity", models.PositiveIntegerField(default=4)),
                ("status", models.CharField(choices=[("empty", "Empty"), ("occupied", "Occupied")], default="empty", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["number"],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("phone", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["phone"], name="customer_phone_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Order",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "status",
                    models.CharField(
                        choices=[("OPEN", "Open"), ("CLOSED", "Closed"), ("CANCELLED", "Cancelled")], default="OPEN", max_length=16
                    ),
                ),
                ("total", models.IntegerField(default=0)),
                (
                    "payment_type",
                    models.CharField(
                        blank=True, choices=[("CASH", "Cash"), ("CARD", "Card"), ("CREDIT", "Credit")], max_length=16, null=True
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "table",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="orders", to="sales.diningtable"),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "OPEN")), fields=("table",), name="uniq_open_order_per_table"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Sale",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("date", models.DateTimeField()),
                ("quantity", models.PositiveIntegerField()),
                ("unit_price", models.IntegerField()),
                ("total", models.IntegerField()),
                ("cogs", models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ("labels", models.JSONField(blank=True, default=list)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "item",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sales", to="inventory.item"),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="lines",
                        to="sales.order",
                    ),
                ),
            ],
            options={
                "ordering": ["-date", "-created_at"],
                "indexes": [
                    models.Index(fields=["date"], name="sale_date_idx"),
                    models.Index(fields=["item", "date"], name="sale_item_date_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="SaleConsumption",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("business_date", models.DateField()),
                ("quantity", models.IntegerField()),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "ingredient",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="consumptions", to="inventory.item"),
                ),
                (
                    "sale",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="consumptions", to="sales.sale"),
                ),
            ],
            options={
                "indexes": [
                    models.Index(fields=["ingredient", "business_date"], name="consumption_item_day_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("sale", "ingredient"), name="uniq_sale_consumption"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Receivable",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.IntegerField()),
                ("outstanding", models.IntegerField()),
                ("status", models.CharField(choices=[("OPEN", "Open"), ("SETTLED", "Settled")], default="OPEN", max_length=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("settled_at", models.DateTimeField(blank=True, null=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "customer",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="receivables", to="sales.customer"),
                ),
                (
                    "order",
                    models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="receivable", to="sales.order"),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "created_at"], name="receivable_status_idx"),
                    models.Index(fields=["customer", "status"], name="receivable_customer_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("amount", models.IntegerField()),
                ("method", models.CharField(choices=[("CASH", "Cash"), ("CARD", "Card")], max_length=16)),
                ("paid_at", models.DateTimeField()),
                (
                    "receivable",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="sales.receivable"),
                ),
            ],
            options={
                "ordering": ["paid_at"],
                "indexes": [
                    models.Index(fields=["receivable", "paid_at"], name="payment_receivable_idx"),
                ],
            },
        ),
    ]
