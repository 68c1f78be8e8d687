import uuid

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Item",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("name", models.CharField(max_length=255)),
                ("category", models.CharField(max_length=64)),
                ("unit", models.CharField(choices=[("ml", "Millilitre"), ("g", "Gram"), ("pcs", "Piece")], default="pcs", max_length=8)),
                ("is_ingredient", models.BooleanField(default=False)),
                ("cost_price", models.IntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("selling_price", models.IntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("min_stock", models.IntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ("is_active", models.BooleanField(default=True)),
                ("cost_is_derived", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
                "indexes": [
                    models.Index(fields=["is_ingredient", "is_active"], name="item_kind_active_idx"),
                    models.Index(fields=["category"], name="item_category_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Recipe",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "menu_item",
                    models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="recipe", to="inventory.item"),
                ),
            ],
        ),
        migrations.CreateModel(
            name="RecipeComponent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("quantity_per_unit", models.DecimalField(decimal_places=4, max_digits=12)),
                ("unit", models.CharField(choices=[("ml", "Millilitre"), ("g", "Gram"), ("pcs", "Piece")], max_length=8)),
                (
                    "ingredient",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT, related_name="used_in_components", to="inventory.item"
                    ),
                ),
                (
                    "recipe",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="components", to="inventory.recipe"),
                ),
            ],
            options={
                "constraints": [
                    models.UniqueConstraint(fields=("recipe", "ingredient"), name="uniq_recipe_ingredient"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DailyStockRecord",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("business_date", models.DateField()),
                ("opening_stock", models.IntegerField(default=0)),
                ("purchased", models.IntegerField(default=0)),
                ("sold", models.IntegerField(default=0)),
                ("wastage", models.IntegerField(default=0)),
                ("closing_stock", models.IntegerField(default=0)),
                ("opening_overridden", models.BooleanField(default=False)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "item",
                    models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="stock_records", to="inventory.item"),
                ),
            ],
            options={
                "ordering": ["item_id", "business_date"],
                "indexes": [
                    models.Index(fields=["business_date"], name="stock_business_date_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("item", "business_date"), name="uniq_stock_item_day"),
                ],
            },
        ),
    ]
