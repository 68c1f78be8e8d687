import uuid

from django.core.validators import MinValueValidator
from django.db import models


class Item(models.Model):
    class Unit(models.TextChoices):
        MILLILITRE = "ml", "Millilitre"
        GRAM = "g", "Gram"
        PIECE = "pcs", "Piece"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    category = models.CharField(max_length=64)
    unit = models.CharField(max_length=8, choices=Unit.choices, default=Unit.PIECE)
    is_ingredient = models.BooleanField(default=False)
    # Money is stored in minor currency units (paisa/cents).
    cost_price = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    selling_price = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    min_stock = models.IntegerField(default=0, validators=[MinValueValidator(0)])
    is_active = models.BooleanField(default=True)
    cost_is_derived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_ingredient", "is_active"], name="item_kind_active_idx"),
            models.Index(fields=["category"], name="item_category_idx"),
        ]

    def __str__(self):
        return self.name


class Recipe(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    menu_item = models.OneToOneField(Item, on_delete=models.CASCADE, related_name="recipe")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class RecipeComponent(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    recipe = models.ForeignKey(Recipe, on_delete=models.CASCADE, related_name="components")
    ingredient = models.ForeignKey(Item, on_delete=models.PROTECT, related_name="used_in_components")
    quantity_per_unit = models.DecimalField(max_digits=12, decimal_places=4)
    unit = models.CharField(max_length=8, choices=Item.Unit.choices)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["recipe", "ingredient"], name="uniq_recipe_ingredient"),
        ]


class DailyStockRecord(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    item = models.ForeignKey(Item, on_delete=models.PROTECT, related_name="stock_records")
    business_date = models.DateField()
    opening_stock = models.IntegerField(default=0)
    purchased = models.IntegerField(default=0)
    sold = models.IntegerField(default=0)
    wastage = models.IntegerField(default=0)
    closing_stock = models.IntegerField(default=0)
    # Set by a manual "opening" transaction (stock count). The counted opening
    # stands until an earlier day of the item changes.
    opening_overridden = models.BooleanField(default=False)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["item_id", "business_date"]
        constraints = [
            models.UniqueConstraint(fields=["item", "business_date"], name="uniq_stock_item_day"),
        ]
        indexes = [
            models.Index(fields=["business_date"], name="stock_business_date_idx"),
        ]

    def compute_closing(self):
        return self.opening_stock + self.purchased - self.sold - self.wastage

    def recompute(self):
        self.closing_stock = self.compute_closing()
        return self.closing_stock
