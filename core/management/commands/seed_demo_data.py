from django.core.management.base import BaseCommand
from django.utils import timezone

from inventory import ledger
from inventory.models import Item
from inventory.services import upsert_recipe
from sales.models import Customer, DiningTable


class Command(BaseCommand):
    help = "Seed demo café data (ingredients, menu, recipes, tables, opening stock) for local development."

    def handle(self, *args, **options):
        ingredients = {}
        for name, unit, cost, min_stock, opening in [
            ("Milk", Item.Unit.MILLILITRE, 12, 2000, 10000),
            ("Coffee Beans", Item.Unit.GRAM, 300, 500, 3000),
            ("Sugar", Item.Unit.GRAM, 2, 500, 5000),
            ("Bread", Item.Unit.PIECE, 2500, 10, 40),
        ]:
            item, _ = Item.objects.get_or_create(
                name=name,
                is_ingredient=True,
                defaults={"category": "Ingredients", "unit": unit, "cost_price": cost, "min_stock": min_stock},
            )
            ingredients[name] = item
            if not item.stock_records.exists():
                ledger.apply_transaction(item.id, ledger.OPENING, opening, timezone.localdate())

        menu = [
            ("Cafe Latte", "Drinks", 25000, [("Milk", "200"), ("Coffee Beans", "18"), ("Sugar", "10")]),
            ("Espresso", "Drinks", 18000, [("Coffee Beans", "18")]),
            ("Toast", "Snacks", 15000, [("Bread", "2")]),
        ]
        for name, category, price, components in menu:
            item, _ = Item.objects.get_or_create(
                name=name,
                is_ingredient=False,
                defaults={"category": category, "unit": Item.Unit.PIECE, "selling_price": price},
            )
            upsert_recipe(
                item.id,
                [{"ingredient_id": ingredients[ingredient].id, "quantity_per_unit": quantity} for ingredient, quantity in components],
            )

        for number in range(1, 7):
            DiningTable.objects.get_or_create(number=number, defaults={"capacity": 4})

        Customer.objects.get_or_create(name="Regular Customer", defaults={"phone": "+9770000000"})

        self.stdout.write(self.style.SUCCESS("Demo café data seeded."))
