from django.core.management.base import BaseCommand

from inventory.ledger import reconcile_ledger
from inventory.models import Item


class Command(BaseCommand):
    help = "Re-chain every item's daily stock records (opening = previous closing) and fix balances."

    def add_arguments(self, parser):
        parser.add_argument("--item-id", dest="item_ids", action="append", help="Item UUID; repeat to limit the run.")

    def handle(self, *args, **options):
        item_ids = options.get("item_ids") or None
        if item_ids:
            item_ids = list(Item.objects.filter(id__in=item_ids).values_list("id", flat=True))

        repaired = reconcile_ledger(item_ids)
        self.stdout.write(self.style.SUCCESS(f"Stock ledger reconciled. Repaired records: {repaired}."))
