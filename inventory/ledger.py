"""Per-item, per-day stock ledger.

One ``DailyStockRecord`` exists per (item, business day) that has seen any
activity or been read. Days without activity have no row. Two invariants
hold for every item:

* balance: ``closing = opening + purchased - sold - wastage`` on every row;
* continuity: a row's opening equals the closing of the item's previous
  recorded day (0 for the first row). A manual stock count
  (``opening_overridden``) holds its own opening until an earlier day of the
  item changes; that change re-chains the row and clears the flag.

Continuity is repaired lazily. Reading a day re-derives its opening from the
previous recorded day and, when that changes the row, pushes the new closing
forward through every later row. The same walk is available as an explicit
repair job (``reconcile_item`` / ``reconcile_ledger``).

Every write locks the touched row (``select_for_update``) and is conditional
on the row's ``version``; a write that loses a race raises
``StaleLedgerRecord`` and the whole mutation is retried.
"""

import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import ConflictError
from common.utils import parse_uuid, to_business_date
from inventory.models import DailyStockRecord, Item

logger = logging.getLogger(__name__)

PURCHASE = "purchase"
WASTAGE = "wastage"
OPENING = "opening"
TRANSACTION_TYPES = (PURCHASE, WASTAGE, OPENING)

LEDGER_FIELDS = ("opening_stock", "purchased", "sold", "wastage", "closing_stock", "opening_overridden")


class StaleLedgerRecord(Exception):
    """A ledger row changed between our read and our conditional write."""

    def __init__(self, record):
        self.record = record
        super().__init__(f"Stock record {record.pk} is stale (version {record.version}).")


def _write_record(record):
    values = {field: getattr(record, field) for field in LEDGER_FIELDS}
    updated = DailyStockRecord.objects.filter(pk=record.pk, version=record.version).update(
        version=F("version") + 1,
        updated_at=timezone.now(),
        **values,
    )
    if not updated:
        raise StaleLedgerRecord(record)
    record.version += 1
    return record


def _with_retries(operation):
    attempts = max(1, int(getattr(settings, "STOCK_LEDGER_MAX_RETRIES", 3)))
    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                return operation()
        except StaleLedgerRecord as exc:
            logger.warning(
                "stock_ledger_write_conflict attempt=%s/%s",
                attempt,
                attempts,
                extra={"item_id": str(exc.record.item_id), "business_date": exc.record.business_date.isoformat()},
            )
    raise ConflictError("Stock record was modified concurrently. Please retry.")


def _previous_closing(item_id, day):
    closing = (
        DailyStockRecord.objects.filter(item_id=item_id, business_date__lt=day)
        .order_by("-business_date")
        .values_list("closing_stock", flat=True)
        .first()
    )
    return closing or 0


def _locked_record(item_id, day):
    return DailyStockRecord.objects.select_for_update().filter(item_id=item_id, business_date=day).first()


def _ensure_item(item_id):
    if not Item.objects.filter(id=item_id).exists():
        raise NotFound("Item was not found.")


def _heal_or_create(item_id, day):
    """Return ``(record, changed)`` for (item, day), locked, with continuity restored."""
    expected_opening = _previous_closing(item_id, day)
    record = _locked_record(item_id, day)

    if record is None:
        record, created = DailyStockRecord.objects.get_or_create(
            item_id=item_id,
            business_date=day,
            defaults={"opening_stock": expected_opening, "closing_stock": expected_opening},
        )
        if created:
            return record, False
        record = _locked_record(item_id, day)

    opening_drifted = not record.opening_overridden and record.opening_stock != expected_opening
    if not opening_drifted and record.closing_stock == record.compute_closing():
        return record, False

    previous_opening = record.opening_stock
    if opening_drifted:
        record.opening_stock = expected_opening
    record.recompute()
    _write_record(record)
    logger.info(
        "stock_ledger_healed opening %s -> %s",
        previous_opening,
        record.opening_stock,
        extra={"item_id": str(item_id), "business_date": day.isoformat()},
    )
    return record, True


def _reconcile_forward(item_id, anchor_date, anchor_closing=None, anchor_changed=True):
    """Re-chain the rows after ``anchor_date``.

    When the anchor's closing just changed, a stock-count row further down is
    out of date and is re-chained like any other. Otherwise the walk stops at
    it, since later rows already chain onto the count.
    """
    if anchor_closing is None:
        anchor_closing = (
            DailyStockRecord.objects.filter(item_id=item_id, business_date__lte=anchor_date)
            .order_by("-business_date")
            .values_list("closing_stock", flat=True)
            .first()
        ) or 0

    repaired = 0
    previous_closing = anchor_closing
    later_records = (
        DailyStockRecord.objects.select_for_update()
        .filter(item_id=item_id, business_date__gt=anchor_date)
        .order_by("business_date")
    )
    for record in later_records:
        released = False
        if record.opening_overridden:
            if not anchor_changed:
                break
            record.opening_overridden = False
            released = True
            logger.info(
                "stock_ledger_count_released opening %s -> %s",
                record.opening_stock,
                previous_closing,
                extra={"item_id": str(item_id), "business_date": record.business_date.isoformat()},
            )
        if released or record.opening_stock != previous_closing or record.closing_stock != record.compute_closing():
            record.opening_stock = previous_closing
            record.recompute()
            _write_record(record)
            repaired += 1
        previous_closing = record.closing_stock
    return repaired


def _reconcile_item(item_id):
    repaired = 0
    previous_closing = 0
    records = DailyStockRecord.objects.select_for_update().filter(item_id=item_id).order_by("business_date")
    for record in records:
        expected_opening = record.opening_stock if record.opening_overridden else previous_closing
        if record.opening_stock != expected_opening or record.closing_stock != record.compute_closing():
            record.opening_stock = expected_opening
            record.recompute()
            _write_record(record)
            repaired += 1
        previous_closing = record.closing_stock
    return repaired


def _mutate(item_id, on_date, change):
    day = to_business_date(on_date)

    def run():
        record, healed = _heal_or_create(item_id, day)
        closing_before = record.closing_stock
        change(record)
        record.recompute()
        _write_record(record)
        _reconcile_forward(
            item_id,
            day,
            anchor_closing=record.closing_stock,
            anchor_changed=healed or record.closing_stock != closing_before,
        )
        return record

    return _with_retries(run)


def _validate_quantity(quantity):
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError({"quantity": "Quantity must be an integer."})
    if quantity < 0:
        raise ValidationError({"quantity": "Quantity must not be negative."})
    return quantity


def get_or_init(item_id, on_date=None):
    """Return the (item, day) record, creating it or restoring its continuity first."""
    day = to_business_date(on_date)

    def run():
        record, changed = _heal_or_create(item_id, day)
        if changed:
            _reconcile_forward(item_id, day, anchor_closing=record.closing_stock)
        return record

    return _with_retries(run)


def reconcile_forward(item_id, anchor_date):
    """Re-chain every record after ``anchor_date`` onto the anchor's closing stock."""
    day = to_business_date(anchor_date)
    return _with_retries(lambda: _reconcile_forward(item_id, day, anchor_changed=False))


def reconcile_item(item_id):
    """Repair one item's whole chain. Returns the number of records rewritten."""
    return _with_retries(lambda: _reconcile_item(item_id))


def reconcile_ledger(item_ids=None):
    """Repair job over every item with ledger rows (or just ``item_ids``)."""
    if item_ids is None:
        item_ids = DailyStockRecord.objects.values_list("item_id", flat=True).distinct()

    repaired = 0
    for item_id in list(item_ids):
        item_repaired = reconcile_item(item_id)
        if item_repaired:
            logger.info("stock_ledger_item_reconciled", extra={"item_id": str(item_id), "repaired": item_repaired})
        repaired += item_repaired
    return repaired


def apply_transaction(item_id, transaction_type, quantity, on_date=None):
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError({"type": f"Type must be one of: {', '.join(TRANSACTION_TYPES)}."})
    _validate_quantity(quantity)
    item_id = parse_uuid(item_id, "item_id")
    _ensure_item(item_id)

    def change(record):
        if transaction_type == PURCHASE:
            record.purchased += quantity
        elif transaction_type == WASTAGE:
            record.wastage += quantity
        else:
            record.opening_stock = quantity
            record.opening_overridden = True

    return _mutate(item_id, on_date, change)


def consume(item_id, on_date, quantity):
    """Record ``quantity`` as sold. Callers guarantee one call per settlement."""
    _validate_quantity(quantity)

    def change(record):
        record.sold += quantity

    return _mutate(item_id, on_date, change)


def release(item_id, on_date, quantity):
    """Undo a previous ``consume`` of ``quantity`` on the same day."""
    _validate_quantity(quantity)

    def change(record):
        record.sold -= quantity

    return _mutate(item_id, on_date, change)


def available_stock(item_id, on_date=None):
    return get_or_init(item_id, on_date).closing_stock


def get_stock(on_date=None):
    day = to_business_date(on_date)
    ingredient_ids = Item.objects.filter(is_active=True, is_ingredient=True).values_list("id", flat=True)
    for item_id in list(ingredient_ids):
        get_or_init(item_id, day)
    return DailyStockRecord.objects.filter(business_date=day).select_related("item").order_by("item__name")


def low_stock(on_date=None):
    rows = []
    for record in get_stock(on_date):
        item = record.item
        if not (item.is_active and item.is_ingredient):
            continue
        if record.closing_stock < item.min_stock:
            rows.append(
                {
                    "item_id": item.id,
                    "item_name": item.name,
                    "unit": item.unit,
                    "business_date": record.business_date,
                    "closing_stock": record.closing_stock,
                    "min_stock": item.min_stock,
                    "shortfall": item.min_stock - record.closing_stock,
                }
            )
    return rows
