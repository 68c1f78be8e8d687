"""Sales ledger, table orders and receivables.

Direct (walk-in) sales and order close share one settlement routine: every
line's recipe is expanded into ingredient needs, needs are summed per
ingredient across the whole settlement and checked against the stock ledger
before anything is written, and only then is stock consumed. The whole
settlement runs in one database transaction, so a failure on any line leaves
stock, sales and the order exactly as they were.
"""

import logging
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import ConflictError, InsufficientStockError
from common.utils import local_day_bounds, parse_uuid, round_half_up, to_aware_datetime, to_business_date, to_money
from core.services import get_cafe_settings
from inventory import ledger
from inventory.services import get_item, get_recipe_by_menu_item
from sales.models import Customer, DiningTable, Order, Payment, Receivable, Sale, SaleConsumption

logger = logging.getLogger(__name__)


def _positive_int(value, field):
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError({field: f"{field} must be a positive integer."})
    return value


def _non_negative_int(value, field):
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError({field: f"{field} must be a non-negative integer."})
    return value


def clean_labels(labels):
    if labels is None:
        return []
    if isinstance(labels, str) or not isinstance(labels, (list, tuple, set)):
        raise ValidationError({"labels": "Labels must be a list of strings."})
    cleaned = set()
    for label in labels:
        if not isinstance(label, str):
            raise ValidationError({"labels": "Labels must be a list of strings."})
        label = label.strip()
        if label:
            cleaned.add(label)
    return sorted(cleaned)


def _sellable_item(item_id):
    item = get_item(item_id)
    if item.is_ingredient:
        raise ValidationError({"item_id": f"{item.name} is an ingredient and cannot be sold."})
    if not item.is_active:
        raise ValidationError({"item_id": f"{item.name} is not active."})
    return item


# Settlement


def _plan_line(item, quantity):
    recipe = get_recipe_by_menu_item(item.id)
    components = list(recipe.components.all()) if recipe is not None else []
    if not components:
        raise ValidationError({"item_id": f"Recipe required for {item.name}."})

    needs = {}
    unit_cost = Decimal("0")
    for component in components:
        needs[component.ingredient_id] = round_half_up(component.quantity_per_unit * quantity)
        unit_cost += component.quantity_per_unit * component.ingredient.cost_price
    return {
        "item": item,
        "quantity": quantity,
        "needs": needs,
        "ingredients": {component.ingredient_id: component.ingredient for component in components},
        "cogs": to_money(unit_cost * quantity),
    }


def plan_settlement(lines, day, cafe_settings=None):
    """Expand ``(item, quantity)`` lines into per-line plans and gate them on stock.

    Raises ``InsufficientStockError`` listing every ingredient whose summed
    need exceeds the stock available on ``day``. Nothing is written.
    """
    cafe_settings = cafe_settings or get_cafe_settings()
    plans = [_plan_line(item, quantity) for item, quantity in lines]

    totals = {}
    ingredients = {}
    for plan in plans:
        ingredients.update(plan["ingredients"])
        for ingredient_id, needed in plan["needs"].items():
            totals[ingredient_id] = totals.get(ingredient_id, 0) + needed

    if cafe_settings.allow_sale_without_stock:
        return plans

    shortages = []
    for ingredient_id in sorted(totals, key=str):
        required = totals[ingredient_id]
        available = ledger.available_stock(ingredient_id, day)
        if available < required:
            shortages.append(
                {
                    "ingredient_id": str(ingredient_id),
                    "ingredient_name": ingredients[ingredient_id].name,
                    "available": available,
                    "required": required,
                }
            )
    if shortages:
        logger.warning(
            "settlement_rejected shortages=%s",
            len(shortages),
            extra={"business_date": day.isoformat()},
        )
        raise InsufficientStockError(shortages)
    return plans


def apply_settlement(sale, plan, day):
    """Consume the plan's ingredients for ``sale``. A settled sale is never consumed twice."""
    claimed = Sale.objects.filter(pk=sale.pk, settled_at__isnull=True).update(
        settled_at=timezone.now(),
        cogs=plan["cogs"],
    )
    if not claimed:
        logger.info("sale_already_settled", extra={"sale_id": str(sale.pk)})
        return sale

    for ingredient_id in sorted(plan["needs"], key=str):
        needed = plan["needs"][ingredient_id]
        ledger.consume(ingredient_id, day, needed)
        SaleConsumption.objects.create(sale=sale, ingredient_id=ingredient_id, business_date=day, quantity=needed)

    sale.refresh_from_db(fields=["settled_at", "cogs"])
    return sale


def release_settlement(sale):
    """Return every ingredient recorded for ``sale`` to stock and mark it unsettled."""
    for consumption in sale.consumptions.order_by("ingredient_id"):
        ledger.release(consumption.ingredient_id, consumption.business_date, consumption.quantity)
    sale.consumptions.all().delete()
    Sale.objects.filter(pk=sale.pk).update(settled_at=None, cogs=Decimal("0"))
    sale.settled_at = None
    sale.cogs = Decimal("0")
    return sale


# Sales


def create_sale(item_id, quantity, unit_price=None, total=None, date=None, labels=(), cafe_settings=None):
    item = _sellable_item(item_id)
    _positive_int(quantity, "quantity")
    unit_price = item.selling_price if unit_price is None else _non_negative_int(unit_price, "unit_price")
    total = quantity * unit_price if total is None else _non_negative_int(total, "total")
    sold_at = to_aware_datetime(date)
    day = to_business_date(sold_at)
    labels = clean_labels(labels)

    with transaction.atomic():
        plan = plan_settlement([(item, quantity)], day, cafe_settings)[0]
        sale = Sale.objects.create(
            item=item,
            date=sold_at,
            quantity=quantity,
            unit_price=unit_price,
            total=total,
            labels=labels,
        )
        apply_settlement(sale, plan, day)

    logger.info(
        "sale_settled quantity=%s",
        quantity,
        extra={"sale_id": str(sale.id), "item_id": str(item.id), "business_date": day.isoformat(), "amount": total},
    )
    return sale


def get_sale(sale_id):
    sale = Sale.objects.select_related("item", "order").filter(id=parse_uuid(sale_id, "sale_id")).first()
    if sale is None:
        raise NotFound("Sale was not found.")
    return sale


def _apply_sale_fields(sale, *, quantity=None, unit_price=None, total=None, date=None, labels=None):
    if quantity is not None:
        sale.quantity = _positive_int(quantity, "quantity")
    if unit_price is not None:
        sale.unit_price = _non_negative_int(unit_price, "unit_price")
    if total is not None:
        sale.total = _non_negative_int(total, "total")
    elif quantity is not None or unit_price is not None:
        sale.total = sale.quantity * sale.unit_price
    if date is not None:
        sale.date = to_aware_datetime(date)
    if labels is not None:
        sale.labels = clean_labels(labels)
    return sale


def update_sale(sale_id, *, quantity=None, unit_price=None, total=None, date=None, labels=None, cafe_settings=None):
    """Edit a sale according to where it lives.

    * OPEN order line: fields change and the order total follows; no stock effect.
    * direct sale: when quantity or business day changes, the recorded
      consumption is released and the sale is settled again with its new
      values, all in one transaction. Other edits leave stock alone.
    * CLOSED order line: labels only.
    * CANCELLED order line: not editable.
    """
    changed = {
        field
        for field, value in (("quantity", quantity), ("unit_price", unit_price), ("total", total), ("date", date), ("labels", labels))
        if value is not None
    }
    fields = {"quantity": quantity, "unit_price": unit_price, "total": total, "date": date, "labels": labels}

    with transaction.atomic():
        sale = Sale.objects.select_for_update().filter(id=parse_uuid(sale_id, "sale_id")).first()
        if sale is None:
            raise NotFound("Sale was not found.")

        if sale.order_id is not None:
            order = Order.objects.select_for_update().get(pk=sale.order_id)
            if order.status == Order.Status.CANCELLED:
                raise ConflictError("Lines of a cancelled order cannot be edited.")
            if order.status == Order.Status.CLOSED:
                if changed - {"labels"}:
                    raise ConflictError("Only labels can be edited on a closed order line.")
                sale.labels = clean_labels(labels)
                sale.save(update_fields=["labels", "updated_at"])
                return sale

            previous_total = sale.total
            _apply_sale_fields(sale, **fields)
            sale.save()
            order.total += sale.total - previous_total
            order.save(update_fields=["total", "updated_at"])
            return sale

        previous_quantity = sale.quantity
        previous_day = to_business_date(sale.date)
        _apply_sale_fields(sale, **fields)
        day = to_business_date(sale.date)
        if sale.quantity == previous_quantity and day == previous_day:
            sale.save()
            return sale

        release_settlement(sale)
        sale.save()
        plan = plan_settlement([(sale.item, sale.quantity)], day, cafe_settings)[0]
        apply_settlement(sale, plan, day)

    logger.info("sale_resettled", extra={"sale_id": str(sale.id), "business_date": day.isoformat()})
    return sale


def list_sales(date=None, date_from=None, date_to=None, limit=None):
    qs = Sale.objects.select_related("item", "order").order_by("-date", "-created_at")
    if date:
        start, end = local_day_bounds(to_business_date(date))
        qs = qs.filter(date__gte=start, date__lte=end)
    if date_from:
        qs = qs.filter(date__gte=local_day_bounds(to_business_date(date_from, field="date_from"))[0])
    if date_to:
        qs = qs.filter(date__lte=local_day_bounds(to_business_date(date_to, field="date_to"))[1])
    if limit:
        qs = qs[: _positive_int(limit, "limit")]
    return qs


def merged_labels(cafe_settings=None):
    cafe_settings = cafe_settings or get_cafe_settings()
    labels = set(cafe_settings.configured_labels)
    for sale_labels in Sale.objects.values_list("labels", flat=True).iterator():
        labels.update(label for label in sale_labels or [] if label)
    return sorted(labels)


# Orders


def _locked_order(order_id):
    order = Order.objects.select_for_update().filter(id=parse_uuid(order_id, "order_id")).first()
    if order is None:
        raise NotFound("Order was not found.")
    return order


def _set_table_status(table_id, status):
    DiningTable.objects.filter(pk=table_id).update(status=status, updated_at=timezone.now())


def create_order(table_id):
    with transaction.atomic():
        table = DiningTable.objects.select_for_update().filter(id=parse_uuid(table_id, "table_id")).first()
        if table is None:
            raise NotFound("Table was not found.")
        if Order.objects.filter(table=table, status=Order.Status.OPEN).exists():
            raise ConflictError(f"Table {table.number} already has an open order.")
        try:
            with transaction.atomic():
                order = Order.objects.create(table=table)
        except IntegrityError:
            raise ConflictError(f"Table {table.number} already has an open order.")
        _set_table_status(table.id, DiningTable.Status.OCCUPIED)

    logger.info("order_opened", extra={"order_id": str(order.id)})
    return order


def get_order(order_id):
    order = (
        Order.objects.select_related("table")
        .prefetch_related("lines__item")
        .filter(id=parse_uuid(order_id, "order_id"))
        .first()
    )
    if order is None:
        raise NotFound("Order was not found.")
    return order


def list_orders(status=None, table_id=None):
    qs = Order.objects.select_related("table").prefetch_related("lines__item")
    if status:
        if status not in Order.Status.values:
            raise ValidationError({"status": f"Status must be one of: {', '.join(Order.Status.values)}."})
        qs = qs.filter(status=status)
    if table_id:
        qs = qs.filter(table_id=parse_uuid(table_id, "table_id"))
    return qs


def add_item_to_order(order_id, item_id, quantity, unit_price=None, labels=(), date=None):
    item = _sellable_item(item_id)
    _positive_int(quantity, "quantity")
    unit_price = item.selling_price if unit_price is None else _non_negative_int(unit_price, "unit_price")
    total = quantity * unit_price

    with transaction.atomic():
        order = _locked_order(order_id)
        if order.status != Order.Status.OPEN:
            raise ConflictError("Items can only be added to an open order.")
        sale = Sale.objects.create(
            order=order,
            item=item,
            date=to_aware_datetime(date),
            quantity=quantity,
            unit_price=unit_price,
            total=total,
            labels=clean_labels(labels),
        )
        order.total += total
        order.save(update_fields=["total", "updated_at"])
    return sale


def remove_item_from_order(sale_id, order_id=None):
    with transaction.atomic():
        sale = Sale.objects.filter(id=parse_uuid(sale_id, "sale_id")).first()
        if sale is None or sale.order_id is None:
            raise NotFound("Order line was not found.")
        if order_id is not None and str(sale.order_id) != str(order_id):
            raise NotFound("Order line was not found.")
        order = _locked_order(sale.order_id)
        if order.status != Order.Status.OPEN:
            raise ConflictError("Items can only be removed from an open order.")
        order.total -= sale.total
        order.save(update_fields=["total", "updated_at"])
        sale.delete()
    return order


def close_order(order_id, payment_type, customer_id=None, cafe_settings=None):
    if payment_type not in Order.PaymentType.values:
        raise ValidationError({"payment_type": f"Payment type must be one of: {', '.join(Order.PaymentType.values)}."})

    with transaction.atomic():
        order = _locked_order(order_id)
        if order.status != Order.Status.OPEN:
            raise ConflictError("Only open orders can be closed.")

        customer = None
        if payment_type == Order.PaymentType.CREDIT:
            if not customer_id:
                raise ValidationError({"customer_id": "A customer is required for credit orders."})
            customer = Customer.objects.filter(id=parse_uuid(customer_id, "customer_id")).first()
            if customer is None:
                raise NotFound("Customer was not found.")

        lines = list(order.lines.select_related("item").order_by("created_at"))
        if not lines:
            raise ValidationError({"order": "An order needs at least one item before it can be closed."})

        closed_at = timezone.now()
        day = to_business_date(closed_at)
        plans = plan_settlement([(line.item, line.quantity) for line in lines], day, cafe_settings)
        for line, plan in zip(lines, plans):
            apply_settlement(line, plan, day)

        order.status = Order.Status.CLOSED
        order.closed_at = closed_at
        order.payment_type = payment_type
        order.save(update_fields=["status", "closed_at", "payment_type", "updated_at"])
        _set_table_status(order.table_id, DiningTable.Status.EMPTY)

        if customer is not None:
            receivable = Receivable(order=order, customer=customer, amount=order.total, outstanding=order.total)
            if order.total == 0:
                receivable.status = Receivable.Status.SETTLED
                receivable.settled_at = closed_at
            receivable.save()

    logger.info(
        "order_closed payment_type=%s lines=%s",
        payment_type,
        len(lines),
        extra={"order_id": str(order.id), "business_date": day.isoformat(), "amount": order.total},
    )
    return order


def cancel_order(order_id):
    with transaction.atomic():
        order = _locked_order(order_id)
        if order.status != Order.Status.OPEN:
            raise ConflictError("Only open orders can be cancelled.")
        order.status = Order.Status.CANCELLED
        order.closed_at = timezone.now()
        order.save(update_fields=["status", "closed_at", "updated_at"])
        _set_table_status(order.table_id, DiningTable.Status.EMPTY)

    logger.info("order_cancelled", extra={"order_id": str(order.id)})
    return order


# Customers and receivables


def list_customers():
    return Customer.objects.all()


def create_customer(name, phone=None):
    name = (name or "").strip()
    if not name:
        raise ValidationError({"name": "Name is required."})
    return Customer.objects.create(name=name, phone=(phone or "").strip() or None)


def list_receivables(status=None, customer_id=None):
    qs = Receivable.objects.select_related("customer", "order").prefetch_related("payments")
    if status:
        if status not in Receivable.Status.values:
            raise ValidationError({"status": f"Status must be one of: {', '.join(Receivable.Status.values)}."})
        qs = qs.filter(status=status)
    if customer_id:
        qs = qs.filter(customer_id=parse_uuid(customer_id, "customer_id"))
    return qs


def record_payment(receivable_id, amount, method, cafe_settings=None):
    """Apply a customer payment to a receivable and credit the matching till balance.

    Overpayment clamps ``outstanding`` at zero; the full amount received is
    still added to the cash or bank balance.
    """
    _positive_int(amount, "amount")
    if method not in Payment.Method.values:
        raise ValidationError({"method": f"Method must be one of: {', '.join(Payment.Method.values)}."})
    cafe_settings = cafe_settings or get_cafe_settings()

    with transaction.atomic():
        receivable = Receivable.objects.select_for_update().filter(id=parse_uuid(receivable_id, "receivable_id")).first()
        if receivable is None:
            raise NotFound("Receivable was not found.")
        if receivable.status == Receivable.Status.SETTLED:
            raise ConflictError("Receivable is already settled.")

        now = timezone.now()
        payment = Payment.objects.create(receivable=receivable, amount=amount, method=method, paid_at=now)
        receivable.outstanding = max(0, receivable.outstanding - amount)
        if receivable.outstanding == 0:
            receivable.status = Receivable.Status.SETTLED
            receivable.settled_at = now
        receivable.save(update_fields=["outstanding", "status", "settled_at", "updated_at"])
        cafe_settings.add_to_balance(method, amount)

    logger.info(
        "payment_recorded method=%s",
        method,
        extra={"receivable_id": str(receivable.id), "amount": amount},
    )
    return payment
