import datetime
import decimal
import uuid
from decimal import ROUND_HALF_UP, Decimal

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework.exceptions import ValidationError

MONEY_QUANT = Decimal("0.01")


def to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def round_half_up(value):
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_json_compatible(value):
    if isinstance(value, dict):
        return {key: to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def to_business_date(value=None, field="date"):
    """Resolve ``value`` to the local calendar day used to key the stock ledger.

    Accepts None (today), a date, a datetime (naive values are taken as local
    time) or an ISO-8601 date/datetime string.
    """
    if value is None or value == "":
        return timezone.localdate()

    if isinstance(value, str):
        raw = value.strip()
        parsed = None
        try:
            parsed = parse_datetime(raw)
            if parsed is None:
                parsed = parse_date(raw)
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError({field: f"Invalid ISO-8601 date: {value!r}."})
        value = parsed

    if isinstance(value, datetime.datetime):
        if timezone.is_naive(value):
            return value.date()
        return timezone.localtime(value).date()

    if isinstance(value, datetime.date):
        return value

    raise ValidationError({field: "Expected an ISO-8601 date or datetime."})


def to_aware_datetime(value=None, field="date"):
    """Like ``to_business_date`` but keeps the time of day; dates map to local midnight."""
    if value is None or value == "":
        return timezone.now()

    if isinstance(value, str):
        raw = value.strip()
        try:
            parsed = parse_datetime(raw)
        except ValueError:
            parsed = None
        if parsed is None:
            day = to_business_date(raw, field=field)
            parsed = datetime.datetime.combine(day, datetime.time.min)
        value = parsed
    elif isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        value = datetime.datetime.combine(value, datetime.time.min)

    if not isinstance(value, datetime.datetime):
        raise ValidationError({field: "Expected an ISO-8601 date or datetime."})
    if timezone.is_naive(value):
        value = timezone.make_aware(value)
    return value


def local_day_bounds(day):
    start = timezone.make_aware(datetime.datetime.combine(day, datetime.time.min))
    end = timezone.make_aware(datetime.datetime.combine(day, datetime.time.max))
    return start, end


def parse_uuid(value, field="id"):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError({field: f"Invalid identifier: {value!r}."})

UUID_LOOKUP_REGEX = "[0-9a-fA-F-]{36}"
