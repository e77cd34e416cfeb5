"""Value coercion helpers.

Shared by the column validation rules, the field value validator and the
filter strategies so that stored values and filter operands are parsed
the same way. Every helper returns None when the input can't be coerced;
callers turn that into a user-facing message.
"""

import math
from datetime import date, datetime, timezone

from dateutil import parser as date_parser
from dateutil.parser import ParserError, isoparse

TRUE_STRINGS = ("true", "1", "yes", "on")
FALSE_STRINGS = ("false", "0", "no", "off")


def is_empty(value):
    """None, blank strings and empty lists all count as "no value"."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def parse_number(value):
    """Return value as a finite float, or None.

    Booleans are rejected even though bool subclasses int.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_datetime(value):
    """Parse a date or datetime into a naive UTC datetime, or None."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = isoparse(text)
        except ValueError:
            try:
                parsed = date_parser.parse(text)
            except (ParserError, ValueError, OverflowError):
                return None
    else:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_date(value):
    return value.date().isoformat()


def format_datetime(value):
    return value.replace(microsecond=0).isoformat(sep=" ")


def start_of_day(value):
    return datetime(value.year, value.month, value.day)


def parse_bool(value):
    """Coerce checkbox-style input to bool, or None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value in (0, 1):
            return bool(value)
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    return None


def dedupe(items):
    """Drop duplicates, keeping first-seen order."""
    seen = set()
    result = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result
