"""Column type catalogue.

ColumnType, Operator and Logic are closed enums. Everything the rest of the
package needs to know about a column type lives in one static table keyed by
ColumnType; ColumnTypeRegistry is a read-only view over it.

The registry is built once in create_app() and handed to every component
that needs it (validator, filter builder, translator). Nothing here touches
the database.
"""

import copy
import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from taskboard.services.coercion import (
    dedupe,
    parse_bool,
    parse_datetime,
    parse_number,
)


class ColumnType(str, Enum):
    TEXT = "text"
    LONG_TEXT = "long_text"
    NUMBER = "number"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DATE = "date"
    DATETIME = "datetime"
    STATUS = "status"
    PRIORITY = "priority"
    ASSIGNEE = "assignee"
    LABELS = "labels"
    CHECKBOX = "checkbox"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"


class Operator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_EQUAL = "greater_equal"
    LESS_EQUAL = "less_equal"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class Logic(str, Enum):
    AND = "AND"
    OR = "OR"


class Family(str, Enum):
    """Column types that share a filter strategy."""

    TEXT = "text"
    NUMERIC = "numeric"
    DATE = "date"
    ENUMERATED = "enumerated"
    ASSIGNEE = "assignee"
    LABELS = "labels"
    CHECKBOX = "checkbox"


EMPTINESS_OPERATORS = frozenset({Operator.IS_EMPTY, Operator.IS_NOT_EMPTY})
LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
ORDERING_OPERATORS = frozenset({
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_EQUAL,
    Operator.LESS_EQUAL,
})
# Every operator except the emptiness checks needs a comparison value.
VALUE_OPERATORS = frozenset(Operator) - EMPTINESS_OPERATORS

FAMILY_OPERATORS = {
    Family.TEXT: frozenset({
        Operator.EQUALS,
        Operator.NOT_EQUALS,
        Operator.CONTAINS,
        Operator.NOT_CONTAINS,
        Operator.STARTS_WITH,
        Operator.ENDS_WITH,
    }) | EMPTINESS_OPERATORS,
    Family.NUMERIC: frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
    | ORDERING_OPERATORS | EMPTINESS_OPERATORS,
    Family.DATE: frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
    | ORDERING_OPERATORS | EMPTINESS_OPERATORS,
    Family.ENUMERATED: frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
    | LIST_OPERATORS | EMPTINESS_OPERATORS,
    Family.ASSIGNEE: frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
    | LIST_OPERATORS | EMPTINESS_OPERATORS,
    Family.LABELS: frozenset({Operator.CONTAINS, Operator.NOT_CONTAINS})
    | EMPTINESS_OPERATORS,
    Family.CHECKBOX: frozenset({Operator.EQUALS, Operator.NOT_EQUALS})
    | EMPTINESS_OPERATORS,
}

# Canonical listing order for error messages and the catalogue endpoint.
_OPERATOR_ORDER = {op: i for i, op in enumerate(Operator)}


def sorted_operators(operators):
    return sorted(operators, key=_OPERATOR_ORDER.__getitem__)


# ─── Static type table ───────────────────────────────────────────


@dataclass(frozen=True)
class TypeSpec:
    label: str
    family: Family
    default_width: int
    default_options: dict
    json_schema: dict
    sortable: bool = True
    supports_multiple: bool = False


def _enum_options(*entries):
    return [
        {"value": value, "label": label, "color": color}
        for value, label, color in entries
    ]


_TYPE_TABLE = {
    ColumnType.TEXT: TypeSpec(
        label="Text",
        family=Family.TEXT,
        default_width=200,
        default_options={"placeholder": "", "max_length": 255},
        json_schema={"type": "string", "maxLength": 255},
    ),
    ColumnType.LONG_TEXT: TypeSpec(
        label="Long Text",
        family=Family.TEXT,
        default_width=250,
        default_options={"placeholder": "", "max_length": 5000, "rows": 3},
        json_schema={"type": "string", "maxLength": 5000},
    ),
    ColumnType.NUMBER: TypeSpec(
        label="Number",
        family=Family.NUMERIC,
        default_width=120,
        default_options={"min": None, "max": None, "decimal_places": 0},
        json_schema={"type": "number"},
    ),
    ColumnType.CURRENCY: TypeSpec(
        label="Currency",
        family=Family.NUMERIC,
        default_width=120,
        default_options={
            "currency_code": "USD",
            "symbol": "$",
            "decimal_places": 2,
            "placeholder": "0.00",
        },
        json_schema={"type": "number", "minimum": 0},
    ),
    ColumnType.PERCENTAGE: TypeSpec(
        label="Percentage",
        family=Family.NUMERIC,
        default_width=100,
        default_options={
            "min": 0,
            "max": 100,
            "decimal_places": 0,
            "placeholder": "0%",
        },
        json_schema={"type": "number", "minimum": 0, "maximum": 100},
    ),
    ColumnType.DATE: TypeSpec(
        label="Date",
        family=Family.DATE,
        default_width=120,
        default_options={"default_to_today": False},
        json_schema={"type": "string", "format": "date"},
    ),
    ColumnType.DATETIME: TypeSpec(
        label="Date & Time",
        family=Family.DATE,
        default_width=150,
        default_options={"default_to_now": False},
        json_schema={"type": "string", "format": "date-time"},
    ),
    ColumnType.STATUS: TypeSpec(
        label="Status",
        family=Family.ENUMERATED,
        default_width=120,
        default_options={
            "options": _enum_options(
                ("todo", "To Do", "#6B7280"),
                ("in_progress", "In Progress", "#3B82F6"),
                ("done", "Done", "#10B981"),
            ),
        },
        json_schema={"type": "string"},
    ),
    ColumnType.PRIORITY: TypeSpec(
        label="Priority",
        family=Family.ENUMERATED,
        default_width=120,
        default_options={
            "options": _enum_options(
                ("low", "Low", "#6B7280"),
                ("medium", "Medium", "#F59E0B"),
                ("high", "High", "#EF4444"),
                ("urgent", "Urgent", "#DC2626"),
            ),
        },
        json_schema={"type": "string"},
    ),
    ColumnType.ASSIGNEE: TypeSpec(
        label="Assignee",
        family=Family.ASSIGNEE,
        default_width=150,
        default_options={"multiple": False},
        json_schema={"type": "string"},
        supports_multiple=True,
    ),
    ColumnType.LABELS: TypeSpec(
        label="Labels",
        family=Family.LABELS,
        default_width=180,
        default_options={"multiple": True, "max_labels": 10},
        json_schema={"type": "array", "items": {"type": "string"}},
        sortable=False,
        supports_multiple=True,
    ),
    ColumnType.CHECKBOX: TypeSpec(
        label="Checkbox",
        family=Family.CHECKBOX,
        default_width=80,
        default_options={"default_value": False},
        json_schema={"type": "boolean"},
        sortable=False,
    ),
    ColumnType.URL: TypeSpec(
        label="URL",
        family=Family.TEXT,
        default_width=200,
        default_options={"placeholder": "https://example.com"},
        json_schema={"type": "string", "format": "uri"},
    ),
    ColumnType.EMAIL: TypeSpec(
        label="Email",
        family=Family.TEXT,
        default_width=180,
        default_options={"placeholder": "email@example.com"},
        json_schema={"type": "string", "format": "email"},
    ),
    ColumnType.PHONE: TypeSpec(
        label="Phone",
        family=Family.TEXT,
        default_width=140,
        default_options={"placeholder": "+1 (555) 123-4567"},
        json_schema={"type": "string"},
    ),
}


def option_values(options):
    """Values of an enumerated column's option list, in declared order."""
    entries = (options or {}).get("options") or []
    values = []
    for entry in entries:
        if isinstance(entry, dict) and entry.get("value") is not None:
            values.append(str(entry["value"]))
        elif isinstance(entry, str):
            values.append(entry)
    return values


# ─── Validation rules ────────────────────────────────────────────
#
# A rule takes the raw value and returns a list of error messages (empty
# when the value passes). The first rule of every list checks the value's
# shape; the validator stops there if it fails, so later rules can assume
# the shape is right.

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^[+]?[\d\s\-\(\)]+$")


def _check(predicate, message):
    def rule(value):
        return [] if predicate(value) else [message]
    return rule


def _is_string(value):
    return isinstance(value, str)


def _max_length(limit):
    return _check(
        lambda value: len(value.strip()) <= limit,
        f"Value may not be greater than {limit} characters.",
    )


def _numeric():
    return _check(
        lambda value: parse_number(value) is not None,
        "Value must be a number.",
    )


def _at_least(minimum):
    return _check(
        lambda value: parse_number(value) >= float(minimum),
        f"Value must be at least {minimum}.",
    )


def _at_most(maximum):
    return _check(
        lambda value: parse_number(value) <= float(maximum),
        f"Value may not be greater than {maximum}.",
    )


def _range_rules(options):
    rules = []
    if options.get("min") is not None:
        rules.append(_at_least(options["min"]))
    if options.get("max") is not None:
        rules.append(_at_most(options["max"]))
    return rules


def _one_of(values):
    allowed = list(values)

    def rule(value):
        if isinstance(value, str) and value in allowed:
            return []
        return [f"Invalid value '{value}'. Must be one of: {', '.join(allowed)}"]
    return rule


def _is_url(value):
    if not isinstance(value, str):
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _label_list(value):
    if isinstance(value, str):
        return True
    return isinstance(value, (list, tuple)) and all(
        isinstance(item, str) for item in value
    )


def _max_labels(limit):
    def rule(value):
        items = [value] if isinstance(value, str) else value
        labels = dedupe(item.strip() for item in items if item.strip())
        if len(labels) > limit:
            return [f"No more than {limit} labels are allowed."]
        return []
    return rule


def _assignee_shape(multiple):
    def rule(value):
        if isinstance(value, str):
            return []
        if multiple and isinstance(value, (list, tuple)) and all(
            isinstance(item, str) for item in value
        ):
            return []
        if multiple:
            return ["Value must be a user id or a list of user ids."]
        return ["Value must be a user id."]
    return rule


_TEXT_SHAPE = _check(_is_string, "Value must be a string.")
_DATE_SHAPE = _check(
    lambda value: parse_datetime(value) is not None,
    "Value is not a valid date.",
)

_RULE_BUILDERS = {
    ColumnType.TEXT: lambda o: [
        _TEXT_SHAPE, _max_length(o.get("max_length") or 255)
    ],
    ColumnType.LONG_TEXT: lambda o: [
        _TEXT_SHAPE, _max_length(o.get("max_length") or 5000)
    ],
    ColumnType.NUMBER: lambda o: [_numeric()] + _range_rules(o),
    ColumnType.CURRENCY: lambda o: [_numeric(), _at_least(0)]
    + _range_rules(o),
    ColumnType.PERCENTAGE: lambda o: [_numeric()] + _range_rules(o),
    ColumnType.DATE: lambda o: [_DATE_SHAPE],
    ColumnType.DATETIME: lambda o: [_DATE_SHAPE],
    ColumnType.STATUS: lambda o: [_one_of(option_values(o))],
    ColumnType.PRIORITY: lambda o: [_one_of(option_values(o))],
    ColumnType.ASSIGNEE: lambda o: [_assignee_shape(bool(o.get("multiple")))],
    ColumnType.LABELS: lambda o: [
        _check(_label_list, "Value must be a list of labels."),
        _max_labels(o.get("max_labels") or 10),
    ],
    ColumnType.CHECKBOX: lambda o: [
        _check(
            lambda value: parse_bool(value) is not None,
            "Value must be true or false.",
        )
    ],
    ColumnType.URL: lambda o: [
        _TEXT_SHAPE,
        _max_length(2048),
        _check(_is_url, "Value must be a valid URL."),
    ],
    ColumnType.EMAIL: lambda o: [
        _TEXT_SHAPE,
        _max_length(255),
        _check(
            lambda value: bool(EMAIL_RE.match(value.strip())),
            "Value must be a valid email address.",
        ),
    ],
    ColumnType.PHONE: lambda o: [
        _TEXT_SHAPE,
        _max_length(50),
        _check(
            lambda value: bool(PHONE_RE.match(value.strip())),
            "Value must be a valid phone number.",
        ),
    ],
}


def ensure_exhaustive(table, name):
    """Raise if a dispatch table keyed by ColumnType misses or adds a type."""
    missing = set(ColumnType) - set(table)
    extra = set(table) - set(ColumnType)
    if missing or extra:
        raise RuntimeError(
            f"{name} is out of sync with ColumnType "
            f"(missing: {sorted(t.value for t in missing)}, "
            f"unexpected: {sorted(str(t) for t in extra)})"
        )


ensure_exhaustive(_TYPE_TABLE, "column type table")
ensure_exhaustive(_RULE_BUILDERS, "validation rule table")


# ─── Registry ────────────────────────────────────────────────────


class ColumnTypeRegistry:
    """Read-only lookups over the static column type table.

    Instances share the module-level table; there is nothing to mutate.
    Every accessor that returns a mutable structure returns a fresh copy.
    """

    def __init__(self):
        self._table = _TYPE_TABLE

    def types(self):
        return list(ColumnType)

    def spec(self, column_type):
        return self._table[ColumnType(column_type)]

    def label(self, column_type):
        return self.spec(column_type).label

    def family(self, column_type):
        return self.spec(column_type).family

    def default_options(self, column_type):
        options = copy.deepcopy(self.spec(column_type).default_options)
        options.setdefault("required", False)
        return options

    def effective_options(self, column_type, options=None):
        """Defaults overlaid with a column's stored options."""
        merged = self.default_options(column_type)
        merged.update(copy.deepcopy(options or {}))
        return merged

    def operators_for(self, column_type):
        return FAMILY_OPERATORS[self.family(column_type)]

    def is_operator_allowed(self, column_type, operator):
        return Operator(operator) in self.operators_for(column_type)

    def validation_rules_for(self, column_type, options=None):
        column_type = ColumnType(column_type)
        merged = self.effective_options(column_type, options)
        return tuple(_RULE_BUILDERS[column_type](merged))

    def default_width(self, column_type):
        return self.spec(column_type).default_width

    def json_schema(self, column_type, options=None):
        column_type = ColumnType(column_type)
        schema = copy.deepcopy(self.spec(column_type).json_schema)
        family = self.family(column_type)
        if family is Family.ENUMERATED:
            schema["enum"] = option_values(
                self.effective_options(column_type, options)
            )
        if (
            column_type is ColumnType.ASSIGNEE
            and (options or {}).get("multiple")
        ):
            schema = {"type": "array", "items": {"type": "string"}}
        return schema

    def is_sortable(self, column_type):
        return self.spec(column_type).sortable

    def supports_multiple(self, column_type):
        return self.spec(column_type).supports_multiple

    def describe(self, column_type):
        """Catalogue entry for one type, as served by the API."""
        column_type = ColumnType(column_type)
        spec = self.spec(column_type)
        return {
            "type": column_type.value,
            "label": spec.label,
            "family": spec.family.value,
            "default_width": spec.default_width,
            "default_options": self.default_options(column_type),
            "operators": [
                op.value for op in sorted_operators(self.operators_for(column_type))
            ],
            "json_schema": self.json_schema(column_type),
            "sortable": spec.sortable,
            "supports_multiple": spec.supports_multiple,
        }

    def catalogue(self):
        return [self.describe(column_type) for column_type in ColumnType]
