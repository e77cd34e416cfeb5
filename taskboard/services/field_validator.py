"""Field value validation and canonicalization.

FieldValueValidator.validate() is the single gate for dynamic column
values: the field value service runs it before writing a TaskFieldValue,
and the filter builder leans on the same coercion helpers for comparison
values. Stored values are always in canonical form:

    text / long_text / url / email / phone   stripped string
    number / currency / percentage           float
    date                                     "YYYY-MM-DD"
    datetime                                 "YYYY-MM-DD HH:MM:SS"
    status / priority                        option value
    assignee                                 user id (list when multiple)
    labels                                   de-duplicated list of strings
    checkbox                                 bool

Validating a canonical value returns it unchanged.
"""

from taskboard.services.coercion import (
    dedupe,
    format_date,
    format_datetime,
    is_empty,
    parse_bool,
    parse_datetime,
    parse_number,
)
from taskboard.services.column_types import ColumnType, ensure_exhaustive


class FieldValidationError(ValueError):
    """A value failed validation. Carries the path it was found at."""

    def __init__(self, path, messages):
        self.path = path
        self.messages = list(messages)
        super().__init__(f"{path}: {'; '.join(self.messages)}")

    def to_dict(self):
        return {"path": self.path, "messages": self.messages}


def _labels(raw, options):
    items = [raw] if isinstance(raw, str) else raw
    return dedupe(item.strip() for item in items if item.strip())


def _assignee(raw, options):
    if options.get("multiple"):
        items = [raw] if isinstance(raw, str) else raw
        return dedupe(item.strip() for item in items if item.strip())
    return raw.strip()


def _strip(raw, options):
    return raw.strip()


_CANONICALIZERS = {
    ColumnType.TEXT: _strip,
    ColumnType.LONG_TEXT: _strip,
    ColumnType.URL: _strip,
    ColumnType.EMAIL: _strip,
    ColumnType.PHONE: _strip,
    ColumnType.NUMBER: lambda raw, o: parse_number(raw),
    ColumnType.CURRENCY: lambda raw, o: parse_number(raw),
    ColumnType.PERCENTAGE: lambda raw, o: parse_number(raw),
    ColumnType.DATE: lambda raw, o: format_date(parse_datetime(raw)),
    ColumnType.DATETIME: lambda raw, o: format_datetime(parse_datetime(raw)),
    ColumnType.STATUS: lambda raw, o: raw,
    ColumnType.PRIORITY: lambda raw, o: raw,
    ColumnType.ASSIGNEE: _assignee,
    ColumnType.LABELS: _labels,
    ColumnType.CHECKBOX: lambda raw, o: parse_bool(raw),
}

ensure_exhaustive(_CANONICALIZERS, "field canonicalizer table")


class FieldValueValidator:
    """Validate raw values against a column type and its options.

    Args:
        registry: ColumnTypeRegistry supplying options and rules.
        user_exists: Optional callable taking a list of user ids and
            returning the set of ids that exist. Assignee values are only
            checked for existence when it is provided.
    """

    def __init__(self, registry, user_exists=None):
        self.registry = registry
        self.user_exists = user_exists

    def validate(self, column_type, raw, options=None, path="value"):
        """Return the canonical form of raw, or raise FieldValidationError.

        options are the column's stored options; registry defaults fill in
        anything missing.
        """
        column_type = ColumnType(column_type)
        options = self.registry.effective_options(column_type, options)
        required = bool(options.get("required"))

        if is_empty(raw):
            if required:
                raise FieldValidationError(path, ["This field is required."])
            return None

        rules = self.registry.validation_rules_for(column_type, options)
        errors = rules[0](raw)
        if not errors:
            for rule in rules[1:]:
                errors.extend(rule(raw))
        if errors:
            raise FieldValidationError(path, errors)

        value = _CANONICALIZERS[column_type](raw, options)

        if is_empty(value):
            if required:
                raise FieldValidationError(path, ["This field is required."])
            return None

        if column_type is ColumnType.ASSIGNEE and self.user_exists is not None:
            ids = value if isinstance(value, list) else [value]
            known = self.user_exists(ids)
            missing = [user_id for user_id in ids if user_id not in known]
            if missing:
                raise FieldValidationError(
                    path, [f"User '{user_id}' does not exist." for user_id in missing]
                )

        return value
