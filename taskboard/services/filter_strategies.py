"""Per-family filter strategies.

Each strategy answers two questions for the column types in its family:
is this operator/value pair acceptable (validate_value, which also returns
the canonical operand), and what SQL predicate does it produce (apply).

apply() works against a storage view (see column_resolver): the same
strategy builds predicates for native task columns and for JSON values in
task_field_values.
"""

from datetime import datetime, timedelta
from operator import eq, ge, gt, le, lt, ne

from sqlalchemy import and_, or_

from taskboard.services.coercion import (
    dedupe,
    format_date,
    format_datetime,
    parse_bool,
    parse_datetime,
    parse_number,
    start_of_day,
)
from taskboard.services.column_types import (
    FAMILY_OPERATORS,
    LIST_OPERATORS,
    ColumnType,
    Family,
    Operator,
    option_values,
    sorted_operators,
)


class UnsupportedOperatorError(ValueError):
    def __init__(self, operator, column_type, allowed):
        self.operator = operator
        self.column_type = column_type
        self.allowed = sorted_operators(allowed)
        super().__init__(
            f"Operator '{Operator(operator).value}' is not valid for column type "
            f"'{ColumnType(column_type).value}'. Available operators: "
            + ", ".join(op.value for op in self.allowed)
        )


class StrategyValueError(ValueError):
    """A comparison value was rejected.

    problems is a list of (path suffix, message) pairs; the suffix points
    at a list element (".2") or is empty for the value as a whole.
    """

    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(message for _, message in self.problems))

    @classmethod
    def single(cls, message):
        return cls([("", message)])


class FilterStrategy:
    family = None

    def __init__(self, registry):
        self.registry = registry

    def supported_operators(self):
        return FAMILY_OPERATORS[self.family]

    def check_operator(self, operator, column_type):
        if operator not in self.supported_operators():
            raise UnsupportedOperatorError(
                operator, column_type, self.supported_operators()
            )

    def validate_value(self, value, operator, column_type, options=None):
        """Return the canonical operand for value, or raise StrategyValueError."""
        operator = Operator(operator)
        self.check_operator(operator, column_type)
        if operator in (Operator.IS_EMPTY, Operator.IS_NOT_EMPTY):
            return None
        return self._validate(value, operator, ColumnType(column_type), options or {})

    def apply(self, ref, value, operator, column_type):
        """Build the predicate for a validated (operator, value) pair."""
        operator = Operator(operator)
        self.check_operator(operator, column_type)
        if operator is Operator.IS_EMPTY:
            return ref.is_empty()
        if operator is Operator.IS_NOT_EMPTY:
            return ~ref.is_empty()
        return self._apply(ref, value, operator, ColumnType(column_type))

    def _validate(self, value, operator, column_type, options):
        raise NotImplementedError

    def _apply(self, ref, value, operator, column_type):
        raise NotImplementedError


_COMPARATORS = {
    Operator.EQUALS: eq,
    Operator.NOT_EQUALS: ne,
    Operator.GREATER_THAN: gt,
    Operator.LESS_THAN: lt,
    Operator.GREATER_EQUAL: ge,
    Operator.LESS_EQUAL: le,
}


# ─── Text ────────────────────────────────────────────────────────


class TextFilterStrategy(FilterStrategy):
    family = Family.TEXT
    MAX_EQUALS_LENGTH = 255

    def _validate(self, value, operator, column_type, options):
        if not isinstance(value, str):
            raise StrategyValueError.single("Value must be a string")
        if operator in (Operator.EQUALS, Operator.NOT_EQUALS):
            value = value.strip()
            if len(value) > self.MAX_EQUALS_LENGTH:
                raise StrategyValueError.single(
                    f"Value may not be greater than {self.MAX_EQUALS_LENGTH} characters"
                )
            return value
        if value == "":
            raise StrategyValueError.single("Value may not be empty")
        return value

    def _apply(self, ref, value, operator, column_type):
        expression = ref.text()
        if operator is Operator.EQUALS:
            return expression == value
        if operator is Operator.NOT_EQUALS:
            return expression != value
        if operator is Operator.CONTAINS:
            return expression.icontains(value, autoescape=True)
        if operator is Operator.NOT_CONTAINS:
            return ~expression.icontains(value, autoescape=True)
        if operator is Operator.STARTS_WITH:
            return expression.istartswith(value, autoescape=True)
        return expression.iendswith(value, autoescape=True)


# ─── Numeric ─────────────────────────────────────────────────────


class NumericFilterStrategy(FilterStrategy):
    family = Family.NUMERIC

    def _validate(self, value, operator, column_type, options):
        number = parse_number(value)
        if number is None:
            raise StrategyValueError.single("Value must be numeric")
        minimum = options.get("min")
        maximum = options.get("max")
        if minimum is not None and number < float(minimum):
            raise StrategyValueError.single(f"Value must be at least {minimum}")
        if maximum is not None and number > float(maximum):
            raise StrategyValueError.single(f"Value must be at most {maximum}")
        return number

    def _apply(self, ref, value, operator, column_type):
        return _COMPARATORS[operator](ref.number(), value)


# ─── Date / DateTime ─────────────────────────────────────────────


class DateFilterStrategy(FilterStrategy):
    """Chronological comparisons at day (date) or second (datetime) granularity.

    A value stands for the interval [start, start + step); every operator is
    written as a half-open bound on that interval, which keeps `equals` on a
    date column true for any time during that day.
    """

    family = Family.DATE
    MIN_DATE = datetime(1900, 1, 1)
    MAX_DATE = datetime(2100, 12, 31, 23, 59, 59)

    def _validate(self, value, operator, column_type, options):
        moment = parse_datetime(value)
        if moment is None:
            raise StrategyValueError.single("Value is not a valid date")
        if not self.MIN_DATE <= moment <= self.MAX_DATE:
            raise StrategyValueError.single(
                "Date must be between 1900-01-01 and 2100-12-31"
            )
        if column_type is ColumnType.DATE:
            return format_date(moment)
        return format_datetime(moment)

    def _apply(self, ref, value, operator, column_type):
        start = parse_datetime(value)
        if column_type is ColumnType.DATE:
            start = start_of_day(start)
            end = start + timedelta(days=1)
        else:
            start = start.replace(microsecond=0)
            end = start + timedelta(seconds=1)
        expression = ref.temporal()
        low = ref.temporal_operand(start)
        high = ref.temporal_operand(end)
        if operator is Operator.EQUALS:
            return and_(expression >= low, expression < high)
        if operator is Operator.NOT_EQUALS:
            return or_(expression < low, expression >= high)
        if operator is Operator.GREATER_THAN:
            return expression >= high
        if operator is Operator.GREATER_EQUAL:
            return expression >= low
        if operator is Operator.LESS_THAN:
            return expression < low
        return expression < high


# ─── Status / Priority ───────────────────────────────────────────


class EnumeratedFilterStrategy(FilterStrategy):
    family = Family.ENUMERATED
    LIST_LIMITS = {ColumnType.PRIORITY: 10, ColumnType.STATUS: 20}

    def _validate(self, value, operator, column_type, options):
        allowed = option_values(options)
        choices = ", ".join(allowed)

        if operator in LIST_OPERATORS:
            limit = self.LIST_LIMITS[column_type]
            if len(value) > limit:
                raise StrategyValueError.single(
                    f"No more than {limit} values are allowed"
                )
            problems = [
                (f".{i}", f"Invalid value '{item}'. Must be one of: {choices}")
                for i, item in enumerate(value)
                if not isinstance(item, str) or item not in allowed
            ]
            if problems:
                raise StrategyValueError(problems)
            return dedupe(value)

        if not isinstance(value, str) or value not in allowed:
            raise StrategyValueError.single(
                f"Invalid value '{value}'. Must be one of: {choices}"
            )
        return value

    def _apply(self, ref, value, operator, column_type):
        expression = ref.text()
        if operator is Operator.EQUALS:
            return expression == value
        if operator is Operator.NOT_EQUALS:
            return expression != value
        if operator is Operator.IN:
            return expression.in_(value)
        return ~expression.in_(value)


# ─── Assignee ────────────────────────────────────────────────────


class AssigneeFilterStrategy(FilterStrategy):
    """User references. Ids are checked with the injected user_exists."""

    family = Family.ASSIGNEE
    LIST_LIMIT = 50

    def __init__(self, registry, user_exists=None):
        super().__init__(registry)
        self.user_exists = user_exists

    def _validate(self, value, operator, column_type, options):
        if operator in LIST_OPERATORS:
            if len(value) > self.LIST_LIMIT:
                raise StrategyValueError.single(
                    f"No more than {self.LIST_LIMIT} users are allowed"
                )
            problems = [
                (f".{i}", "Value must be a user id")
                for i, item in enumerate(value)
                if not isinstance(item, str) or not item.strip()
            ]
            if problems:
                raise StrategyValueError(problems)
            ids = dedupe(item.strip() for item in value)
            known = self._known(ids)
            problems = [
                (f".{i}", f"User '{item.strip()}' does not exist")
                for i, item in enumerate(value)
                if item.strip() not in known
            ]
            if problems:
                raise StrategyValueError(problems)
            return ids

        if not isinstance(value, str) or not value.strip():
            raise StrategyValueError.single("Value must be a user id")
        user_id = value.strip()
        if user_id not in self._known([user_id]):
            raise StrategyValueError.single(f"User '{user_id}' does not exist")
        return user_id

    def _known(self, ids):
        if self.user_exists is None:
            return set(ids)
        return self.user_exists(ids)

    def _apply(self, ref, value, operator, column_type):
        if ref.multi_valued:
            if operator is Operator.EQUALS:
                return ref.has_member(value)
            if operator is Operator.NOT_EQUALS:
                return ~ref.has_member(value)
            if operator is Operator.IN:
                return or_(*[ref.has_member(item) for item in value])
            return and_(*[~ref.has_member(item) for item in value])

        expression = ref.text()
        if operator is Operator.EQUALS:
            return expression == value
        if operator is Operator.NOT_EQUALS:
            return expression != value
        if operator is Operator.IN:
            return expression.in_(value)
        return ~expression.in_(value)


# ─── Labels ──────────────────────────────────────────────────────


class LabelsFilterStrategy(FilterStrategy):
    """contains: any given label is present. not_contains: none of them is."""

    family = Family.LABELS

    def _validate(self, value, operator, column_type, options):
        items = [value] if isinstance(value, str) else value
        if not isinstance(items, list) or not all(
            isinstance(item, str) for item in items
        ):
            raise StrategyValueError.single("Value must be a label or a list of labels")
        labels = dedupe(item.strip() for item in items if item.strip())
        if not labels:
            raise StrategyValueError.single("Value may not be empty")
        return labels

    def _apply(self, ref, value, operator, column_type):
        if operator is Operator.CONTAINS:
            return or_(*[ref.has_member(label) for label in value])
        return and_(*[~ref.has_member(label) for label in value])


# ─── Checkbox ────────────────────────────────────────────────────


class CheckboxFilterStrategy(FilterStrategy):
    family = Family.CHECKBOX

    def _validate(self, value, operator, column_type, options):
        checked = parse_bool(value)
        if checked is None:
            raise StrategyValueError.single("Value must be true or false")
        return checked

    def _apply(self, ref, value, operator, column_type):
        if operator is Operator.EQUALS:
            return ref.boolean() == value
        return ref.boolean() != value


_STRATEGY_CLASSES = {
    Family.TEXT: TextFilterStrategy,
    Family.NUMERIC: NumericFilterStrategy,
    Family.DATE: DateFilterStrategy,
    Family.ENUMERATED: EnumeratedFilterStrategy,
    Family.ASSIGNEE: AssigneeFilterStrategy,
    Family.LABELS: LabelsFilterStrategy,
    Family.CHECKBOX: CheckboxFilterStrategy,
}

if set(_STRATEGY_CLASSES) != set(Family):
    raise RuntimeError("Every column family needs a filter strategy")


class FilterStrategies:
    """One strategy instance per family, looked up by column type."""

    def __init__(self, registry, user_exists=None):
        self.registry = registry
        self._by_family = {}
        for family, strategy_class in _STRATEGY_CLASSES.items():
            if strategy_class is AssigneeFilterStrategy:
                self._by_family[family] = strategy_class(registry, user_exists)
            else:
                self._by_family[family] = strategy_class(registry)

    def for_type(self, column_type):
        return self._by_family[self.registry.family(column_type)]
