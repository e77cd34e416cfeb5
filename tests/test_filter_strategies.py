"""Tests for the per-family filter strategies.

Covers:
- Strategy lookup by column type
- Unsupported operators raise with the allowed list
- Value validation and canonical operands per family
- Enumerated and assignee list limits with per-item problems
- Date range bounds
"""

import pytest

from taskboard.services.column_types import ColumnType, ColumnTypeRegistry, Operator
from taskboard.services.filter_strategies import (
    AssigneeFilterStrategy,
    CheckboxFilterStrategy,
    DateFilterStrategy,
    FilterStrategies,
    LabelsFilterStrategy,
    NumericFilterStrategy,
    StrategyValueError,
    TextFilterStrategy,
    UnsupportedOperatorError,
)

registry = ColumnTypeRegistry()
strategies = FilterStrategies(registry, user_exists=lambda ids: {i for i in ids if i.startswith("u")})


def _validate(column_type, operator, value, options=None):
    column_type = ColumnType(column_type)
    return strategies.for_type(column_type).validate_value(
        value,
        Operator(operator),
        column_type,
        registry.effective_options(column_type, options),
    )


class TestLookup:

    def test_strategy_per_family(self):
        assert isinstance(strategies.for_type(ColumnType.PHONE), TextFilterStrategy)
        assert isinstance(strategies.for_type(ColumnType.PERCENTAGE), NumericFilterStrategy)
        assert isinstance(strategies.for_type(ColumnType.DATETIME), DateFilterStrategy)
        assert isinstance(strategies.for_type(ColumnType.ASSIGNEE), AssigneeFilterStrategy)
        assert isinstance(strategies.for_type(ColumnType.LABELS), LabelsFilterStrategy)
        assert isinstance(strategies.for_type(ColumnType.CHECKBOX), CheckboxFilterStrategy)

    def test_unsupported_operator(self):
        with pytest.raises(UnsupportedOperatorError) as exc:
            _validate("number", "contains", "1")
        assert str(exc.value) == (
            "Operator 'contains' is not valid for column type 'number'. "
            "Available operators: equals, not_equals, greater_than, less_than, "
            "greater_equal, less_equal, is_empty, is_not_empty"
        )


class TestText:

    def test_equals_is_trimmed(self):
        assert _validate("text", "equals", "  hello  ") == "hello"

    def test_equals_length_limit(self):
        with pytest.raises(StrategyValueError):
            _validate("text", "equals", "x" * 256)

    def test_contains_keeps_value(self):
        assert _validate("email", "contains", "@example") == "@example"

    def test_non_string(self):
        with pytest.raises(StrategyValueError):
            _validate("text", "contains", 12)


class TestNumeric:

    def test_parses_numbers(self):
        assert _validate("number", "greater_than", "12.5") == 12.5

    def test_respects_column_bounds(self):
        with pytest.raises(StrategyValueError) as exc:
            _validate("percentage", "less_than", 150)
        assert exc.value.problems == [("", "Value must be at most 100")]

    def test_rejects_booleans(self):
        with pytest.raises(StrategyValueError):
            _validate("number", "equals", True)


class TestDates:

    def test_date_canonical(self):
        assert _validate("date", "equals", "March 1 2026") == "2026-03-01"

    def test_datetime_canonical(self):
        assert _validate("datetime", "greater_than", "2026-03-01T10:15:30.5") == (
            "2026-03-01 10:15:30"
        )

    def test_out_of_range(self):
        with pytest.raises(StrategyValueError) as exc:
            _validate("date", "equals", "1850-01-01")
        assert "between 1900-01-01 and 2100-12-31" in str(exc.value)

    def test_garbage(self):
        with pytest.raises(StrategyValueError):
            _validate("date", "equals", "gibberish")


class TestEnumerated:

    def test_in_deduplicates(self):
        assert _validate("priority", "in", ["high", "urgent", "high"]) == ["high", "urgent"]

    def test_per_item_problems(self):
        with pytest.raises(StrategyValueError) as exc:
            _validate("priority", "in", ["high", "critical", "none"])
        assert [suffix for suffix, _ in exc.value.problems] == [".1", ".2"]

    def test_list_limit(self):
        with pytest.raises(StrategyValueError) as exc:
            _validate("priority", "in", ["low"] * 11)
        assert "No more than 10 values" in str(exc.value)

    def test_custom_options(self):
        options = {"options": [{"value": "open"}, {"value": "closed"}]}
        assert _validate("status", "equals", "open", options) == "open"
        with pytest.raises(StrategyValueError):
            _validate("status", "equals", "todo", options)


class TestAssignee:

    def test_known_users(self):
        assert _validate("assignee", "in", [" u1", "u2"]) == ["u1", "u2"]

    def test_unknown_user(self):
        with pytest.raises(StrategyValueError) as exc:
            _validate("assignee", "in", ["u1", "ghost"])
        assert exc.value.problems == [(".1", "User 'ghost' does not exist")]

    def test_list_limit(self):
        with pytest.raises(StrategyValueError):
            _validate("assignee", "in", [f"u{i}" for i in range(51)])


class TestLabelsAndCheckbox:

    def test_single_label(self):
        assert _validate("labels", "contains", "bug") == ["bug"]

    def test_label_list(self):
        assert _validate("labels", "not_contains", ["bug", " bug", "ux"]) == ["bug", "ux"]

    def test_empty_labels(self):
        with pytest.raises(StrategyValueError):
            _validate("labels", "contains", ["  "])

    def test_checkbox(self):
        assert _validate("checkbox", "equals", "false") is False
        with pytest.raises(StrategyValueError):
            _validate("checkbox", "equals", "maybe")

    def test_emptiness_returns_none(self):
        assert _validate("checkbox", "is_empty", "ignored") is None
