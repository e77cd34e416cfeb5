"""Tests for filter trees and FilterBuilder.

Covers:
- Wire round trip: from_json(to_json(tree)) == tree (hypothesis)
- Accepted root shapes (list, logic document, single node)
- Structural errors with paths (missing fields, bad type, bad logic)
- Empty groups rejected at any depth
- Operator legality for every (type, operator) pair
- Value presence and value validation issues
- Column type checked against the board's real column
- Flattening helpers and summaries
"""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from taskboard.services.column_resolver import load_board_schema
from taskboard.services.column_types import (
    ColumnType,
    ColumnTypeRegistry,
    Logic,
    Operator,
)
from taskboard.services.filter_tree import (
    FilterGroup,
    FilterLeaf,
    FilterValidationError,
    count_leaves,
    extract_leaves_by_column,
    extract_leaves_by_type,
    from_json,
    summarize,
    to_document,
    to_json,
)

registry = ColumnTypeRegistry()


def _leaf(column="status", column_type="status", operator="equals", value="todo", **extra):
    node = {
        "type": "filter",
        "column": column,
        "column_type": column_type,
        "operator": operator,
        "value": value,
    }
    node.update(extra)
    return node


def _issues(engine, raw, schema=None):
    with pytest.raises(FilterValidationError) as exc:
        engine.builder.build(raw, schema)
    return exc.value.errors


# ─── Round trip ────────────────────────────────────────────

_scalar_values = st.one_of(
    st.none(),
    st.booleans(),
    st.integers(-1000, 1000),
    st.text(max_size=12),
    st.lists(st.text(max_size=8), max_size=4),
)

_leaves = st.builds(
    FilterLeaf,
    column=st.text(min_size=1, max_size=20),
    column_type=st.sampled_from(list(ColumnType)),
    operator=st.sampled_from(list(Operator)),
    value=_scalar_values,
    logic=st.sampled_from(list(Logic)),
)

_trees = st.recursive(
    _leaves,
    lambda children: st.builds(
        FilterGroup,
        children=st.lists(children, min_size=1, max_size=4).map(tuple),
        logic=st.sampled_from(list(Logic)),
    ),
    max_leaves=12,
)


class TestWireFormat:

    @settings(
        max_examples=80,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(tree=_trees)
    def test_round_trip(self, tree):
        assert from_json(to_json(tree)) == tree

    def test_list_reads_as_and_group(self):
        tree = from_json([_leaf(), _leaf(value="done")])
        assert tree.logic is Logic.AND
        assert len(tree.children) == 2

    def test_from_json_structural_error(self):
        with pytest.raises(FilterValidationError) as exc:
            from_json({"type": "filter", "column": "status"})
        assert exc.value.errors[0]["path"] == "filters.column_type"

    def test_to_document(self):
        tree = FilterGroup(children=(FilterLeaf("title", ColumnType.TEXT, Operator.CONTAINS, "a"),))
        doc = to_document(tree)
        assert doc["logic"] == "AND"
        assert doc["filters"][0]["operator"] == "contains"


class TestBuilderShapes:

    def test_list_root(self, engine):
        tree = engine.builder.build([_leaf()])
        assert isinstance(tree, FilterGroup)
        assert tree.children[0].value == "todo"

    def test_document_root(self, engine):
        tree = engine.builder.build({"logic": "or", "filters": [_leaf(), _leaf(value="done")]})
        assert tree.logic is Logic.OR

    def test_single_leaf_root(self, engine):
        tree = engine.builder.build(_leaf())
        assert tree.logic is Logic.AND
        assert len(tree.children) == 1

    def test_single_group_root(self, engine):
        tree = engine.builder.build({"type": "group", "logic": "OR", "filters": [_leaf()]})
        assert tree.logic is Logic.OR

    def test_non_collection_root(self, engine):
        errors = _issues(engine, "status=todo")
        assert errors[0]["path"] == "filters"


class TestStructuralErrors:

    def test_missing_fields(self, engine):
        errors = _issues(engine, [{"type": "filter", "column": "status"}])
        assert {e["path"] for e in errors} == {
            "filters.0.column_type",
            "filters.0.operator",
        }
        assert all(e["kind"] == "structural" for e in errors)

    def test_invalid_column_type(self, engine):
        errors = _issues(engine, [_leaf(column_type="spreadsheet")])
        assert errors == [{
            "path": "filters.0.column_type",
            "message": "Invalid column type: spreadsheet",
            "kind": "structural",
        }]

    def test_invalid_logic(self, engine):
        errors = _issues(engine, [_leaf(logic="XOR")])
        assert errors[0]["path"] == "filters.0.logic"
        assert errors[0]["message"] == "Logic must be AND or OR"

    def test_invalid_node_type(self, engine):
        errors = _issues(engine, [_leaf(type="rule")])
        assert errors[0]["path"] == "filters.0.type"

    def test_empty_root_group(self, engine):
        errors = _issues(engine, [])
        assert errors[0]["message"] == "Filter group cannot be empty"

    def test_empty_nested_group(self, engine):
        raw = [
            _leaf(),
            {"type": "group", "logic": "OR", "filters": [
                _leaf(value="done"),
                {"type": "group", "logic": "AND", "filters": []},
            ]},
        ]
        errors = _issues(engine, raw)
        assert errors == [{
            "path": "filters.1.filters.1.filters",
            "message": "Filter group cannot be empty",
            "kind": "structural",
        }]

    def test_issues_are_collected_across_the_tree(self, engine):
        raw = [
            _leaf(value="bogus"),
            _leaf(column="priority", column_type="priority", operator="contains", value="x"),
        ]
        errors = _issues(engine, raw)
        assert [e["path"] for e in errors] == ["filters.0.value", "filters.1.operator"]


class TestOperatorLegality:

    def test_every_illegal_pair_is_an_operator_issue(self, engine):
        for column_type in ColumnType:
            allowed = registry.operators_for(column_type)
            for operator in Operator:
                if operator in allowed:
                    continue
                errors = _issues(engine, [_leaf(
                    column="anything",
                    column_type=column_type.value,
                    operator=operator.value,
                    value="x",
                )])
                assert errors[0]["kind"] == "operator"
                assert errors[0]["path"] == "filters.0.operator"
                assert "Available operators:" in errors[0]["message"]

    def test_unknown_operator(self, engine):
        errors = _issues(engine, [_leaf(operator="matches")])
        assert errors[0]["message"].startswith(
            "Operator 'matches' is not valid for column type 'status'"
        )


class TestValues:

    def test_bogus_status_is_a_value_issue(self, engine):
        errors = _issues(engine, [_leaf(value="bogus")])
        assert errors[0]["path"] == "filters.0.value"
        assert errors[0]["kind"] == "value"

    def test_value_required(self, engine):
        errors = _issues(engine, [_leaf(value=None)])
        assert errors[0]["message"] == "Value is required for operator 'equals'"

    def test_emptiness_operator_needs_no_value(self, engine):
        tree = engine.builder.build([_leaf(operator="is_empty", value=None)])
        assert tree.children[0].value is None

    def test_list_operator_needs_array(self, engine):
        errors = _issues(engine, [_leaf(operator="in", value="todo")])
        assert errors[0]["message"] == "Operator 'in' requires an array value"
        errors = _issues(engine, [_leaf(operator="in", value=[])])
        assert errors[0]["message"] == "Operator 'in' requires at least one value"

    def test_list_items_get_their_own_paths(self, engine):
        errors = _issues(engine, [_leaf(operator="in", value=["todo", "nope"])])
        assert errors[0]["path"] == "filters.0.value.1"

    def test_numeric_value(self, engine, seed_data):
        schema = load_board_schema(seed_data["board"])
        errors = _issues(engine, [_leaf(
            column="Budget", column_type="currency", operator="greater_than", value="lots",
        )], schema)
        assert errors[0]["path"] == "filters.0.value"

    def test_values_are_canonicalized(self, engine, seed_data):
        schema = load_board_schema(seed_data["board"])
        tree = engine.builder.build([
            _leaf(column="Budget", column_type="currency", operator="greater_than", value="500"),
            _leaf(column="Launch date", column_type="date", operator="equals", value="2026-03-01T10:00"),
            _leaf(column="Reviewed", column_type="checkbox", operator="equals", value="yes"),
        ], schema)
        assert [leaf.value for leaf in tree.children] == [500.0, "2026-03-01", True]

    def test_leaf_takes_the_column_type(self, engine, seed_data):
        schema = load_board_schema(seed_data["board"])
        tree = engine.builder.build([_leaf(
            column="Launch date", column_type="datetime", operator="equals",
            value="2026-03-01 10:00:00",
        )], schema)
        leaf = tree.children[0]
        assert leaf.column_type is ColumnType.DATE
        assert leaf.value == "2026-03-01"

    def test_retyped_column_tolerated_when_rebuilding(self, engine, seed_data):
        seed_data["columns"]["budget"].type = "text"
        schema = load_board_schema(seed_data["board"])
        raw = [_leaf(
            column="Budget", column_type="currency", operator="greater_than", value="500",
        )]
        tree = engine.builder.build(raw, schema, stale_ok=True)
        assert tree.children[0].column_type is ColumnType.CURRENCY
        assert tree.children[0].value == 500.0

    def test_column_type_must_match_board_column(self, engine, seed_data):
        schema = load_board_schema(seed_data["board"])
        errors = _issues(engine, [_leaf(
            column="Budget", column_type="text", operator="contains", value="4",
        )], schema)
        assert errors[0]["path"] == "filters.0.column_type"
        assert "holds currency values" in errors[0]["message"]

    def test_unknown_assignee(self, engine, seed_data):
        errors = _issues(engine, [_leaf(
            column="assignee_id", column_type="assignee", operator="equals", value="ghost",
        )])
        assert errors[0]["message"] == "User 'ghost' does not exist"


class TestHelpers:

    def _tree(self):
        return FilterGroup(
            logic=Logic.AND,
            children=(
                FilterLeaf("status", ColumnType.STATUS, Operator.EQUALS, "todo"),
                FilterGroup(
                    logic=Logic.OR,
                    children=(
                        FilterLeaf("title", ColumnType.TEXT, Operator.CONTAINS, "api"),
                        FilterLeaf("Budget", ColumnType.CURRENCY, Operator.GREATER_THAN, 500.0),
                    ),
                ),
            ),
        )

    def test_counts_and_extraction(self):
        tree = self._tree()
        assert count_leaves(tree) == 3
        assert len(extract_leaves_by_column(tree, "status")) == 1
        assert len(extract_leaves_by_type(tree, "text", "long_text")) == 1

    def test_summary(self):
        assert summarize(self._tree()) == (
            "status equals todo AND (title contains api OR Budget greater_than 500)"
        )
