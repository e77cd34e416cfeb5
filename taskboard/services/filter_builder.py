"""FilterBuilder — turns raw filter JSON into a validated FilterTree.

Checks run in two passes per node. Structural checks come first (object
shape, required leaf fields, known column type, logic token, non-empty
groups). Only a leaf that passes them gets semantic checks: operator
legality for its column type, value presence, and the family strategy's
value validation, which also canonicalizes the operand.

Issues are collected across the whole tree and raised together, each with
a path such as `filters.2.filters.0.value`, so a client can highlight the
exact offending leaf.
"""

import logging

from taskboard.services.coercion import parse_number
from taskboard.services.column_types import (
    EMPTINESS_OPERATORS,
    LIST_OPERATORS,
    ColumnType,
    Family,
    Logic,
    Operator,
    sorted_operators,
)
from taskboard.services.filter_strategies import (
    StrategyValueError,
    UnsupportedOperatorError,
)
from taskboard.services.filter_tree import (
    OPERATOR,
    VALUE,
    FilterGroup,
    FilterIssue,
    FilterLeaf,
    FilterValidationError,
)

logger = logging.getLogger(__name__)

MAX_COLUMN_LENGTH = 255
REQUIRED_LEAF_FIELDS = ("column", "column_type", "operator")


class FilterBuilder:
    """Parse and validate filter definitions.

    Args:
        registry: ColumnTypeRegistry.
        strategies: FilterStrategies used for value validation.
        resolver: Optional ColumnResolver. With it (and a board schema
            passed to build()), leaves pick up their column's options and
            are checked against the column's real type.
    """

    def __init__(self, registry, strategies, resolver=None):
        self.registry = registry
        self.strategies = strategies
        self.resolver = resolver

    def build(self, raw, schema=None, stale_ok=False):
        """Return the root FilterGroup, or raise FilterValidationError.

        raw may be a list of nodes, a {"logic", "filters"} document, or a
        single node. The root is always a group.

        With stale_ok, a leaf whose board column has since moved to another
        type family is kept as written and left for the translator to drop
        with a warning, the same way an unknown column is. Stored filters
        are rebuilt this way so a retyped column doesn't break reads.
        """
        issues = []
        root = self._root(raw, schema, issues, stale_ok)
        if issues:
            logger.info(f"Rejected filter definition with {len(issues)} issue(s)")
            raise FilterValidationError(issues)
        return root

    # ─── Nodes ───────────────────────────────────────────────────

    def _root(self, raw, schema, issues, stale_ok):
        if isinstance(raw, list):
            return self._children(raw, Logic.AND, "filters", schema, issues, stale_ok)
        if isinstance(raw, dict) and "filters" in raw and "type" not in raw:
            logic = self._logic(raw.get("logic"), "logic", issues)
            return self._children(raw["filters"], logic, "filters", schema, issues, stale_ok)
        if isinstance(raw, dict):
            node = self._node(raw, "filters.0", schema, issues, stale_ok)
            if node is None:
                return None
            if isinstance(node, FilterGroup):
                return node
            return FilterGroup(children=(node,), logic=Logic.AND)
        issues.append(FilterIssue("filters", "Filters must be a list of filter objects"))
        return None

    def _children(self, children, logic, path, schema, issues, stale_ok):
        if not isinstance(children, list):
            issues.append(FilterIssue(path, "Filter group must contain a list of filters"))
            return None
        if not children:
            issues.append(FilterIssue(path, "Filter group cannot be empty"))
            return None
        built = [
            self._node(child, f"{path}.{i}", schema, issues, stale_ok)
            for i, child in enumerate(children)
        ]
        if logic is None or any(node is None for node in built):
            return None
        return FilterGroup(children=tuple(built), logic=logic)

    def _node(self, raw, path, schema, issues, stale_ok):
        if not isinstance(raw, dict):
            issues.append(FilterIssue(path, "Filter must be an object"))
            return None

        node_type = raw.get("type")
        if node_type is not None and node_type not in ("filter", "group"):
            issues.append(
                FilterIssue(f"{path}.type", "Filter type must be 'filter' or 'group'")
            )
            return None
        if node_type == "group" or "filters" in raw:
            logic = self._logic(raw.get("logic"), f"{path}.logic", issues)
            return self._children(
                raw.get("filters"), logic, f"{path}.filters", schema, issues, stale_ok
            )
        return self._leaf(raw, path, schema, issues, stale_ok)

    def _logic(self, value, path, issues):
        if value is None:
            return Logic.AND
        if isinstance(value, str) and value.upper() in ("AND", "OR"):
            return Logic(value.upper())
        issues.append(FilterIssue(path, "Logic must be AND or OR"))
        return None

    # ─── Leaves ──────────────────────────────────────────────────

    def _leaf(self, raw, path, schema, issues, stale_ok):
        found = len(issues)

        for name in REQUIRED_LEAF_FIELDS:
            if raw.get(name) is None or raw.get(name) == "":
                issues.append(
                    FilterIssue(f"{path}.{name}", f"The {name} field is required.")
                )

        column = raw.get("column")
        if column is not None and column != "" and (
            not isinstance(column, str) or len(column) > MAX_COLUMN_LENGTH
        ):
            issues.append(FilterIssue(
                f"{path}.column",
                f"The column must be a string of at most {MAX_COLUMN_LENGTH} characters.",
            ))

        column_type = None
        if raw.get("column_type") not in (None, ""):
            try:
                column_type = ColumnType(raw["column_type"])
            except ValueError:
                issues.append(FilterIssue(
                    f"{path}.column_type",
                    f"Invalid column type: {raw['column_type']}",
                ))

        logic = self._logic(raw.get("logic"), f"{path}.logic", issues)

        if len(issues) > found:
            return None

        operator = self._operator(raw["operator"], column_type, path, issues)
        if operator is None:
            return None

        resolved = None
        if self.resolver is not None:
            resolved = self.resolver.resolve(column, schema)
        if resolved is not None and (
            self.registry.family(resolved.column_type)
            is not self.registry.family(column_type)
        ):
            if not stale_ok:
                issues.append(FilterIssue(
                    f"{path}.column_type",
                    f"Column '{column}' holds {resolved.column_type.value} values "
                    f"and cannot be filtered as {column_type.value}",
                ))
                return None
            resolved = None
        elif resolved is not None:
            # Compare in the column's own type: a datetime operand against a
            # date column has to become a date.
            column_type = resolved.column_type

        value = self._check_value_presence(
            raw.get("value"), operator, column_type, path, issues
        )
        if len(issues) > found:
            return None

        if resolved is not None:
            options = resolved.options
        else:
            options = self.registry.default_options(column_type)

        strategy = self.strategies.for_type(column_type)
        try:
            value = strategy.validate_value(value, operator, column_type, options)
        except UnsupportedOperatorError as e:
            issues.append(FilterIssue(f"{path}.operator", str(e), OPERATOR))
            return None
        except StrategyValueError as e:
            for suffix, message in e.problems:
                issues.append(FilterIssue(f"{path}.value{suffix}", message, VALUE))
            return None

        return FilterLeaf(
            column=column,
            column_type=column_type,
            operator=operator,
            value=value,
            logic=logic,
        )

    def _operator(self, raw_operator, column_type, path, issues):
        allowed = self.registry.operators_for(column_type)
        try:
            operator = Operator(raw_operator)
        except ValueError:
            operator = None
        if operator is None or operator not in allowed:
            issues.append(FilterIssue(
                f"{path}.operator",
                f"Operator '{raw_operator}' is not valid for column type "
                f"'{column_type.value}'. Available operators: "
                + ", ".join(op.value for op in sorted_operators(allowed)),
                OPERATOR,
            ))
            return None
        return operator

    def _check_value_presence(self, value, operator, column_type, path, issues):
        if operator in EMPTINESS_OPERATORS:
            return None

        if value is None:
            issues.append(FilterIssue(
                f"{path}.value",
                f"Value is required for operator '{operator.value}'",
                VALUE,
            ))
            return None

        if operator in LIST_OPERATORS:
            if not isinstance(value, list):
                issues.append(FilterIssue(
                    f"{path}.value",
                    f"Operator '{operator.value}' requires an array value",
                    VALUE,
                ))
            elif not value:
                issues.append(FilterIssue(
                    f"{path}.value",
                    f"Operator '{operator.value}' requires at least one value",
                    VALUE,
                ))
            return value

        if (
            self.registry.family(column_type) is Family.NUMERIC
            and parse_number(value) is None
        ):
            issues.append(FilterIssue(
                f"{path}.value",
                f"Value must be numeric for operator '{operator.value}'",
                VALUE,
            ))
        return value
