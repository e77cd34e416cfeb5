"""Filter tree nodes and their JSON wire format.

A filter is either a FilterLeaf (one condition) or a FilterGroup (an AND/OR
combination of nodes). Nodes are frozen; once FilterBuilder hands a tree
back, nothing changes it.

Wire format:

    {"type": "filter", "column": "status", "column_type": "status",
     "operator": "equals", "value": "in_progress", "logic": "AND"}

    {"type": "group", "logic": "OR", "filters": [<node>, ...]}

A leaf's own `logic` is kept for round-tripping; children are always
combined with the logic of the group that holds them.
"""

import copy
from dataclasses import dataclass, field

from taskboard.services.column_types import ColumnType, Logic, Operator


@dataclass(frozen=True)
class FilterLeaf:
    column: str
    column_type: ColumnType
    operator: Operator
    value: object = None
    logic: Logic = Logic.AND


@dataclass(frozen=True)
class FilterGroup:
    children: tuple = field(default_factory=tuple)
    logic: Logic = Logic.AND


# ─── Errors ──────────────────────────────────────────────────────

STRUCTURAL = "structural"
OPERATOR = "operator"
VALUE = "value"


@dataclass(frozen=True)
class FilterIssue:
    """One problem found in a filter definition."""

    path: str
    message: str
    kind: str = STRUCTURAL

    def to_dict(self):
        return {"path": self.path, "message": self.message, "kind": self.kind}


class FilterValidationError(ValueError):
    """Raised with every issue found in a filter definition."""

    def __init__(self, issues):
        self.issues = list(issues)
        super().__init__(
            "Invalid filter definition: "
            + "; ".join(f"{i.path}: {i.message}" for i in self.issues)
        )

    @property
    def errors(self):
        return [issue.to_dict() for issue in self.issues]


# ─── Serialization ───────────────────────────────────────────────


def to_json(node):
    """Serialize a node (and its children) to the wire format."""
    if isinstance(node, FilterGroup):
        return {
            "type": "group",
            "logic": node.logic.value,
            "filters": [to_json(child) for child in node.children],
        }
    return {
        "type": "filter",
        "column": node.column,
        "column_type": node.column_type.value,
        "operator": node.operator.value,
        "value": copy.deepcopy(node.value),
        "logic": node.logic.value,
    }


def from_json(doc, path="filters"):
    """Rebuild nodes from the wire format.

    Only the structure is checked here; use FilterBuilder to validate
    operators and values against column types. A bare list is read as an
    AND group.
    """
    if isinstance(doc, list):
        return FilterGroup(
            children=tuple(
                from_json(child, f"{path}.{i}") for i, child in enumerate(doc)
            ),
            logic=Logic.AND,
        )
    if not isinstance(doc, dict):
        raise FilterValidationError([FilterIssue(path, "Filter must be an object")])

    try:
        logic = Logic(str(doc.get("logic") or "AND").upper())
        if doc.get("type") == "group" or "filters" in doc:
            children = doc.get("filters")
            if not isinstance(children, list):
                raise FilterValidationError(
                    [FilterIssue(f"{path}.filters", "Filter group must be a list")]
                )
            return FilterGroup(
                children=tuple(
                    from_json(child, f"{path}.filters.{i}")
                    for i, child in enumerate(children)
                ),
                logic=logic,
            )
        return FilterLeaf(
            column=doc["column"],
            column_type=ColumnType(doc["column_type"]),
            operator=Operator(doc["operator"]),
            value=copy.deepcopy(doc.get("value")),
            logic=logic,
        )
    except KeyError as e:
        raise FilterValidationError(
            [FilterIssue(f"{path}.{e.args[0]}", f"The {e.args[0]} field is required.")]
        ) from e
    except ValueError as e:
        if isinstance(e, FilterValidationError):
            raise
        raise FilterValidationError([FilterIssue(path, str(e))]) from e


# ─── Flattening helpers ──────────────────────────────────────────


def extract_leaves(node):
    """All leaves under node, depth-first in written order."""
    if isinstance(node, FilterLeaf):
        return [node]
    leaves = []
    for child in node.children:
        leaves.extend(extract_leaves(child))
    return leaves


def extract_leaves_by_column(node, column):
    return [leaf for leaf in extract_leaves(node) if leaf.column == column]


def extract_leaves_by_type(node, *column_types):
    wanted = {ColumnType(t) for t in column_types}
    return [leaf for leaf in extract_leaves(node) if leaf.column_type in wanted]


def count_leaves(node):
    return len(extract_leaves(node))


def _format_value(value):
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def summarize(node, top_level=True):
    """Human-readable one-liner, e.g. `status equals done AND (a OR b)`."""
    if isinstance(node, FilterLeaf):
        return f"{node.column} {node.operator.value} {_format_value(node.value)}".strip()
    parts = [summarize(child, top_level=False) for child in node.children]
    joined = f" {node.logic.value} ".join(parts)
    if top_level:
        return joined
    return f"({joined})"


def to_document(root):
    """Top-level wire document for a root group: {"logic", "filters"}."""
    if isinstance(root, FilterLeaf):
        root = FilterGroup(children=(root,), logic=Logic.AND)
    return {
        "logic": root.logic.value,
        "filters": [to_json(child) for child in root.children],
    }
