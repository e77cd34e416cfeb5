"""Column resolution for filters and sorting.

A filter or sort names a column. It can be one of the fixed task attributes
(title, status, due_date, ...) which live on the tasks table, or a board
column whose per-task values live in task_field_values. ColumnResolver
turns the name into a ResolvedColumn that knows how to constrain and order
tasks for its own storage, so callers never check which kind they have.

Two storage views back the strategies:

    NativeColumnRef   a column on tasks
    FieldValueRef     the JSON "value" of a task_field_values row
"""

import json
from dataclasses import dataclass

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import aliased

from taskboard.extensions import db
from taskboard.models.board import BoardColumn
from taskboard.models.task import Task, TaskFieldValue
from taskboard.services.coercion import format_date, format_datetime
from taskboard.services.column_types import (
    ColumnType,
    Family,
    Operator,
    sorted_operators,
)


# ─── Board schema ────────────────────────────────────────────────


@dataclass(frozen=True)
class BoardSchema:
    """The columns a board defines, in display order."""

    board_id: str
    workspace_id: str
    columns: tuple = ()

    def find_column(self, name):
        """Match by id, then exact name, then case-insensitive name."""
        for column in self.columns:
            if column.id == name:
                return column
        for column in self.columns:
            if column.name == name:
                return column
        folded = name.casefold()
        for column in self.columns:
            if column.name.casefold() == folded:
                return column
        return None


def load_board_schema(board):
    columns = (
        BoardColumn.query
        .filter_by(board_id=board.id)
        .order_by(BoardColumn.position)
        .all()
    )
    return BoardSchema(
        board_id=board.id,
        workspace_id=board.workspace_id,
        columns=tuple(columns),
    )


# ─── Storage views ───────────────────────────────────────────────


class NativeColumnRef:
    """A column on the tasks table."""

    multi_valued = False

    def __init__(self, column, is_string=False):
        self.column = column
        self.is_string = is_string

    def text(self):
        return self.column

    def number(self):
        return self.column

    def boolean(self):
        return self.column

    def temporal(self):
        return self.column

    def temporal_operand(self, moment):
        return moment

    def has_member(self, item):
        raise TypeError(f"{self.column} does not hold multiple values")

    def is_empty(self):
        if self.is_string:
            return or_(self.column.is_(None), self.column == "")
        return self.column.is_(None)


class FieldValueRef:
    """The canonical value inside a task_field_values row.

    Values are stored as {"value": <canonical>}, so every accessor goes
    through the "value" key with the matching typed JSON accessor.
    """

    def __init__(self, row, board_column, options=None):
        self.row = row
        self.board_column = board_column
        self.multi_valued = bool((options or {}).get("multiple")) or (
            board_column.column_type is ColumnType.LABELS
        )

    @property
    def _element(self):
        return self.row.value["value"]

    def text(self):
        return self._element.as_string()

    def number(self):
        return self._element.as_float()

    def boolean(self):
        return self._element.as_boolean()

    def temporal(self):
        return self._element.as_string()

    def temporal_operand(self, moment):
        if self.board_column.column_type is ColumnType.DATE:
            return format_date(moment)
        return format_datetime(moment)

    def has_member(self, item):
        # Arrays are stored as JSON text; a quoted token can only match a
        # whole element.
        return self.text().contains(json.dumps(item), autoescape=True)

    def is_empty(self):
        text = self.text()
        return or_(text.is_(None), text == "", text == "[]")


# ─── Native attributes ───────────────────────────────────────────


@dataclass(frozen=True)
class NativeAttribute:
    name: str
    label: str
    column_type: ColumnType
    is_string: bool = False
    options: tuple = ()

    @property
    def column(self):
        return getattr(Task, self.name)


def _enum_entries(values):
    return tuple(
        {"value": value, "label": value.replace("_", " ").title()}
        for value in values
    )


NATIVE_ATTRIBUTES = {
    attr.name: attr
    for attr in (
        NativeAttribute("id", "ID", ColumnType.TEXT, is_string=True),
        NativeAttribute("title", "Title", ColumnType.TEXT, is_string=True),
        NativeAttribute(
            "description", "Description", ColumnType.LONG_TEXT, is_string=True
        ),
        NativeAttribute(
            "status", "Status", ColumnType.STATUS, is_string=True,
            options=_enum_entries(Task.STATUSES),
        ),
        NativeAttribute(
            "priority", "Priority", ColumnType.PRIORITY, is_string=True,
            options=_enum_entries(Task.PRIORITIES),
        ),
        NativeAttribute(
            "assignee_id", "Assignee", ColumnType.ASSIGNEE, is_string=True
        ),
        NativeAttribute(
            "creator_id", "Creator", ColumnType.ASSIGNEE, is_string=True
        ),
        NativeAttribute("board_id", "Board", ColumnType.TEXT, is_string=True),
        NativeAttribute(
            "workspace_id", "Workspace", ColumnType.TEXT, is_string=True
        ),
        NativeAttribute("position", "Position", ColumnType.NUMBER),
        NativeAttribute("due_date", "Due Date", ColumnType.DATE),
        NativeAttribute("start_date", "Start Date", ColumnType.DATE),
        NativeAttribute("completed_at", "Completed At", ColumnType.DATETIME),
        NativeAttribute("archived_at", "Archived At", ColumnType.DATETIME),
        NativeAttribute("created_at", "Created At", ColumnType.DATETIME),
        NativeAttribute("updated_at", "Updated At", ColumnType.DATETIME),
    )
}

# Offered in the filter column picker ahead of the board's own columns.
FILTERABLE_NATIVE = (
    "title",
    "description",
    "status",
    "priority",
    "assignee_id",
    "due_date",
    "created_at",
    "updated_at",
)


# ─── Resolved columns ────────────────────────────────────────────


class NativeColumn:
    is_dynamic = False

    def __init__(self, attribute, registry):
        self.attribute = attribute
        self.name = attribute.name
        self.column_type = attribute.column_type
        self.options = registry.effective_options(attribute.column_type)
        if attribute.options:
            self.options["options"] = [dict(o) for o in attribute.options]
        self.ref = NativeColumnRef(attribute.column, is_string=attribute.is_string)

    def constrain(self, strategy, leaf):
        return strategy.apply(self.ref, leaf.value, leaf.operator, leaf.column_type)

    def sort_target(self):
        """(expression, outer-join target or None, join condition or None)."""
        return self.attribute.column, None, None


class DynamicColumn:
    is_dynamic = True

    def __init__(self, board_column, registry):
        self.board_column = board_column
        self.name = board_column.name
        self.column_type = board_column.column_type
        self.options = board_column.effective_options(registry)
        self.registry = registry

    def _row(self):
        row = aliased(TaskFieldValue)
        condition = and_(
            row.task_id == Task.id,
            row.board_column_id == self.board_column.id,
        )
        return row, condition

    def constrain(self, strategy, leaf):
        """Existential predicate over the task's value row for this column.

        is_empty also matches tasks that have no row at all.
        """
        row, condition = self._row()
        ref = FieldValueRef(row, self.board_column, self.options)
        if leaf.operator is Operator.IS_EMPTY:
            filled = strategy.apply(
                ref, None, Operator.IS_NOT_EMPTY, leaf.column_type
            )
            return ~select(row.id).where(condition, filled).exists()
        predicate = strategy.apply(ref, leaf.value, leaf.operator, leaf.column_type)
        return select(row.id).where(condition, predicate).exists()

    def sort_target(self):
        row, condition = self._row()
        ref = FieldValueRef(row, self.board_column, self.options)
        family = self.registry.family(self.column_type)
        if family is Family.NUMERIC:
            expression = ref.number()
        elif family is Family.CHECKBOX:
            expression = ref.boolean()
        else:
            expression = ref.text()
        return expression, row, condition


class ColumnResolver:
    """Map a column name to its storage for a given board schema."""

    def __init__(self, registry):
        self.registry = registry

    def resolve(self, name, schema=None):
        """Return a NativeColumn, a DynamicColumn, or None if unknown."""
        if not isinstance(name, str):
            return None
        attribute = NATIVE_ATTRIBUTES.get(name)
        if attribute is not None:
            return NativeColumn(attribute, self.registry)
        if schema is None:
            return None
        board_column = schema.find_column(name)
        if board_column is None:
            return None
        try:
            ColumnType(board_column.type)
        except ValueError:
            return None
        return DynamicColumn(board_column, self.registry)

    def available_columns(self, schema):
        """Filterable columns for a board: native first, then its own."""
        columns = []
        for name in FILTERABLE_NATIVE:
            attribute = NATIVE_ATTRIBUTES[name]
            resolved = NativeColumn(attribute, self.registry)
            columns.append(self._describe(
                column_id=name,
                name=name,
                label=attribute.label,
                column_type=attribute.column_type,
                options=resolved.options,
                is_native=True,
            ))
        for board_column in schema.columns:
            try:
                column_type = ColumnType(board_column.type)
            except ValueError:
                continue
            columns.append(self._describe(
                column_id=board_column.id,
                name=board_column.name,
                label=board_column.name,
                column_type=column_type,
                options=board_column.effective_options(self.registry),
                is_native=False,
            ))
        return columns

    def _describe(self, column_id, name, label, column_type, options, is_native):
        return {
            "id": column_id,
            "name": name,
            "label": label,
            "type": column_type.value,
            "type_label": self.registry.label(column_type),
            "operators": [
                op.value
                for op in sorted_operators(self.registry.operators_for(column_type))
            ],
            "options": options,
            "sortable": self.registry.is_sortable(column_type),
            "is_native": is_native,
        }


def user_exists(user_ids):
    """Return the subset of user_ids that belong to existing users."""
    from taskboard.models.user import User

    ids = [user_id for user_id in user_ids if isinstance(user_id, str)]
    if not ids:
        return set()
    rows = db.session.query(User.id).filter(User.id.in_(ids)).all()
    return {row[0] for row in rows}
