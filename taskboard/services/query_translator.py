"""QueryTranslator — validated filter trees to SQLAlchemy.

Three translations, all against a BoardSchema:

    translate()             FilterTree -> one predicate, ANDed onto the
                            board/tenant scope
    translate_sort()        sort_by/sort_order -> StorageOrdering
    translate_pagination()  per_page/page/cursor -> OffsetPager | CursorPager

Leaves naming a native task attribute become direct predicates; leaves
naming a board column become EXISTS subqueries over task_field_values.
A leaf whose column can't be resolved is dropped from its group with a
warning (the read path keeps working when a saved filter references a
deleted column).

Dynamic sort: tasks without a value for the sort column are ordered by an
explicit missing-value flag ("last" by default, configurable), not by an
empty-string stand-in. Task.id breaks ties so the order is total, which
cursor pagination relies on.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import and_, case, or_

from taskboard.models.task import Task
from taskboard.services.column_resolver import NATIVE_ATTRIBUTES, NativeColumn
from taskboard.services.column_types import Logic
from taskboard.services.filter_tree import FilterLeaf

logger = logging.getLogger(__name__)

DEFAULT_SORT_COLUMN = "position"
SORT_ORDERS = ("asc", "desc")


@dataclass
class Translation:
    predicate: object
    warnings: list = field(default_factory=list)


# ─── Sorting ─────────────────────────────────────────────────────


class StorageOrdering:
    """ORDER BY (missing flag, sort value, task id) plus any join it needs."""

    def __init__(self, sort_by, sort_order, expression, missing_last=True,
                 join_target=None, join_condition=None, warning=None):
        self.sort_by = sort_by
        self.sort_order = sort_order
        self.expression = expression
        self.missing_last = missing_last
        self.join_target = join_target
        self.join_condition = join_condition
        self.warning = warning
        if missing_last:
            self.missing_flag = case((expression.is_(None), 1), else_=0)
        else:
            self.missing_flag = case((expression.is_(None), 0), else_=1)

    @property
    def descending(self):
        return self.sort_order == "desc"

    @property
    def missing_marker(self):
        """Flag value carried by rows with no sort value."""
        return 1 if self.missing_last else 0

    def apply(self, query):
        if self.join_target is not None:
            query = query.outerjoin(self.join_target, self.join_condition)
        value_order = self.expression.desc() if self.descending else self.expression.asc()
        return query.order_by(self.missing_flag.asc(), value_order, Task.id.asc())

    def after(self, key):
        """Predicate selecting rows strictly after the row identified by key."""
        flag, value, task_id = key
        later_group = self.missing_flag > flag
        same_group = self.missing_flag == flag
        if value is None:
            return or_(later_group, and_(same_group, Task.id > task_id))
        if self.descending:
            value_after = self.expression < value
        else:
            value_after = self.expression > value
        return or_(
            later_group,
            and_(same_group, value_after),
            and_(same_group, self.expression == value, Task.id > task_id),
        )

    def describe(self):
        return {"by": self.sort_by, "order": self.sort_order}


# ─── Pagination ──────────────────────────────────────────────────


@dataclass
class Page:
    items: list
    per_page: int
    total: int
    has_more: bool
    page: int = None
    next_cursor: str = None

    def describe(self):
        return {
            "per_page": self.per_page,
            "page": self.page,
            "total": self.total,
            "has_more": self.has_more,
            "next_cursor": self.next_cursor,
        }


def _keyed(query, ordering):
    """query with the ordering key added as (sort_missing, sort_value) columns."""
    return query.add_columns(
        ordering.missing_flag.label("sort_missing"),
        ordering.expression.label("sort_value"),
    )


def _cursor_after(rows, ordering):
    task, flag, value = rows[-1]
    return encode_cursor(ordering, flag, value, task.id)


class OffsetPager:
    """page/per_page pagination.

    A page that has more after it also carries next_cursor, so a client can
    switch to keyset pagination from any page.
    """

    def __init__(self, per_page, page=1):
        self.per_page = per_page
        self.page = page

    def paginate(self, query, ordering):
        total = query.order_by(None).count()
        rows = (
            ordering.apply(_keyed(query, ordering))
            .limit(self.per_page)
            .offset((self.page - 1) * self.per_page)
            .all()
        )
        has_more = self.page * self.per_page < total
        return Page(
            items=[row[0] for row in rows],
            per_page=self.per_page,
            page=self.page,
            total=total,
            has_more=has_more,
            next_cursor=_cursor_after(rows, ordering) if has_more and rows else None,
        )


class CursorPager:
    """Keyset pagination over (missing flag, sort value, task id).

    Cursors are opaque URL-safe strings; they are tied to the sort they
    were issued for.
    """

    def __init__(self, per_page, cursor=None):
        self.per_page = per_page
        self.cursor = cursor

    def paginate(self, query, ordering):
        total = query.order_by(None).count()
        keyed = _keyed(query, ordering)
        if self.cursor:
            keyed = keyed.filter(ordering.after(decode_cursor(self.cursor, ordering)))
        rows = ordering.apply(keyed).limit(self.per_page + 1).all()

        has_more = len(rows) > self.per_page
        rows = rows[:self.per_page]
        return Page(
            items=[row[0] for row in rows],
            per_page=self.per_page,
            total=total,
            has_more=has_more,
            next_cursor=_cursor_after(rows, ordering) if has_more and rows else None,
        )


def encode_cursor(ordering, flag, value, task_id):
    if isinstance(value, datetime):
        value, kind = value.isoformat(), "datetime"
    else:
        kind = "plain"
    payload = {
        "s": [ordering.sort_by, ordering.sort_order],
        "m": int(flag),
        "v": value,
        "t": kind,
        "id": task_id,
    }
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode()


def decode_cursor(cursor, ordering):
    """Return the (flag, value, task id) key a cursor encodes."""
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode()))
        sort = payload["s"]
        flag = int(payload["m"])
        value = payload["v"]
        task_id = str(payload["id"])
        if payload.get("t") == "datetime" and value is not None:
            value = datetime.fromisoformat(value)
    except (ValueError, KeyError, TypeError, binascii.Error) as e:
        raise ValueError("Invalid cursor") from e
    if list(sort) != [ordering.sort_by, ordering.sort_order]:
        raise ValueError("Cursor does not match the requested sort")
    if flag == ordering.missing_marker:
        value = None
    return flag, value, task_id


# ─── Translator ──────────────────────────────────────────────────


class QueryTranslator:
    """Translate filter trees, sort and pagination specs for one board.

    Args:
        registry: ColumnTypeRegistry.
        strategies: FilterStrategies producing leaf predicates.
        resolver: ColumnResolver mapping column names to storage.
        missing_values: "last" or "first" — where tasks without a sort
            value go when sorting by a board column.
        default_per_page / max_per_page: pagination bounds.
    """

    def __init__(self, registry, strategies, resolver, missing_values="last",
                 default_per_page=15, max_per_page=100):
        if missing_values not in ("first", "last"):
            raise ValueError(
                f"missing_values must be 'first' or 'last', got '{missing_values}'"
            )
        self.registry = registry
        self.strategies = strategies
        self.resolver = resolver
        self.missing_last = missing_values == "last"
        self.default_per_page = default_per_page
        self.max_per_page = max_per_page

    # --- Filters ---

    def scope(self, schema, include_archived=False):
        clauses = [
            Task.board_id == schema.board_id,
            Task.workspace_id == schema.workspace_id,
        ]
        if not include_archived:
            clauses.append(Task.archived_at.is_(None))
        return and_(*clauses)

    def translate(self, tree, schema, include_archived=False):
        warnings = []
        predicate = self.scope(schema, include_archived=include_archived)
        if tree is not None:
            tree_predicate = self._node(tree, schema, warnings)
            if tree_predicate is not None:
                predicate = and_(predicate, tree_predicate)
        return Translation(predicate=predicate, warnings=warnings)

    def _node(self, node, schema, warnings):
        if isinstance(node, FilterLeaf):
            return self._leaf(node, schema, warnings)
        parts = [
            part
            for part in (self._node(child, schema, warnings) for child in node.children)
            if part is not None
        ]
        if not parts:
            return None
        if node.logic is Logic.OR:
            return or_(*parts)
        return and_(*parts)

    def _leaf(self, leaf, schema, warnings):
        resolved = self.resolver.resolve(leaf.column, schema)
        if resolved is None:
            logger.warning(
                f"Filter column '{leaf.column}' not found on board "
                f"{schema.board_id}; condition ignored"
            )
            warnings.append({
                "column": leaf.column,
                "message": f"Unknown column '{leaf.column}' was ignored",
            })
            return None
        if self.registry.family(resolved.column_type) is not self.registry.family(
            leaf.column_type
        ):
            logger.warning(
                f"Filter column '{leaf.column}' on board {schema.board_id} is "
                f"{resolved.column_type.value}, not {leaf.column_type.value}; "
                "condition ignored"
            )
            warnings.append({
                "column": leaf.column,
                "message": (
                    f"Column '{leaf.column}' is no longer a "
                    f"{leaf.column_type.value} column and was ignored"
                ),
            })
            return None
        strategy = self.strategies.for_type(leaf.column_type)
        return resolved.constrain(strategy, leaf)

    # --- Sorting ---

    def translate_sort(self, sort_by, sort_order, schema):
        sort_by = sort_by or DEFAULT_SORT_COLUMN
        sort_order = (sort_order or "asc").lower()
        if sort_order not in SORT_ORDERS:
            sort_order = "asc"

        warning = None
        resolved = self.resolver.resolve(sort_by, schema)
        if resolved is None:
            warning = f"Unknown sort column '{sort_by}'; sorted by position"
        elif not self.registry.is_sortable(resolved.column_type):
            warning = (
                f"Column '{sort_by}' ({resolved.column_type.value}) can't be "
                "sorted; sorted by position"
            )
        if warning is not None:
            logger.warning(f"{warning} (board {schema.board_id})")
            resolved = NativeColumn(
                NATIVE_ATTRIBUTES[DEFAULT_SORT_COLUMN], self.registry
            )
            sort_by, sort_order = DEFAULT_SORT_COLUMN, "asc"

        expression, join_target, join_condition = resolved.sort_target()
        return StorageOrdering(
            sort_by=sort_by,
            sort_order=sort_order,
            expression=expression,
            missing_last=self.missing_last,
            join_target=join_target,
            join_condition=join_condition,
            warning=warning,
        )

    # --- Pagination ---

    def clamp_per_page(self, per_page):
        if per_page is None:
            return self.default_per_page
        return max(1, min(int(per_page), self.max_per_page))

    def translate_pagination(self, per_page=None, page=None, cursor=None):
        per_page = self.clamp_per_page(per_page)
        if cursor:
            return CursorPager(per_page, cursor)
        return OffsetPager(per_page, max(1, int(page or 1)))
