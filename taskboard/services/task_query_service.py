"""Task query service — filtered, sorted, paginated task listings.

Ties the filter engine to a board:

    parse_task_query()   request parameters -> TaskQuery (400-class errors)
    query_tasks()        TaskQuery -> TaskQueryResult

A query takes its filter from exactly one of: a `filters` array, a
`filters_json` string, or a `saved_filter_id`. Using a saved filter bumps
its usage counter; `save_filter=true` stores the current definition.

Functions flush but do NOT commit — the caller commits.
"""

import json
import logging
from dataclasses import dataclass, field

from taskboard.models.task import Task
from taskboard.services import saved_filter_service
from taskboard.services.coercion import parse_bool
from taskboard.services.column_resolver import load_board_schema
from taskboard.services.column_types import ColumnType
from taskboard.services.filter_tree import (
    count_leaves,
    extract_leaves_by_column,
    extract_leaves_by_type,
    summarize,
)

logger = logging.getLogger(__name__)

ALLOWED_INCLUDES = (
    "labels",
    "custom_values",
    "assignee",
    "creator",
    "board",
    "workspace",
    "comments",
)
MAX_SORT_BY_LENGTH = 255
MAX_FILTER_NAME_LENGTH = 255
CONFLICT_COLUMNS = ("status", "priority")


class QueryParamsError(ValueError):
    """Request parameters failed validation. errors maps field -> messages."""

    def __init__(self, errors):
        self.errors = errors
        super().__init__(
            "Invalid query parameters: "
            + "; ".join(f"{key}: {', '.join(msgs)}" for key, msgs in errors.items())
        )


@dataclass
class TaskQuery:
    filters: object = None
    saved_filter_id: str = None
    per_page: int = None
    page: int = 1
    cursor: str = None
    sort_by: str = None
    sort_order: str = "asc"
    include: list = field(default_factory=list)
    include_archived: bool = False
    save_filter: bool = False
    filter_name: str = None
    is_public: bool = False


@dataclass
class TaskQueryResult:
    page: object
    ordering: object
    tree: object = None
    warnings: list = field(default_factory=list)
    statistics: dict = field(default_factory=dict)
    diagnostics: dict = field(default_factory=dict)
    applied_filter: object = None
    saved_filter: object = None

    @property
    def filter_summary(self):
        return summarize(self.tree) if self.tree is not None else ""


# ─── Parameter parsing ───────────────────────────────────────────


def _int_param(params, name, errors, minimum=1, maximum=None):
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    try:
        if isinstance(raw, bool):
            raise ValueError(raw)
        value = int(raw)
    except (TypeError, ValueError):
        errors[name] = [f"The {name} must be an integer."]
        return None
    if value < minimum or (maximum is not None and value > maximum):
        if maximum is None:
            errors[name] = [f"The {name} must be at least {minimum}."]
        else:
            errors[name] = [f"The {name} must be between {minimum} and {maximum}."]
        return None
    return value


def _bool_param(params, name, errors):
    raw = params.get(name)
    if raw is None or raw == "":
        return False
    value = parse_bool(raw)
    if value is None:
        errors[name] = [f"The {name} field must be true or false."]
        return False
    return value


def _include_param(params, errors):
    raw = params.get("include")
    if raw is None:
        raw = params.get("include[]")
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [part.strip() for part in raw.split(",") if part.strip()]
    if not isinstance(raw, list):
        errors["include"] = ["The include field must be a list."]
        return []
    unknown = [item for item in raw if item not in ALLOWED_INCLUDES]
    if unknown:
        errors["include"] = [
            f"Unknown include '{item}'. Must be one of: {', '.join(ALLOWED_INCLUDES)}"
            for item in unknown
        ]
        return []
    return list(dict.fromkeys(raw))


def parse_task_query(params, filters_json_max_length=10000, max_per_page=100):
    """Validate request parameters into a TaskQuery.

    Args:
        params: Plain dict merged from the query string and JSON body.

    Raises:
        QueryParamsError: With every problem found, keyed by parameter.
    """
    errors = {}

    filters = params.get("filters")
    filters_json = params.get("filters_json")
    saved_filter_id = params.get("saved_filter_id") or None

    if filters is not None and filters_json is not None:
        errors["filters"] = ["Cannot provide both filters array and filters JSON"]
    elif saved_filter_id is not None and (
        filters is not None or filters_json is not None
    ):
        errors["saved_filter_id"] = [
            "Cannot combine a saved filter with filters or filters JSON"
        ]
    elif filters_json is not None:
        if not isinstance(filters_json, str):
            errors["filters_json"] = ["The filters json must be a string."]
        elif len(filters_json) > filters_json_max_length:
            errors["filters_json"] = [
                "The filters json may not be greater than "
                f"{filters_json_max_length} characters."
            ]
        else:
            try:
                filters = json.loads(filters_json)
            except json.JSONDecodeError:
                errors["filters_json"] = ["The filters json must be a valid JSON string."]
    elif isinstance(filters, str):
        # Query strings can only carry the array as text.
        try:
            filters = json.loads(filters)
        except json.JSONDecodeError:
            errors["filters"] = ["The filters field must be an array."]

    if saved_filter_id is not None and not isinstance(saved_filter_id, str):
        errors["saved_filter_id"] = ["The saved filter id must be a string."]

    per_page = _int_param(params, "per_page", errors, maximum=max_per_page)
    page = _int_param(params, "page", errors) or 1

    cursor = params.get("cursor") or None
    if cursor is not None and not isinstance(cursor, str):
        errors["cursor"] = ["The cursor must be a string."]

    sort_by = params.get("sort_by") or None
    if sort_by is not None and (
        not isinstance(sort_by, str) or len(sort_by) > MAX_SORT_BY_LENGTH
    ):
        errors["sort_by"] = [
            f"The sort by may not be greater than {MAX_SORT_BY_LENGTH} characters."
        ]

    sort_order = params.get("sort_order") or "asc"
    if not isinstance(sort_order, str) or sort_order.lower() not in ("asc", "desc"):
        errors["sort_order"] = ["The selected sort order is invalid."]
    else:
        sort_order = sort_order.lower()

    include = _include_param(params, errors)
    include_archived = _bool_param(params, "include_archived", errors)
    save_filter = _bool_param(params, "save_filter", errors)
    is_public = _bool_param(params, "is_public", errors)

    filter_name = params.get("filter_name") or None
    if filter_name is not None and (
        not isinstance(filter_name, str) or len(filter_name) > MAX_FILTER_NAME_LENGTH
    ):
        errors["filter_name"] = [
            f"The filter name may not be greater than {MAX_FILTER_NAME_LENGTH} characters."
        ]
    elif save_filter and filter_name is None:
        errors["filter_name"] = ["The filter name field is required when save filter is true."]

    if errors:
        raise QueryParamsError(errors)

    return TaskQuery(
        filters=filters,
        saved_filter_id=saved_filter_id,
        per_page=per_page,
        page=page,
        cursor=cursor,
        sort_by=sort_by,
        sort_order=sort_order,
        include=include,
        include_archived=include_archived,
        save_filter=save_filter,
        filter_name=filter_name,
        is_public=is_public,
    )


# ─── Diagnostics ─────────────────────────────────────────────────


def validate_filter_combinations(tree, text_leaf_threshold=3):
    """Flag filter trees that are probably not what the user meant."""
    warnings = []
    conflicts = []
    if tree is not None:
        for column in CONFLICT_COLUMNS:
            if len(extract_leaves_by_column(tree, column)) > 1:
                conflicts.append(
                    f"Multiple {column} filters detected - they may conflict "
                    "with each other"
                )
        text_leaves = extract_leaves_by_type(
            tree, ColumnType.TEXT, ColumnType.LONG_TEXT
        )
        if len(text_leaves) > text_leaf_threshold:
            warnings.append("Multiple text filters may impact performance")
    return {
        "warnings": warnings,
        "conflicts": conflicts,
        "is_valid": not conflicts,
    }


def filter_statistics(engine, schema, tree, filtered_count, include_archived=False):
    total = Task.query.filter(
        engine.translator.scope(schema, include_archived=include_archived)
    ).count()
    return {
        "total_tasks": total,
        "filtered_tasks": filtered_count,
        "filter_efficiency": round(filtered_count / total * 100, 2) if total else 0,
        "filters_applied": count_leaves(tree) if tree is not None else 0,
    }


def available_filter_columns(engine, board):
    return engine.resolver.available_columns(load_board_schema(board))


# ─── Query ───────────────────────────────────────────────────────


def _has_filters(raw):
    if raw is None or raw == []:
        return False
    if isinstance(raw, dict) and raw.get("filters") == [] and "type" not in raw:
        return False
    return True


def query_tasks(engine, board, query, user_id, text_leaf_threshold=3):
    """Run a TaskQuery against one board.

    Raises:
        FilterValidationError: If the filter definition is invalid.
        ValueError: For an unknown saved filter, a bad cursor, or a
            filter that can't be saved.
    """
    schema = load_board_schema(board)

    raw = query.filters
    applied_filter = None
    if query.saved_filter_id is not None:
        applied_filter = saved_filter_service.get_accessible(
            query.saved_filter_id, board.id, user_id
        )
        raw = applied_filter.filter_definition

    tree = None
    if _has_filters(raw):
        tree = engine.builder.build(raw, schema, stale_ok=applied_filter is not None)

    translation = engine.translator.translate(
        tree, schema, include_archived=query.include_archived
    )
    ordering = engine.translator.translate_sort(query.sort_by, query.sort_order, schema)
    pager = engine.translator.translate_pagination(
        per_page=query.per_page, page=query.page, cursor=query.cursor
    )
    page = pager.paginate(Task.query.filter(translation.predicate), ordering)

    warnings = list(translation.warnings)
    if ordering.warning is not None:
        warnings.append({"column": query.sort_by, "message": ordering.warning})

    if applied_filter is not None:
        saved_filter_service.record_usage(applied_filter)

    saved = None
    if query.save_filter:
        if tree is None:
            raise ValueError("Cannot save an empty filter.")
        saved = saved_filter_service.save_filter(
            engine,
            schema,
            user_id,
            query.filter_name,
            raw,
            is_public=query.is_public,
        )

    logger.info(
        f"Board {board.id}: {page.total} task(s) matched "
        f"{count_leaves(tree) if tree is not None else 0} filter(s)"
    )

    return TaskQueryResult(
        page=page,
        ordering=ordering,
        tree=tree,
        warnings=warnings,
        statistics=filter_statistics(
            engine, schema, tree, page.total, include_archived=query.include_archived
        ),
        diagnostics=validate_filter_combinations(tree, text_leaf_threshold),
        applied_filter=applied_filter,
        saved_filter=saved,
    )
