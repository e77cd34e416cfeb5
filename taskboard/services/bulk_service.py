"""Bulk task operations.

Targets come from an explicit id list or from a filter definition run
through the filter engine. Each task is processed on its own inside a
SAVEPOINT: a failure rolls back that task only, is recorded in the result,
and the batch carries on. There is no all-or-nothing mode.

Operations:
    set_status / set_priority / assign / set_due_date
    move            to another board in the same workspace
    archive / unarchive / delete
    add_labels / remove_labels   on a labels board column
    set_field       any board column, validated like a normal write

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from taskboard.extensions import db
from taskboard.models.board import Board, BoardColumn
from taskboard.models.task import Task, TaskFieldValue
from taskboard.models.workspace import WorkspaceMember
from taskboard.services import field_value_service
from taskboard.services.coercion import parse_datetime
from taskboard.services.column_types import ColumnType

logger = logging.getLogger(__name__)


# ─── Preparation (runs once, before any task is touched) ─────────


def _prepare_status(engine, schema, params):
    status = params.get("status")
    if status not in Task.STATUSES:
        raise ValueError(
            f"Invalid status '{status}'. Must be one of: {', '.join(Task.STATUSES)}"
        )
    return {"status": status}


def _prepare_priority(engine, schema, params):
    priority = params.get("priority")
    if priority not in Task.PRIORITIES:
        raise ValueError(
            f"Invalid priority '{priority}'. Must be one of: {', '.join(Task.PRIORITIES)}"
        )
    return {"priority": priority}


def _prepare_assign(engine, schema, params):
    assignee_id = params.get("assignee_id")
    if assignee_id is not None:
        membership = WorkspaceMember.query.filter_by(
            user_id=assignee_id, workspace_id=schema.workspace_id
        ).first()
        if membership is None:
            raise ValueError(
                f"User {assignee_id} is not a member of this workspace."
            )
    return {"assignee_id": assignee_id}


def _prepare_due_date(engine, schema, params):
    raw = params.get("due_date")
    if raw is None:
        return {"due_date": None}
    due_date = parse_datetime(raw)
    if due_date is None:
        raise ValueError(f"Invalid due date '{raw}'.")
    return {"due_date": due_date}


def _prepare_move(engine, schema, params):
    target = db.session.get(Board, params.get("target_board_id") or "")
    if target is None or target.workspace_id != schema.workspace_id:
        raise ValueError("Target board not found.")
    if target.id == schema.board_id:
        raise ValueError("Tasks are already on this board.")
    columns = BoardColumn.query.filter_by(board_id=target.id).all()
    return {
        "board": target,
        "columns": {(c.name, c.type): c for c in columns},
    }


def _prepare_labels(engine, schema, params):
    column = schema.find_column(params.get("column") or "")
    if column is None or column.column_type is not ColumnType.LABELS:
        raise ValueError(f"'{params.get('column')}' is not a labels column.")
    labels = field_value_service.validate_field_value(
        engine, column, params.get("labels"), path="labels"
    )
    if not labels:
        raise ValueError("At least one label is required.")
    return {"column": column, "labels": labels}


def _prepare_field(engine, schema, params):
    column = schema.find_column(params.get("column") or "")
    if column is None:
        raise ValueError(f"Unknown column '{params.get('column')}'.")
    return {"column": column, "value": params.get("value")}


def _prepare_nothing(engine, schema, params):
    return {}


# ─── Per-task application ────────────────────────────────────────


def _apply_status(engine, task, prepared):
    task.status = prepared["status"]
    if task.status == "done":
        if task.completed_at is None:
            task.completed_at = datetime.now(timezone.utc)
    else:
        task.completed_at = None


def _apply_priority(engine, task, prepared):
    task.priority = prepared["priority"]


def _apply_assign(engine, task, prepared):
    task.assignee_id = prepared["assignee_id"]


def _apply_due_date(engine, task, prepared):
    task.due_date = prepared["due_date"]


def _apply_move(engine, task, prepared):
    target = prepared["board"]
    max_pos = (
        db.session.query(db.func.max(Task.position))
        .filter(Task.board_id == target.id)
        .scalar()
    )
    # Values follow the task when the target board has a column with the
    # same name and type; anything else is dropped.
    for row in task.field_values.all():
        source = db.session.get(BoardColumn, row.board_column_id)
        match = prepared["columns"].get((source.name, source.type))
        if match is None:
            db.session.delete(row)
        else:
            row.board_column_id = match.id
    task.board_id = target.id
    task.position = (max_pos if max_pos is not None else -1) + 1


def _apply_archive(engine, task, prepared):
    if task.archived_at is None:
        task.archived_at = datetime.now(timezone.utc)


def _apply_unarchive(engine, task, prepared):
    task.archived_at = None


def _apply_delete(engine, task, prepared):
    TaskFieldValue.query.filter_by(task_id=task.id).delete(
        synchronize_session=False
    )
    db.session.delete(task)


def _current_labels(task, column):
    row = TaskFieldValue.query.filter_by(
        task_id=task.id, board_column_id=column.id
    ).first()
    return list(row.canonical_value or []) if row is not None else []


def _apply_add_labels(engine, task, prepared):
    column = prepared["column"]
    labels = _current_labels(task, column) + prepared["labels"]
    field_value_service.set_field_value(engine, task, column, labels)


def _apply_remove_labels(engine, task, prepared):
    column = prepared["column"]
    removed = set(prepared["labels"])
    labels = [l for l in _current_labels(task, column) if l not in removed]
    field_value_service.set_field_value(engine, task, column, labels)


def _apply_field(engine, task, prepared):
    field_value_service.set_field_value(
        engine, task, prepared["column"], prepared["value"]
    )


OPERATIONS = {
    "set_status": (_prepare_status, _apply_status),
    "set_priority": (_prepare_priority, _apply_priority),
    "assign": (_prepare_assign, _apply_assign),
    "set_due_date": (_prepare_due_date, _apply_due_date),
    "move": (_prepare_move, _apply_move),
    "archive": (_prepare_nothing, _apply_archive),
    "unarchive": (_prepare_nothing, _apply_unarchive),
    "delete": (_prepare_nothing, _apply_delete),
    "add_labels": (_prepare_labels, _apply_add_labels),
    "remove_labels": (_prepare_labels, _apply_remove_labels),
    "set_field": (_prepare_field, _apply_field),
}

# Archived tasks are only targeted by operations that make sense for them.
INCLUDES_ARCHIVED = ("unarchive", "delete")


# ─── Target selection ────────────────────────────────────────────


def select_targets(engine, schema, task_ids=None, filters=None,
                   include_archived=False, max_tasks=500):
    """Return (tasks, missing_ids) for a bulk run on one board.

    Raises:
        ValueError: If neither or both selectors are given, or the
            selection is larger than max_tasks.
        FilterValidationError: If the filter definition is invalid.
    """
    if (task_ids is None) == (filters is None):
        raise ValueError("Provide either task_ids or filters.")

    scope = engine.translator.scope(schema, include_archived=include_archived)

    if task_ids is not None:
        if not isinstance(task_ids, list) or not all(
            isinstance(task_id, str) for task_id in task_ids
        ):
            raise ValueError("task_ids must be a list of task ids.")
        task_ids = list(dict.fromkeys(task_ids))
        if len(task_ids) > max_tasks:
            raise ValueError(f"Bulk operations are limited to {max_tasks} tasks.")
        found = {
            task.id: task
            for task in Task.query.filter(scope, Task.id.in_(task_ids)).all()
        }
        tasks = [found[task_id] for task_id in task_ids if task_id in found]
        missing = [task_id for task_id in task_ids if task_id not in found]
        return tasks, missing

    tree = engine.builder.build(filters, schema)
    translation = engine.translator.translate(
        tree, schema, include_archived=include_archived
    )
    query = Task.query.filter(translation.predicate)
    if query.count() > max_tasks:
        raise ValueError(f"Bulk operations are limited to {max_tasks} tasks.")
    return query.order_by(Task.position, Task.id).all(), []


# ─── Runner ──────────────────────────────────────────────────────


def run_bulk_operation(engine, schema, operation, params=None, task_ids=None,
                       filters=None, actor_id=None, max_tasks=500):
    """Apply one operation to every selected task, independently.

    Returns:
        {"operation", "successful_count", "failed_count",
         "successful_tasks": [task ids], "failed_tasks": [{"task_id", "error"}]}

    Raises:
        ValueError: For an unknown operation, bad parameters or a bad
            selection. These are checked before any task is changed.
    """
    if operation not in OPERATIONS:
        raise ValueError(
            f"Invalid operation '{operation}'. Must be one of: {', '.join(OPERATIONS)}"
        )
    prepare, apply = OPERATIONS[operation]
    prepared = prepare(engine, schema, params or {})

    tasks, missing = select_targets(
        engine,
        schema,
        task_ids=task_ids,
        filters=filters,
        include_archived=operation in INCLUDES_ARCHIVED,
        max_tasks=max_tasks,
    )

    result = {
        "operation": operation,
        "successful_count": 0,
        "failed_count": 0,
        "successful_tasks": [],
        "failed_tasks": [],
    }

    for task_id in missing:
        result["failed_tasks"].append(
            {"task_id": task_id, "error": "Task not found on this board."}
        )

    for task in tasks:
        task_id = task.id
        try:
            with db.session.begin_nested():
                apply(engine, task, prepared)
                db.session.flush()
        except (ValueError, SQLAlchemyError) as e:
            logger.error(f"Bulk {operation} failed for task {task_id}: {e}")
            result["failed_tasks"].append({"task_id": task_id, "error": str(e)})
            continue
        logger.info(f"Bulk {operation} applied to task {task_id} by {actor_id}")
        result["successful_tasks"].append(task_id)

    result["successful_count"] = len(result["successful_tasks"])
    result["failed_count"] = len(result["failed_tasks"])
    return result
