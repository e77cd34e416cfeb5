"""Field value service — reads and writes dynamic column values.

Every write goes through FieldValueValidator, so task_field_values only
ever holds canonical values (wrapped as {"value": ...}).

Functions flush but do NOT commit — the caller commits.
"""

from taskboard.extensions import db
from taskboard.models.board import BoardColumn
from taskboard.models.task import TaskFieldValue
from taskboard.services.field_validator import FieldValidationError


class FieldValuesError(ValueError):
    """One or more values in a batch write were rejected."""

    def __init__(self, errors):
        self.errors = errors
        super().__init__(
            "Invalid field values: "
            + "; ".join(f"{key}: {', '.join(msgs)}" for key, msgs in errors.items())
        )


def get_field_values(task):
    """Values for every column on the task's board, in column order."""
    columns = (
        BoardColumn.query
        .filter_by(board_id=task.board_id)
        .order_by(BoardColumn.position)
        .all()
    )
    rows = {
        row.board_column_id: row
        for row in TaskFieldValue.query.filter_by(task_id=task.id).all()
    }
    result = []
    for column in columns:
        row = rows.get(column.id)
        result.append({
            "column_id": column.id,
            "column": column.name,
            "type": column.type,
            "value": row.canonical_value if row is not None else None,
        })
    return result


def values_by_task(task_ids):
    """{task_id: {column_id: canonical value}} for a page of tasks."""
    if not task_ids:
        return {}
    result = {task_id: {} for task_id in task_ids}
    rows = TaskFieldValue.query.filter(TaskFieldValue.task_id.in_(task_ids)).all()
    for row in rows:
        result[row.task_id][row.board_column_id] = row.canonical_value
    return result


def validate_field_value(engine, column, raw, path=None):
    return engine.validator.validate(
        column.column_type,
        raw,
        column.effective_options(engine.registry),
        path=path or column.name,
    )


def set_field_value(engine, task, column, raw):
    """Validate raw for column and upsert the task's value row.

    Raises:
        ValueError: If the column belongs to another board.
        FieldValidationError: If the value is rejected.
    """
    if column.board_id != task.board_id:
        raise ValueError(f"Column '{column.name}' does not belong to this board.")

    value = validate_field_value(engine, column, raw)
    return _store(task, column, value)


def _store(task, column, value):
    row = TaskFieldValue.query.filter_by(
        task_id=task.id, board_column_id=column.id
    ).first()
    if row is None:
        row = TaskFieldValue(
            task_id=task.id,
            board_column_id=column.id,
            value={"value": value},
        )
        db.session.add(row)
    else:
        row.value = {"value": value}
    db.session.flush()
    return row


def set_field_values(engine, task, schema, values):
    """Validate a {column id or name: raw value} mapping, then write it.

    Nothing is written unless every value passes.

    Raises:
        FieldValuesError: Listing every rejected or unknown column.
    """
    if not isinstance(values, dict) or not values:
        raise ValueError("values must be a non-empty object.")

    errors = {}
    accepted = []
    for key, raw in values.items():
        column = schema.find_column(key)
        if column is None:
            errors[key] = ["Unknown column."]
            continue
        try:
            accepted.append((column, validate_field_value(engine, column, raw)))
        except FieldValidationError as e:
            errors[key] = e.messages
    if errors:
        raise FieldValuesError(errors)

    return [_store(task, column, value) for column, value in accepted]


def clear_field_value(engine, task, column):
    """Delete the task's value for column. Required columns can't be cleared."""
    options = column.effective_options(engine.registry)
    if options.get("required"):
        raise ValueError(f"'{column.name}' is required and can't be cleared.")
    row = TaskFieldValue.query.filter_by(
        task_id=task.id, board_column_id=column.id
    ).first()
    if row is not None:
        db.session.delete(row)
        db.session.flush()
