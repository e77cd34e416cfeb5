"""Tasks blueprint — /api/*

JSON API over the filter engine. Every route needs a Bearer API token;
board and task routes also need membership of the owning workspace.

Route Map:
  GET    /api/column-types                                — Type catalogue
  GET    /api/column-types/<type>                         — One type
  GET    /api/boards/<board_id>/tasks/filter              — Filtered tasks
  POST   /api/boards/<board_id>/tasks/filter              — Filtered tasks (JSON body)
  GET    /api/boards/<board_id>/filter-columns            — Filterable columns
  POST   /api/boards/<board_id>/filters/validate          — Validate a definition
  GET    /api/boards/<board_id>/saved-filters             — List saved filters
  POST   /api/boards/<board_id>/saved-filters             — Save a filter
  POST   /api/boards/<board_id>/saved-filters/<id>/default — Make default
  DELETE /api/boards/<board_id>/saved-filters/<id>        — Delete
  POST   /api/boards/<board_id>/tasks/bulk                — Bulk operation
  GET    /api/tasks/<task_id>/field-values                — Read values
  PUT    /api/tasks/<task_id>/field-values                — Set values
  DELETE /api/tasks/<task_id>/field-values/<column_id>    — Clear a value
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request
from flask_login import current_user, login_required

from taskboard.decorators import board_member_required
from taskboard.extensions import db, limiter
from taskboard.services import (
    bulk_service,
    field_value_service,
    saved_filter_service,
    task_query_service,
)
from taskboard.services.column_resolver import load_board_schema
from taskboard.services.column_types import ColumnType
from taskboard.services.engine import get_engine
from taskboard.services.field_validator import FieldValidationError
from taskboard.services.filter_tree import (
    FilterValidationError,
    count_leaves,
    summarize,
    to_document,
)

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks", __name__, url_prefix="/api")


def _iso(value):
    return value.isoformat() if value else None


def _task_dict(task, include=(), values=None):
    data = {
        "id": task.id,
        "board_id": task.board_id,
        "workspace_id": task.workspace_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "assignee_id": task.assignee_id,
        "creator_id": task.creator_id,
        "position": task.position,
        "due_date": _iso(task.due_date),
        "start_date": _iso(task.start_date),
        "completed_at": _iso(task.completed_at),
        "archived_at": _iso(task.archived_at),
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
    }
    if "custom_values" in include:
        data["custom_values"] = (values or {}).get(task.id, {})
    if "assignee" in include:
        data["assignee"] = _user_dict(task.assignee)
    if "creator" in include:
        data["creator"] = _user_dict(task.creator)
    if "board" in include:
        data["board"] = {"id": task.board.id, "name": task.board.name}
    return data


def _user_dict(user):
    if user is None:
        return None
    return {"id": user.id, "email": user.email, "full_name": user.full_name}


def _saved_filter_dict(saved):
    return {
        "id": saved.id,
        "board_id": saved.board_id,
        "user_id": saved.user_id,
        "name": saved.name,
        "description": saved.description,
        "filter_definition": saved.filter_definition,
        "is_public": saved.is_public,
        "is_default": saved.is_default,
        "is_owner": saved.user_id == current_user.id,
        "usage_count": saved.usage_count,
        "last_used_at": _iso(saved.last_used_at),
        "created_at": _iso(saved.created_at),
    }


def _filter_error(e):
    return jsonify({"error": "Invalid filter definition", "errors": e.errors}), 422


def _request_params():
    """Query string and JSON body merged into one plain dict."""
    params = request.args.to_dict()
    includes = request.args.getlist("include[]") or request.args.getlist("include")
    if includes:
        params["include"] = includes
        params.pop("include[]", None)
    if request.method != "GET":
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            params.update(body)
    return params


# ─── Column types ────────────────────────────────────────────────

@tasks_bp.route("/column-types")
@login_required
def column_types():
    return jsonify({"data": get_engine().registry.catalogue()})


@tasks_bp.route("/column-types/<column_type>")
@login_required
def column_type_detail(column_type):
    try:
        column_type = ColumnType(column_type)
    except ValueError:
        return jsonify({"error": f"Unknown column type '{column_type}'"}), 404
    return jsonify({"data": get_engine().registry.describe(column_type)})


# ─── Filtering ───────────────────────────────────────────────────

@tasks_bp.route("/boards/<board_id>/tasks/filter", methods=["GET", "POST"])
@limiter.limit(lambda: current_app.config["FILTER_RATE_LIMIT"])
@board_member_required
def filter_tasks(board_id):
    engine = get_engine()
    config = current_app.config
    try:
        query = task_query_service.parse_task_query(
            _request_params(),
            filters_json_max_length=config["FILTERS_JSON_MAX_LENGTH"],
            max_per_page=config["FILTER_MAX_PER_PAGE"],
        )
        result = task_query_service.query_tasks(
            engine,
            g.board,
            query,
            current_user.id,
            text_leaf_threshold=config["FILTER_TEXT_LEAF_WARNING_THRESHOLD"],
        )
    except task_query_service.QueryParamsError as e:
        return jsonify({"error": "Invalid query parameters", "errors": e.errors}), 400
    except FilterValidationError as e:
        return _filter_error(e)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400

    db.session.commit()

    page = result.page
    values = {}
    if "custom_values" in query.include:
        values = field_value_service.values_by_task([t.id for t in page.items])

    return jsonify({
        "data": [_task_dict(t, query.include, values) for t in page.items],
        "pagination": page.describe(),
        "meta": {
            "filters_applied": result.statistics["filters_applied"],
            "filter_summary": result.filter_summary,
            "sort": result.ordering.describe(),
            "warnings": result.warnings,
            "statistics": result.statistics,
            "diagnostics": result.diagnostics,
            "applied_saved_filter": (
                _saved_filter_dict(result.applied_filter)
                if result.applied_filter is not None else None
            ),
            "saved_filter": (
                _saved_filter_dict(result.saved_filter)
                if result.saved_filter is not None else None
            ),
        },
    })


@tasks_bp.route("/boards/<board_id>/filter-columns")
@board_member_required
def filter_columns(board_id):
    return jsonify({
        "data": task_query_service.available_filter_columns(get_engine(), g.board)
    })


@tasks_bp.route("/boards/<board_id>/filters/validate", methods=["POST"])
@board_member_required
def validate_filters(board_id):
    engine = get_engine()
    data = request.get_json(silent=True) or {}
    try:
        tree = engine.builder.build(data.get("filters"), load_board_schema(g.board))
    except FilterValidationError as e:
        return _filter_error(e)
    return jsonify({
        "valid": True,
        "filters": to_document(tree),
        "filter_summary": summarize(tree),
        "filters_applied": count_leaves(tree),
        "diagnostics": task_query_service.validate_filter_combinations(
            tree, current_app.config["FILTER_TEXT_LEAF_WARNING_THRESHOLD"]
        ),
    })


# ─── Saved filters ───────────────────────────────────────────────

@tasks_bp.route("/boards/<board_id>/saved-filters")
@board_member_required
def list_saved_filters(board_id):
    filters = saved_filter_service.list_filters(board_id, current_user.id)
    return jsonify({"data": [_saved_filter_dict(f) for f in filters]})


@tasks_bp.route("/boards/<board_id>/saved-filters", methods=["POST"])
@board_member_required
def create_saved_filter(board_id):
    data = request.get_json(silent=True) or {}
    try:
        saved = saved_filter_service.save_filter(
            get_engine(),
            load_board_schema(g.board),
            current_user.id,
            data.get("name"),
            data.get("filters"),
            description=data.get("description"),
            is_public=bool(data.get("is_public")),
            is_default=bool(data.get("is_default")),
        )
    except FilterValidationError as e:
        db.session.rollback()
        return _filter_error(e)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    db.session.commit()
    return jsonify({"data": _saved_filter_dict(saved)}), 201


@tasks_bp.route(
    "/boards/<board_id>/saved-filters/<saved_filter_id>/default", methods=["POST"]
)
@board_member_required
def make_default_saved_filter(board_id, saved_filter_id):
    try:
        saved = saved_filter_service.get_accessible(
            saved_filter_id, board_id, current_user.id
        )
        saved_filter_service.set_default(saved, current_user.id)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    db.session.commit()
    return jsonify({"data": _saved_filter_dict(saved)})


@tasks_bp.route(
    "/boards/<board_id>/saved-filters/<saved_filter_id>", methods=["DELETE"]
)
@board_member_required
def delete_saved_filter(board_id, saved_filter_id):
    try:
        saved_filter_service.delete_filter(saved_filter_id, board_id, current_user.id)
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 404
    db.session.commit()
    return jsonify({"success": True})


# ─── Bulk operations ─────────────────────────────────────────────

@tasks_bp.route("/boards/<board_id>/tasks/bulk", methods=["POST"])
@board_member_required
def bulk_tasks(board_id):
    data = request.get_json(silent=True) or {}
    try:
        result = bulk_service.run_bulk_operation(
            get_engine(),
            load_board_schema(g.board),
            data.get("operation"),
            params=data.get("params"),
            task_ids=data.get("task_ids"),
            filters=data.get("filters"),
            actor_id=current_user.id,
            max_tasks=current_app.config["BULK_MAX_TASKS"],
        )
    except FilterValidationError as e:
        db.session.rollback()
        return _filter_error(e)
    except FieldValidationError as e:
        db.session.rollback()
        return jsonify({"error": str(e), "errors": e.to_dict()}), 422
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    db.session.commit()
    return jsonify({"data": result})


# ─── Field values ────────────────────────────────────────────────

@tasks_bp.route("/tasks/<task_id>/field-values")
@board_member_required
def get_field_values(task_id):
    return jsonify({"data": field_value_service.get_field_values(g.task)})


@tasks_bp.route("/tasks/<task_id>/field-values", methods=["PUT"])
@board_member_required
def set_field_values(task_id):
    data = request.get_json(silent=True) or {}
    try:
        field_value_service.set_field_values(
            get_engine(), g.task, load_board_schema(g.board), data.get("values")
        )
    except field_value_service.FieldValuesError as e:
        db.session.rollback()
        return jsonify({"error": "Invalid field values", "errors": e.errors}), 422
    except ValueError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    db.session.commit()
    return jsonify({"data": field_value_service.get_field_values(g.task)})


@tasks_bp.route("/tasks/<task_id>/field-values/<column_id>", methods=["DELETE"])
@board_member_required
def clear_field_value(task_id, column_id):
    column = next(
        (c for c in load_board_schema(g.board).columns if c.id == column_id), None
    )
    if column is None:
        return jsonify({"error": "Column not found"}), 404
    try:
        field_value_service.clear_field_value(get_engine(), g.task, column)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    db.session.commit()
    return jsonify({"success": True})
