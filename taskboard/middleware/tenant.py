"""Tenant middleware — resolves board and task ids to workspace context.

Runs before every request that carries a `board_id` or `task_id` URL
parameter. Sets g.board, g.workspace_id and (for task routes) g.task.
Unknown ids abort with a JSON 404 before the view runs.
"""

from flask import g, jsonify, request

from taskboard.extensions import db
from taskboard.models.board import Board
from taskboard.models.task import Task


def resolve_tenant():
    """Before-request hook for board and task routes.

    Only runs on routes that have a `board_id` or `task_id` URL parameter.
    """
    if request.view_args is None:
        return None

    task_id = request.view_args.get("task_id")
    board_id = request.view_args.get("board_id")
    if task_id is None and board_id is None:
        return None

    if task_id is not None:
        task = db.session.get(Task, task_id)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        g.task = task
        board_id = task.board_id

    board = db.session.get(Board, board_id)
    if board is None:
        return jsonify({"error": "Board not found"}), 404

    g.board = board
    g.workspace_id = board.workspace_id
    return None


def init_tenant_middleware(app):
    """Register the tenant resolver as a before_request hook."""
    app.before_request(resolve_tenant)
