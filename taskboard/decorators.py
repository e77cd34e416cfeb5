"""
Custom route decorators for access control.

- board_member_required: ensures the caller is authenticated AND is a
  member of the workspace that owns the board (or task) in the URL.
"""

from functools import wraps

from flask import g, jsonify
from flask_login import current_user, login_required


def board_member_required(f):
    """Require authentication + workspace membership for the current board."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        # g.workspace_id is set by tenant middleware
        if getattr(g, "workspace_id", None) is None:
            return jsonify({"error": "Board not found"}), 404

        from taskboard.models.workspace import WorkspaceMember

        membership = WorkspaceMember.query.filter_by(
            user_id=current_user.id,
            workspace_id=g.workspace_id,
        ).first()

        if membership is None:
            return jsonify({"error": "Forbidden"}), 403

        return f(*args, **kwargs)

    return decorated
