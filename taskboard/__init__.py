import os
import logging

import click
from flask import Flask, jsonify

from taskboard.config import config_by_name
from taskboard.extensions import db, migrate, login_manager, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from taskboard import models  # noqa: F401

    # --- Filter engine (column type registry + components) ---
    from taskboard.services.engine import init_filter_engine
    init_filter_engine(app)

    # --- Tenant middleware ---
    from taskboard.middleware.tenant import init_tenant_middleware
    init_tenant_middleware(app)

    # --- Register blueprints ---
    from taskboard.blueprints.tasks import tasks_bp

    app.register_blueprint(tasks_bp)

    # --- Error handlers ---
    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON only, nothing to load
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-demo")
    @click.option("--email", default="demo@taskboard.local", help="Demo user email")
    @click.option("--tasks", "task_count", default=12, help="Sample tasks to create")
    def seed_demo(email, task_count):
        """Create a demo user + workspace + board with typed columns and tasks.

        Usage:
            flask seed-demo
            flask seed-demo --email me@example.com --tasks 40
        """
        from datetime import date, timedelta

        from taskboard.models.board import Board, BoardColumn
        from taskboard.models.task import Task
        from taskboard.models.user import User
        from taskboard.models.workspace import Workspace, WorkspaceMember
        from taskboard.services import field_value_service
        from taskboard.services.column_types import ColumnType
        from taskboard.services.engine import get_engine

        engine = get_engine()

        # --- 1. Demo user ---
        user = User.query.filter_by(email=email).first()
        if user:
            click.echo(f"Demo user already exists: {email}")
        else:
            user = User(email=email, full_name="Demo User")
            db.session.add(user)
            db.session.flush()
            click.echo(f"Created demo user: {email}")

        # --- 2. Workspace + membership ---
        workspace = Workspace(name="Demo Workspace")
        db.session.add(workspace)
        db.session.flush()
        db.session.add(WorkspaceMember(
            user_id=user.id, workspace_id=workspace.id, role="owner",
        ))

        # --- 3. Board + columns ---
        board = Board(workspace_id=workspace.id, name="Launch Plan")
        db.session.add(board)
        db.session.flush()

        registry = engine.registry
        column_specs = [
            ("Budget", ColumnType.CURRENCY, {"currency_code": "USD"}),
            ("Labels", ColumnType.LABELS, {}),
            ("Launch date", ColumnType.DATE, {}),
            ("Reviewed", ColumnType.CHECKBOX, {}),
            ("Contact email", ColumnType.EMAIL, {}),
        ]
        columns = {}
        for position, (name, column_type, options) in enumerate(column_specs):
            column = BoardColumn(
                board_id=board.id,
                name=name,
                type=column_type.value,
                options=options,
                position=position,
                width=registry.default_width(column_type),
            )
            db.session.add(column)
            columns[name] = column
        db.session.flush()

        # --- 4. Sample tasks with values ---
        labels = ["frontend", "backend", "design", "ops"]
        today = date.today()
        for i in range(task_count):
            task = Task(
                board_id=board.id,
                workspace_id=workspace.id,
                title=f"Sample task {i + 1}",
                status=Task.STATUSES[i % len(Task.STATUSES)],
                priority=Task.PRIORITIES[i % len(Task.PRIORITIES)],
                assignee_id=user.id if i % 2 == 0 else None,
                creator_id=user.id,
                position=i,
            )
            db.session.add(task)
            db.session.flush()
            values = {
                "Labels": [labels[i % len(labels)]],
                "Reviewed": i % 3 == 0,
            }
            if i % 4 != 3:
                values["Budget"] = 250 * (i + 1)
                values["Launch date"] = (today + timedelta(days=7 * i)).isoformat()
            if i % 5 == 0:
                values["Contact email"] = f"owner{i}@example.com"
            for name, raw in values.items():
                field_value_service.set_field_value(engine, task, columns[name], raw)

        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Demo data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  User:      {email}")
        click.echo(f"  API token: {user.api_token}")
        click.echo(f"  Workspace: {workspace.name} (id: {workspace.id})")
        click.echo(f"  Board:     {board.name} (id: {board.id})")
        click.echo(f"  Tasks:     {task_count}")
        click.echo("=" * 60)

    @app.cli.command("column-types")
    def column_types():
        """Print the column type registry: type, family, sortable, operators."""
        from taskboard.services.engine import get_engine

        registry = get_engine().registry
        for entry in registry.catalogue():
            click.echo(
                f"{entry['type']:<12} {entry['family']:<11} "
                f"{'sortable' if entry['sortable'] else '-':<9} "
                f"{', '.join(entry['operators'])}"
            )
