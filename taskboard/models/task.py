"""Task models.

- Task: a card on a board, with a fixed set of native attributes.
- TaskFieldValue: the value of one dynamic board column for one task.
  The canonical value is stored wrapped as {"value": ...} so the JSON
  path accessors can reach scalars and arrays alike.
"""

import uuid

from taskboard.extensions import db


class Task(db.Model):
    __tablename__ = "tasks"

    STATUSES = ("todo", "in_progress", "review", "done")
    PRIORITIES = ("low", "medium", "high", "urgent")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=False
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(db.String(30), nullable=False, default="todo")
    priority = db.Column(db.String(30), nullable=False, default="medium")
    assignee_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    creator_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    position = db.Column(db.Integer, nullable=False, default=0)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    archived_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_tasks_board_position", "board_id", "position"),
        db.Index("ix_tasks_board_status", "board_id", "status"),
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="tasks")
    assignee = db.relationship("User", foreign_keys=[assignee_id])
    creator = db.relationship("User", foreign_keys=[creator_id])
    field_values = db.relationship(
        "TaskFieldValue",
        back_populates="task",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Task {self.title[:40]}>"


class TaskFieldValue(db.Model):
    __tablename__ = "task_field_values"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    task_id = db.Column(
        db.String(36),
        db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    board_column_id = db.Column(
        db.String(36),
        db.ForeignKey("board_columns.id", ondelete="CASCADE"),
        nullable=False,
    )
    value = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint(
            "task_id", "board_column_id", name="uq_task_field_value"
        ),
        db.Index("ix_task_field_values_column", "board_column_id"),
    )

    # --- Relationships ---
    task = db.relationship("Task", back_populates="field_values")
    column = db.relationship("BoardColumn", back_populates="values")

    @property
    def canonical_value(self):
        if not isinstance(self.value, dict):
            return None
        return self.value.get("value")

    def __repr__(self):
        return f"<TaskFieldValue task={self.task_id} column={self.board_column_id}>"
