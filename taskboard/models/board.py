"""Board models.

- Board: a task board owned by a workspace.
- BoardColumn: a typed dynamic column defined on a board. Values for it
  live in task_field_values, one row per (task, column).
"""

import uuid

from taskboard.extensions import db
from taskboard.services.column_types import ColumnType


class Board(db.Model):
    __tablename__ = "boards"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    workspace = db.relationship("Workspace", back_populates="boards")
    columns = db.relationship(
        "BoardColumn",
        back_populates="board",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="BoardColumn.position",
    )
    tasks = db.relationship(
        "Task",
        back_populates="board",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Board {self.name}>"


class BoardColumn(db.Model):
    __tablename__ = "board_columns"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(30), nullable=False)
    options = db.Column(db.JSON, default=dict)
    position = db.Column(db.Integer, nullable=False, default=0)
    width = db.Column(db.Integer, nullable=True)
    is_pinned = db.Column(db.Boolean, default=False)
    is_required = db.Column(db.Boolean, default=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("board_id", "name", name="uq_board_column_name"),
        db.UniqueConstraint(
            "board_id", "position", name="uq_board_column_position"
        ),
    )

    # --- Relationships ---
    board = db.relationship("Board", back_populates="columns")
    values = db.relationship(
        "TaskFieldValue",
        back_populates="column",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def column_type(self):
        return ColumnType(self.type)

    def effective_options(self, registry):
        """Registry defaults merged with the stored options."""
        options = registry.effective_options(self.column_type, self.options)
        if self.is_required:
            options["required"] = True
        return options

    def __repr__(self):
        return f"<BoardColumn {self.name} ({self.type})>"
