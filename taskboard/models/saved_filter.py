"""Saved filter model.

A named filter definition (wire-format JSON) a user stored for a board.
Public filters are visible to every member of the board's workspace.
"""

import uuid

from taskboard.extensions import db


class SavedFilter(db.Model):
    __tablename__ = "saved_filters"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    board_id = db.Column(
        db.String(36),
        db.ForeignKey("boards.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    filter_definition = db.Column(db.JSON, nullable=False)
    is_public = db.Column(db.Boolean, default=False)
    is_default = db.Column(db.Boolean, default=False)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
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
            "user_id", "board_id", "name", name="uq_saved_filter_name"
        ),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="saved_filters")
    board = db.relationship("Board")

    def is_accessible_by(self, user_id):
        return self.is_public or self.user_id == user_id

    def __repr__(self):
        return f"<SavedFilter {self.name}>"
