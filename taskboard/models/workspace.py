"""Workspace models.

- Workspace: the top-level tenant container.
- WorkspaceMember: join table linking users to workspaces.
"""

import uuid

from taskboard.extensions import db


class Workspace(db.Model):
    __tablename__ = "workspaces"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    members = db.relationship(
        "WorkspaceMember", back_populates="workspace", lazy="dynamic"
    )
    boards = db.relationship(
        "Board", back_populates="workspace", lazy="dynamic"
    )

    def has_member(self, user_id):
        return (
            self.members.filter_by(user_id=user_id).first() is not None
        )

    def __repr__(self):
        return f"<Workspace {self.name}>"


class WorkspaceMember(db.Model):
    __tablename__ = "workspace_members"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    workspace_id = db.Column(
        db.String(36), db.ForeignKey("workspaces.id"), nullable=False
    )
    role = db.Column(db.String(50), default="member")  # owner | member
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "workspace_id", name="uq_user_workspace"
        ),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="workspace_memberships")
    workspace = db.relationship("Workspace", back_populates="members")

    def __repr__(self):
        return f"<WorkspaceMember user={self.user_id} workspace={self.workspace_id}>"
