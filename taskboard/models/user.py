"""User model.

Stores profile info and the API token used for Bearer authentication.
Flask-Login integration via UserMixin.
"""

import secrets
import uuid

from flask_login import UserMixin

from taskboard.extensions import db


def generate_api_token():
    return secrets.token_urlsafe(32)


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(255))
    api_token = db.Column(
        db.String(64), unique=True, nullable=False, default=generate_api_token
    )
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    workspace_memberships = db.relationship(
        "WorkspaceMember", back_populates="user", lazy="dynamic"
    )
    saved_filters = db.relationship(
        "SavedFilter", back_populates="user", lazy="dynamic"
    )

    def __repr__(self):
        return f"<User {self.email}>"
