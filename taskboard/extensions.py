"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit; limits are per-route
    storage_uri="memory://",
)


@login_manager.request_loader
def load_user_from_request(request):
    """Authenticate API calls with an `Authorization: Bearer <token>` header."""
    from taskboard.models.user import User

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token:
        return None
    return User.query.filter_by(api_token=token, is_active=True).first()


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Unauthorized"}), 401
