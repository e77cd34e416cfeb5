"""Saved filter service — named filter definitions per user and board.

Definitions are validated through the filter builder before they are
stored, and stored in canonical wire form. Names are sanitized with
bleach.clean() and must be unique per user on a board. Public filters can
be used (not edited) by anyone who can see the board.

Functions flush but do NOT commit — the caller commits.
"""

import logging
from datetime import datetime, timezone

import bleach
from sqlalchemy import or_

from taskboard.extensions import db
from taskboard.models.saved_filter import SavedFilter
from taskboard.services.filter_tree import to_document

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


def _sanitize(text):
    """Strip all HTML tags from user input."""
    if text is None:
        return text
    return bleach.clean(text, tags=[], strip=True).strip()


def save_filter(engine, schema, user_id, name, definition, description=None,
                is_public=False, is_default=False):
    """Validate and store a filter definition.

    Args:
        engine: FilterEngine used to validate the definition.
        schema: BoardSchema of the board the filter belongs to.
        user_id: Owner's user UUID string.
        name: Display name (will be sanitized).
        definition: Raw filter definition in wire format.
        description: Optional description (will be sanitized).
        is_public: Visible to other board members.
        is_default: Make this the owner's default filter for the board.

    Returns:
        The created SavedFilter.

    Raises:
        ValueError: If the name is missing, too long or taken.
        FilterValidationError: If the definition is invalid.
    """
    name = _sanitize(name if isinstance(name, str) else None)
    if not name:
        raise ValueError("Filter name is required.")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(
            f"Filter name may not be greater than {MAX_NAME_LENGTH} characters."
        )

    existing = SavedFilter.query.filter_by(
        user_id=user_id, board_id=schema.board_id, name=name
    ).first()
    if existing is not None:
        raise ValueError(f"A saved filter named '{name}' already exists.")

    tree = engine.builder.build(definition, schema)

    saved = SavedFilter(
        user_id=user_id,
        board_id=schema.board_id,
        name=name,
        description=_sanitize(description if isinstance(description, str) else None),
        filter_definition=to_document(tree),
        is_public=bool(is_public),
        is_default=False,
    )
    db.session.add(saved)
    db.session.flush()

    if is_default:
        set_default(saved, user_id)

    logger.info(
        f"Saved filter '{name}' ({saved.id}) created on board "
        f"{schema.board_id} by user {user_id}"
    )
    return saved


def list_filters(board_id, user_id):
    """The user's own filters plus everyone's public ones, defaults first."""
    return (
        SavedFilter.query
        .filter(SavedFilter.board_id == board_id)
        .filter(or_(SavedFilter.user_id == user_id, SavedFilter.is_public.is_(True)))
        .order_by(SavedFilter.is_default.desc(), SavedFilter.name)
        .all()
    )


def get_accessible(saved_filter_id, board_id, user_id):
    """Load a saved filter the user may apply on this board.

    Raises:
        ValueError: If it doesn't exist, belongs to another board, or is
            another user's private filter.
    """
    saved = db.session.get(SavedFilter, saved_filter_id)
    if (
        saved is None
        or saved.board_id != board_id
        or not saved.is_accessible_by(user_id)
    ):
        raise ValueError(f"Saved filter {saved_filter_id} not found.")
    return saved


def record_usage(saved):
    saved.usage_count = (saved.usage_count or 0) + 1
    saved.last_used_at = datetime.now(timezone.utc)
    db.session.flush()


def set_default(saved, user_id):
    """Make saved the owner's default on its board, clearing any other."""
    if saved.user_id != user_id:
        raise ValueError("Only the owner can change this filter.")
    (
        SavedFilter.query
        .filter(
            SavedFilter.user_id == saved.user_id,
            SavedFilter.board_id == saved.board_id,
            SavedFilter.id != saved.id,
        )
        .update({"is_default": False}, synchronize_session="fetch")
    )
    saved.is_default = True
    db.session.flush()


def delete_filter(saved_filter_id, board_id, user_id):
    saved = get_accessible(saved_filter_id, board_id, user_id)
    if saved.user_id != user_id:
        raise ValueError("Only the owner can delete this filter.")
    db.session.delete(saved)
    db.session.flush()
    logger.info(f"Saved filter {saved_filter_id} deleted by user {user_id}")
