# Models package: import all models here so Alembic can discover them.

from taskboard.models.user import User  # noqa: F401
from taskboard.models.workspace import Workspace, WorkspaceMember  # noqa: F401
from taskboard.models.board import Board, BoardColumn  # noqa: F401
from taskboard.models.task import Task, TaskFieldValue  # noqa: F401
from taskboard.models.saved_filter import SavedFilter  # noqa: F401
