"""SQLAlchemy ORM models — one file per table."""

from watchman.models.handled_comment import HandledComment
from watchman.models.repository import Repository, RepositoryReferrer

__all__ = [
    "HandledComment",
    "Repository",
    "RepositoryReferrer",
]
