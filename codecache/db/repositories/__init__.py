"""Repository package for database access."""

from .projects import SqliteProjectRepository
from .files import SqliteFileRepository
from .profiles import SqliteProfileRepository

__all__ = [
    "SqliteProjectRepository",
    "SqliteFileRepository",
    "SqliteProfileRepository",
]
