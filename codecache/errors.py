"""Exception hierarchy for the codecache service.

Routers translate these into HTTP status codes; everything below the router
layer raises them and lets them propagate.
"""
from __future__ import annotations


class CodeCacheError(Exception):
    """Base exception for all codecache operations."""


class ConfigurationError(CodeCacheError, ValueError):
    """Invalid input detected before any mutation (paths, filters, ignore files)."""


class FilterCompileError(ConfigurationError):
    """Raised when a filter rule cannot be compiled to a regular expression."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"invalid filter pattern {pattern!r}: {reason}")


class ScanError(CodeCacheError):
    """Directory walk failed; the whole scan is aborted."""


class PersistenceError(CodeCacheError):
    """A cache write failed and was rolled back."""


class NotFoundError(CodeCacheError, LookupError):
    """A requested entity does not exist."""


class ProjectNotFoundError(NotFoundError):
    def __init__(self, project_path: str):
        self.project_path = project_path
        super().__init__(f"project '{project_path}' not found")


class ProfileNotFoundError(NotFoundError):
    def __init__(self, profile_name: str):
        self.profile_name = profile_name
        super().__init__(f"profile '{profile_name}' not found for this project")
