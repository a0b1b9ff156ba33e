"""
Error Handling Utilities

Exception taxonomy shared by the rule loader, the backend client and the
request handlers, plus a helper for summarising several failures at once.
"""

import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when required environment configuration is missing or invalid."""
    pass


class StorageError(Exception):
    """Raised when a remote storage download fails."""
    pass


class BackendError(Exception):
    """Raised when the managed backend rejects or fails a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(Exception):
    """Raised when the caller's identity cannot be established."""
    pass


class AuthorizationError(Exception):
    """Raised when the caller lacks every role an operation requires."""
    pass


class RuleLoadError(Exception):
    """
    Raised when a rule file could not be read from remote storage or the
    local fallback directory.

    Both underlying causes are kept so callers can report them.
    """

    def __init__(self, path: str, remote_error: Exception, local_error: Exception):
        self.path = path
        self.remote_error = remote_error
        self.local_error = local_error
        super().__init__(
            f"Failed to load YAML '{path}' from both storage and local: "
            f"{create_error_summary([remote_error, local_error])}"
        )


def create_error_summary(errors: List[Exception]) -> str:
    """
    Create a one-line summary of multiple errors.

    Args:
        errors: List of exceptions

    Returns:
        Formatted error summary, e.g. "StorageError: not found; FileNotFoundError: ..."
    """
    if not errors:
        return "No errors"
    return "; ".join(f"{type(error).__name__}: {error}" for error in errors)
