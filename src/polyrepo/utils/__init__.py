"""polyrepo utility modules."""

from .errors import (
    BuildError,
    ErrorCategory,
    ErrorInfo,
    ParameterStoreError,
    PolyrepoError,
    RepoNotFoundError,
    ScriptNotFoundError,
    ToolMissingError,
    WorkspaceError,
    WorkspaceNotFoundError,
    error_dependency_missing,
    error_git_operation,
    error_internal,
    error_repo_not_found,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)

__all__ = [
    # Exceptions
    "PolyrepoError",
    "WorkspaceNotFoundError",
    "WorkspaceError",
    "RepoNotFoundError",
    "ToolMissingError",
    "ParameterStoreError",
    "ScriptNotFoundError",
    "BuildError",
    # Error display
    "ErrorCategory",
    "ErrorInfo",
    "format_error",
    "handle_exception",
    "error_repo_not_found",
    "error_dependency_missing",
    "error_git_operation",
    "error_internal",
    "set_debug_mode",
    "is_debug_mode",
]
