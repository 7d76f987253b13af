"""Error handling utilities for the polyrepo CLI.

Provides the exception hierarchy raised by the engine and consistent
error formatting with:
- Human-friendly messages
- Suggested fixes
- Hidden stack traces (unless debug mode)
"""

from __future__ import annotations

import os
import sys
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rich.console import Console

# Debug mode enabled by POLYREPO_DEBUG=1 or --debug flag
_debug_mode = os.environ.get("POLYREPO_DEBUG", "0") == "1"


class ErrorCategory(str, Enum):
    """Categories of errors for consistent formatting."""

    CONFIG = "config"  # Workspace not found, unknown repo
    DEPENDENCY = "dependency"  # Missing external tools
    GIT = "git"  # Git operation errors
    BUILD = "build"  # Build script failures
    PARAMS = "params"  # Parameter store errors
    INTERNAL = "internal"  # Internal/unexpected errors


# Remediation hints for tools the engine shells out to
INSTALL_HINTS = {
    "git": "Install git from https://git-scm.com/",
    "npm": "Install Node.js from https://nodejs.org",
    "aws": "Install the AWS CLI: https://aws.amazon.com/cli/",
    "gh": "Install GitHub CLI: brew install gh (macOS) or see https://cli.github.com/",
    "cdk": "Install the AWS CDK CLI: npm install -g aws-cdk",
}


# =============================================================================
# Exceptions
# =============================================================================


class PolyrepoError(Exception):
    """Base class for errors that abort a polyrepo command."""

    exit_code = 1

    def to_error_info(self) -> ErrorInfo:
        return error_internal(str(self), self)


class WorkspaceNotFoundError(PolyrepoError):
    """No workspace.toml in the current directory or any parent."""

    def __init__(self, start: str) -> None:
        super().__init__(f"No workspace found from {start}")
        self.start = start

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(
            message=str(self),
            category=ErrorCategory.CONFIG,
            suggestion="Run 'polyrepo workspace create <path>' or cd into a workspace",
            original_error=self,
        )


class WorkspaceError(PolyrepoError):
    """Invalid workspace file or workspace layout."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        super().__init__(message)
        self.suggestion = suggestion

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(
            message=str(self),
            category=ErrorCategory.CONFIG,
            suggestion=self.suggestion,
            original_error=self,
        )


class RepoNotFoundError(PolyrepoError):
    """A repo name that the workspace does not know."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Repo '{name}' not found in workspace")
        self.name = name

    def to_error_info(self) -> ErrorInfo:
        return error_repo_not_found(self.name)


class ToolMissingError(PolyrepoError):
    """A required executable is not on PATH."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"{tool} not found")
        self.tool = tool

    def to_error_info(self) -> ErrorInfo:
        return error_dependency_missing(self.tool)


class ParameterStoreError(PolyrepoError):
    """The parameter store call failed; message is the provider's error text."""

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(
            message=f"Failed to fetch parameters: {self}",
            category=ErrorCategory.PARAMS,
            suggestion="Check the AWS profile and that the parameter path exists",
            original_error=self,
        )


class ScriptNotFoundError(PolyrepoError):
    """No command could be resolved for a script in a repo."""

    def __init__(self, repo: str, script: str, available: list[str] | None = None) -> None:
        super().__init__(f"Script '{script}' not found in {repo}")
        self.repo = repo
        self.script = script
        self.available = available or []

    def to_error_info(self) -> ErrorInfo:
        suggestion = None
        if self.available:
            suggestion = f"Available scripts: {', '.join(sorted(self.available))}"
        return ErrorInfo(
            message=str(self),
            category=ErrorCategory.BUILD,
            suggestion=suggestion,
        )


class BuildError(PolyrepoError):
    """A build or script process exited non-zero."""

    def __init__(
        self,
        repo: str,
        script: str,
        returncode: int,
        dependency: str | None = None,
    ) -> None:
        if dependency:
            message = f"dependency build failed at '{dependency}': {script} exited with {returncode}"
        else:
            message = f"{repo}: {script} failed (exit {returncode})"
        super().__init__(message)
        self.repo = repo
        self.script = script
        self.returncode = returncode
        self.dependency = dependency

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.returncode or 1

    def to_error_info(self) -> ErrorInfo:
        return ErrorInfo(
            message=str(self),
            category=ErrorCategory.BUILD,
            suggestion="Fix the failing build and re-run",
        )


# =============================================================================
# Formatting
# =============================================================================


@dataclass
class ErrorInfo:
    """Structured error information for consistent display."""

    message: str
    category: ErrorCategory
    suggestion: str | None = None
    details: str | None = None
    original_error: Exception | None = None


def set_debug_mode(enabled: bool) -> None:
    """Enable or disable debug mode for verbose error output."""
    global _debug_mode
    _debug_mode = enabled


def is_debug_mode() -> bool:
    """Check if debug mode is enabled."""
    return _debug_mode


def format_error(error: ErrorInfo, console: Console) -> None:
    """Format and display an error with consistent styling.

    Args:
        error: Structured error information
        console: Rich console for output
    """
    console.print(f"[bold red]Error:[/bold red] {error.message}")

    if error.details:
        if _debug_mode or len(error.details) < 200:
            console.print(f"[dim]{error.details}[/dim]")

    if error.suggestion:
        console.print()
        console.print(f"[yellow]Suggestion:[/yellow] {error.suggestion}")

    if _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Stack trace (debug mode):[/dim]")
        tb_lines = traceback.format_exception(
            type(error.original_error),
            error.original_error,
            error.original_error.__traceback__,
        )
        for line in tb_lines:
            console.print(f"[dim]{line.rstrip()}[/dim]")


def error_repo_not_found(name: str) -> ErrorInfo:
    """Create error info for an unknown repo name."""
    return ErrorInfo(
        message=f"Repo '{name}' not found in workspace",
        category=ErrorCategory.CONFIG,
        suggestion="Run 'polyrepo workspace list' to see repos",
    )


def error_dependency_missing(dependency: str) -> ErrorInfo:
    """Create error info for a missing executable, with its install hint."""
    return ErrorInfo(
        message=f"Required dependency not found: {dependency}",
        category=ErrorCategory.DEPENDENCY,
        suggestion=INSTALL_HINTS.get(dependency, f"Install {dependency}"),
    )


def error_git_operation(operation: str, message: str, original: Exception | None = None) -> ErrorInfo:
    """Create error info for git operation errors.

    Args:
        operation: The git operation that failed
        message: Error message from git
        original: Original exception if available
    """
    suggestion = "Check git status and ensure working directory is clean"
    if "clone" in operation.lower():
        suggestion = "Check the remote URL and your SSH keys"
    elif "branch" in operation.lower():
        suggestion = "Check if the branch exists: git branch -a"

    return ErrorInfo(
        message=f"Git {operation} failed: {message}",
        category=ErrorCategory.GIT,
        suggestion=suggestion,
        original_error=original,
    )


def error_internal(message: str, original: Exception | None = None) -> ErrorInfo:
    """Create error info for internal/unexpected errors."""
    return ErrorInfo(
        message=f"Internal error: {message}",
        category=ErrorCategory.INTERNAL,
        suggestion="This may be a bug. Re-run with --debug for a stack trace",
        original_error=original,
    )


def handle_exception(
    console: Console,
    exception: Exception,
    exit_on_error: bool = True,
) -> ErrorInfo:
    """Display a formatted error for an exception and optionally exit.

    PolyrepoError subclasses carry their own ErrorInfo and exit code;
    anything else is reported as an internal error with exit code 1.
    """
    if isinstance(exception, PolyrepoError):
        error = exception.to_error_info()
        exit_code = exception.exit_code
    else:
        error = error_internal(str(exception), exception)
        exit_code = 1

    format_error(error, console)

    if not _debug_mode and error.original_error:
        console.print()
        console.print("[dim]Set POLYREPO_DEBUG=1 or use --debug for more details[/dim]")

    if exit_on_error:
        sys.exit(exit_code)

    return error
