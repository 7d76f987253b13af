"""Tests for error handling utilities."""

from __future__ import annotations

import io
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from polyrepo.utils.errors import (
    BuildError,
    ErrorCategory,
    ErrorInfo,
    ParameterStoreError,
    RepoNotFoundError,
    ScriptNotFoundError,
    ToolMissingError,
    WorkspaceError,
    WorkspaceNotFoundError,
    error_dependency_missing,
    error_git_operation,
    format_error,
    handle_exception,
    is_debug_mode,
    set_debug_mode,
)


class TestErrorCategory:
    """Tests for ErrorCategory enum."""

    def test_all_categories_defined(self) -> None:
        """Verify all expected categories exist."""
        expected = {"config", "dependency", "git", "build", "params", "internal"}
        assert {cat.value for cat in ErrorCategory} == expected


class TestDebugMode:
    """Tests for debug mode functionality."""

    def teardown_method(self) -> None:
        """Reset debug mode after each test."""
        set_debug_mode(False)

    def test_enable_debug_mode(self) -> None:
        set_debug_mode(True)
        assert is_debug_mode() is True

    def test_disable_debug_mode(self) -> None:
        set_debug_mode(True)
        set_debug_mode(False)
        assert is_debug_mode() is False


class TestFormatError:
    """Tests for format_error function."""

    def teardown_method(self) -> None:
        set_debug_mode(False)

    def get_console_output(self, error: ErrorInfo) -> str:
        """Helper to capture console output."""
        string_io = io.StringIO()
        console = Console(file=string_io, force_terminal=True, width=200)
        format_error(error, console)
        return string_io.getvalue()

    def test_message_and_suggestion(self) -> None:
        error = ErrorInfo(message="Repo broke", category=ErrorCategory.GIT, suggestion="Try again")
        output = self.get_console_output(error)
        assert "Repo broke" in output
        assert "Try again" in output

    def test_long_details_hidden_outside_debug(self) -> None:
        set_debug_mode(False)
        error = ErrorInfo(message="x", category=ErrorCategory.BUILD, details="d" * 300)
        assert "d" * 300 not in self.get_console_output(error)

    def test_stack_trace_in_debug(self) -> None:
        set_debug_mode(True)
        try:
            raise ValueError("kaboom")
        except ValueError as e:
            error = ErrorInfo(message="x", category=ErrorCategory.INTERNAL, original_error=e)
        output = self.get_console_output(error)
        assert "Stack trace" in output
        assert "kaboom" in output


class TestExceptions:
    """Tests for the PolyrepoError hierarchy."""

    def test_workspace_not_found(self) -> None:
        info = WorkspaceNotFoundError("/tmp/x").to_error_info()
        assert info.category == ErrorCategory.CONFIG
        assert "workspace create" in (info.suggestion or "")

    def test_workspace_error_suggestion(self) -> None:
        info = WorkspaceError("bad", suggestion="fix it").to_error_info()
        assert info.suggestion == "fix it"

    def test_repo_not_found(self) -> None:
        info = RepoNotFoundError("AppAPI").to_error_info()
        assert "AppAPI" in info.message
        assert "workspace list" in (info.suggestion or "")

    def test_tool_missing_has_install_hint(self) -> None:
        info = ToolMissingError("aws").to_error_info()
        assert info.category == ErrorCategory.DEPENDENCY
        assert "aws.amazon.com/cli" in (info.suggestion or "")

    def test_parameter_store_error_keeps_text(self) -> None:
        info = ParameterStoreError("AccessDenied: nope").to_error_info()
        assert "AccessDenied: nope" in info.message
        assert info.category == ErrorCategory.PARAMS

    def test_script_not_found_lists_scripts(self) -> None:
        info = ScriptNotFoundError("API", "deploy", ["test", "build"]).to_error_info()
        assert info.suggestion == "Available scripts: build, test"

    def test_build_error_exit_code(self) -> None:
        assert BuildError("API", "build", 2).exit_code == 2
        assert BuildError("API", "build", 0).exit_code == 1

    def test_build_error_names_dependency(self) -> None:
        err = BuildError("API", "build", 1, dependency="Model")
        assert str(err).startswith("dependency build failed at 'Model'")


class TestErrorFactories:
    """Tests for error factory functions."""

    def test_dependency_missing_known_tool(self) -> None:
        info = error_dependency_missing("gh")
        assert "cli.github.com" in (info.suggestion or "")

    def test_dependency_missing_unknown_tool(self) -> None:
        assert error_dependency_missing("terraform").suggestion == "Install terraform"

    def test_git_operation_clone(self) -> None:
        info = error_git_operation("clone", "denied")
        assert info.message == "Git clone failed: denied"
        assert "SSH" in (info.suggestion or "")


class TestHandleException:
    """Tests for handle_exception function."""

    def test_polyrepo_error_exit_code(self) -> None:
        console = MagicMock(spec=Console)
        with pytest.raises(SystemExit) as exc_info:
            handle_exception(console, BuildError("API", "test", 4))
        assert exc_info.value.code == 4
        console.print.assert_called()

    def test_unexpected_exception(self) -> None:
        console = MagicMock(spec=Console)
        with pytest.raises(SystemExit) as exc_info:
            handle_exception(console, ValueError("bad input"))
        assert exc_info.value.code == 1

    def test_no_exit(self) -> None:
        console = MagicMock(spec=Console)
        error = handle_exception(console, RepoNotFoundError("a"), exit_on_error=False)
        assert isinstance(error, ErrorInfo)
        assert error.category == ErrorCategory.CONFIG
