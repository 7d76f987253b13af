"""Tests for process launching and environment overlays."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from polyrepo.process import EMPTY_ENV, EnvOverlay, require_tool, run, run_shell
from polyrepo.utils.errors import ToolMissingError


class TestEnvOverlay:
    """Tests for EnvOverlay."""

    def test_layered_returns_new_overlay(self) -> None:
        base = EnvOverlay({"A": "1"})
        layered = base.layered({"A": "2", "B": "3"})
        assert base.get("A") == "1"
        assert layered.get("A") == "2"
        assert "B" in layered

    def test_read_only(self) -> None:
        overlay = EnvOverlay({"A": "1"})
        with pytest.raises(TypeError):
            overlay.values["A"] = "2"  # type: ignore[index]

    def test_source_dict_not_shared(self) -> None:
        source = {"A": "1"}
        overlay = EnvOverlay(source)
        source["A"] = "changed"
        assert overlay.get("A") == "1"

    def test_apply_over_base(self) -> None:
        env = EnvOverlay({"A": "overlay"}).apply({"A": "base", "PATH": "/bin"})
        assert env == {"A": "overlay", "PATH": "/bin"}

    def test_empty(self) -> None:
        assert not EMPTY_ENV


class TestRun:
    """Tests for run/run_shell."""

    def test_captures_output(self) -> None:
        proc = MagicMock(returncode=0, stdout="out", stderr="")
        with patch("polyrepo.process.subprocess.run", return_value=proc) as mock_run:
            result = run(["git", "status"], cwd=Path("/repo"), env=EnvOverlay({"X": "1"}), capture=True)

        assert result.ok
        assert result.stdout == "out"
        kwargs = mock_run.call_args.kwargs
        assert kwargs["stdout"] == subprocess.PIPE
        assert kwargs["env"]["X"] == "1"

    def test_quiet_discards_output(self) -> None:
        proc = MagicMock(returncode=1, stdout=None, stderr=None)
        with patch("polyrepo.process.subprocess.run", return_value=proc) as mock_run:
            result = run(["git", "fetch"], quiet=True)

        assert not result.ok
        assert mock_run.call_args.kwargs["stdout"] == subprocess.DEVNULL
        assert mock_run.call_args.kwargs["env"] is None

    def test_missing_executable(self) -> None:
        with patch("polyrepo.process.subprocess.run", side_effect=FileNotFoundError("nope")):
            result = run(["nope"])
        assert result.returncode == 127

    def test_login_shell(self) -> None:
        proc = MagicMock(returncode=0, stdout=None, stderr=None)
        with patch("polyrepo.process.subprocess.run", return_value=proc) as mock_run:
            run_shell("npm install", cwd="/repo", shell_path="/bin/zsh")
        assert mock_run.call_args.args[0] == ["/bin/zsh", "-l", "-c", "npm install"]
        assert mock_run.call_args.kwargs["shell"] is False

    def test_plain_shell(self) -> None:
        proc = MagicMock(returncode=0, stdout=None, stderr=None)
        with patch("polyrepo.process.subprocess.run", return_value=proc) as mock_run:
            run_shell("make", cwd="/repo")
        assert mock_run.call_args.args[0] == "make"
        assert mock_run.call_args.kwargs["shell"] is True


class TestRequireTool:
    def test_missing(self) -> None:
        with patch("polyrepo.process.shutil.which", return_value=None):
            with pytest.raises(ToolMissingError):
                require_tool("aws")

    def test_found(self) -> None:
        with patch("polyrepo.process.shutil.which", return_value="/usr/bin/git"):
            assert require_tool("git") == "/usr/bin/git"
