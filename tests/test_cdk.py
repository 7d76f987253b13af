"""Tests for the CDK pass-through."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from polyrepo.cdk import cdk_env, find_cdk_app_dir, resolve_profile, run_cdk
from polyrepo.process import CommandResult, EnvOverlay
from polyrepo.utils.errors import ToolMissingError, WorkspaceError
from polyrepo.workspace import RepoDef, Workspace, load_workspace, save_workspace


@pytest.fixture
def ws(tmp_path: Path) -> Workspace:
    for name in ("Api", "Infra", "Pipeline"):
        (tmp_path / name).mkdir()
    (tmp_path / "Infra" / "cdk.json").write_text("{}")
    (tmp_path / "Pipeline" / "cdk.json").write_text("{}")
    return Workspace(
        name="acme",
        root=tmp_path,
        repos={n: RepoDef(name=n, path=n) for n in ("Api", "Infra", "Pipeline")},
        profile="acme-dev",
        aws_profiles={"beta": "acme-beta", "prod": "acme-prod"},
    )


class TestFindCdkAppDir:
    """Tests for find_cdk_app_dir."""

    def test_current_repo_wins(self, ws: Workspace, tmp_path: Path) -> None:
        (tmp_path / "Pipeline" / "lib").mkdir()
        assert find_cdk_app_dir(ws, tmp_path / "Pipeline" / "lib") == tmp_path / "Pipeline"

    def test_first_app_by_name_otherwise(self, ws: Workspace, tmp_path: Path) -> None:
        assert find_cdk_app_dir(ws, tmp_path / "Api") == tmp_path / "Infra"

    def test_no_app(self, tmp_path: Path) -> None:
        (tmp_path / "Api").mkdir()
        empty = Workspace(name="acme", root=tmp_path, repos={"Api": RepoDef(name="Api", path="Api")})
        with pytest.raises(WorkspaceError, match="cdk.json"):
            find_cdk_app_dir(empty, tmp_path)


class TestResolveProfile:
    """Tests for resolve_profile."""

    def test_short_name(self, ws: Workspace) -> None:
        assert resolve_profile(ws, "beta") == "acme-beta"

    def test_workspace_default(self, ws: Workspace) -> None:
        assert resolve_profile(ws) == "acme-dev"

    def test_unknown(self, ws: Workspace) -> None:
        with pytest.raises(WorkspaceError) as exc_info:
            resolve_profile(ws, "qa")
        assert "beta, prod" in (exc_info.value.suggestion or "")


class TestCdkEnv:
    def test_adds_output_and_profile(self, ws: Workspace) -> None:
        env = cdk_env(ws, "acme-beta", base=EnvOverlay({"GITHUB_TOKEN": "t", "AWS_DEFAULT_OUTPUT": "JSON"}))
        assert env.get("AWS_DEFAULT_OUTPUT") == "json"
        assert env.get("AWS_PROFILE") == "acme-beta"
        assert env.get("GITHUB_TOKEN") == "t"

    def test_no_profile(self, ws: Workspace) -> None:
        assert "AWS_PROFILE" not in cdk_env(ws, base=EnvOverlay({}))


class TestRunCdk:
    """Tests for run_cdk."""

    def test_runs_in_app_dir(self, ws: Workspace, tmp_path: Path) -> None:
        with (
            patch("polyrepo.cdk.require_tool", return_value="/usr/bin/cdk"),
            patch("polyrepo.cdk.workspace_env", return_value=EnvOverlay({})),
            patch("polyrepo.cdk.run", return_value=CommandResult(args=[], returncode=0)) as mock_run,
        ):
            assert run_cdk(ws, ["synth"], cwd=tmp_path) == 0

        assert mock_run.call_args.args[0] == ["cdk", "synth"]
        assert mock_run.call_args.kwargs["cwd"] == tmp_path / "Infra"
        assert mock_run.call_args.kwargs["env"].get("AWS_PROFILE") == "acme-dev"

    def test_missing_cdk_cli(self, ws: Workspace, tmp_path: Path) -> None:
        with patch("polyrepo.process.shutil.which", return_value=None):
            with pytest.raises(ToolMissingError) as exc_info:
                run_cdk(ws, ["list"], cwd=tmp_path)
        assert "aws-cdk" in (exc_info.value.to_error_info().suggestion or "")


class TestProfilesTable:
    def test_round_trip(self, ws: Workspace, tmp_path: Path) -> None:
        save_workspace(ws)
        assert load_workspace(tmp_path).aws_profiles == {"beta": "acme-beta", "prod": "acme-prod"}
