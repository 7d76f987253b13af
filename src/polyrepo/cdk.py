"""AWS CDK pass-through.

``polyrepo cdk`` runs the CDK CLI in the workspace's CDK app (the repo holding
``cdk.json``) with the workspace environment, ``AWS_DEFAULT_OUTPUT=json`` and
an AWS profile picked from the ``[profiles]`` table.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from .process import EnvOverlay, require_tool, run
from .utils.errors import WorkspaceError
from .workspace import Workspace, workspace_env

logger = logging.getLogger(__name__)

CDK_CONFIG_FILE = "cdk.json"


def has_cdk_app(directory: Path) -> bool:
    return (directory / CDK_CONFIG_FILE).is_file()


def find_cdk_app_dir(workspace: Workspace, cwd: Path | None = None) -> Path:
    """Repo directory holding ``cdk.json``.

    The repo containing ``cwd`` wins when it is a CDK app; otherwise the first
    repo by name that is one.

    Raises:
        WorkspaceError: no repo in the workspace has a cdk.json.
    """
    current = workspace.detect_repo(cwd or Path.cwd())
    if current is not None and has_cdk_app(workspace.repo_dir(current)):
        return workspace.repo_dir(current)

    for name in workspace.sorted_names():
        if has_cdk_app(workspace.repo_dir(name)):
            return workspace.repo_dir(name)

    raise WorkspaceError(
        f"No CDK app ({CDK_CONFIG_FILE}) found in workspace",
        suggestion=f"Run from the CDK repo or add {CDK_CONFIG_FILE} to a repo",
    )


def resolve_profile(workspace: Workspace, short_name: str = "") -> str:
    """AWS CLI profile for ``short_name``; the workspace profile when empty.

    Raises:
        WorkspaceError: ``short_name`` is not in ``[profiles]``.
    """
    if not short_name:
        return workspace.profile
    try:
        return workspace.aws_profiles[short_name]
    except KeyError:
        valid = ", ".join(sorted(workspace.aws_profiles)) or "none configured"
        raise WorkspaceError(
            f"Unknown profile '{short_name}'",
            suggestion=f"Valid profiles: {valid}. Add more under profiles in workspace.toml",
        ) from None


def cdk_env(workspace: Workspace, aws_profile: str = "", base: EnvOverlay | None = None) -> EnvOverlay:
    """Workspace environment plus the CDK-specific AWS variables."""
    overlay = base if base is not None else workspace_env(workspace)
    extra = {"AWS_DEFAULT_OUTPUT": "json"}
    if aws_profile:
        extra["AWS_PROFILE"] = aws_profile
    return overlay.layered(extra)


def run_cdk(
    workspace: Workspace,
    args: Sequence[str],
    profile: str = "",
    cwd: Path | None = None,
    on_progress: Callable[[str], None] | None = None,
) -> int:
    """Run ``cdk <args>`` in the CDK app and return its exit code."""
    aws_profile = resolve_profile(workspace, profile)
    app_dir = find_cdk_app_dir(workspace, cwd)
    require_tool("cdk")

    if aws_profile and on_progress:
        on_progress(f"Using AWS profile: {aws_profile}")

    logger.debug(f"cdk {' '.join(args)} in {app_dir}")
    result = run(["cdk", *args], cwd=app_dir, env=cdk_env(workspace, aws_profile))
    return result.returncode
