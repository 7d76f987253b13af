"""Workspace-wide environment and editor metadata.

The workspace root holds a ``.env`` file refreshed from the parameter store
(see :mod:`polyrepo.params`). Child processes started for installs and builds
receive that file's variables plus the workspace ``env`` table as an
:class:`~polyrepo.process.EnvOverlay`.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path

from dotenv import dotenv_values

from ..process import EnvOverlay, run
from .config import Workspace

logger = logging.getLogger(__name__)

GLOBAL_ENV_FILE = ".env"


def global_env_path(root: Path) -> Path:
    return root / GLOBAL_ENV_FILE


def read_global_env(root: Path) -> dict[str, str]:
    """Parse ``<root>/.env``. Missing file means no variables.

    Values are taken verbatim; ``${VAR}`` references are not expanded.
    """
    path = global_env_path(root)
    if not path.exists():
        return {}
    values = dotenv_values(path, interpolate=False)
    return {key: value for key, value in values.items() if value is not None}


def quote_env_value(value: str) -> str:
    """Single-quote ``value`` so ``dotenv_values`` reads it back unchanged."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def write_global_env(root: Path, values: Mapping[str, str]) -> Path:
    """Write ``values`` to ``<root>/.env``, sorted by key."""
    path = global_env_path(root)
    lines = ["# Generated by polyrepo; refreshed by 'polyrepo env'"]
    lines.extend(f"{key}={quote_env_value(values[key])}" for key in sorted(values))
    path.write_text("\n".join(lines) + "\n")
    logger.info(f"Wrote {len(values)} variables to {path}")
    return path


def workspace_env(workspace: Workspace, github_token: bool = True) -> EnvOverlay:
    """Environment overlay for child processes in this workspace.

    Layers, lowest first: the global .env file, the workspace ``env`` table,
    and GITHUB_TOKEN from ``gh auth token`` when neither the process nor the
    layers define it (private npm registries need it).
    """
    overlay = EnvOverlay(read_global_env(workspace.root)).layered(workspace.env)
    if github_token and "GITHUB_TOKEN" not in overlay and not os.environ.get("GITHUB_TOKEN"):
        token = github_cli_token()
        if token:
            overlay = overlay.layered({"GITHUB_TOKEN": token})
    return overlay


def github_cli_token() -> str:
    """Token from the GitHub CLI, or "" when gh is missing or logged out."""
    result = run(["gh", "auth", "token"], capture=True)
    if not result.ok:
        logger.debug("gh auth token unavailable: %s", result.stderr.strip())
        return ""
    return result.stdout.strip()


def generate_editor_workspace(workspace: Workspace) -> Path:
    """Write ``<name>.code-workspace`` listing every cloned repo as a folder."""
    folders = [
        {"name": name, "path": workspace.repos[name].path}
        for name in workspace.sorted_names()
        if workspace.is_cloned(name)
    ]
    data = {
        "folders": folders,
        "settings": {"files.exclude": {"**/node_modules": True}},
    }
    path = workspace.root / f"{workspace.name}.code-workspace"
    path.write_text(json.dumps(data, indent=2) + "\n")
    logger.debug(f"Wrote editor workspace {path}")
    return path
