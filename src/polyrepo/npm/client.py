"""npm operations against a package directory.

`NpmClient` wraps the handful of npm commands polyrepo sequences (link,
unlink, install) plus filesystem checks for build artifacts and link state.
All npm child processes receive the client's environment overlay, which
usually carries the workspace .env and a GitHub token for private registries.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..process import EMPTY_ENV, CommandResult, EnvOverlay, require_tool, run, run_shell

logger = logging.getLogger(__name__)

# Files a provider build output must contain to count as built
BUILD_MARKERS = ("package.json", "dist-types")


def read_manifest(directory: Path) -> dict[str, Any] | None:
    """Parsed ``package.json`` in ``directory``, or None if absent/unreadable."""
    path = directory / "package.json"
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


class NpmClient:
    """npm with a fixed environment overlay."""

    def __init__(self, env: EnvOverlay = EMPTY_ENV, shell: str = "") -> None:
        self.env = env
        self.shell = shell

    # -- linking -------------------------------------------------------------

    def link(self, directory: Path) -> CommandResult:
        """``npm link`` in ``directory``: register it as a globally resolvable package."""
        return run(["npm", "link"], cwd=directory, env=self.env, capture=True)

    def link_package(self, directory: Path, package: str) -> CommandResult:
        """``npm link <package>`` in ``directory``: consume the registered package."""
        return run(["npm", "link", package], cwd=directory, env=self.env, capture=True)

    def unlink(self, directory: Path, package: str) -> CommandResult:
        """``npm unlink <package>`` in ``directory``."""
        return run(["npm", "unlink", package], cwd=directory, env=self.env, capture=True)

    # -- checks --------------------------------------------------------------

    def is_built(self, build_dir: Path) -> bool:
        """True when the build output dir holds a manifest and type declarations."""
        return all((build_dir / marker).exists() for marker in BUILD_MARKERS)

    def is_linked(self, directory: Path, package: str) -> bool:
        """True when ``node_modules/<package>`` is a symlink."""
        return (directory / "node_modules" / package).is_symlink()

    def get_package_name(self, directory: Path) -> str | None:
        manifest = read_manifest(directory)
        if manifest is None:
            return None
        name = manifest.get("name")
        return name if isinstance(name, str) and name else None

    def list_scripts(self, directory: Path) -> list[str]:
        """Script names, excluding pre/post lifecycle hooks."""
        manifest = read_manifest(directory) or {}
        scripts = manifest.get("scripts") or {}
        return sorted(s for s in scripts if not s.startswith(("pre", "post")))

    def scoped_packages(self, directory: Path, scope: str) -> list[str]:
        """Dependencies and devDependencies under ``scope`` (e.g. ``@acme``), sorted."""
        manifest = read_manifest(directory) or {}
        prefix = scope.rstrip("/") + "/"
        names: set[str] = set()
        for section in ("dependencies", "devDependencies"):
            deps = manifest.get(section) or {}
            names.update(name for name in deps if name.startswith(prefix))
        return sorted(names)

    # -- installs ------------------------------------------------------------

    def install(self, directory: Path) -> CommandResult:
        return run_shell("npm install", cwd=directory, env=self.env, shell_path=self.shell, quiet=True)

    def install_latest(self, directory: Path, package: str) -> CommandResult:
        return run_shell(
            f"npm install {package}@latest --save",
            cwd=directory,
            env=self.env,
            shell_path=self.shell,
            quiet=True,
        )


def check_npm() -> str:
    """Path to npm; raises ToolMissingError with an install hint otherwise."""
    return require_tool("npm")
