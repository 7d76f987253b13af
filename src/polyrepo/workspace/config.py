"""Workspace configuration for multi-repo sync and builds.

A workspace is a directory holding several repository checkouts plus a
``workspace.toml`` describing them:

    [workspace]
    name = "acme"
    default_branch = "main"
    profile = "acme-dev"
    region = "us-east-1"
    param_env = "beta"
    package_scope = "@acme"

    [workspace.env]
    NODE_OPTIONS = "--max-old-space-size=4096"

    [[repos]]
    name = "AppAPI"
    path = "AppAPI"
    remote = "acme/AppAPI"
    dependencies = ["Shared"]

    [[implicit]]
    provider = "AppModel"
    consumer = "AppAPI"
    package = "@acme/app-sdk"

    [[links]]
    repo = "ServiceCDK"
    target = "AppAPI"

    [params]
    customerUserPoolId = "USERPOOL_ID"

    [aliases]
    NEXT_PUBLIC_USERPOOL_ID = ["BUSINESS_USERPOOL_ID", "USERPOOL_ID"]

    [profiles]
    beta = "acme-beta"
    prod = "acme-prod"

The file is loaded once per command and the resulting Workspace is passed by
reference to the sync engine and build orchestrator.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..utils.errors import RepoNotFoundError, WorkspaceError, WorkspaceNotFoundError

logger = logging.getLogger(__name__)

WORKSPACE_FILE = "workspace.toml"

# Smithy TypeScript server SDK projection produced by a model repo build
DEFAULT_ARTIFACT_DIR = "smithy/build/smithyprojections/smithy/source/typescript-ssdk-codegen"


@dataclass(frozen=True)
class RepoDef:
    """A single repository in the workspace."""

    name: str
    path: str  # Relative to the workspace root
    remote: str = ""
    default_branch: str = ""  # Empty means "use workspace/remote default"
    dependencies: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for TOML serialization."""
        result: dict[str, Any] = {"name": self.name, "path": self.path}
        # TOML has no null, so unset optionals are omitted
        if self.remote:
            result["remote"] = self.remote
        if self.default_branch:
            result["default_branch"] = self.default_branch
        if self.dependencies:
            result["dependencies"] = list(self.dependencies)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepoDef:
        """Create from dictionary."""
        name = data.get("name", "")
        deps = data.get("dependencies", [])
        if not isinstance(deps, list):
            raise WorkspaceError(f"Repo '{name}': dependencies must be a list")
        return cls(
            name=name,
            path=data.get("path", name),
            remote=data.get("remote", ""),
            default_branch=data.get("default_branch", ""),
            dependencies=tuple(str(d) for d in deps),
        )


@dataclass(frozen=True)
class ImplicitEdge:
    """Build-order and link rule between a provider repo and its consumer.

    The provider (e.g. a Smithy model) produces an npm package under
    ``artifact_dir`` that the consumer (e.g. the API implementing it) imports
    as ``package``.
    """

    provider: str
    consumer: str
    package: str = ""  # Empty: read from the provider's build output package.json
    artifact_dir: str = DEFAULT_ARTIFACT_DIR

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for TOML serialization."""
        result: dict[str, Any] = {"provider": self.provider, "consumer": self.consumer}
        if self.package:
            result["package"] = self.package
        if self.artifact_dir != DEFAULT_ARTIFACT_DIR:
            result["artifact_dir"] = self.artifact_dir
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImplicitEdge:
        """Create from dictionary."""
        return cls(
            provider=data.get("provider", ""),
            consumer=data.get("consumer", ""),
            package=data.get("package", ""),
            artifact_dir=data.get("artifact_dir", DEFAULT_ARTIFACT_DIR),
        )


@dataclass(frozen=True)
class SiblingLink:
    """A relative symlink ``<repo>/<target> -> ../<target>``."""

    repo: str
    target: str

    def to_dict(self) -> dict[str, Any]:
        return {"repo": self.repo, "target": self.target}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SiblingLink:
        return cls(repo=data.get("repo", ""), target=data.get("target", ""))


@dataclass
class Workspace:
    """A workspace root plus the repos and rules it declares."""

    name: str = "workspace"
    root: Path = field(default_factory=Path.cwd)
    repos: dict[str, RepoDef] = field(default_factory=dict)
    implicit_edges: list[ImplicitEdge] = field(default_factory=list)
    sibling_links: list[SiblingLink] = field(default_factory=list)
    default_branch: str = ""
    profile: str = ""
    region: str = ""
    param_env: str = ""
    package_scope: str = ""
    env: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)  # SSM suffix -> env key
    env_aliases: dict[str, list[str]] = field(default_factory=dict)
    aws_profiles: dict[str, str] = field(default_factory=dict)  # short name -> AWS CLI profile

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for TOML serialization."""
        header: dict[str, Any] = {"name": self.name}
        for key in ("default_branch", "profile", "region", "param_env", "package_scope"):
            value = getattr(self, key)
            if value:
                header[key] = value
        if self.env:
            header["env"] = dict(self.env)

        result: dict[str, Any] = {
            "workspace": header,
            "repos": [self.repos[name].to_dict() for name in sorted(self.repos)],
        }
        if self.implicit_edges:
            result["implicit"] = [e.to_dict() for e in self.implicit_edges]
        if self.sibling_links:
            result["links"] = [link.to_dict() for link in self.sibling_links]
        if self.params:
            result["params"] = dict(self.params)
        if self.env_aliases:
            result["aliases"] = {k: list(v) for k, v in self.env_aliases.items()}
        if self.aws_profiles:
            result["profiles"] = dict(self.aws_profiles)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], root: Path) -> Workspace:
        """Create from dictionary.

        Raises:
            WorkspaceError: if two repos share a name.
        """
        header = data.get("workspace", {})

        repos: dict[str, RepoDef] = {}
        repos_data = data.get("repos", [])
        if isinstance(repos_data, list):
            for entry in repos_data:
                repo = RepoDef.from_dict(entry)
                if not repo.name:
                    raise WorkspaceError("Repo entry without a name in workspace.toml")
                if repo.name in repos:
                    raise WorkspaceError(f"Duplicate repo name '{repo.name}' in workspace.toml")
                repos[repo.name] = repo

        edges = [ImplicitEdge.from_dict(e) for e in data.get("implicit", []) if isinstance(e, dict)]
        links = [SiblingLink.from_dict(e) for e in data.get("links", []) if isinstance(e, dict)]

        aliases: dict[str, list[str]] = {}
        for key, sources in data.get("aliases", {}).items():
            aliases[key] = [sources] if isinstance(sources, str) else list(sources)

        return cls(
            name=header.get("name", root.name),
            root=root,
            repos=repos,
            implicit_edges=edges,
            sibling_links=links,
            default_branch=header.get("default_branch", ""),
            profile=header.get("profile", ""),
            region=header.get("region", ""),
            param_env=header.get("param_env", ""),
            package_scope=header.get("package_scope", ""),
            env={k: str(v) for k, v in header.get("env", {}).items()},
            params={k: str(v) for k, v in data.get("params", {}).items()},
            env_aliases=aliases,
            aws_profiles={k: str(v) for k, v in data.get("profiles", {}).items()},
        )

    def get_repo(self, name: str) -> RepoDef:
        """Get a repository by name.

        Raises:
            RepoNotFoundError: if the name is not part of the workspace.
        """
        try:
            return self.repos[name]
        except KeyError:
            raise RepoNotFoundError(name) from None

    def has_repo(self, name: str) -> bool:
        return name in self.repos

    def repo_dir(self, name: str) -> Path:
        """Absolute checkout directory of a repo."""
        return self.root / self.get_repo(name).path

    def is_cloned(self, name: str) -> bool:
        return self.repo_dir(name).is_dir()

    def sorted_names(self) -> list[str]:
        return sorted(self.repos)

    def add_repo(self, repo: RepoDef) -> bool:
        """Add a repository.

        Returns True if added, False if the name is already taken.
        """
        if repo.name in self.repos:
            logger.warning(f"Repository '{repo.name}' already exists in workspace")
            return False
        self.repos[repo.name] = repo
        return True

    def edges_for_consumer(self, name: str) -> Iterator[ImplicitEdge]:
        """Implicit edges whose consumer is ``name``, in rule order."""
        return (e for e in self.implicit_edges if e.consumer == name)

    def edges_for_provider(self, name: str) -> Iterator[ImplicitEdge]:
        """Implicit edges whose provider is ``name``, in rule order."""
        return (e for e in self.implicit_edges if e.provider == name)

    def is_provider(self, name: str) -> bool:
        return any(True for _ in self.edges_for_provider(name))

    def unknown_dependencies(self) -> dict[str, list[str]]:
        """Declared dependency names that match no repo, per repo.

        These edges are ignored by the resolver; this is for reporting only.
        """
        unknown: dict[str, list[str]] = {}
        for name in self.sorted_names():
            missing = [d for d in self.repos[name].dependencies if d not in self.repos]
            if missing:
                unknown[name] = missing
        return unknown

    def detect_repo(self, path: Path) -> str | None:
        """Name of the repo containing ``path`` (the repo dir or a subdirectory)."""
        target = path.resolve()
        for name, repo in self.repos.items():
            repo_dir = (self.root / repo.path).resolve()
            if target == repo_dir or repo_dir in target.parents:
                return name
        return None

    @property
    def config_path(self) -> Path:
        return self.root / WORKSPACE_FILE


def find_workspace_root(start: Path | None = None) -> Path:
    """Find the workspace root by walking up from ``start`` (default: cwd).

    ``POLYREPO_WORKSPACE`` short-circuits the search.

    Raises:
        WorkspaceNotFoundError: if no ancestor holds a workspace.toml.
    """
    if custom := os.environ.get("POLYREPO_WORKSPACE"):
        root = Path(custom).expanduser().resolve()
        if (root / WORKSPACE_FILE).is_file():
            return root
        raise WorkspaceNotFoundError(str(root))

    origin = (start or Path.cwd()).resolve()
    for candidate in (origin, *origin.parents):
        if (candidate / WORKSPACE_FILE).is_file():
            return candidate
    raise WorkspaceNotFoundError(str(origin))


def load_workspace(root: Path | None = None) -> Workspace:
    """Load a workspace from its root directory (found from cwd when omitted).

    Raises:
        WorkspaceNotFoundError: no workspace root.
        WorkspaceError: the file cannot be parsed.
    """
    import tomllib

    root = root or find_workspace_root()
    path = root / WORKSPACE_FILE

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except FileNotFoundError:
        raise WorkspaceNotFoundError(str(root)) from None
    except tomllib.TOMLDecodeError as e:
        raise WorkspaceError(f"Invalid {WORKSPACE_FILE}: {e}", suggestion=f"Fix the syntax in {path}") from e

    workspace = Workspace.from_dict(data, root=root)
    logger.debug(f"Loaded workspace '{workspace.name}' with {len(workspace.repos)} repos")
    return workspace


def save_workspace(workspace: Workspace) -> Path:
    """Write the workspace file and return its path."""
    import tomli_w

    workspace.root.mkdir(parents=True, exist_ok=True)
    path = workspace.config_path
    with open(path, "wb") as f:
        tomli_w.dump(workspace.to_dict(), f)
    logger.info(f"Saved workspace config to {path}")
    return path


def init_workspace(root: Path, name: str | None = None) -> Workspace:
    """Create a new, empty workspace at ``root``.

    Raises:
        WorkspaceError: if a workspace file already exists there.
    """
    root = root.expanduser().resolve()
    if (root / WORKSPACE_FILE).exists():
        raise WorkspaceError(
            f"Workspace already exists at {root}",
            suggestion="Use 'polyrepo workspace use <org/repo>' to add repos",
        )
    workspace = Workspace(name=name or root.name, root=root)
    save_workspace(workspace)
    logger.info(f"Initialized workspace: {workspace.name}")
    return workspace
