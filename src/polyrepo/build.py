"""Script execution and dependency-ordered builds.

A script name (``build``, ``test``, ``lint``...) is resolved to a shell
command per repo:

1. With a package.json: ``test:watch`` in watch mode, ``build:all`` for repos
   that provide an implicit edge, ``npm test`` for test, ``npm run <script>``
   otherwise. The script must exist in the manifest.
2. Without one: Gradle wrapper, ``make``, or the go toolchain.

``build`` additionally reconciles npm links around the command so a
consumer picks up its provider's local output (see :mod:`polyrepo.linking`).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from .config import RunOptions
from .linking import LinkOutcome, LinkStateMachine, OutcomeKind
from .npm.client import NpmClient, read_manifest
from .process import EMPTY_ENV, EnvOverlay, run_shell
from .resolver import resolve_build_order
from .utils.errors import BuildError, ScriptNotFoundError, WorkspaceError
from .workspace.config import ImplicitEdge, Workspace

logger = logging.getLogger(__name__)

GRADLE_FILES = ("build.gradle", "build.gradle.kts")


class BuildStage(str, Enum):
    """Lifecycle of one repo build. Only RUNNING -> FAILED aborts."""

    PENDING = "pending"
    LINKING_PRE = "linking_pre"
    RUNNING = "running"
    LINKING_POST = "linking_post"
    DONE = "done"
    FAILED = "failed"


def fallback_command(repo_dir: Path, script: str) -> str | None:
    """Command for repos without a package.json, from their build files."""
    has_gradle = any((repo_dir / f).exists() for f in GRADLE_FILES)
    if script == "build":
        if has_gradle:
            return "./gradlew build"
        if (repo_dir / "Makefile").exists():
            return "make"
        if (repo_dir / "go.mod").exists():
            return "go build ./..."
    elif script == "test":
        if has_gradle:
            return "./gradlew test"
        if (repo_dir / "go.mod").exists():
            return "go test ./..."
    return None


def resolve_script_command(
    repo_dir: Path,
    script: str,
    watch: bool = False,
    prefer_build_all: bool = False,
) -> str | None:
    """Shell command for ``script`` in ``repo_dir``, or None if there is none.

    Args:
        repo_dir: Repository checkout.
        script: Requested script name.
        watch: Use ``test:watch`` for ``test`` when the manifest has it.
        prefer_build_all: Use ``build:all`` for ``build`` when the manifest has it.
    """
    if not (repo_dir / "package.json").exists():
        return fallback_command(repo_dir, script)

    manifest = read_manifest(repo_dir)
    if manifest is None:
        return None
    scripts = manifest.get("scripts") or {}

    if script == "test" and watch and "test:watch" in scripts:
        return "npm run test:watch"

    actual = script
    if script == "build" and prefer_build_all and "build:all" in scripts:
        actual = "build:all"

    if actual not in scripts:
        return None
    if actual == "test":
        return "npm test"
    return f"npm run {actual}"


class BuildOrchestrator:
    """Runs scripts in workspace repos, optionally building dependencies first.

    Args:
        workspace: Loaded workspace.
        options: Options for this invocation.
        npm: npm client used for link reconciliation.
        env: Environment overlay for script processes.
        shell: Login shell for scripts ("" runs them through sh).
        on_progress: Called with human-readable progress lines.
    """

    def __init__(
        self,
        workspace: Workspace,
        options: RunOptions,
        npm: NpmClient | None = None,
        env: EnvOverlay = EMPTY_ENV,
        shell: str = "",
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self.workspace = workspace
        self.options = options
        self.env = env
        self.shell = shell
        self.npm = npm or NpmClient(env=env, shell=shell)
        self.links = LinkStateMachine(workspace, self.npm)
        self.on_progress = on_progress
        self.stages: dict[str, BuildStage] = {}

    def _progress(self, msg: str) -> None:
        logger.debug(msg)
        if self.on_progress:
            self.on_progress(msg)

    def build(self, name: str, recursive: bool = False) -> None:
        """Build ``name``; with ``recursive`` its dependencies are built first.

        Raises:
            BuildError: naming the first dependency that failed, or the target.
            ScriptNotFoundError: a repo has no build command.
        """
        if recursive:
            self.build_dependencies(name)
        self.run_script(name, "build")

    def build_dependencies(self, name: str) -> list[str]:
        """Build every dependency of ``name`` in resolved order; returns those built."""
        self.workspace.get_repo(name)
        order = resolve_build_order(self.workspace, name)
        if not order:
            return []

        self._progress(f"Building dependencies first: {', '.join(order)}")
        built: list[str] = []
        for dep in order:
            if not self.workspace.is_cloned(dep):
                self._progress(f"Skipping {dep} (not cloned)")
                continue
            try:
                self.run_script(dep, "build")
            except BuildError as e:
                raise BuildError(name, e.script, e.returncode, dependency=dep) from e
            built.append(dep)
        return built

    def run_script(self, name: str, script: str) -> None:
        """Run ``script`` in repo ``name``, with link reconciliation for build.

        Raises:
            RepoNotFoundError: unknown repo.
            WorkspaceError: repo not cloned.
            ScriptNotFoundError: no command for the script.
            BuildError: the command exited non-zero.
        """
        repo_dir = self.workspace.repo_dir(name)
        if not repo_dir.is_dir():
            raise WorkspaceError(
                f"Repo directory {repo_dir} does not exist",
                suggestion=f"Run 'polyrepo sync {name}' after cloning it with 'polyrepo workspace use'",
            )

        command = resolve_script_command(
            repo_dir,
            script,
            watch=self.options.watch,
            prefer_build_all=self.workspace.is_provider(name),
        )
        if command is None:
            raise ScriptNotFoundError(name, script, self.npm.list_scripts(repo_dir))

        self.stages[name] = BuildStage.PENDING
        linking = script == "build"

        if linking:
            self.stages[name] = BuildStage.LINKING_PRE
            if self.options.published:
                self._restore_published(name)
            else:
                self._reconcile(self._edges_before(name))

        self.stages[name] = BuildStage.RUNNING
        self._progress(f"=== {name}: {command} ===")
        result = run_shell(command, cwd=repo_dir, env=self.env, shell_path=self.shell)
        if not result.ok:
            self.stages[name] = BuildStage.FAILED
            raise BuildError(name, script, result.returncode)

        if linking and not self.options.published:
            self.stages[name] = BuildStage.LINKING_POST
            self._reconcile(list(self.workspace.edges_for_provider(name)))

        self.stages[name] = BuildStage.DONE

    # -- linking ---------------------------------------------------------------

    def _edges_before(self, name: str) -> list[ImplicitEdge]:
        edges = list(self.workspace.edges_for_consumer(name))
        edges.extend(e for e in self.workspace.edges_for_provider(name) if e not in edges)
        return edges

    def _reconcile(self, edges: list[ImplicitEdge]) -> list[LinkOutcome]:
        outcomes = []
        for edge in edges:
            if not self.links.consumer_exists(edge):
                continue
            outcome = self.links.reconcile(edge)
            outcomes.append(outcome)
            if outcome.kind == OutcomeKind.FAILED:
                logger.warning(outcome.describe())
            self._progress(outcome.describe())
        return outcomes

    def _restore_published(self, name: str) -> None:
        for edge in self.workspace.edges_for_consumer(name):
            if not self.links.consumer_exists(edge):
                continue
            outcome = self.links.restore_published(edge)
            if outcome.kind == OutcomeKind.FAILED:
                logger.warning(outcome.describe())
            else:
                self._progress(f"{name}: {outcome.reason} ({outcome.package or edge.provider})")
