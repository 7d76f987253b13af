"""Workspace synchronization: parallel fetch, then multi-branch rebase.

Syncing all repos runs in two phases:

1. Fetch. Every cloned repo fetches its remote concurrently, one thread per
   repo, output discarded and failures ignored. Fetch never touches the
   working tree, so this is safe to parallelize. All fetches finish before
   phase 2 starts.
2. Rebase. One repo at a time, because checkout and rebase mutate the single
   working tree of each checkout:

   - a dirty tree is skipped untouched, with its status attached;
   - with ``no_rebase`` the repo is pulled and nothing else happens;
   - otherwise the current branch is rebased onto ``<remote>/<target>``, then
     every other local branch except the target is checked out and rebased,
     aborting any rebase that conflicts;
   - the originally checked-out branch is always restored.

The lockfile fingerprint (size + mtime) before and after phase 2 tells the
optional install step which repos need ``npm install``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .config import SyncOptions
from .git.repo import GitCommandError, GitRepo
from .npm.client import NpmClient
from .utils.errors import WorkspaceError
from .workspace.config import SiblingLink, Workspace

logger = logging.getLogger(__name__)

Fingerprint = tuple[int, int] | None


class SyncStatus(str, Enum):
    """Outcome of syncing one repository."""

    SYNCED = "synced"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Per-repository sync record, consumed by the reporter and install step."""

    name: str
    branch: str = ""
    status: SyncStatus = SyncStatus.SKIPPED
    message: str = ""
    ahead: int = 0
    behind: int = 0
    dirty: bool = False
    dirty_status: str = ""
    lockfile_changed: bool = False


@dataclass
class SyncSummary:
    """Results of a full sync in name order, with aggregate counts."""

    results: list[SyncResult] = field(default_factory=list)

    def count(self, status: SyncStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def synced(self) -> int:
        return self.count(SyncStatus.SYNCED)

    @property
    def skipped(self) -> int:
        return self.count(SyncStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(SyncStatus.FAILED)


@dataclass
class PackageUpdate:
    repo: str
    package: str
    ok: bool


def lockfile_fingerprint(path: Path) -> Fingerprint:
    """(size, mtime_ns) of ``path``, or None if it does not exist."""
    try:
        st = path.stat()
    except FileNotFoundError:
        return None
    return st.st_size, st.st_mtime_ns


class SyncEngine:
    """Synchronizes the repos of one workspace.

    Args:
        workspace: Loaded workspace.
        options: Options for this invocation.
        git_factory: Builds the RepoOps object for a checkout directory.
        npm: npm client for the install/update steps.
        on_progress: Called with human-readable progress lines.
    """

    def __init__(
        self,
        workspace: Workspace,
        options: SyncOptions,
        git_factory: Callable[[Path], GitRepo] = GitRepo,
        npm: NpmClient | None = None,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self.workspace = workspace
        self.options = options
        self.git_factory = git_factory
        self.npm = npm or NpmClient(shell=options.shell)
        self.on_progress = on_progress

    def _progress(self, msg: str) -> None:
        logger.debug(msg)
        if self.on_progress:
            self.on_progress(msg)

    # =========================================================================
    # Entry points
    # =========================================================================

    def sync_one(self, name: str) -> SyncResult:
        """Fetch and rebase a single repo.

        Raises:
            RepoNotFoundError: unknown repo name.
            WorkspaceError: the repo is not cloned.
        """
        self.workspace.get_repo(name)
        if not self.workspace.is_cloned(name):
            raise WorkspaceError(
                f"Repo directory missing for '{name}'",
                suggestion=f"Run 'polyrepo workspace use {name}' to clone it",
            )

        git = self.git_factory(self.workspace.repo_dir(name))
        self.fetch_all([git])
        return self.sync_repo(name, git)

    def sync_all(self) -> SyncSummary:
        """Two-phase sync of every repo, results in name order."""
        names = self.workspace.sorted_names()
        cloned = [n for n in names if self.workspace.is_cloned(n)]
        repos = {n: self.git_factory(self.workspace.repo_dir(n)) for n in cloned}

        self._progress(f"Fetching {len(cloned)} repos...")
        self.fetch_all(list(repos.values()))

        summary = SyncSummary()
        for name in names:
            if name not in repos:
                summary.results.append(SyncResult(name=name, status=SyncStatus.SKIPPED, message="not cloned"))
                continue
            summary.results.append(self.sync_repo(name, repos[name]))
        return summary

    # =========================================================================
    # Phase 1
    # =========================================================================

    def fetch_all(self, repos: list[GitRepo]) -> None:
        """Fetch every repo concurrently and wait for all of them."""
        if not repos:
            return

        def fetch(git: GitRepo) -> None:
            try:
                ok = git.fetch(self.options.remote)
            except Exception as e:
                logger.debug(f"fetch raised in {git.path}: {e}")
                return
            if not ok:
                logger.debug(f"fetch failed in {git.path}")

        with ThreadPoolExecutor(max_workers=len(repos)) as executor:
            list(executor.map(fetch, repos))

    # =========================================================================
    # Phase 2
    # =========================================================================

    def target_branch(self, name: str, git: GitRepo) -> str:
        """Run override, else repo default, else workspace default, else the remote's default."""
        if self.options.branch:
            return self.options.branch
        repo = self.workspace.repos.get(name)
        if repo is not None and repo.default_branch:
            return repo.default_branch
        if self.workspace.default_branch:
            return self.workspace.default_branch
        return git.default_branch(fallback=self.options.fallback_branch, remote=self.options.remote)

    def sync_repo(self, name: str, git: GitRepo) -> SyncResult:
        """Rebase phase for one cloned repo."""
        result = SyncResult(name=name)
        try:
            current = git.current_branch()
        except GitCommandError as e:
            result.status = SyncStatus.FAILED
            result.message = str(e)
            return result

        result.branch = current
        if current == "HEAD":
            result.message = "detached HEAD"
            return result

        target = self.target_branch(name, git)
        upstream = f"{self.options.remote}/{target}"
        result.ahead, result.behind = git.ahead_behind(current, upstream)

        if git.is_dirty():
            result.dirty = True
            result.dirty_status = self._dirty_status(git)
            result.status = SyncStatus.SKIPPED
            result.message = "dirty working tree"
            return result

        if self.options.no_rebase:
            pulled = git.pull()
            if pulled.ok:
                result.status = SyncStatus.SYNCED
            else:
                result.status = SyncStatus.FAILED
                result.message = pulled.stderr.strip() or "git pull failed"
            return result

        lockfile = self.workspace.repo_dir(name) / self.options.lockfile
        lock_before = lockfile_fingerprint(lockfile)

        try:
            branches = git.list_local_branches()
        except GitCommandError as e:
            result.status = SyncStatus.FAILED
            result.message = str(e)
            return result

        if not git.rebase(upstream):
            git.rebase_abort()
            result.status = SyncStatus.FAILED
            result.message = f"rebase {current} onto {upstream} failed"
            return result

        rebased, failed, restored = self._rebase_other_branches(git, branches, current, target, upstream)

        result.lockfile_changed = lockfile_fingerprint(lockfile) != lock_before
        result.ahead, result.behind = git.ahead_behind(current, upstream)
        result.status = SyncStatus.SYNCED

        parts = []
        if rebased:
            parts.append(f"+{len(rebased)} branches rebased")
        if failed:
            parts.append(f"{len(failed)} branch rebase(s) failed: {', '.join(failed)}")
        if not restored:
            result.status = SyncStatus.FAILED
            parts.append(f"could not check out {current} again")
        result.message = ", ".join(parts)
        return result

    def _rebase_other_branches(
        self,
        git: GitRepo,
        branches: list[str],
        current: str,
        target: str,
        upstream: str,
    ) -> tuple[list[str], list[str], bool]:
        """Rebase every local branch except ``current`` and ``target``.

        Failures are recorded and skipped. ``current`` is checked out again
        afterwards no matter what happened in between; the returned flag
        is False when that checkout failed.
        """
        rebased: list[str] = []
        failed: list[str] = []
        try:
            for branch in branches:
                if branch in (current, target):
                    continue
                if not git.checkout(branch):
                    failed.append(branch)
                    continue
                if git.rebase(upstream):
                    rebased.append(branch)
                else:
                    git.rebase_abort()
                    failed.append(branch)
        finally:
            restored = git.checkout(current)
            if not restored:
                logger.error(f"could not restore {current} in {git.path}")
        return rebased, failed, restored

    def _dirty_status(self, git: GitRepo) -> str:
        try:
            status = git.status_color()
            if status:
                return status
        except GitCommandError:
            pass
        try:
            return git.status()
        except GitCommandError:
            return ""

    # =========================================================================
    # Downstream steps
    # =========================================================================

    def install_changed(self, results: list[SyncResult]) -> list[str]:
        """npm install in repos whose lockfile changed; returns repos installed."""
        installed: list[str] = []
        for r in results:
            if not r.lockfile_changed:
                continue
            repo_dir = self.workspace.repo_dir(r.name)
            if not (repo_dir / "package.json").exists():
                continue
            outcome = self.npm.install(repo_dir)
            if outcome.ok:
                self._progress(f"npm install {r.name} ✓")
                installed.append(r.name)
            else:
                self._progress(f"npm install {r.name} ✗ (exit {outcome.returncode})")
        return installed

    def update_scoped_packages(self) -> list[PackageUpdate]:
        """Upgrade every workspace-scoped dependency to latest, one at a time."""
        scope = self.workspace.package_scope
        updates: list[PackageUpdate] = []
        if not scope:
            self._progress("No package_scope set in workspace.toml; nothing to update")
            return updates

        for name in self.workspace.sorted_names():
            if not self.workspace.is_cloned(name):
                continue
            repo_dir = self.workspace.repo_dir(name)
            for package in self.npm.scoped_packages(repo_dir, scope):
                outcome = self.npm.install_latest(repo_dir, package)
                mark = "✓" if outcome.ok else "✗"
                self._progress(f"{name}: {package}@latest {mark}")
                updates.append(PackageUpdate(repo=name, package=package, ok=outcome.ok))
        return updates

    def link_siblings(self, only_repo: str | None = None) -> list[tuple[SiblingLink, str]]:
        """Create the relative symlinks declared in ``[[links]]``.

        Valid links are left alone, broken links are replaced, and a real file
        or directory at the link path is never touched.

        Returns:
            (link, state) pairs, state one of linked/ok/blocked/missing/error.
        """
        outcomes: list[tuple[SiblingLink, str]] = []
        for link in self.workspace.sibling_links:
            if only_repo and link.repo != only_repo:
                continue
            repo_dir = self.workspace.root / self._repo_path(link.repo)
            target_dir = self.workspace.root / self._repo_path(link.target)
            if not repo_dir.is_dir() or not target_dir.is_dir():
                outcomes.append((link, "missing"))
                continue

            link_path = repo_dir / link.target
            if link_path.is_symlink():
                if link_path.exists():
                    outcomes.append((link, "ok"))
                    continue
                link_path.unlink()
            elif link_path.exists():
                outcomes.append((link, "blocked"))
                continue

            relative = os.path.relpath(target_dir, repo_dir)
            try:
                link_path.symlink_to(relative, target_is_directory=True)
            except OSError as e:
                logger.warning(f"symlink {link_path} -> {relative} failed: {e}")
                outcomes.append((link, "error"))
                continue
            outcomes.append((link, "linked"))
        return outcomes

    def _repo_path(self, name: str) -> str:
        repo = self.workspace.repos.get(name)
        return repo.path if repo else name
