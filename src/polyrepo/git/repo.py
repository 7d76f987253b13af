"""Git operations against a single repository checkout.

`GitRepo` methods map one-to-one onto git commands so callers can reason
about side effects. Methods used by the sync engine on its hot path
(fetch, rebase, checkout) return a bool and discard git's output; the sync
engine interprets failures itself rather than catching exceptions.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..process import CommandResult, run
from ..utils.errors import ErrorInfo, PolyrepoError, error_git_operation

logger = logging.getLogger(__name__)


class GitCommandError(PolyrepoError):
    """A git command that must succeed did not."""

    def __init__(self, args: list[str], result: CommandResult) -> None:
        detail = result.stderr.strip() or f"exit {result.returncode}"
        super().__init__(f"git {' '.join(args)}: {detail}")
        self.operation = args[0] if args else "command"
        self.result = result

    def to_error_info(self) -> ErrorInfo:
        return error_git_operation(self.operation, str(self), self)


def build_remote_url(org_repo: str) -> str:
    """Expand ``org/repo`` into a GitHub SSH URL; full URLs pass through."""
    if org_repo.startswith(("git@", "https://", "ssh://")):
        return org_repo
    return f"git@github.com:{org_repo}.git"


def repo_name_from_remote(remote: str) -> str:
    """Repository name from ``org/repo``, an SSH remote, or an HTTPS URL."""
    remote = remote.rstrip("/")
    if ":" not in remote and "/" in remote:
        return remote.split("/")[-1]
    base = remote.replace(":", "/").split("/")[-1]
    return base.removesuffix(".git")


def clone(remote: str, target_dir: Path) -> None:
    """Clone ``remote`` into ``target_dir`` with git's progress shown."""
    args = ["clone", build_remote_url(remote), str(target_dir)]
    result = run(["git", *args])
    if not result.ok:
        raise GitCommandError(args, result)


class GitRepo:
    """A working tree at ``path``."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"GitRepo({str(self.path)!r})"

    # -- queries -------------------------------------------------------------

    def current_branch(self) -> str:
        return self._git(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def list_local_branches(self) -> list[str]:
        out = self._git(["for-each-ref", "--format=%(refname:short)", "refs/heads/"])
        return [line.strip() for line in out.splitlines() if line.strip()]

    def ahead_behind(self, branch: str, upstream: str) -> tuple[int, int]:
        """Commits ``branch`` is ahead of and behind ``upstream``; (0, 0) if unknown."""
        result = self._run(["rev-list", "--left-right", "--count", f"{branch}...{upstream}"])
        if not result.ok:
            return 0, 0
        parts = result.stdout.split()
        if len(parts) != 2:
            return 0, 0
        try:
            return int(parts[0]), int(parts[1])
        except ValueError:
            return 0, 0

    def status(self) -> str:
        return self._git(["status", "--short"]).strip()

    def status_color(self) -> str:
        return self._git(["-c", "color.status=always", "status", "--short"]).rstrip("\n")

    def is_dirty(self) -> bool:
        result = self._run(["status", "--porcelain"])
        return result.ok and bool(result.stdout.strip())

    def default_branch(self, fallback: str = "main", remote: str = "origin") -> str:
        """Branch advertised by ``<remote>/HEAD``, else the first of main/prod that exists."""
        result = self._run(["symbolic-ref", f"refs/remotes/{remote}/HEAD"])
        if result.ok and result.stdout.strip():
            return result.stdout.strip().split("/")[-1]

        for candidate in ("main", "prod"):
            if self._run(["rev-parse", "--verify", "--quiet", f"{remote}/{candidate}"]).ok:
                return candidate
        return fallback

    # -- mutations -----------------------------------------------------------

    def fetch(self, remote: str = "origin") -> bool:
        return self._run(["fetch", remote], quiet=True).ok

    def pull(self) -> CommandResult:
        return self._run(["pull"])

    def rebase(self, upstream: str) -> bool:
        return self._run(["rebase", upstream], quiet=True).ok

    def rebase_abort(self) -> bool:
        return self._run(["rebase", "--abort"], quiet=True).ok

    def checkout(self, branch: str) -> bool:
        return self._run(["checkout", branch], quiet=True).ok

    # -- plumbing ------------------------------------------------------------

    def _run(self, args: list[str], quiet: bool = False) -> CommandResult:
        return run(["git", *args], cwd=self.path, capture=not quiet, quiet=quiet)

    def _git(self, args: list[str]) -> str:
        result = self._run(args)
        if not result.ok:
            raise GitCommandError(args, result)
        return result.stdout
