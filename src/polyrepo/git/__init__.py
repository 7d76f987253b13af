"""Git wrappers used by the sync engine and workspace commands."""

from .repo import GitCommandError, GitRepo, build_remote_url, clone, repo_name_from_remote

__all__ = [
    "GitRepo",
    "GitCommandError",
    "clone",
    "build_remote_url",
    "repo_name_from_remote",
]
