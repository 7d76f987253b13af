"""Process launching with an explicit environment overlay.

Every external tool polyrepo drives (git, npm, aws, gh, build scripts) is
started through :func:`run`. Extra environment variables are passed as an
immutable :class:`EnvOverlay` instead of mutating ``os.environ``; the overlay
is merged onto the parent environment only when the child is spawned.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

from .utils.errors import ToolMissingError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnvOverlay:
    """Read-only set of variables layered over the inherited environment."""

    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __bool__(self) -> bool:
        return bool(self.values)

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.values.get(key, default)

    def layered(self, other: Mapping[str, str]) -> EnvOverlay:
        """Return a new overlay with ``other`` applied on top of this one."""
        merged = dict(self.values)
        merged.update(other)
        return EnvOverlay(merged)

    def apply(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Build the full child environment: ``base`` (default os.environ) plus overlay."""
        env = dict(os.environ if base is None else base)
        env.update(self.values)
        return env


EMPTY_ENV = EnvOverlay()


@dataclass
class CommandResult:
    """Outcome of a finished process."""

    args: Sequence[str] | str
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def run(
    args: Sequence[str] | str,
    *,
    cwd: Path | str | None = None,
    env: EnvOverlay | None = None,
    capture: bool = False,
    quiet: bool = False,
    shell: bool = False,
) -> CommandResult:
    """Run a command to completion.

    Args:
        args: argv list, or a command string when ``shell`` is True.
        cwd: Working directory for the child.
        env: Variables layered over the inherited environment.
        capture: Capture stdout/stderr as text instead of inheriting them.
        quiet: Discard output entirely (ignored when ``capture`` is set).
        shell: Run ``args`` through ``sh -c``.

    Returns:
        CommandResult. A missing executable is reported as returncode 127.
    """
    child_env = env.apply() if env else None

    stdout: int | None = None
    stderr: int | None = None
    if capture:
        stdout = stderr = subprocess.PIPE
    elif quiet:
        stdout = stderr = subprocess.DEVNULL

    logger.debug("run %s (cwd=%s)", args, cwd)
    try:
        proc = subprocess.run(
            args,
            cwd=cwd,
            env=child_env,
            shell=shell,
            stdout=stdout,
            stderr=stderr,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        logger.debug("executable not found: %s", e)
        return CommandResult(args=args, returncode=127, stderr=str(e))

    return CommandResult(
        args=args,
        returncode=proc.returncode,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
    )


def run_shell(
    command: str,
    *,
    cwd: Path | str,
    env: EnvOverlay | None = None,
    shell_path: str | None = None,
    quiet: bool = False,
) -> CommandResult:
    """Run ``command`` through a shell.

    With ``shell_path`` the command goes through ``<shell> -l -c`` so that
    the user's login profile (node version managers, PATH tweaks) applies.
    """
    if shell_path:
        return run([shell_path, "-l", "-c", command], cwd=cwd, env=env, quiet=quiet)
    return run(command, cwd=cwd, env=env, quiet=quiet, shell=True)


def require_tool(name: str) -> str:
    """Return the full path of ``name`` or raise ToolMissingError."""
    path = shutil.which(name)
    if path is None:
        raise ToolMissingError(name)
    return path
