"""User settings and per-invocation options for polyrepo.

Settings are stored at ~/.polyrepo/config.toml and organized into sections.

Configuration loading priority:
1. Environment variables (highest)
2. Config file (~/.polyrepo/config.toml, or $POLYREPO_CONFIG)
3. Defaults (lowest)

Sections:
    [core]   - git remote, fallback branch, lockfile name, login shell
    [aws]    - default region and parameter environment
    [ui]     - log level

Command handlers never read global flags. Each invocation builds a
SyncOptions or RunOptions value once and passes it down explicitly.

Example:
    from polyrepo.config import load_settings

    settings = load_settings()
    print(settings.core.fallback_branch)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Default config location
DEFAULT_CONFIG_DIR = Path.home() / ".polyrepo"
DEFAULT_CONFIG_FILE = "config.toml"

LOG_LEVELS = ("debug", "info", "warning", "error")


# =============================================================================
# Configuration Sections
# =============================================================================


@dataclass
class CoreSettings:
    """Core settings.

    Attributes:
        remote: Remote that sync fetches from and rebases onto.
        fallback_branch: Target branch when nothing else names one.
        lockfile: Lockfile whose fingerprint triggers installs after sync.
        shell: Login shell used for npm install steps ("" = plain sh).
    """

    remote: str = "origin"
    fallback_branch: str = "main"
    lockfile: str = "package-lock.json"
    shell: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoreSettings:
        """Create from dictionary."""
        return cls(
            remote=data.get("remote", "origin"),
            fallback_branch=data.get("fallback_branch", "main"),
            lockfile=data.get("lockfile", "package-lock.json"),
            shell=data.get("shell", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "remote": self.remote,
            "fallback_branch": self.fallback_branch,
            "lockfile": self.lockfile,
            "shell": self.shell,
        }


@dataclass
class AWSSettings:
    """Parameter store defaults.

    Attributes:
        region: Region used when the workspace does not set one.
        param_env: Environment name under /app/<env>/ when none is given.
    """

    region: str = "us-east-1"
    param_env: str = "beta"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AWSSettings:
        """Create from dictionary."""
        return cls(
            region=data.get("region", "us-east-1"),
            param_env=data.get("param_env", "beta"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"region": self.region, "param_env": self.param_env}


@dataclass
class UISettings:
    """Output settings."""

    log_level: str = "warning"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UISettings:
        """Create from dictionary."""
        level = str(data.get("log_level", "warning")).lower()
        if level not in LOG_LEVELS:
            logger.warning(f"Unknown log_level '{level}', using 'warning'")
            level = "warning"
        return cls(log_level=level)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"log_level": self.log_level}


@dataclass
class Settings:
    """Top-level settings container."""

    core: CoreSettings = field(default_factory=CoreSettings)
    aws: AWSSettings = field(default_factory=AWSSettings)
    ui: UISettings = field(default_factory=UISettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Settings:
        """Create from dictionary."""
        return cls(
            core=CoreSettings.from_dict(data.get("core", {})),
            aws=AWSSettings.from_dict(data.get("aws", {})),
            ui=UISettings.from_dict(data.get("ui", {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for TOML serialization."""
        return {
            "core": self.core.to_dict(),
            "aws": self.aws.to_dict(),
            "ui": self.ui.to_dict(),
        }

    def apply_env_overrides(self) -> None:
        """Apply environment variable overrides."""
        if shell := os.environ.get("POLYREPO_SHELL"):
            self.core.shell = shell
        if remote := os.environ.get("POLYREPO_REMOTE"):
            self.core.remote = remote
        if region := os.environ.get("AWS_REGION"):
            self.aws.region = region
        if level := os.environ.get("POLYREPO_LOG_LEVEL"):
            if level.lower() in LOG_LEVELS:
                self.ui.log_level = level.lower()


def get_config_path() -> Path:
    """Get the path to the settings file."""
    if custom_path := os.environ.get("POLYREPO_CONFIG"):
        return Path(custom_path)
    return DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from TOML, then apply environment overrides.

    A missing or unreadable file yields defaults; the error is logged.
    """
    import tomllib

    path = config_path or get_config_path()
    settings = Settings()

    if path.exists():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
            settings = Settings.from_dict(data)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Failed to load settings from {path}: {e}")
            settings = Settings()

    settings.config_path = path
    settings.apply_env_overrides()
    return settings


def save_settings(settings: Settings, config_path: Path | None = None) -> Path:
    """Write settings to TOML and return the path written."""
    import tomli_w

    path = config_path or settings.config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        tomli_w.dump(settings.to_dict(), f)
    settings.config_path = path
    logger.info(f"Saved settings to {path}")
    return path


# =============================================================================
# Per-invocation options
# =============================================================================


@dataclass(frozen=True)
class SyncOptions:
    """Options for one sync invocation.

    Attributes:
        branch: Target branch override for every repo ("" = per-repo resolution).
        no_rebase: Use a plain pull instead of the multi-branch rebase.
        env_name: Refresh the workspace .env from this parameter environment.
        install: npm install where the lockfile changed.
        update: Upgrade workspace-scoped packages to latest.
        remote: Remote to fetch and rebase onto.
        fallback_branch: Last-resort target branch.
        lockfile: Lockfile name used for change detection.
        shell: Login shell for install steps.
    """

    branch: str = ""
    no_rebase: bool = False
    env_name: str = ""
    install: bool = False
    update: bool = False
    remote: str = "origin"
    fallback_branch: str = "main"
    lockfile: str = "package-lock.json"
    shell: str = ""

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> SyncOptions:
        return cls(
            remote=settings.core.remote,
            fallback_branch=settings.core.fallback_branch,
            lockfile=settings.core.lockfile,
            shell=settings.core.shell,
            **overrides,
        )


@dataclass(frozen=True)
class RunOptions:
    """Options for one run invocation.

    Attributes:
        recursive: Build dependencies first (only for 'build').
        published: Force published packages, never link local builds.
        watch: Prefer the watch variant of 'test'.
    """

    recursive: bool = False
    published: bool = False
    watch: bool = False
