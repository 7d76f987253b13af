"""Link state machine between a provider's local build and its consumer.

For every ``[[implicit]]`` edge the consumer resolves the provider's package
either from the registry (published) or from the provider's local build output
through an npm link. The state is never stored; it is observed fresh on each
call from two facts:

- does the provider's build output exist (``NpmClient.is_built``)?
- is ``<consumer>/node_modules/<package>`` a symlink (``NpmClient.is_linked``)?

=============== ============ ==========
state           built        linked
=============== ============ ==========
NOT_BUILT       no           (any)
BUILT_UNLINKED  yes          no
LINKED          yes          yes
=============== ============ ==========

`LinkStateMachine.reconcile` moves BUILT_UNLINKED to LINKED and leaves the
other states alone, so calling it repeatedly is safe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .npm.client import NpmClient
from .workspace.config import ImplicitEdge, Workspace

logger = logging.getLogger(__name__)

REASON_NOT_BUILT = "no local build, using published package"
REASON_ALREADY_LINKED = "already linked"


class LinkState(str, Enum):
    """Observed relationship between a provider build and its consumer."""

    NOT_BUILT = "not_built"
    BUILT_UNLINKED = "built_unlinked"
    LINKED = "linked"


class OutcomeKind(str, Enum):
    SKIPPED = "skipped"
    LINKED = "linked"
    FAILED = "failed"


@dataclass(frozen=True)
class LinkOutcome:
    """Result of one reconcile call."""

    kind: OutcomeKind
    provider: str
    consumer: str
    package: str = ""
    reason: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.kind != OutcomeKind.FAILED

    @classmethod
    def skipped(cls, edge: ImplicitEdge, package: str, reason: str) -> LinkOutcome:
        return cls(OutcomeKind.SKIPPED, edge.provider, edge.consumer, package, reason=reason)

    @classmethod
    def linked(cls, edge: ImplicitEdge, package: str) -> LinkOutcome:
        return cls(OutcomeKind.LINKED, edge.provider, edge.consumer, package)

    @classmethod
    def failed(cls, edge: ImplicitEdge, package: str, error: str) -> LinkOutcome:
        return cls(OutcomeKind.FAILED, edge.provider, edge.consumer, package, error=error)

    def describe(self) -> str:
        if self.kind == OutcomeKind.LINKED:
            return f"Linked: {self.consumer} now uses local {self.provider}"
        if self.kind == OutcomeKind.FAILED:
            return f"Linking {self.provider} -> {self.consumer} failed: {self.error}"
        if self.reason == REASON_NOT_BUILT:
            return f"Using published {self.package or self.provider} (local not built)"
        return f"Using local {self.provider} in {self.consumer} ({self.reason})"


class LinkStateMachine:
    """Reconciles implicit edges of a workspace using an npm client."""

    def __init__(self, workspace: Workspace, npm: NpmClient) -> None:
        self.workspace = workspace
        self.npm = npm

    def build_dir(self, edge: ImplicitEdge) -> Path:
        return self.workspace.repo_dir(edge.provider) / edge.artifact_dir

    def package_name(self, edge: ImplicitEdge) -> str:
        """Package the consumer imports: the rule's, else the build output's manifest name."""
        if edge.package:
            return edge.package
        return self.npm.get_package_name(self.build_dir(edge)) or ""

    def observe(self, edge: ImplicitEdge) -> LinkState:
        build_dir = self.build_dir(edge)
        if not self.npm.is_built(build_dir):
            return LinkState.NOT_BUILT
        package = self.package_name(edge)
        consumer_dir = self.workspace.repo_dir(edge.consumer)
        if package and self.npm.is_linked(consumer_dir, package):
            return LinkState.LINKED
        return LinkState.BUILT_UNLINKED

    def reconcile(self, edge: ImplicitEdge) -> LinkOutcome:
        """Point the consumer at the provider's local build when one exists.

        Registration (``npm link`` in the build output) is not rolled back when
        the consumer-side link fails; re-registering is harmless.
        """
        build_dir = self.build_dir(edge)
        if not self.npm.is_built(build_dir):
            return LinkOutcome.skipped(edge, edge.package, REASON_NOT_BUILT)

        package = self.package_name(edge)
        if not package:
            return LinkOutcome.failed(edge, "", f"no package name in {build_dir / 'package.json'}")

        consumer_dir = self.workspace.repo_dir(edge.consumer)
        if self.npm.is_linked(consumer_dir, package):
            return LinkOutcome.skipped(edge, package, REASON_ALREADY_LINKED)

        logger.info(f"Linking local {edge.provider} -> {edge.consumer} ({package})")
        registered = self.npm.link(build_dir)
        if not registered.ok:
            return LinkOutcome.failed(
                edge, package, f"npm link in {edge.provider} failed: {registered.stderr.strip()}"
            )

        consumed = self.npm.link_package(consumer_dir, package)
        if not consumed.ok:
            return LinkOutcome.failed(
                edge, package, f"npm link {package} in {edge.consumer} failed: {consumed.stderr.strip()}"
            )

        return LinkOutcome.linked(edge, package)

    def restore_published(self, edge: ImplicitEdge) -> LinkOutcome:
        """Drop a consumer's link so it resolves the published package again."""
        package = self.package_name(edge)
        consumer_dir = self.workspace.repo_dir(edge.consumer)
        if not package or not self.npm.is_linked(consumer_dir, package):
            return LinkOutcome.skipped(edge, package, "not linked")

        result = self.npm.unlink(consumer_dir, package)
        if not result.ok:
            return LinkOutcome.failed(edge, package, f"npm unlink {package} failed: {result.stderr.strip()}")
        return LinkOutcome.skipped(edge, package, "unlinked, using published package")

    def consumer_exists(self, edge: ImplicitEdge) -> bool:
        return (
            self.workspace.has_repo(edge.consumer)
            and self.workspace.has_repo(edge.provider)
            and self.workspace.is_cloned(edge.consumer)
        )
