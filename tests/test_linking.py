"""Tests for the provider/consumer link state machine."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from polyrepo.linking import (
    REASON_ALREADY_LINKED,
    REASON_NOT_BUILT,
    LinkState,
    LinkStateMachine,
    OutcomeKind,
)
from polyrepo.npm import NpmClient
from polyrepo.process import CommandResult
from polyrepo.workspace import ImplicitEdge, RepoDef, Workspace

PACKAGE = "@acme/app-sdk"


class FakeNpm(NpmClient):
    """Records npm calls; link_package creates the node_modules symlink like npm does."""

    def __init__(self, fail: set[str] | None = None) -> None:
        super().__init__()
        self.calls: list[tuple[str, ...]] = []
        self.fail = fail or set()

    def _result(self, op: str) -> CommandResult:
        if op in self.fail:
            return CommandResult(args=["npm", op], returncode=1, stderr=f"{op} exploded")
        return CommandResult(args=["npm", op], returncode=0)

    def link(self, directory: Path) -> CommandResult:
        self.calls.append(("link", str(directory)))
        return self._result("link")

    def link_package(self, directory: Path, package: str) -> CommandResult:
        self.calls.append(("link_package", str(directory), package))
        result = self._result("link_package")
        if result.ok:
            target = directory / "node_modules" / package
            target.parent.mkdir(parents=True, exist_ok=True)
            target.symlink_to(directory)
        return result

    def unlink(self, directory: Path, package: str) -> CommandResult:
        self.calls.append(("unlink", str(directory), package))
        result = self._result("unlink")
        if result.ok:
            (directory / "node_modules" / package).unlink()
        return result


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    for name in ("Model", "API"):
        (tmp_path / name).mkdir()
    return Workspace(
        name="acme",
        root=tmp_path,
        repos={
            "Model": RepoDef(name="Model", path="Model"),
            "API": RepoDef(name="API", path="API"),
        },
        implicit_edges=[ImplicitEdge(provider="Model", consumer="API", package=PACKAGE, artifact_dir="out")],
    )


@pytest.fixture
def edge(workspace: Workspace) -> ImplicitEdge:
    return workspace.implicit_edges[0]


def build_provider(workspace: Workspace, name: str = PACKAGE) -> Path:
    out = workspace.root / "Model" / "out"
    (out / "dist-types").mkdir(parents=True)
    (out / "package.json").write_text(json.dumps({"name": name}))
    return out


class TestObserve:
    """Tests for LinkStateMachine.observe."""

    def test_not_built(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        assert LinkStateMachine(workspace, FakeNpm()).observe(edge) == LinkState.NOT_BUILT

    def test_manifest_without_types_is_not_built(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        out = workspace.root / "Model" / "out"
        out.mkdir()
        (out / "package.json").write_text("{}")
        assert LinkStateMachine(workspace, FakeNpm()).observe(edge) == LinkState.NOT_BUILT

    def test_built_unlinked(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        build_provider(workspace)
        assert LinkStateMachine(workspace, FakeNpm()).observe(edge) == LinkState.BUILT_UNLINKED

    def test_linked(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        build_provider(workspace)
        machine = LinkStateMachine(workspace, FakeNpm())
        machine.reconcile(edge)
        assert machine.observe(edge) == LinkState.LINKED


class TestReconcile:
    """Tests for LinkStateMachine.reconcile."""

    def test_not_built_skips_without_npm_calls(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        npm = FakeNpm()
        outcome = LinkStateMachine(workspace, npm).reconcile(edge)

        assert outcome.kind == OutcomeKind.SKIPPED
        assert outcome.reason == REASON_NOT_BUILT
        assert npm.calls == []

    def test_links_built_provider(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        out = build_provider(workspace)
        npm = FakeNpm()
        outcome = LinkStateMachine(workspace, npm).reconcile(edge)

        assert outcome.kind == OutcomeKind.LINKED
        assert outcome.package == PACKAGE
        assert npm.calls == [
            ("link", str(out)),
            ("link_package", str(workspace.root / "API"), PACKAGE),
        ]

    def test_idempotent(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        """A second reconcile observes the link and issues no npm commands."""
        build_provider(workspace)
        npm = FakeNpm()
        machine = LinkStateMachine(workspace, npm)

        first = machine.reconcile(edge)
        calls_after_first = list(npm.calls)
        second = machine.reconcile(edge)

        assert first.kind == OutcomeKind.LINKED
        assert second.kind == OutcomeKind.SKIPPED
        assert second.reason == REASON_ALREADY_LINKED
        assert npm.calls == calls_after_first

    def test_registration_failure(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        build_provider(workspace)
        npm = FakeNpm(fail={"link"})
        outcome = LinkStateMachine(workspace, npm).reconcile(edge)

        assert outcome.kind == OutcomeKind.FAILED
        assert "link exploded" in outcome.error
        assert [c[0] for c in npm.calls] == ["link"]

    def test_consumer_link_failure_keeps_registration(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        build_provider(workspace)
        npm = FakeNpm(fail={"link_package"})
        outcome = LinkStateMachine(workspace, npm).reconcile(edge)

        assert outcome.kind == OutcomeKind.FAILED
        assert not outcome.ok
        assert [c[0] for c in npm.calls] == ["link", "link_package"]

    def test_package_name_from_build_output(self, workspace: Workspace) -> None:
        build_provider(workspace, name="@acme/from-manifest")
        edge = ImplicitEdge(provider="Model", consumer="API", artifact_dir="out")
        outcome = LinkStateMachine(workspace, FakeNpm()).reconcile(edge)

        assert outcome.kind == OutcomeKind.LINKED
        assert outcome.package == "@acme/from-manifest"

    def test_no_package_name_fails(self, workspace: Workspace) -> None:
        out = workspace.root / "Model" / "out"
        (out / "dist-types").mkdir(parents=True)
        (out / "package.json").write_text("{}")
        edge = ImplicitEdge(provider="Model", consumer="API", artifact_dir="out")

        outcome = LinkStateMachine(workspace, FakeNpm()).reconcile(edge)
        assert outcome.kind == OutcomeKind.FAILED


class TestRestorePublished:
    """Tests for LinkStateMachine.restore_published."""

    def test_unlinks_linked_consumer(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        build_provider(workspace)
        npm = FakeNpm()
        machine = LinkStateMachine(workspace, npm)
        machine.reconcile(edge)

        outcome = machine.restore_published(edge)

        assert outcome.ok
        assert npm.calls[-1] == ("unlink", str(workspace.root / "API"), PACKAGE)
        assert machine.observe(edge) == LinkState.BUILT_UNLINKED

    def test_not_linked_is_noop(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        npm = FakeNpm()
        outcome = LinkStateMachine(workspace, npm).restore_published(edge)
        assert outcome.kind == OutcomeKind.SKIPPED
        assert npm.calls == []


class TestLinkOutcome:
    """Tests for LinkOutcome.describe."""

    def test_describe(self, workspace: Workspace, edge: ImplicitEdge) -> None:
        outcome = LinkStateMachine(workspace, FakeNpm()).reconcile(edge)
        assert outcome.describe() == f"Using published {PACKAGE} (local not built)"
