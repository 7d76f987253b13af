"""Tests for build-order resolution."""

from __future__ import annotations

from pathlib import Path

from polyrepo.resolver import direct_dependencies, find_cycles, resolve_build_order
from polyrepo.workspace import ImplicitEdge, RepoDef, Workspace


def make_workspace(deps: dict[str, list[str]], edges: list[tuple[str, str]] | None = None) -> Workspace:
    repos = {name: RepoDef(name=name, path=name, dependencies=tuple(d)) for name, d in deps.items()}
    implicit = [ImplicitEdge(provider=p, consumer=c) for p, c in edges or []]
    return Workspace(name="test", root=Path("/tmp/ws"), repos=repos, implicit_edges=implicit)


class TestResolveBuildOrder:
    """Tests for resolve_build_order."""

    def test_transitive_dependencies_in_post_order(self) -> None:
        """X -> [Y, Z], Y -> [Z] builds Z before Y."""
        ws = make_workspace({"X": ["Y", "Z"], "Y": ["Z"], "Z": []})
        assert resolve_build_order(ws, "X") == ["Z", "Y"]

    def test_implicit_provider_is_a_dependency(self) -> None:
        """A model repo is built before the API consuming it."""
        ws = make_workspace({"Model": [], "API": []}, edges=[("Model", "API")])
        assert resolve_build_order(ws, "API") == ["Model"]

    def test_implicit_edges_precede_declared(self) -> None:
        ws = make_workspace({"API": ["Shared"], "Model": [], "Shared": []}, edges=[("Model", "API")])
        assert resolve_build_order(ws, "API") == ["Model", "Shared"]

    def test_no_dependencies(self) -> None:
        ws = make_workspace({"A": []})
        assert resolve_build_order(ws, "A") == []

    def test_unknown_dependency_is_skipped(self) -> None:
        ws = make_workspace({"A": ["Ghost", "B"], "B": []})
        assert resolve_build_order(ws, "A") == ["B"]

    def test_unknown_implicit_provider_is_skipped(self) -> None:
        ws = make_workspace({"API": []}, edges=[("Model", "API")])
        assert resolve_build_order(ws, "API") == []

    def test_diamond_has_no_duplicates(self) -> None:
        ws = make_workspace({"A": ["B", "C"], "B": ["D"], "C": ["D"], "D": []})
        order = resolve_build_order(ws, "A")
        assert order == ["D", "B", "C"]
        assert len(order) == len(set(order))

    def test_target_never_included(self) -> None:
        ws = make_workspace({"A": ["B"], "B": ["A"]})
        assert "A" not in resolve_build_order(ws, "A")

    def test_cycle_terminates(self) -> None:
        """A -> B -> C -> A resolves without looping."""
        ws = make_workspace({"A": ["B"], "B": ["C"], "C": ["A"]})
        assert resolve_build_order(ws, "A") == ["C", "B"]

    def test_self_dependency(self) -> None:
        ws = make_workspace({"A": ["A", "B"], "B": []})
        assert resolve_build_order(ws, "A") == ["B"]

    def test_only_known_names_returned(self) -> None:
        ws = make_workspace({"A": ["B", "x"], "B": ["y", "C"], "C": ["z"]})
        assert set(resolve_build_order(ws, "A")) <= set(ws.repos)


class TestDirectDependencies:
    """Tests for direct_dependencies."""

    def test_deduplicates_implicit_and_declared(self) -> None:
        ws = make_workspace({"API": ["Model"], "Model": []}, edges=[("Model", "API")])
        assert direct_dependencies(ws, "API") == ["Model"]

    def test_unknown_repo(self) -> None:
        ws = make_workspace({"A": []})
        assert direct_dependencies(ws, "missing") == []


class TestFindCycles:
    """Tests for find_cycles."""

    def test_acyclic(self) -> None:
        ws = make_workspace({"X": ["Y", "Z"], "Y": ["Z"], "Z": []})
        assert find_cycles(ws) == []

    def test_simple_cycle(self) -> None:
        ws = make_workspace({"A": ["B"], "B": ["A"]})
        assert find_cycles(ws) == [["A", "B", "A"]]

    def test_cycle_rotated_to_smallest_name(self) -> None:
        ws = make_workspace({"C": ["A"], "A": ["B"], "B": ["C"]})
        assert find_cycles(ws) == [["A", "B", "C", "A"]]

    def test_cycle_through_implicit_edge(self) -> None:
        ws = make_workspace({"Model": ["API"], "API": []}, edges=[("Model", "API")])
        assert find_cycles(ws) == [["API", "Model", "API"]]

    def test_self_loop(self) -> None:
        ws = make_workspace({"A": ["A"]})
        assert find_cycles(ws) == [["A", "A"]]
