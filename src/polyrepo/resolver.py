"""Build-order resolution over workspace dependency edges.

Two kinds of edges feed the walk:

- declared: ``RepoDef.dependencies`` from workspace.toml, in written order;
- implicit: ``[[implicit]]`` rules, where a consumer depends on its provider
  (a model repo generating the SDK its API repo imports).

`resolve_build_order` is a depth-first post-order walk from the target.
Implicit providers are visited before declared dependencies. Names that do
not exist in the workspace are skipped. A visited set guarantees each repo
is entered once, so a cycle ends the walk along that path instead of
looping; cycles are not reported here (see `find_cycles`).
"""

from __future__ import annotations

from .workspace.config import Workspace


def direct_dependencies(workspace: Workspace, name: str) -> list[str]:
    """Resolved direct dependencies of ``name``: implicit providers first, then declared."""
    deps: list[str] = []
    for edge in workspace.edges_for_consumer(name):
        if workspace.has_repo(edge.provider) and edge.provider not in deps:
            deps.append(edge.provider)
    repo = workspace.repos.get(name)
    if repo is not None:
        for dep in repo.dependencies:
            if workspace.has_repo(dep) and dep not in deps:
                deps.append(dep)
    return deps


def resolve_build_order(workspace: Workspace, target: str) -> list[str]:
    """Dependencies of ``target`` in build order, excluding ``target`` itself.

    Pure: reads the workspace, performs no I/O.

    Example:
        X depends on [Y, Z] and Y depends on [Z] -> ["Z", "Y"]
    """
    order: list[str] = []
    visited: set[str] = set()

    def visit(name: str) -> None:
        visited.add(name)
        for dep in direct_dependencies(workspace, name):
            if dep not in visited:
                visit(dep)
            if dep not in order and dep != target:
                order.append(dep)

    visit(target)
    return order


def find_cycles(workspace: Workspace) -> list[list[str]]:
    """Dependency cycles in the workspace, each as ``[a, b, ..., a]``.

    Each cycle is reported once, rotated to start at its smallest name.
    """
    cycles: list[list[str]] = []
    seen: set[tuple[str, ...]] = set()

    def walk(name: str, stack: list[str], on_stack: set[str], done: set[str]) -> None:
        stack.append(name)
        on_stack.add(name)
        for dep in direct_dependencies(workspace, name):
            if dep in on_stack:
                loop = stack[stack.index(dep) :]
                pivot = loop.index(min(loop))
                key = tuple(loop[pivot:] + loop[:pivot])
                if key not in seen:
                    seen.add(key)
                    cycles.append([*key, key[0]])
            elif dep not in done:
                walk(dep, stack, on_stack, done)
        stack.pop()
        on_stack.discard(name)
        done.add(name)

    done: set[str] = set()
    for name in workspace.sorted_names():
        if name not in done:
            walk(name, [], set(), done)
    return cycles
