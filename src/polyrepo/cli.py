"""polyrepo CLI - multi-repo sync and builds.

Main entry point for the polyrepo command.
"""

from __future__ import annotations

import functools
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .config import RunOptions, Settings, SyncOptions, load_settings
from .utils.errors import PolyrepoError, WorkspaceError, handle_exception, is_debug_mode, set_debug_mode

console = Console()

F = TypeVar("F", bound=Callable[..., Any])


def setup_logging(level: str) -> None:
    """Route log records through rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, markup=False)],
        force=True,
    )


def handle_errors(func: F) -> F:
    """Turn PolyrepoError into a formatted message and its exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except PolyrepoError as e:
            handle_exception(console, e)

    return wrapper  # type: ignore[return-value]


def progress(msg: str) -> None:
    console.print(f"[dim]{msg}[/dim]", highlight=False)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version and exit")
@click.option("--debug", "-d", is_flag=True, help="Enable debug mode with verbose error output")
@click.pass_context
def main(ctx: click.Context, version: bool, debug: bool) -> None:
    """polyrepo - keep a workspace of repositories in sync and build them in order.

    Use --debug for verbose logging and stack traces on errors.
    """
    if debug:
        set_debug_mode(True)

    settings = load_settings()
    setup_logging("debug" if is_debug_mode() else settings.ui.log_level)
    ctx.obj = settings

    if version:
        console.print(f"polyrepo version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# =============================================================================
# sync
# =============================================================================


@main.command()
@click.argument("repo", required=False)
@click.option("--branch", "-b", default="", help="Rebase onto origin/<BRANCH> instead of each repo's default")
@click.option("--no-rebase", is_flag=True, help="Plain 'git pull' instead of rebasing every branch")
@click.option("--env", "env_name", default="", help="Refresh the workspace .env from this environment first")
@click.option("--install", "-i", is_flag=True, help="npm install where the lockfile changed")
@click.option("--update", "-u", is_flag=True, help="Upgrade workspace-scoped packages to latest")
@click.pass_obj
@handle_errors
def sync(
    settings: Settings,
    repo: str | None,
    branch: str,
    no_rebase: bool,
    env_name: str,
    install: bool,
    update: bool,
) -> None:
    """Fetch every repo in parallel, then rebase local branches.

    Dirty working trees are skipped and reported. With REPO only that repo
    is synced.

    \\b
    Examples:
        polyrepo sync                  # All repos
        polyrepo sync AppAPI           # One repo
        polyrepo sync -b develop       # Rebase onto origin/develop
        polyrepo sync -i --env beta    # Refresh .env, install changed lockfiles
    """
    from .npm import NpmClient, check_npm
    from .params import refresh_environment
    from .process import require_tool
    from .report import print_result, print_summary
    from .sync import SyncEngine, SyncStatus
    from .workspace import generate_editor_workspace, load_workspace, workspace_env

    require_tool("git")
    if install or update:
        check_npm()
    ws = load_workspace()
    options = SyncOptions.from_settings(
        settings,
        branch=branch,
        no_rebase=no_rebase,
        env_name=env_name,
        install=install,
        update=update,
    )

    if options.env_name:
        refresh_environment(ws, options.env_name, settings, on_progress=progress)
        console.print()

    npm = NpmClient(shell=options.shell)
    if options.install or options.update:
        npm = NpmClient(env=workspace_env(ws), shell=options.shell)
    engine = SyncEngine(ws, options, npm=npm, on_progress=progress)

    if repo:
        results = [engine.sync_one(repo)]
        print_result(console, results[0])
        _print_sibling_links(engine.link_siblings(only_repo=repo))
    else:
        summary = engine.sync_all()
        results = summary.results
        print_summary(console, summary)
        _print_sibling_links(engine.link_siblings())
    generate_editor_workspace(ws)

    if options.install:
        console.print()
        installed = engine.install_changed(results)
        if not installed:
            console.print("[dim]No lockfile changes; nothing to install[/dim]")

    if options.update:
        console.print()
        engine.update_scoped_packages()

    if any(r.status == SyncStatus.FAILED for r in results):
        sys.exit(1)


def _print_sibling_links(outcomes: list) -> None:
    for link, state in outcomes:
        if state == "linked":
            console.print(f"[green]✓ Linked {link.repo}/{link.target} -> ../{link.target}[/green]")
        elif state == "blocked":
            console.print(f"[yellow]⚠ {link.repo}/{link.target} exists and is not a symlink; left alone[/yellow]")
        elif state == "error":
            console.print(f"[red]✗ Could not link {link.repo}/{link.target}[/red]")


# =============================================================================
# run
# =============================================================================


@main.command("run")
@click.argument("script")
@click.option("--recursive", "-r", is_flag=True, help="Build dependencies first (build only)")
@click.option("--published", is_flag=True, help="Use published packages, never local builds")
@click.option("--watch", "-w", is_flag=True, help="Use test:watch for test")
@click.option("--repo", default=None, help="Repo to run in (default: the one containing the cwd)")
@click.pass_obj
@handle_errors
def run_cmd(
    settings: Settings,
    script: str,
    recursive: bool,
    published: bool,
    watch: bool,
    repo: str | None,
) -> None:
    """Run a script in the current repo.

    For 'build', locally built providers are npm-linked into their
    consumers before and after the build. Use --recursive to build
    dependencies first.

    \\b
    Examples:
        polyrepo run build          # npm run build, with local linking
        polyrepo run build -r       # dependencies first, then this repo
        polyrepo run test --watch   # npm run test:watch
        polyrepo run lint --repo AppAPI
    """
    from .build import BuildOrchestrator
    from .npm import check_npm
    from .resolver import resolve_build_order
    from .workspace import load_workspace, workspace_env

    ws = load_workspace()
    name = repo or ws.detect_repo(Path.cwd())
    if name is None:
        raise WorkspaceError(
            "Must be run from inside a repo directory",
            suggestion="cd into a repo or pass --repo NAME",
        )
    ws.get_repo(name)

    options = RunOptions(recursive=recursive, published=published, watch=watch)
    if options.recursive and script != "build":
        console.print("[yellow]--recursive only applies to 'build'; ignoring[/yellow]")

    involved = [name]
    if options.recursive and script == "build":
        involved = [*resolve_build_order(ws, name), name]
    if any((ws.repo_dir(r) / "package.json").is_file() for r in involved):
        check_npm()

    orchestrator = BuildOrchestrator(
        ws,
        options,
        env=workspace_env(ws),
        shell=settings.core.shell,
        on_progress=progress,
    )
    if script == "build":
        orchestrator.build(name, recursive=options.recursive)
    else:
        orchestrator.run_script(name, script)

    console.print(f"[green]✓ {name}: {script} succeeded[/green]")


# =============================================================================
# env
# =============================================================================


@main.command("env")
@click.argument("env_name", required=False, default="")
@click.pass_obj
@handle_errors
def env_cmd(settings: Settings, env_name: str) -> None:
    """Refresh the workspace .env from the parameter store.

    ENV_NAME defaults to the workspace param_env, then [aws].param_env.

    \\b
    Examples:
        polyrepo env          # Default environment
        polyrepo env prod
    """
    from .params import refresh_environment
    from .workspace import load_workspace

    ws = load_workspace()
    values = refresh_environment(ws, env_name, settings, on_progress=progress)
    console.print(f"[green]✓ Wrote {len(values)} variables[/green]")


# =============================================================================
# cdk
# =============================================================================


@main.command("cdk", context_settings={"ignore_unknown_options": True})
@click.option("--profile", "-p", default="", help="Short profile name from [profiles] in workspace.toml")
@click.argument("cdk_args", nargs=-1, type=click.UNPROCESSED)
@handle_errors
def cdk_cmd(profile: str, cdk_args: tuple[str, ...]) -> None:
    """Run the AWS CDK CLI in the workspace CDK app.

    The app is the current repo when it holds cdk.json, else the first repo
    that does. The workspace environment and AWS_DEFAULT_OUTPUT=json are
    injected; --profile picks AWS_PROFILE.

    \\b
    Examples:
        polyrepo cdk list
        polyrepo cdk -p beta diff
        polyrepo cdk --profile prod deploy PipelineStack
    """
    from .cdk import run_cdk
    from .workspace import load_workspace

    ws = load_workspace()
    if profile in ws.aws_profiles and "prod" in profile:
        console.print("[yellow]⚠ Using a production profile[/yellow]")

    returncode = run_cdk(ws, list(cdk_args), profile=profile, on_progress=progress)
    if returncode != 0:
        sys.exit(returncode)


# =============================================================================
# workspace
# =============================================================================


@main.group()
def workspace() -> None:
    """Workspace management.

    A workspace is a directory of repository checkouts described by
    workspace.toml.
    """
    pass


@workspace.command("create")
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--name", "-n", default=None, help="Workspace name (default: directory name)")
@handle_errors
def workspace_create(path: Path, name: str | None) -> None:
    """Create a new workspace at PATH.

    \\b
    Examples:
        polyrepo workspace create ~/src/acme
    """
    from .workspace import init_workspace

    ws = init_workspace(path, name)
    console.print(f"[green]✓ Workspace '{ws.name}' created[/green]")
    console.print(f"[dim]Config: {ws.config_path}[/dim]")
    console.print()
    console.print("[dim]Next steps:[/dim]")
    console.print(f"[dim]  cd {ws.root}[/dim]")
    console.print("[dim]  polyrepo workspace use <org/repo>   # Clone and add a repository[/dim]")


@workspace.command("use")
@click.argument("remote")
@click.option("--name", "-n", default=None, help="Repo name (default: from the remote)")
@click.option("--depends-on", "-D", multiple=True, help="Repo this one depends on (repeatable)")
@handle_errors
def workspace_use(remote: str, name: str | None, depends_on: tuple[str, ...]) -> None:
    """Clone ORG/REPO into the workspace and register it.

    \\b
    Examples:
        polyrepo workspace use acme/AppAPI
        polyrepo workspace use acme/AppAPI -D AppModel
    """
    from .git import clone, repo_name_from_remote
    from .workspace import RepoDef, generate_editor_workspace, load_workspace, save_workspace

    ws = load_workspace()
    name = name or repo_name_from_remote(remote)
    target = ws.root / name

    if target.exists():
        console.print(f"[dim]{name} already cloned at {target}[/dim]")
    else:
        console.print(f"[dim]Cloning {remote}...[/dim]")
        clone(remote, target)

    if ws.add_repo(RepoDef(name=name, path=name, remote=remote, dependencies=tuple(depends_on))):
        save_workspace(ws)
        console.print(f"[green]✓ Added repository: {name}[/green]")
    else:
        console.print(f"[yellow]{name} is already in the workspace[/yellow]")

    for dep in depends_on:
        if not ws.has_repo(dep):
            console.print(f"[yellow]⚠ Dependency '{dep}' is not in the workspace yet[/yellow]")

    generate_editor_workspace(ws)


@workspace.command("list")
@handle_errors
def workspace_list() -> None:
    """List repositories, their branches, and clone state."""
    from .git import GitCommandError, GitRepo
    from .workspace import load_workspace

    ws = load_workspace()
    if not ws.repos:
        console.print(f"[yellow]Workspace '{ws.name}' has no repositories[/yellow]")
        console.print("[dim]Run 'polyrepo workspace use <org/repo>' to add one[/dim]")
        return

    console.print(f"[bold cyan]Workspace: {ws.name}[/bold cyan]")
    console.print(f"[dim]{ws.root}[/dim]")
    console.print()

    for name in ws.sorted_names():
        repo = ws.repos[name]
        if not ws.is_cloned(name):
            console.print(f"[red]✗[/red] [bold]{name}[/bold] [dim](not cloned)[/dim]")
            continue
        try:
            branch = GitRepo(ws.repo_dir(name)).current_branch()
        except GitCommandError:
            branch = "?"
        line = f"[green]✓[/green] [bold]{name}[/bold] [cyan]({branch})[/cyan]"
        if repo.dependencies:
            line += f" [dim]-> {', '.join(repo.dependencies)}[/dim]"
        console.print(line)


@workspace.command("links")
@handle_errors
def workspace_links() -> None:
    """Show the link state of every implicit provider/consumer rule."""
    from .linking import LinkState, LinkStateMachine
    from .npm import NpmClient
    from .workspace import load_workspace

    ws = load_workspace()
    if not ws.implicit_edges:
        console.print("[dim]No [\\[implicit]] rules in workspace.toml[/dim]")
        return

    machine = LinkStateMachine(ws, NpmClient())
    styles = {
        LinkState.NOT_BUILT: "dim",
        LinkState.BUILT_UNLINKED: "yellow",
        LinkState.LINKED: "green",
    }
    for edge in ws.implicit_edges:
        label = f"{edge.provider} -> {edge.consumer}"
        if not machine.consumer_exists(edge) or not ws.is_cloned(edge.provider):
            console.print(f"  {label}: [dim]not cloned[/dim]")
            continue
        state = machine.observe(edge)
        package = machine.package_name(edge) or "?"
        console.print(f"  {label} [dim]({package})[/dim]: [{styles[state]}]{state.value}[/{styles[state]}]")


@workspace.command("check")
@handle_errors
def workspace_check() -> None:
    """Report unknown dependency names and dependency cycles."""
    from .resolver import find_cycles
    from .workspace import load_workspace

    ws = load_workspace()
    problems = 0

    for name, missing in ws.unknown_dependencies().items():
        problems += 1
        console.print(f"[yellow]⚠ {name} depends on unknown repo(s): {', '.join(missing)}[/yellow]")

    for edge in ws.implicit_edges:
        for side in (edge.provider, edge.consumer):
            if not ws.has_repo(side):
                problems += 1
                console.print(f"[yellow]⚠ [\\[implicit]] rule references unknown repo '{side}'[/yellow]")

    for cycle in find_cycles(ws):
        problems += 1
        console.print(f"[red]✗ Dependency cycle: {' -> '.join(cycle)}[/red]")

    if problems:
        console.print()
        console.print(f"[red]{problems} problem(s) found[/red]")
        sys.exit(1)
    console.print(f"[green]✓ {len(ws.repos)} repos, no problems found[/green]")


if __name__ == "__main__":
    main()
