"""CLI entrypoint for ClawdBay."""

from __future__ import annotations

import os
from pathlib import Path

import click

from clawdbay.app import DashboardApp
from clawdbay.config.store import ConfigStore
from clawdbay.dashboard.tree import DashboardMode, parse_dashboard_mode
from clawdbay.discovery.service import DiscoveryService
from clawdbay.errors import ClawdBayError
from clawdbay.runtime_logging import RuntimeLogger, configure_runtime_logging
from clawdbay.tmux.client import TmuxClient
from clawdbay.version import __version__
from clawdbay.workflows import (
    archive_target_for_session,
    archive_workflow,
    open_agent_window,
    resolve_agent_session,
    resolve_session_for_cwd,
    start_workflow,
)

NO_CONFIG_HINT = "No project config found. Add one with: cb project add <path>"
NO_PROJECTS_HINT = "No configured projects. Add one with: cb project add <path>"


def _logger(ctx: click.Context) -> RuntimeLogger:
    return ctx.find_root().obj["logger"]


def _in_tmux() -> bool:
    return bool(os.getenv("TMUX"))


def _discovery(logger: RuntimeLogger) -> DiscoveryService:
    return DiscoveryService(TmuxClient(logger=logger), ConfigStore(), logger=logger)


@click.group(invoke_without_command=True, context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--debug", is_flag=True, help="Enable debug runtime logging")
@click.version_option(__version__, prog_name="cb")
@click.pass_context
def main(ctx: click.Context, debug: bool) -> None:
    """ClawdBay: a harbor for your coding-agent sessions in tmux."""
    logger = configure_runtime_logging(level="debug" if debug else None)
    ctx.ensure_object(dict)
    ctx.obj["logger"] = logger
    logger.debug("cli.start", command=ctx.invoked_subcommand or "dash", debug=debug)
    if ctx.invoked_subcommand is None:
        ctx.invoke(dash)


@main.command()
@click.option(
    "--mode",
    "mode_name",
    type=click.Choice([mode.value for mode in DashboardMode], case_sensitive=False),
    default=DashboardMode.WORKTREE.value,
    show_default=True,
    help="Dashboard projection",
)
@click.pass_context
def dash(ctx: click.Context, mode_name: str) -> None:
    """Open the interactive dashboard."""
    logger = _logger(ctx)
    try:
        mode = parse_dashboard_mode(mode_name)
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc

    tmux = TmuxClient(logger=logger)
    app = DashboardApp(
        discovery=DiscoveryService(tmux, ConfigStore(), logger=logger),
        add_backend=tmux,
        mode=mode,
        logger=logger,
    )
    try:
        selection = app.run()
    finally:
        app.close_watchers()
    if selection is None:
        return

    try:
        if selection.window_index is not None:
            tmux.select_window(selection.session_name, selection.window_index)
        click.echo(f"Attaching to {selection.session_name}...")
        tmux.attach_or_switch(selection.session_name, _in_tmux())
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command("list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List configured projects, worktrees, and their sessions."""
    try:
        result = _discovery(_logger(ctx)).discover()
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc

    if result.config_missing:
        click.echo(NO_CONFIG_HINT)
        return
    if not result.projects:
        click.echo(NO_PROJECTS_HINT)
        return

    for project in result.projects:
        click.echo(project.name)
        if project.invalid_error:
            click.echo(f"  [INVALID] {project.invalid_error}")
        for workspace in project.workspaces:
            click.echo(f"  {workspace.name}")
            if not workspace.sessions:
                click.echo("    (no active session)")
                continue
            for session in workspace.sessions:
                count = len(session.windows)
                noun = "window" if count == 1 else "windows"
                click.echo(f"    {session.name:<30} {count} {noun}  ({session.status})")


@main.command("clist")
@click.pass_context
def clist_command(ctx: click.Context) -> None:
    """List tmux windows and detected coding agents."""
    tmux = TmuxClient(logger=_logger(ctx))
    try:
        rows = tmux.list_session_window_info()
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc

    if not rows:
        click.echo("No active sessions. Start one with: cb start <branch-name>")
        return

    for row in rows:
        repo_name = f"{row.repo_name} (wt)" if row.managed else row.repo_name
        if row.agent_info.detected:
            detail = f"agentType: {row.agent_info.type} status: {row.agent_info.status}"
        else:
            detail = "DETECTED AGENT: NONE"
        click.echo(f"{row.session_name}:{row.window.name} {repo_name} ({detail})")


@main.group()
def project() -> None:
    """Manage configured projects."""


@project.command("add")
@click.argument("path")
@click.option("--name", default=None, help="Optional project display name")
def project_add(path: str, name: str | None) -> None:
    """Add a configured project."""
    try:
        canonical = ConfigStore().add_project(path, name)
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Added project: {canonical}")


@project.command("remove")
@click.argument("path", required=False)
@click.option("--name", default=None, help="Remove by exact configured project name")
def project_remove(path: str | None, name: str | None) -> None:
    """Remove a configured project by path or --name."""
    store = ConfigStore()
    by_name = (name or "").strip()
    try:
        if by_name:
            if path is not None:
                raise click.UsageError("path argument is not allowed with --name")
            removed = store.remove_project_by_name(by_name)
            click.echo(f"Removed project {by_name!r}: {removed}")
            return
        if path is None:
            raise click.UsageError("expected exactly 1 path argument, or use --name")
        removed = store.remove_project_by_path(path)
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Removed project: {removed}")


@project.command("list")
def project_list() -> None:
    """List configured projects and whether their paths resolve."""
    try:
        statuses, exists = ConfigStore().project_statuses()
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc

    if not exists:
        click.echo(NO_CONFIG_HINT)
        return
    if not statuses:
        click.echo(NO_PROJECTS_HINT)
        return
    for status in statuses:
        click.echo(f"{status.display_name}\n  path: {status.path}\n  status: {status.status}")


@main.command()
@click.argument("branch")
@click.option("-d", "--detach", is_flag=True, help="Create the session without attaching to it")
@click.pass_context
def start(ctx: click.Context, branch: str, detach: bool) -> None:
    """Start a workflow: git worktree + pinned tmux session + agent window.

    \b
    Example:
      cb start proj-123-auth-feature
      cb start --detach my-branch
    """
    logger = _logger(ctx)
    tmux = TmuxClient(logger=logger)
    try:
        result = start_workflow(branch, Path.cwd(), tmux, logger=logger)
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc

    verb = "Reused branch" if result.branch_existed else "Created branch"
    click.echo(f"{verb} {result.branch}, worktree: {result.worktree_path}")
    click.echo(f"Created tmux session: {result.session_name}")
    if result.warning:
        click.echo(f"Warning: {result.warning}", err=True)

    if detach:
        click.echo(f"Session created. Attach with: tmux attach -t {result.session_name}")
        return
    try:
        tmux.attach_or_switch(result.session_name, _in_tmux())
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc


@main.command()
@click.argument("session_name", required=False)
@click.option("-y", "--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
def archive(ctx: click.Context, session_name: str | None, yes: bool) -> None:
    """Archive a workflow: kill its session and remove its worktree (branch is kept)."""
    logger = _logger(ctx)
    tmux = TmuxClient(logger=logger)
    try:
        if session_name:
            target = archive_target_for_session(tmux, session_name)
        else:
            target = resolve_session_for_cwd(tmux, Path.cwd())
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(f"Archive workflow: {target.session_name}")
    if target.worktree_path:
        click.echo(f"Worktree: {target.worktree_path}")
    if not yes and not click.confirm(
        "This will kill the tmux session and remove the worktree. Continue?", default=False
    ):
        click.echo("Cancelled")
        return

    try:
        archive_workflow(target, tmux, logger=logger)
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo("Workflow archived. Branch preserved.")


@main.command()
@click.option("-n", "--name", default="default", show_default=True, help="Name for the agent window")
@click.pass_context
def claude(ctx: click.Context, name: str) -> None:
    """Add a claude window to the current workflow session."""
    logger = _logger(ctx)
    tmux = TmuxClient(logger=logger)
    try:
        session_name = resolve_agent_session(tmux, Path.cwd(), _in_tmux())
        click.echo(f"Creating claude window in {session_name}")
        window_name = open_agent_window(tmux, session_name, name, logger=logger)
    except ClawdBayError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Opened {window_name}")


if __name__ == "__main__":
    main()
