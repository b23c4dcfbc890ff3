"""Worktree-backed workflows behind ``cb start``, ``cb archive`` and ``cb claude``."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from clawdbay.dashboard.naming import ensure_session_prefix, sanitize_name
from clawdbay.discovery.worktrees import WORKTREES_DIRNAME
from clawdbay.errors import BackendError, ClawdBayError, PathResolutionError
from clawdbay.paths import canonical_path
from clawdbay.runtime_logging import DisabledLogger, RuntimeLogger
from clawdbay.tmux.client import CommandFailed, Runner, TmuxClient, run_command
from clawdbay.tmux.models import SESSION_OPTION_HOME_PATH, SESSION_PREFIX

AGENT_COMMAND = "claude"
AGENT_WINDOW_NAME = "claude"
GITIGNORE_ENTRY = f"{WORKTREES_DIRNAME}/"


@dataclass(frozen=True, slots=True)
class StartResult:
    session_name: str
    branch: str
    worktree_path: Path
    branch_existed: bool
    warning: str = ""


@dataclass(frozen=True, slots=True)
class ArchiveTarget:
    session_name: str
    worktree_path: str


def ensure_gitignore_entry(repo_dir: Path, entry: str = GITIGNORE_ENTRY) -> bool:
    """Append ``entry`` to ``repo_dir/.gitignore`` unless a line already matches."""
    gitignore = repo_dir / ".gitignore"
    try:
        content = gitignore.read_text(encoding="utf-8")
    except FileNotFoundError:
        content = ""
    if any(line.strip() == entry for line in content.splitlines()):
        return False

    with gitignore.open("a", encoding="utf-8") as handle:
        if content and not content.endswith("\n"):
            handle.write("\n")
        handle.write(entry + "\n")
    return True


def repo_toplevel(cwd: Path, runner: Runner = run_command) -> Path:
    try:
        output = runner(["git", "-C", str(cwd), "rev-parse", "--show-toplevel"])
    except CommandFailed as exc:
        raise ClawdBayError("not in a git repository") from exc
    return Path(output.strip())


def branch_exists(repo_root: Path, branch: str, runner: Runner = run_command) -> bool:
    try:
        runner(["git", "-C", str(repo_root), "rev-parse", "--verify", "--quiet", branch])
    except CommandFailed:
        return False
    return True


def start_workflow(
    raw_branch: str,
    cwd: Path,
    tmux: TmuxClient,
    *,
    runner: Runner = run_command,
    logger: RuntimeLogger | None = None,
) -> StartResult:
    """Create a worktree for ``raw_branch`` plus a pinned session with an agent window."""
    logger = logger or DisabledLogger()
    branch = sanitize_name(raw_branch)
    if not branch:
        raise ClawdBayError(f"invalid branch name {raw_branch!r}")

    repo_root = repo_toplevel(cwd, runner)
    worktrees_dir = repo_root / WORKTREES_DIRNAME
    worktrees_dir.mkdir(parents=True, exist_ok=True)
    ensure_gitignore_entry(repo_root)

    worktree_path = worktrees_dir / f"{repo_root.name}-{branch}"
    if worktree_path.exists():
        raise ClawdBayError(f"worktree directory already exists: {worktree_path}")

    existed = branch_exists(repo_root, branch, runner)
    args = ["git", "-C", str(repo_root), "worktree", "add", str(worktree_path), branch]
    if not existed:
        args = ["git", "-C", str(repo_root), "worktree", "add", str(worktree_path), "-b", branch]
    try:
        runner(args)
    except CommandFailed as exc:
        raise ClawdBayError(f"failed to create worktree: {exc}") from exc
    logger.info("workflow.worktree.created", path=str(worktree_path), branch=branch, branch_existed=existed)

    session_name = ensure_session_prefix(branch)
    tmux.create_session(session_name, str(worktree_path))
    tmux.set_session_option(session_name, SESSION_OPTION_HOME_PATH, canonical_path(worktree_path))

    warning = ""
    try:
        tmux.create_window_with_shell(session_name, AGENT_WINDOW_NAME, AGENT_COMMAND)
    except BackendError as exc:
        warning = f"failed to create {AGENT_WINDOW_NAME} window: {exc}"
        logger.warning("workflow.agent_window.failed", session=session_name, error=str(exc))

    logger.info("workflow.started", session=session_name, worktree=str(worktree_path))
    return StartResult(
        session_name=session_name,
        branch=branch,
        worktree_path=worktree_path,
        branch_existed=existed,
        warning=warning,
    )


def resolve_session_for_cwd(tmux: TmuxClient, cwd: Path) -> ArchiveTarget:
    """Pick the cb_ session whose pane directory contains ``cwd``.

    An exact directory match wins; otherwise the deepest enclosing pane
    directory does.
    """
    current = os.path.normpath(os.path.abspath(cwd))
    best: tuple[bool, int, str, str] | None = None
    for session in tmux.list_sessions():
        pane_dir = tmux.get_pane_working_dir(session.name)
        if not pane_dir:
            continue
        pane_dir = os.path.normpath(os.path.abspath(pane_dir))
        exact = current == pane_dir
        if not exact and not current.startswith(pane_dir + os.sep):
            continue
        candidate = (exact, len(pane_dir), session.name, pane_dir)
        if best is None or candidate[:2] > best[:2]:
            best = candidate

    if best is None:
        raise ClawdBayError(f"no {SESSION_PREFIX} session found for directory {current}")
    return ArchiveTarget(session_name=best[2], worktree_path=best[3])


def archive_target_for_session(tmux: TmuxClient, raw_name: str) -> ArchiveTarget:
    """Resolve the worktree for a named session: its pinned home, else its pane directory."""
    session_name = ensure_session_prefix(raw_name)
    worktree_path = ""
    try:
        home = tmux.get_session_option(session_name, SESSION_OPTION_HOME_PATH)
    except BackendError:
        home = ""
    if home.strip():
        worktree_path = home.strip()
    else:
        worktree_path = tmux.get_pane_working_dir(session_name)
    return ArchiveTarget(session_name=session_name, worktree_path=worktree_path)


def archive_workflow(
    target: ArchiveTarget,
    tmux: TmuxClient,
    *,
    runner: Runner = run_command,
    logger: RuntimeLogger | None = None,
) -> None:
    """Kill the session and remove its worktree. The branch is kept."""
    logger = logger or DisabledLogger()
    try:
        tmux.kill_session(target.session_name)
    except BackendError as exc:
        # Already gone is fine; the worktree may still need removing.
        logger.info("workflow.archive.kill_skipped", session=target.session_name, error=str(exc))

    if not target.worktree_path:
        return
    try:
        worktree = canonical_path(target.worktree_path)
    except PathResolutionError as exc:
        raise ClawdBayError(f"worktree path is gone: {exc}") from exc

    try:
        runner(["git", "-C", os.path.dirname(worktree), "worktree", "remove", worktree])
    except CommandFailed as exc:
        raise ClawdBayError(f"failed to remove worktree: {exc}") from exc
    logger.info("workflow.archived", session=target.session_name, worktree=worktree)


def resolve_agent_session(tmux: TmuxClient, cwd: Path, in_tmux: bool) -> str:
    """The cb_ session to open a new agent window in.

    Inside tmux the current session wins when it is managed; otherwise the
    first session whose suffix appears in the current directory name.
    """
    if in_tmux:
        current = tmux.current_session_name()
        if current.startswith(SESSION_PREFIX):
            return current

    dir_name = Path(os.path.abspath(cwd)).name
    for session in tmux.list_sessions():
        suffix = session.name.removeprefix(SESSION_PREFIX)
        if suffix and suffix in dir_name:
            return session.name
    raise ClawdBayError(f"no {SESSION_PREFIX} session found for this directory. Run 'cb start' first")


def open_agent_window(
    tmux: TmuxClient,
    session_name: str,
    name: str,
    *,
    logger: RuntimeLogger | None = None,
) -> str:
    logger = logger or DisabledLogger()
    window_name = f"{AGENT_WINDOW_NAME}:{name}"
    tmux.create_window_with_shell(session_name, window_name, AGENT_COMMAND)
    windows = tmux.list_windows(session_name)
    created = next((window for window in windows if window.name == window_name), None)
    if created is not None:
        tmux.select_window(session_name, created.index)
    logger.info("workflow.agent_window.created", session=session_name, window=window_name)
    return window_name
