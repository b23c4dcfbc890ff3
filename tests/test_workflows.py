from __future__ import annotations

import tempfile
import unittest
from collections.abc import Sequence
from pathlib import Path

from clawdbay.errors import BackendError, ClawdBayError
from clawdbay.paths import canonical_path
from clawdbay.tmux.client import CommandFailed
from clawdbay.tmux.models import SESSION_OPTION_HOME_PATH, Session, Window
from clawdbay.workflows import (
    ArchiveTarget,
    archive_target_for_session,
    archive_workflow,
    ensure_gitignore_entry,
    open_agent_window,
    resolve_agent_session,
    resolve_session_for_cwd,
    start_workflow,
)


class FakeGit:
    def __init__(self, toplevel: str, existing_branches: set[str] | None = None) -> None:
        self.toplevel = toplevel
        self.existing_branches = existing_branches or set()
        self.calls: list[list[str]] = []

    def __call__(self, args: Sequence[str]) -> str:
        argv = list(args)
        self.calls.append(argv)
        if argv[3:] == ["rev-parse", "--show-toplevel"]:
            if not self.toplevel:
                raise CommandFailed(argv, 128, "fatal: not a git repository")
            return self.toplevel + "\n"
        if argv[3:5] == ["rev-parse", "--verify"]:
            if argv[-1] in self.existing_branches:
                return "abc123\n"
            raise CommandFailed(argv, 1, "")
        if argv[3:5] == ["worktree", "add"]:
            Path(argv[5]).mkdir(parents=True)
            return ""
        if argv[3:5] == ["worktree", "remove"]:
            return ""
        raise CommandFailed(argv, 1, "unexpected")


class FakeTmux:
    def __init__(self) -> None:
        self.sessions: list[str] = []
        self.pane_dirs: dict[str, str] = {}
        self.options: dict[tuple[str, str], str] = {}
        self.windows: dict[str, list[Window]] = {}
        self.current = ""
        self.killed: list[str] = []
        self.selected: list[tuple[str, int]] = []
        self.shell_windows: list[tuple[str, str, str]] = []
        self.fail_agent_window = False

    def list_sessions(self) -> list[Session]:
        return [Session(name) for name in self.sessions]

    def get_pane_working_dir(self, session: str) -> str:
        return self.pane_dirs.get(session, "")

    def get_session_option(self, session: str, key: str) -> str:
        if (session, key) not in self.options:
            raise BackendError("invalid option")
        return self.options[(session, key)]

    def set_session_option(self, session: str, key: str, value: str) -> None:
        self.options[(session, key)] = value

    def create_session(self, name: str, workdir: str) -> None:
        self.sessions.append(name)
        self.pane_dirs[name] = workdir

    def create_window_with_shell(self, session: str, name: str, command: str) -> None:
        if self.fail_agent_window:
            raise BackendError("no window for you")
        self.shell_windows.append((session, name, command))
        existing = self.windows.setdefault(session, [])
        existing.append(Window(len(existing), name))

    def list_windows(self, session: str) -> list[Window]:
        return list(self.windows.get(session, []))

    def select_window(self, session: str, window_index: int) -> None:
        self.selected.append((session, window_index))

    def kill_session(self, name: str) -> None:
        if name not in self.sessions:
            raise BackendError(f"can't find session: {name}")
        self.killed.append(name)

    def current_session_name(self) -> str:
        return self.current


class GitignoreTests(unittest.TestCase):
    def test_appends_once_and_keeps_trailing_newline(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(tmp)
            (repo / ".gitignore").write_text("node_modules", encoding="utf-8")
            self.assertTrue(ensure_gitignore_entry(repo))
            self.assertFalse(ensure_gitignore_entry(repo))
            self.assertEqual((repo / ".gitignore").read_text(encoding="utf-8"), "node_modules\n.worktrees/\n")


class StartWorkflowTests(unittest.TestCase):
    def test_creates_worktree_and_pinned_session(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(canonical_path(tmp)) / "demo"
            repo.mkdir()
            git = FakeGit(str(repo))
            tmux = FakeTmux()

            result = start_workflow("Feature One", repo, tmux, runner=git)

            expected = repo / ".worktrees" / "demo-feature-one"
            self.assertEqual(result.session_name, "cb_feature-one")
            self.assertEqual(result.worktree_path, expected)
            self.assertFalse(result.branch_existed)
            self.assertIn(["git", "-C", str(repo), "worktree", "add", str(expected), "-b", "feature-one"], git.calls)
            self.assertEqual(tmux.options[("cb_feature-one", SESSION_OPTION_HOME_PATH)], canonical_path(expected))
            self.assertEqual(tmux.shell_windows, [("cb_feature-one", "claude", "claude")])
            self.assertIn(".worktrees/", (repo / ".gitignore").read_text(encoding="utf-8"))

    def test_existing_branch_is_checked_out(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(canonical_path(tmp))
            git = FakeGit(str(repo), existing_branches={"fix"})
            tmux = FakeTmux()
            tmux.fail_agent_window = True

            result = start_workflow("fix", repo, tmux, runner=git)

            self.assertTrue(result.branch_existed)
            self.assertIn("no window for you", result.warning)
            self.assertEqual(git.calls[-1][-2:], [str(result.worktree_path), "fix"])

    def test_rejects_existing_worktree_and_non_repo(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repo = Path(canonical_path(tmp))
            (repo / ".worktrees" / f"{repo.name}-dup").mkdir(parents=True)
            with self.assertRaises(ClawdBayError):
                start_workflow("dup", repo, FakeTmux(), runner=FakeGit(str(repo)))
            with self.assertRaises(ClawdBayError):
                start_workflow("x", repo, FakeTmux(), runner=FakeGit(""))
            with self.assertRaises(ClawdBayError):
                start_workflow("???", repo, FakeTmux(), runner=FakeGit(str(repo)))


class ArchiveTests(unittest.TestCase):
    def test_resolve_session_prefers_exact_then_deepest(self) -> None:
        tmux = FakeTmux()
        tmux.sessions = ["cb_root", "cb_deep", "cb_exact"]
        tmux.pane_dirs = {"cb_root": "/r", "cb_deep": "/r/a", "cb_exact": "/r/a/b"}
        self.assertEqual(resolve_session_for_cwd(tmux, Path("/r/a/b")).session_name, "cb_exact")
        self.assertEqual(resolve_session_for_cwd(tmux, Path("/r/a/c")).session_name, "cb_deep")
        with self.assertRaises(ClawdBayError):
            resolve_session_for_cwd(tmux, Path("/elsewhere"))

    def test_named_target_prefers_pinned_home(self) -> None:
        tmux = FakeTmux()
        tmux.pane_dirs["cb_x"] = "/drifted"
        self.assertEqual(archive_target_for_session(tmux, "x"), ArchiveTarget("cb_x", "/drifted"))
        tmux.options[("cb_x", SESSION_OPTION_HOME_PATH)] = "/home/wt"
        self.assertEqual(archive_target_for_session(tmux, "cb_x"), ArchiveTarget("cb_x", "/home/wt"))

    def test_archive_kills_and_removes_worktree(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            worktree = Path(canonical_path(tmp)) / ".worktrees" / "demo-x"
            worktree.mkdir(parents=True)
            git = FakeGit(tmp)
            tmux = FakeTmux()
            tmux.sessions = ["cb_x"]

            archive_workflow(ArchiveTarget("cb_x", str(worktree)), tmux, runner=git)

            self.assertEqual(tmux.killed, ["cb_x"])
            self.assertEqual(git.calls, [["git", "-C", str(worktree.parent), "worktree", "remove", str(worktree)]])

    def test_archive_tolerates_missing_session(self) -> None:
        git = FakeGit("/r")
        archive_workflow(ArchiveTarget("cb_gone", ""), FakeTmux(), runner=git)
        self.assertEqual(git.calls, [])


class AgentWindowTests(unittest.TestCase):
    def test_current_managed_session_wins_inside_tmux(self) -> None:
        tmux = FakeTmux()
        tmux.current = "cb_mine"
        tmux.sessions = ["cb_other"]
        self.assertEqual(resolve_agent_session(tmux, Path("/x/proj-other"), in_tmux=True), "cb_mine")

    def test_falls_back_to_directory_name(self) -> None:
        tmux = FakeTmux()
        tmux.current = "scratch"
        tmux.sessions = ["cb_auth", "cb_billing"]
        self.assertEqual(resolve_agent_session(tmux, Path("/r/.worktrees/app-billing"), in_tmux=True), "cb_billing")
        with self.assertRaises(ClawdBayError):
            resolve_agent_session(tmux, Path("/r/unrelated"), in_tmux=False)

    def test_open_agent_window_selects_it(self) -> None:
        tmux = FakeTmux()
        tmux.windows["cb_a"] = [Window(0, "shell")]
        self.assertEqual(open_agent_window(tmux, "cb_a", "research"), "claude:research")
        self.assertEqual(tmux.selected, [("cb_a", 1)])


if __name__ == "__main__":
    unittest.main()
