from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from clawdbay.config.models import ProjectConfig, UserConfig
from clawdbay.config.store import ConfigStore, render_config_toml
from clawdbay.discovery.models import MAIN_REPO_LABEL, rollup_statuses
from clawdbay.discovery.service import DiscoveryService
from clawdbay.discovery.worktrees import GitWorktreeLister, parse_worktree_list_porcelain
from clawdbay.errors import BackendError, DiscoveryError, WorktreeListError
from clawdbay.paths import canonical_path
from clawdbay.tmux.client import CommandFailed
from clawdbay.tmux.models import NO_AGENT, SESSION_OPTION_HOME_PATH, AgentInfo, Session, SessionWindowInfo, Window


class FakeBackend:
    def __init__(self) -> None:
        self.sessions: list[str] = []
        self.windows: dict[str, list[Window]] = {}
        self.pane_dirs: dict[str, str] = {}
        self.options: dict[tuple[str, str], str] = {}
        self.agents: dict[tuple[str, str], AgentInfo] = {}
        self.window_failures: set[str] = set()
        self.list_error: BackendError | None = None
        self.window_info: list[SessionWindowInfo] = []

    def list_sessions(self) -> list[Session]:
        if self.list_error is not None:
            raise self.list_error
        return [Session(name) for name in self.sessions]

    def list_windows(self, session: str) -> list[Window]:
        if session in self.window_failures:
            raise BackendError(f"failed to list windows for {session}")
        return list(self.windows.get(session, []))

    def get_pane_working_dir(self, session: str) -> str:
        return self.pane_dirs.get(session, "")

    def get_session_option(self, session: str, key: str) -> str:
        value = self.options.get((session, key))
        if value is None:
            raise BackendError(f"unknown option {key}")
        return value

    def detect_agent_info(self, session: str, window: str) -> AgentInfo:
        return self.agents.get((session, window), NO_AGENT)

    def list_session_window_info(self) -> list[SessionWindowInfo]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.window_info)


class FakeWorktreeLister:
    def __init__(self) -> None:
        self.worktrees: dict[str, list[str]] = {}
        self.failures: set[str] = set()

    def list(self, project_path: str) -> list[str]:
        if project_path in self.failures:
            raise WorktreeListError(f"failed to list worktrees for {project_path}")
        return list(self.worktrees.get(project_path, [project_path]))


class DiscoveryTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.config_path = self.root / "config" / "config.toml"
        self.backend = FakeBackend()
        self.lister = FakeWorktreeLister()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def make_dir(self, relative: str) -> str:
        path = self.root / relative
        path.mkdir(parents=True, exist_ok=True)
        return canonical_path(path)

    def write_config(self, *projects: ProjectConfig) -> None:
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.write_text(
            render_config_toml(UserConfig(projects=list(projects))), encoding="utf-8"
        )

    def service(self) -> DiscoveryService:
        return DiscoveryService(self.backend, ConfigStore(self.config_path), self.lister)


class DiscoveryServiceTests(DiscoveryTestCase):
    def test_demo_scenario(self) -> None:
        demo = self.make_dir("demo")
        feature = self.make_dir("demo/.worktrees/demo-feature")
        self.lister.worktrees[demo] = [demo, feature]
        self.write_config(ProjectConfig(path=demo))

        self.backend.sessions = ["cb_feature"]
        self.backend.options[("cb_feature", SESSION_OPTION_HOME_PATH)] = feature
        self.backend.windows["cb_feature"] = [Window(1, "claude"), Window(0, "shell")]
        self.backend.agents[("cb_feature", "claude")] = AgentInfo(type="claude", detected=True, status="WORKING")

        result = self.service().discover()

        self.assertFalse(result.config_missing)
        self.assertEqual(len(result.projects), 1)
        project = result.projects[0]
        self.assertEqual(project.name, "demo")
        self.assertEqual([w.name for w in project.workspaces], [MAIN_REPO_LABEL, ".worktrees/demo-feature"])
        self.assertEqual(project.workspaces[0].sessions, ())
        session = project.workspaces[1].sessions[0]
        self.assertEqual(session.name, "cb_feature")
        self.assertEqual(session.status, "WORKING")
        self.assertEqual([w.index for w in session.windows], [0, 1])
        self.assertEqual(result.window_statuses, {"cb_feature:claude": "WORKING"})
        self.assertEqual(result.window_agents, {"cb_feature:claude": "claude"})

    def test_output_is_deterministic_regardless_of_input_order(self) -> None:
        zulu = self.make_dir("zulu")
        alpha = self.make_dir("alpha")
        wt_b = self.make_dir("alpha/.worktrees/b")
        wt_a = self.make_dir("alpha/.worktrees/a")
        self.lister.worktrees[alpha] = [wt_b, alpha, wt_a, wt_b]
        self.write_config(ProjectConfig(path=zulu), ProjectConfig(path=alpha))
        self.backend.sessions = ["cb_two", "cb_one"]
        self.backend.pane_dirs = {"cb_two": alpha, "cb_one": alpha}

        first = self.service().discover()
        self.lister.worktrees[alpha] = [wt_a, wt_b, alpha]
        self.backend.sessions = ["cb_one", "cb_two"]
        second = self.service().discover()

        self.assertEqual(first, second)
        self.assertEqual([p.name for p in first.projects], ["alpha", "zulu"])
        self.assertEqual([w.path for w in first.projects[0].workspaces], [alpha, wt_a, wt_b])
        self.assertEqual([s.name for s in first.projects[0].workspaces[0].sessions], ["cb_one", "cb_two"])

    def test_pinned_home_overrides_pane_drift(self) -> None:
        repo = self.make_dir("repo")
        wt = self.make_dir("repo/.worktrees/repo-x")
        elsewhere = self.make_dir("repo/src")
        self.lister.worktrees[repo] = [repo, wt]
        self.write_config(ProjectConfig(path=repo))
        self.backend.sessions = ["cb_x"]
        self.backend.options[("cb_x", SESSION_OPTION_HOME_PATH)] = wt
        self.backend.pane_dirs["cb_x"] = elsewhere

        workspaces = self.service().discover().projects[0].workspaces
        self.assertEqual(workspaces[0].sessions, ())
        self.assertEqual([s.name for s in workspaces[1].sessions], ["cb_x"])

    def test_unpinned_session_lands_on_main_workspace(self) -> None:
        repo = self.make_dir("repo")
        wt = self.make_dir("repo/.worktrees/repo-x")
        self.lister.worktrees[repo] = [repo, wt]
        self.write_config(ProjectConfig(path=repo))
        self.backend.sessions = ["cb_drift"]
        self.backend.pane_dirs["cb_drift"] = wt

        workspaces = self.service().discover().projects[0].workspaces
        self.assertEqual([s.name for s in workspaces[0].sessions], ["cb_drift"])
        self.assertEqual(workspaces[1].sessions, ())

    def test_longest_prefix_project_wins(self) -> None:
        outer = self.make_dir("outer")
        inner = self.make_dir("outer/inner")
        self.write_config(ProjectConfig(path=outer), ProjectConfig(path=inner))
        self.backend.sessions = ["cb_deep"]
        self.backend.options[("cb_deep", SESSION_OPTION_HOME_PATH)] = self.make_dir("outer/inner/pkg")

        projects = {p.name: p for p in self.service().discover().projects}
        self.assertEqual([s.name for s in projects["inner"].workspaces[0].sessions], ["cb_deep"])
        self.assertEqual(projects["outer"].workspaces[0].sessions, ())

    def test_session_outside_all_projects_is_dropped(self) -> None:
        repo = self.make_dir("repo")
        self.write_config(ProjectConfig(path=repo))
        self.backend.sessions = ["cb_stray", "cb_nowhere"]
        self.backend.pane_dirs["cb_stray"] = self.make_dir("other")

        project = self.service().discover().projects[0]
        self.assertEqual(project.workspaces[0].sessions, ())

    def test_worktrees_outside_worktrees_dir_are_ignored(self) -> None:
        repo = self.make_dir("repo")
        sibling = self.make_dir("repo-sibling")
        nested = self.make_dir("repo/build")
        self.lister.worktrees[repo] = [repo, sibling, nested, str(self.root / "repo/.worktrees/gone")]
        self.write_config(ProjectConfig(path=repo))

        workspaces = self.service().discover().projects[0].workspaces
        self.assertEqual([w.path for w in workspaces], [repo])

    def test_invalid_project_is_reported_and_pass_continues(self) -> None:
        repo = self.make_dir("repo")
        broken = self.make_dir("broken")
        self.lister.failures.add(broken)
        self.write_config(
            ProjectConfig(path=repo),
            ProjectConfig(path=broken),
            ProjectConfig(path=str(self.root / "missing"), name="missing"),
        )

        projects = {p.name: p for p in self.service().discover().projects}
        self.assertEqual(projects["repo"].invalid_error, "")
        self.assertIn("failed to list worktrees", projects["broken"].invalid_error)
        self.assertEqual([w.name for w in projects["broken"].workspaces], [MAIN_REPO_LABEL])
        self.assertNotEqual(projects["missing"].invalid_error, "")
        self.assertEqual(projects["missing"].workspaces, ())

    def test_projects_resolving_to_same_path_appear_once(self) -> None:
        repo = self.make_dir("repo")
        link = self.root / "link"
        link.symlink_to(repo, target_is_directory=True)
        self.write_config(
            ProjectConfig(path=repo),
            ProjectConfig(path=repo + "/"),
            ProjectConfig(path=str(link), name="alias"),
        )
        self.backend.sessions = ["cb_one"]
        self.backend.pane_dirs["cb_one"] = repo

        projects = self.service().discover().projects

        self.assertEqual([p.path for p in projects], [repo])
        self.assertEqual(projects[0].name, "repo")
        self.assertEqual([s.name for s in projects[0].workspaces[0].sessions], ["cb_one"])

    def test_window_listing_failure_degrades_to_done(self) -> None:
        repo = self.make_dir("repo")
        self.write_config(ProjectConfig(path=repo))
        self.backend.sessions = ["cb_flaky"]
        self.backend.pane_dirs["cb_flaky"] = repo
        self.backend.window_failures.add("cb_flaky")

        session = self.service().discover().projects[0].workspaces[0].sessions[0]
        self.assertEqual(session.windows, ())
        self.assertEqual(session.status, "DONE")

    def test_session_listing_failure_aborts_pass(self) -> None:
        repo = self.make_dir("repo")
        self.write_config(ProjectConfig(path=repo))
        self.backend.list_error = BackendError("tmux exploded")

        with self.assertRaises(DiscoveryError):
            self.service().discover()

    def test_missing_config_is_flagged(self) -> None:
        result = self.service().discover()
        self.assertTrue(result.config_missing)
        self.assertEqual(result.projects, ())

    def test_agent_rows_are_sorted_and_filtered(self) -> None:
        working = AgentInfo(type="claude", detected=True, status="WORKING")
        self.backend.window_info = [
            SessionWindowInfo("zeta", "repo", Window(0, "claude"), working, False),
            SessionWindowInfo("cb_a", "repo", Window(2, "codex"), AgentInfo("codex", True, "IDLE"), True),
            SessionWindowInfo("cb_a", "repo", Window(1, "shell"), NO_AGENT, True),
            SessionWindowInfo("cb_a", "repo", Window(0, "claude"), working, True),
        ]
        rows = self.service().discover_agent_rows()
        self.assertEqual(
            [(r.session_name, r.window_index) for r in rows],
            [("cb_a", 0), ("cb_a", 2), ("zeta", 0)],
        )
        self.assertFalse(rows[2].managed)

    def test_agent_rows_backend_failure_raises(self) -> None:
        self.backend.list_error = BackendError("no tmux")
        with self.assertRaises(DiscoveryError):
            self.service().discover_agent_rows()


class RollupTests(unittest.TestCase):
    def test_priority_order(self) -> None:
        self.assertEqual(rollup_statuses([]), "DONE")
        self.assertEqual(rollup_statuses(["DONE", "IDLE"]), "IDLE")
        self.assertEqual(rollup_statuses(["IDLE", "WAITING", "DONE"]), "WAITING")
        self.assertEqual(rollup_statuses(["WAITING", "WORKING", "IDLE"]), "WORKING")


class WorktreeListerTests(unittest.TestCase):
    def test_parse_porcelain(self) -> None:
        output = (
            "worktree /r/demo\nHEAD abc\nbranch refs/heads/main\n\n"
            "worktree /r/demo/.worktrees/demo-feature\nHEAD def\nbranch refs/heads/feature\n"
        )
        self.assertEqual(
            parse_worktree_list_porcelain(output),
            ["/r/demo", "/r/demo/.worktrees/demo-feature"],
        )

    def test_git_failure_becomes_worktree_list_error(self) -> None:
        def runner(args):  # noqa: ANN001
            raise CommandFailed(args, 128, "fatal: not a git repository")

        with self.assertRaises(WorktreeListError):
            GitWorktreeLister(runner).list("/nowhere")

    def test_runs_git_with_project_path(self) -> None:
        calls: list[list[str]] = []

        def runner(args):  # noqa: ANN001
            calls.append(list(args))
            return "worktree /r/demo\n"

        self.assertEqual(GitWorktreeLister(runner).list("/r/demo"), ["/r/demo"])
        self.assertEqual(calls, [["git", "-C", "/r/demo", "worktree", "list", "--porcelain"]])


if __name__ == "__main__":
    unittest.main()
