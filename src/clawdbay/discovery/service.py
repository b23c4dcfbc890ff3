"""Project/workspace/session discovery and session placement."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Protocol

from clawdbay.config.store import ConfigStore
from clawdbay.discovery.models import (
    MAIN_REPO_LABEL,
    AgentRow,
    DiscoveryResult,
    Project,
    SessionNode,
    Workspace,
    rollup_statuses,
    window_key,
)
from clawdbay.discovery.worktrees import WORKTREES_DIRNAME, GitWorktreeLister, WorktreeLister
from clawdbay.errors import BackendError, DiscoveryError, PathResolutionError, WorktreeListError
from clawdbay.paths import canonical_path, is_path_within, is_path_within_or_equal, relative_workspace_name
from clawdbay.runtime_logging import DisabledLogger, RuntimeLogger
from clawdbay.tmux.models import (
    SESSION_OPTION_HOME_PATH,
    AgentInfo,
    AgentType,
    Session,
    SessionWindowInfo,
    Status,
    Window,
)


class SessionBackend(Protocol):
    def list_sessions(self) -> list[Session]: ...

    def list_windows(self, session: str) -> list[Window]: ...

    def get_pane_working_dir(self, session: str) -> str: ...

    def get_session_option(self, session: str, key: str) -> str: ...

    def detect_agent_info(self, session: str, window: str) -> AgentInfo: ...

    def list_session_window_info(self) -> list[SessionWindowInfo]: ...


@dataclass(slots=True)
class _WorkspaceDraft:
    name: str
    path: str
    is_main: bool
    sessions: list[SessionNode] = field(default_factory=list)


@dataclass(slots=True)
class _ProjectDraft:
    name: str
    path: str
    canonical_path: str = ""
    invalid_error: str = ""
    workspaces: list[_WorkspaceDraft] = field(default_factory=list)


class DiscoveryService:
    """Builds the project → workspace → session hierarchy for one pass.

    Every pass starts from scratch: configured projects are canonicalized,
    their worktrees listed, and each live session is placed under at most
    one workspace. Ordering depends only on display names and canonical
    paths, never on the order tmux or git report things in.
    """

    def __init__(
        self,
        backend: SessionBackend | None,
        config_store: ConfigStore | None = None,
        worktree_lister: WorktreeLister | None = None,
        logger: RuntimeLogger | None = None,
    ) -> None:
        self.backend = backend
        self.config_store = config_store or ConfigStore()
        self.worktree_lister = worktree_lister if worktree_lister is not None else GitWorktreeLister()
        self.logger = logger or DisabledLogger()

    def discover(self) -> DiscoveryResult:
        config, exists = self.config_store.load_with_meta()
        self.logger.debug(
            "discovery.config.loaded",
            config_exists=exists,
            project_count=len(config.projects),
        )

        drafts: list[_ProjectDraft] = []
        seen: set[str] = set()
        for project in config.projects:
            draft = _ProjectDraft(name=project.display_name, path=project.path)
            try:
                draft.canonical_path = canonical_path(project.path)
            except PathResolutionError as exc:
                draft.invalid_error = str(exc)
                self.logger.warning(
                    "discovery.project.invalid",
                    project=draft.name,
                    path=project.path,
                    error=draft.invalid_error,
                )
                drafts.append(draft)
                continue

            if draft.canonical_path in seen:
                self.logger.warning(
                    "discovery.project.duplicate",
                    project=draft.name,
                    path=project.path,
                    canonical_path=draft.canonical_path,
                )
                continue
            seen.add(draft.canonical_path)

            draft.path = draft.canonical_path
            draft.workspaces, worktree_error = self._discover_workspaces(draft.canonical_path)
            if worktree_error:
                draft.invalid_error = worktree_error
            drafts.append(draft)

        drafts.sort(key=lambda item: (item.name, item.path))

        window_statuses: dict[str, Status] = {}
        window_agents: dict[str, AgentType] = {}
        if self.backend is not None:
            self._overlay_sessions(drafts, window_statuses, window_agents)

        projects = tuple(_freeze_project(draft) for draft in drafts)
        self.logger.debug(
            "discovery.completed",
            project_count=len(projects),
            session_count=sum(len(ws.sessions) for p in projects for ws in p.workspaces),
        )
        return DiscoveryResult(
            projects=projects,
            window_statuses=window_statuses,
            window_agents=window_agents,
            config_missing=not exists,
        )

    def discover_agent_rows(self) -> list[AgentRow]:
        """Flat list of every detected agent window across all tmux sessions."""
        if self.backend is None:
            return []
        try:
            infos = self.backend.list_session_window_info()
        except BackendError as exc:
            raise DiscoveryError(str(exc)) from exc

        rows = [
            AgentRow(
                session_name=info.session_name,
                window_name=info.window.name,
                window_index=info.window.index,
                repo_name=info.repo_name,
                agent_type=info.agent_info.type,
                status=info.agent_info.status,
                managed=info.managed,
            )
            for info in infos
            if info.agent_info.detected
        ]
        rows.sort(key=lambda row: (row.session_name, row.window_index, row.window_name))
        return rows

    def _discover_workspaces(self, project_path: str) -> tuple[list[_WorkspaceDraft], str]:
        main = _WorkspaceDraft(name=MAIN_REPO_LABEL, path=project_path, is_main=True)
        try:
            raw_paths = self.worktree_lister.list(project_path)
        except WorktreeListError as exc:
            self.logger.warning("discovery.worktrees.failed", project_path=project_path, error=str(exc))
            return [main], str(exc)

        worktrees_root = os.path.join(project_path, WORKTREES_DIRNAME)
        seen: set[str] = set()
        for raw_path in raw_paths:
            try:
                resolved = canonical_path(raw_path)
            except PathResolutionError:
                self.logger.debug("discovery.worktree.unresolvable", path=raw_path)
                continue
            if resolved == project_path:
                continue
            if is_path_within(resolved, worktrees_root):
                seen.add(resolved)

        ordered = sorted(
            seen,
            key=lambda path: (relative_workspace_name(project_path, path), path),
        )
        workspaces = [main]
        workspaces.extend(
            _WorkspaceDraft(
                name=relative_workspace_name(project_path, path),
                path=path,
                is_main=False,
            )
            for path in ordered
        )
        return workspaces, ""

    def _overlay_sessions(
        self,
        drafts: list[_ProjectDraft],
        window_statuses: dict[str, Status],
        window_agents: dict[str, AgentType],
    ) -> None:
        assert self.backend is not None
        try:
            sessions = self.backend.list_sessions()
        except BackendError as exc:
            raise DiscoveryError(f"failed to list tmux sessions: {exc}") from exc

        for session in sessions:
            placement = self._place_session(drafts, session.name)
            if placement is None:
                self.logger.debug("discovery.session.dropped", session=session.name)
                continue
            project_index, workspace_index = placement

            try:
                windows = sorted(self.backend.list_windows(session.name), key=lambda w: w.index)
            except BackendError as exc:
                self.logger.warning("discovery.session.windows_failed", session=session.name, error=str(exc))
                windows = []

            statuses: list[Status] = []
            for window in windows:
                info = self.backend.detect_agent_info(session.name, window.name)
                if not info.detected:
                    continue
                key = window_key(session.name, window.name)
                window_statuses[key] = info.status
                window_agents[key] = info.type
                statuses.append(info.status)

            workspace = drafts[project_index].workspaces[workspace_index]
            workspace.sessions.append(
                SessionNode(
                    name=session.name,
                    status=rollup_statuses(statuses),
                    windows=tuple(windows),
                )
            )
            self.logger.debug(
                "discovery.session.placed",
                session=session.name,
                project=drafts[project_index].name,
                workspace=workspace.name,
            )

    def _place_session(self, drafts: list[_ProjectDraft], session_name: str) -> tuple[int, int] | None:
        pinned = self._placement_from_pinned_home(drafts, session_name)
        if pinned is not None:
            return pinned

        # Unpinned sessions follow their pane cwd but always land on the main checkout.
        pane_path = self.backend.get_pane_working_dir(session_name) if self.backend else ""
        if not pane_path:
            return None
        try:
            resolved = canonical_path(pane_path)
        except PathResolutionError:
            return None

        project_index = best_project_match(drafts, resolved)
        if project_index < 0:
            return None
        workspace_index = _main_workspace_index(drafts[project_index].workspaces)
        if workspace_index < 0:
            return None
        return project_index, workspace_index

    def _placement_from_pinned_home(
        self, drafts: list[_ProjectDraft], session_name: str
    ) -> tuple[int, int] | None:
        assert self.backend is not None
        try:
            home_path = self.backend.get_session_option(session_name, SESSION_OPTION_HOME_PATH)
        except BackendError:
            return None
        if not home_path.strip():
            return None

        try:
            resolved = canonical_path(home_path)
        except PathResolutionError:
            self.logger.debug("discovery.session.pin_unresolvable", session=session_name, home_path=home_path)
            return None

        project_index = best_project_match(drafts, resolved)
        if project_index < 0:
            return None
        workspace_index = best_workspace_match(drafts[project_index].workspaces, resolved)
        if workspace_index < 0:
            return None
        return project_index, workspace_index


def best_project_match(drafts: list[_ProjectDraft], path: str) -> int:
    best = -1
    best_len = -1
    for index, draft in enumerate(drafts):
        if not draft.canonical_path:
            continue
        if not is_path_within_or_equal(path, draft.canonical_path):
            continue
        if len(draft.canonical_path) > best_len:
            best = index
            best_len = len(draft.canonical_path)
    return best


def best_workspace_match(workspaces: list[_WorkspaceDraft], path: str) -> int:
    best = -1
    best_len = -1
    for index, workspace in enumerate(workspaces):
        if not is_path_within_or_equal(path, workspace.path):
            continue
        if len(workspace.path) > best_len:
            best = index
            best_len = len(workspace.path)
    return best


def _main_workspace_index(workspaces: list[_WorkspaceDraft]) -> int:
    for index, workspace in enumerate(workspaces):
        if workspace.is_main:
            return index
    return -1


def _freeze_project(draft: _ProjectDraft) -> Project:
    workspaces = tuple(
        Workspace(
            name=workspace.name,
            path=workspace.path,
            is_main=workspace.is_main,
            sessions=tuple(sorted(workspace.sessions, key=lambda session: session.name)),
        )
        for workspace in draft.workspaces
    )
    return Project(
        name=draft.name,
        path=draft.path,
        workspaces=workspaces,
        invalid_error=draft.invalid_error,
    )
