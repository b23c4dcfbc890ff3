"""Dashboard view model: expandable groups, flattened nodes, and viewport math."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from clawdbay.discovery.models import AgentRow, Project, SessionNode, Workspace
from clawdbay.errors import ClawdBayError
from clawdbay.tmux.models import Status, Window


class DashboardMode(str, Enum):
    WORKTREE = "worktree"
    AGENTS = "agents"


def parse_dashboard_mode(raw: str | None) -> DashboardMode:
    value = (raw or "").strip().lower()
    if not value:
        return DashboardMode.WORKTREE
    try:
        return DashboardMode(value)
    except ValueError:
        raise ClawdBayError(
            f"invalid dashboard mode {raw!r} (valid: {DashboardMode.WORKTREE.value}, "
            f"{DashboardMode.AGENTS.value})"
        ) from None


class NodeType(Enum):
    PROJECT = "project"
    WORKSPACE = "workspace"
    SESSION = "session"
    WINDOW = "window"
    AGENT_ROW = "agent_row"


@dataclass(frozen=True, slots=True)
class TreeNode:
    """A cursor position. Indices point into the current groups or agent rows."""

    type: NodeType
    project: int = 0
    workspace: int = 0
    session: int = 0
    window: int = 0
    agent: int = 0


@dataclass(slots=True)
class SessionGroup:
    name: str
    status: Status
    windows: list[Window]
    expanded: bool = True


@dataclass(slots=True)
class WorkspaceGroup:
    name: str
    path: str
    is_main: bool
    sessions: list[SessionGroup] = field(default_factory=list)
    expanded: bool = True


@dataclass(slots=True)
class ProjectGroup:
    name: str
    path: str
    invalid_error: str = ""
    workspaces: list[WorkspaceGroup] = field(default_factory=list)
    expanded: bool = True

    @property
    def key(self) -> str:
        return self.path or self.name


def _session_group(session: SessionNode) -> SessionGroup:
    return SessionGroup(name=session.name, status=session.status, windows=list(session.windows))


def _workspace_group(workspace: Workspace) -> WorkspaceGroup:
    return WorkspaceGroup(
        name=workspace.name,
        path=workspace.path,
        is_main=workspace.is_main,
        sessions=[_session_group(session) for session in workspace.sessions],
    )


def groups_from_projects(projects: tuple[Project, ...] | list[Project]) -> list[ProjectGroup]:
    """Wrap discovery output in expandable groups, all expanded."""
    return [
        ProjectGroup(
            name=project.name,
            path=project.path,
            invalid_error=project.invalid_error,
            workspaces=[_workspace_group(workspace) for workspace in project.workspaces],
        )
        for project in projects
    ]


def merge_expand_state(old: list[ProjectGroup], updated: list[ProjectGroup]) -> list[ProjectGroup]:
    """Copy expand flags from ``old`` onto matching groups in ``updated``.

    Matching uses stable keys (project path, workspace path, session name),
    so groups that appear or disappear between refreshes leave the rest of
    the view untouched. Unmatched groups keep their default.
    """
    project_state: dict[str, bool] = {}
    workspace_state: dict[str, bool] = {}
    session_state: dict[str, bool] = {}

    for project in old:
        project_state[project.key] = project.expanded
        for workspace in project.workspaces:
            workspace_key = f"{project.key}|{workspace.path}"
            workspace_state[workspace_key] = workspace.expanded
            for session in workspace.sessions:
                session_state[f"{workspace_key}|{session.name}"] = session.expanded

    for project in updated:
        project.expanded = project_state.get(project.key, project.expanded)
        for workspace in project.workspaces:
            workspace_key = f"{project.key}|{workspace.path}"
            workspace.expanded = workspace_state.get(workspace_key, workspace.expanded)
            for session in workspace.sessions:
                session.expanded = session_state.get(f"{workspace_key}|{session.name}", session.expanded)
    return updated


def build_nodes(groups: list[ProjectGroup]) -> list[TreeNode]:
    nodes: list[TreeNode] = []
    for pi, project in enumerate(groups):
        nodes.append(TreeNode(NodeType.PROJECT, project=pi))
        if not project.expanded:
            continue
        for wi, workspace in enumerate(project.workspaces):
            nodes.append(TreeNode(NodeType.WORKSPACE, project=pi, workspace=wi))
            if not workspace.expanded:
                continue
            for si, session in enumerate(workspace.sessions):
                nodes.append(TreeNode(NodeType.SESSION, project=pi, workspace=wi, session=si))
                if not session.expanded:
                    continue
                for wx in range(len(session.windows)):
                    nodes.append(
                        TreeNode(NodeType.WINDOW, project=pi, workspace=wi, session=si, window=wx)
                    )
    return nodes


def build_agent_nodes(rows: list[AgentRow]) -> list[TreeNode]:
    return [TreeNode(NodeType.AGENT_ROW, agent=index) for index in range(len(rows))]


def cursor_to_line(nodes: list[TreeNode], cursor: int) -> int:
    """Map a node index to its display line.

    A blank separator line precedes every project node except the first.
    Agent rows never have separators.
    """
    line = 0
    for index in range(min(cursor, len(nodes))):
        line += 1
        if index + 1 < len(nodes) and nodes[index + 1].type is NodeType.PROJECT:
            line += 1
    return line


def total_display_lines(nodes: list[TreeNode]) -> int:
    separators = sum(1 for index, node in enumerate(nodes) if index > 0 and node.type is NodeType.PROJECT)
    return len(nodes) + separators


def visible_range(
    line_count: int,
    view_height: int,
    cursor_line: int,
    scroll_offset: int,
) -> tuple[int, int, int]:
    """Return ``(start, end, new_offset)`` for the visible slice of lines.

    The offset only moves when the cursor would otherwise leave the view.
    """
    if line_count <= view_height:
        return 0, line_count, 0

    offset = scroll_offset
    if cursor_line < offset:
        offset = cursor_line
    if cursor_line >= offset + view_height:
        offset = cursor_line - view_height + 1

    return offset, min(offset + view_height, line_count), offset
