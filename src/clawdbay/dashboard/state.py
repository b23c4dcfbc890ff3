"""Dashboard navigation state machine.

``DashboardState`` is the single mutable owner of everything the dashboard
shows: the current hierarchy (or flat agent rows), the flattened node list,
cursor, expand/collapse flags, filter, scroll offset, and the transient
status line. It is driven one event at a time (key press, timer tick,
refresh result) and never touches tmux itself; background work is described
by the returned :class:`KeyOutcome` and executed by the caller.

Phases: ``BROWSING`` (initial) and ``FILTERING``; both end in ``EXITED``,
with or without a :class:`Selection`. Refresh ticks and backend errors only
change data, never the phase.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from clawdbay.dashboard.naming import ensure_session_prefix, sanitize_name, uniquify_name
from clawdbay.dashboard.refresh import AddKind, AddRequest, AddResult, RefreshResult
from clawdbay.dashboard.tree import (
    DashboardMode,
    NodeType,
    ProjectGroup,
    TreeNode,
    build_agent_nodes,
    build_nodes,
    cursor_to_line,
    merge_expand_state,
    total_display_lines,
    visible_range,
)
from clawdbay.discovery.models import AgentRow
from clawdbay.runtime_logging import DisabledLogger, RuntimeLogger
from clawdbay.tmux.models import SESSION_PREFIX, AgentType, Status

# Borders (2), status bar (1), and frame padding (1).
_CHROME_LINES = 4


class Phase(Enum):
    BROWSING = "browsing"
    FILTERING = "filtering"
    EXITED = "exited"


@dataclass(slots=True)
class HierarchyView:
    groups: list[ProjectGroup] = field(default_factory=list)


@dataclass(slots=True)
class AgentView:
    rows: list[AgentRow] = field(default_factory=list)


View = HierarchyView | AgentView


@dataclass(frozen=True, slots=True)
class Selection:
    session_name: str
    window_name: str | None = None
    window_index: int | None = None


@dataclass(slots=True)
class AddDialog:
    """Pending add prompt. The target is kept by path so refreshes cannot retarget it."""

    kind: AddKind
    workspace_path: str
    workspace_name: str
    session_name: str = ""
    text: str = ""
    error: str = ""


@dataclass(frozen=True, slots=True)
class KeyOutcome:
    refresh: bool = False
    add_request: AddRequest | None = None
    exit: bool = False


@dataclass(frozen=True, slots=True)
class SessionCounts:
    total: int = 0
    working: int = 0
    waiting: int = 0
    idle: int = 0


def _empty_view(mode: DashboardMode) -> View:
    if mode is DashboardMode.AGENTS:
        return AgentView()
    return HierarchyView()


class DashboardState:
    def __init__(
        self,
        mode: DashboardMode = DashboardMode.WORKTREE,
        *,
        logger: RuntimeLogger | None = None,
    ) -> None:
        self.logger = logger or DisabledLogger()
        self.mode = mode
        self.view: View = _empty_view(mode)
        self.nodes: list[TreeNode] = []
        self.cursor = 0
        self.phase = Phase.BROWSING
        self.filter_query = ""
        self.filtered_nodes: list[TreeNode] = []
        self.filtered_cursor = 0
        self.scroll_offset = 0
        self.width = 0
        self.height = 0
        self.status_message = ""
        self.config_missing = False
        self.loaded = False
        self.load_error = ""
        self.window_statuses: dict[str, Status] = {}
        self.window_agents: dict[str, AgentType] = {}
        self.add_dialog: AddDialog | None = None
        self.selection: Selection | None = None
        self._issued_generation = 0
        self._applied_generation = 0

    # -- derived views -----------------------------------------------------

    @property
    def groups(self) -> list[ProjectGroup]:
        return self.view.groups if isinstance(self.view, HierarchyView) else []

    @property
    def agent_rows(self) -> list[AgentRow]:
        return self.view.rows if isinstance(self.view, AgentView) else []

    @property
    def filtering(self) -> bool:
        return self.phase is Phase.FILTERING

    @property
    def exited(self) -> bool:
        return self.phase is Phase.EXITED

    @property
    def tree_height(self) -> int:
        return max(self.height - _CHROME_LINES, 1)

    def active_nodes(self) -> list[TreeNode]:
        return self.filtered_nodes if self.filtering else self.nodes

    def active_cursor(self) -> int:
        return self.filtered_cursor if self.filtering else self.cursor

    def current_node(self) -> TreeNode | None:
        nodes = self.active_nodes()
        cursor = self.active_cursor()
        if 0 <= cursor < len(nodes):
            return nodes[cursor]
        return None

    def display_rows(self) -> list[tuple[int, TreeNode] | None]:
        """Active nodes as display lines; ``None`` marks a blank separator.

        Separators only appear in the unfiltered hierarchical view, before
        every project but the first.
        """
        rows: list[tuple[int, TreeNode] | None] = []
        separated = not self.filtering and self.mode is DashboardMode.WORKTREE
        for index, node in enumerate(self.active_nodes()):
            if separated and index > 0 and node.type is NodeType.PROJECT:
                rows.append(None)
            rows.append((index, node))
        return rows

    def cursor_line(self) -> int:
        if self.filtering or self.mode is DashboardMode.AGENTS:
            return self.active_cursor()
        return cursor_to_line(self.nodes, self.cursor)

    def line_count(self) -> int:
        if self.filtering or self.mode is DashboardMode.AGENTS:
            return len(self.active_nodes())
        return total_display_lines(self.nodes)

    def visible_window(self) -> tuple[int, int]:
        start, end, _ = visible_range(
            self.line_count(), self.tree_height, self.cursor_line(), self.scroll_offset
        )
        return start, end

    def session_counts(self) -> SessionCounts:
        if self.mode is DashboardMode.AGENTS:
            statuses = [row.status for row in self.agent_rows]
        else:
            statuses = [
                session.status
                for project in self.groups
                for workspace in project.workspaces
                for session in workspace.sessions
            ]
        return SessionCounts(
            total=len(statuses),
            working=statuses.count("WORKING"),
            waiting=statuses.count("WAITING"),
            idle=statuses.count("IDLE"),
        )

    def filter_search_text(self, node: TreeNode) -> str:
        """The node's label followed by its ancestors' labels."""
        if node.type is NodeType.AGENT_ROW:
            row = self.agent_rows[node.agent]
            return " ".join([row.window_name, row.session_name, row.repo_name, row.agent_type, row.status])

        project = self.groups[node.project]
        if node.type is NodeType.PROJECT:
            return f"{project.name} {project.path}"
        workspace = project.workspaces[node.workspace]
        if node.type is NodeType.WORKSPACE:
            return f"{workspace.name} {workspace.path} {project.name}"
        session = workspace.sessions[node.session]
        if node.type is NodeType.SESSION:
            return f"{session.name} {workspace.name} {project.name}"
        window = session.windows[node.window]
        return f"{window.name} {session.name} {workspace.name} {project.name}"

    # -- refresh -----------------------------------------------------------

    def begin_refresh(self) -> int:
        """Issue the generation number for a refresh about to be dispatched."""
        self._issued_generation += 1
        return self._issued_generation

    def apply_refresh(self, result: RefreshResult) -> bool:
        """Apply a finished refresh; stale or wrong-mode results are dropped.

        A result is stale when a newer generation has already been applied,
        so overlapping refreshes can finish in any order without an older
        snapshot overwriting a newer one.
        """
        if result.generation <= self._applied_generation or result.mode is not self.mode:
            self.logger.debug(
                "dashboard.refresh.discarded",
                generation=result.generation,
                applied_generation=self._applied_generation,
                result_mode=result.mode.value,
                mode=self.mode.value,
            )
            return False
        self._applied_generation = result.generation

        if result.error is not None:
            self.status_message = f"Error: {result.error}"
            if not self.loaded:
                self.load_error = result.error
            self.logger.warning("dashboard.refresh.failed", generation=result.generation, error=result.error)
            return True

        self.config_missing = result.config_missing
        if self.mode is DashboardMode.AGENTS:
            self.view = AgentView(rows=list(result.rows))
            self.nodes = build_agent_nodes(self.view.rows)
        else:
            groups = merge_expand_state(self.groups, result.groups)
            self.view = HierarchyView(groups=groups)
            self.nodes = build_nodes(groups)
        self.window_statuses = dict(result.window_statuses)
        self.window_agents = dict(result.window_agents)
        self.loaded = True
        self.load_error = ""

        if self.filtering:
            self._update_filtered_nodes()
        self._clamp_cursor()
        self._adjust_scroll()
        self.logger.debug(
            "dashboard.refresh.applied",
            generation=result.generation,
            node_count=len(self.nodes),
        )
        return True

    def tick(self) -> None:
        self.status_message = ""

    def set_viewport(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self._adjust_scroll()

    # -- navigation --------------------------------------------------------

    def move_up(self) -> None:
        if self.filtering:
            if self.filtered_cursor > 0:
                self.filtered_cursor -= 1
        elif self.cursor > 0:
            self.cursor -= 1
        self._adjust_scroll()

    def move_down(self) -> None:
        if self.filtering:
            if self.filtered_cursor < len(self.filtered_nodes) - 1:
                self.filtered_cursor += 1
        elif self.cursor < len(self.nodes) - 1:
            self.cursor += 1
        self._adjust_scroll()

    def activate(self) -> Selection | None:
        """Toggle a project/workspace, or select a session/window/agent row."""
        node = self.current_node()
        if node is None:
            return None

        if node.type is NodeType.PROJECT:
            project = self.groups[node.project]
            project.expanded = not project.expanded
            self._rebuild_nodes()
            return None
        if node.type is NodeType.WORKSPACE:
            workspace = self.groups[node.project].workspaces[node.workspace]
            workspace.expanded = not workspace.expanded
            self._rebuild_nodes()
            return None

        if node.type is NodeType.AGENT_ROW:
            row = self.agent_rows[node.agent]
            selection = Selection(row.session_name, row.window_name, row.window_index)
        else:
            session = self.groups[node.project].workspaces[node.workspace].sessions[node.session]
            if node.type is NodeType.SESSION:
                selection = Selection(session.name)
            else:
                window = session.windows[node.window]
                selection = Selection(session.name, window.name, window.index)

        self.selection = selection
        self.phase = Phase.EXITED
        self.logger.info(
            "dashboard.selection",
            session=selection.session_name,
            window=selection.window_name,
            window_index=selection.window_index,
        )
        return selection

    def expand(self) -> None:
        self._set_expanded(True)

    def collapse(self) -> None:
        self._set_expanded(False)

    def _set_expanded(self, expanded: bool) -> None:
        if self.mode is DashboardMode.AGENTS or self.cursor >= len(self.nodes):
            return
        node = self.nodes[self.cursor]
        project = self.groups[node.project]

        if node.type is NodeType.PROJECT:
            project.expanded = expanded
        elif node.type is NodeType.WORKSPACE:
            project.workspaces[node.workspace].expanded = expanded
        elif node.type is NodeType.SESSION:
            project.workspaces[node.workspace].sessions[node.session].expanded = expanded
        elif node.type is NodeType.WINDOW and not expanded:
            # Collapsing a window folds its session and moves onto it.
            project.workspaces[node.workspace].sessions[node.session].expanded = False
            self.cursor = self.nodes.index(
                TreeNode(NodeType.SESSION, project=node.project, workspace=node.workspace, session=node.session)
            )
        else:
            return
        self._rebuild_nodes()

    def quit(self) -> None:
        self.selection = None
        self.phase = Phase.EXITED

    # -- filtering ---------------------------------------------------------

    def enter_filter(self) -> None:
        self.phase = Phase.FILTERING
        self.filter_query = ""
        self.filtered_cursor = 0
        self._update_filtered_nodes()
        self._adjust_scroll()

    def filter_type(self, text: str) -> None:
        self.filter_query += text
        self._update_filtered_nodes()
        self._adjust_scroll()

    def filter_backspace(self) -> None:
        self.filter_query = self.filter_query[:-1]
        self._update_filtered_nodes()
        self._adjust_scroll()

    def exit_filter(self) -> None:
        self.phase = Phase.BROWSING
        self.filter_query = ""
        self.filtered_nodes = []
        self.filtered_cursor = 0
        self._adjust_scroll()

    def _update_filtered_nodes(self) -> None:
        query = self.filter_query.strip().lower()
        if not query:
            self.filtered_nodes = list(self.nodes)
        else:
            self.filtered_nodes = [
                node for node in self.nodes if query in self.filter_search_text(node).lower()
            ]
        self.filtered_cursor = min(max(self.filtered_cursor, 0), max(len(self.filtered_nodes) - 1, 0))

    # -- mode --------------------------------------------------------------

    def toggle_mode(self) -> None:
        """Switch projections; the caller must dispatch a fresh refresh."""
        self.mode = DashboardMode.WORKTREE if self.mode is DashboardMode.AGENTS else DashboardMode.AGENTS
        self.view = _empty_view(self.mode)
        self.nodes = []
        self.cursor = 0
        self.scroll_offset = 0
        self.phase = Phase.BROWSING
        self.filter_query = ""
        self.filtered_nodes = []
        self.filtered_cursor = 0
        self.add_dialog = None
        self.loaded = False
        self.load_error = ""
        # Results already in flight belong to the previous projection.
        self._applied_generation = self._issued_generation
        self.logger.info("dashboard.mode.toggled", mode=self.mode.value)

    # -- add dialog --------------------------------------------------------

    def open_add_dialog(self) -> None:
        if self.mode is DashboardMode.AGENTS or self.cursor >= len(self.nodes):
            return
        node = self.nodes[self.cursor]
        project = self.groups[node.project]

        if node.type is NodeType.PROJECT:
            main = next((workspace for workspace in project.workspaces if workspace.is_main), None)
            if main is None:
                self.status_message = f"Error: main worktree not found for {project.name}"
                return
            self.add_dialog = AddDialog(kind="session", workspace_path=main.path, workspace_name=main.name)
            return

        workspace = project.workspaces[node.workspace]
        if node.type is NodeType.WORKSPACE:
            self.add_dialog = AddDialog(
                kind="session", workspace_path=workspace.path, workspace_name=workspace.name
            )
        else:
            self.add_dialog = AddDialog(
                kind="window",
                workspace_path=workspace.path,
                workspace_name=workspace.name,
                session_name=workspace.sessions[node.session].name,
            )

    def dialog_type(self, text: str) -> None:
        if self.add_dialog is None:
            return
        self.add_dialog.text += text
        self.add_dialog.error = ""

    def dialog_backspace(self) -> None:
        if self.add_dialog is None or not self.add_dialog.text:
            return
        self.add_dialog.text = self.add_dialog.text[:-1]
        self.add_dialog.error = ""

    def dialog_cancel(self) -> None:
        self.add_dialog = None

    def submit_add_dialog(self) -> AddRequest | None:
        dialog = self.add_dialog
        if dialog is None:
            return None

        sanitized = sanitize_name(dialog.text)
        if not sanitized:
            dialog.error = "name is required"
            return None

        if dialog.kind == "session":
            if not self._workspace_exists(dialog.workspace_path):
                dialog.error = "target worktree no longer exists"
                return None
            candidate = ensure_session_prefix(sanitized)
            if candidate == SESSION_PREFIX:
                dialog.error = "name is required"
                return None
            self.add_dialog = None
            self.status_message = f"Creating session {candidate}..."
            return AddRequest(kind="session", name=candidate, workspace_path=dialog.workspace_path)

        if not dialog.session_name:
            dialog.error = "target session no longer exists"
            return None

        # Best-effort dedupe against the current snapshot.
        existing = {
            window.name
            for project in self.groups
            for workspace in project.workspaces
            for session in workspace.sessions
            if session.name == dialog.session_name
            for window in session.windows
        }
        name = uniquify_name(sanitized, lambda candidate: candidate in existing)
        self.add_dialog = None
        self.status_message = f"Creating window {name}..."
        return AddRequest(kind="window", name=name, session_name=dialog.session_name)

    def apply_add_result(self, result: AddResult) -> None:
        if result.error is not None:
            self.status_message = f"Error: {result.error}"
            self.logger.warning("dashboard.add.failed", kind=result.kind, name=result.name, error=result.error)
            return
        label = "Session" if result.kind == "session" else "Window"
        self.status_message = f"{label} created: {result.name}"
        self.logger.info("dashboard.add.completed", kind=result.kind, name=result.name, target=result.target)

    # -- keys --------------------------------------------------------------

    def handle_key(self, key: str, character: str | None = None) -> KeyOutcome:
        """Dispatch one key press. ``key`` uses Textual key names."""
        if self.exited:
            return KeyOutcome(exit=True)
        printable = character if character and character.isprintable() else None

        if self.add_dialog is not None:
            return self._handle_dialog_key(key, printable)
        if self.filtering:
            return self._handle_filter_key(key, printable)
        return self._handle_browse_key(key, printable)

    def _handle_dialog_key(self, key: str, printable: str | None) -> KeyOutcome:
        if key == "escape":
            self.dialog_cancel()
        elif key in ("backspace", "ctrl+h"):
            self.dialog_backspace()
        elif key == "enter":
            request = self.submit_add_dialog()
            if request is not None:
                return KeyOutcome(add_request=request)
        elif key == "ctrl+c":
            self.quit()
            return KeyOutcome(exit=True)
        elif printable:
            self.dialog_type(printable)
        return KeyOutcome()

    def _handle_filter_key(self, key: str, printable: str | None) -> KeyOutcome:
        if key == "escape":
            self.exit_filter()
        elif key in ("backspace", "ctrl+h"):
            self.filter_backspace()
        elif key == "up":
            self.move_up()
        elif key == "down":
            self.move_down()
        elif key == "enter":
            if self.activate() is not None:
                return KeyOutcome(exit=True)
        elif key == "ctrl+c":
            self.quit()
            return KeyOutcome(exit=True)
        elif printable:
            self.filter_type(printable)
        return KeyOutcome()

    def _handle_browse_key(self, key: str, printable: str | None) -> KeyOutcome:
        char = printable or key
        if key in ("escape", "ctrl+c") or char == "q":
            self.quit()
            return KeyOutcome(exit=True)
        if key == "up" or char == "k":
            self.move_up()
        elif key == "down" or char == "j":
            self.move_down()
        elif key == "enter":
            if self.activate() is not None:
                return KeyOutcome(exit=True)
        elif key == "right" or char == "l":
            self.expand()
        elif key == "left" or char == "h":
            self.collapse()
        elif char == "/":
            self.enter_filter()
        elif char == "m":
            self.toggle_mode()
            return KeyOutcome(refresh=True)
        elif char == "r":
            return KeyOutcome(refresh=True)
        elif char == "a":
            self.open_add_dialog()
        return KeyOutcome()

    # -- internals ---------------------------------------------------------

    def _workspace_exists(self, path: str) -> bool:
        return any(workspace.path == path for project in self.groups for workspace in project.workspaces)

    def _rebuild_nodes(self) -> None:
        self.nodes = build_nodes(self.groups)
        if self.filtering:
            self._update_filtered_nodes()
        self._clamp_cursor()
        self._adjust_scroll()

    def _clamp_cursor(self) -> None:
        if self.cursor >= len(self.nodes):
            self.cursor = max(0, len(self.nodes) - 1)

    def _adjust_scroll(self) -> None:
        if not self.active_nodes():
            self.scroll_offset = 0
            return
        _, _, self.scroll_offset = visible_range(
            self.line_count(), self.tree_height, self.cursor_line(), self.scroll_offset
        )
